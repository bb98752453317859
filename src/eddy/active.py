"""ActiveStream — a hot stream with a replay buffer.

Observing never starts production. The observer is registered in the live
table and first receives the buffered events, then every event pushed with
next(). Registration, replay and fan-out are decided under one re-entrant
lock and delivered, in that order, after it is released. A new observer
can therefore never see a live event before its replay, and writes reach
every observer in write order.

Fan-out uses a snapshot of the table taken with the write: observers added
during a fan-out miss that event, observers disposed during it are skipped
by their own Subscription flag.
"""

from __future__ import annotations

import threading
from collections import deque
from functools import partial
from typing import Callable, Iterable, TypeVar

from eddy._delivery import DeliveryQueue
from eddy.context import IMMEDIATE, ExecutionContext
from eddy.disposable import BlockDisposable, CompositeDisposable, Disposable
from eddy.stream import Producer, Stream, Subscription

T = TypeVar("T")


class ActiveStream(Stream[T]):
    """Hot stream that replays its last ``limit`` events to new observers.

    If a producer is given it runs once, immediately, with next() as its
    sink. dispose() releases it and drops every observer.
    """

    def __init__(self, limit: int = 0, producer: Producer | None = None) -> None:
        super().__init__(self._no_producer)
        self._lock = threading.RLock()
        self._buffer: deque = deque(maxlen=max(limit, 0))
        self._observers: dict[Subscription, None] = {}
        self._deliveries = DeliveryQueue()
        self._resources = CompositeDisposable()
        if producer is not None:
            self._resources.add(producer(self.next))

    @staticmethod
    def _no_producer(sink) -> None:
        return None

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def observe(
        self, observer: Callable[[T], None], context: ExecutionContext = IMMEDIATE
    ) -> Disposable:
        subscription = Subscription(observer, context)
        with self._lock:
            if self._resources.is_disposed:
                subscription.dispose()
                return subscription
            for event in self._replay():
                self._deliveries.put(partial(subscription.send, event))
            self._observers[subscription] = None
        subscription.add(BlockDisposable(lambda: self._unregister(subscription)))
        self._deliveries.drain()
        return subscription

    def next(self, event: T) -> None:
        """Buffer event and push it to every live observer."""
        with self._lock:
            self._store(event)
            self._dispatch(event)
        self._deliveries.drain()

    def dispose(self) -> None:
        """Release the producer and every registered observer."""
        self._resources.dispose()
        with self._lock:
            observers = list(self._observers)
            self._observers.clear()
        for subscription in observers:
            subscription.dispose()

    @property
    def is_disposed(self) -> bool:
        return self._resources.is_disposed

    # --- hooks for subclasses ---

    def _store(self, event: T) -> None:
        self._buffer.append(event)

    def _replay(self) -> Iterable[T]:
        return list(self._buffer)

    def _dispatch(self, event: T) -> None:
        # Caller holds self._lock and drains self._deliveries after releasing it.
        self._deliveries.put(partial(_fan_out, list(self._observers), event))

    def _unregister(self, subscription: Subscription) -> None:
        with self._lock:
            self._observers.pop(subscription, None)


def _fan_out(subscriptions: list[Subscription], event) -> None:
    for subscription in subscriptions:
        subscription.send(event)
