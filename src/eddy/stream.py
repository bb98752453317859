"""Streams — observe events under an explicit execution context.

A Stream wraps a producer function. Each observe() call creates a
Subscription, hands the producer a sink, and returns the Subscription as
the Disposable. Producing happens per observation (cold); ActiveStream
overrides observe() to register against a shared, already running producer
(hot).

Every operator returns a new Stream whose producer observes the upstream,
so composition never changes temperature: map over a cold stream is cold,
map over an ActiveStream only registers and replays.
"""

from __future__ import annotations

import threading
from collections import deque
from functools import partial
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from eddy.context import IMMEDIATE, ExecutionContext
from eddy.disposable import (
    BlockDisposable,
    CompositeDisposable,
    Disposable,
    SerialDisposable,
)
from eddy.flatten import FlatMapStrategy, Flatten

if TYPE_CHECKING:
    from eddy.active import ActiveStream

T = TypeVar("T")
U = TypeVar("U")

Sink = Callable[[T], None]
Producer = Callable[[Sink], "Disposable | None"]

_UNSET = object()


class Subscription:
    """One observer registered under one context.

    send() schedules delivery on the context; the scheduled work re-checks
    the disposed flag under the subscription lock, so once dispose()
    returns the observer is never called again, whatever thread the
    producer runs on.
    """

    __slots__ = ("_observer", "_context", "_lock", "_disposed", "_resources")

    def __init__(self, observer: Callable[[T], None], context: ExecutionContext) -> None:
        self._observer = observer
        self._context = context
        self._lock = threading.RLock()
        self._disposed = False
        self._resources: list[Disposable] = []

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def send(self, event) -> None:
        if self._disposed:
            return
        self._context.schedule(partial(self._deliver, event))

    def _deliver(self, event) -> None:
        with self._lock:
            if not self._disposed:
                self._observer(event)

    def finish(self, event) -> None:
        """Deliver a last event, then dispose once it has been delivered."""
        if self._disposed:
            return
        self._context.schedule(partial(self._deliver_last, event))

    def _deliver_last(self, event) -> None:
        try:
            self._deliver(event)
        finally:
            self.dispose()

    def add(self, disposable: Disposable | None) -> None:
        """Tie a resource to this subscription's lifetime."""
        if disposable is None:
            return
        with self._lock:
            if not self._disposed:
                self._resources.append(disposable)
                return
        disposable.dispose()

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            resources, self._resources = self._resources, []
        for resource in resources:
            resource.dispose()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Subscription({self._context!r}, {state})"


class Stream(Generic[T]):
    """A sequence of events produced on observation."""

    def __init__(self, producer: Producer) -> None:
        self._producer = producer

    def observe(
        self, observer: Callable[[T], None], context: ExecutionContext = IMMEDIATE
    ) -> Disposable:
        """Run the producer for a new observer. Returns its Disposable."""
        subscription = Subscription(observer, context)
        subscription.add(self._producer(subscription.send))
        return subscription

    # --- operators ---

    def map(self, fn: Callable[[T], U]) -> Stream[U]:
        """Transform events through fn."""
        return Stream(lambda sink: self.observe(lambda v: sink(fn(v))))

    def filter(self, fn: Callable[[T], bool]) -> Stream[T]:
        """Only pass events where fn returns True."""
        return Stream(lambda sink: self.observe(lambda v: sink(v) if fn(v) else None))

    def skip(self, count: int) -> Stream[T]:
        """Drop the first count events."""

        def producer(sink: Sink) -> Disposable:
            remaining = [count]

            def on_event(value: T) -> None:
                if remaining[0] > 0:
                    remaining[0] -= 1
                else:
                    sink(value)

            return self.observe(on_event)

        return Stream(producer)

    def take(self, count: int) -> Stream[T]:
        """Pass the first count events, then let go of the upstream."""

        def producer(sink: Sink) -> Disposable | None:
            if count <= 0:
                return None
            serial = SerialDisposable()
            taken = [0]

            def on_event(value: T) -> None:
                if taken[0] >= count:
                    return
                taken[0] += 1
                sink(value)
                if taken[0] == count:
                    serial.dispose()

            serial.inner = self.observe(on_event)
            return serial

        return Stream(producer)

    def distinct(self) -> Stream[T]:
        """Drop events equal to the one just before them."""

        def producer(sink: Sink) -> Disposable:
            last = [_UNSET]

            def on_event(value: T) -> None:
                if last[0] is _UNSET or last[0] != value:
                    last[0] = value
                    sink(value)

            return self.observe(on_event)

        return Stream(producer)

    def start_with(self, value: T) -> Stream[T]:
        """Emit value before anything the upstream produces."""

        def producer(sink: Sink) -> Disposable:
            sink(value)
            return self.observe(sink)

        return Stream(producer)

    def observe_on(self, context: ExecutionContext) -> Stream[T]:
        """Hop every event onto context before passing it on."""
        return Stream(lambda sink: self.observe(sink, context))

    def debounce(self, seconds: float) -> Stream[T]:
        """Coalesce rapid events — emit after quiet period.

        Uses threading.Timer (daemon=True). Each new event cancels the
        previous timer, so only the last event in a burst fires. Disposing
        cancels any pending timer.
        """

        def producer(sink: Sink) -> Disposable:
            timer_lock = threading.Lock()
            timer_ref: list[threading.Timer | None] = [None]

            def on_event(value: T) -> None:
                with timer_lock:
                    if timer_ref[0] is not None:
                        timer_ref[0].cancel()
                    t = threading.Timer(seconds, sink, args=[value])
                    t.daemon = True
                    timer_ref[0] = t
                    t.start()

            def cancel_timer() -> None:
                with timer_lock:
                    if timer_ref[0] is not None:
                        timer_ref[0].cancel()
                        timer_ref[0] = None

            return CompositeDisposable([self.observe(on_event), BlockDisposable(cancel_timer)])

        return Stream(producer)

    def merge_with(self, other: Stream[T]) -> Stream[T]:
        """Events from both streams, as they arrive."""
        return Stream(
            lambda sink: CompositeDisposable([self.observe(sink), other.observe(sink)])
        )

    def combine_latest_with(self, other: Stream[U]) -> Stream[tuple[T, U]]:
        """Pairs of the latest events once both sides have produced."""

        def producer(sink: Sink) -> Disposable:
            lock = threading.Lock()
            latest = [_UNSET, _UNSET]

            def on_side(side: int, value) -> None:
                with lock:
                    latest[side] = value
                    if latest[0] is _UNSET or latest[1] is _UNSET:
                        return
                    pair = (latest[0], latest[1])
                sink(pair)

            return CompositeDisposable(
                [
                    self.observe(partial(on_side, 0)),
                    other.observe(partial(on_side, 1)),
                ]
            )

        return Stream(producer)

    def zip_with(self, other: Stream[U]) -> Stream[tuple[T, U]]:
        """Pairs events strictly by arrival order on each side."""

        def producer(sink: Sink) -> Disposable:
            lock = threading.Lock()
            queues: tuple[deque, deque] = (deque(), deque())

            def on_side(side: int, value) -> None:
                with lock:
                    queues[side].append(value)
                    if not (queues[0] and queues[1]):
                        return
                    pair = (queues[0].popleft(), queues[1].popleft())
                sink(pair)

            return CompositeDisposable(
                [
                    self.observe(partial(on_side, 0)),
                    other.observe(partial(on_side, 1)),
                ]
            )

        return Stream(producer)

    def flat_map(
        self, strategy: FlatMapStrategy, fn: Callable[[T], Stream[U]]
    ) -> Stream[U]:
        """Observe fn(event) for every event, flattened per strategy."""
        return Stream(lambda sink: Flatten(strategy, fn, sink).run(self))

    def share(self, limit: int = 1) -> ActiveStream[T]:
        """Observe this stream once and fan it out as a hot stream.

        The last ``limit`` events are replayed to each new observer.
        """
        from eddy.active import ActiveStream

        return ActiveStream(limit=limit, producer=self.observe)
