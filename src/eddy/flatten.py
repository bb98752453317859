"""flat_map engine shared by Stream and Operation.

Each upstream value is turned into an inner stream, and the inner streams
are flattened into one output according to a FlatMapStrategy:

- LATEST: only the most recent inner stream is observed. The previous inner
  subscription is disposed before the next one starts.
- MERGE: every inner stream stays subscribed; their events interleave.
- CONCAT: inner streams are queued and observed one at a time, in arrival
  order. The next one starts when the current one succeeds.

Plain streams never terminate, so only Operations exercise the completion
and failure paths: the output fails on the first failure (outer or inner)
and succeeds once the outer and every inner stream have succeeded.
"""

from __future__ import annotations

import enum
import threading
from collections import deque
from functools import partial
from typing import TYPE_CHECKING, Any, Callable

from eddy._delivery import DeliveryQueue
from eddy.disposable import SerialDisposable

if TYPE_CHECKING:
    from eddy.stream import Stream


class FlatMapStrategy(enum.Enum):
    LATEST = "latest"
    MERGE = "merge"
    CONCAT = "concat"


class EventKind(enum.Enum):
    """How the flatten engine treats an event."""

    VALUE = "value"
    FAILURE = "failure"
    SUCCESS = "success"


# event -> (kind, payload). For VALUE the payload is what transform receives.
Classifier = Callable[[Any], "tuple[EventKind, Any]"]


def classify_value(event: Any) -> tuple[EventKind, Any]:
    """Classifier for plain streams: every event is a value."""
    return EventKind.VALUE, event


class Flatten:
    """One running flat_map. Returned to the caller as its Disposable."""

    def __init__(
        self,
        strategy: FlatMapStrategy,
        transform: Callable[[Any], Stream],
        emit: Callable[[Any], None],
        classify: Classifier = classify_value,
        success_event: Any = None,
    ) -> None:
        self._strategy = strategy
        self._transform = transform
        self._emit = emit
        self._classify = classify
        self._success_event = success_event
        self._lock = threading.RLock()
        self._outer = SerialDisposable()
        self._inners: dict[int, SerialDisposable] = {}
        self._next_id = 0
        self._queue: deque = deque()
        self._outer_done = False
        self._done = False
        self._deliveries = DeliveryQueue()

    @property
    def is_disposed(self) -> bool:
        return self._done

    def run(self, source: Stream) -> Flatten:
        self._outer.inner = source.observe(self._on_outer)
        return self

    def dispose(self) -> None:
        with self._lock:
            self._done = True
            inners = list(self._inners.values())
            self._inners.clear()
            self._queue.clear()
        self._outer.dispose()
        for inner in inners:
            inner.dispose()

    # --- outer ---

    def _on_outer(self, event: Any) -> None:
        kind, payload = self._classify(event)
        if kind is EventKind.VALUE:
            self._on_outer_value(payload)
        elif kind is EventKind.FAILURE:
            self._fail(event)
        else:
            with self._lock:
                self._outer_done = True
            self._complete_if_idle()

    def _on_outer_value(self, value: Any) -> None:
        stale: list[SerialDisposable] = []
        with self._lock:
            if self._done:
                return
            if self._strategy is FlatMapStrategy.CONCAT and self._inners:
                self._queue.append(value)
                return
            if self._strategy is FlatMapStrategy.LATEST:
                stale = list(self._inners.values())
                self._inners.clear()
            inner_id, serial = self._register()
        for inner in stale:
            inner.dispose()
        self._subscribe(inner_id, serial, value)

    # --- inner ---

    def _register(self) -> tuple[int, SerialDisposable]:
        # Caller holds self._lock.
        inner_id = self._next_id
        self._next_id += 1
        serial = SerialDisposable()
        self._inners[inner_id] = serial
        return inner_id, serial

    def _subscribe(self, inner_id: int, serial: SerialDisposable, value: Any) -> None:
        inner_stream = self._transform(value)
        serial.inner = inner_stream.observe(
            lambda event: self._on_inner(inner_id, event)
        )

    def _on_inner(self, inner_id: int, event: Any) -> None:
        kind, _ = self._classify(event)
        with self._lock:
            if self._done or inner_id not in self._inners:
                return
            if kind is EventKind.VALUE:
                # Queued under the lock: once an inner is superseded its
                # later values are refused, earlier ones keep their place.
                self._deliveries.put(partial(self._emit, event))
        if kind is EventKind.VALUE:
            self._deliveries.drain()
        elif kind is EventKind.FAILURE:
            self._fail(event)
        else:
            self._finish_inner(inner_id)

    def _finish_inner(self, inner_id: int) -> None:
        following = None
        with self._lock:
            serial = self._inners.pop(inner_id, None)
            if self._queue and not self._done:
                value = self._queue.popleft()
                following = (*self._register(), value)
        if serial is not None:
            serial.dispose()
        if following is not None:
            self._subscribe(*following)
        else:
            self._complete_if_idle()

    # --- termination ---

    def _complete_if_idle(self) -> None:
        with self._lock:
            if self._done or not self._outer_done or self._inners or self._queue:
                return
            self._done = True
            self._deliveries.put(partial(self._emit, self._success_event))
        self._deliveries.drain()
        self.dispose()

    def _fail(self, event: Any) -> None:
        with self._lock:
            if self._done:
                return
            self._done = True
            self._deliveries.put(partial(self._emit, event))
        self._deliveries.drain()
        self.dispose()
