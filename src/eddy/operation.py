"""Operations — cold, terminating, cancellable streams.

An Operation wraps a producer ``producer(sink) -> Disposable | None``. Every
observe() runs the producer once with a fresh OperationSink. The sink
enforces the lifecycle whatever the producer does:

    IDLE -> RUNNING -> SUCCEEDED | FAILED | CANCELLED

- next(value) is delivered only while RUNNING.
- The first failure(error) or success() is delivered, moves the sink to its
  terminal state and disposes the producer's work disposable.
- Once the terminal event has been delivered the observation disposes
  itself, so the returned Disposable reports is_disposed.
- Anything after that is a silent no-op.
- Disposing the observation cancels: the work disposable is disposed and
  nothing more is delivered.

Events are a tagged union: Next(value), Failure(error), Success().

Usage:
    def fetch(sink):
        timer = threading.Timer(1.0, lambda: (sink.next("done"), sink.success()))
        timer.start()
        return BlockDisposable(timer.cancel)

    Operation(fetch).map(str.upper).observe(print)
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Generic, Iterable, TypeVar, Union

from eddy._delivery import DeliveryQueue
from eddy.active import ActiveStream
from eddy.context import IMMEDIATE, ExecutionContext
from eddy.disposable import CompositeDisposable, Disposable, SerialDisposable
from eddy.flatten import EventKind, FlatMapStrategy, Flatten
from eddy.stream import Stream, Subscription

logger = logging.getLogger("eddy.operation")

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")


# --- events ---


@dataclass(frozen=True)
class Next(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure(Generic[E]):
    error: E


@dataclass(frozen=True)
class Success:
    pass


OperationEvent = Union[Next[T], Failure[Any], Success]


def classify(event: OperationEvent) -> tuple[EventKind, Any]:
    match event:
        case Next(value):
            return EventKind.VALUE, value
        case Failure(error):
            return EventKind.FAILURE, error
        case Success():
            return EventKind.SUCCESS, None
        case _:
            raise TypeError(f"not an operation event: {event!r}")


# --- sink ---


class State(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OperationSink(Generic[T]):
    """What a producer pushes into. Also the observation's work handle.

    State checks and queueing happen under the sink lock and delivery after
    it, in queue order, so a terminal event can never be overtaken by a
    next() racing in from another thread.
    """

    __slots__ = ("_subscription", "_lock", "_state", "_work", "_deliveries")

    def __init__(self, subscription: Subscription) -> None:
        self._subscription = subscription
        self._lock = threading.RLock()
        self._state = State.IDLE
        self._work: Disposable | None = None
        self._deliveries = DeliveryQueue()

    @property
    def state(self) -> State:
        return self._state

    @property
    def is_disposed(self) -> bool:
        """True once no further event can be delivered."""
        return self._state not in (State.IDLE, State.RUNNING)

    def start(self, producer: Callable[[OperationSink[T]], Disposable | None]) -> None:
        with self._lock:
            if self._state is not State.IDLE:
                return
            self._state = State.RUNNING
        try:
            work = producer(self)
        except Exception as exc:
            logger.debug("Producer raised; delivering as failure", exc_info=True)
            self.failure(exc)
            return
        if work is None:
            return
        with self._lock:
            if self._state is State.RUNNING:
                self._work = work
                return
        work.dispose()

    def next(self, value: T) -> None:
        with self._lock:
            if self._state is not State.RUNNING:
                return
            self._deliveries.put(partial(self._subscription.send, Next(value)))
        self._deliveries.drain()

    def failure(self, error: Any) -> None:
        self._terminate(State.FAILED, Failure(error))

    def success(self) -> None:
        self._terminate(State.SUCCEEDED, Success())

    def send(self, event: OperationEvent[T]) -> None:
        """Route a ready-made event to next/failure/success."""
        match event:
            case Next(value):
                self.next(value)
            case Failure(error):
                self.failure(error)
            case Success():
                self.success()
            case _:
                raise TypeError(f"not an operation event: {event!r}")

    def _terminate(self, state: State, event: OperationEvent[T]) -> None:
        with self._lock:
            if self._state is not State.RUNNING:
                return
            self._state = state
            self._deliveries.put(partial(self._subscription.finish, event))
            work, self._work = self._work, None
        self._deliveries.drain()
        if work is not None:
            work.dispose()

    def dispose(self) -> None:
        """Cancel: release the work, deliver nothing more."""
        with self._lock:
            if self.is_disposed:
                return
            self._state = State.CANCELLED
            work, self._work = self._work, None
        logger.debug("Operation cancelled")
        if work is not None:
            work.dispose()


# --- operation ---


class Operation(Stream[OperationEvent[T]]):
    """A cold stream of Next events ended by at most one Failure or Success."""

    def __init__(self, producer: Callable[[OperationSink[T]], Disposable | None]) -> None:
        super().__init__(producer)

    def observe(
        self,
        observer: Callable[[OperationEvent[T]], None],
        context: ExecutionContext = IMMEDIATE,
    ) -> Disposable:
        subscription = Subscription(observer, context)
        sink: OperationSink[T] = OperationSink(subscription)
        subscription.add(sink)
        sink.start(self._producer)
        return subscription

    # --- constructors ---

    @classmethod
    def succeeded(cls, value: T) -> Operation[T]:
        """Emits value, then succeeds."""

        def producer(sink: OperationSink[T]) -> None:
            sink.next(value)
            sink.success()

        return cls(producer)

    @classmethod
    def failed(cls, error: Any) -> Operation[T]:
        """Fails with error straight away."""
        return cls(lambda sink: sink.failure(error))

    @classmethod
    def from_iterable(cls, values: Iterable[T]) -> Operation[T]:
        """Emits each value in turn, then succeeds. Stops early if cancelled."""

        def producer(sink: OperationSink[T]) -> None:
            for value in values:
                if sink.is_disposed:
                    return
                sink.next(value)
            sink.success()

        return cls(producer)

    @classmethod
    def from_callable(cls, fn: Callable[[], T]) -> Operation[T]:
        """Emits fn()'s result and succeeds, or fails with what fn raised."""

        def producer(sink: OperationSink[T]) -> None:
            sink.next(fn())
            sink.success()

        return cls(producer)

    # --- observing ---

    def observe_next(
        self, fn: Callable[[T], None], context: ExecutionContext = IMMEDIATE
    ) -> Disposable:
        """Call fn with every next value; ignore termination."""
        return self.observe(lambda e: fn(e.value) if isinstance(e, Next) else None, context)

    def observe_failure(
        self, fn: Callable[[Any], None], context: ExecutionContext = IMMEDIATE
    ) -> Disposable:
        """Call fn with the error if the operation fails."""
        return self.observe(lambda e: fn(e.error) if isinstance(e, Failure) else None, context)

    def observe_success(
        self, fn: Callable[[], None], context: ExecutionContext = IMMEDIATE
    ) -> Disposable:
        """Call fn when the operation succeeds."""
        return self.observe(lambda e: fn() if isinstance(e, Success) else None, context)

    # --- operators ---

    def map(self, fn: Callable[[T], U]) -> Operation[U]:
        """Transform next values; termination passes through untouched."""

        def producer(sink: OperationSink[U]) -> Disposable:
            def on_event(event: OperationEvent[T]) -> None:
                match event:
                    case Next(value):
                        sink.next(fn(value))
                    case _:
                        sink.send(event)

            return self.observe(on_event)

        return Operation(producer)

    def filter(self, predicate: Callable[[T], bool]) -> Operation[T]:
        """Drop next values failing predicate. Failure and success always pass."""

        def producer(sink: OperationSink[T]) -> Disposable:
            def on_event(event: OperationEvent[T]) -> None:
                match event:
                    case Next(value):
                        if predicate(value):
                            sink.next(value)
                    case _:
                        sink.send(event)

            return self.observe(on_event)

        return Operation(producer)

    def skip(self, count: int) -> Operation[T]:
        """Drop the first count next values."""

        def producer(sink: OperationSink[T]) -> Disposable:
            remaining = [count]

            def on_event(event: OperationEvent[T]) -> None:
                if isinstance(event, Next) and remaining[0] > 0:
                    remaining[0] -= 1
                    return
                sink.send(event)

            return self.observe(on_event)

        return Operation(producer)

    def take(self, count: int) -> Operation[T]:
        """Pass the first count next values, then succeed and cancel upstream."""

        def producer(sink: OperationSink[T]) -> Disposable | None:
            if count <= 0:
                sink.success()
                return None
            taken = [0]

            def on_event(event: OperationEvent[T]) -> None:
                match event:
                    case Next(value):
                        taken[0] += 1
                        sink.next(value)
                        if taken[0] >= count:
                            sink.success()
                    case _:
                        sink.send(event)

            return self.observe(on_event)

        return Operation(producer)

    def observe_on(self, context: ExecutionContext) -> Operation[T]:
        """Deliver this operation's events through context."""
        return Operation(lambda sink: self.observe(sink.send, context))

    def execute_on(self, context: ExecutionContext) -> Operation[T]:
        """Start the producer through context instead of inline."""

        def producer(sink: OperationSink[T]) -> Disposable:
            serial = SerialDisposable()

            def run() -> None:
                if not serial.is_disposed:
                    serial.inner = self.observe(sink.send)

            context.schedule(run)
            return serial

        return Operation(producer)

    def flat_map(
        self, strategy: FlatMapStrategy, fn: Callable[[T], Operation[U]]
    ) -> Operation[U]:
        """Observe fn(value) for every next value, flattened per strategy.

        Fails on the first failure anywhere; succeeds once this operation
        and every inner operation have succeeded.
        """
        return Operation(
            lambda sink: Flatten(strategy, fn, sink.send, classify, Success()).run(self)
        )

    def flat_map_error(self, fn: Callable[[Any], Operation[T]]) -> Operation[T]:
        """On failure, continue with fn(error) instead of failing.

        A failure of the replacement operation does propagate.
        """

        def producer(sink: OperationSink[T]) -> Disposable:
            fallback = SerialDisposable()

            def on_event(event: OperationEvent[T]) -> None:
                match event:
                    case Failure(error):
                        fallback.inner = fn(error).observe(sink.send)
                    case _:
                        sink.send(event)

            return CompositeDisposable([self.observe(on_event), fallback])

        return Operation(producer)

    def retry(self, times: int) -> Operation[T]:
        """Re-observe on failure, up to times more attempts.

        Next values of failed attempts are delivered as they happen.
        """

        def producer(sink: OperationSink[T]) -> Disposable:
            serial = SerialDisposable()
            lock = threading.Lock()
            attempts = [0]

            def attempt() -> None:
                with lock:
                    attempts[0] += 1
                    number = attempts[0]

                def on_event(event: OperationEvent[T]) -> None:
                    if isinstance(event, Failure) and number <= times:
                        logger.debug("Attempt %d failed, retrying", number)
                        attempt()
                    else:
                        sink.send(event)

                disposable = self.observe(on_event)
                with lock:
                    superseded = attempts[0] != number
                if superseded:
                    disposable.dispose()
                else:
                    serial.inner = disposable

            attempt()
            return serial

        return Operation(producer)

    def share(self) -> ActiveStream[OperationEvent[T]]:
        """Run this operation once and fan its events out to every observer.

        The latest next value and the terminal event are replayed to
        observers that arrive later.
        """
        return SharedOperation(self)


class SharedOperation(ActiveStream[OperationEvent[T]]):
    """Hot view of a single run of an Operation."""

    def __init__(self, source: Operation[T]) -> None:
        super().__init__(limit=2, producer=source.observe)

    def _store(self, event: OperationEvent[T]) -> None:
        if isinstance(event, Next):
            self._buffer.clear()
        self._buffer.append(event)
