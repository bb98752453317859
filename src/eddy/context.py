"""Execution contexts — where observer callbacks run.

Every observation is made under an explicit context. Streams never call an
observer directly; they hand a zero-argument callable to
``context.schedule`` and the context decides when and on which thread it
runs. IMMEDIATE runs the work inline.

There is no ambient "current context": pick one per observe() call.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from concurrent.futures import Executor, Future
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger("eddy.context")

Work = Callable[[], None]


@runtime_checkable
class ExecutionContext(Protocol):
    """Capability to run a unit of work."""

    @property
    def is_synchronous(self) -> bool: ...

    def schedule(self, work: Work) -> None: ...


class ImmediateContext:
    """Runs work inline, in the caller's thread."""

    __slots__ = ()

    @property
    def is_synchronous(self) -> bool:
        return True

    def schedule(self, work: Work) -> None:
        work()

    def __repr__(self) -> str:
        return "IMMEDIATE"


IMMEDIATE = ImmediateContext()


class ThreadContext:
    """Inline on the owning thread, marshaled from everywhere else.

    The owning thread is the one that constructs the context. From any other
    thread the work is passed to ``scheduler`` (a UI toolkit's
    call_from_thread, say), which must eventually run it on the owning thread.

    Usage:
        ui = ThreadContext(app.call_from_thread)
        observable.observe(render, ui)
    """

    __slots__ = ("_scheduler", "_thread_id")

    def __init__(self, scheduler: Callable[[Work], object]) -> None:
        self._scheduler = scheduler
        self._thread_id = threading.get_ident()

    @property
    def is_synchronous(self) -> bool:
        return threading.get_ident() == self._thread_id

    def schedule(self, work: Work) -> None:
        if threading.get_ident() == self._thread_id:
            work()
        else:
            self._scheduler(work)


class ExecutorContext:
    """Submits work to a concurrent.futures Executor.

    A thread pool gives no ordering guarantee between submitted items. Use
    SerialContext when one observer must see events in emission order.
    """

    __slots__ = ("_executor",)

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    @property
    def is_synchronous(self) -> bool:
        return False

    def schedule(self, work: Work) -> None:
        future = self._executor.submit(work)
        future.add_done_callback(_log_failure)


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.exception("Scheduled work raised", exc_info=exc)


_STOP = object()


class SerialContext:
    """One daemon worker thread draining a FIFO queue.

    Work items run strictly one at a time in the order they were scheduled.
    Work scheduled from inside a running item is queued behind it, never run
    reentrantly.
    """

    def __init__(self, name: str = "eddy-serial") -> None:
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._closed = False
        self._thread = threading.Thread(target=self._drain, name=name, daemon=True)
        self._thread.start()

    @property
    def is_synchronous(self) -> bool:
        return False

    def schedule(self, work: Work) -> None:
        if self._closed:
            logger.debug("Dropping work scheduled on closed %r", self)
            return
        self._queue.put(work)

    def close(self, wait: bool = True) -> None:
        """Stop the worker after the work already queued has run."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        if wait and threading.current_thread() is not self._thread:
            self._thread.join()

    def _drain(self) -> None:
        while True:
            work = self._queue.get()
            if work is _STOP:
                return
            try:
                work()
            except Exception:
                logger.exception("Work scheduled on %s raised", self._thread.name)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"SerialContext({self._thread.name!r}, {state})"


class AsyncioContext:
    """Runs work on an asyncio event loop, from any thread."""

    __slots__ = ("_loop",)

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def is_synchronous(self) -> bool:
        return False

    def schedule(self, work: Work) -> None:
        self._loop.call_soon_threadsafe(work)
