"""Disposables — one-shot cancellation handles.

Every registration (stream observation, running operation, timer) hands back
a Disposable. dispose() flips it exactly once, under a lock, so concurrent
calls collapse to a single effect. Any cleanup attached to the handle runs
outside the lock.
"""

from __future__ import annotations

import threading
from typing import Callable, Iterable, Protocol, runtime_checkable


@runtime_checkable
class Disposable(Protocol):
    """Anything that can be cancelled once."""

    @property
    def is_disposed(self) -> bool: ...

    def dispose(self) -> None: ...


class SimpleDisposable:
    """A bare disposed flag."""

    __slots__ = ("_lock", "_disposed")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True

    def dispose_in(self, bag: CompositeDisposable) -> None:
        bag.add(self)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"{type(self).__name__}({state})"


class BlockDisposable(SimpleDisposable):
    """Runs a cleanup function on the first dispose()."""

    __slots__ = ("_cleanup",)

    def __init__(self, cleanup: Callable[[], None]) -> None:
        super().__init__()
        self._cleanup: Callable[[], None] | None = cleanup

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            cleanup, self._cleanup = self._cleanup, None
        if cleanup is not None:
            cleanup()


class CompositeDisposable(SimpleDisposable):
    """Owns a group of disposables and disposes them together.

    Adding to an already disposed composite disposes the newcomer at once.
    """

    __slots__ = ("_children",)

    def __init__(self, disposables: Iterable[Disposable] = ()) -> None:
        super().__init__()
        self._children: list[Disposable] = list(disposables)

    def add(self, disposable: Disposable | None) -> None:
        if disposable is None:
            return
        with self._lock:
            if not self._disposed:
                self._children.append(disposable)
                return
        disposable.dispose()

    def __iadd__(self, disposable: Disposable) -> CompositeDisposable:
        self.add(disposable)
        return self

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            children, self._children = self._children, []
        for child in children:
            child.dispose()


class SerialDisposable(SimpleDisposable):
    """Holds one replaceable inner disposable.

    Assigning a new inner disposes the previous one. Once the serial is
    disposed, anything assigned to it is disposed immediately.
    """

    __slots__ = ("_inner",)

    def __init__(self, inner: Disposable | None = None) -> None:
        super().__init__()
        self._inner = inner

    @property
    def inner(self) -> Disposable | None:
        return self._inner

    @inner.setter
    def inner(self, disposable: Disposable | None) -> None:
        with self._lock:
            if self._disposed:
                previous = disposable
            else:
                previous, self._inner = self._inner, disposable
        if previous is not None:
            previous.dispose()

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            inner, self._inner = self._inner, None
        if inner is not None:
            inner.dispose()


class DisposeBag(CompositeDisposable):
    """A CompositeDisposable usable as a context manager.

    Usage:
        with DisposeBag() as bag:
            bag += stream.observe(print)
            ...
        # everything observed inside the block is disposed here
    """

    __slots__ = ()

    def __enter__(self) -> DisposeBag:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class _NotDisposable:
    """Shared handle for registrations that hold nothing."""

    __slots__ = ()

    @property
    def is_disposed(self) -> bool:
        return False

    def dispose(self) -> None:
        pass

    def __repr__(self) -> str:
        return "NOT_DISPOSABLE"


NOT_DISPOSABLE = _NotDisposable()
