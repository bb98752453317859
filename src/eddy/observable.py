"""Observable values — a hot stream that always holds exactly one value.

Reading returns the last write. Every write emits one event carrying the
new value to all live observers. Writes from several threads are
serialized, so observers see them in write order; a write that races a
delivery already running on another thread is delivered by that thread.
There is no de-duplication: writing an equal value still emits.

A new observer receives the current value first.

Usage:
    name = Observable("Jim")
    name.observe(print)      # prints "Jim"
    name.value = "Jim Kirk"  # prints "Jim Kirk"
"""

from __future__ import annotations

from typing import TypeVar

from eddy.active import ActiveStream

T = TypeVar("T")


class Observable(ActiveStream[T]):
    """A single observable value."""

    def __init__(self, value: T) -> None:
        super().__init__(limit=1)
        self._buffer.append(value)

    @property
    def value(self) -> T:
        with self._lock:
            return self._buffer[-1]

    @value.setter
    def value(self, value: T) -> None:
        self.next(value)

    def get(self) -> T:
        """Read the value."""
        return self.value

    def set(self, value: T) -> None:
        """Write a new value and notify every observer."""
        self.next(value)

    def __repr__(self) -> str:
        return f"Observable({self.value!r})"
