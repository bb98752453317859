"""Ordered delivery outside of locks.

Streams decide what to deliver under their own lock, but must not call out
to observers or contexts while holding it. They put() the delivery under
the lock and drain() after releasing it. Whichever thread finds the queue
idle runs everything queued, including work other threads (or the work
itself) add meanwhile, so deliveries always run in put() order and never
reentrantly.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable

Work = Callable[[], None]


class DeliveryQueue:
    __slots__ = ("_lock", "_pending", "_draining")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: deque[Work] = deque()
        self._draining = False

    def put(self, work: Work) -> None:
        with self._lock:
            self._pending.append(work)

    def drain(self) -> None:
        """Run pending work unless another call is already doing so."""
        with self._lock:
            if self._draining:
                return
            self._draining = True
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._draining = False
                        return
                    work = self._pending.popleft()
                work()
        except BaseException:
            # Work left behind runs on the next drain().
            with self._lock:
                self._draining = False
            raise
