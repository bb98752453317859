"""Textual integration for eddy. Opt-in — requires textual.

TextualContext is an ExecutionContext for observers that touch widgets:

- on the app thread the work runs inline
- from any other thread it is marshaled with app.call_from_thread
- work is dropped while the app is not running or is paused
- NoMatches raised by widget queries is swallowed; other errors propagate

Textual coupling is isolated in this module; the core never imports it.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Paused apps, keyed by id(app).
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend delivery to widget observers during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


class TextualContext:
    """Runs observer work on the Textual app thread.

    Build it on the app thread (e.g. in on_mount):

        ui = TextualContext(self)
        status.observe(lambda s: self.query_one(Footer).update(s), ui)
    """

    __slots__ = ("_app", "_thread_id")

    def __init__(self, app) -> None:
        self._app = app
        self._thread_id = threading.get_ident()

    @property
    def is_synchronous(self) -> bool:
        return threading.get_ident() == self._thread_id

    def schedule(self, work) -> None:
        if not is_safe(self._app):
            return
        if threading.get_ident() != self._thread_id:
            self._app.call_from_thread(self._safe, work)
        else:
            self._safe(work)

    def _safe(self, work) -> None:
        if not is_safe(self._app):
            return
        try:
            work()
        except NoMatches:
            pass
