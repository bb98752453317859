"""Exceptions raised by eddy.

Producer failures never surface here: they travel as Failure events. These
exceptions mark programmer errors that must fail loudly.
"""


class EddyError(Exception):
    """Base class for eddy errors."""


class ChangesetError(EddyError, ValueError):
    """A collection event violates the change-set invariants.

    Raised when indices are unsorted, duplicated, out of range, or when a
    position is listed as both deleted and updated. Seeing this means an
    incremental derivation has drifted from its upstream.
    """
