"""eddy: reactive streams, cancellable operations and diff-aware collections."""

from importlib.metadata import version as _version

__version__ = _version("eddy")

from eddy.disposable import (
    NOT_DISPOSABLE,
    BlockDisposable,
    CompositeDisposable,
    Disposable,
    DisposeBag,
    SerialDisposable,
    SimpleDisposable,
)
from eddy.context import (
    IMMEDIATE,
    AsyncioContext,
    ExecutionContext,
    ExecutorContext,
    ImmediateContext,
    SerialContext,
    ThreadContext,
)
from eddy.errors import ChangesetError, EddyError
from eddy.flatten import FlatMapStrategy
from eddy.stream import Stream, Subscription
from eddy.active import ActiveStream
from eddy.observable import Observable
from eddy.changeset import CollectionEvent, apply_changeset
from eddy.collection import CollectionObservable, CollectionView, DerivedCollection
from eddy.operation import (
    Failure,
    Next,
    Operation,
    OperationEvent,
    OperationSink,
    Success,
)
# textual NOT auto-imported: opt-in only

__all__ = [
    "NOT_DISPOSABLE",
    "BlockDisposable",
    "CompositeDisposable",
    "Disposable",
    "DisposeBag",
    "SerialDisposable",
    "SimpleDisposable",
    "IMMEDIATE",
    "AsyncioContext",
    "ExecutionContext",
    "ExecutorContext",
    "ImmediateContext",
    "SerialContext",
    "ThreadContext",
    "ChangesetError",
    "EddyError",
    "FlatMapStrategy",
    "Stream",
    "Subscription",
    "ActiveStream",
    "Observable",
    "CollectionEvent",
    "apply_changeset",
    "CollectionObservable",
    "CollectionView",
    "DerivedCollection",
    "Failure",
    "Next",
    "Operation",
    "OperationEvent",
    "OperationSink",
    "Success",
]
