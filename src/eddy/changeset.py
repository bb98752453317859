"""Collection events and change-set arithmetic.

A CollectionEvent carries the collection after a mutation plus three sorted
index tuples describing how it got there:

- deletes: positions in the previous collection that are gone
- updates: positions in the previous collection whose value was replaced
- inserts: positions in the resulting collection that are new

Everything else survives and keeps its relative order. Moves are not
expressed, a moved element is a delete plus an insert.

Each element also carries a stable integer id (``ids``, parallel to
``collection``). Ids are assigned once, when an element enters a source
collection, and follow it through map/filter/sort. Derived views use them
to tell "same element, new value" from "different element, equal value".
"""

from __future__ import annotations

import itertools
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, MutableSequence, NamedTuple, Sequence, TypeVar

from eddy.errors import ChangesetError

T = TypeVar("T")
V = TypeVar("V")

# Element ids. itertools.count is thread-safe (C-level GIL atomic).
_id_counter = itertools.count(1)


def new_ids(count: int) -> list[int]:
    """Allocate count fresh element ids."""
    return [next(_id_counter) for _ in range(count)]


@dataclass(frozen=True)
class CollectionEvent(Generic[T]):
    """A collection snapshot and the change-set that produced it."""

    collection: tuple[T, ...]
    inserts: tuple[int, ...] = ()
    updates: tuple[int, ...] = ()
    deletes: tuple[int, ...] = ()
    ids: tuple[int, ...] = field(default=(), repr=False, compare=False)

    @classmethod
    def initial(cls, collection: Iterable[T], ids: Iterable[int] = ()) -> CollectionEvent[T]:
        """The event a new observer sees: everything inserted."""
        collection = tuple(collection)
        return cls(collection, inserts=tuple(range(len(collection))), ids=tuple(ids))

    @property
    def is_empty(self) -> bool:
        """True when nothing was inserted, updated or deleted."""
        return not (self.inserts or self.updates or self.deletes)

    def validate(self, previous_count: int) -> None:
        """Raise ChangesetError unless this event can follow a collection
        of previous_count elements."""
        _check_indices("deletes", self.deletes, previous_count)
        _check_indices("updates", self.updates, previous_count)
        _check_indices("inserts", self.inserts, len(self.collection))
        both = set(self.deletes).intersection(self.updates)
        if both:
            raise ChangesetError(
                f"indices {sorted(both)} are both deleted and updated"
            )
        expected = previous_count - len(self.deletes) + len(self.inserts)
        if expected != len(self.collection):
            raise ChangesetError(
                f"{previous_count} elements - {len(self.deletes)} deleted"
                f" + {len(self.inserts)} inserted != {len(self.collection)}"
            )
        if self.ids and len(self.ids) != len(self.collection):
            raise ChangesetError(
                f"{len(self.ids)} ids for {len(self.collection)} elements"
            )


class Changeset(NamedTuple):
    """Just the three index tuples of an event, without the snapshot."""

    inserts: tuple[int, ...] = ()
    updates: tuple[int, ...] = ()
    deletes: tuple[int, ...] = ()


def _check_indices(name: str, indices: Sequence[int], bound: int) -> None:
    previous = -1
    for index in indices:
        if index <= previous:
            raise ChangesetError(f"{name} must be strictly increasing: {indices}")
        previous = index
    if indices and indices[-1] >= bound:
        raise ChangesetError(f"{name} index {indices[-1]} out of range for {bound}")


def survivor_index(old_index: int, deletes: Sequence[int], inserts: Sequence[int]) -> int:
    """Position in the resulting collection of the element that was at
    old_index, which must not be deleted."""
    index = old_index - bisect_left(deletes, old_index)
    for inserted in inserts:
        if inserted > index:
            break
        index += 1
    return index


def patch(
    target: MutableSequence[V],
    event: CollectionEvent | Changeset,
    resolve: Callable[[int], V],
) -> None:
    """Apply event's change-set to target in place.

    resolve(new_index) supplies the value for an inserted or updated
    position of the resulting collection.
    """
    for index in event.updates:
        target[index] = resolve(survivor_index(index, event.deletes, event.inserts))
    for index in reversed(event.deletes):
        del target[index]
    for index in event.inserts:
        target.insert(index, resolve(index))


def apply_changeset(previous: Iterable[T], event: CollectionEvent[T]) -> list[T]:
    """Replay event against previous, taking values from event.collection."""
    result = list(previous)
    patch(result, event, event.collection.__getitem__)
    return result


def diff_ids(
    old_ids: Sequence[int], new_ids: Sequence[int], touched: set[int]
) -> tuple[tuple[int, ...], tuple[int, ...], tuple[int, ...]]:
    """Change-set between two id sequences as (inserts, updates, deletes).

    Ids present on both sides are survivors; those in ``touched`` are
    reported as updates. Survivors must keep their relative order.
    """
    old_set = set(old_ids)
    new_set = set(new_ids)
    deletes = tuple(i for i, key in enumerate(old_ids) if key not in new_set)
    updates = tuple(
        i for i, key in enumerate(old_ids) if key in new_set and key in touched
    )
    inserts = tuple(i for i, key in enumerate(new_ids) if key not in old_set)
    return inserts, updates, deletes
