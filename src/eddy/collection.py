"""Observable collections with positional change-sets.

CollectionObservable is a hot stream of CollectionEvents over a list. Each
mutator changes the list and emits one event describing exactly what
changed; ``with collection.batch():`` folds several mutations into one
event. All mutations go through the stream's lock, so concurrent writers
are applied one after another and never interleave inside an event.

map(), filter() and sort() build DerivedCollections. A derived view
observes its upstream once and keeps its own items, ids and bookkeeping.
On every upstream event it re-evaluates the transform, predicate or sort
key only for inserted and updated elements, then emits its own minimal
change-set. After each upstream event is delivered, its collection equals
the transform applied fresh to the upstream collection.

New observers of any collection receive one event: the whole collection,
every position listed as an insert.

Usage:
    numbers = CollectionObservable([2, 3, 1])
    evens = numbers.filter(lambda n: n % 2 == 0)
    evens.observe(lambda e: print(e.collection, e.inserts))  # (2,) (0,)
    numbers.append(4)                                        # (2, 4) (1,)
"""

from __future__ import annotations

import difflib
import logging
import operator
from bisect import bisect_left
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Iterable, Iterator, Sequence, TypeVar

from eddy._positions import PositionIndex
from eddy.active import ActiveStream
from eddy.changeset import (
    Changeset,
    CollectionEvent,
    diff_ids,
    new_ids,
    patch,
    survivor_index,
)
from eddy.errors import ChangesetError

logger = logging.getLogger("eddy.collection")

T = TypeVar("T")
U = TypeVar("U")


class CollectionView(ActiveStream[CollectionEvent[T]]):
    """Read side shared by source and derived collections."""

    def __init__(self) -> None:
        super().__init__()
        self._items: list[T] = []
        self._ids: list[int] = []

    @property
    def collection(self) -> tuple[T, ...]:
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        with self._lock:
            return self._items[index]

    def __iter__(self) -> Iterator[T]:
        return iter(self.collection)

    def __contains__(self, item: object) -> bool:
        with self._lock:
            return item in self._items

    def next(self, event: CollectionEvent[T]) -> None:
        raise TypeError(f"{type(self).__name__} emits only through its own mutations")

    # --- derivation ---

    def map(self, fn: Callable[[T], U]) -> DerivedCollection[U]:
        """A view holding fn(element) for every element, position for position."""
        return MappedCollection(self, fn)

    def filter(self, predicate: Callable[[T], bool]) -> DerivedCollection[T]:
        """A view of the elements that satisfy predicate, in order."""
        return FilteredCollection(self, predicate)

    def sort(self, key: Callable[[T], Any] | None = None) -> DerivedCollection[T]:
        """A view sorted by key; equal keys keep upstream order."""
        return SortedCollection(self, key)

    # --- emission ---

    def _replay(self) -> list[CollectionEvent[T]]:
        return [CollectionEvent.initial(self._items, self._ids)]

    def _publish(
        self,
        previous_count: int,
        inserts: Sequence[int] = (),
        updates: Sequence[int] = (),
        deletes: Sequence[int] = (),
    ) -> None:
        # Caller holds self._lock and drains self._deliveries after releasing it.
        event = CollectionEvent(
            tuple(self._items),
            inserts=tuple(inserts),
            updates=tuple(updates),
            deletes=tuple(deletes),
            ids=tuple(self._ids),
        )
        if event.is_empty:
            return
        event.validate(previous_count)
        self._dispatch(event)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.collection)!r})"


class CollectionObservable(CollectionView[T]):
    """A mutable list whose every mutation is emitted as a change-set."""

    def __init__(self, items: Iterable[T] = ()) -> None:
        super().__init__()
        self._items = list(items)
        self._ids = new_ids(len(self._items))
        self._batch_depth = 0
        self._batch_origin: list[int] = []
        self._batch_touched: set[int] = set()

    # --- mutations ---

    def append(self, item: T) -> None:
        with self._writing():
            self._insert_at(len(self._items), item)

    def extend(self, items: Iterable[T]) -> None:
        items = list(items)
        if not items:
            return
        with self._writing():
            start = len(self._items)
            self._items.extend(items)
            self._ids.extend(new_ids(len(items)))
            self._changed(start, inserts=range(start, start + len(items)))

    def insert(self, index: int, item: T) -> None:
        """Insert before index. Out-of-range indices clamp, as list.insert does."""
        index = operator.index(index)
        with self._writing():
            count = len(self._items)
            if index < 0:
                index = max(count + index, 0)
            self._insert_at(min(index, count), item)

    def __setitem__(self, index: int, item: T) -> None:
        with self._writing():
            index = self._normalize(index, "assignment")
            self._items[index] = item
            self._changed(len(self._items), updates=(index,), touched=(self._ids[index],))

    def update(self, index: int, item: T) -> None:
        """Replace the element at index, keeping its identity."""
        self[index] = item

    def pop(self, index: int = -1) -> T:
        with self._writing():
            if not self._items:
                raise IndexError("pop from empty collection")
            return self._pop_at(self._normalize(index, "pop"))

    def remove_at(self, index: int) -> T:
        return self.pop(index)

    def remove_last(self) -> T:
        return self.pop()

    def __delitem__(self, index: int) -> None:
        self.pop(index)

    def remove(self, item: T) -> None:
        """Remove the first element equal to item. ValueError if absent."""
        with self._writing():
            self._pop_at(self._items.index(item))

    def clear(self) -> None:
        with self._writing():
            count = len(self._items)
            if not count:
                return
            self._items.clear()
            self._ids.clear()
            self._changed(count, deletes=range(count))

    def remove_all(self) -> None:
        self.clear()

    def replace(self, items: Iterable[T], diff: bool = False) -> None:
        """Swap in a whole new list of items.

        Without diff every old element is deleted and every new one
        inserted. With diff, difflib.SequenceMatcher aligns old and new:
        equal runs keep their identity, same-length replaced runs become
        updates, everything else is deleted and inserted. diff needs
        hashable elements.
        """
        items = list(items)
        with self._writing():
            count = len(self._items)
            if not diff:
                if not count and not items:
                    return
                self._items = items
                self._ids = new_ids(len(items))
                self._changed(count, inserts=range(len(items)), deletes=range(count))
                return

            old_ids = self._ids
            ids: list[int] = []
            touched: list[int] = []
            matcher = difflib.SequenceMatcher(None, self._items, items, autojunk=False)
            for tag, i1, i2, j1, j2 in matcher.get_opcodes():
                if tag == "equal":
                    ids.extend(old_ids[i1:i2])
                elif tag == "replace" and i2 - i1 == j2 - j1:
                    ids.extend(old_ids[i1:i2])
                    touched.extend(old_ids[i1:i2])
                elif tag in ("replace", "insert"):
                    ids.extend(new_ids(j2 - j1))
                # "delete": the old ids simply do not carry over
            inserts, updates, deletes = diff_ids(old_ids, ids, set(touched))
            self._items = items
            self._ids = ids
            self._changed(
                count, inserts=inserts, updates=updates, deletes=deletes, touched=touched
            )

    @contextmanager
    def batch(self):
        """Fold every mutation inside the block into a single event.

        Other threads' mutations wait until the block exits. Nested batches
        emit once, when the outermost one exits.

        Usage:
            with todos.batch():
                todos.append("write")
                todos.remove("plan")
            # observers see one event: one insert, one delete
        """
        with self._writing():
            if self._batch_depth == 0:
                self._batch_origin = list(self._ids)
                self._batch_touched = set()
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self._flush_batch()

    # --- internals ---

    @contextmanager
    def _writing(self):
        # Mutate under the lock, deliver the resulting event after it.
        try:
            with self._lock:
                yield
        finally:
            self._deliveries.drain()

    def _normalize(self, index: int, action: str) -> int:
        index = operator.index(index)
        count = len(self._items)
        if index < 0:
            index += count
        if not 0 <= index < count:
            raise IndexError(f"collection {action} index out of range")
        return index

    def _insert_at(self, index: int, item: T) -> None:
        count = len(self._items)
        self._items.insert(index, item)
        self._ids.insert(index, new_ids(1)[0])
        self._changed(count, inserts=(index,))

    def _pop_at(self, index: int) -> T:
        count = len(self._items)
        item = self._items.pop(index)
        self._ids.pop(index)
        self._changed(count, deletes=(index,))
        return item

    def _changed(
        self,
        previous_count: int,
        inserts: Iterable[int] = (),
        updates: Iterable[int] = (),
        deletes: Iterable[int] = (),
        touched: Iterable[int] = (),
    ) -> None:
        # Caller holds self._lock.
        if self._batch_depth:
            self._batch_touched.update(touched)
            return
        self._publish(previous_count, tuple(inserts), tuple(updates), tuple(deletes))

    def _flush_batch(self) -> None:
        origin, self._batch_origin = self._batch_origin, []
        touched, self._batch_touched = self._batch_touched, set()
        inserts, updates, deletes = diff_ids(origin, self._ids, touched)
        self._publish(len(origin), inserts, updates, deletes)


class DerivedCollection(CollectionView[T]):
    """A collection computed incrementally from an upstream collection.

    Subclasses set up their state, then call _connect(); the upstream replays
    its contents as one all-insert event, which populates the view through
    the same code path as every later change.
    """

    def __init__(self) -> None:
        super().__init__()
        self._upstream_count = 0

    def _connect(self, upstream: CollectionView) -> None:
        self._resources.add(upstream.observe(self._on_upstream))

    def _on_upstream(self, event: CollectionEvent) -> None:
        with self._lock:
            if len(event.ids) != len(event.collection):
                raise ChangesetError("collection events need one id per element")
            event.validate(self._upstream_count)
            previous_count = len(self._items)
            changes = self._apply(event)
            self._upstream_count = len(event.collection)
            self._publish(previous_count, *changes)
        self._deliveries.drain()

    def _apply(self, event: CollectionEvent) -> Changeset:
        """Fold event into this view's state and return the view's own change-set."""
        raise NotImplementedError

    def _patch(self, changes: Changeset, fresh: dict[int, tuple[int, T]]) -> None:
        # fresh: new position -> (id, value) for every inserted or updated position
        patch(self._items, changes, lambda position: fresh[position][1])
        patch(self._ids, changes, lambda position: fresh[position][0])

    def dispose(self) -> None:
        """Stop following the upstream and drop every observer."""
        logger.debug("Detaching %s from its upstream", type(self).__name__)
        super().dispose()


class MappedCollection(DerivedCollection[U]):
    """fn applied element-wise; positions map one to one."""

    def __init__(self, upstream: CollectionView, fn: Callable[[Any], U]) -> None:
        super().__init__()
        self._fn = fn
        self._connect(upstream)

    def _apply(self, event: CollectionEvent) -> Changeset:
        fn, collection = self._fn, event.collection
        changes = Changeset(event.inserts, event.updates, event.deletes)
        patch(self._items, changes, lambda index: fn(collection[index]))
        patch(self._ids, changes, event.ids.__getitem__)
        return changes


class FilteredCollection(DerivedCollection[T]):
    """Elements passing a predicate, in upstream order.

    An upstream update becomes an update if the element passes before and
    after, an insert if it starts passing, a delete if it stops.

    Every upstream element sits in a PositionIndex marked with whether it
    passes, so the view position of upstream index i is the number of
    marked elements before it.
    """

    def __init__(self, upstream: CollectionView, predicate: Callable[[T], bool]) -> None:
        super().__init__()
        self._predicate = predicate
        self._passes = PositionIndex()
        self._connect(upstream)

    def _apply(self, event: CollectionEvent) -> Changeset:
        passes, collection = self._passes, event.collection
        landed = [survivor_index(i, event.deletes, event.inserts) for i in event.updates]
        updated = [bool(self._predicate(collection[i])) for i in landed]
        inserted = [bool(self._predicate(collection[i])) for i in event.inserts]

        # Positions in the view before the event.
        deletes = [passes.marked_before(i) for i in event.deletes if passes.mark_at(i)]
        updates: list[int] = []
        before = [passes.mark_at(i) for i in event.updates]
        for i, was, now in zip(event.updates, before, updated):
            if was:
                (updates if now else deletes).append(passes.marked_before(i))

        for i, now in zip(event.updates, updated):
            passes.set_mark(i, now)
        for i in reversed(event.deletes):
            passes.pop(i)
        for i, now in zip(event.inserts, inserted):
            passes.insert(i, event.ids[i], now)

        # Positions in the view after it.
        inserts: list[int] = []
        fresh: dict[int, tuple[int, T]] = {}
        for i, was, now in zip(landed, before, updated):
            if now:
                position = passes.marked_before(i)
                fresh[position] = (event.ids[i], collection[i])
                if not was:
                    inserts.append(position)
        for i, now in zip(event.inserts, inserted):
            if now:
                position = passes.marked_before(i)
                fresh[position] = (event.ids[i], collection[i])
                inserts.append(position)

        changes = Changeset(tuple(sorted(inserts)), tuple(sorted(updates)), tuple(sorted(deletes)))
        self._patch(changes, fresh)
        return changes


def _identity(value: Any) -> Any:
    return value


class SortedCollection(DerivedCollection[T]):
    """Elements ordered by key, ties in upstream order.

    Deleted and updated elements leave the order, updated and inserted ones
    go back in by binary search. An updated element whose place relative to
    the untouched elements did not change is reported as an update at its
    old position; one that moved becomes a delete plus an insert.

    Two PositionIndexes hold the upstream order (for ties) and the sorted
    order, so an event costs a few logarithmic lookups per changed element.
    """

    def __init__(
        self, upstream: CollectionView, key: Callable[[T], Any] | None = None
    ) -> None:
        super().__init__()
        self._key = key if key is not None else _identity
        self._ranks: dict[int, Any] = {}
        self._upstream = PositionIndex()
        self._order = PositionIndex()
        self._connect(upstream)

    def _precedes(self, key: int, other: int) -> bool:
        rank, other_rank = self._ranks[key], self._ranks[other]
        if rank < other_rank:
            return True
        if other_rank < rank:
            return False
        return self._upstream.position(key) < self._upstream.position(other)

    def _apply(self, event: CollectionEvent) -> Changeset:
        upstream, order, collection = self._upstream, self._order, event.collection
        removed = [upstream.key_at(i) for i in event.deletes]
        values: dict[int, T] = {}
        changed: list[int] = []
        for i in event.updates:
            element = upstream.key_at(i)
            changed.append(element)
            values[element] = collection[survivor_index(i, event.deletes, event.inserts)]
        added = [event.ids[i] for i in event.inserts]
        values.update((event.ids[i], collection[i]) for i in event.inserts)
        ranks = {element: self._key(value) for element, value in values.items()}

        # An element moved by the upstream is both removed and added: it
        # leaves under its old rank and comes back under its new one.
        old_position = {element: order.position(element) for element in (*removed, *changed)}
        for position in sorted(old_position.values(), reverse=True):
            order.pop(position)
        for i in reversed(event.deletes):
            upstream.pop(i)
        for i in event.inserts:
            upstream.insert(i, event.ids[i])
        for element in removed:
            del self._ranks[element]
        self._ranks.update(ranks)

        for element in (*changed, *added):
            order.insert(order.bisect(partial(self._precedes, element)), element)
        new_position = {element: order.position(element) for element in (*changed, *added)}

        kept, moved = self._split_updates(old_position, new_position, changed)
        deletes = sorted([old_position[e] for e in removed] + [old_position[e] for e in moved])
        inserts = sorted([new_position[e] for e in added] + [new_position[e] for e in moved])
        changes = Changeset(tuple(inserts), tuple(kept), tuple(deletes))
        self._patch(changes, {new_position[e]: (e, values[e]) for e in values})
        return changes

    @staticmethod
    def _split_updates(
        old_position: dict[int, int],
        new_position: dict[int, int],
        changed: list[int],
    ) -> tuple[list[int], list[int]]:
        """Old positions of updates that stay in place, and ids that moved.

        old_position covers every element that left the order, new_position
        every element that went back in. The rest are untouched and bound
        the gaps of both orders. An updated element stays in place when it
        sits in the same gap before and after, and after any update already
        kept in that gap.
        """
        left = sorted(old_position.values())
        entered = sorted(new_position.values())
        kept: list[int] = []
        moved: list[int] = []
        last_gap = last_old = -1
        for element in sorted(changed, key=new_position.__getitem__):
            old, new = old_position[element], new_position[element]
            gap = old - bisect_left(left, old)
            if gap == new - bisect_left(entered, new) and (gap != last_gap or old > last_old):
                kept.append(old)
                last_gap, last_old = gap, old
            else:
                moved.append(element)
        return sorted(kept), moved
