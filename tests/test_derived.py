"""Tests for derived collections — map, filter and sort computed incrementally."""

import random

import pytest

from eddy import ChangesetError, CollectionEvent, CollectionObservable, apply_changeset


def _record(view):
    events = []
    view.observe(events.append)
    return events


def _changes(event):
    return event.inserts, event.updates, event.deletes


class TestMap:
    def test_initial_population(self):
        c = CollectionObservable([1, 2, 3])
        doubled = c.map(lambda n: n * 2)
        assert doubled.collection == (2, 4, 6)
        events = _record(doubled)
        assert _changes(events[0]) == ((0, 1, 2), (), ())

    def test_same_indices_as_upstream(self):
        c = CollectionObservable([1, 2, 3])
        doubled = c.map(lambda n: n * 2)
        events = _record(doubled)
        with c.batch():
            c[0] = 10
            c.pop(1)
            c.append(4)
        assert doubled.collection == (20, 6, 8)
        assert _changes(events[-1]) == ((2,), (0,), (1,))

    def test_fn_called_only_for_changed_elements(self):
        calls = []

        def fn(n):
            calls.append(n)
            return n

        c = CollectionObservable([1, 2, 3])
        c.map(fn)
        calls.clear()
        c.append(4)
        c[0] = 5
        c.pop(1)
        assert calls == [4, 5]


class TestFilter:
    def test_scenario_append_passing_element(self):
        c = CollectionObservable([2, 3, 1])
        evens = c.filter(lambda n: n % 2 == 0)
        events = _record(evens)
        c.append(4)
        assert evens.collection == (2, 4)
        assert _changes(events[-1]) == ((1,), (), ())

    def test_failing_insert_is_silent(self):
        c = CollectionObservable([2])
        evens = c.filter(lambda n: n % 2 == 0)
        events = _record(evens)
        c.append(5)
        assert len(events) == 1

    def test_update_becomes_insert(self):
        c = CollectionObservable([2, 3, 4])
        evens = c.filter(lambda n: n % 2 == 0)
        events = _record(evens)
        c[1] = 6
        assert evens.collection == (2, 6, 4)
        assert _changes(events[-1]) == ((1,), (), ())

    def test_update_becomes_delete(self):
        c = CollectionObservable([2, 3, 4])
        evens = c.filter(lambda n: n % 2 == 0)
        events = _record(evens)
        c[2] = 5
        assert evens.collection == (2,)
        assert _changes(events[-1]) == ((), (), (1,))

    def test_update_stays_update(self):
        c = CollectionObservable([2, 3, 4])
        evens = c.filter(lambda n: n % 2 == 0)
        events = _record(evens)
        c[2] = 8
        assert evens.collection == (2, 8)
        assert _changes(events[-1]) == ((), (1,), ())

    def test_delete_translated(self):
        c = CollectionObservable([1, 2, 3, 4])
        evens = c.filter(lambda n: n % 2 == 0)
        events = _record(evens)
        c.pop(3)
        assert _changes(events[-1]) == ((), (), (1,))

    def test_predicate_called_only_for_changed_elements(self):
        calls = []

        def predicate(n):
            calls.append(n)
            return n > 0

        c = CollectionObservable([1, 2, 3])
        c.filter(predicate)
        calls.clear()
        c.append(4)
        c.pop(0)
        c[0] = 7
        assert calls == [4, 7]


class TestSort:
    def test_initial_order(self):
        c = CollectionObservable([3, 1, 2])
        ordered = c.sort()
        assert ordered.collection == (1, 2, 3)

    def test_insert_lands_in_order(self):
        c = CollectionObservable([3, 1])
        ordered = c.sort()
        events = _record(ordered)
        c.append(2)
        assert ordered.collection == (1, 2, 3)
        assert _changes(events[-1]) == ((1,), (), ())

    def test_update_in_place(self):
        c = CollectionObservable([10, 20, 30])
        ordered = c.sort()
        events = _record(ordered)
        c[1] = 25
        assert ordered.collection == (10, 25, 30)
        assert _changes(events[-1]) == ((), (1,), ())

    def test_update_that_moves_is_delete_plus_insert(self):
        c = CollectionObservable([10, 20, 30])
        ordered = c.sort()
        events = _record(ordered)
        c[0] = 40
        assert ordered.collection == (20, 30, 40)
        assert _changes(events[-1]) == ((2,), (), (0,))

    def test_swapped_updates(self):
        c = CollectionObservable([1, 2])
        ordered = c.sort()
        events = _record(ordered)
        with c.batch():
            c[0] = 3
            c[1] = 0
        assert ordered.collection == (0, 3)
        event = events[-1]
        assert apply_changeset([1, 2], event) == [0, 3]

    def test_ties_keep_upstream_order(self):
        c = CollectionObservable([("b", 1), ("a", 1), ("c", 0)])
        ordered = c.sort(key=lambda pair: pair[1])
        assert ordered.collection == (("c", 0), ("b", 1), ("a", 1))
        c.insert(0, ("z", 1))
        assert ordered.collection == (("c", 0), ("z", 1), ("b", 1), ("a", 1))

    def test_delete(self):
        c = CollectionObservable([3, 1, 2])
        ordered = c.sort()
        events = _record(ordered)
        c.pop(0)
        assert ordered.collection == (1, 2)
        assert _changes(events[-1]) == ((), (), (2,))


class TestChaining:
    def test_filter_map_sort(self):
        c = CollectionObservable([5, 2, 8, 1])
        view = c.filter(lambda n: n > 1).map(lambda n: -n).sort()
        assert view.collection == (-8, -5, -2)
        c.append(3)
        assert view.collection == (-8, -5, -3, -2)

    def test_new_observer_of_derived_gets_full_insert(self):
        c = CollectionObservable([1, 2, 3, 4])
        evens = c.filter(lambda n: n % 2 == 0)
        c.append(6)
        events = _record(evens)
        assert events[0].collection == (2, 4, 6)
        assert _changes(events[0]) == ((0, 1, 2), (), ())

    def test_sort_after_sort(self):
        c = CollectionObservable([0, 0])
        view = c.sort(key=lambda n: n % 3).sort(key=lambda n: n % 2)
        events = _record(view)
        c[0] = 1
        assert view.collection == (0, 1)
        assert _changes(events[-1]) == ((1,), (), (0,))

    def test_sort_map_sort(self):
        c = CollectionObservable([4, 2])
        view = c.sort().map(lambda n: n).sort(key=lambda n: -n)
        c[0] = 1
        assert view.collection == (2, 1)
        c.append(3)
        assert view.collection == (3, 2, 1)

    def test_filter_after_sort_sees_moves(self):
        c = CollectionObservable([1, 5, 3])
        view = c.sort().filter(lambda n: n > 2)
        events = _record(view)
        c[0] = 9
        assert view.collection == (3, 5, 9)
        assert _changes(events[-1]) == ((2,), (), ())

    def test_dispose_detaches(self):
        c = CollectionObservable([1])
        doubled = c.map(lambda n: n * 2)
        assert c.observer_count == 1
        doubled.dispose()
        assert c.observer_count == 0
        c.append(2)
        assert doubled.collection == (2,)


class TestConsistency:
    """A derived view always equals its transform applied fresh upstream."""

    @pytest.mark.parametrize("seed", range(60))
    def test_random_sequences(self, seed, random_mutation):
        rng = random.Random(seed)
        c = CollectionObservable(rng.randrange(100) for _ in range(8))
        mapped = c.map(lambda n: n * 3)
        filtered = c.filter(lambda n: n % 3 != 0)
        ordered = c.sort(key=lambda n: n % 10)
        chained = c.filter(lambda n: n > 30).map(lambda n: n // 2).sort()
        resorted = c.sort(key=lambda n: n % 10).sort(key=lambda n: n % 7)
        through = c.sort(key=lambda n: -n).filter(lambda n: n % 2 == 0).map(abs).sort(
            key=lambda n: n % 5
        )
        views = [mapped, filtered, ordered, chained, resorted, through]
        logs = [_record(view) for view in views]

        for _ in range(40):
            random_mutation(rng, c)
            upstream = list(c.collection)
            assert list(mapped.collection) == [n * 3 for n in upstream]
            assert list(filtered.collection) == [n for n in upstream if n % 3 != 0]
            assert list(ordered.collection) == sorted(upstream, key=lambda n: n % 10)
            assert list(chained.collection) == sorted(n // 2 for n in upstream if n > 30)
            assert list(resorted.collection) == sorted(
                sorted(upstream, key=lambda n: n % 10), key=lambda n: n % 7
            )
            assert list(through.collection) == sorted(
                (n for n in sorted(upstream, key=lambda n: -n) if n % 2 == 0),
                key=lambda n: n % 5,
            )

        for view, events in zip(views, logs):
            replayed = []
            for event in events:
                replayed = apply_changeset(replayed, event)
            assert tuple(replayed) == view.collection


    def test_many_elements(self):
        rng = random.Random(3)
        c = CollectionObservable(rng.randrange(1000) for _ in range(300))
        evens = c.filter(lambda n: n % 2 == 0)
        ordered = c.sort()
        for _ in range(300):
            choice = rng.randrange(3)
            if choice == 0:
                c.insert(rng.randrange(len(c) + 1), rng.randrange(1000))
            elif choice == 1:
                c[rng.randrange(len(c))] = rng.randrange(1000)
            else:
                c.pop(rng.randrange(len(c)))
        upstream = list(c.collection)
        assert list(evens.collection) == [n for n in upstream if n % 2 == 0]
        assert list(ordered.collection) == sorted(upstream)

class TestLoudFailures:
    def test_malformed_upstream_event(self):
        from eddy import ActiveStream
        from eddy.collection import MappedCollection

        upstream = ActiveStream()
        view = MappedCollection(upstream, lambda n: n)
        with pytest.raises(ChangesetError):
            upstream.next(CollectionEvent((1,), updates=(0,), ids=(1,)))
        assert view.collection == ()

    def test_event_without_ids(self):
        from eddy import ActiveStream
        from eddy.collection import FilteredCollection

        upstream = ActiveStream()
        FilteredCollection(upstream, bool)
        with pytest.raises(ChangesetError, match="id"):
            upstream.next(CollectionEvent((1,), inserts=(0,)))
