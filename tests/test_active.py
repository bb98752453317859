"""Tests for ActiveStream — hot fan-out with replay."""

import threading

from eddy import ActiveStream, BlockDisposable


class TestFanOut:
    def test_multiple_observers(self):
        stream = ActiveStream()
        a, b = [], []
        stream.observe(a.append)
        stream.observe(b.append)
        stream.next("x")
        assert a == ["x"]
        assert b == ["x"]

    def test_dispose_removes_observer(self):
        stream = ActiveStream()
        received = []
        d = stream.observe(received.append)
        stream.next(1)
        d.dispose()
        stream.next(2)
        assert received == [1]
        assert stream.observer_count == 0

    def test_observing_never_runs_a_producer(self):
        runs = []
        stream = ActiveStream(producer=lambda sink: runs.append(sink))
        stream.observe(lambda v: None)
        stream.observe(lambda v: None)
        assert len(runs) == 1


class TestReplay:
    def test_no_replay_by_default(self):
        stream = ActiveStream()
        stream.next(1)
        received = []
        stream.observe(received.append)
        assert received == []

    def test_replays_last_limit_events(self):
        stream = ActiveStream(limit=2)
        for i in range(5):
            stream.next(i)
        received = []
        stream.observe(received.append)
        assert received == [3, 4]

    def test_replay_precedes_live_events(self):
        stream = ActiveStream(limit=1)
        stream.next("old")
        received = []
        stream.observe(received.append)
        stream.next("new")
        assert received == ["old", "new"]


class TestReentrancy:
    def test_observer_added_during_fanout_misses_that_event(self):
        stream = ActiveStream()
        late = []

        def first(value):
            if value == 1:
                stream.observe(late.append)

        stream.observe(first)
        stream.next(1)
        stream.next(2)
        assert late == [2]

    def test_observer_removed_during_fanout_misses_that_event(self):
        stream = ActiveStream()
        second_received = []
        handles = {}

        def first(value):
            handles["second"].dispose()

        stream.observe(first)
        handles["second"] = stream.observe(second_received.append)
        stream.next(1)
        assert second_received == []

    def test_reentrant_write_keeps_order(self):
        stream = ActiveStream()
        received = []

        def on_value(value):
            received.append(value)
            if value == 1:
                stream.next(2)

        stream.observe(on_value)
        stream.next(1)
        assert received == [1, 2]


class TestDispose:
    def test_releases_producer_and_observers(self):
        cleaned = []
        stream = ActiveStream(producer=lambda sink: BlockDisposable(lambda: cleaned.append(1)))
        handle = stream.observe(lambda v: None)
        stream.dispose()
        assert cleaned == [1]
        assert handle.is_disposed
        assert stream.observer_count == 0
        assert stream.is_disposed

    def test_observe_after_dispose_returns_disposed_handle(self):
        stream = ActiveStream(limit=1)
        stream.next(1)
        stream.dispose()
        received = []
        handle = stream.observe(received.append)
        assert handle.is_disposed
        assert received == []


class TestThreads:
    def test_concurrent_writers_each_delivered_once(self):
        stream = ActiveStream()
        received = []
        stream.observe(received.append)

        def writer(base):
            for i in range(100):
                stream.next(base + i)

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(received) == sorted(n * 1000 + i for n in range(4) for i in range(100))

    def test_observer_never_runs_under_the_stream_lock(self):
        stream = ActiveStream()
        received = []
        blocked = []

        def on_value(value):
            received.append(value)
            if value == 1:
                writer = threading.Thread(target=stream.next, args=(2,))
                writer.start()
                writer.join(timeout=2)
                blocked.append(writer.is_alive())

        stream.observe(on_value)
        stream.next(1)
        assert blocked == [False]
        assert received == [1, 2]
