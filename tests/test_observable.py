"""Tests for Observable."""

import threading

from eddy import Observable, SerialContext


class TestObservable:
    def test_get_set(self):
        o = Observable(42)
        assert o.get() == 42
        o.set(100)
        assert o.get() == 100
        assert o.value == 100

    def test_value_property(self):
        o = Observable("a")
        o.value = "b"
        assert o.value == "b"

    def test_single_write_single_event(self):
        name = Observable("Jim")
        log = []
        name.observe(log.append)
        name.value = "Jim Kirk"
        assert log == ["Jim", "Jim Kirk"]

    def test_first_event_is_current_value(self):
        o = Observable(1)
        o.set(2)
        o.set(3)
        log = []
        o.observe(log.append)
        assert log == [3]

    def test_equal_writes_still_emit(self):
        o = Observable(42)
        log = []
        o.observe(log.append)
        o.set(42)
        assert log == [42, 42]

    def test_writes_delivered_in_order(self):
        o = Observable(0)
        a, b = [], []
        o.observe(a.append)
        o.observe(b.append)
        for i in range(1, 20):
            o.set(i)
        assert a == list(range(20))
        assert b == list(range(20))

    def test_dispose_stops_events(self):
        o = Observable(10)
        log = []
        d = o.observe(log.append)
        d.dispose()
        o.set(20)
        assert log == [10]

    def test_map_over_observable_is_hot(self):
        o = Observable(2)
        log = []
        o.map(lambda v: v * 10).observe(log.append)
        o.set(3)
        assert log == [20, 30]

    def test_repr(self):
        o = Observable(5)
        assert "Observable(5)" in repr(o)


class TestObservableThreads:
    def test_serial_context_sees_every_write_in_order(self):
        context = SerialContext()
        o = Observable(0)
        log = []
        done = threading.Event()

        def on_value(v):
            log.append(v)
            if v == 50:
                done.set()

        o.observe(on_value, context)
        for i in range(1, 51):
            o.set(i)
        done.wait(timeout=2)
        context.close()
        assert log == list(range(51))
