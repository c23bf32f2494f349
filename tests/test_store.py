"""Tests for Store: reads, writes, propagation and subscriptions."""

import gc
import logging
import threading

import pytest

from atomx import (
    CyclicDependency,
    Errored,
    NotWritable,
    ReadonlyAtom,
    Settled,
    Status,
    Store,
    atom,
)


class TestRead:
    def test_primitive_initial(self):
        store = Store()
        assert store.read(atom(10)) == Settled(10)

    def test_lazy_eval(self):
        store = Store()
        call_count = 0
        price = atom(5)

        def read(get):
            nonlocal call_count
            call_count += 1
            return get(price) * 2

        doubled = atom(read)
        assert call_count == 0  # not yet evaluated
        assert store.get(doubled) == 10
        assert call_count == 1

    def test_caches_until_dependency_changes(self):
        store = Store()
        call_count = 0
        price = atom(5)

        def read(get):
            nonlocal call_count
            call_count += 1
            return get(price) * 2

        doubled = atom(read)
        first = store.read(doubled)
        second = store.read(doubled)
        assert call_count == 1  # cached, no re-eval
        assert first.value is second.value

    def test_invalidation(self):
        store = Store()
        price = atom(10)
        doubled = atom(lambda get: get(price) * 2)
        assert store.get(doubled) == 20
        store.write(price, 25)
        assert store.get(doubled) == 50

    def test_chained(self):
        store = Store()
        base = atom(3)
        doubled = atom(lambda get: get(base) * 2)
        quadrupled = atom(lambda get: get(doubled) * 2)
        assert store.get(quadrupled) == 12
        store.write(base, 5)
        assert store.get(quadrupled) == 20

    def test_stores_are_independent(self):
        price = atom(1)
        doubled = atom(lambda get: get(price) * 2)
        one, two = Store(), Store()
        one.write(price, 10)
        assert one.get(doubled) == 20
        assert two.get(doubled) == 2


class TestDependencies:
    def test_edges_are_symmetric(self):
        store = Store()
        a = atom(1)
        b = atom(lambda get: get(a) + 1)
        store.get(b)
        assert store.dependencies(b) == {a}
        assert store.dependents(a) == {b}

    def test_dependencies_replaced_on_recompute(self):
        """A dependency no longer read loses its dependent edge."""
        store = Store()
        flag = atom(True)
        a = atom(1)
        b = atom(2)
        c = atom(lambda get: get(a) if get(flag) else get(b))
        assert store.get(c) == 1
        assert store.dependencies(c) == {flag, a}

        store.write(flag, False)
        assert store.get(c) == 2
        assert store.dependencies(c) == {flag, b}
        assert c not in store.dependents(a)
        assert c in store.dependents(b)

    def test_dropped_dependency_no_longer_invalidates(self):
        store = Store()
        calls = []
        flag = atom(True)
        a = atom(1)
        c = atom(lambda get: calls.append(1) or (get(a) if get(flag) else 0))
        store.get(c)
        store.write(flag, False)
        store.get(c)
        store.write(a, 99)
        store.get(c)
        assert len(calls) == 2

    def test_self_read_adds_no_edge(self):
        store = Store()
        source = atom(1)
        counter = atom(lambda get: (get(counter) or 0) + get(source))
        assert store.get(counter) == 1
        assert store.dependencies(counter) == {source}


class TestSelfReference:
    def test_reads_previous_value(self):
        store = Store()
        tick = atom(1)
        total = ReadonlyAtom(lambda get: get(total) + get(tick), initial=0)
        assert store.get(total) == 1
        store.write(tick, 5)
        assert store.get(total) == 6

    def test_initial_when_never_computed(self):
        store = Store()
        seen = []
        a = atom(lambda get: seen.append(get(a)) or 1)
        store.get(a)
        assert seen == [None]


class TestCycles:
    def test_direct_cycle(self):
        store = Store()
        a = atom(lambda get: get(b))
        b = atom(lambda get: get(a))
        with pytest.raises(CyclicDependency) as info:
            store.get(a)
        assert info.value.path == (a, b, a)

    def test_cycle_not_memoized(self):
        store = Store()
        flag = atom(True)
        a = atom(lambda get: get(b) if get(flag) else "free")
        b = atom(lambda get: get(a))
        with pytest.raises(CyclicDependency):
            store.get(a)
        assert store.status(a) is not Status.ERRORED
        store.write(flag, False)
        assert store.get(a) == "free"


class TestErrors:
    def test_read_error_is_stored(self):
        store = Store()
        boom = ValueError("boom")

        def read(get):
            raise boom

        a = atom(read)
        assert store.read(a) == Errored(boom)
        assert store.status(a) is Status.ERRORED
        with pytest.raises(ValueError, match="boom"):
            store.get(a)

    def test_errors_are_contagious(self):
        store = Store()
        divisor = atom(0)
        ratio = atom(lambda get: 10 / get(divisor))
        doubled = atom(lambda get: get(ratio) * 2)
        result = store.read(doubled)
        assert isinstance(result, Errored)
        assert isinstance(result.error, ZeroDivisionError)

    def test_dependent_can_catch(self):
        store = Store()
        divisor = atom(0)
        ratio = atom(lambda get: 10 / get(divisor))

        def safe(get):
            try:
                return get(ratio)
            except ZeroDivisionError:
                return None

        guarded = atom(safe)
        assert store.get(guarded) is None
        store.write(divisor, 5)
        assert store.get(guarded) == 2

    def test_recovers_after_resettle(self):
        store = Store()
        divisor = atom(0)
        ratio = atom(lambda get: 10 / get(divisor))
        assert isinstance(store.read(ratio), Errored)
        store.write(divisor, 2)
        assert store.read(ratio) == Settled(5)

    def test_coroutine_without_loop_caches_nothing(self):
        """A coroutine read outside an event loop fails on every read."""
        store = Store()

        async def fetch():
            return 1

        a = atom(lambda get: fetch())
        with pytest.raises(RuntimeError):
            store.read(a)
        with pytest.raises(RuntimeError):
            store.read(a)

    def test_coroutine_write_without_loop_keeps_value(self):
        store = Store()
        name = atom("ada")
        store.read(name)

        async def fetch():
            return "bob"

        with pytest.raises(RuntimeError):
            store.write(name, fetch())
        assert store.read(name) == Settled("ada")


class TestWrite:
    def test_set_value(self):
        store = Store()
        price = atom(10)
        store.write(price, 25)
        assert store.get(price) == 25

    def test_functional_update(self):
        store = Store()
        price = atom(10)
        store.write(price, lambda current: current + 15)
        assert store.get(price) == 25

    def test_functional_update_equivalence(self):
        store = Store()
        direct = atom(10)
        functional = atom(10)
        store.write(direct, 25)
        store.write(functional, lambda _: 25)
        assert store.read(direct) == store.read(functional)

    def test_readonly_raises(self):
        store = Store()
        doubled = atom(lambda get: 2)
        with pytest.raises(NotWritable):
            store.write(doubled, 5)

    def test_write_fans_out(self):
        store = Store()
        first = atom("Alice")
        last = atom("Smith")

        def write(get, set, full_name):
            a, b = full_name.split(" ")
            set(first, a)
            set(last, b)

        name = atom(lambda get: f"{get(first)} {get(last)}", write)
        store.write(name, "Bob Jones")
        assert store.get(first) == "Bob"
        assert store.get(name) == "Bob Jones"

    def test_write_get_is_untracked(self):
        store = Store()
        source = atom(1)
        target = atom(0)

        def write(get, set, _):
            set(target, get(source))

        copy = atom(lambda get: None, write)
        store.write(copy, None)
        assert store.get(target) == 1
        assert store.dependencies(copy) == frozenset()

    def test_set_self(self):
        store = Store()

        def write(get, set, update):
            set(cell, update * 2)

        cell = atom(0, write)
        store.write(cell, 4)
        assert store.get(cell) == 8

    def test_set_to_readonly_raises(self):
        store = Store()
        readonly = atom(lambda get: 1)
        writer = atom(None, lambda get, set, update: set(readonly, update))
        with pytest.raises(NotWritable):
            store.write(writer, 1)


class TestNotify:
    def test_listener_fires_on_write(self):
        store = Store()
        price = atom(10)
        doubled = atom(lambda get: get(price) * 2)
        calls = []
        store.subscribe(doubled, lambda: calls.append(store.get(doubled)))
        store.write(price, 25)
        store.flush_pending()
        assert calls == [50]

    def test_diamond_fires_once(self):
        store = Store()
        a = atom(1)
        b = atom(lambda get: get(a) + 1)
        c = atom(lambda get: get(a) * 2)
        d = atom(lambda get: get(b) + get(c))
        calls = []
        store.subscribe(d, lambda: calls.append(store.get(d)))
        store.write(a, 10)
        assert calls == [31]

    def test_listener_sees_post_write_state(self):
        store = Store()
        first = atom("a")
        second = atom("b")

        def write(get, set, _):
            set(first, "x")
            set(second, "y")

        both = atom(lambda get: get(first) + get(second), write)
        seen = []
        store.subscribe(both, lambda: seen.append(store.get(both)))
        store.write(both, None)
        assert seen == ["xy"]

    def test_same_value_does_not_notify(self):
        store = Store()
        price = atom(10)
        calls = []
        store.subscribe(price, lambda: calls.append(1))
        store.write(price, 10)
        assert calls == []

    def test_subscribe_mounts_dependencies(self):
        store = Store()
        price = atom(1)
        doubled = atom(lambda get: get(price) * 2)
        store.subscribe(doubled, lambda: None)
        assert store.dependents(price) == {doubled}

    def test_unsubscribe_idempotent(self):
        store = Store()
        price = atom(1)
        calls = []
        unsubscribe = store.subscribe(price, lambda: calls.append(1))
        unsubscribe()
        unsubscribe()
        store.write(price, 2)
        assert calls == []
        assert store.listener_count(price) == 0

    def test_same_callback_twice_is_two_listeners(self):
        store = Store()
        price = atom(1)
        calls = []
        callback = lambda: calls.append(1)  # noqa: E731
        store.subscribe(price, callback)
        store.subscribe(price, callback)
        store.write(price, 2)
        assert len(calls) == 2

    def test_listener_error_propagates(self):
        store = Store()
        price = atom(1)
        calls = []

        def bad():
            raise RuntimeError("listener failed")

        store.subscribe(price, bad)
        store.subscribe(price, lambda: calls.append(1))
        with pytest.raises(RuntimeError, match="listener failed"):
            store.write(price, 2)
        store.flush_pending()
        assert calls == [1]  # remaining listener kept for the next flush


class TestFlush:
    def test_manual_flush(self):
        store = Store(auto_flush=False)
        price = atom(10)
        doubled = atom(lambda get: get(price) * 2)
        calls = []
        store.subscribe(doubled, lambda: calls.append(store.get(doubled)))
        store.write(price, 25)
        assert calls == []
        assert store.pending_count() == 1
        store.flush_pending()
        assert calls == [50]

    def test_flush_idempotent(self):
        store = Store(auto_flush=False)
        price = atom(10)
        calls = []
        store.subscribe(price, lambda: calls.append(1))
        store.flush_pending()  # nothing queued
        store.write(price, 25)
        store.flush_pending()
        store.flush_pending()
        assert calls == [1]

    def test_writes_coalesce_until_flush(self):
        store = Store(auto_flush=False)
        price = atom(10)
        calls = []
        store.subscribe(price, lambda: calls.append(store.get(price)))
        store.write(price, 11)
        store.write(price, 12)
        store.flush_pending()
        assert calls == [12]

    def test_listener_write_during_flush(self):
        store = Store()
        a = atom(0)
        b = atom(0)
        log = []
        store.subscribe(a, lambda: store.write(b, store.get(a) * 10))
        store.subscribe(b, lambda: log.append(store.get(b)))
        store.write(a, 1)
        assert log == [10]

    def test_unsubscribe_drops_queued_call(self):
        store = Store(auto_flush=False)
        price = atom(10)
        calls = []
        unsubscribe = store.subscribe(price, lambda: calls.append(1))
        store.write(price, 11)
        unsubscribe()
        store.flush_pending()
        assert calls == []


class TestBatch:
    def test_batch_coalesces(self):
        store = Store()
        a = atom(0)
        b = atom(0)
        total = atom(lambda get: get(a) + get(b))
        seen = []
        store.subscribe(total, lambda: seen.append(store.get(total)))
        with store.batch():
            store.write(a, 1)
            store.write(b, 2)
            assert seen == []
        assert seen == [3]


class TestRecords:
    def test_unknown_atom(self):
        store = Store()
        a = atom(1)
        assert store.status(a) is None
        assert store.dependencies(a) == frozenset()

    def test_unreachable_records_are_dropped(self):
        store = Store()
        price = atom(1)
        doubled = atom(lambda get: get(price) * 2)
        store.get(doubled)
        assert len(store._anchor) == 2
        del doubled
        gc.collect()
        assert len(store._anchor) == 1
        assert store.dependents(price) == frozenset()

    def test_subscribed_atom_is_pinned(self):
        store = Store()
        price = atom(1)
        calls = []
        store.subscribe(atom(lambda get: get(price) * 2), lambda: calls.append(1))
        gc.collect()
        store.write(price, 2)
        assert calls == [1]


class TestScheduler:
    def test_other_thread_write_is_marshaled(self):
        calls = []
        store = Store(scheduler=lambda fn: (calls.append(fn), fn()))
        price = atom(0)
        done = threading.Event()

        def bg():
            store.write(price, 99)
            done.set()

        threading.Thread(target=bg).start()
        done.wait(timeout=2)
        assert len(calls) == 1
        assert store.get(price) == 99

    def test_owner_thread_write_is_direct(self):
        calls = []
        store = Store(scheduler=calls.append)
        price = atom(0)
        store.write(price, 1)
        assert calls == []
        assert store.get(price) == 1


class TestLogging:
    def test_evaluation_logged(self, caplog):
        store = Store()
        doubled = atom(lambda get: 2, label="doubled")
        with caplog.at_level(logging.DEBUG, logger="atomx.store"):
            store.get(doubled)
        assert "Evaluating ReadonlyAtom(doubled)" in caplog.text
