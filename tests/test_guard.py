"""Tests for the operation guard: rollback, undo journal, re-entry, serialization."""

import threading

import pytest

from reservecurve.errors import ReentrancyError
from reservecurve.models import ReserveState
from reservecurve.reserve.guard import OperationGuard


class TestRollback:
    def test_store_restored_on_error(self) -> None:
        guard = OperationGuard("test")
        state = ReserveState(reserve_real_quote=5)
        with pytest.raises(RuntimeError):
            with guard.atomic(state):
                state.reserve_real_quote = 99
                raise RuntimeError("boom")
        assert state.reserve_real_quote == 5

    def test_store_kept_on_success(self) -> None:
        guard = OperationGuard("test")
        state = ReserveState(reserve_real_quote=5)
        with guard.atomic(state):
            state.reserve_real_quote = 99
        assert state.reserve_real_quote == 99

    def test_undo_callbacks_run_in_reverse(self) -> None:
        guard = OperationGuard("test")
        order = []
        with pytest.raises(RuntimeError):
            with guard.atomic() as tx:
                tx.on_rollback(lambda: order.append("first"))
                tx.on_rollback(lambda: order.append("second"))
                raise RuntimeError("boom")
        assert order == ["second", "first"]

    def test_undo_callbacks_skipped_on_success(self) -> None:
        guard = OperationGuard("test")
        order = []
        with guard.atomic() as tx:
            tx.on_rollback(lambda: order.append("undo"))
        assert order == []


class TestReentry:
    def test_nested_entry_rejected(self) -> None:
        guard = OperationGuard("test")
        with guard.atomic():
            assert guard.in_flight
            with pytest.raises(ReentrancyError):
                with guard.atomic():
                    pass

    def test_flag_cleared_after_error(self) -> None:
        guard = OperationGuard("test")
        with pytest.raises(RuntimeError):
            with guard.atomic():
                raise RuntimeError("boom")
        assert not guard.in_flight
        with guard.atomic():
            pass


class TestSerialization:
    def test_other_thread_waits_instead_of_failing(self) -> None:
        guard = OperationGuard("test")
        state = ReserveState(reserve_real_quote=0)
        inside = threading.Event()
        release = threading.Event()
        seen = []

        def first() -> None:
            with guard.atomic(state):
                inside.set()
                release.wait(5)
                state.reserve_real_quote += 1

        def second() -> None:
            with guard.atomic(state):
                seen.append(state.reserve_real_quote)
                state.reserve_real_quote += 1

        a = threading.Thread(target=first)
        a.start()
        assert inside.wait(5)
        b = threading.Thread(target=second)
        b.start()
        b.join(0.2)
        assert b.is_alive()
        release.set()
        a.join(5)
        b.join(5)

        assert seen == [1]
        assert state.reserve_real_quote == 2
        assert not guard.in_flight
