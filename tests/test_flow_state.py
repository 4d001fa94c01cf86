"""Tests for conversation flow flags."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from agent_engine.core.flow_state import FlowState, FlowStateStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestFlowState:
    def test_apply_returns_updated_view(self):
        state = FlowState("acme", "conv-1")
        flags = state.apply("commercial", True)
        assert dict(flags) == {"commercial": True}

    def test_snapshot_is_not_changed_by_later_apply(self):
        state = FlowState("acme", "conv-1", {"commercial": True})
        before = state.flags
        state.apply("afterHours", True)
        assert dict(before) == {"commercial": True}
        assert dict(state.flags) == {"commercial": True, "afterHours": True}

    def test_flags_view_is_read_only(self):
        state = FlowState("acme", "conv-1", {"commercial": True})
        with pytest.raises(TypeError):
            state.flags["commercial"] = False

    def test_non_bool_value_rejected(self):
        state = FlowState("acme", "conv-1")
        with pytest.raises(TypeError):
            state.apply("commercial", "yes")

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            FlowState("acme", "conv-1").apply("  ", True)

    def test_apply_many_is_all_or_nothing(self):
        state = FlowState("acme", "conv-1")
        with pytest.raises(TypeError):
            state.apply_many({"commercial": True, "afterHours": 1})
        assert dict(state.flags) == {}


class TestFlowStateStore:
    def test_same_key_returns_same_state(self):
        store = FlowStateStore()
        assert store.get("acme", "conv-1") is store.get("acme", "conv-1")
        assert len(store) == 1

    def test_conversation_ids_are_scoped_per_company(self):
        store = FlowStateStore()
        store.get("acme", "conv-1").apply("commercial", True)
        assert dict(store.get("globex", "conv-1").flags) == {}

    def test_discard(self):
        store = FlowStateStore()
        store.get("acme", "conv-1").apply("commercial", True)
        assert store.discard("acme", "conv-1") is True
        assert store.discard("acme", "conv-1") is False
        assert dict(store.get("acme", "conv-1").flags) == {}

    def test_evicts_least_recently_used_past_capacity(self):
        store = FlowStateStore(max_conversations=2)
        store.get("acme", "conv-1").apply("commercial", True)
        store.get("acme", "conv-2")
        store.get("acme", "conv-1")  # promote
        store.get("acme", "conv-3")

        assert len(store) == 2
        assert store.discard("acme", "conv-2") is False
        assert dict(store.get("acme", "conv-1").flags) == {"commercial": True}

    def test_idle_conversations_expire(self):
        clock = FakeClock()
        store = FlowStateStore(idle_seconds=60, clock=clock)
        store.get("acme", "conv-1").apply("commercial", True)
        clock.now += 30
        store.get("acme", "conv-2")

        clock.now += 45
        store.get("acme", "conv-3")

        assert len(store) == 2
        assert store.discard("acme", "conv-1") is False
        assert store.discard("acme", "conv-2") is True

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            FlowStateStore(max_conversations=0)


class TestConcurrentUpdates:
    def test_parallel_updates_to_one_conversation_are_all_kept(self):
        state = FlowState("acme", "conv-1")
        names = [f"flag{i}" for i in range(200)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda name: state.apply(name, True), names))

        assert set(state.flags) == set(names)
