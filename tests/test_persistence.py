"""Test player progress save/load."""

import json
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from opsengine.model import LifecycleEvent
from opsengine.persistence import (
    SAVE_VERSION,
    InMemoryPlayerStore,
    JsonPlayerStore,
    SaveError,
    deserialize_progress_state,
    serialize_progress_state,
)
from opsengine.state import PlayerProgressState


def _populated_state():
    state = PlayerProgressState(player_id="p1")
    state.flags.update({"session_opened": True, "alarm": "red"})
    state.ledger.record(200, "reward", operation_id="SR-201")
    state.completed_operation_ids.add("SR-201")
    state.activate("SR-203", now=10.0)
    state.activate("SR-202", now=11.0)
    state.active_operations["SR-202"].current_step_index = 2
    state.active_operations["SR-203"].awaiting_advance = True
    state.connected_host_id = "relay-01"
    state.connected_ip = "10.0.0.5"
    state.record_deletion("relay-01", "/var/log/auth.log")
    state.log_event("SR-201", LifecycleEvent.COMPLETED, 9.0)
    return state


def test_json_store_round_trip(tmp_path):
    store = JsonPlayerStore(tmp_path / "players")
    original = _populated_state()
    store.save(original)
    loaded = store.load("p1")

    assert loaded.flags == original.flags
    assert loaded.credits_balance == 200
    assert loaded.ledger.entries == original.ledger.entries
    assert loaded.completed_operation_ids == {"SR-201"}
    assert [op_id for op_id, _ in loaded.active_in_order()] == ["SR-203", "SR-202"]
    assert loaded.active_operations["SR-202"].current_step_index == 2
    assert loaded.active_operations["SR-203"].awaiting_advance is True
    assert loaded.activation_counter == 2
    assert loaded.connected_ip == "10.0.0.5"
    assert loaded.is_deleted("relay-01", "/var/log/auth.log")
    assert loaded.journal[0].event == LifecycleEvent.COMPLETED
    assert store.player_ids() == ["p1"]


def test_save_metadata(tmp_path):
    store = JsonPlayerStore(tmp_path)
    store.save(_populated_state())
    data = json.loads((tmp_path / "p1.json").read_text(encoding="utf-8"))
    assert data["_save_metadata"]["version"] == SAVE_VERSION
    assert data["completed_operation_ids"] == ["SR-201"]


def test_unknown_player(tmp_path):
    assert JsonPlayerStore(tmp_path).load("nobody") is None
    assert not JsonPlayerStore(tmp_path).exists("nobody")


def test_unsafe_player_id(tmp_path):
    store = JsonPlayerStore(tmp_path)
    with pytest.raises(SaveError):
        store.load("../etc/passwd")
    with pytest.raises(SaveError):
        store.save(PlayerProgressState(player_id="a/b"))


def test_newer_version_refused():
    data = serialize_progress_state(_populated_state())
    data["_save_metadata"]["version"] = SAVE_VERSION + 1
    with pytest.raises(SaveError):
        deserialize_progress_state(data)


def test_corrupted_files(tmp_path):
    (tmp_path / "p1.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(SaveError):
        JsonPlayerStore(tmp_path).load("p1")

    data = serialize_progress_state(_populated_state())
    data["completed_operation_ids"].append("SR-202")
    with pytest.raises(SaveError):
        deserialize_progress_state(data)

    del data["player_id"]
    with pytest.raises(SaveError):
        deserialize_progress_state(data)


def test_in_memory_store_returns_copies():
    store = InMemoryPlayerStore()
    assert store.load("p1") is None
    store.save(_populated_state())

    loaded = store.load("p1")
    loaded.flags["tampered"] = True
    loaded.completed_operation_ids.add("X")
    fresh = store.load("p1")
    assert "tampered" not in fresh.flags
    assert fresh.completed_operation_ids == {"SR-201"}
    assert store.player_ids() == ["p1"]


def test_deletion_markers_are_canonical():
    state = PlayerProgressState(player_id="p1")
    state.record_deletion("relay-01", "var//log/auth.log/")
    assert state.deleted_paths == {"relay-01": {"/var/log/auth.log"}}
    assert state.is_deleted("relay-01", "/var/log/auth.log")
