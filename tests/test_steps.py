"""Test step matching and the validator pipeline."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from opsengine.model import Action
from opsengine.steps import NO_EFFECT, ActionContext, ValidationResult, advance_pointer, validate
from opsengine.triggers import open_session


def _scan(ip="10.0.0.5", host_id="relay-01"):
    return Action(command="scan", target_ip=ip, host_id=host_id)


def test_scan_completes_sr201(registry, state):
    open_session(state, registry)
    result = validate(state, _scan(), registry)
    assert result.error is None
    assert result.completed == ["SR-201"]
    assert result.operation_completed and result.step_advanced
    assert result.activated == ["SR-202"]
    assert state.credits_balance == 200
    assert state.flags["quest_SR201_completed"] is True
    assert "Operation complete: Signal Recon" in result.notifications


def test_mismatch_leaves_state_alone(registry, state):
    open_session(state, registry)
    for action in (_scan(ip="10.0.0.6", host_id=None), Action("connect", target_ip="10.0.0.5", host_id="relay-01"),
                   _scan(host_id="archive-02")):
        result = validate(state, action, registry)
        assert result.error == NO_EFFECT
        assert not result.rejected
        assert not result.step_advanced
    assert state.active_operations["SR-201"].current_step_index == 0
    assert state.credits_balance == 0


def test_second_identical_action_has_no_effect(registry, state):
    open_session(state, registry)
    validate(state, _scan(), registry)
    result = validate(state, _scan(), registry)
    assert result.error == NO_EFFECT
    assert state.credits_balance == 200
    assert len(state.ledger.entries) == 1


def test_delete_requires_prior_existence(registry, state):
    open_session(state, registry)
    validate(state, _scan(), registry)
    connect = Action("connect", target_ip="10.0.0.5", host_id="relay-01")
    assert validate(state, connect, registry).advanced == ["SR-202"]

    delete = Action("delete", file_path="/var/log/auth.log", host_id="relay-01", target_ip="10.0.0.5")
    result = validate(state, delete, registry, ActionContext(file_existed=False))
    assert result.error == NO_EFFECT
    assert state.active_operations["SR-202"].current_step_index == 1

    result = validate(state, delete, registry, ActionContext(file_existed=True))
    assert result.advanced == ["SR-202"]
    assert state.active_operations["SR-202"].current_step_index == 2


def test_delete_path_is_normalized(registry, state, make_operation):
    registry.publish(make_operation(
        "OP-1",
        steps=[{"id": "wipe", "type": "DELETE_FILE", "params": {"file_path": "/etc/motd"}}],
        default_host_id="relay-01",
    ))
    open_session(state, registry)
    delete = Action("delete", file_path="etc//motd", host_id="relay-01")
    assert validate(state, delete, registry, ActionContext(file_existed=True)).completed == ["OP-1"]


def test_disconnect_needs_a_connection(registry, state, make_operation):
    registry.publish(make_operation("OP-1", steps=[{"id": "bye", "type": "DISCONNECT_HOST"}], default_host_id="relay-01"))
    open_session(state, registry)
    assert validate(state, Action("disconnect"), registry).error == NO_EFFECT
    assert validate(state, Action("disconnect", host_id="archive-02", target_ip="10.0.0.12"), registry).error == NO_EFFECT
    result = validate(state, Action("disconnect", host_id="relay-01", target_ip="10.0.0.5"), registry)
    assert result.completed == ["OP-1"]


def test_host_bound_steps_need_a_known_host(registry, state, make_operation):
    registry.publish(make_operation("OP-1", steps=[
        {"id": "wipe", "type": "DELETE_FILE", "params": {"file_path": "/etc/motd"}},
        {"id": "bye", "type": "DISCONNECT_HOST"},
    ], default_host_id="relay-01"))
    open_session(state, registry)
    stray = Action("delete", file_path="/etc/motd", target_ip="10.9.9.9")
    assert validate(state, stray, registry, ActionContext(file_existed=True)).error == NO_EFFECT
    assert validate(state, Action("delete", file_path="/etc/motd", host_id="relay-01"), registry,
                    ActionContext(file_existed=True)).advanced == ["OP-1"]
    assert validate(state, Action("disconnect", target_ip="10.9.9.9"), registry).error == NO_EFFECT
    assert state.active_operations["OP-1"].current_step_index == 1


def test_scan_of_unlisted_ip_still_matches_ip_only_step(registry, state, make_operation):
    registry.publish(make_operation("OP-1", steps=[{"id": "scan", "type": "SCAN_HOST", "params": {"target_ip": "10.9.9.9"}}],
                                    default_host_id="relay-01"))
    open_session(state, registry)
    assert validate(state, Action("scan", target_ip="10.9.9.9"), registry).completed == ["OP-1"]


def test_one_action_satisfies_several_operations(registry, state, make_operation):
    registry.publish(make_operation("OP-1", steps=[
        {"id": "scan", "type": "SCAN_HOST", "params": {"target_ip": "10.0.0.5"}},
        {"id": "ack", "type": "ACKNOWLEDGE_COMMAND"},
    ]))
    open_session(state, registry)
    result = validate(state, _scan(), registry)
    assert result.completed == ["SR-201"]
    assert result.advanced == ["OP-1"]
    assert state.active_operations["OP-1"].current_step_index == 1


def test_operations_activated_by_the_action_are_not_matched_by_it(registry, state, make_operation):
    registry.publish(make_operation(
        "OP-1",
        trigger={"type": "ON_OPERATIONS_COMPLETED", "operation_ids": ["SR-201"]},
        steps=[{"id": "scan", "type": "SCAN_HOST", "params": {"target_ip": "10.0.0.5"}}],
    ))
    open_session(state, registry)
    result = validate(state, _scan(), registry)
    assert result.activated == ["SR-202", "OP-1"]
    assert state.active_operations["OP-1"].current_step_index == 0


def test_acknowledge_tokens(registry, state, make_operation, monkeypatch):
    registry.publish(make_operation("OP-1"))
    registry.publish(make_operation("OP-2", steps=[{"id": "ack", "type": "ACKNOWLEDGE_COMMAND", "params": {"token": "CONFIRM"}}]))
    open_session(state, registry)

    assert validate(state, Action("ack", token="nope"), registry).error == NO_EFFECT
    assert validate(state, Action("ack", token="done"), registry).completed == ["OP-1"]
    assert validate(state, Action("ack", token="ACK"), registry).error == NO_EFFECT
    assert validate(state, Action("ack", token="confirm"), registry).completed == ["OP-2"]


def test_configured_ack_tokens(registry, state, make_operation, monkeypatch):
    monkeypatch.setenv("OPS_ACK_TOKENS", "roger, copy")
    registry.publish(make_operation("OP-1"))
    open_session(state, registry)
    assert validate(state, Action("ack", token="ACK"), registry).error == NO_EFFECT
    assert validate(state, Action("ack", token="copy"), registry).completed == ["OP-1"]


def test_manual_advance(registry, state, make_operation):
    registry.publish(make_operation("OP-1", steps=[
        {"id": "ack", "type": "ACKNOWLEDGE_COMMAND", "auto_advance": False},
        {"id": "scan", "type": "SCAN_HOST", "params": {"target_ip": "10.0.0.12"}},
    ]))
    open_session(state, registry)
    result = validate(state, Action("ack", token="ACK"), registry)
    assert result.satisfied == ["OP-1"]
    assert not result.step_advanced
    entry = state.active_operations["OP-1"]
    assert entry.awaiting_advance and entry.current_step_index == 0

    # Matching again while waiting does nothing
    assert validate(state, Action("ack", token="ACK"), registry).error == NO_EFFECT

    result = ValidationResult()
    advance_pointer(state, registry.get("OP-1"), registry, result)
    assert result.advanced == ["OP-1"]
    assert entry.current_step_index == 1 and not entry.awaiting_advance


def test_rejected_reward_keeps_operation_active(registry, state, make_operation):
    registry.publish(make_operation("OP-1", rewards={"credits": -100, "flags": ["paid"]}))
    open_session(state, registry)
    result = validate(state, Action("ack", token="ACK"), registry)
    assert "OP-1" in result.failed
    assert result.completed == []
    assert state.is_active("OP-1")
    assert not state.is_completed("OP-1")
    assert "paid" not in state.flags
    assert "quest_OP1_completed" not in state.flags

    # Retry succeeds once the balance allows it
    state.ledger.record(150, "top up")
    result = validate(state, Action("ack", token="ACK"), registry)
    assert result.completed == ["OP-1"]
    assert state.credits_balance == 50
