"""Test publish-time validation in the operation registry."""

import copy
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from conftest import SR201, SR202, operation_record
from opsengine.loader import parse_operation
from opsengine.registry import OperationRegistry, PublishError


def _wipe_step(path="/var/log/auth.log", **extra):
    step = {"id": "wipe", "type": "DELETE_FILE", "params": {"file_path": path}}
    step.update(extra)
    return step


def test_publish_and_lookup(hosts):
    registry = OperationRegistry(hosts=hosts, strict=False)
    warnings = registry.publish(parse_operation(copy.deepcopy(SR201)))
    assert warnings == []
    assert "SR-201" in registry
    assert registry.get("SR-201").version == 1
    assert [op.id for op in registry.published()] == ["SR-201"]


def test_duplicate_id_and_revision(registry):
    with pytest.raises(PublishError) as exc:
        registry.publish(parse_operation(copy.deepcopy(SR201)))
    assert "already exists" in str(exc.value)

    revised = copy.deepcopy(SR201)
    revised["title"] = "Signal Recon (revised)"
    registry.publish(parse_operation(revised), revise=True)
    assert registry.get("SR-201").version == 2
    assert registry.get("SR-201").title == "Signal Recon (revised)"
    assert len(registry) == 2


def test_duplicate_step_ids(registry, make_operation):
    operation = make_operation("OP-1", steps=[
        {"id": "a", "type": "ACKNOWLEDGE_COMMAND"},
        {"id": "a", "type": "ACKNOWLEDGE_COMMAND"},
    ])
    with pytest.raises(PublishError) as exc:
        registry.publish(operation)
    assert "Duplicate step id 'a'." in exc.value.errors


def test_host_bound_step_needs_host(registry, make_operation):
    with pytest.raises(PublishError) as exc:
        registry.publish(make_operation("OP-1", steps=[_wipe_step()]))
    assert "Step wipe requires a target host id." in exc.value.errors

    with pytest.raises(PublishError):
        registry.publish(make_operation("OP-2", steps=[{"id": "bye", "type": "DISCONNECT_HOST"}]))


def test_unknown_host(registry, make_operation):
    with pytest.raises(PublishError) as exc:
        registry.publish(make_operation("OP-1", steps=[_wipe_step(target_host_id="ghost")]))
    assert "unknown host 'ghost'" in str(exc.value)


def test_delete_target_must_exist(registry, make_operation):
    with pytest.raises(PublishError) as exc:
        registry.publish(make_operation("OP-1", steps=[_wipe_step("/var/log/none.log")], default_host_id="relay-01"))
    assert 'file "/var/log/none.log" does not exist' in str(exc.value)

    # A file supplied by the operation's own overlay is fine
    operation = make_operation(
        "OP-2",
        steps=[_wipe_step("/srv/ledger.bak")],
        default_host_id="archive-02",
        filesystem_overlays={"archive-02": {"/srv/ledger.bak": {"type": "file", "content": "x"}}},
    )
    registry.publish(operation)
    assert "OP-2" in registry


def test_self_references(registry, make_operation):
    with pytest.raises(PublishError):
        registry.publish(make_operation("OP-1", trigger={"type": "ON_OPERATIONS_COMPLETED", "operation_ids": ["OP-1"]}))
    with pytest.raises(PublishError):
        registry.publish(make_operation("OP-2", requirements={"required_operations": ["OP-2"]}))
    with pytest.raises(PublishError):
        registry.publish(make_operation(
            "OP-3",
            trigger={"type": "ON_FLAG_SET", "flag_key": "done_it"},
            rewards={"flags": ["done_it"]},
        ))


def test_dependency_cycle_rejected(registry, make_operation):
    warnings = registry.publish(make_operation(
        "OP-A",
        trigger={"type": "ON_OPERATIONS_COMPLETED", "operation_ids": ["OP-B"]},
        rewards={"flags": ["a_done"]},
    ))
    assert "References unknown operation id OP-B." in warnings

    with pytest.raises(PublishError) as exc:
        registry.publish(make_operation("OP-B", trigger={"type": "ON_FLAG_SET", "flag_key": "a_done"}))
    assert any("Dependency cycle" in e for e in exc.value.errors)
    assert "OP-B" not in registry


def test_shared_completion_flag_is_warning(registry, make_operation):
    operation = make_operation("OP-1", rewards={"completion_flag": "quest_SR201_completed"})
    warnings = registry.publish(operation)
    assert any("shared with SR-201" in w for w in warnings)
    assert "OP-1" in registry


def test_strict_mode_turns_warnings_into_errors(hosts, make_operation):
    registry = OperationRegistry(hosts=hosts, strict=True)
    registry.publish(parse_operation(copy.deepcopy(SR201)))
    with pytest.raises(PublishError):
        registry.publish(make_operation("OP-1", rewards={"completion_flag": "quest_SR201_completed"}))


def test_unknown_flag_and_negative_credits_warn(registry, make_operation):
    warnings = registry.publish(make_operation(
        "OP-1",
        trigger={"type": "ON_FLAG_SET", "flag_key": "nobody_writes_this"},
        rewards={"credits": -25},
    ))
    assert "Requires flag 'nobody_writes_this' that no operation emits yet." in warnings
    assert "Reward debits 25 credits." in warnings

    # Flags written by other operations are known
    assert registry.publish(make_operation("OP-2", trigger={"type": "ON_FLAG_SET", "flag_key": "relay_clean"})) == []


def test_ingest_reports_and_continues(hosts):
    registry = OperationRegistry(hosts=hosts, strict=False)
    bad = operation_record("BAD-1", steps=[{"id": "scan", "type": "SCAN_HOST"}])
    report = registry.ingest([copy.deepcopy(SR201), bad, copy.deepcopy(SR202), "not a record"])
    assert report.published == ["SR-201", "SR-202"]
    assert report.rejected["BAD-1"] == ["Step scan requires params.target_ip."]
    assert "record_4" in report.rejected
    assert not report.ok


def test_draft_is_stored_but_not_published(registry, make_operation):
    registry.publish(make_operation("OP-1", status="draft"))
    assert "OP-1" in registry
    assert "OP-1" not in [op.id for op in registry.published()]
