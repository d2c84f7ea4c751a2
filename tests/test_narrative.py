"""Test narrative rendering and the inbox."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from opsengine.model import LifecycleEvent
from opsengine.narrative import describe, render_inbox


def test_authored_message_with_placeholders(make_operation):
    operation = make_operation("OP-1", title="Cold Storage", rewards={"credits": 500}, narrative={
        "handler": "Vega",
        "completion": {
            "subject": "{title} closed",
            "preheader": "From {handler}",
            "body": "{credits} credits paid for {operation_id}.",
        },
    })
    message = describe(operation, LifecycleEvent.COMPLETED)
    assert message.subject == "Cold Storage closed"
    assert message.body == "From Vega\n\n500 credits paid for OP-1."
    assert message.sender == "Vega"


def test_authored_sender_overrides_handler(make_operation):
    operation = make_operation("OP-1", narrative={
        "handler": "Vega",
        "activation": {"from": "Harbor IT", "subject": "Notice", "body": "Maintenance tonight."},
    })
    assert describe(operation, "activated").sender == "Harbor IT"


def test_fallback_templates(make_operation):
    operation = make_operation("OP-1", title="Signal Recon", narrative={"handler": "Vega"})
    completed = describe(operation, LifecycleEvent.COMPLETED)
    assert completed.subject == "Operation complete: Signal Recon"
    assert completed.body == 'You completed "Signal Recon".'
    assert completed.sender == "Vega"

    failed = describe(operation, LifecycleEvent.FAILED)
    assert failed.subject == "Operation stalled: Signal Recon"


def test_fallback_sender_is_system_handler(make_operation, monkeypatch):
    operation = make_operation("OP-1")
    assert describe(operation, LifecycleEvent.ACTIVATED).sender == "SYSTEM"
    monkeypatch.setenv("OPS_SYSTEM_HANDLER", "HQ")
    assert describe(operation, LifecycleEvent.ACTIVATED).sender == "HQ"


def test_describe_is_repeatable(registry):
    operation = registry.get("SR-201")
    assert describe(operation, LifecycleEvent.ACTIVATED) == describe(operation, LifecycleEvent.ACTIVATED)
    assert describe(operation, LifecycleEvent.ACTIVATED).subject == "Signal Recon"


def test_render_inbox(registry, state):
    state.log_event("SR-201", LifecycleEvent.ACTIVATED, 1.0)
    state.log_event("SR-201", LifecycleEvent.COMPLETED, 2.0)
    state.log_event("SR-202", LifecycleEvent.ACTIVATED, 2.0)
    state.log_event("GONE-1", LifecycleEvent.ACTIVATED, 3.0)

    messages = render_inbox(state.journal, registry)
    assert [m.id for m in messages] == ["SR-202:activated:1", "SR-201:completed:1", "SR-201:activated:1"]
    assert messages[1].subject == "Operation complete: Signal Recon"
    assert render_inbox(state.journal, registry, limit=1)[0].operation_id == "SR-202"
    assert render_inbox(state.journal, registry, limit=0) == []
