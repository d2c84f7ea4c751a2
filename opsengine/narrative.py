"""Narrative generation for operation lifecycle events.

``describe`` is a pure function over an operation's narrative bindings: it can
be called any number of times for the same event and always renders the same
message. Missing variants fall back to a generic system-handler template.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from config import get_system_handler
from .model import LifecycleEvent, MailTemplate, Operation
from .state import JournalRecord

FALLBACK_TEMPLATES: Dict[LifecycleEvent, MailTemplate] = {
    LifecycleEvent.ACTIVATED: MailTemplate(
        subject="New operation: {title}",
        body='A new operation is available: "{title}". Check your active operations for the first objective.',
    ),
    LifecycleEvent.COMPLETED: MailTemplate(
        subject="Operation complete: {title}",
        body='You completed "{title}".',
    ),
    LifecycleEvent.FAILED: MailTemplate(
        subject="Operation stalled: {title}",
        body='"{title}" could not be closed out. Complete the final objective again to retry.',
    ),
}


@dataclass(frozen=True)
class NarrativeMessage:
    subject: str
    body: str
    sender: str


@dataclass(frozen=True)
class InboxMessage:
    id: str
    operation_id: str
    event: LifecycleEvent
    timestamp: float
    sender: str
    subject: str
    body: str


def _replace_placeholders(text: str, ctx: Dict[str, str]) -> str:
    for key, value in ctx.items():
        text = text.replace(f"{{{key}}}", value)
    return text


def describe(operation: Operation, event: LifecycleEvent) -> NarrativeMessage:
    """Render the inbox message for an operation lifecycle event.

    Args:
        operation: Operation whose narrative bindings are used
        event: Lifecycle event (activated, completed, failed)

    Returns:
        NarrativeMessage with placeholders substituted
    """
    event = LifecycleEvent(event)
    bindings = operation.narrative
    template = bindings.template_for(event) or FALLBACK_TEMPLATES[event]
    handler = bindings.handler or get_system_handler()
    sender = template.sender or handler

    ctx = {
        "title": operation.title,
        "operation_id": operation.id,
        "handler": handler,
        "credits": str(operation.rewards.credits),
    }
    subject = _replace_placeholders(template.subject, ctx)
    body = _replace_placeholders(template.body, ctx)
    if template.preheader:
        body = f"{_replace_placeholders(template.preheader, ctx)}\n\n{body}"
    return NarrativeMessage(subject=subject, body=body, sender=sender)


def render_inbox(journal: List[JournalRecord], registry, limit: Optional[int] = None) -> List[InboxMessage]:
    """Render a player's lifecycle journal into inbox messages, newest first.

    Records of operations no longer in the registry are skipped.
    """
    messages = []
    counters: Dict[str, int] = {}
    for record in journal:
        operation = registry.get(record.operation_id)
        if operation is None:
            continue
        key = f"{record.operation_id}:{record.event.value}"
        counters[key] = counters.get(key, 0) + 1
        rendered = describe(operation, record.event)
        messages.append(InboxMessage(
            id=f"{key}:{counters[key]}",
            operation_id=record.operation_id,
            event=record.event,
            timestamp=record.timestamp,
            sender=rendered.sender,
            subject=rendered.subject,
            body=rendered.body,
        ))
    messages.reverse()
    if limit is None:
        return messages
    return messages[:max(limit, 0)]
