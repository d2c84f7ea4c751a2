"""Terminal command vocabulary and command handlers.

``parse_action`` turns a raw terminal line into an Action for the step
validator. The ``*_command`` handlers serve the read-only terminal commands
and return the usual ``{"lines", "hints", "events_triggered"}`` result dict.
"""

import re
from typing import Any, Dict, List

from config import get_ack_tokens
from .model import Action, normalize_path
from .schema import IPV4_PATTERN

_IPV4 = re.compile(IPV4_PATTERN)

DELETE_ALIASES = ("rm", "del", "delete", "remove")

COMMAND_HELP = {
    "scan": {"usage": "scan <ip>", "desc": "Probe a host by IP address."},
    "connect": {"usage": "connect <ip>", "desc": "Open a session on a host."},
    "disconnect": {"usage": "disconnect", "desc": "Close the current host session."},
    "rm": {"usage": "rm|del|delete|remove <path>", "desc": "Delete a file on the connected host."},
    "ls": {"usage": "ls [path]", "desc": "List a directory on the connected host."},
    "cat": {"usage": "cat <path>", "desc": "Print a file on the connected host."},
    "ack": {"usage": "ACK | DONE | ack <token>", "desc": "Acknowledge a briefing."},
    "ops": {"usage": "ops", "desc": "List active operations with their current objective."},
    "inbox": {"usage": "inbox [n]", "desc": "Show operation messages, newest first."},
    "status": {"usage": "status", "desc": "Show credits, connection and completed operations."},
    "advance": {"usage": "advance <operation_id>", "desc": "Confirm an objective that waits for you."},
    "help": {"usage": "help", "desc": "Show this list."},
    "quit": {"usage": "quit | exit", "desc": "Leave the terminal."},
}


class ActionError(ValueError):
    """Raised for malformed or unknown player actions."""


def _result(lines: List[str], hints: List[str] = None, events: List[str] = None) -> Dict[str, Any]:
    return {"lines": lines, "hints": hints or [], "events_triggered": events or []}


def _require_ip(command: str, args: List[str]) -> str:
    if len(args) != 1:
        raise ActionError(f"Usage: {command} <ip>")
    ip = args[0]
    if not _IPV4.match(ip):
        raise ActionError(f"Invalid IP address: {ip}")
    return ip


def parse_action(line: str) -> Action:
    """Parse a terminal line into an Action.

    Args:
        line: Raw input, e.g. "scan 10.0.0.5", "rm /var/log/auth.log", "ACK"

    Returns:
        Action with the command normalized to scan, connect, disconnect,
        delete or ack

    Raises:
        ActionError: If the line is empty, malformed or not an action command
    """
    if not isinstance(line, str) or not line.strip():
        raise ActionError("Empty command.")
    parts = line.strip().split()
    command, args = parts[0].lower(), parts[1:]

    if command in ("scan", "connect"):
        return Action(command=command, target_ip=_require_ip(command, args))
    if command == "disconnect":
        if args:
            raise ActionError("Usage: disconnect")
        return Action(command="disconnect")
    if command in DELETE_ALIASES:
        if len(args) != 1:
            raise ActionError(f"Usage: {command} <path>")
        return Action(command="delete", file_path=normalize_path(args[0]))
    if command == "ack":
        if len(args) != 1:
            raise ActionError("Usage: ack <token>")
        return Action(command="ack", token=args[0].upper())
    if not args and parts[0].upper() in get_ack_tokens():
        return Action(command="ack", token=parts[0].upper())
    raise ActionError(f"Unknown command: {parts[0]}")


def help_lines() -> List[str]:
    lines = ["Available commands:"]
    width = max(len(info["usage"]) for info in COMMAND_HELP.values())
    for info in COMMAND_HELP.values():
        lines.append(f" {info['usage'].ljust(width)}  - {info['desc']}")
    return lines


# ---------------- Read-only command handlers ----------------

def ops_command(engine, player_id: str) -> Dict[str, Any]:
    """Handle 'ops' to list active operations.

    Args:
        engine: OperationEngine
        player_id: Player identifier

    Returns:
        Command result dictionary
    """
    views = engine.list_active_operations(player_id)
    lines = ["=== Active Operations ==="]
    hints = []
    if not views:
        lines.append("No active operations.")
        return _result(lines)
    for view in views:
        marker = "!" if view.awaiting_advance else " "
        lines.append(f"{marker} [{view.operation.id}] {view.operation.title}")
        if view.current_step is not None:
            objective = view.current_step.description or view.current_step.id
            lines.append(f"   {view.progress}: {objective}")
        if view.awaiting_advance:
            hints.append(f"advance {view.operation.id}")
        elif view.hint:
            hints.append(view.hint)
    return _result(lines, hints)


def inbox_command(engine, player_id: str, limit: int = 10) -> Dict[str, Any]:
    messages = engine.list_inbox_messages(player_id, limit=limit)
    if not messages:
        return _result(["Inbox empty."])
    lines = []
    for message in messages:
        lines.append(f"From: {message.sender}")
        lines.append(f"Subject: {message.subject}")
        lines.extend(message.body.splitlines())
        lines.append("")
    return _result(lines[:-1])


def status_command(engine, player_id: str) -> Dict[str, Any]:
    snapshot = engine.get_progress_state(player_id)
    lines = [f"Credits: {snapshot.credits}"]
    if snapshot.connected_ip:
        lines.append(f"Connected: {snapshot.connected_ip} ({snapshot.connected_host_id or 'unknown host'})")
    else:
        lines.append("Connected: no")
    completed = ", ".join(snapshot.completed_operation_ids) or "none"
    lines.append(f"Completed operations: {completed}")
    return _result(lines)


def ls_command(engine, player_id: str, path: str = "/") -> Dict[str, Any]:
    snapshot = engine.get_progress_state(player_id)
    if snapshot.connected_host_id is None:
        return _result(["You are not connected to any host."])
    node = engine.resolve_filesystem(player_id, snapshot.connected_host_id, path)
    if node is None:
        return _result([f"ls: {normalize_path(path)}: no such file or directory"])
    if node.is_file:
        return _result([node.path])
    return _result(sorted(node.children or []) or ["(empty)"])


def cat_command(engine, player_id: str, path: str) -> Dict[str, Any]:
    snapshot = engine.get_progress_state(player_id)
    if snapshot.connected_host_id is None:
        return _result(["You are not connected to any host."])
    node = engine.resolve_filesystem(player_id, snapshot.connected_host_id, path)
    if node is None:
        return _result([f"cat: {normalize_path(path)}: no such file or directory"])
    if not node.is_file:
        return _result([f"cat: {node.path}: is a directory"])
    return _result((node.content or "").splitlines())


def _validation_lines(result, feedback: List[str] = None) -> Dict[str, Any]:
    lines = list(feedback or [])
    lines.extend(result.notifications)
    if result.error and not lines:
        lines.append(result.error)
    events = [f"completed:{op_id}" for op_id in result.completed]
    events.extend(f"activated:{op_id}" for op_id in result.activated)
    events.extend(f"failed:{op_id}" for op_id in result.failed)
    if result.activated:
        lines.append("New message in your inbox.")
    return _result(lines, events=events)


def advance_command(engine, player_id: str, operation_id: str) -> Dict[str, Any]:
    return _validation_lines(engine.advance_operation(player_id, operation_id))


def handle_command(engine, player_id: str, line: str) -> Dict[str, Any]:
    """Dispatch one terminal line.

    Read-only commands are served directly; everything else is submitted
    to the engine as a player action.
    """
    parts = line.strip().split()
    if not parts:
        return _result([])
    name, args = parts[0].lower(), parts[1:]
    if name == "help":
        return _result(help_lines())
    if name == "ops":
        return ops_command(engine, player_id)
    if name == "inbox":
        limit = int(args[0]) if args and args[0].isdigit() else 10
        return inbox_command(engine, player_id, limit)
    if name == "status":
        return status_command(engine, player_id)
    if name == "ls":
        return ls_command(engine, player_id, args[0] if args else "/")
    if name == "cat":
        if len(args) != 1:
            return _result(["Usage: cat <path>"])
        return cat_command(engine, player_id, args[0])
    if name == "advance":
        if len(args) != 1:
            return _result(["Usage: advance <operation_id>"])
        return advance_command(engine, player_id, args[0])
    result = engine.submit_action(player_id, line)
    feedback = []
    if not result.rejected:
        if name == "connect":
            feedback.append(f"Connection established: {args[0]}")
        elif name == "disconnect":
            feedback.append("Connection closed.")
    return _validation_lines(result, feedback)
