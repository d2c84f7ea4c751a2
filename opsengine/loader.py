"""Operation and host loader from structured JSON.

This module converts raw operation records (as written by the authoring tool)
into Operation objects, and loads them from a JSON file or an HTTP endpoint.
Record shape is checked with jsonschema before parsing.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import requests

from .model import (
    STEP_PARAM_TYPES,
    FilesystemNode,
    FlagCondition,
    FlagWrite,
    MailTemplate,
    NarrativeBindings,
    OnFirstSessionOpen,
    OnFlagSet,
    OnOperationsCompleted,
    Operation,
    OperationRequirements,
    OperationRewards,
    OperationStep,
    StepHints,
    StepType,
    normalize_path,
)
from .schema import HOST_SCHEMA, OPERATION_SCHEMA, STEP_PARAM_SCHEMAS

logger = logging.getLogger(__name__)

_OPERATION_VALIDATOR = jsonschema.Draft7Validator(OPERATION_SCHEMA)
_STEP_PARAM_VALIDATORS = {k: jsonschema.Draft7Validator(v) for k, v in STEP_PARAM_SCHEMAS.items()}
_HOST_VALIDATOR = jsonschema.Draft7Validator(HOST_SCHEMA)

# Field names used by older authoring tool exports
_LEGACY_TRIGGER_TYPES = {
    "ON_FIRST_TERMINAL_OPEN": "ON_FIRST_SESSION_OPEN",
    "ON_QUEST_COMPLETION": "ON_OPERATIONS_COMPLETED",
}
_LEGACY_FIELDS = {
    "default_system_id": "default_host_id",
    "embedded_filesystems": "filesystem_overlays",
}


class RecordError(ValueError):
    """Raised when an operation source or record cannot be parsed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class RegistryFetchError(RuntimeError):
    """Raised when operation records cannot be fetched over HTTP."""


def upgrade_legacy_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``record`` with legacy field names converted.

    Args:
        record: Raw operation record

    Returns:
        Record using the current field names
    """
    if not isinstance(record, dict):
        return record
    data = copy.deepcopy(record)
    for old, new in _LEGACY_FIELDS.items():
        if old in data and new not in data:
            data[new] = data.pop(old)

    trigger = data.get("trigger")
    if isinstance(trigger, dict):
        ttype = trigger.get("type")
        if ttype in _LEGACY_TRIGGER_TYPES:
            trigger["type"] = _LEGACY_TRIGGER_TYPES[ttype]
        if "quest_ids" in trigger and "operation_ids" not in trigger:
            trigger["operation_ids"] = trigger.pop("quest_ids")

    for step in data.get("steps") or []:
        if isinstance(step, dict) and "target_system_id" in step and "target_host_id" not in step:
            step["target_host_id"] = step.pop("target_system_id")

    requirements = data.get("requirements")
    if isinstance(requirements, dict) and "required_quests" in requirements:
        requirements.setdefault("required_operations", requirements.pop("required_quests"))
    return data


def _format_error(error: jsonschema.ValidationError) -> str:
    location = ".".join(str(p) for p in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message


def validate_operation_record(record: Dict[str, Any]) -> List[str]:
    """Validate the structure of an operation record.

    Args:
        record: Operation record (already upgraded from legacy names)

    Returns:
        List of validation error messages (empty if valid)
    """
    if not isinstance(record, dict):
        return ["Operation record must be an object"]

    errors = [_format_error(e) for e in sorted(_OPERATION_VALIDATOR.iter_errors(record), key=str)]
    if errors:
        return errors

    for index, step in enumerate(record["steps"]):
        step_id = step.get("id", f"step_{index + 1}")
        validator = _STEP_PARAM_VALIDATORS[step["type"]]
        for error in validator.iter_errors(step.get("params") or {}):
            if error.validator == "required":
                missing = error.message.split("'")[1]
                errors.append(f"Step {step_id} requires params.{missing}.")
            else:
                errors.append(f"Step {step_id}: params.{_format_error(error)}")
    return errors


def _parse_flag_condition(data: Any) -> FlagCondition:
    if isinstance(data, str):
        return FlagCondition(key=data)
    return FlagCondition(key=data["key"], value=data.get("value"))


def _parse_flag_write(data: Any) -> FlagWrite:
    if isinstance(data, str):
        return FlagWrite(key=data)
    return FlagWrite(key=data["key"], value=data.get("value", True))


def _parse_trigger(data: Dict[str, Any]):
    ttype = data["type"]
    if ttype == "ON_OPERATIONS_COMPLETED":
        return OnOperationsCompleted(operation_ids=tuple(data["operation_ids"]))
    if ttype == "ON_FLAG_SET":
        return OnFlagSet(flag_key=data["flag_key"], flag_value=data.get("flag_value"))
    return OnFirstSessionOpen()


def _parse_params(step_type: StepType, params: Dict[str, Any]):
    params_cls = STEP_PARAM_TYPES[step_type]
    known = {k: v for k, v in params.items() if k in params_cls.__dataclass_fields__}
    if "file_path" in known:
        known["file_path"] = normalize_path(known["file_path"])
    if "token" in known:
        known["token"] = known["token"].strip().upper()
    return params_cls(**known)


def _parse_step(step_data: Dict[str, Any]) -> OperationStep:
    step_type = StepType(step_data["type"])
    hints = step_data.get("hints") or {}
    return OperationStep(
        id=step_data["id"],
        type=step_type,
        params=_parse_params(step_type, step_data.get("params") or {}),
        target_host_id=step_data.get("target_host_id"),
        auto_advance=step_data.get("auto_advance", True),
        description=step_data.get("description", ""),
        hints=StepHints(prompt=hints.get("prompt"), command_example=hints.get("command_example")),
    )


def parse_filesystem(data: Dict[str, Any]) -> Dict[str, FilesystemNode]:
    """Parse a ``path -> node`` filesystem map."""
    nodes = {}
    for raw_path, node in data.items():
        path = normalize_path(node.get("path") or raw_path)
        children = node.get("children")
        nodes[path] = FilesystemNode(
            type=node["type"],
            path=path,
            children=list(children) if children is not None else ([] if node["type"] == "dir" else None),
            content=node.get("content"),
        )
    return nodes


def _parse_mail(data: Optional[Dict[str, Any]]) -> Optional[MailTemplate]:
    if not data:
        return None
    return MailTemplate(
        subject=data["subject"],
        body=data["body"],
        sender=data.get("from"),
        preheader=data.get("preheader"),
    )


def _parse_narrative(data: Dict[str, Any]) -> NarrativeBindings:
    return NarrativeBindings(
        handler=data.get("handler"),
        activation=_parse_mail(data.get("activation")),
        completion=_parse_mail(data.get("completion")),
        failure=_parse_mail(data.get("failure")),
    )


def _parse_rewards(data: Dict[str, Any], completion_flag: Optional[str]) -> OperationRewards:
    return OperationRewards(
        credits=data.get("credits", 0),
        flags=[_parse_flag_write(f) for f in data.get("flags", [])],
        completion_flag=data.get("completion_flag") or completion_flag,
        unlocks_commands=list(data.get("unlocks_commands", [])),
    )


def _parse_requirements(data: Dict[str, Any]) -> OperationRequirements:
    return OperationRequirements(
        required_flags=[_parse_flag_condition(f) for f in data.get("required_flags", [])],
        required_operations=list(data.get("required_operations", [])),
        blocked_by_flags=[_parse_flag_condition(f) for f in data.get("blocked_by_flags", [])],
    )


def parse_operation(record: Dict[str, Any]) -> Operation:
    """Parse a single operation record.

    Args:
        record: Raw operation record (legacy names accepted)

    Returns:
        Parsed Operation object

    Raises:
        RecordError: If the record fails schema validation
    """
    data = upgrade_legacy_record(record)
    errors = validate_operation_record(data)
    if errors:
        record_id = data.get("id", "?") if isinstance(data, dict) else "?"
        raise RecordError(f"Invalid operation record {record_id!r}", errors)

    overlays = {
        host_id: parse_filesystem(fs)
        for host_id, fs in (data.get("filesystem_overlays") or {}).items()
    }
    return Operation(
        id=data["id"].strip(),
        title=data["title"].strip(),
        description=data.get("description", ""),
        trigger=_parse_trigger(data["trigger"]),
        steps=[_parse_step(s) for s in data["steps"]],
        requirements=_parse_requirements(data.get("requirements") or {}),
        rewards=_parse_rewards(data.get("rewards") or {}, data.get("completion_flag")),
        default_host_id=data.get("default_host_id"),
        filesystem_overlays=overlays,
        status=data.get("status", "published"),
        narrative=_parse_narrative(data.get("narrative") or {}),
        version=data.get("version", 1),
    )


def _extract_records(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("operations"), list):
        return payload["operations"]
    raise RecordError("Operation source must be a list or an object with an 'operations' list")


def load_operation_records(path: str) -> List[Dict[str, Any]]:
    """Load raw operation records from a JSON file.

    Args:
        path: Path to the operations JSON file

    Returns:
        List of raw operation records

    Raises:
        FileNotFoundError: If the file doesn't exist
        RecordError: If the JSON is invalid or has the wrong shape
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Operations file not found: {path}")
    try:
        with open(source, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        raise RecordError(f"Invalid JSON in operations file: {e}")
    return _extract_records(payload)


def fetch_operation_records(url: str, timeout: float = 10.0) -> List[Dict[str, Any]]:
    """Fetch raw operation records published over HTTP.

    Args:
        url: Endpoint returning ``{"operations": [...]}`` or a bare list
        timeout: Request timeout in seconds

    Returns:
        List of raw operation records

    Raises:
        RegistryFetchError: On network errors, non-2xx replies or bad bodies
    """
    try:
        response = requests.get(url, timeout=timeout, headers={"Accept": "application/json"})
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as e:
        raise RegistryFetchError(f"Failed to fetch operations from {url}: {e}") from e
    except ValueError as e:
        raise RegistryFetchError(f"Operations endpoint {url} did not return JSON: {e}") from e

    try:
        records = _extract_records(payload)
    except RecordError as e:
        raise RegistryFetchError(str(e)) from e
    logger.info("Fetched %d operation records from %s", len(records), url)
    return records


def load_host_records(path: str) -> List[Dict[str, Any]]:
    """Load and validate host records (id, ip, base filesystem) from JSON.

    Raises:
        FileNotFoundError: If the file doesn't exist
        RecordError: If the JSON is invalid or a host record is malformed
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Hosts file not found: {path}")
    try:
        with open(source, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        raise RecordError(f"Invalid JSON in hosts file: {e}")

    records = payload.get("hosts", []) if isinstance(payload, dict) else payload
    if not isinstance(records, list):
        raise RecordError("Hosts source must be a list or an object with a 'hosts' list")
    errors = []
    for record in records:
        errors.extend(f"host {record.get('id', '?') if isinstance(record, dict) else '?'}: {_format_error(e)}"
                      for e in _HOST_VALIDATOR.iter_errors(record))
    if errors:
        raise RecordError("Invalid host records", errors)
    return records
