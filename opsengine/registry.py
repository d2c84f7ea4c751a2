"""Operation registry.

Holds operation definitions in their declared order and rejects broken
definitions at ingestion time, so they never reach a player. Hard errors
(bad params, unresolvable hosts, self references, dependency cycles) reject a
record; softer findings (unknown references, shared completion flags) are
reported as warnings and the record is accepted.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from config import get_session_flag, get_strict_publish
from .loader import RecordError, parse_operation
from .model import (
    HOST_BOUND_STEP_TYPES,
    DeleteFileParams,
    OnFlagSet,
    OnOperationsCompleted,
    Operation,
)

logger = logging.getLogger(__name__)


class PublishError(ValueError):
    """Raised when an operation definition is rejected at publish time."""

    def __init__(self, operation_id: str, errors: List[str]):
        super().__init__(f"Operation {operation_id!r} rejected: " + "; ".join(errors))
        self.operation_id = operation_id
        self.errors = errors


@dataclass
class IngestReport:
    published: List[str] = field(default_factory=list)
    rejected: Dict[str, List[str]] = field(default_factory=dict)
    warnings: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.rejected


class OperationRegistry:
    """Ordered store of operation definitions.

    Declaration order is preserved and is the tie-break order used by the
    trigger evaluator when several operations become eligible together.
    """

    def __init__(self, hosts=None, strict: Optional[bool] = None):
        self.hosts = hosts
        self.strict = get_strict_publish() if strict is None else strict
        self._operations: Dict[str, Operation] = {}

    # --- Lookup ---
    def get(self, operation_id: str) -> Optional[Operation]:
        return self._operations.get(operation_id)

    def all(self) -> List[Operation]:
        return list(self._operations.values())

    def published(self) -> List[Operation]:
        return [op for op in self._operations.values() if op.is_published]

    def __contains__(self, operation_id: str) -> bool:
        return operation_id in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    # --- Publishing ---
    def publish(self, operation: Operation, revise: bool = False) -> List[str]:
        """Validate and store an operation.

        Args:
            operation: Parsed operation definition
            revise: Allow replacing an existing id; the stored version is bumped

        Returns:
            List of warnings for designer review

        Raises:
            PublishError: If the definition has hard errors
        """
        existing = self._operations.get(operation.id)
        errors = []
        if existing is not None and not revise:
            errors.append(f"Operation id {operation.id} already exists.")
        errors.extend(self._definition_errors(operation))
        if not errors:
            errors.extend(self._cycle_errors(operation))
        warnings = self._definition_warnings(operation)
        if self.strict and warnings:
            errors.extend(warnings)
            warnings = []
        if errors:
            logger.warning("Rejected operation %s: %s", operation.id, "; ".join(errors))
            raise PublishError(operation.id, errors)

        if existing is not None:
            operation = dataclasses.replace(operation, version=existing.version + 1)
        self._operations[operation.id] = operation
        for warning in warnings:
            logger.warning("Operation %s: %s", operation.id, warning)
        logger.info("Published operation %s (v%d, %s)", operation.id, operation.version, operation.status)
        return warnings

    def ingest(self, records: Iterable[dict], revise: bool = False) -> IngestReport:
        """Parse and publish a batch of raw records, in order.

        A bad record is reported and skipped; it never aborts the batch.
        """
        report = IngestReport()
        for index, record in enumerate(records):
            record_id = record.get("id") if isinstance(record, dict) else None
            record_id = record_id or f"record_{index + 1}"
            try:
                operation = parse_operation(record)
                warnings = self.publish(operation, revise=revise)
            except RecordError as e:
                report.rejected[record_id] = e.errors or [str(e)]
                logger.warning("Rejected record %s: %s", record_id, "; ".join(report.rejected[record_id]))
                continue
            except PublishError as e:
                report.rejected[record_id] = e.errors
                continue
            report.published.append(operation.id)
            if warnings:
                report.warnings[operation.id] = warnings
        return report

    # --- Validation ---
    def _definition_errors(self, operation: Operation) -> List[str]:
        errors = []
        seen_steps: Set[str] = set()
        for step in operation.steps:
            if step.id in seen_steps:
                errors.append(f"Duplicate step id '{step.id}'.")
            seen_steps.add(step.id)

            host_id = operation.host_for(step)
            if step.type in HOST_BOUND_STEP_TYPES and not host_id:
                errors.append(f"Step {step.id} requires a target host id.")
                continue
            if host_id and self.hosts is not None:
                if host_id not in self.hosts and host_id not in operation.filesystem_overlays:
                    errors.append(f"Step {step.id}: unknown host '{host_id}'.")
                    continue
                if isinstance(step.params, DeleteFileParams) and not self._file_defined(operation, host_id, step.params.file_path):
                    errors.append(f"Step {step.id}: file \"{step.params.file_path}\" does not exist.")

        trigger = operation.trigger
        if isinstance(trigger, OnOperationsCompleted) and operation.id in trigger.operation_ids:
            errors.append(f"Trigger cannot depend on the operation itself ({operation.id}).")
        if operation.id in operation.requirements.required_operations:
            errors.append(f"Operation cannot require itself ({operation.id}).")
        own_flags = set(operation.written_flags())
        if isinstance(trigger, OnFlagSet) and trigger.flag_key in own_flags:
            errors.append(f"Trigger flag '{trigger.flag_key}' is written by the operation itself.")
        return errors

    def _file_defined(self, operation: Operation, host_id: str, path: str) -> bool:
        host = self.hosts.get(host_id)
        for fs in (host.filesystem if host else {}, operation.filesystem_overlays.get(host_id, {})):
            node = fs.get(path)
            if node is not None and node.is_file:
                return True
        return False

    def _definition_warnings(self, operation: Operation) -> List[str]:
        warnings = []
        others = [op for op in self._operations.values() if op.id != operation.id]
        known_ids = {op.id for op in others}
        known_flags = {get_session_flag()}
        for op in others:
            known_flags.update(op.written_flags())

        referenced = list(operation.requirements.required_operations)
        if isinstance(operation.trigger, OnOperationsCompleted):
            referenced.extend(operation.trigger.operation_ids)
        for ref in referenced:
            if ref != operation.id and ref not in known_ids:
                warnings.append(f"References unknown operation id {ref}.")

        flag_refs = [c.key for c in operation.requirements.required_flags]
        if isinstance(operation.trigger, OnFlagSet):
            flag_refs.append(operation.trigger.flag_key)
        for key in flag_refs:
            if key not in known_flags:
                warnings.append(f"Requires flag '{key}' that no operation emits yet.")

        for op in others:
            if op.completion_flag == operation.completion_flag:
                warnings.append(f"Completion flag '{operation.completion_flag}' is shared with {op.id}.")

        if operation.rewards.credits < 0:
            warnings.append(f"Reward debits {-operation.rewards.credits} credits.")
        return warnings

    def _dependencies(self, operation: Operation, flag_writers: Dict[str, Set[str]]) -> Set[str]:
        """Operation ids whose completion ``operation`` waits on."""
        deps = set(operation.requirements.required_operations)
        flag_keys = [c.key for c in operation.requirements.required_flags]
        trigger = operation.trigger
        if isinstance(trigger, OnOperationsCompleted):
            deps.update(trigger.operation_ids)
        elif isinstance(trigger, OnFlagSet):
            flag_keys.append(trigger.flag_key)
        for key in flag_keys:
            deps.update(flag_writers.get(key, ()))
        deps.discard(operation.id)
        return deps

    def _cycle_errors(self, candidate: Operation) -> List[str]:
        operations = dict(self._operations)
        operations[candidate.id] = candidate
        flag_writers: Dict[str, Set[str]] = {}
        for op in operations.values():
            for key in op.written_flags():
                flag_writers.setdefault(key, set()).add(op.id)
        graph = {op_id: self._dependencies(op, flag_writers) for op_id, op in operations.items()}

        # Depth-first search for a path leading back to the candidate
        stack = [(candidate.id, [candidate.id])]
        visited: Set[str] = set()
        while stack:
            node, path = stack.pop()
            for dep in graph.get(node, ()):
                if dep == candidate.id:
                    cycle = " -> ".join(path + [dep])
                    return [f"Dependency cycle: {cycle}."]
                if dep not in visited and dep in graph:
                    visited.add(dep)
                    stack.append((dep, path + [dep]))
        return []
