"""Per-player progress state.

Runtime mutable data, separated from the static operation definitions. Only
the trigger evaluator (activations) and the reward applier (completions,
flags, credits) mutate the operation bookkeeping; the engine records the
connection, deletions and the inbox journal.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .ledger import CreditsLedger
from .model import FlagValue, LifecycleEvent, normalize_path


@dataclass
class ActiveOperation:
    current_step_index: int = 0
    activated_at: float = 0.0
    sequence: int = 0  # activation order, used for overlay precedence
    awaiting_advance: bool = False  # current step matched, auto_advance off


@dataclass
class JournalRecord:
    operation_id: str
    event: LifecycleEvent
    timestamp: float
    detail: Optional[str] = None


@dataclass
class PlayerProgressState:
    player_id: str
    flags: Dict[str, FlagValue] = field(default_factory=dict)
    ledger: CreditsLedger = field(default_factory=CreditsLedger)
    completed_operation_ids: Set[str] = field(default_factory=set)
    # Insertion order is activation order
    active_operations: Dict[str, ActiveOperation] = field(default_factory=dict)
    activation_counter: int = 0
    # Terminal world state
    connected_host_id: str | None = None
    connected_ip: str | None = None
    deleted_paths: Dict[str, Set[str]] = field(default_factory=dict)
    journal: List[JournalRecord] = field(default_factory=list)

    @property
    def credits_balance(self) -> int:
        return self.ledger.balance

    def is_active(self, operation_id: str) -> bool:
        return operation_id in self.active_operations

    def is_completed(self, operation_id: str) -> bool:
        return operation_id in self.completed_operation_ids

    def activate(self, operation_id: str, now: float) -> ActiveOperation:
        """Insert an operation into the active set with its pointer at step 0."""
        if operation_id in self.completed_operation_ids:
            raise ValueError(f"Operation {operation_id} is already completed")
        if operation_id in self.active_operations:
            raise ValueError(f"Operation {operation_id} is already active")
        self.activation_counter += 1
        entry = ActiveOperation(current_step_index=0, activated_at=now, sequence=self.activation_counter)
        self.active_operations[operation_id] = entry
        return entry

    def mark_completed(self, operation_id: str) -> None:
        """Move an operation from the active set to the completed set."""
        self.active_operations.pop(operation_id, None)
        self.completed_operation_ids.add(operation_id)

    def active_in_order(self) -> List[tuple]:
        """(operation_id, ActiveOperation) pairs in activation order."""
        return sorted(self.active_operations.items(), key=lambda item: item[1].sequence)

    def is_deleted(self, host_id: str, path: str) -> bool:
        return normalize_path(path) in self.deleted_paths.get(host_id, set())

    def record_deletion(self, host_id: str, path: str) -> None:
        self.deleted_paths.setdefault(host_id, set()).add(normalize_path(path))

    def log_event(self, operation_id: str, event: LifecycleEvent, now: float, detail: Optional[str] = None) -> None:
        self.journal.append(JournalRecord(operation_id=operation_id, event=event, timestamp=now, detail=detail))
        # Journal shares the ledger retention window
        overflow = len(self.journal) - self.ledger.retention
        if overflow > 0:
            del self.journal[:overflow]
