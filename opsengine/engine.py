"""Operation engine: the player-facing contract.

Every mutating call (session open, flag write, action, manual advance) runs
inside a per-player critical section that loads the player's state, drives
the validator -> reward applier -> trigger evaluator pipeline and persists
the result before releasing the lock. State is only saved when the pipeline
finishes, so a failure part way leaves the stored record untouched.

Reads (filesystem resolution, operation listings, inbox) work on a freshly
loaded snapshot and do not take the lock.
"""

import logging
import threading
import time
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Union

from config import get_ledger_retention, get_starting_credits
from .commands import ActionError, parse_action
from .ledger import CreditsLedger, LedgerEntry
from .model import Action, FilesystemNode, FlagValue, LifecycleEvent, Operation, OperationStep, normalize_path
from .narrative import InboxMessage, describe, render_inbox
from .overlay import HostDirectory, file_exists, resolve
from .persistence import InMemoryPlayerStore, PlayerStore
from .state import PlayerProgressState
from .steps import ActionContext, ValidationResult, advance_pointer, validate
from .triggers import evaluate, open_session

logger = logging.getLogger(__name__)

NOT_CONNECTED = "You are not connected to any host."


@dataclass(frozen=True)
class ActiveOperationView:
    """An active operation with its rendered activation message."""
    operation: Operation
    subject: str
    body: str
    sender: str
    current_step: Optional[OperationStep]
    current_step_index: int
    awaiting_advance: bool
    activated_at: float

    @property
    def id(self) -> str:
        return self.operation.id

    @property
    def progress(self) -> str:
        return f"Step {self.current_step_index + 1} of {len(self.operation.steps)}"

    @property
    def hint(self) -> Optional[str]:
        if self.current_step is None:
            return None
        hints = self.current_step.hints
        return hints.command_example or hints.prompt


@dataclass(frozen=True)
class ProgressSnapshot:
    player_id: str
    flags: Dict[str, FlagValue]
    credits: int
    completed_operation_ids: List[str]
    connected_host_id: Optional[str] = None
    connected_ip: Optional[str] = None


class OperationEngine:
    """Runs operations for any number of players over a shared registry."""

    def __init__(self, registry, hosts: Optional[HostDirectory] = None,
                 store: Optional[PlayerStore] = None, clock: Callable[[], float] = time.time):
        self.registry = registry
        self.hosts = hosts if hosts is not None else HostDirectory()
        self.store = store if store is not None else InMemoryPlayerStore()
        self.clock = clock
        # Entries drop out once no session holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # --- State handling ---
    def _lock_for(self, player_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(player_id)
            if lock is None:
                lock = self._locks[player_id] = threading.Lock()
            return lock

    def _new_state(self, player_id: str) -> PlayerProgressState:
        ledger = CreditsLedger(balance=get_starting_credits(), retention=get_ledger_retention())
        return PlayerProgressState(player_id=player_id, ledger=ledger)

    def _load(self, player_id: str) -> PlayerProgressState:
        state = self.store.load(player_id)
        if state is None:
            return self._new_state(player_id)
        # Revised definitions may have fewer steps than a stored pointer
        for operation_id, entry in state.active_operations.items():
            operation = self.registry.get(operation_id)
            if operation is not None and entry.current_step_index >= len(operation.steps):
                entry.current_step_index = len(operation.steps) - 1
        return state

    @contextmanager
    def _session(self, player_id: str) -> Iterator[PlayerProgressState]:
        """Per-player critical section: load, mutate, save."""
        with self._lock_for(player_id):
            state = self._load(player_id)
            yield state
            self.store.save(state)

    def _journal(self, state: PlayerProgressState, result: ValidationResult, now: float) -> None:
        for operation_id in result.completed:
            state.log_event(operation_id, LifecycleEvent.COMPLETED, now)
        for operation_id, reason in result.failed.items():
            state.log_event(operation_id, LifecycleEvent.FAILED, now, detail=reason)
        for operation_id in result.activated:
            state.log_event(operation_id, LifecycleEvent.ACTIVATED, now)

    # --- Mutating contract ---
    def open_session(self, player_id: str) -> List[str]:
        """Mark the player's session as opened and activate what that unlocks.

        Returns:
            Newly activated operation ids
        """
        now = self.clock()
        with self._session(player_id) as state:
            activated = open_session(state, self.registry, now)
            for operation_id in activated:
                state.log_event(operation_id, LifecycleEvent.ACTIVATED, now)
        return activated

    def set_flag(self, player_id: str, key: str, value: FlagValue = True) -> List[str]:
        """Write a flag from outside the operation pipeline and re-evaluate triggers."""
        now = self.clock()
        with self._session(player_id) as state:
            state.flags[key] = value
            activated = evaluate(state, self.registry, now)
            for operation_id in activated:
                state.log_event(operation_id, LifecycleEvent.ACTIVATED, now)
        return activated

    def submit_action(self, player_id: str, action: Union[str, Action]) -> ValidationResult:
        """Submit a player action and run the full progression pipeline.

        Args:
            player_id: Player identifier
            action: Raw terminal line or an Action

        Returns:
            ValidationResult. Malformed or unknown actions come back with
            ``rejected`` set; they never raise.
        """
        if isinstance(action, str):
            try:
                action = parse_action(action)
            except ActionError as e:
                return ValidationResult(error=str(e), rejected=True)
        elif not isinstance(action, Action):
            return ValidationResult(error="Unsupported action.", rejected=True)

        now = self.clock()
        with self._session(player_id) as state:
            result = self._run_action(state, action, now)
            self._journal(state, result, now)
        return result

    def _run_action(self, state: PlayerProgressState, action: Action, now: float) -> ValidationResult:
        file_path = normalize_path(action.file_path) if action.file_path else action.file_path
        action = Action(action.command, action.target_ip, file_path, action.host_id, action.token)
        ctx = ActionContext()

        if action.command in ("scan", "connect"):
            if not action.target_ip:
                return ValidationResult(error=f"Usage: {action.command} <ip>", rejected=True)
            host = self.hosts.by_ip(action.target_ip)
            action.host_id = host.id if host else action.host_id
        elif action.command in ("disconnect", "delete"):
            if state.connected_ip is None:
                return ValidationResult(error=NOT_CONNECTED, rejected=True)
            action.host_id = state.connected_host_id
            action.target_ip = state.connected_ip
            if action.command == "delete":
                if not action.file_path:
                    return ValidationResult(error="Usage: rm <path>", rejected=True)
                ctx.file_existed = file_exists(action.host_id, action.file_path, state, self.registry, self.hosts)
        elif action.command == "ack":
            if not action.token:
                return ValidationResult(error="Usage: ack <token>", rejected=True)
        else:
            return ValidationResult(error=f"Unknown command: {action.command}", rejected=True)

        result = validate(state, action, self.registry, ctx, now)

        # World effects of the command itself
        if action.command == "connect":
            state.connected_host_id = action.host_id
            state.connected_ip = action.target_ip
        elif action.command == "disconnect":
            state.connected_host_id = None
            state.connected_ip = None
        elif action.command == "delete":
            if ctx.file_existed:
                state.record_deletion(action.host_id, action.file_path)
            elif not result.matched:
                result.error = f"rm: {action.file_path}: no such file"
        return result

    def advance_operation(self, player_id: str, operation_id: str) -> ValidationResult:
        """Move an operation past a matched step that has auto_advance disabled."""
        now = self.clock()
        with self._session(player_id) as state:
            entry = state.active_operations.get(operation_id)
            operation = self.registry.get(operation_id)
            if entry is None or operation is None:
                return ValidationResult(error=f"Operation {operation_id} is not active.", rejected=True)
            if not entry.awaiting_advance:
                return ValidationResult(error="The current objective is not complete yet.", rejected=True)
            result = ValidationResult()
            advance_pointer(state, operation, self.registry, result, now)
            self._journal(state, result, now)
        return result

    # --- Read contract ---
    def list_active_operations(self, player_id: str) -> List[ActiveOperationView]:
        """Active operations in activation order, with their activation message."""
        state = self._load(player_id)
        views = []
        for operation_id, entry in state.active_in_order():
            operation = self.registry.get(operation_id)
            if operation is None:
                continue
            message = describe(operation, LifecycleEvent.ACTIVATED)
            views.append(ActiveOperationView(
                operation=operation,
                subject=message.subject,
                body=message.body,
                sender=message.sender,
                current_step=operation.get_step(entry.current_step_index),
                current_step_index=entry.current_step_index,
                awaiting_advance=entry.awaiting_advance,
                activated_at=entry.activated_at,
            ))
        return views

    def list_inbox_messages(self, player_id: str, limit: Optional[int] = None) -> List[InboxMessage]:
        return render_inbox(self._load(player_id).journal, self.registry, limit)

    def resolve_filesystem(self, player_id: str, host_id: str, path: str) -> Optional[FilesystemNode]:
        """Resolve a path on a host as the player currently sees it; None means not found."""
        return resolve(host_id, path, self._load(player_id), self.registry, self.hosts)

    def get_progress_state(self, player_id: str) -> ProgressSnapshot:
        state = self._load(player_id)
        return ProgressSnapshot(
            player_id=player_id,
            flags=dict(state.flags),
            credits=state.credits_balance,
            completed_operation_ids=sorted(state.completed_operation_ids),
            connected_host_id=state.connected_host_id,
            connected_ip=state.connected_ip,
        )

    def ledger_history(self, player_id: str, limit: int = 10) -> List[LedgerEntry]:
        return self._load(player_id).ledger.recent(limit)
