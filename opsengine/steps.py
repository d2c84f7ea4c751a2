"""Step validation: matching player actions against active operations.

Every action is checked against the current step of every active operation,
not just one, since a single command may satisfy steps of unrelated
operations. A mismatch is a normal negative result and never changes state.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import get_ack_tokens
from .ledger import InsufficientCreditsError
from .model import (
    HOST_BOUND_STEP_TYPES,
    Action,
    Operation,
    OperationStep,
    StepType,
    normalize_path,
)
from .rewards import apply_rewards
from .state import PlayerProgressState

logger = logging.getLogger(__name__)

NO_EFFECT = "Command had no effect here."


@dataclass
class ActionContext:
    """World facts observed before the action took effect."""
    file_existed: bool = False


@dataclass
class ValidationResult:
    advanced: List[str] = field(default_factory=list)  # pointer moved
    satisfied: List[str] = field(default_factory=list)  # awaiting manual advance
    completed: List[str] = field(default_factory=list)
    activated: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # reward transaction rejected
    notifications: List[str] = field(default_factory=list)
    error: Optional[str] = None
    rejected: bool = False  # malformed / unknown action

    @property
    def step_advanced(self) -> bool:
        return bool(self.advanced or self.completed)

    @property
    def operation_completed(self) -> bool:
        return bool(self.completed)

    @property
    def matched(self) -> bool:
        return bool(self.advanced or self.satisfied or self.completed or self.failed)


def _host_matches(operation: Operation, step: OperationStep, action: Action) -> bool:
    expected = operation.host_for(step)
    if expected is None:
        return True
    if action.host_id is None:
        # Only IP-addressed steps tolerate hosts outside the directory
        return step.type not in HOST_BOUND_STEP_TYPES
    return expected == action.host_id


def step_matches(operation: Operation, step: OperationStep, action: Action, ctx: ActionContext) -> bool:
    """Check if an action satisfies a step.

    Args:
        operation: Operation owning the step (for host fallback)
        step: Step to check
        action: Resolved player action
        ctx: World facts captured before the action was applied

    Returns:
        True if the action satisfies the step
    """
    params = step.params
    if step.type in (StepType.SCAN_HOST, StepType.CONNECT_HOST):
        expected_command = "scan" if step.type == StepType.SCAN_HOST else "connect"
        return (
            action.command == expected_command
            and action.target_ip == params.target_ip
            and _host_matches(operation, step, action)
        )

    if step.type == StepType.DELETE_FILE:
        if action.command != "delete" or not action.file_path:
            return False
        if normalize_path(action.file_path) != params.file_path:
            return False
        if params.target_ip and action.target_ip != params.target_ip:
            return False
        # No credit for deleting a path that was never there
        return ctx.file_existed and _host_matches(operation, step, action)

    if step.type == StepType.DISCONNECT_HOST:
        if action.command != "disconnect" or action.host_id is None and action.target_ip is None:
            return False
        if params.target_ip and action.target_ip != params.target_ip:
            return False
        return _host_matches(operation, step, action)

    if step.type == StepType.ACKNOWLEDGE_COMMAND:
        if action.command != "ack" or not action.token:
            return False
        token = action.token.strip().upper()
        if params.token:
            return token == params.token
        return token in get_ack_tokens()

    return False


def _finish(state: PlayerProgressState, operation: Operation, registry, result: ValidationResult,
            now: Optional[float]) -> None:
    """Hand a finished operation to the reward applier."""
    try:
        reward = apply_rewards(state, operation, registry, now)
    except InsufficientCreditsError as e:
        # Operation stays active on its final step and may be retried
        result.failed[operation.id] = str(e)
        result.notifications.append(f"Operation stalled: {operation.title} ({e})")
        logger.warning("Player %s: reward for %s rejected: %s", state.player_id, operation.id, e)
        return
    if reward.already_completed:
        return
    result.completed.append(operation.id)
    result.activated.extend(reward.activated)
    result.notifications.append(f"Operation complete: {operation.title}")


def advance_pointer(state: PlayerProgressState, operation: Operation, registry, result: ValidationResult,
                    now: Optional[float] = None) -> None:
    """Move an operation past its current step, completing it on the last one."""
    entry = state.active_operations[operation.id]
    if entry.current_step_index + 1 >= len(operation.steps):
        _finish(state, operation, registry, result, now)
        return
    entry.current_step_index += 1
    entry.awaiting_advance = False
    result.advanced.append(operation.id)
    next_step = operation.steps[entry.current_step_index]
    result.notifications.append(f"Progress: {operation.title} -> {next_step.id}")


def validate(state: PlayerProgressState, action: Action, registry, ctx: Optional[ActionContext] = None,
             now: Optional[float] = None) -> ValidationResult:
    """Validate an action against every active operation's current step.

    Args:
        state: Player progress state
        action: Resolved player action
        registry: OperationRegistry
        ctx: World facts captured before the action was applied
        now: Timestamp for activations caused by completions

    Returns:
        ValidationResult; ``error`` is NO_EFFECT when nothing matched
    """
    ctx = ctx or ActionContext()
    result = ValidationResult()

    # Snapshot: operations activated by this action's completions are not
    # checked against the same action
    finished = deque()
    for operation_id, entry in state.active_in_order():
        operation = registry.get(operation_id)
        if operation is None:
            continue
        step = operation.get_step(entry.current_step_index)
        if step is None or entry.awaiting_advance:
            continue
        if not step_matches(operation, step, action, ctx):
            logger.debug("Player %s: %s step %s not matched by %s", state.player_id, operation_id, step.id, action.command)
            continue
        if not step.auto_advance:
            entry.awaiting_advance = True
            result.satisfied.append(operation_id)
            result.notifications.append(f"Objective met: {operation.title} -> {step.id}")
        elif entry.current_step_index + 1 >= len(operation.steps):
            finished.append(operation)
        else:
            advance_pointer(state, operation, registry, result, now)

    while finished:
        _finish(state, finished.popleft(), registry, result, now)

    if not result.matched:
        result.error = NO_EFFECT
    return result
