"""Trigger evaluation: dormant -> active transitions.

Evaluation reads the current player state and only ever writes the
``active_operations`` insert itself. Operations are scanned in registry
declaration order so that simultaneous activations (and therefore narrative
delivery) are reproducible.
"""

import logging
import time
from typing import List, Optional

from config import get_max_cascade_passes, get_session_flag
from .flags import flag_matches, is_present, requirements_met
from .model import OnFirstSessionOpen, OnFlagSet, OnOperationsCompleted, Operation
from .state import PlayerProgressState

logger = logging.getLogger(__name__)


class CascadeLimitError(RuntimeError):
    """Raised when re-evaluation does not settle within the pass guard."""


def trigger_satisfied(operation: Operation, state: PlayerProgressState) -> bool:
    """Check if an operation's trigger holds on the current state.

    Args:
        operation: Operation to check
        state: Player progress state

    Returns:
        True if the trigger condition is met
    """
    trigger = operation.trigger
    if isinstance(trigger, OnFirstSessionOpen):
        return is_present(state.flags, get_session_flag())
    if isinstance(trigger, OnOperationsCompleted):
        return all(op_id in state.completed_operation_ids for op_id in trigger.operation_ids)
    if isinstance(trigger, OnFlagSet):
        return flag_matches(state.flags, trigger.flag_key, trigger.flag_value)
    return False


def can_activate(operation: Operation, state: PlayerProgressState) -> bool:
    """Check if a dormant operation can become active for this player."""
    if not operation.is_published:
        return False
    if state.is_completed(operation.id) or state.is_active(operation.id):
        return False
    # A set completion flag marks the operation as permanently done
    if is_present(state.flags, operation.completion_flag):
        return False
    if not requirements_met(operation.requirements, state.flags, state.completed_operation_ids):
        return False
    return trigger_satisfied(operation, state)


def evaluate(state: PlayerProgressState, registry, now: Optional[float] = None,
             max_passes: Optional[int] = None) -> List[str]:
    """Activate every operation whose requirements and trigger now hold.

    Args:
        state: Player progress state
        registry: OperationRegistry to scan
        now: Activation timestamp (defaults to time.time())
        max_passes: Guard on re-evaluation passes

    Returns:
        Newly activated operation ids, in activation order

    Raises:
        CascadeLimitError: If evaluation does not settle within max_passes
    """
    now = time.time() if now is None else now
    max_passes = max_passes or get_max_cascade_passes()
    activated: List[str] = []

    for _ in range(max_passes):
        newly = []
        for operation in registry.published():
            if can_activate(operation, state):
                state.activate(operation.id, now)
                newly.append(operation.id)
                logger.info("Player %s: operation %s activated", state.player_id, operation.id)
        if not newly:
            return activated
        activated.extend(newly)

    raise CascadeLimitError(f"Trigger evaluation did not settle after {max_passes} passes")


def open_session(state: PlayerProgressState, registry, now: Optional[float] = None) -> List[str]:
    """Set the session-opened flag (once) and evaluate triggers."""
    flag = get_session_flag()
    if not is_present(state.flags, flag):
        state.flags[flag] = True
    return evaluate(state, registry, now)
