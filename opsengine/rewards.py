"""Reward application on operation completion.

Applying rewards is all-or-nothing: the credit transaction is the only write
that can fail, so it is recorded first and every other write follows it. Once
an operation is completed a repeat apply is a no-op.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .ledger import LedgerEntry
from .model import Operation
from .state import PlayerProgressState
from .triggers import evaluate

logger = logging.getLogger(__name__)


class OperationNotActiveError(RuntimeError):
    """Raised when rewards are applied to an operation that is not active."""


@dataclass
class RewardResult:
    operation_id: str
    flags_written: List[str] = field(default_factory=list)
    credits_transaction: Optional[LedgerEntry] = None
    completion_flag_set: bool = False
    already_completed: bool = False
    activated: List[str] = field(default_factory=list)  # cascade activations


def apply_rewards(state: PlayerProgressState, operation: Operation, registry,
                  now: Optional[float] = None) -> RewardResult:
    """Apply an operation's rewards and mark it completed.

    Args:
        state: Player progress state
        operation: Operation whose final step was satisfied
        registry: OperationRegistry, re-evaluated after committing
        now: Timestamp for cascade activations

    Returns:
        RewardResult; ``already_completed`` is set (and nothing is granted)
        when the operation was completed before

    Raises:
        OperationNotActiveError: If the operation is neither active nor completed
        InsufficientCreditsError: If the credit delta would overdraw the ledger;
            in that case no state has changed
    """
    if state.is_completed(operation.id):
        return RewardResult(operation_id=operation.id, already_completed=True)
    if not state.is_active(operation.id):
        raise OperationNotActiveError(f"Operation {operation.id} is not active for {state.player_id}")

    rewards = operation.rewards
    transaction = None
    if rewards.credits:
        transaction = state.ledger.record(
            rewards.credits,
            reason=f"Operation reward: {operation.title}",
            source="operation_reward",
            operation_id=operation.id,
        )

    written = []
    for write in rewards.flags:
        state.flags[write.key] = write.value
        written.append(write.key)
    for command in rewards.unlocks_commands:
        key = f"command_unlocked:{command}"
        state.flags[key] = True
        written.append(key)
    state.flags[operation.completion_flag] = True
    state.mark_completed(operation.id)
    logger.info("Player %s: operation %s completed (+%d credits)",
                state.player_id, operation.id, rewards.credits)

    activated = evaluate(state, registry, now)
    return RewardResult(
        operation_id=operation.id,
        flags_written=written,
        credits_transaction=transaction,
        completion_flag_set=True,
        activated=activated,
    )
