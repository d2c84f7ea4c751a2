"""Credits ledger.

Append-only signed transaction log with a running balance. The balance is
authoritative; old entries may be pruned once the retention window is
exceeded, but entries are never edited.
"""
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

MAX_REASON_LENGTH = 240


class InsufficientCreditsError(ValueError):
    """Raised when a transaction would make the balance negative."""

    def __init__(self, balance: int, amount: int):
        super().__init__(f"Insufficient credits balance: {balance} available, {amount} requested.")
        self.balance = balance
        self.amount = amount


class InvalidTransactionError(ValueError):
    pass


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    amount: int
    reason: str
    balance_after: int
    timestamp: str
    type: str  # credit | debit
    source: Optional[str] = None
    operation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _sanitize_reason(reason: Any) -> str:
    if not isinstance(reason, str) or not reason.strip():
        return "Adjustment"
    return reason.strip()[:MAX_REASON_LENGTH]


@dataclass
class CreditsLedger:
    balance: int = 0
    entries: List[LedgerEntry] = field(default_factory=list)
    retention: int = 500

    def can_apply(self, amount: int) -> bool:
        return self.balance + amount >= 0

    def record(self, amount: int, reason: str, source: Optional[str] = None,
               operation_id: Optional[str] = None) -> LedgerEntry:
        """Append a signed transaction.

        Args:
            amount: Signed, non-zero integer amount
            reason: Human readable reason (trimmed, capped at 240 chars)
            source: Subsystem that originated the transaction
            operation_id: Operation the transaction belongs to, if any

        Returns:
            The appended entry

        Raises:
            InvalidTransactionError: If amount is zero or not an integer
            InsufficientCreditsError: If the balance would become negative
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise InvalidTransactionError("amount must be a non-zero integer.")
        if not self.can_apply(amount):
            raise InsufficientCreditsError(self.balance, amount)

        next_balance = self.balance + amount
        entry = LedgerEntry(
            id=f"txn_{uuid.uuid4().hex[:12]}",
            amount=amount,
            reason=_sanitize_reason(reason),
            balance_after=next_balance,
            timestamp=datetime.now(timezone.utc).isoformat(),
            type="credit" if amount > 0 else "debit",
            source=source,
            operation_id=operation_id,
        )
        self.balance = next_balance
        self.entries.append(entry)
        # Prune oldest entries beyond the retention window
        overflow = len(self.entries) - self.retention
        if overflow > 0:
            del self.entries[:overflow]
        return entry

    def recent(self, limit: int = 10) -> List[LedgerEntry]:
        if limit <= 0:
            return []
        return self.entries[-limit:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "retention": self.retention,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], retention: Optional[int] = None) -> "CreditsLedger":
        entries = [LedgerEntry(**e) for e in data.get("entries", [])]
        ledger = cls(
            balance=int(data.get("balance", 0)),
            entries=entries,
            retention=retention or int(data.get("retention", 500)),
        )
        if ledger.balance < 0:
            raise ValueError("ledger balance cannot be negative")
        return ledger
