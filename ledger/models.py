"""
Ledger data model.

Everything here is a value: frozen dataclasses holding tuples, amounts as
integer wei. A LedgerSnapshot is produced whole by SyncEngine.rebuild() and
replaced whole, never patched.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class TxOutcome(Enum):
    """Terminal state of a submitted transaction."""
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"          # never broadcast (signer/RPC refused it)


class WarningKind(Enum):
    PARTICIPANT_AMOUNTS = "participant_amounts"   # paid/owed read failed, zeroed
    EXPENSE_GAP = "expense_gap"                   # whole expense index skipped
    PERSON = "person"                             # registered address left out


@dataclass(frozen=True)
class PersonRecord:
    """Raw getPerson() answer for a registered address."""
    address: str
    name: str


@dataclass(frozen=True)
class Person:
    address: str
    name: str
    net_balance: int  # signed wei, as computed by the contract


@dataclass(frozen=True)
class Participant:
    address: str
    amount_paid: int = 0
    amount_owed: int = 0

    @property
    def net(self) -> int:
        return self.amount_paid - self.amount_owed


@dataclass(frozen=True)
class Expense:
    index: int                 # position in the contract's expense array
    id: int                    # contract-assigned id
    label: str
    timestamp: datetime
    participants: tuple[Participant, ...] = ()

    @property
    def total_paid(self) -> int:
        return sum(p.amount_paid for p in self.participants)

    @property
    def total_owed(self) -> int:
        return sum(p.amount_owed for p in self.participants)

    @property
    def imbalance(self) -> int:
        """paid - owed across participants. The contract does not enforce zero."""
        return self.total_paid - self.total_owed

    @property
    def is_balanced(self) -> bool:
        return self.imbalance == 0


@dataclass(frozen=True)
class SyncWarning:
    """Non-fatal read failure recorded during a rebuild."""
    kind: WarningKind
    reason: str
    index: Optional[int] = None
    address: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "reason": self.reason,
            "index": self.index,
            "address": self.address,
        }


@dataclass(frozen=True)
class LedgerSnapshot:
    people: tuple[Person, ...] = ()
    expenses: tuple[Expense, ...] = ()
    warnings: tuple[SyncWarning, ...] = ()
    built_at: float = field(default_factory=time.time, compare=False)

    def person(self, address: str) -> Optional[Person]:
        key = address.lower()
        for p in self.people:
            if p.address.lower() == key:
                return p
        return None

    def expense(self, expense_id: int) -> Optional[Expense]:
        for e in self.expenses:
            if e.id == expense_id:
                return e
        return None

    @property
    def gaps(self) -> list[int]:
        """Expense indices that could not be read at all."""
        return [w.index for w in self.warnings if w.kind == WarningKind.EXPENSE_GAP]

    @property
    def is_complete(self) -> bool:
        return not self.warnings


EMPTY_SNAPSHOT = LedgerSnapshot(built_at=0.0)


def timestamp_to_datetime(seconds: int) -> datetime:
    """Block timestamp (unix seconds) → aware UTC datetime."""
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
