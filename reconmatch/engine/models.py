"""Data models for the matching engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4

TWO_PLACES = Decimal("0.01")


class SuggestionKind(Enum):
    """Shape of a suggestion."""
    SINGLE = "single"
    GROUP_N_TO_1 = "group_n_to_1"
    GROUP_1_TO_N = "group_1_to_n"
    HEURISTIC_BANK_ONLY = "heuristic_bank_only"
    HEURISTIC_GL_ONLY = "heuristic_gl_only"
    PAYMENT_LINK = "payment_link"
    ML_PREDICTED = "ml_predicted"


class ConfidenceLevel(Enum):
    """Bucketed confidence label."""
    EXCELLENT = "excellent"  # >= 95
    GOOD = "good"            # >= 80
    FAIR = "fair"            # >= 60
    LOW = "low"

    @classmethod
    def from_score(cls, score: Decimal) -> "ConfidenceLevel":
        if score >= 95:
            return cls.EXCELLENT
        if score >= 80:
            return cls.GOOD
        if score >= 60:
            return cls.FAIR
        return cls.LOW


class SuggestionStatus(Enum):
    """Review status of a suggestion."""
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"


class PendingItemType(Enum):
    """What the reviewer is expected to do with the suggested items."""
    UNCATEGORIZED = "uncategorized"
    CREDIT_NOT_RECORDED = "credit_not_recorded"
    DEBIT_NOT_RECORDED = "debit_not_recorded"
    BANK_FEES_NOT_RECORDED = "bank_fees_not_recorded"
    BANK_CHARGES_NOT_RECORDED = "bank_charges_not_recorded"
    INTEREST_NOT_RECORDED = "interest_not_recorded"
    DIRECT_DEBIT_NOT_RECORDED = "direct_debit_not_recorded"
    CHEQUE_ISSUED_NOT_CASHED = "cheque_issued_not_cashed"
    DEPOSIT_IN_TRANSIT = "deposit_in_transit"


class Side(Enum):
    """Which book an item comes from."""
    BANK = "bank"
    LEDGER = "ledger"


@dataclass(frozen=True)
class BankTransaction:
    """A movement on the bank statement. Positive amount = credit (inflow)."""
    id: str
    date: date
    amount: Decimal
    description: str = ""
    reference: Optional[str] = None
    reconciled: bool = False
    third_party: Optional[str] = None
    raw_data: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def magnitude(self) -> Decimal:
        """Return absolute value of the amount."""
        return abs(self.amount)

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    def __repr__(self) -> str:
        return (
            f"BankTransaction(id={self.id!r}, date={self.date.isoformat()}, "
            f"amount={self.amount}, desc={self.description[:30]!r})"
        )


@dataclass(frozen=True)
class LedgerEntry:
    """A line recorded on the bank account of the general ledger."""
    id: str
    date: date
    debit_amount: Decimal = Decimal("0")
    credit_amount: Decimal = Decimal("0")
    description: str = ""
    reference: Optional[str] = None
    account: str = ""
    raw_data: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def signed_amount(self) -> Decimal:
        """Debit minus credit; positive means money expected in."""
        return self.debit_amount - self.credit_amount

    @property
    def magnitude(self) -> Decimal:
        return abs(self.signed_amount)

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0

    @property
    def is_well_formed(self) -> bool:
        """Exactly one of debit/credit is non-zero and neither is negative."""
        if self.debit_amount < 0 or self.credit_amount < 0:
            return False
        return (self.debit_amount > 0) != (self.credit_amount > 0)

    def __repr__(self) -> str:
        return (
            f"LedgerEntry(id={self.id!r}, date={self.date.isoformat()}, "
            f"debit={self.debit_amount}, credit={self.credit_amount}, "
            f"desc={self.description[:30]!r})"
        )


@dataclass
class MatchCandidatePair:
    """A scored bank/ledger pairing on the raw (unclamped) scale."""
    bank_transaction: BankTransaction
    ledger_entry: LedgerEntry
    score: Decimal
    reasons: List[str] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return self.score > 0


def clamp_score(score: Decimal) -> Decimal:
    """Clamp a raw score to the 0-100 presentation scale."""
    score = Decimal(score)
    if score < 0:
        score = Decimal("0")
    elif score > 100:
        score = Decimal("100")
    return score.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass
class Suggestion:
    """A proposed reconciliation of one or more bank/ledger items."""
    kind: SuggestionKind
    confidence_score: Decimal
    bank_transaction_ids: Tuple[str, ...] = ()
    ledger_entry_ids: Tuple[str, ...] = ()
    reasons: List[str] = field(default_factory=list)
    requires_manual_review: bool = True
    status: SuggestionStatus = SuggestionStatus.PENDING
    item_type: PendingItemType = PendingItemType.UNCATEGORIZED
    amount: Decimal = Decimal("0")
    transaction_date: Optional[date] = None
    description: str = ""
    payment_id: Optional[str] = None
    phase: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self):
        self.confidence_score = clamp_score(self.confidence_score)
        self.bank_transaction_ids = tuple(self.bank_transaction_ids)
        self.ledger_entry_ids = tuple(self.ledger_entry_ids)

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence_score)

    @property
    def is_group(self) -> bool:
        return self.kind in (SuggestionKind.GROUP_N_TO_1, SuggestionKind.GROUP_1_TO_N)

    @property
    def is_active(self) -> bool:
        """Check if the suggestion still holds its members."""
        return self.status != SuggestionStatus.REJECTED

    def apply(self) -> None:
        self._transition(SuggestionStatus.APPLIED)

    def reject(self) -> None:
        self._transition(SuggestionStatus.REJECTED)

    def _transition(self, target: SuggestionStatus) -> None:
        if self.status != SuggestionStatus.PENDING:
            raise ValueError(
                f"Suggestion {self.id} is {self.status.value}, cannot move to {target.value}"
            )
        self.status = target

    def to_dict(self) -> dict:
        """Serializable view used by suggestion stores."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "phase": self.phase,
            "bank_transaction_ids": list(self.bank_transaction_ids),
            "ledger_entry_ids": list(self.ledger_entry_ids),
            "confidence_score": str(self.confidence_score),
            "confidence_level": self.confidence_level.value,
            "requires_manual_review": self.requires_manual_review,
            "status": self.status.value,
            "item_type": self.item_type.value,
            "amount": str(self.amount),
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "description": self.description,
            "payment_id": self.payment_id,
            "reasons": list(self.reasons),
        }


@dataclass
class UnmatchedItem:
    """An item left without any suggestion, with the reason why."""
    item_id: str
    side: Side
    date: date
    amount: Decimal
    description: str
    reference: Optional[str]
    reason: str

    @classmethod
    def from_bank(cls, txn: BankTransaction, reason: str) -> "UnmatchedItem":
        return cls(txn.id, Side.BANK, txn.date, txn.amount, txn.description, txn.reference, reason)

    @classmethod
    def from_ledger(cls, entry: LedgerEntry, reason: str) -> "UnmatchedItem":
        return cls(
            entry.id, Side.LEDGER, entry.date, entry.signed_amount,
            entry.description, entry.reference, reason,
        )


@dataclass
class RunStatistics:
    """Summary statistics for a matching run."""
    total_bank_transactions: int = 0
    total_ledger_entries: int = 0
    skipped_reconciled: int = 0
    exact_matches: int = 0
    probable_matches: int = 0
    payment_link_matches: int = 0
    ml_matches: int = 0
    group_matches: int = 0
    heuristic_bank: int = 0
    heuristic_ledger: int = 0
    unmatched_bank_transactions: int = 0
    unmatched_ledger_entries: int = 0
    auto_approved_count: int = 0
    manual_review_count: int = 0
    overall_confidence: Decimal = Decimal("0")

    @property
    def possible_matches(self) -> int:
        """Group and heuristic suggestions."""
        return self.group_matches + self.heuristic_bank + self.heuristic_ledger

    @property
    def total_suggestions(self) -> int:
        return (
            self.exact_matches + self.probable_matches + self.payment_link_matches
            + self.ml_matches + self.possible_matches
        )


@dataclass
class RunResult:
    """Outcome of one reconciliation run, possibly partial."""
    company: str
    period_start: Optional[date]
    period_end: Optional[date]
    suggestions: List[Suggestion] = field(default_factory=list)
    unmatched_bank_transactions: List[UnmatchedItem] = field(default_factory=list)
    unmatched_ledger_entries: List[UnmatchedItem] = field(default_factory=list)
    statistics: RunStatistics = field(default_factory=RunStatistics)
    messages: List[str] = field(default_factory=list)
    is_partial: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    elapsed_ms: int = 0

    def suggestions_of(self, *kinds: SuggestionKind) -> List[Suggestion]:
        return [s for s in self.suggestions if s.kind in kinds]
