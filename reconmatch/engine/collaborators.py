"""Interfaces of the services the engine consumes but does not implement."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from reconmatch.engine.models import BankTransaction, LedgerEntry, Suggestion


@dataclass(frozen=True)
class Prediction:
    """A ledger entry ranked first by a predictor, with its confidence (0-100)."""
    ledger_entry: "LedgerEntry"
    confidence: Decimal
    explanation: str = ""
    model_version: str = ""


@dataclass(frozen=True)
class PaymentLink:
    """An existing logical payment that looks like it settled a bank movement."""
    bank_transaction_id: str
    payment_id: str
    score: int
    payment_amount: Decimal
    bank_amount: Decimal
    payment_date: Optional[date] = None
    bank_date: Optional[date] = None
    reference: Optional[str] = None


@runtime_checkable
class TransactionSource(Protocol):
    """Returns unreconciled items for a company, bank account and period."""

    def load_bank_transactions(
        self, company: str, account: str, start: date, end: date
    ) -> List["BankTransaction"]: ...

    def load_ledger_entries(
        self, company: str, account: str, start: date, end: date
    ) -> List["LedgerEntry"]: ...


@runtime_checkable
class LedgerPredictor(Protocol):
    def predict_ranked_ledger_entry(
        self, bank_txn: "BankTransaction", candidates: Sequence["LedgerEntry"]
    ) -> Optional[Prediction]: ...


@runtime_checkable
class PaymentLinker(Protocol):
    def suggest_existing_payment_links(self, company: str) -> List[PaymentLink]: ...


@runtime_checkable
class SuggestionStore(Protocol):
    """Durable home of suggestions. Receives one batch per completed phase."""

    def save_batch(self, phase: str, suggestions: Sequence["Suggestion"]) -> None: ...
