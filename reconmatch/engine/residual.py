"""Phases 3 and 4: explain the items nothing else could match."""

import logging
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from reconmatch.engine.config import ResidualHeuristics, RunConfig
from reconmatch.engine.models import (
    BankTransaction,
    LedgerEntry,
    PendingItemType,
    Suggestion,
    SuggestionKind,
)

logger = logging.getLogger(__name__)

PHASE_RESIDUAL_BANK = "residual_bank"
PHASE_RESIDUAL_LEDGER = "residual_ledger"

NO_SUGGESTION_ZERO_AMOUNT = "Zero amount, nothing to reconcile"
NO_SUGGESTION_MALFORMED = "Ledger entry must have exactly one of debit or credit set"

Classification = Tuple[PendingItemType, Decimal, str]


def _mentions(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


class ResidualClassifier:
    """Label leftover items by direction and description keywords."""

    def __init__(self, config: RunConfig):
        self.config = config
        self.keywords: ResidualHeuristics = config.heuristics

    def classify_bank(self, txn: BankTransaction) -> Optional[Classification]:
        """Return (item type, confidence, reason), or None when no suggestion applies."""
        if txn.amount == 0:
            return None

        kw = self.keywords
        text = (txn.description or "").lower()
        if txn.amount > 0:
            if _mentions(text, kw.transfer_keywords):
                return (PendingItemType.CREDIT_NOT_RECORDED, Decimal("85"),
                        "Incoming transfer found in description, not recorded in the ledger")
            if _mentions(text, kw.interest_keywords):
                return (PendingItemType.INTEREST_NOT_RECORDED, Decimal("90"),
                        "Bank interest detected, to be recorded")
            return (PendingItemType.CREDIT_NOT_RECORDED, Decimal("70"),
                    "Unidentified bank credit, check the source")

        if _mentions(text, kw.fees_keywords):
            return (PendingItemType.BANK_FEES_NOT_RECORDED, Decimal("90"),
                    "Bank fees detected, to be recorded")
        if _mentions(text, kw.agios_keywords):
            return (PendingItemType.BANK_CHARGES_NOT_RECORDED, Decimal("90"),
                    "Overdraft charges detected, to be recorded")
        if _mentions(text, kw.direct_debit_keywords):
            return (PendingItemType.DIRECT_DEBIT_NOT_RECORDED, Decimal("85"),
                    "Direct debit detected, to be recorded")
        return (PendingItemType.DEBIT_NOT_RECORDED, Decimal("70"),
                "Unidentified bank debit, check its nature")

    def classify_ledger(self, entry: LedgerEntry) -> Optional[Classification]:
        if not entry.is_well_formed or entry.signed_amount == 0:
            return None

        kw = self.keywords
        text = (entry.description or "").lower()
        reference = (entry.reference or "").lower()
        if entry.signed_amount < 0:
            if _mentions(reference, kw.cheque_keywords) or _mentions(text, kw.cheque_keywords):
                return (PendingItemType.CHEQUE_ISSUED_NOT_CASHED, Decimal("90"),
                        "Issued cheque detected, not yet cashed by the payee")
            if _mentions(text, kw.transfer_keywords):
                return (PendingItemType.DEPOSIT_IN_TRANSIT, Decimal("80"),
                        "Transfer recorded in the ledger, still being processed by the bank")
            return (PendingItemType.CHEQUE_ISSUED_NOT_CASHED, Decimal("70"),
                    "Payment recorded in the ledger, not yet debited by the bank")

        return (PendingItemType.DEPOSIT_IN_TRANSIT, Decimal("70"),
                "Receipt recorded in the ledger, still being processed by the bank")

    def bank_suggestion(self, txn: BankTransaction) -> Optional[Suggestion]:
        result = self.classify_bank(txn)
        if result is None:
            return None
        item_type, confidence, reason = result
        return Suggestion(
            kind=SuggestionKind.HEURISTIC_BANK_ONLY,
            confidence_score=confidence,
            bank_transaction_ids=(txn.id,),
            reasons=[reason],
            requires_manual_review=True,
            item_type=item_type,
            amount=txn.magnitude,
            transaction_date=txn.date,
            description=f"Match: {txn.description}",
            phase=PHASE_RESIDUAL_BANK,
        )

    def ledger_suggestion(self, entry: LedgerEntry) -> Optional[Suggestion]:
        result = self.classify_ledger(entry)
        if result is None:
            return None
        item_type, confidence, reason = result
        return Suggestion(
            kind=SuggestionKind.HEURISTIC_GL_ONLY,
            confidence_score=confidence,
            ledger_entry_ids=(entry.id,),
            reasons=[reason],
            requires_manual_review=True,
            item_type=item_type,
            amount=entry.magnitude,
            transaction_date=entry.date,
            description=entry.description,
            phase=PHASE_RESIDUAL_LEDGER,
        )

    @staticmethod
    def unmatched_reason(entry_or_txn) -> str:
        """Why an item produced no suggestion."""
        if isinstance(entry_or_txn, LedgerEntry) and not entry_or_txn.is_well_formed:
            return NO_SUGGESTION_MALFORMED
        return NO_SUGGESTION_ZERO_AMOUNT
