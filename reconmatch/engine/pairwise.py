"""Phases 1 and 2: one-to-one exact and probable matches."""

import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, TypeVar

from reconmatch.engine.config import RunConfig
from reconmatch.engine.ledger import SuggestionLedger
from reconmatch.engine.models import (
    BankTransaction,
    LedgerEntry,
    MatchCandidatePair,
    Suggestion,
    SuggestionKind,
)
from reconmatch.engine.scoring import PairScorer
from reconmatch.engine.timeout import TimeoutGuard

logger = logging.getLogger(__name__)

PHASE_EXACT = "exact"
PHASE_PROBABLE = "probable"

T = TypeVar("T", BankTransaction, LedgerEntry)


def truncate_most_recent(items: Sequence[T], limit: int) -> Tuple[List[T], List[T]]:
    """
    Keep at most ``limit`` items.

    Under the limit the input order is untouched. Over it, the most recent
    items are kept, ordered most-recent-first (stable for equal dates).

    Returns:
        Tuple of (kept items, dropped items).
    """
    if len(items) <= limit:
        return list(items), []
    ordered = sorted(items, key=lambda item: item.date, reverse=True)
    return ordered[:limit], ordered[limit:]


class ExactProbableMatcher:
    """
    Greedy pairwise matcher.

    For each unclaimed bank transaction, in the order given, ledger entries are
    scanned in their order and the first pair whose score falls in the phase's
    band wins. This is first-match-wins, not best-of.
    """

    def __init__(self, config: RunConfig, scorer: Optional[PairScorer] = None):
        self.config = config
        self.scorer = scorer or PairScorer(config)

    def accepts(self, phase: str, score: Decimal) -> bool:
        exact = self.config.exact_match_score
        if phase == PHASE_EXACT:
            return score == exact
        if phase == PHASE_PROBABLE:
            return self.config.probable_match_score <= score < exact
        raise ValueError(f"Unknown pairwise phase: {phase!r}")

    def run_phase(
        self,
        phase: str,
        bank_transactions: Sequence[BankTransaction],
        ledger_entries: Sequence[LedgerEntry],
        ledger: SuggestionLedger,
        guard: TimeoutGuard,
    ) -> int:
        """
        Run one pairwise phase.

        Returns:
            Number of suggestions produced.
        """
        claims = ledger.claims
        matches = 0

        for bank_txn in bank_transactions:
            if guard.expired(phase):
                break
            if claims.is_bank_claimed(bank_txn.id):
                continue

            for entry in ledger_entries:
                if claims.is_ledger_claimed(entry.id):
                    continue

                pair = self.scorer.score(bank_txn, entry)
                if pair.score <= 0 or not self.accepts(phase, pair.score):
                    continue

                ledger.add(self._to_suggestion(phase, pair, ledger))
                matches += 1
                logger.debug(
                    "%s match: %s <-> %s (score %s)", phase, bank_txn.id, entry.id, pair.score
                )
                break

        return matches

    @staticmethod
    def _to_suggestion(phase: str, pair: MatchCandidatePair, ledger: SuggestionLedger) -> Suggestion:
        bank_txn = pair.bank_transaction
        suggestion = Suggestion(
            kind=SuggestionKind.SINGLE,
            confidence_score=pair.score,
            bank_transaction_ids=(bank_txn.id,),
            ledger_entry_ids=(pair.ledger_entry.id,),
            reasons=list(pair.reasons),
            amount=bank_txn.magnitude,
            transaction_date=bank_txn.date,
            description=f"Match: {bank_txn.description}",
            phase=phase,
        )
        suggestion.requires_manual_review = ledger.needs_review(suggestion.confidence_score)
        return suggestion
