"""Claim tracking and suggestion accumulation for one run."""

import logging
import threading
from collections import Counter
from typing import Dict, List, Optional, Tuple

from reconmatch.engine.collaborators import SuggestionStore
from reconmatch.engine.errors import ClaimConflictError
from reconmatch.engine.models import Side, Suggestion

logger = logging.getLogger(__name__)


class ClaimRegistry:
    """
    The bank-side and ledger-side sets of items consumed by a suggestion.

    This is the only mutable state shared across phases. Claims are checked
    and recorded under one lock so an id can never be claimed twice.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._bank: Dict[str, str] = {}
        self._ledger: Dict[str, str] = {}

    def is_bank_claimed(self, item_id: str) -> bool:
        return item_id in self._bank

    def is_ledger_claimed(self, item_id: str) -> bool:
        return item_id in self._ledger

    def claim(self, suggestion: Suggestion) -> None:
        """
        Claim every member of ``suggestion``.

        Raises:
            ClaimConflictError: If any member is already claimed. Nothing is
                claimed in that case.
        """
        with self._lock:
            self._check_free(Side.BANK, self._bank, suggestion.bank_transaction_ids)
            self._check_free(Side.LEDGER, self._ledger, suggestion.ledger_entry_ids)
            for item_id in suggestion.bank_transaction_ids:
                self._bank[item_id] = suggestion.id
            for item_id in suggestion.ledger_entry_ids:
                self._ledger[item_id] = suggestion.id

    @staticmethod
    def _check_free(side: Side, claimed: Dict[str, str], ids: Tuple[str, ...]) -> None:
        if len(set(ids)) != len(ids):
            raise ClaimConflictError(side.value, ids[0], "the same suggestion")
        for item_id in ids:
            if item_id in claimed:
                raise ClaimConflictError(side.value, item_id, claimed[item_id])

    def holder_of(self, side: Side, item_id: str) -> Optional[str]:
        claimed = self._bank if side == Side.BANK else self._ledger
        return claimed.get(item_id)

    @property
    def bank_count(self) -> int:
        return len(self._bank)

    @property
    def ledger_count(self) -> int:
        return len(self._ledger)


class SuggestionLedger:
    """
    Append-only list of the suggestions produced by a run.

    Adding a suggestion claims its members. Suggestions added since the last
    flush form the batch handed to the suggestion store when a phase ends.
    """

    def __init__(
        self,
        claims: ClaimRegistry,
        auto_approve_threshold,
        store: Optional[SuggestionStore] = None,
    ):
        self.claims = claims
        self.auto_approve_threshold = auto_approve_threshold
        self.store = store
        self._suggestions: List[Suggestion] = []
        self._keys: Dict[tuple, Suggestion] = {}
        self._flushed = 0

    def add(self, suggestion: Suggestion) -> Suggestion:
        """Claim the members and record the suggestion. Exact duplicates are ignored."""
        key = (suggestion.kind, suggestion.bank_transaction_ids, suggestion.ledger_entry_ids)
        if key in self._keys:
            logger.debug("Ignoring duplicate suggestion %s", key)
            return self._keys[key]
        self.claims.claim(suggestion)
        self._suggestions.append(suggestion)
        self._keys[key] = suggestion
        return suggestion

    def needs_review(self, score) -> bool:
        """Scores under the auto-approve threshold go to a reviewer."""
        return score < self.auto_approve_threshold

    def flush(self, phase: str) -> List[Suggestion]:
        """Hand the suggestions added since the previous flush to the store."""
        batch = self._suggestions[self._flushed:]
        self._flushed = len(self._suggestions)
        if batch and self.store is not None:
            self.store.save_batch(phase, batch)
            logger.debug("Persisted %d suggestions for phase %s", len(batch), phase)
        return batch

    @property
    def suggestions(self) -> List[Suggestion]:
        return list(self._suggestions)

    def ranked(self) -> List[Suggestion]:
        """Suggestions by descending confidence, insertion order among equals."""
        return sorted(self._suggestions, key=lambda s: s.confidence_score, reverse=True)

    def count_by_phase(self) -> Counter:
        return Counter(s.phase for s in self._suggestions)

    def __len__(self) -> int:
        return len(self._suggestions)
