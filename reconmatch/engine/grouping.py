"""Phase 2.5: many-to-one and one-to-many matches.

A ledger entry paid by several bank movements (N:1), or one bank movement
settling several ledger entries (1:N), is found by searching for a subset of
candidates whose total lies within the amount tolerance of the target.

The search is bounded rather than exhaustive: the candidate pool
is capped, a greedy largest-first pass runs first, and a subset-sum pass over
integer cents only runs on small pools with a capped number of states. Larger
caps find more groups at the cost of time.
"""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from reconmatch.engine.amounts import AmountComparator
from reconmatch.engine.config import RunConfig
from reconmatch.engine.ledger import SuggestionLedger
from reconmatch.engine.models import BankTransaction, LedgerEntry, Suggestion, SuggestionKind
from reconmatch.engine.timeout import TimeoutGuard

logger = logging.getLogger(__name__)

PHASE_GROUP = "group"


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


class SubsetSearch:
    """Find a small subset of amounts summing close to a target."""

    def __init__(
        self,
        min_size: int = 2,
        max_size: int = 5,
        max_states: int = 5000,
        max_pool: int = 50,
        greedy_only: bool = False,
    ):
        self.min_size = min_size
        self.max_size = max_size
        self.max_states = max_states
        self.max_pool = max_pool
        self.greedy_only = greedy_only

    def find(
        self,
        amounts: Sequence[Decimal],
        target: Decimal,
        tolerance: Decimal,
        guard: Optional[TimeoutGuard] = None,
    ) -> List[int]:
        """
        Return indices into ``amounts`` of the best subset, or an empty list.

        The chosen subset has between ``min_size`` and ``max_size`` members and
        a sum within ``tolerance`` of ``target``. Among the subsets found, the
        closest sum wins, then the fewer members.
        """
        if len(amounts) < self.min_size:
            return []

        low, high = target - tolerance, target + tolerance
        order = sorted(range(len(amounts)), key=lambda i: amounts[i], reverse=True)

        best = self._greedy(amounts, order, low, high)
        best_diff = abs(sum(amounts[i] for i in best) - target) if best else None

        if best_diff != 0 and not self.greedy_only and len(amounts) <= self.max_pool:
            candidate = self._subset_sum(amounts, order, target, low, high, guard)
            if candidate:
                diff = abs(sum(amounts[i] for i in candidate) - target)
                if best_diff is None or diff < best_diff:
                    best = candidate

        return sorted(best)

    def _greedy(self, amounts, order, low: Decimal, high: Decimal) -> List[int]:
        chosen: List[int] = []
        total = Decimal("0")
        for i in order:
            if len(chosen) >= self.max_size:
                break
            if total + amounts[i] > high:
                continue
            chosen.append(i)
            total += amounts[i]
            if low <= total and len(chosen) >= self.min_size:
                return chosen
        if low <= total <= high and len(chosen) >= self.min_size:
            return chosen
        return []

    def _subset_sum(self, amounts, order, target, low, high, guard) -> List[int]:
        target_c, low_c, high_c = to_cents(target), to_cents(low), to_cents(high)
        # (sum in cents, member count) -> member indices
        states: Dict[Tuple[int, int], Tuple[int, ...]] = {(0, 0): ()}

        for i in order:
            if guard is not None and guard.expired(PHASE_GROUP):
                break
            cents = to_cents(amounts[i])
            grown = dict(states)
            for (total, count), members in states.items():
                if count >= self.max_size:
                    continue
                new_total = total + cents
                if new_total > high_c:
                    continue
                grown.setdefault((new_total, count + 1), members + (i,))
            states = grown
            if len(states) > 2 * self.max_states:
                states = self._prune(states, target_c)

        best: Optional[Tuple[int, ...]] = None
        best_key = None
        for (total, count), members in states.items():
            if count < self.min_size or not low_c <= total <= high_c:
                continue
            key = (abs(total - target_c), count, sorted(members))
            if best_key is None or key < best_key:
                best_key, best = key, members
        return list(best) if best else []

    def _prune(self, states, target_c: int):
        kept = sorted(states.items(), key=lambda kv: (abs(kv[0][0] - target_c), kv[0][1]))
        return dict(kept[: self.max_states])


class GroupMatcher:
    """Group leftovers into N:1 then 1:N suggestions."""

    def __init__(self, config: RunConfig):
        self.config = config
        self.amounts = AmountComparator(config.amount_tolerance)
        perf = config.performance
        self.search = SubsetSearch(
            min_size=config.grouping.min_group_size,
            max_size=config.grouping.max_group_size,
            max_states=perf.max_subset_sum_states,
            max_pool=perf.max_subset_sum_pool,
            greedy_only=perf.high_performance_mode,
        )

    def run(
        self,
        bank_transactions: Sequence[BankTransaction],
        ledger_entries: Sequence[LedgerEntry],
        ledger: SuggestionLedger,
        guard: TimeoutGuard,
    ) -> Tuple[int, int]:
        """
        Run both directions.

        Returns:
            Tuple of (N:1 suggestions, 1:N suggestions).
        """
        claims = ledger.claims
        n_to_one = 0
        for entry in ledger_entries:
            if guard.expired(PHASE_GROUP):
                return n_to_one, 0
            if claims.is_ledger_claimed(entry.id):
                continue
            pool = [t for t in bank_transactions if not claims.is_bank_claimed(t.id)]
            members = self._find_group(entry, pool, guard)
            if members:
                ledger.add(self._suggestion(SuggestionKind.GROUP_N_TO_1, members, [entry]))
                n_to_one += 1
                logger.info("N:1 group found: %d bank transactions -> ledger %s", len(members), entry.id)

        one_to_n = 0
        for txn in bank_transactions:
            if guard.expired(PHASE_GROUP):
                break
            if claims.is_bank_claimed(txn.id):
                continue
            pool = [e for e in ledger_entries if not claims.is_ledger_claimed(e.id)]
            members = self._find_group(txn, pool, guard)
            if members:
                ledger.add(self._suggestion(SuggestionKind.GROUP_1_TO_N, [txn], members))
                one_to_n += 1
                logger.info("1:N group found: bank %s -> %d ledger entries", txn.id, len(members))

        return n_to_one, one_to_n

    def _find_group(self, target, pool, guard: TimeoutGuard) -> list:
        magnitude = target.magnitude
        if magnitude <= 0:
            return []

        grouping = self.config.grouping
        floor = magnitude * grouping.min_share_of_target
        candidates = [
            item for item in pool
            if _days_between(item.date, target.date) <= grouping.max_date_range_days
            and item.magnitude > floor
        ]
        if len(candidates) < grouping.min_group_size:
            return []

        limit = self.config.performance.max_candidates_for_grouping
        if len(candidates) > limit:
            logger.debug(
                "Grouping pool for %s truncated from %d to %d", target.id, len(candidates), limit
            )
            candidates = sorted(candidates, key=lambda item: item.magnitude, reverse=True)[:limit]

        indices = self.search.find(
            [item.magnitude for item in candidates],
            magnitude,
            self.amounts.tolerance(magnitude),
            guard,
        )
        return [candidates[i] for i in indices]

    def _suggestion(self, kind, bank_side, ledger_side) -> Suggestion:
        bank_total = sum((t.magnitude for t in bank_side), Decimal("0"))
        ledger_total = sum((e.magnitude for e in ledger_side), Decimal("0"))
        if kind == SuggestionKind.GROUP_N_TO_1:
            reason = (
                f"N:1 group: {len(bank_side)} bank transactions (total {bank_total}) "
                f"-> 1 ledger entry ({ledger_total})"
            )
        else:
            reason = (
                f"1:N group: 1 bank transaction ({bank_total}) "
                f"-> {len(ledger_side)} ledger entries (total {ledger_total})"
            )
        return Suggestion(
            kind=kind,
            confidence_score=self.config.grouping.confidence_score,
            bank_transaction_ids=tuple(t.id for t in bank_side),
            ledger_entry_ids=tuple(e.id for e in ledger_side),
            reasons=[reason, f"Difference: {abs(bank_total - ledger_total)}"],
            requires_manual_review=True,
            amount=((bank_total + ledger_total) / 2).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            transaction_date=bank_side[0].date,
            description=f"Group match: {len(bank_side)} bank <-> {len(ledger_side)} ledger",
            phase=PHASE_GROUP,
        )


def _days_between(a: date, b: date) -> int:
    return abs((a - b).days)
