"""Tests for N:1 and 1:N group matching."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from reconmatch.engine.config import RunConfig
from reconmatch.engine.grouping import GroupMatcher, SubsetSearch, to_cents
from reconmatch.engine.ledger import ClaimRegistry, SuggestionLedger
from reconmatch.engine.models import BankTransaction, LedgerEntry, Suggestion, SuggestionKind
from reconmatch.engine.timeout import TimeoutGuard

DAY = date(2024, 1, 12)


def make_bank(id: str, amount: str, days: int = 0) -> BankTransaction:
    return BankTransaction(id, DAY + timedelta(days=days), Decimal(amount), f"Transfer {id}")


def make_entry(id: str, amount: str, days: int = 0) -> LedgerEntry:
    amt = Decimal(amount)
    return LedgerEntry(
        id, DAY + timedelta(days=days),
        debit_amount=amt if amt > 0 else Decimal("0"),
        credit_amount=-amt if amt < 0 else Decimal("0"),
        description=f"Entry {id}",
    )


def amounts(*values: str):
    return [Decimal(v) for v in values]


@pytest.fixture
def ledger():
    return SuggestionLedger(ClaimRegistry(), Decimal("95"))


@pytest.fixture
def guard():
    g = TimeoutGuard(60)
    g.start()
    return g


class TestSubsetSearch:

    def test_to_cents(self):
        assert to_cents(Decimal("12.345")) == 1235
        assert to_cents(Decimal("100")) == 10000

    def test_three_part_payment(self):
        search = SubsetSearch()
        found = search.find(amounts("300000", "300000", "400000"), Decimal("1000000"), Decimal("5000"))
        assert found == [0, 1, 2]

    def test_total_outside_tolerance(self):
        search = SubsetSearch()
        found = search.find(amounts("300000", "300000", "400000"), Decimal("1050000"), Decimal("10000"))
        assert found == []

    def test_subset_sum_finds_what_greedy_misses(self):
        search = SubsetSearch()
        assert search.find(amounts("50", "40", "40"), Decimal("80"), Decimal("0")) == [1, 2]

    def test_greedy_only_mode(self):
        search = SubsetSearch(greedy_only=True)
        assert search.find(amounts("50", "40", "40"), Decimal("80"), Decimal("0")) == []

    def test_single_item_is_not_a_group(self):
        search = SubsetSearch()
        assert search.find(amounts("80", "10"), Decimal("80"), Decimal("0")) == []

    def test_max_group_size(self):
        search = SubsetSearch(max_size=5)
        assert search.find(amounts(*["10"] * 6), Decimal("60"), Decimal("0")) == []
        assert SubsetSearch(max_size=6).find(amounts(*["10"] * 6), Decimal("60"), Decimal("0")) == [
            0, 1, 2, 3, 4, 5,
        ]

    def test_pool_above_limit_skips_subset_sum(self):
        search = SubsetSearch(max_pool=2)
        assert search.find(amounts("50", "40", "40"), Decimal("80"), Decimal("0")) == []

    def test_closest_total_wins(self):
        search = SubsetSearch()
        # greedy picks 60 + 25 = 85; 50 + 30 = 80 is exact
        found = search.find(amounts("60", "50", "30", "25"), Decimal("80"), Decimal("5"))
        assert found == [1, 2]


class TestGroupMatcher:

    def test_many_bank_to_one_entry(self, ledger, guard):
        bank = [make_bank("B1", "300000"), make_bank("B2", "300000", 1), make_bank("B3", "400000", 2)]
        entries = [make_entry("L1", "1000000")]

        n_to_one, one_to_n = GroupMatcher(RunConfig()).run(bank, entries, ledger, guard)

        assert (n_to_one, one_to_n) == (1, 0)
        suggestion = ledger.suggestions[0]
        assert suggestion.kind == SuggestionKind.GROUP_N_TO_1
        assert suggestion.bank_transaction_ids == ("B1", "B2", "B3")
        assert suggestion.ledger_entry_ids == ("L1",)
        assert suggestion.confidence_score == Decimal("75")
        assert suggestion.requires_manual_review is True
        assert suggestion.amount == Decimal("1000000.00")

    def test_no_group_beyond_tolerance(self, ledger, guard):
        bank = [make_bank("B1", "300000"), make_bank("B2", "300000"), make_bank("B3", "400000")]
        entries = [make_entry("L1", "1050000")]

        assert GroupMatcher(RunConfig()).run(bank, entries, ledger, guard) == (0, 0)
        assert len(ledger) == 0

    def test_one_bank_to_many_entries(self, ledger, guard):
        bank = [make_bank("B1", "1500")]
        entries = [make_entry("L1", "1000"), make_entry("L2", "500")]

        assert GroupMatcher(RunConfig()).run(bank, entries, ledger, guard) == (0, 1)
        suggestion = ledger.suggestions[0]
        assert suggestion.kind == SuggestionKind.GROUP_1_TO_N
        assert suggestion.bank_transaction_ids == ("B1",)
        assert suggestion.ledger_entry_ids == ("L1", "L2")

    def test_candidates_outside_date_range_are_ignored(self, ledger, guard):
        bank = [make_bank("B1", "300000"), make_bank("B2", "300000"), make_bank("B3", "400000", 10)]
        entries = [make_entry("L1", "1000000")]

        assert GroupMatcher(RunConfig()).run(bank, entries, ledger, guard) == (0, 0)

    def test_claimed_items_are_not_grouped(self, ledger, guard):
        bank = [make_bank("B1", "300000"), make_bank("B2", "300000"), make_bank("B3", "400000")]
        entries = [make_entry("L1", "1000000")]
        ledger.add(Suggestion(SuggestionKind.HEURISTIC_BANK_ONLY, Decimal("70"), bank_transaction_ids=("B3",)))

        assert GroupMatcher(RunConfig()).run(bank, entries, ledger, guard) == (0, 0)

    def test_members_are_claimed(self, ledger, guard):
        bank = [make_bank("B1", "1500")]
        entries = [make_entry("L1", "1000"), make_entry("L2", "500")]
        GroupMatcher(RunConfig()).run(bank, entries, ledger, guard)

        assert ledger.claims.is_bank_claimed("B1")
        assert ledger.claims.is_ledger_claimed("L1")
        assert ledger.claims.is_ledger_claimed("L2")
