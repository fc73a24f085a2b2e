"""Tests for the matching run orchestration."""

import time
from datetime import date, timedelta
from decimal import Decimal

import pytest

from reconmatch.engine.collaborators import PaymentLink, Prediction
from reconmatch.engine.config import RunConfig
from reconmatch.engine.errors import ConfigurationError, InputError
from reconmatch.engine.matcher import ALREADY_RECONCILED, MatchRunner
from reconmatch.engine.models import (
    BankTransaction,
    LedgerEntry,
    PendingItemType,
    SuggestionKind,
)
from reconmatch.engine.residual import NO_SUGGESTION_ZERO_AMOUNT
from reconmatch.engine.store import InMemorySuggestionStore

START = date(2024, 1, 1)
END = date(2024, 1, 31)


def make_bank(id: str, day: int, amount: str, desc: str = "", ref: str = None, **kwargs) -> BankTransaction:
    """Helper to create a bank transaction on a January 2024 day."""
    return BankTransaction(id, date(2024, 1, day), Decimal(amount), desc, ref, **kwargs)


def make_entry(id: str, day: int, amount: str, desc: str = "", ref: str = None) -> LedgerEntry:
    """Helper to create a ledger entry. Positive amount = debit."""
    amt = Decimal(amount)
    return LedgerEntry(
        id, date(2024, 1, day),
        debit_amount=amt if amt > 0 else Decimal("0"),
        credit_amount=-amt if amt < 0 else Decimal("0"),
        description=desc,
        reference=ref,
    )


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class StaticLinker:
    def __init__(self, links):
        self.links = links

    def suggest_existing_payment_links(self, company):
        return self.links


class BrokenService:
    def suggest_existing_payment_links(self, company):
        raise RuntimeError("payment service down")

    def predict_ranked_ledger_entry(self, bank_txn, candidates):
        raise RuntimeError("model not loaded")


class FirstCandidatePredictor:
    def __init__(self, confidence: str = "90"):
        self.confidence = Decimal(confidence)
        self.calls = 0

    def predict_ranked_ledger_entry(self, bank_txn, candidates):
        self.calls += 1
        return Prediction(candidates[0], self.confidence, "same counterparty", "v2")


@pytest.fixture
def mixed_data():
    """An exact match, a three-part payment and a fee line."""
    bank = [
        make_bank("B1", 5, "1250.00", "VIR SEPA 88231"),
        make_bank("B3", 12, "300000", "VIR ACME PART 1"),
        make_bank("B4", 13, "300000", "VIR ACME PART 2"),
        make_bank("B5", 14, "400000", "VIR ACME PART 3"),
        make_bank("B6", 31, "-12.50", "FRAIS TENUE DE COMPTE"),
    ]
    ledger = [
        make_entry("L1", 5, "1250.00", "Client Durand invoice"),
        make_entry("L3", 12, "1000000", "ACME contract settlement"),
    ]
    return bank, ledger


def signature(result):
    return [
        (s.kind, s.bank_transaction_ids, s.ledger_entry_ids, s.confidence_score)
        for s in result.suggestions
    ]


class TestMatchRunner:

    def test_exact_match_is_auto_approved(self):
        result = MatchRunner().run(
            "ACME", START, END, [make_bank("B1", 5, "100")], [make_entry("L1", 5, "100")]
        )
        assert len(result.suggestions) == 1
        suggestion = result.suggestions[0]
        assert suggestion.kind == SuggestionKind.SINGLE
        assert suggestion.confidence_score == Decimal("100")
        assert suggestion.requires_manual_review is False
        assert result.statistics.exact_matches == 1
        assert result.statistics.auto_approved_count == 1
        assert result.unmatched_bank_transactions == []
        assert result.unmatched_ledger_entries == []
        assert not result.is_partial

    def test_pair_scoring_above_100_is_not_an_exact_match(self):
        bank = [make_bank("B1", 5, "1250.00", "VIR CLIENT DURAND", "INV-001")]
        ledger = [make_entry("L1", 5, "1250.00", "VIR CLIENT DURAND", "INV-001")]
        result = MatchRunner().run("ACME", START, END, bank, ledger)

        assert result.suggestions_of(SuggestionKind.SINGLE) == []
        assert (result.statistics.exact_matches, result.statistics.probable_matches) == (0, 0)
        assert result.messages[0] == "0 exact matches found"

    def test_probable_match_needs_review(self):
        result = MatchRunner().run(
            "ACME", START, END, [make_bank("B1", 5, "100")], [make_entry("L1", 7, "100")]
        )
        suggestion = result.suggestions[0]
        assert suggestion.confidence_score == Decimal("90")
        assert suggestion.requires_manual_review is True
        assert result.statistics.probable_matches == 1

    def test_full_pipeline(self, mixed_data):
        bank, ledger = mixed_data
        store = InMemorySuggestionStore()
        result = MatchRunner(store=store).run("ACME", START, END, bank, ledger)

        assert [s.kind for s in result.suggestions] == [
            SuggestionKind.SINGLE,
            SuggestionKind.GROUP_N_TO_1,
            SuggestionKind.HEURISTIC_BANK_ONLY,
        ]
        exact, group, fees = result.suggestions
        assert (exact.bank_transaction_ids, exact.ledger_entry_ids) == (("B1",), ("L1",))
        assert group.bank_transaction_ids == ("B3", "B4", "B5")
        assert group.ledger_entry_ids == ("L3",)
        assert fees.item_type == PendingItemType.BANK_FEES_NOT_RECORDED

        stats = result.statistics
        assert (stats.exact_matches, stats.group_matches, stats.heuristic_bank) == (1, 1, 1)
        assert (stats.auto_approved_count, stats.manual_review_count) == (1, 2)
        assert stats.overall_confidence == Decimal("88.33")
        assert result.messages[0] == "1 exact matches found"

        assert list(store.by_phase) == ["exact", "group", "residual_bank"]
        assert store.suggestions == result.suggestions

    def test_items_are_never_claimed_twice(self, mixed_data):
        bank, ledger = mixed_data
        result = MatchRunner().run("ACME", START, END, bank, ledger)

        bank_ids = [i for s in result.suggestions for i in s.bank_transaction_ids]
        ledger_ids = [i for s in result.suggestions for i in s.ledger_entry_ids]
        assert len(bank_ids) == len(set(bank_ids))
        assert len(ledger_ids) == len(set(ledger_ids))

    def test_every_item_is_accounted_for(self, mixed_data):
        bank, ledger = mixed_data
        bank = bank + [make_bank("B0", 2, "0", "Zero line"), make_bank("B9", 8, "55", reconciled=True)]
        result = MatchRunner().run("ACME", START, END, bank, ledger)

        suggested = {i for s in result.suggestions for i in s.bank_transaction_ids}
        unmatched = {u.item_id for u in result.unmatched_bank_transactions}
        assert suggested | unmatched == {t.id for t in bank}
        assert not suggested & unmatched
        assert all(u.reason for u in result.unmatched_bank_transactions)

    def test_run_is_deterministic(self, mixed_data):
        bank, ledger = mixed_data
        runner = MatchRunner()
        first = runner.run("ACME", START, END, bank, ledger)
        second = runner.run("ACME", START, END, bank, ledger)
        assert signature(first) == signature(second)

    def test_reconciled_transactions_are_skipped(self):
        bank = [make_bank("B1", 5, "100"), make_bank("B2", 5, "100", reconciled=True)]
        result = MatchRunner().run("ACME", START, END, bank, [make_entry("L1", 5, "100")])

        assert result.statistics.skipped_reconciled == 1
        assert result.statistics.total_bank_transactions == 1
        assert result.suggestions[0].bank_transaction_ids == ("B1",)
        unmatched = {u.item_id: u.reason for u in result.unmatched_bank_transactions}
        assert unmatched == {"B2": ALREADY_RECONCILED}
        assert result.statistics.unmatched_bank_transactions == 0

    def test_zero_amount_is_unmatched_with_reason(self):
        result = MatchRunner().run("ACME", START, END, [make_bank("B0", 3, "0")], [])
        assert result.suggestions == []
        assert result.unmatched_bank_transactions[0].reason == NO_SUGGESTION_ZERO_AMOUNT

    def test_grouping_can_be_disabled(self, mixed_data):
        bank, ledger = mixed_data
        config = RunConfig().with_overrides(grouping={"enabled": False})
        result = MatchRunner(config=config).run("ACME", START, END, bank, ledger)

        assert result.suggestions_of(SuggestionKind.GROUP_N_TO_1, SuggestionKind.GROUP_1_TO_N) == []
        heuristic_bank = result.suggestions_of(SuggestionKind.HEURISTIC_BANK_ONLY)
        assert [s.bank_transaction_ids[0] for s in heuristic_bank] == ["B3", "B4", "B5", "B6"]
        heuristic_ledger = result.suggestions_of(SuggestionKind.HEURISTIC_GL_ONLY)
        assert heuristic_ledger[0].item_type == PendingItemType.DEPOSIT_IN_TRANSIT


class TestInputValidation:

    def test_duplicate_bank_ids(self):
        bank = [make_bank("B1", 5, "100"), make_bank("B1", 6, "200")]
        with pytest.raises(InputError, match="Duplicate bank transaction id"):
            MatchRunner().run("ACME", START, END, bank, [])

    def test_duplicate_ledger_ids(self):
        ledger = [make_entry("L1", 5, "100"), make_entry("L1", 6, "200")]
        with pytest.raises(InputError):
            MatchRunner().run("ACME", START, END, [], ledger)

    def test_config_of_wrong_type(self):
        with pytest.raises(ConfigurationError):
            MatchRunner().run("ACME", START, END, [], [], config={"timeout": 1})

    def test_empty_run(self):
        result = MatchRunner().run("ACME", START, END, [], [])
        assert result.suggestions == []
        assert result.statistics.overall_confidence == Decimal("0")
        assert not result.is_partial


class TestTruncation:

    def test_oldest_items_are_reported_unmatched(self):
        config = RunConfig().with_overrides(performance={"max_items_per_phase": 2})
        bank = [make_bank("B1", 1, "100"), make_bank("B2", 2, "200"), make_bank("B3", 3, "300")]
        result = MatchRunner(config=config).run("ACME", START, END, bank, [])

        assert result.statistics.total_bank_transactions == 2
        dropped = [u for u in result.unmatched_bank_transactions if u.item_id == "B1"]
        assert len(dropped) == 1
        assert "most recent" in dropped[0].reason
        assert any("were not analysed" in m for m in result.messages)


class TestCollaborators:

    def test_payment_link(self):
        bank = [make_bank("B1", 9, "-480", "CARTE 1234")]
        links = [
            PaymentLink("B1", "PAY-7", 92, Decimal("480"), Decimal("-480"), date(2024, 1, 8)),
            PaymentLink("B404", "PAY-8", 99, Decimal("10"), Decimal("10")),
        ]
        result = MatchRunner(payment_linker=StaticLinker(links)).run("ACME", START, END, bank, [])

        assert len(result.suggestions) == 1
        suggestion = result.suggestions[0]
        assert suggestion.kind == SuggestionKind.PAYMENT_LINK
        assert suggestion.payment_id == "PAY-7"
        assert suggestion.bank_transaction_ids == ("B1",)
        assert suggestion.ledger_entry_ids == ()
        assert suggestion.requires_manual_review is True
        assert result.statistics.payment_link_matches == 1

    def test_payment_linker_failure_is_not_fatal(self):
        bank = [make_bank("B1", 9, "-480", "CARTE 1234")]
        result = MatchRunner(payment_linker=BrokenService()).run("ACME", START, END, bank, [])

        assert any("Payment link matching unavailable" in m for m in result.messages)
        assert result.suggestions[0].item_type == PendingItemType.DEBIT_NOT_RECORDED

    def test_ml_prediction(self):
        bank = [make_bank("B1", 1, "100", "X")]
        ledger = [make_entry("L1", 20, "5000", "Y")]
        result = MatchRunner(predictor=FirstCandidatePredictor("90")).run(
            "ACME", START, END, bank, ledger
        )

        suggestion = result.suggestions[0]
        assert suggestion.kind == SuggestionKind.ML_PREDICTED
        assert suggestion.ledger_entry_ids == ("L1",)
        assert suggestion.confidence_score == Decimal("90")
        assert "same counterparty" in suggestion.reasons
        assert result.statistics.ml_matches == 1

    def test_low_confidence_prediction_is_ignored(self):
        bank = [make_bank("B1", 1, "100", "X")]
        ledger = [make_entry("L1", 20, "5000", "Y")]
        result = MatchRunner(predictor=FirstCandidatePredictor("80")).run(
            "ACME", START, END, bank, ledger
        )

        assert result.suggestions_of(SuggestionKind.ML_PREDICTED) == []
        assert [s.kind for s in result.suggestions] == [
            SuggestionKind.HEURISTIC_BANK_ONLY, SuggestionKind.HEURISTIC_GL_ONLY,
        ]

    def test_predictor_failure_is_not_fatal(self):
        bank = [make_bank("B1", 1, "100", "X")]
        ledger = [make_entry("L1", 20, "5000", "Y")]
        result = MatchRunner(predictor=BrokenService()).run("ACME", START, END, bank, ledger)

        assert any("Predictor failed for 1" in m for m in result.messages)
        assert len(result.suggestions) == 2


class TestTimeBudget:

    def test_slow_phase_yields_partial_result(self):
        clock = FakeClock()

        class SlowPredictor:
            def predict_ranked_ledger_entry(self, bank_txn, candidates):
                clock.now += 1000
                return None

        bank = [
            make_bank("B0", 1, "100"),
            make_bank("B1", 2, "777", "X"),
            make_bank("B2", 3, "888", "Y"),
        ]
        ledger = [make_entry("L0", 1, "100"), make_entry("L1", 20, "5000")]
        runner = MatchRunner(predictor=SlowPredictor(), clock=clock)
        result = runner.run("ACME", START, END, bank, ledger)

        assert result.is_partial
        # work done before the budget ran out is kept
        assert signature(result) == [
            (SuggestionKind.SINGLE, ("B0",), ("L0",), Decimal("100")),
        ]
        unmatched = {u.item_id: u.reason for u in result.unmatched_bank_transactions}
        assert set(unmatched) == {"B1", "B2"}
        assert all(r.startswith("Not analysed") for r in unmatched.values())
        assert [u.item_id for u in result.unmatched_ledger_entries] == ["L1"]
        assert any(m.startswith("WARNING") and "ml" in m for m in result.messages)

    def test_real_clock_budget_is_respected(self):
        config = RunConfig().with_overrides(
            performance={"timeout_seconds": 0.1, "max_items_per_phase": 2000}
        )
        bank = [make_bank(f"B{i}", 1 + i % 28, str(1000000 + i * 100000)) for i in range(2000)]
        ledger = [make_entry(f"L{i}", 1 + i % 28, str(7 + i % 50)) for i in range(2000)]

        started = time.monotonic()
        result = MatchRunner(config=config).run("ACME", START, END, bank, ledger)
        elapsed = time.monotonic() - started

        assert result.is_partial
        assert elapsed < 10
        assert len(result.unmatched_bank_transactions) + sum(
            len(s.bank_transaction_ids) for s in result.suggestions
        ) == 2000
