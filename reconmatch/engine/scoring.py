"""Pairwise scoring of a bank transaction against a ledger entry."""

from decimal import Decimal

from reconmatch.engine.amounts import AmountComparator, AmountMatch
from reconmatch.engine.config import RunConfig
from reconmatch.engine.models import BankTransaction, LedgerEntry, MatchCandidatePair
from reconmatch.engine.similarity import TextSimilarity

EXACT_AMOUNT_POINTS = Decimal("50")
CLOSE_AMOUNT_POINTS = Decimal("30")
SAME_DATE_POINTS = Decimal("50")
GOOD_DATE_POINTS = Decimal("40")
FAIR_DATE_POINTS = Decimal("25")
LOW_DATE_POINTS = Decimal("10")
SIGN_PENALTY = Decimal("30")
REFERENCE_POINTS = Decimal("10")


class PairScorer:
    """
    Combine amount, date, sign, reference and description evidence into one score.

    The score is on a raw scale: an exact amount on the same date with coherent
    signs is worth exactly 100, reference and description bonuses can push it
    above that, and a sign mismatch can push it below zero. A mismatched amount
    vetoes every other signal and scores 0. Callers must treat a score <= 0 as
    a non-match.
    """

    def __init__(self, config: RunConfig):
        self.config = config
        self.amounts = AmountComparator(config.amount_tolerance)
        self.text = TextSimilarity(
            config.text_similarity.algorithm,
            normalize=config.text_similarity.normalize,
        )

    def score(self, bank_txn: BankTransaction, entry: LedgerEntry) -> MatchCandidatePair:
        score = Decimal("0")
        reasons = []

        # 1. Amount
        bank_amount = bank_txn.magnitude
        ledger_amount = entry.magnitude
        amount_match = self.amounts.compare(bank_amount, ledger_amount)
        if amount_match == AmountMatch.EXACT:
            score += EXACT_AMOUNT_POINTS
            reasons.append(f"Exact amount: {bank_amount}")
        elif amount_match == AmountMatch.CLOSE:
            score += CLOSE_AMOUNT_POINTS
            reasons.append(f"Close amount: bank={bank_amount} ledger={ledger_amount}")
        else:
            reasons.append(f"Different amounts: bank={bank_amount} ledger={ledger_amount}")
            return MatchCandidatePair(bank_txn, entry, Decimal("0"), reasons)

        # 2. Date proximity
        days = abs((bank_txn.date - entry.date).days)
        tiers = self.config.date_thresholds
        if days == 0:
            score += SAME_DATE_POINTS
            reasons.append("Same date")
        elif days <= tiers.good_match_days:
            score += GOOD_DATE_POINTS
            reasons.append(f"Close date (±{days} days)")
        elif days <= tiers.fair_match_days:
            score += FAIR_DATE_POINTS
            reasons.append(f"Acceptable date (±{days} days)")
        elif days <= tiers.low_match_days:
            score += LOW_DATE_POINTS
            reasons.append(f"Distant date (±{days} days)")
        else:
            reasons.append(f"Dates too far apart (±{days} days)")

        # 3. Debit/credit direction: money in on the bank is a debit on the bank account
        if self.is_sign_coherent(bank_txn, entry):
            reasons.append("Debit/credit direction coherent")
        else:
            score -= SIGN_PENALTY
            reasons.append("WARNING: debit/credit direction inverted, check carefully")

        # 4. Reference
        if bank_txn.reference and entry.reference:
            if bank_txn.reference.strip().lower() == entry.reference.strip().lower():
                score += REFERENCE_POINTS
                reasons.append("Same reference")

        # 5. Description
        if bank_txn.description.strip() and entry.description.strip():
            similarity = self.text.similarity(bank_txn.description, entry.description)
            text_cfg = self.config.text_similarity
            if similarity >= text_cfg.threshold:
                score += Decimal(text_cfg.weight)
                reasons.append(
                    f"Similar description ({similarity:.1%}, {text_cfg.algorithm.value})"
                )

        return MatchCandidatePair(bank_txn, entry, score, reasons)

    @staticmethod
    def is_sign_coherent(bank_txn: BankTransaction, entry: LedgerEntry) -> bool:
        return bank_txn.is_credit == entry.is_debit
