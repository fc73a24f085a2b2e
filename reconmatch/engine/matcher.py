"""Core reconciliation matching engine."""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Sequence

from reconmatch.engine.collaborators import LedgerPredictor, PaymentLinker, SuggestionStore
from reconmatch.engine.config import RunConfig
from reconmatch.engine.errors import ConfigurationError, InputError
from reconmatch.engine.grouping import PHASE_GROUP, GroupMatcher
from reconmatch.engine.ledger import ClaimRegistry, SuggestionLedger
from reconmatch.engine.models import (
    BankTransaction,
    LedgerEntry,
    RunResult,
    RunStatistics,
    Suggestion,
    SuggestionKind,
    UnmatchedItem,
)
from reconmatch.engine.pairwise import (
    PHASE_EXACT,
    PHASE_PROBABLE,
    ExactProbableMatcher,
    truncate_most_recent,
)
from reconmatch.engine.residual import PHASE_RESIDUAL_BANK, PHASE_RESIDUAL_LEDGER, ResidualClassifier
from reconmatch.engine.timeout import TimeoutGuard

logger = logging.getLogger(__name__)

PHASE_PAYMENT_LINK = "payment_link"
PHASE_ML = "ml"

ALREADY_RECONCILED = "Already reconciled, excluded from matching"

PHASES = (
    PHASE_EXACT,
    PHASE_PROBABLE,
    PHASE_PAYMENT_LINK,
    PHASE_ML,
    PHASE_GROUP,
    PHASE_RESIDUAL_BANK,
    PHASE_RESIDUAL_LEDGER,
)


@dataclass
class _RunContext:
    """Mutable state of one run. Never shared between runs."""
    company: str
    config: RunConfig
    guard: TimeoutGuard
    ledger: SuggestionLedger
    bank_transactions: List[BankTransaction]
    ledger_entries: List[LedgerEntry]
    stats: RunStatistics = field(default_factory=RunStatistics)
    messages: List[str] = field(default_factory=list)
    # item id -> reason, for items that reached a residual phase without a suggestion
    residual_reasons: Dict[str, str] = field(default_factory=dict)

    @property
    def claims(self) -> ClaimRegistry:
        return self.ledger.claims


class MatchRunner:
    """
    Reconcile bank transactions against ledger entries for one period.

    Matching Strategy (phases run strictly in this order):
    1. Exact: first ledger entry scoring exactly 100 wins.
    2. Probable: first ledger entry scoring in [90, 100) wins.
    2.3 Payment links proposed by an optional payment linker.
    2.4 Predictions of an optional ledger predictor.
    2.5 Groups: N:1 then 1:N subset-sum matches.
    3. Leftover bank transactions classified by keywords.
    4. Leftover ledger entries classified by keywords.

    The time budget is polled before every unit of work. Once spent, the
    remaining work is skipped and the result is flagged partial; suggestions
    already found are kept.
    """

    def __init__(
        self,
        config: Optional[RunConfig] = None,
        predictor: Optional[LedgerPredictor] = None,
        payment_linker: Optional[PaymentLinker] = None,
        store: Optional[SuggestionStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the runner.

        Args:
            config: Default configuration, used when ``run`` gets none.
            predictor: Optional ranked-prediction service for the ML phase.
            payment_linker: Optional source of existing payment links.
            store: Optional destination of each phase's suggestions.
            clock: Monotonic clock in seconds, replaceable in tests.
        """
        self.config = config if config is not None else RunConfig()
        self.predictor = predictor
        self.payment_linker = payment_linker
        self.store = store
        self.clock = clock

    def run(
        self,
        company: str,
        period_start: Optional[date],
        period_end: Optional[date],
        bank_transactions: Sequence[BankTransaction],
        ledger_entries: Sequence[LedgerEntry],
        config: Optional[RunConfig] = None,
    ) -> RunResult:
        """
        Perform one matching run.

        Args:
            company: Company the items belong to.
            period_start: First day of the reconciled period.
            period_end: Last day of the reconciled period.
            bank_transactions: Bank statement lines, in processing order.
            ledger_entries: Ledger lines of the bank account, in processing order.
            config: Configuration for this run; defaults to the runner's.

        Returns:
            The run result, flagged partial when the time budget ran out.

        Raises:
            ConfigurationError: If ``config`` is not a RunConfig.
            InputError: If two items of the same side share an id.
            ClaimConflictError: If an item was claimed twice (internal error).
        """
        config = config if config is not None else self.config
        if not isinstance(config, RunConfig):
            raise ConfigurationError(
                f"Expected a RunConfig, got {type(config).__name__}"
            )
        _check_unique_ids("bank transaction", bank_transactions)
        _check_unique_ids("ledger entry", ledger_entries)

        guard = TimeoutGuard(config.performance.timeout_seconds, clock=self.clock)
        guard.start()
        result = RunResult(company=company, period_start=period_start, period_end=period_end)
        logger.info(
            "Starting matching run for %s (%s to %s): %d bank transactions, %d ledger entries",
            company, period_start, period_end, len(bank_transactions), len(ledger_entries),
        )

        stats = RunStatistics()
        open_bank = [t for t in bank_transactions if not t.reconciled]
        reconciled_bank = [t for t in bank_transactions if t.reconciled]
        stats.skipped_reconciled = len(reconciled_bank)

        limit = config.performance.max_items_per_phase
        kept_bank, dropped_bank = truncate_most_recent(open_bank, limit)
        kept_ledger, dropped_ledger = truncate_most_recent(list(ledger_entries), limit)
        stats.total_bank_transactions = len(kept_bank)
        stats.total_ledger_entries = len(kept_ledger)

        ctx = _RunContext(
            company=company,
            config=config,
            guard=guard,
            ledger=SuggestionLedger(ClaimRegistry(), config.auto_approve_threshold, self.store),
            bank_transactions=kept_bank,
            ledger_entries=kept_ledger,
            stats=stats,
        )
        for side, dropped in (("bank transactions", dropped_bank), ("ledger entries", dropped_ledger)):
            if dropped:
                logger.warning(
                    "Too many %s (%d), keeping the %d most recent", side, len(dropped) + limit, limit
                )
                ctx.messages.append(
                    f"{len(dropped)} {side} beyond the {limit} most recent were not analysed"
                )

        self._run_phases(ctx)

        result.suggestions = ctx.ledger.suggestions
        result.is_partial = guard.tripped
        self._collect_unmatched(ctx, result, reconciled_bank, dropped_bank, dropped_ledger)
        self._finish_statistics(ctx, result)
        result.statistics = ctx.stats
        result.elapsed_ms = guard.elapsed_ms
        result.messages = self._summary_messages(ctx, result) + ctx.messages

        logger.info(
            "Matching finished in %d ms: %d suggestions, %s%% average confidence%s",
            result.elapsed_ms, len(result.suggestions), ctx.stats.overall_confidence,
            " (PARTIAL)" if result.is_partial else "",
        )
        return result

    def _run_phases(self, ctx: _RunContext) -> None:
        pairwise = ExactProbableMatcher(ctx.config)
        steps = {
            PHASE_EXACT: lambda: self._pairwise_phase(ctx, pairwise, PHASE_EXACT),
            PHASE_PROBABLE: lambda: self._pairwise_phase(ctx, pairwise, PHASE_PROBABLE),
            PHASE_PAYMENT_LINK: lambda: self._payment_link_phase(ctx),
            PHASE_ML: lambda: self._ml_phase(ctx),
            PHASE_GROUP: lambda: self._group_phase(ctx),
            PHASE_RESIDUAL_BANK: lambda: self._residual_bank_phase(ctx),
            PHASE_RESIDUAL_LEDGER: lambda: self._residual_ledger_phase(ctx),
        }
        for phase in PHASES:
            step = steps[phase]
            if ctx.guard.expired(phase):
                logger.warning("Skipping phase %s: time budget spent", phase)
                continue
            logger.info("Phase %s started", phase)
            step()
            batch = ctx.ledger.flush(phase)
            logger.info("Phase %s finished: %d suggestions", phase, len(batch))

    def _pairwise_phase(self, ctx: _RunContext, matcher: ExactProbableMatcher, phase: str) -> None:
        count = matcher.run_phase(
            phase, ctx.bank_transactions, ctx.ledger_entries, ctx.ledger, ctx.guard
        )
        if phase == PHASE_EXACT:
            ctx.stats.exact_matches = count
        else:
            ctx.stats.probable_matches = count

    def _payment_link_phase(self, ctx: _RunContext) -> None:
        if self.payment_linker is None:
            logger.info("Phase %s skipped: no payment linker configured", PHASE_PAYMENT_LINK)
            return

        try:
            links = self.payment_linker.suggest_existing_payment_links(ctx.company)
        except Exception as e:
            logger.exception("Payment linker failed, no payment links this run")
            ctx.messages.append(f"Payment link matching unavailable: {e}")
            return
        logger.info("%d payment link candidates received", len(links))

        bank_by_id = {t.id: t for t in ctx.bank_transactions}
        for link in links:
            if ctx.guard.expired(PHASE_PAYMENT_LINK):
                break
            txn = bank_by_id.get(link.bank_transaction_id)
            if txn is None or ctx.claims.is_bank_claimed(txn.id):
                continue
            try:
                suggestion = self._payment_link_suggestion(ctx, txn, link)
            except (AttributeError, TypeError, ArithmeticError, ValueError) as e:
                logger.error("Ignoring malformed payment link for %s: %s", link.bank_transaction_id, e)
                continue
            ctx.ledger.add(suggestion)
            ctx.stats.payment_link_matches += 1
            logger.debug("Payment link: payment %s <-> bank %s", link.payment_id, txn.id)

    @staticmethod
    def _payment_link_suggestion(ctx: _RunContext, txn: BankTransaction, link) -> Suggestion:
        score = Decimal(str(link.score))
        reasons = [
            f"Payment {link.payment_id} matches the bank transaction (score {link.score}%)",
            f"Payment amount: {link.payment_amount}",
            f"Bank amount: {link.bank_amount}",
            f"Payment date: {link.payment_date}",
            f"Bank date: {link.bank_date}",
        ]
        if link.reference:
            reasons.append(f"Transaction reference: {link.reference}")
        suggestion = Suggestion(
            kind=SuggestionKind.PAYMENT_LINK,
            confidence_score=score,
            bank_transaction_ids=(txn.id,),
            reasons=reasons,
            amount=Decimal(str(link.payment_amount)),
            transaction_date=link.payment_date or txn.date,
            description=f"Payment {link.payment_id}",
            payment_id=str(link.payment_id),
            phase=PHASE_PAYMENT_LINK,
        )
        suggestion.requires_manual_review = ctx.ledger.needs_review(suggestion.confidence_score)
        return suggestion

    def _ml_phase(self, ctx: _RunContext) -> None:
        if self.predictor is None:
            logger.info("Phase %s skipped: no predictor configured", PHASE_ML)
            return

        failures = 0
        for txn in ctx.bank_transactions:
            if ctx.guard.expired(PHASE_ML):
                break
            if ctx.claims.is_bank_claimed(txn.id):
                continue
            candidates = [e for e in ctx.ledger_entries if not ctx.claims.is_ledger_claimed(e.id)]
            if not candidates:
                break

            try:
                prediction = self.predictor.predict_ranked_ledger_entry(txn, candidates)
                if prediction is None:
                    continue
                confidence = Decimal(str(prediction.confidence))
            except Exception:
                failures += 1
                logger.exception("Prediction failed for bank transaction %s", txn.id)
                continue

            if confidence < ctx.config.ml_min_confidence:
                continue
            entry = prediction.ledger_entry
            if entry not in candidates:
                logger.warning(
                    "Predictor proposed ledger entry %s for %s, which is not an open candidate",
                    getattr(entry, "id", entry), txn.id,
                )
                continue

            reasons = [f"ML prediction{f' ({prediction.model_version})' if prediction.model_version else ''}"]
            if prediction.explanation:
                reasons.append(prediction.explanation)
            suggestion = Suggestion(
                kind=SuggestionKind.ML_PREDICTED,
                confidence_score=confidence,
                bank_transaction_ids=(txn.id,),
                ledger_entry_ids=(entry.id,),
                reasons=reasons,
                amount=txn.magnitude,
                transaction_date=txn.date,
                description=f"Match: {txn.description}",
                phase=PHASE_ML,
            )
            suggestion.requires_manual_review = ctx.ledger.needs_review(suggestion.confidence_score)
            ctx.ledger.add(suggestion)
            ctx.stats.ml_matches += 1
            logger.info("ML match: %s -> %s (confidence %s)", txn.id, entry.id, confidence)

        if failures:
            ctx.messages.append(f"Predictor failed for {failures} bank transactions, skipped")

    def _group_phase(self, ctx: _RunContext) -> None:
        if not ctx.config.grouping.enabled:
            logger.info("Phase %s skipped: grouping disabled", PHASE_GROUP)
            return
        n_to_one, one_to_n = GroupMatcher(ctx.config).run(
            ctx.bank_transactions, ctx.ledger_entries, ctx.ledger, ctx.guard
        )
        ctx.stats.group_matches = n_to_one + one_to_n

    def _residual_bank_phase(self, ctx: _RunContext) -> None:
        classifier = ResidualClassifier(ctx.config)
        for txn in ctx.bank_transactions:
            if ctx.guard.expired(PHASE_RESIDUAL_BANK):
                break
            if ctx.claims.is_bank_claimed(txn.id):
                continue
            suggestion = classifier.bank_suggestion(txn)
            if suggestion is None:
                ctx.residual_reasons[txn.id] = classifier.unmatched_reason(txn)
                continue
            ctx.ledger.add(suggestion)
            ctx.stats.heuristic_bank += 1

    def _residual_ledger_phase(self, ctx: _RunContext) -> None:
        classifier = ResidualClassifier(ctx.config)
        for entry in ctx.ledger_entries:
            if ctx.guard.expired(PHASE_RESIDUAL_LEDGER):
                break
            if ctx.claims.is_ledger_claimed(entry.id):
                continue
            suggestion = classifier.ledger_suggestion(entry)
            if suggestion is None:
                ctx.residual_reasons[entry.id] = classifier.unmatched_reason(entry)
                continue
            ctx.ledger.add(suggestion)
            ctx.stats.heuristic_ledger += 1

    def _collect_unmatched(self, ctx, result: RunResult, reconciled_bank, dropped_bank, dropped_ledger) -> None:
        limit = ctx.config.performance.max_items_per_phase
        not_reached = (
            f"Not analysed: time budget of {ctx.config.performance.timeout_seconds}s "
            f"ran out before this item was examined"
        )
        dropped_reason = f"Not analysed: beyond the {limit} most recent items kept for this run"

        for txn in ctx.bank_transactions:
            if not ctx.claims.is_bank_claimed(txn.id):
                reason = ctx.residual_reasons.get(txn.id, not_reached)
                result.unmatched_bank_transactions.append(UnmatchedItem.from_bank(txn, reason))
        for txn in dropped_bank:
            result.unmatched_bank_transactions.append(UnmatchedItem.from_bank(txn, dropped_reason))
        for txn in reconciled_bank:
            result.unmatched_bank_transactions.append(UnmatchedItem.from_bank(txn, ALREADY_RECONCILED))

        for entry in ctx.ledger_entries:
            if not ctx.claims.is_ledger_claimed(entry.id):
                reason = ctx.residual_reasons.get(entry.id, not_reached)
                result.unmatched_ledger_entries.append(UnmatchedItem.from_ledger(entry, reason))
        for entry in dropped_ledger:
            result.unmatched_ledger_entries.append(UnmatchedItem.from_ledger(entry, dropped_reason))

    @staticmethod
    def _finish_statistics(ctx: _RunContext, result: RunResult) -> None:
        stats = ctx.stats
        # reconciled lines are listed for completeness but need no analysis
        stats.unmatched_bank_transactions = len(result.unmatched_bank_transactions) - stats.skipped_reconciled
        stats.unmatched_ledger_entries = len(result.unmatched_ledger_entries)

        suggestions = result.suggestions
        stats.auto_approved_count = sum(1 for s in suggestions if not s.requires_manual_review)
        stats.manual_review_count = len(suggestions) - stats.auto_approved_count
        if suggestions:
            total = sum((s.confidence_score for s in suggestions), Decimal("0"))
            stats.overall_confidence = (total / len(suggestions)).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )

        by_kind = Counter(s.kind for s in suggestions)
        logger.debug("Suggestions by kind: %s", {k.value: v for k, v in by_kind.items()})

    @staticmethod
    def _summary_messages(ctx: _RunContext, result: RunResult) -> List[str]:
        stats = ctx.stats
        messages = [f"{stats.exact_matches} exact matches found"]
        reviewed = stats.probable_matches + stats.payment_link_matches + stats.ml_matches
        if reviewed:
            messages.append(f"{reviewed} probable matches need checking")
        if stats.possible_matches:
            messages.append(f"{stats.possible_matches} suggestions based on transaction analysis")
        if stats.unmatched_bank_transactions:
            messages.append(
                f"{stats.unmatched_bank_transactions} bank transactions without a match, to analyse"
            )
        if stats.unmatched_ledger_entries:
            messages.append(
                f"{stats.unmatched_ledger_entries} ledger entries without a match, uncashed cheques?"
            )
        if result.is_partial:
            messages.append(
                f"WARNING: analysis stopped after {ctx.config.performance.timeout_seconds}s "
                f"(during {ctx.guard.tripped_during or 'setup'}), results are partial. "
                "Consider splitting the reconciliation into shorter periods."
            )
        return messages


def _check_unique_ids(label: str, items: Sequence) -> None:
    seen = set()
    for item in items:
        if item.id in seen:
            raise InputError(f"Duplicate {label} id: {item.id!r}")
        seen.add(item.id)
