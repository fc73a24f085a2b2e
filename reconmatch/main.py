"""CLI entry point for bank/ledger matching."""

import logging
import sys
from datetime import datetime
from decimal import Decimal
from typing import Optional

import click

from reconmatch.engine.config import RunConfig
from reconmatch.engine.matcher import MatchRunner
from reconmatch.engine.models import RunResult
from reconmatch.engine.similarity import SimilarityAlgorithm
from reconmatch.engine.store import JsonLinesSuggestionStore
from reconmatch.parsers.file_source import FileTransactionSource

logger = logging.getLogger(__name__)


def parse_date(ctx, param, value):
    """Validate an ISO date option."""
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"Expected a date as YYYY-MM-DD, got {value!r}.")


def validate_timeout(ctx, param, value):
    """Validate the time budget is positive."""
    if value is not None and value <= 0:
        raise click.BadParameter("Timeout must be positive.")
    return value


def validate_score(ctx, param, value):
    """Validate a score is between 0 and 100."""
    if value is not None and not 0 <= value <= 100:
        raise click.BadParameter("Score must be between 0 and 100.")
    return value


def validate_positive(ctx, param, value):
    if value is not None and value < 1:
        raise click.BadParameter("Must be at least 1.")
    return value


def build_config(
    config_path: Optional[str],
    timeout: Optional[float],
    auto_approve: Optional[float],
    max_items: Optional[int],
    similarity: Optional[str],
) -> RunConfig:
    """Load the configuration file, then apply command line overrides."""
    config = RunConfig.from_file(config_path) if config_path else RunConfig()

    performance = {}
    if timeout is not None:
        performance["timeout_seconds"] = timeout
    if max_items is not None:
        performance["max_items_per_phase"] = max_items
    sections = {"performance": performance} if performance else {}
    if similarity is not None:
        sections["text_similarity"] = {"algorithm": similarity}
    if sections:
        config = config.with_overrides(**sections)

    if auto_approve is not None:
        config = config.with_overrides(auto_approve_threshold=Decimal(str(auto_approve)))
    return config


def print_summary(result: RunResult) -> None:
    stats = result.statistics
    click.echo("\n" + "=" * 60)
    click.echo("  MATCHING SUMMARY" + ("  (PARTIAL)" if result.is_partial else ""))
    click.echo("=" * 60)
    click.echo(f"  Bank transactions:    {stats.total_bank_transactions}")
    click.echo(f"  Ledger entries:       {stats.total_ledger_entries}")
    click.echo(f"  Already reconciled:   {stats.skipped_reconciled}")
    click.echo(f"  Suggestions:          {len(result.suggestions)}")
    click.echo(f"    +-- Exact:          {stats.exact_matches}")
    click.echo(f"    +-- Probable:       {stats.probable_matches}")
    click.echo(f"    +-- Payment links:  {stats.payment_link_matches}")
    click.echo(f"    +-- ML:             {stats.ml_matches}")
    click.echo(f"    +-- Groups:         {stats.group_matches}")
    click.echo(f"    +-- Bank only:      {stats.heuristic_bank}")
    click.echo(f"    +-- Ledger only:    {stats.heuristic_ledger}")
    click.echo(f"  Auto-approved:        {stats.auto_approved_count}")
    click.echo(f"  Manual review:        {stats.manual_review_count}")
    click.echo(f"  Unmatched (Bank):     {stats.unmatched_bank_transactions}")
    click.echo(f"  Unmatched (Ledger):   {stats.unmatched_ledger_entries}")
    click.echo(f"  Average confidence:   {stats.overall_confidence}%")
    click.echo(f"  Elapsed:              {result.elapsed_ms} ms")
    click.echo("=" * 60)
    for message in result.messages:
        click.echo(f"  - {message}")


@click.command()
@click.option(
    "--bank", "-b",
    required=True,
    multiple=True,
    type=click.Path(exists=True),
    help="Bank statement file(s): OFX/QFX, CSV or Excel.",
)
@click.option(
    "--ledger", "-l",
    required=True,
    type=click.Path(exists=True),
    help="General ledger export of the bank account (CSV or Excel).",
)
@click.option("--start", callback=parse_date, help="First day of the period (YYYY-MM-DD).")
@click.option("--end", callback=parse_date, help="Last day of the period (YYYY-MM-DD).")
@click.option("--company", default="default", show_default=True, help="Company identifier.")
@click.option("--account", default="", help="Ledger account to keep (default: all).")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True),
    help="JSON configuration file.",
)
@click.option("--timeout", type=float, callback=validate_timeout, help="Time budget in seconds.")
@click.option(
    "--auto-approve",
    type=float,
    callback=validate_score,
    help="Score at or above which suggestions skip manual review.",
)
@click.option(
    "--max-items",
    type=int,
    callback=validate_positive,
    help="Maximum items kept per side (most recent first).",
)
@click.option(
    "--similarity",
    type=click.Choice([a.value for a in SimilarityAlgorithm], case_sensitive=False),
    help="Text similarity algorithm.",
)
@click.option(
    "--output", "-o",
    type=click.Path(),
    help="Write suggestions as JSON lines to this file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug details.")
def main(
    bank: tuple,
    ledger: str,
    start,
    end,
    company: str,
    account: str,
    config_path: Optional[str],
    timeout: Optional[float],
    auto_approve: Optional[float],
    max_items: Optional[int],
    similarity: Optional[str],
    output: Optional[str],
    verbose: bool,
) -> None:
    """
    Bank Reconciliation Matching

    Proposes matches between bank statement lines and general ledger
    entries. Suggestions are never applied: they are meant for review.

    Example:
        reconmatch --bank bank.ofx --ledger ledger.csv --start 2024-01-01 --end 2024-01-31
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    click.echo("=" * 60)
    click.echo("  BANK RECONCILIATION MATCHING")
    click.echo("=" * 60)

    try:
        if start and end and start > end:
            raise ValueError(f"Period start {start} is after period end {end}")

        config = build_config(config_path, timeout, auto_approve, max_items, similarity)

        click.echo(f"\n  Loading {len(bank)} bank statement(s) and ledger {ledger}...")
        source = FileTransactionSource(bank, ledger)
        bank_transactions = source.load_bank_transactions(company, account, start, end)
        ledger_entries = source.load_ledger_entries(company, account, start, end)
        click.echo(f"   Found {len(bank_transactions)} bank transactions")
        click.echo(f"   Found {len(ledger_entries)} ledger entries")

        store = JsonLinesSuggestionStore(output) if output else None
        click.echo(f"\n  Matching (timeout: {config.performance.timeout_seconds}s)...")
        runner = MatchRunner(config=config, store=store)
        result = runner.run(company, start, end, bank_transactions, ledger_entries)

        print_summary(result)
        if store is not None:
            click.echo(f"\n  Suggestions saved to: {store.path.absolute()}")

    except FileNotFoundError as e:
        click.echo(f"\n  ERROR: {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"\n  ERROR: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error during matching")
        click.echo(f"\n  UNEXPECTED ERROR: {e}", err=True)
        sys.exit(2)


if __name__ == "__main__":
    main()
