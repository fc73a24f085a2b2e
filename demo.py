"""
Demo script for the reconciliation matching engine.

Builds a small month of bank statement lines and ledger entries in memory,
covering every kind of suggestion, and prints what the engine proposes.

Usage:
    python demo.py
"""

import logging
from datetime import date
from decimal import Decimal

from reconmatch.engine.matcher import MatchRunner
from reconmatch.engine.models import BankTransaction, LedgerEntry
from reconmatch.engine.store import InMemorySuggestionStore


def sample_data():
    """Return (bank transactions, ledger entries) for January 2024."""
    bank = [
        BankTransaction("B1", date(2024, 1, 5), Decimal("1250.00"), "VIR SEPA 88231"),
        BankTransaction("B2", date(2024, 1, 9), Decimal("-480.00"), "PRLV EDF ENERGIE"),
        BankTransaction("B3", date(2024, 1, 12), Decimal("300000"), "VIR ACME PART 1"),
        BankTransaction("B4", date(2024, 1, 13), Decimal("300000"), "VIR ACME PART 2"),
        BankTransaction("B5", date(2024, 1, 14), Decimal("400000"), "VIR ACME PART 3"),
        BankTransaction("B6", date(2024, 1, 31), Decimal("-12.50"), "FRAIS TENUE DE COMPTE"),
        BankTransaction("B7", date(2024, 1, 31), Decimal("3.20"), "INTERETS CREDITEURS"),
        BankTransaction("B8", date(2024, 1, 2), Decimal("99.00"), "ALREADY DONE", reconciled=True),
    ]
    ledger = [
        LedgerEntry("L1", date(2024, 1, 5), debit_amount=Decimal("1250.00"),
                    description="Client Durand invoice", reference="INV-001"),
        LedgerEntry("L2", date(2024, 1, 7), credit_amount=Decimal("480.00"),
                    description="EDF electricity"),
        LedgerEntry("L3", date(2024, 1, 12), debit_amount=Decimal("1000000"),
                    description="ACME contract settlement"),
        LedgerEntry("L4", date(2024, 1, 20), credit_amount=Decimal("850.00"),
                    description="Supplier payment", reference="CHQ 1043"),
    ]
    return bank, ledger


def main():
    """Run the matching demo."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    print("=" * 60)
    print("  RECONCILIATION MATCHING ENGINE - DEMO")
    print("=" * 60)

    bank, ledger = sample_data()
    store = InMemorySuggestionStore()
    runner = MatchRunner(store=store)
    result = runner.run("DEMO", date(2024, 1, 1), date(2024, 1, 31), bank, ledger)

    stats = result.statistics
    print("\n" + "=" * 60)
    print("  MATCHING SUMMARY")
    print("=" * 60)
    print(f"  Bank Transactions:    {stats.total_bank_transactions}")
    print(f"  Ledger Entries:       {stats.total_ledger_entries}")
    print(f"  Already Reconciled:   {stats.skipped_reconciled}")
    print(f"  Suggestions:          {len(result.suggestions)}")
    print(f"  Average Confidence:   {stats.overall_confidence}%")
    print("=" * 60)

    print("\n  SUGGESTIONS:")
    print("-" * 60)
    for s in result.suggestions:
        review = "review" if s.requires_manual_review else "auto"
        print(
            f"  [{s.kind.value:>20}] {s.confidence_score:>6} {review:<6} "
            f"bank={','.join(s.bank_transaction_ids) or '-':<10} "
            f"ledger={','.join(s.ledger_entry_ids) or '-'}"
        )
        for reason in s.reasons:
            print(f"        - {reason}")

    if result.unmatched_bank_transactions or result.unmatched_ledger_entries:
        print("\n  UNMATCHED:")
        for item in result.unmatched_bank_transactions + result.unmatched_ledger_entries:
            print(f"  {item.side.value:>6} {item.item_id}: {item.reason}")

    print("\n  MESSAGES:")
    for message in result.messages:
        print(f"  - {message}")
    print(f"\n  Phases persisted: {', '.join(store.by_phase)}\n")


if __name__ == "__main__":
    main()
