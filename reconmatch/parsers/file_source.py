"""Transaction source reading statement and ledger files from disk."""

import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from reconmatch.engine.models import BankTransaction, LedgerEntry
from reconmatch.parsers.csv_parser import BankCSVParser, LedgerCSVParser
from reconmatch.parsers.ofx_parser import OFXParser

logger = logging.getLogger(__name__)

OFX_SUFFIXES = (".ofx", ".qfx")


def _in_period(item_date: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and item_date < start:
        return False
    if end is not None and item_date > end:
        return False
    return True


class FileTransactionSource:
    """
    Load the open items of one bank account for a period.

    Bank statements may be OFX/QFX or CSV/Excel exports; the ledger is a
    CSV/Excel export. Files are parsed once and cached.
    """

    def __init__(
        self,
        bank_files: Sequence[str | Path],
        ledger_file: str | Path,
        bank_mapping: Optional[Dict[str, str]] = None,
        ledger_mapping: Optional[Dict[str, str]] = None,
    ):
        self.bank_files = [Path(p) for p in bank_files]
        self.ledger_file = Path(ledger_file)
        self.bank_parser = BankCSVParser(bank_mapping)
        self.ofx_parser = OFXParser()
        self.ledger_parser = LedgerCSVParser(ledger_mapping)
        self._bank: Optional[List[BankTransaction]] = None
        self._ledger: Optional[List[LedgerEntry]] = None

    def load_bank_transactions(
        self, company: str, account: str, start: Optional[date], end: Optional[date]
    ) -> List[BankTransaction]:
        """Unreconciled statement lines dated within the period."""
        if self._bank is None:
            self._bank = []
            for path in self.bank_files:
                if path.suffix.lower() in OFX_SUFFIXES:
                    self._bank.extend(self.ofx_parser.parse(path))
                else:
                    self._bank.extend(self.bank_parser.parse(path))

        in_period = [t for t in self._bank if _in_period(t.date, start, end)]
        open_items = [t for t in in_period if not t.reconciled]
        logger.info(
            "%s/%s: %d bank transactions in period, %d already reconciled",
            company, account or "-", len(in_period), len(in_period) - len(open_items),
        )
        return open_items

    def load_ledger_entries(
        self, company: str, account: str, start: Optional[date], end: Optional[date]
    ) -> List[LedgerEntry]:
        """Ledger lines dated within the period, restricted to ``account`` when given."""
        if self._ledger is None:
            self._ledger = self.ledger_parser.parse(self.ledger_file)

        entries = [
            e for e in self._ledger
            if _in_period(e.date, start, end) and (not account or not e.account or e.account == account)
        ]
        logger.info("%s/%s: %d ledger entries in period", company, account or "-", len(entries))
        return entries
