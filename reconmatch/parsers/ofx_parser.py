"""OFX bank statement parser."""

import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import List

from ofxparse import OfxParser as OfxLib

from reconmatch.engine.models import BankTransaction

logger = logging.getLogger(__name__)


class OFXParser:
    """Parse OFX/QFX bank statement files into BankTransaction objects."""

    def parse(self, file_path: str | Path) -> List[BankTransaction]:
        """
        Parse an OFX file and return its statement lines.

        Args:
            file_path: Path to the OFX/QFX file.

        Returns:
            List of BankTransaction objects from the bank statement.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the file cannot be parsed.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"OFX file not found: {file_path}")

        if file_path.suffix.lower() not in (".ofx", ".qfx"):
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        try:
            with open(file_path, "rb") as f:
                ofx = OfxLib.parse(f)
        except Exception as e:
            raise ValueError(f"Failed to parse OFX file: {e}") from e

        transactions: List[BankTransaction] = []

        for account in self._get_accounts(ofx):
            for stmt_txn in account.statement.transactions:
                transactions.append(self._convert_transaction(stmt_txn, account))

        logger.info("Parsed %d transactions from %s", len(transactions), file_path)
        return transactions

    def parse_multiple(self, file_paths: List[str | Path]) -> List[BankTransaction]:
        """Parse several statements and return their combined lines."""
        all_transactions: List[BankTransaction] = []
        for path in file_paths:
            all_transactions.extend(self.parse(path))
        return all_transactions

    def _get_accounts(self, ofx):
        if getattr(ofx, "accounts", None):
            return ofx.accounts
        if getattr(ofx, "account", None) is not None:
            return [ofx.account]
        raise ValueError("No accounts found in OFX file")

    def _convert_transaction(self, stmt_txn, account) -> BankTransaction:
        txn_date = stmt_txn.date
        if isinstance(txn_date, str):
            txn_date = datetime.strptime(txn_date[:8], "%Y%m%d")
        if isinstance(txn_date, datetime):
            txn_date = txn_date.date()
        if not isinstance(txn_date, date):
            raise ValueError(f"Transaction {stmt_txn.id} has no usable date")

        account_id = getattr(account, "account_id", "") or ""
        return BankTransaction(
            id=f"{account_id}:{stmt_txn.id}" if account_id else str(stmt_txn.id),
            date=txn_date,
            amount=Decimal(str(stmt_txn.amount)),
            description=getattr(stmt_txn, "memo", "") or getattr(stmt_txn, "payee", "") or "",
            reference=getattr(stmt_txn, "checknum", None) or None,
            third_party=getattr(stmt_txn, "payee", None) or None,
            raw_data={
                "account_id": account_id,
                "bank_id": getattr(account, "routing_number", ""),
                "type": getattr(stmt_txn, "type", ""),
            },
        )
