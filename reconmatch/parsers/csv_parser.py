"""CSV/Excel bank statement and ledger parsers."""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from reconmatch.engine.models import BankTransaction, LedgerEntry

logger = logging.getLogger(__name__)

TRUE_WORDS = {"true", "yes", "y", "1", "x", "oui", "sim"}


class TabularParser(ABC):
    """Shared reading, column mapping and value parsing for CSV/Excel files."""

    DEFAULT_MAPPING: Dict[str, str] = {}
    REQUIRED: List[str] = ["date"]
    ID_PREFIX = "ROW"

    # Common date formats to try
    DATE_FORMATS = [
        "%Y-%m-%d",
        "%d/%m/%Y",
        "%m/%d/%Y",
        "%d-%m-%Y",
        "%Y/%m/%d",
        "%d.%m.%Y",
    ]

    def __init__(self, column_mapping: Optional[Dict[str, str]] = None):
        """
        Initialize parser with optional custom column mapping.

        Args:
            column_mapping: Dict mapping our field names to file column names.
                          Missing fields keep their default column name.
                          Example: {"date": "Data", "amount": "Valor"}
        """
        self.column_mapping = {**self.DEFAULT_MAPPING, **(column_mapping or {})}

    def parse(self, file_path: str | Path, **kwargs) -> list:
        """
        Parse a CSV or Excel file.

        Args:
            file_path: Path to the CSV/Excel file.
            **kwargs: Additional arguments passed to pandas read function.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If required columns are missing.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        df = self._read_file(file_path, **kwargs)
        self._validate_columns(df)
        items = []
        for idx, row in df.iterrows():
            try:
                items.append(self._convert_row(row, f"{file_path.stem}:{self.ID_PREFIX}-{idx:06d}"))
            except (ValueError, InvalidOperation) as e:
                logger.warning("Skipping row %s of %s: %s", idx, file_path.name, e)
        logger.info("Parsed %d rows from %s", len(items), file_path)
        return items

    def _read_file(self, file_path: Path, **kwargs) -> pd.DataFrame:
        suffix = file_path.suffix.lower()

        if suffix == ".csv":
            return pd.read_csv(file_path, dtype=str, keep_default_na=False, **kwargs)
        elif suffix in (".xlsx", ".xls"):
            return pd.read_excel(file_path, **kwargs)
        else:
            raise ValueError(f"Unsupported file format: {suffix}. Use .csv, .xlsx, or .xls")

    def _validate_columns(self, df: pd.DataFrame) -> None:
        missing = [
            f"{field} (expected column: '{self.column_mapping[field]}')"
            for field in self._required_fields(df)
            if self.column_mapping[field] not in df.columns
        ]
        if missing:
            available = ", ".join(str(c) for c in df.columns)
            raise ValueError(
                f"Missing required columns: {', '.join(missing)}. "
                f"Available columns: {available}. "
                f"Use column_mapping parameter to map your columns."
            )

    def _required_fields(self, df: pd.DataFrame) -> List[str]:
        return self.REQUIRED

    @abstractmethod
    def _convert_row(self, row: pd.Series, default_id: str):
        """Build one item from a row; ``default_id`` is used when the row has no id."""

    def _value(self, row: pd.Series, field: str):
        """Cell of a mapped column, or None when absent or blank."""
        column = self.column_mapping.get(field, field)
        if column not in row.index:
            return None
        value = row[column]
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def _text(self, row: pd.Series, field: str) -> Optional[str]:
        value = self._value(row, field)
        return str(value).strip() if value is not None else None

    def _row_id(self, row: pd.Series, default_id: str) -> str:
        return self._text(row, "id") or default_id

    def _parse_date(self, value) -> date:
        """Parse date from various formats."""
        if value is None:
            raise ValueError("Missing date")
        if isinstance(value, pd.Timestamp):
            return value.date()
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value

        str_value = str(value).strip()

        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(str_value, fmt).date()
            except ValueError:
                continue

        raise ValueError(f"Could not parse date: {value!r}")

    def _parse_amount(self, value) -> Decimal:
        """Parse amount handling various number formats."""
        if value is None:
            return Decimal("0")
        if isinstance(value, (int, float)):
            return Decimal(str(value))

        str_value = str(value).strip()

        # Remove currency symbols and whitespace
        for symbol in ("R$", "$", "€", "£", " ", " "):
            str_value = str_value.replace(symbol, "")

        # Handle European/Brazilian format: 1.234,56
        if "," in str_value and "." in str_value:
            if str_value.rindex(",") > str_value.rindex("."):
                str_value = str_value.replace(".", "").replace(",", ".")
            else:
                str_value = str_value.replace(",", "")

        # Handle comma as decimal separator: 1234,56
        elif "," in str_value:
            str_value = str_value.replace(",", ".")

        try:
            return Decimal(str_value)
        except InvalidOperation as e:
            raise ValueError(f"Could not parse amount: {value!r}") from e


class BankCSVParser(TabularParser):
    """Parse exported bank statements into BankTransaction objects."""

    DEFAULT_MAPPING: Dict[str, str] = {
        "id": "id",
        "date": "date",
        "amount": "amount",
        "description": "description",
        "reference": "reference",
        "reconciled": "reconciled",
        "third_party": "third_party",
    }
    REQUIRED = ["date", "amount"]
    ID_PREFIX = "BANK"

    def parse(self, file_path: str | Path, **kwargs) -> List[BankTransaction]:
        return super().parse(file_path, **kwargs)

    def _convert_row(self, row: pd.Series, default_id: str) -> BankTransaction:
        reconciled = self._text(row, "reconciled")
        return BankTransaction(
            id=self._row_id(row, default_id),
            date=self._parse_date(self._value(row, "date")),
            amount=self._parse_amount(self._value(row, "amount")),
            description=self._text(row, "description") or "",
            reference=self._text(row, "reference"),
            reconciled=reconciled is not None and reconciled.lower() in TRUE_WORDS,
            third_party=self._text(row, "third_party"),
            raw_data=row.to_dict(),
        )


class LedgerCSVParser(TabularParser):
    """
    Parse general ledger exports into LedgerEntry objects.

    Either separate debit and credit columns, or a single signed amount
    column (positive = debit, money expected in the bank) are accepted.
    """

    DEFAULT_MAPPING: Dict[str, str] = {
        "id": "id",
        "date": "date",
        "debit": "debit",
        "credit": "credit",
        "amount": "amount",
        "description": "description",
        "reference": "reference",
        "account": "account",
    }
    ID_PREFIX = "GL"

    def parse(self, file_path: str | Path, **kwargs) -> List[LedgerEntry]:
        return super().parse(file_path, **kwargs)

    def _has_split_columns(self, columns) -> bool:
        return (
            self.column_mapping["debit"] in columns
            or self.column_mapping["credit"] in columns
        )

    def _required_fields(self, df: pd.DataFrame) -> List[str]:
        if self._has_split_columns(df.columns):
            return ["date"]
        return ["date", "amount"]

    def _convert_row(self, row: pd.Series, default_id: str) -> LedgerEntry:
        if self._has_split_columns(row.index):
            debit = self._parse_amount(self._value(row, "debit"))
            credit = self._parse_amount(self._value(row, "credit"))
        else:
            signed = self._parse_amount(self._value(row, "amount"))
            debit = signed if signed > 0 else Decimal("0")
            credit = -signed if signed < 0 else Decimal("0")

        return LedgerEntry(
            id=self._row_id(row, default_id),
            date=self._parse_date(self._value(row, "date")),
            debit_amount=debit,
            credit_amount=credit,
            description=self._text(row, "description") or "",
            reference=self._text(row, "reference"),
            account=self._text(row, "account") or "",
            raw_data=row.to_dict(),
        )
