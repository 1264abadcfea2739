"""Bank statement CSV parser."""

import io
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

import pandas as pd

from ynab_reconcile.engine.models import BankTransaction
from ynab_reconcile.engine.money import amount_to_milliunits
from ynab_reconcile.parsers.csv_format import (
    ByName,
    CSVFormat,
    detect_format,
    quote_split_month_dates,
    resolve_column,
    split_line,
)

logger = logging.getLogger(__name__)

# First field of the placeholder row that stands in for an over-long line
RAGGED_MARKER = "\x00ragged"

# Stable namespace so the same statement row always gets the same id
BANK_TXN_NAMESPACE = uuid.UUID("6f1c0e4a-3b7d-5c2e-9a41-0d8f2b7e5a13")

# Format names as detected, mapped to strptime patterns
DATE_FORMATS = {
    "MM/DD/YYYY": "%m/%d/%Y",
    "M/D/YYYY": "%m/%d/%Y",
    "DD/MM/YYYY": "%d/%m/%Y",
    "D/M/YYYY": "%d/%m/%Y",
    "YYYY-MM-DD": "%Y-%m-%d",
    "MM-DD-YYYY": "%m-%d-%Y",
    "MMM dd, yyyy": "%b %d, %Y",
    "MMM d, yyyy": "%b %d, %Y",
}


def parse_date(value: str, date_format: str) -> date:
    """
    Parse a statement date with the detected format, falling back to
    pandas' generic parser.

    Raises:
        ValueError: If neither approach yields a date.
    """
    clean = str(value).strip()
    pattern = DATE_FORMATS.get(date_format)

    if pattern:
        try:
            return datetime.strptime(clean, pattern).date()
        except ValueError:
            pass

    try:
        parsed = pd.to_datetime(clean)
    except (ValueError, TypeError, OverflowError):
        parsed = pd.NaT

    if pd.isna(parsed):
        raise ValueError(f"Unable to parse date: {value!r} with format: {date_format}")
    return parsed.date()


def default_transaction_id(row_number: int, txn_date: date, amount: int, payee: str) -> str:
    return str(uuid.uuid5(BANK_TXN_NAMESPACE, f"{row_number}|{txn_date.isoformat()}|{amount}|{payee}"))


@dataclass(frozen=True)
class RowError:
    """A statement row that was skipped, and why."""
    row_number: int
    reason: str


@dataclass
class ParseResult:
    """Rows that parsed cleanly plus the ones that were skipped."""
    transactions: List[BankTransaction] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    total_rows: int = 0
    format: Optional[CSVFormat] = None

    @property
    def valid_rows(self) -> int:
        return len(self.transactions)


class BankCSVParser:
    """Parse bank CSV exports into BankTransaction objects."""

    def __init__(
        self,
        csv_format: Optional[CSVFormat] = None,
        id_factory: Callable[[int, date, int, str], str] = default_transaction_id,
    ):
        """
        Args:
            csv_format: Explicit format; auto-detected from the content when omitted.
            id_factory: Builds a transaction id from (row, date, amount, payee).
        """
        self.csv_format = csv_format
        self.id_factory = id_factory

    def parse_file(self, file_path: Union[str, Path]) -> ParseResult:
        """
        Read and parse a CSV statement file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the file cannot be read or contains no rows.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"CSV file not found: {file_path}")

        try:
            content = file_path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise ValueError(f"Unable to read CSV file: {e}") from e

        return self.parse(content)

    def parse(self, csv_content: str) -> ParseResult:
        """
        Parse CSV text. Malformed rows are skipped and reported in
        ``ParseResult.errors``; they never abort the parse.

        Raises:
            ValueError: If the content is empty, untokenizable, or names
                columns the header doesn't have.
        """
        fmt = self.csv_format or detect_format(csv_content)
        result = ParseResult(format=fmt)

        if fmt.amount_column is None and not fmt.uses_debit_credit:
            logger.warning("No amount column configuration found; no transactions parsed")
            return result

        df = self._read_frame(csv_content, fmt)
        self._validate_columns(df, fmt)
        result.total_rows = len(df)

        for position, (_, row) in enumerate(df.iterrows()):
            row_number = position + (2 if fmt.has_header else 1)
            outcome = self._convert_row(row, row_number, fmt)
            if isinstance(outcome, RowError):
                logger.warning("Skipping row %s: %s", outcome.row_number, outcome.reason)
                result.errors.append(outcome)
            else:
                result.transactions.append(outcome)

        return result

    def _read_frame(self, csv_content: str, fmt: CSVFormat) -> pd.DataFrame:
        """
        Read the content so that frame position N is statement line N
        (after the header). Blank lines become empty rows and over-long
        lines become marker rows; both are reported later as row errors.
        """
        # Trailing newlines are not statement rows
        lines = csv_content.lstrip("\ufeff").rstrip("\r\n").splitlines()
        if fmt.date_format.startswith("MMM") and fmt.delimiter == ",":
            start = 1 if fmt.has_header else 0
            lines = lines[:start] + [quote_split_month_dates(line) for line in lines[start:]]

        first = next((line for line in lines if line.strip()), "")
        width = max(len(split_line(first, fmt.delimiter)[0]), 1)

        def on_bad_line(bad_line: List[str]) -> List[str]:
            logger.warning("Malformed line with %d fields (expected %d): %r", len(bad_line), width, bad_line[:4])
            return [RAGGED_MARKER] + [""] * (width - 1)

        try:
            df = pd.read_csv(
                io.StringIO("\n".join(lines)),
                sep=fmt.delimiter,
                header=0 if fmt.has_header else None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                skipinitialspace=True,
                quotechar='"',
                engine="python",
                on_bad_lines=on_bad_line,
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            raise ValueError(f"CSV content contains no parseable rows: {e}") from e

        if fmt.has_header:
            df.columns = [str(col).strip() for col in df.columns]
        return df

    def _validate_columns(self, df: pd.DataFrame, fmt: CSVFormat) -> None:
        """
        Validate that named columns exist in the header.

        Raises:
            ValueError: If required columns are missing.
        """
        if not fmt.has_header:
            return

        required = [("date", fmt.date_column)]
        if fmt.uses_debit_credit:
            required += [("debit", fmt.debit_column), ("credit", fmt.credit_column)]
        else:
            required.append(("amount", fmt.amount_column))

        missing = [
            f"{role} (expected column: '{ref.name}')"
            for role, ref in required
            if isinstance(ref, ByName) and ref.name not in df.columns
        ]

        if missing:
            available = ", ".join(str(col) for col in df.columns)
            raise ValueError(
                f"Missing required columns: {', '.join(missing)}. "
                f"Available columns: {available}."
            )

    def _convert_row(self, row: pd.Series, row_number: int, fmt: CSVFormat) -> Union[BankTransaction, RowError]:
        values = [str(value).strip() for value in row.tolist() if not pd.isna(value)]
        if values and values[0] == RAGGED_MARKER:
            return RowError(row_number, "more fields than the header")
        if not any(values):
            return RowError(row_number, "blank line")

        raw_date = resolve_column(fmt.date_column, row)
        description = resolve_column(fmt.description_column, row)

        try:
            amount = self._row_amount(row, fmt)
            if not raw_date or amount is None:
                return RowError(row_number, "missing date or amount")
            txn_date = parse_date(raw_date, fmt.date_format)
        except ValueError as e:
            return RowError(row_number, str(e))

        return BankTransaction(
            id=self.id_factory(row_number, txn_date, amount, description),
            date=txn_date,
            amount=amount,
            payee=description,
            memo="",
            original_csv_row=row_number,
        )

    def _row_amount(self, row: pd.Series, fmt: CSVFormat) -> Optional[int]:
        """Signed milliunits for the row, or None when no amount is present."""
        if not fmt.uses_debit_credit:
            raw_amount = resolve_column(fmt.amount_column, row)
            return amount_to_milliunits(raw_amount) if raw_amount else None

        raw_debit = resolve_column(fmt.debit_column, row)
        raw_credit = resolve_column(fmt.credit_column, row)
        debit = amount_to_milliunits(raw_debit) if raw_debit else 0
        credit = amount_to_milliunits(raw_credit) if raw_credit else 0

        if debit:
            return -abs(debit)
        if credit:
            return abs(credit)
        if raw_debit or raw_credit:
            return 0
        return None
