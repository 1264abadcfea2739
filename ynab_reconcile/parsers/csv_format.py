"""Bank CSV format descriptor and auto-detection."""

import io
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ByName:
    """Address a column by its header text."""
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ByIndex:
    """Address a column by its 0-based position."""
    index: int

    def __str__(self) -> str:
        return str(self.index)


ColumnRef = Union[ByName, ByIndex]


def column_ref(value: Union[str, int, ByName, ByIndex]) -> ColumnRef:
    """Coerce a user-supplied column (name, index or digit string) to a ColumnRef."""
    if isinstance(value, (ByName, ByIndex)):
        return value
    if isinstance(value, int):
        return ByIndex(value)
    text = str(value).strip()
    if text.isdigit():
        return ByIndex(int(text))
    return ByName(text)


def resolve_column(ref: Optional[ColumnRef], row: pd.Series) -> str:
    """Return the stripped cell a ColumnRef points at, or "" when absent."""
    if ref is None:
        return ""
    if isinstance(ref, ByName):
        value = row.get(ref.name)
    elif 0 <= ref.index < len(row):
        value = row.iloc[ref.index]
    else:
        value = None
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


# Ordered: first pattern that matches wins
DATE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("MM/DD/YYYY", re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")),
    ("YYYY-MM-DD", re.compile(r"^\d{4}-\d{1,2}-\d{1,2}$")),
    ("MM-DD-YYYY", re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$")),
    ("MMM dd, yyyy", re.compile(r"^[A-Za-z]{3}\s+\d{1,2},\s+\d{4}$")),
]

DEFAULT_DATE_FORMAT = "MM/DD/YYYY"

DELIMITER_CANDIDATES = [",", ";", "\t", "|"]

# Header synonyms, matched case-insensitively against the whole header
HEADER_PATTERNS = {
    "date": re.compile(r"^(date|trans.*date|transaction.*date|post.*date|posting.*date|dt)$", re.I),
    "amount": re.compile(r"^(amount|amt|dollar.*amount|transaction.*amount)$", re.I),
    "description": re.compile(
        r"^(description|desc|memo|transaction.*description|payee|merchant|details|name)$", re.I
    ),
    "debit": re.compile(r"^(debit|debits|withdrawal|withdrawals|out|outgoing|money.*out)$", re.I),
    "credit": re.compile(r"^(credit|credits|deposit|deposits|in|incoming|money.*in)$", re.I),
}

_SPLIT_MONTH_DATE = re.compile(r'^([A-Za-z]{3}\s+\d{1,2}),(\s*\d{4})(?=,|$)')


@dataclass(frozen=True)
class CSVFormat:
    """How to read one bank's CSV export."""
    delimiter: str = ","
    has_header: bool = True
    date_column: ColumnRef = ByName("Date")
    amount_column: Optional[ColumnRef] = ByName("Amount")
    description_column: ColumnRef = ByName("Description")
    debit_column: Optional[ColumnRef] = None
    credit_column: Optional[ColumnRef] = None
    date_format: str = DEFAULT_DATE_FORMAT

    @property
    def uses_debit_credit(self) -> bool:
        return (
            self.amount_column is None
            and self.debit_column is not None
            and self.credit_column is not None
        )

    def describe(self) -> str:
        if self.uses_debit_credit:
            amount = f"debit={self.debit_column}, credit={self.credit_column}"
        else:
            amount = f"amount={self.amount_column}"
        return (
            f"delimiter={self.delimiter!r}, header={self.has_header}, "
            f"date={self.date_column} ({self.date_format}), {amount}, "
            f"description={self.description_column}"
        )


def looks_like_date(value: str) -> bool:
    if not value:
        return False
    cleaned = value.strip()
    return any(pattern.match(cleaned) for _, pattern in DATE_PATTERNS)


def detect_date_format(value: Optional[str]) -> str:
    if not value:
        return DEFAULT_DATE_FORMAT
    cleaned = value.strip()
    for name, pattern in DATE_PATTERNS:
        if pattern.match(cleaned):
            return name
    return DEFAULT_DATE_FORMAT


def quote_split_month_dates(line: str) -> str:
    """Re-quote an unquoted leading "Sep 18, 2025" so the comma stays in the field."""
    return _SPLIT_MONTH_DATE.sub(r'"\1,\2"', line, count=1)


def split_line(line: str, delimiter: str) -> Tuple[List[str], bool]:
    """
    Split one CSV line honouring double-quoted fields.

    Returns the fields and whether the quote-aware tokenizer succeeded; on
    failure the line is split naively.
    """
    try:
        frame = pd.read_csv(
            io.StringIO(line),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            quotechar='"',
            skipinitialspace=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError):
        return line.split(delimiter), False

    if frame.empty:
        return line.split(delimiter), False
    return [str(value).strip() for value in frame.iloc[0].tolist()], True


def detect_delimiter(lines: Sequence[str]) -> str:
    """Pick the candidate giving the most consistent multi-column split."""
    sample = [line for line in lines[:3] if line.strip()]
    if not sample:
        return ","

    best_delimiter = ","
    best_score = -1.0

    for delimiter in DELIMITER_CANDIDATES:
        counts = []
        parse_failed = False
        for line in sample:
            fields, ok = split_line(line, delimiter)
            counts.append(len(fields))
            parse_failed = parse_failed or not ok

        score = 0.0
        first = counts[0]
        if first > 1 and all(count == first for count in counts):
            score = min(first, 10)
            if delimiter == ",":
                score += 0.5
            elif delimiter == ";":
                score += 0.3
            if not parse_failed:
                score += 0.2

        if score > best_score:
            best_score = score
            best_delimiter = delimiter

    return best_delimiter


def _match_headers(headers: Sequence[str]) -> dict:
    """Map each role to the first header whose text matches its synonyms."""
    found: dict = {}
    for header in headers:
        clean = header.strip()
        for role, pattern in HEADER_PATTERNS.items():
            if role not in found and pattern.match(clean):
                found[role] = clean
                break
    return found


def _is_debit_credit_row(fields: Sequence[str]) -> bool:
    if len(fields) < 4:
        return False
    debit, credit = fields[2].strip(), fields[3].strip()
    return bool(debit) != bool(credit)


def detect_format(csv_content: str) -> CSVFormat:
    """
    Infer a CSVFormat from the first three lines of a bank export.

    Raises:
        ValueError: If the content is empty or the first line is blank.
    """
    content = csv_content.lstrip("\ufeff")
    if not content.strip():
        raise ValueError("CSV content is empty")
    lines = content.splitlines()[:3]
    if not lines[0].strip():
        raise ValueError("CSV content has an empty first line")

    lines = [quote_split_month_dates(line) for line in lines]
    delimiter = detect_delimiter(lines)
    rows = [split_line(line, delimiter)[0] for line in lines]
    first = rows[0]
    has_header = not looks_like_date(first[0] if first else "")

    if has_header:
        fmt = _format_from_header(first, rows[1:], delimiter)
    else:
        fmt = _format_without_header(rows, delimiter)

    logger.debug("Detected CSV format: %s", fmt.describe())
    return fmt


def _format_from_header(headers: List[str], data_rows: List[List[str]], delimiter: str) -> CSVFormat:
    found = _match_headers(headers)
    headers = [h.strip() for h in headers]

    def fallback(position: int) -> Optional[str]:
        if position < len(headers) and headers[position]:
            return headers[position]
        return None

    date_name = found.get("date") or fallback(0)
    if not date_name:
        raise ValueError("Unable to detect date column name from header")

    sample_date = None
    if data_rows and date_name in headers:
        position = headers.index(date_name)
        if position < len(data_rows[0]):
            sample_date = data_rows[0][position]
    date_format = detect_date_format(sample_date)

    if "debit" in found and "credit" in found:
        description_name = found.get("description") or fallback(1)
        if not description_name:
            raise ValueError("Unable to detect description column name from header")
        return CSVFormat(
            delimiter=delimiter,
            has_header=True,
            date_column=ByName(date_name),
            amount_column=None,
            description_column=ByName(description_name),
            debit_column=ByName(found["debit"]),
            credit_column=ByName(found["credit"]),
            date_format=date_format,
        )

    amount_name = found.get("amount") or fallback(1)
    if not amount_name:
        raise ValueError("Unable to detect amount column name from header")
    description_name = found.get("description") or fallback(2 if len(headers) >= 3 else 1)
    if not description_name:
        raise ValueError("Unable to detect description column name from header")

    return CSVFormat(
        delimiter=delimiter,
        has_header=True,
        date_column=ByName(date_name),
        amount_column=ByName(amount_name),
        description_column=ByName(description_name),
        date_format=date_format,
    )


def _format_without_header(rows: List[List[str]], delimiter: str) -> CSVFormat:
    first = rows[0]
    date_format = detect_date_format(first[0])

    if len(first) >= 4 and any(_is_debit_credit_row(row) for row in rows):
        return CSVFormat(
            delimiter=delimiter,
            has_header=False,
            date_column=ByIndex(0),
            amount_column=None,
            description_column=ByIndex(1),
            debit_column=ByIndex(2),
            credit_column=ByIndex(3),
            date_format=date_format,
        )

    return CSVFormat(
        delimiter=delimiter,
        has_header=False,
        date_column=ByIndex(0),
        amount_column=ByIndex(1),
        description_column=ByIndex(2 if len(first) >= 3 else 1),
        date_format=date_format,
    )
