"""Fixed-point money helpers over YNAB milliunits (1000 milliunits = 1.00)."""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Union

MILLIUNITS_PER_UNIT = 1000
CENT_MILLIUNITS = 10

# Largest integer the ledger API can round-trip through JSON without loss
MAX_SAFE_MILLIUNITS = 2**53 - 1

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "$",
    "AUD": "$",
    "NZD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}

_STRIP_PATTERN = re.compile(r"[\s,$€£¥₹]")

Number = Union[int, float, str, Decimal]


def assert_milli(value: int, message: str = "Expected safe integer milliunits") -> int:
    """Raise ValueError unless value is an int inside the safe milliunit range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{message}: {value!r}")
    if abs(value) > MAX_SAFE_MILLIUNITS:
        raise ValueError(f"{message}: {value!r}")
    return value


def to_milli(value: Number) -> int:
    """
    Convert a major-unit amount to integer milliunits.

    Rounds half away from zero on the scaled decimal, so -45.2305 becomes
    -45231 rather than drifting the way float multiplication does.

    Raises:
        ValueError: If the value is not a finite number or overflows.
    """
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value!r}") from e

    if not dec.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    milli = int((dec * MILLIUNITS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return assert_milli(milli, f"Unsafe amount {value!r}")


def from_milli(milli: int) -> Decimal:
    """Convert milliunits to an exact Decimal in major units."""
    return Decimal(assert_milli(milli)).scaleb(-3)


def add_milli(a: int, b: int) -> int:
    return assert_milli(a + b, "Milliunit sum overflow")


def sum_milli(values: Iterable[int]) -> int:
    total = 0
    for value in values:
        total = add_milli(total, value)
    return total


def amount_to_milliunits(text: str) -> int:
    """
    Parse a bank-formatted amount string into milliunits.

    Currency symbols, thousands separators and whitespace are stripped.
    Both "(12.34)" and "-12.34" denote a negative amount.

    Raises:
        ValueError: If nothing numeric remains after cleaning.
    """
    cleaned = _STRIP_PATTERN.sub("", str(text))
    negative = False

    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if cleaned.startswith("-") and negative:
        # "(-12.34)" is still an outflow
        cleaned = cleaned[1:]

    if not cleaned or not re.fullmatch(r"-?(\d+\.?\d*|\.\d+)", cleaned):
        raise ValueError(f"Invalid amount value: {text!r} (cleaned: {cleaned!r})")

    milli = to_milli(cleaned)
    return -milli if negative else milli


def milliunits_to_amount(milli: int) -> Decimal:
    return from_milli(milli)


def format_amount(milli: int, currency_symbol: str = "$") -> str:
    """Render milliunits as e.g. ``-$1,234.56`` (rounded to the cent)."""
    cents = from_milli(milli).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if cents < 0 else ""
    return f"{sign}{currency_symbol}{abs(cents):,.2f}"


def currency_symbol(currency_code: str) -> str:
    code = (currency_code or "USD").upper()
    return CURRENCY_SYMBOLS.get(code, f"{code} ")


@dataclass(frozen=True)
class MoneyValue:
    """A milliunit amount together with its display rendering."""
    value_milliunits: int
    value: Decimal
    value_display: str
    currency_code: str


def to_money_value(milli: int, currency_code: str = "USD") -> MoneyValue:
    return MoneyValue(
        value_milliunits=milli,
        value=from_milli(milli),
        value_display=format_amount(milli, currency_symbol(currency_code)),
        currency_code=(currency_code or "USD").upper(),
    )
