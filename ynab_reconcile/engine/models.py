"""Data models for the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class ClearedStatus(Enum):
    """Ledger cleared state of a transaction."""
    UNCLEARED = "uncleared"
    CLEARED = "cleared"
    RECONCILED = "reconciled"

    @property
    def is_cleared(self) -> bool:
        return self in (ClearedStatus.CLEARED, ClearedStatus.RECONCILED)


class MatchConfidence(Enum):
    """Confidence tier of a bank/ledger pairing."""
    HIGH = "high"        # Auto-matched
    MEDIUM = "medium"    # Suggested, needs a decision
    LOW = "low"          # Weak candidates only
    NONE = "none"        # Nothing viable


class InsightType(Enum):
    REPEAT_AMOUNT = "repeat_amount"
    NEAR_MATCH = "near_match"
    ANOMALY = "anomaly"


class InsightSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# Action hints attached to non-high matches
ADD_TO_YNAB = "add_to_ynab"
REVIEW_AND_CHOOSE = "review_and_choose"
REVIEW_OR_ADD_NEW = "review_or_add_new"


def _coerce_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class BankTransaction:
    """A single row of a bank statement CSV."""
    id: str
    date: date
    amount: int  # milliunits
    payee: str
    memo: str = ""
    original_csv_row: int = 0

    def __repr__(self) -> str:
        return (
            f"BankTransaction(id={self.id[:8]!r}, date={self.date.isoformat()}, "
            f"amount={self.amount}, payee={self.payee[:30]!r}, row={self.original_csv_row})"
        )


@dataclass(frozen=True)
class LedgerTransaction:
    """A transaction as recorded in the YNAB ledger. Read-only to the engine."""
    id: str
    date: date
    amount: int  # milliunits
    payee_name: Optional[str] = None
    category_name: Optional[str] = None
    cleared: ClearedStatus = ClearedStatus.UNCLEARED
    approved: bool = False
    memo: Optional[str] = None

    @property
    def is_cleared(self) -> bool:
        return self.cleared.is_cleared

    @classmethod
    def from_api(cls, data: Union["LedgerTransaction", Mapping[str, Any]]) -> "LedgerTransaction":
        """Build from a raw API record (``TransactionDetail``-shaped mapping)."""
        if isinstance(data, LedgerTransaction):
            return data

        amount = data["amount"]
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValueError(f"Ledger amount must be integer milliunits: {amount!r}")

        return cls(
            id=str(data["id"]),
            date=_coerce_date(data["date"]),
            amount=amount,
            payee_name=data.get("payee_name") or None,
            category_name=data.get("category_name") or None,
            cleared=ClearedStatus(data.get("cleared", "uncleared")),
            approved=bool(data.get("approved", False)),
            memo=data.get("memo") or None,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "amount": self.amount,
            "payee_name": self.payee_name,
            "category_name": self.category_name,
            "cleared": self.cleared.value,
            "approved": self.approved,
            "memo": self.memo,
        }


@dataclass(frozen=True)
class MatchCandidate:
    """A ranked alternative for a bank transaction."""
    ledger_transaction: LedgerTransaction
    confidence_score: int
    match_reason: str
    explanation: str


@dataclass(frozen=True)
class TransactionMatch:
    """
    Outcome of matching one bank transaction.

    ``ledger_transaction`` is only set for HIGH confidence; ``candidates`` is
    only populated for MEDIUM and LOW.
    """
    bank_transaction: BankTransaction
    confidence: MatchConfidence
    confidence_score: int = 0
    match_reason: str = ""
    ledger_transaction: Optional[LedgerTransaction] = None
    candidates: Tuple[MatchCandidate, ...] = ()
    action_hint: Optional[str] = None

    @property
    def is_matched(self) -> bool:
        return self.confidence == MatchConfidence.HIGH

    @property
    def top_candidate(self) -> Optional[MatchCandidate]:
        return self.candidates[0] if self.candidates else None


@dataclass(frozen=True)
class MatchingConfig:
    """Policy knobs for the matcher and insight generation."""
    date_tolerance_days: int = 2
    amount_tolerance_cents: int = 1
    auto_match_threshold: int = 90
    suggestion_threshold: int = 60
    near_match_band: int = 5
    max_candidates: int = 3

    def __post_init__(self):
        if self.date_tolerance_days < 0:
            raise ValueError("date_tolerance_days must be non-negative")
        if self.amount_tolerance_cents < 0:
            raise ValueError("amount_tolerance_cents must be non-negative")
        for name in ("auto_match_threshold", "suggestion_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.suggestion_threshold > self.auto_match_threshold:
            raise ValueError("suggestion_threshold cannot exceed auto_match_threshold")
        if self.max_candidates < 1:
            raise ValueError("max_candidates must be at least 1")

    @property
    def amount_tolerance_milliunits(self) -> int:
        return self.amount_tolerance_cents * 10


@dataclass(frozen=True)
class BalanceInfo:
    """Ledger balances against the statement, all in milliunits."""
    current_cleared: int
    current_uncleared: int
    current_total: int
    target_statement: int
    discrepancy: int
    on_track: bool


@dataclass(frozen=True)
class ReconciliationSummary:
    """Counts and balance headline for one analysis."""
    statement_date_range: str
    bank_transactions_count: int
    ynab_transactions_count: int
    auto_matched: int
    suggested_matches: int
    unmatched_bank: int
    unmatched_ynab: int
    current_cleared_balance: int
    target_statement_balance: int
    discrepancy: int
    discrepancy_explanation: str

    @property
    def match_rate(self) -> float:
        """Share of bank transactions auto-matched, as a percentage."""
        if self.bank_transactions_count == 0:
            return 0.0
        return (self.auto_matched / self.bank_transactions_count) * 100


@dataclass(frozen=True)
class ReconciliationInsight:
    id: str
    type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    evidence: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReconciliationAnalysis:
    """Everything one analysis run derived from the CSV and ledger."""
    summary: ReconciliationSummary
    auto_matches: Tuple[TransactionMatch, ...]
    suggested_matches: Tuple[TransactionMatch, ...]
    unmatched_bank: Tuple[BankTransaction, ...]
    unmatched_ynab: Tuple[LedgerTransaction, ...]
    balance_info: BalanceInfo
    next_steps: Tuple[str, ...]
    insights: Tuple[ReconciliationInsight, ...]
