"""Reconciliation analysis: parse, match, balance and explain."""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ynab_reconcile.engine.matcher import TransactionMatcher
from ynab_reconcile.engine.models import (
    BalanceInfo,
    BankTransaction,
    InsightSeverity,
    InsightType,
    LedgerTransaction,
    MatchConfidence,
    MatchingConfig,
    ReconciliationAnalysis,
    ReconciliationInsight,
    ReconciliationSummary,
    TransactionMatch,
)
from ynab_reconcile.engine.money import (
    CENT_MILLIUNITS,
    MILLIUNITS_PER_UNIT,
    assert_milli,
    format_amount,
    from_milli,
    sum_milli,
)
from ynab_reconcile.parsers.csv_format import CSVFormat
from ynab_reconcile.parsers.csv_parser import BankCSVParser

logger = logging.getLogger(__name__)

MAX_INSIGHTS = 5
MAX_NEAR_MATCH_INSIGHTS = 3
BALANCED_EXPLANATION = "Cleared balance matches statement"

RawLedgerRecord = Union[LedgerTransaction, Mapping[str, Any]]


class ReconciliationAnalyzer:
    """
    Compare a parsed bank statement with ledger transactions.

    ``analyze`` is a pure function of its arguments: the same inputs always
    produce an equal ReconciliationAnalysis.
    """

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig()
        self.matcher = TransactionMatcher(self.config)

    def analyze(
        self,
        bank_transactions: Sequence[BankTransaction],
        ledger_transactions: Iterable[RawLedgerRecord],
        statement_balance: int,
    ) -> ReconciliationAnalysis:
        """
        Args:
            bank_transactions: Parsed statement rows, in statement order.
            ledger_transactions: Ledger records; raw API mappings are converted
                and those flagged ``deleted`` are dropped.
            statement_balance: Target cleared balance in milliunits.
        """
        assert_milli(statement_balance, "Statement balance must be integer milliunits")
        ledger = convert_ledger_transactions(ledger_transactions)

        matches, _ = self.matcher.find_matches(bank_transactions, ledger)
        auto_matches, suggested, unmatched_bank = categorize_matches(matches)
        unmatched_ynab = find_unmatched_ledger(ledger, matches)
        balances = calculate_balances(ledger, statement_balance)

        summary = build_summary(
            bank_transactions, ledger, auto_matches, suggested, unmatched_bank, unmatched_ynab, balances
        )
        next_steps = build_next_steps(summary)
        insights = self.detect_insights(matches, unmatched_bank, summary, balances)

        logger.info(
            "Analysis: %d bank / %d ledger; %d auto, %d suggested, %d bank-only, %d ledger-only; on_track=%s",
            summary.bank_transactions_count,
            summary.ynab_transactions_count,
            summary.auto_matched,
            summary.suggested_matches,
            summary.unmatched_bank,
            summary.unmatched_ynab,
            balances.on_track,
        )

        return ReconciliationAnalysis(
            summary=summary,
            auto_matches=tuple(auto_matches),
            suggested_matches=tuple(suggested),
            unmatched_bank=tuple(unmatched_bank),
            unmatched_ynab=tuple(unmatched_ynab),
            balance_info=balances,
            next_steps=tuple(next_steps),
            insights=tuple(insights),
        )

    def detect_insights(
        self,
        matches: Sequence[TransactionMatch],
        unmatched_bank: Sequence[BankTransaction],
        summary: ReconciliationSummary,
        balances: BalanceInfo,
    ) -> List[ReconciliationInsight]:
        """Repeat amounts first, then near matches, then anomalies; unique ids, at most five."""
        unique: "OrderedDict[str, ReconciliationInsight]" = OrderedDict()
        generated = (
            repeat_amount_insights(unmatched_bank)
            + near_match_insights(matches, self.config)
            + anomaly_insights(summary, balances)
        )
        for insight in generated:
            unique.setdefault(insight.id, insight)
        return list(unique.values())[:MAX_INSIGHTS]


def analyze_reconciliation(
    csv_content: Optional[str] = None,
    ledger_transactions: Iterable[RawLedgerRecord] = (),
    statement_balance: int = 0,
    config: Optional[MatchingConfig] = None,
    csv_file_path: Optional[Union[str, Path]] = None,
    csv_format: Optional[CSVFormat] = None,
) -> ReconciliationAnalysis:
    """
    Analysis entry point over raw CSV text or a CSV file.

    Raises:
        ValueError: If neither CSV text nor a path is given, or the CSV is unusable.
        FileNotFoundError: If csv_file_path does not exist.
    """
    parser = BankCSVParser(csv_format)
    if csv_file_path is not None:
        parsed = parser.parse_file(csv_file_path)
    elif csv_content is not None:
        parsed = parser.parse(csv_content)
    else:
        raise ValueError("Either csv_content or csv_file_path must be provided")

    if parsed.errors:
        logger.info("Skipped %d of %d CSV rows", len(parsed.errors), parsed.total_rows)

    return ReconciliationAnalyzer(config).analyze(
        parsed.transactions, ledger_transactions, statement_balance
    )


def convert_ledger_transactions(records: Iterable[RawLedgerRecord]) -> List[LedgerTransaction]:
    converted = []
    for record in records:
        if isinstance(record, Mapping) and record.get("deleted"):
            continue
        converted.append(LedgerTransaction.from_api(record))
    return converted


def categorize_matches(
    matches: Sequence[TransactionMatch],
) -> Tuple[List[TransactionMatch], List[TransactionMatch], List[BankTransaction]]:
    """Split matches into (auto, suggested, unmatched bank)."""
    auto_matches: List[TransactionMatch] = []
    suggested: List[TransactionMatch] = []
    unmatched_bank: List[BankTransaction] = []

    for match in matches:
        if match.confidence == MatchConfidence.HIGH:
            auto_matches.append(match)
        elif match.confidence == MatchConfidence.MEDIUM:
            suggested.append(match)
        else:
            unmatched_bank.append(match.bank_transaction)

    return auto_matches, suggested, unmatched_bank


def find_unmatched_ledger(
    ledger: Sequence[LedgerTransaction], matches: Sequence[TransactionMatch]
) -> List[LedgerTransaction]:
    """Ledger transactions no auto match has claimed."""
    matched_ids = {m.ledger_transaction.id for m in matches if m.ledger_transaction is not None}
    return [txn for txn in ledger if txn.id not in matched_ids]


def calculate_balances(ledger: Sequence[LedgerTransaction], statement_balance: int) -> BalanceInfo:
    cleared = sum_milli(txn.amount for txn in ledger if txn.is_cleared)
    uncleared = sum_milli(txn.amount for txn in ledger if not txn.is_cleared)
    discrepancy = cleared - statement_balance

    return BalanceInfo(
        current_cleared=cleared,
        current_uncleared=uncleared,
        current_total=cleared + uncleared,
        target_statement=statement_balance,
        discrepancy=discrepancy,
        on_track=abs(discrepancy) < CENT_MILLIUNITS,
    )


def build_summary(
    bank_transactions: Sequence[BankTransaction],
    ledger: Sequence[LedgerTransaction],
    auto_matches: Sequence[TransactionMatch],
    suggested: Sequence[TransactionMatch],
    unmatched_bank: Sequence[BankTransaction],
    unmatched_ynab: Sequence[LedgerTransaction],
    balances: BalanceInfo,
) -> ReconciliationSummary:
    dates = sorted(txn.date for txn in bank_transactions)
    date_range = f"{dates[0].isoformat()} to {dates[-1].isoformat()}" if dates else "Unknown"

    if balances.on_track:
        explanation = BALANCED_EXPLANATION
    else:
        needed = []
        if auto_matches:
            needed.append(f"clear {len(auto_matches)} transactions")
        if unmatched_bank:
            needed.append(f"add {len(unmatched_bank)} missing")
        if unmatched_ynab:
            needed.append(f"review {len(unmatched_ynab)} unmatched YNAB")
        explanation = f"Need to {', '.join(needed)}" if needed else "Manual review required"

    return ReconciliationSummary(
        statement_date_range=date_range,
        bank_transactions_count=len(bank_transactions),
        ynab_transactions_count=len(ledger),
        auto_matched=len(auto_matches),
        suggested_matches=len(suggested),
        unmatched_bank=len(unmatched_bank),
        unmatched_ynab=len(unmatched_ynab),
        current_cleared_balance=balances.current_cleared,
        target_statement_balance=balances.target_statement,
        discrepancy=balances.discrepancy,
        discrepancy_explanation=explanation,
    )


def build_next_steps(summary: ReconciliationSummary) -> List[str]:
    steps = []

    if summary.auto_matched:
        steps.append(f"Review {summary.auto_matched} auto-matched transactions for approval")
    if summary.suggested_matches:
        steps.append(f"Review {summary.suggested_matches} suggested matches and choose best match")
    if summary.unmatched_bank:
        steps.append(f"Decide whether to add {summary.unmatched_bank} missing bank transactions to YNAB")
    if summary.unmatched_ynab:
        steps.append(
            f"Decide what to do with {summary.unmatched_ynab} unmatched YNAB transactions "
            "(unclear/delete/ignore)"
        )

    if not steps:
        steps.append("All transactions matched! Review and approve to complete reconciliation")
    return steps


def repeat_amount_insights(unmatched_bank: Sequence[BankTransaction]) -> List[ReconciliationInsight]:
    """One insight for the largest group of unmatched rows sharing an exact amount."""
    groups: "OrderedDict[int, List[BankTransaction]]" = OrderedDict()
    for txn in unmatched_bank:
        groups.setdefault(txn.amount, []).append(txn)

    repeated = [(amount, txns) for amount, txns in groups.items() if len(txns) >= 2]
    if not repeated:
        return []

    # max() keeps the first group on ties, so statement order decides
    amount, txns = max(repeated, key=lambda item: len(item[1]))
    count = len(txns)
    display = format_amount(amount)

    return [
        ReconciliationInsight(
            id=f"repeat-{from_milli(amount):.2f}",
            type=InsightType.REPEAT_AMOUNT,
            severity=InsightSeverity.CRITICAL if count >= 4 else InsightSeverity.WARNING,
            title=f"{count} unmatched transactions at {display}",
            description=(
                f"The bank statement shows {count} unmatched transaction(s) at {display}. "
                "Repeated amounts are usually the quickest wins, so reconcile these first."
            ),
            evidence={
                "amount": amount,
                "occurrences": count,
                "dates": [txn.date.isoformat() for txn in txns],
                "csv_rows": [txn.original_csv_row for txn in txns],
            },
        )
    ]


def near_match_insights(
    matches: Sequence[TransactionMatch], config: MatchingConfig
) -> List[ReconciliationInsight]:
    """Non-auto matches whose top candidate sits just under a threshold."""
    insights = []

    for match in matches:
        top = match.top_candidate
        if match.is_matched or top is None:
            continue

        score = top.confidence_score
        if match.confidence == MatchConfidence.MEDIUM:
            near = score >= config.auto_match_threshold - config.near_match_band
        else:
            near = score >= config.suggestion_threshold - config.near_match_band
        if not near:
            continue

        bank_txn = match.bank_transaction
        ledger_txn = top.ledger_transaction
        insights.append(
            ReconciliationInsight(
                id=f"near-{bank_txn.id}",
                type=InsightType.NEAR_MATCH,
                severity=(
                    InsightSeverity.WARNING
                    if match.confidence == MatchConfidence.MEDIUM
                    else InsightSeverity.INFO
                ),
                title=f"{format_amount(bank_txn.amount)} nearly matches {format_amount(ledger_txn.amount)}",
                description=(
                    f"Bank transaction on {bank_txn.date.isoformat()} ({format_amount(bank_txn.amount)}) "
                    f"nearly matches {ledger_txn.payee_name or 'unknown payee'} on "
                    f"{ledger_txn.date.isoformat()}. Confidence {score}%; review and confirm."
                ),
                evidence={
                    "bank_transaction": {
                        "id": bank_txn.id,
                        "date": bank_txn.date.isoformat(),
                        "amount": bank_txn.amount,
                        "payee": bank_txn.payee,
                    },
                    "candidate": {
                        "id": ledger_txn.id,
                        "date": ledger_txn.date.isoformat(),
                        "amount": ledger_txn.amount,
                        "payee_name": ledger_txn.payee_name,
                        "confidence": score,
                        "reasons": top.match_reason,
                    },
                },
            )
        )

    return insights[:MAX_NEAR_MATCH_INSIGHTS]


def anomaly_insights(summary: ReconciliationSummary, balances: BalanceInfo) -> List[ReconciliationInsight]:
    insights = []
    gap = abs(balances.discrepancy)

    if gap >= MILLIUNITS_PER_UNIT:
        insights.append(
            ReconciliationInsight(
                id="balance-gap",
                type=InsightType.ANOMALY,
                severity=(
                    InsightSeverity.CRITICAL if gap >= 100 * MILLIUNITS_PER_UNIT else InsightSeverity.WARNING
                ),
                title=f"Cleared balance off by {format_amount(balances.discrepancy)}",
                description=(
                    f"YNAB cleared balance is {format_amount(balances.current_cleared)} but the statement "
                    f"expects {format_amount(balances.target_statement)}. Focus on closing this gap."
                ),
                evidence={
                    "cleared_balance": balances.current_cleared,
                    "statement_balance": balances.target_statement,
                    "discrepancy": balances.discrepancy,
                },
            )
        )

    if summary.unmatched_bank >= 5:
        insights.append(
            ReconciliationInsight(
                id="bulk-missing-bank",
                type=InsightType.ANOMALY,
                severity=InsightSeverity.CRITICAL if summary.unmatched_bank >= 10 else InsightSeverity.WARNING,
                title=f"{summary.unmatched_bank} bank transactions still unmatched",
                description=(
                    f"There are {summary.unmatched_bank} bank transactions without a match. "
                    "Consider bulk importing or reviewing by date sequence."
                ),
                evidence={"unmatched_bank": summary.unmatched_bank},
            )
        )

    return insights
