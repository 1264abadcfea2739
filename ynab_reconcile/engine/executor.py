"""Apply (or simulate) the corrective writes an analysis calls for."""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ynab_reconcile.engine.models import (
    ClearedStatus,
    ReconciliationAnalysis,
    TransactionMatch,
)
from ynab_reconcile.engine.money import (
    CENT_MILLIUNITS,
    assert_milli,
    sum_milli,
    to_money_value,
)
from ynab_reconcile.ledger.client import AccountSnapshot, LedgerClient, LedgerError

logger = logging.getLogger(__name__)

# Balance moves smaller than this are not worth reporting
BALANCE_CHANGE_EPSILON = 10 * CENT_MILLIUNITS

CREATE_TRANSACTION = "create_transaction"
UPDATE_TRANSACTION = "update_transaction"
DEFAULT_CREATE_MEMO = "Auto-reconciled from bank statement"


@dataclass(frozen=True)
class ExecutionOptions:
    """Which corrective steps to run. Nothing is written unless dry_run is off."""
    auto_create_transactions: bool = False
    auto_update_cleared_status: bool = False
    auto_unclear_missing: bool = True
    auto_adjust_dates: bool = False
    dry_run: bool = True
    statement_balance: Optional[int] = None  # milliunits
    statement_date: Optional[date] = None
    currency_code: str = "USD"


@dataclass
class ExecutionSummary:
    bank_transactions_count: int = 0
    ynab_transactions_count: int = 0
    matches_found: int = 0
    missing_in_ynab: int = 0
    missing_in_bank: int = 0
    transactions_created: int = 0
    transactions_updated: int = 0
    dates_adjusted: int = 0
    failed_actions: int = 0
    dry_run: bool = True


@dataclass(frozen=True)
class ExecutionAction:
    """One entry of the audit log."""
    type: str
    transaction: Optional[Dict[str, Any]]
    reason: str


@dataclass(frozen=True)
class LikelyCause:
    cause_type: str
    description: str
    confidence: float
    amount_milliunits: int
    suggested_resolution: str
    evidence: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DiscrepancyAnalysis:
    confidence_level: float
    likely_causes: Tuple[LikelyCause, ...]
    risk_assessment: str


class ReconciliationStatus(Enum):
    PERFECTLY_RECONCILED = "PERFECTLY_RECONCILED"
    DISCREPANCY_FOUND = "DISCREPANCY_FOUND"


@dataclass(frozen=True)
class BalanceReconciliation:
    """Statement balance against the ledger's cleared balance as of the statement date."""
    status: ReconciliationStatus
    statement_date: date
    bank_statement_balance: int
    ledger_cleared_balance: int
    discrepancy: int  # statement minus ledger
    discrepancy_analysis: Optional[DiscrepancyAnalysis] = None

    @property
    def balance_matches_exactly(self) -> bool:
        return self.discrepancy == 0


@dataclass
class ExecutionResult:
    summary: ExecutionSummary
    balance_before: AccountSnapshot
    balance_after: AccountSnapshot
    actions_taken: List[ExecutionAction] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    balance_reconciliation: Optional[BalanceReconciliation] = None

    @property
    def account_balance(self) -> Dict[str, AccountSnapshot]:
        return {"before": self.balance_before, "after": self.balance_after}


class ReconciliationExecutor:
    """
    Runs the fixed step sequence over one analysis:

    1. Create ledger entries for bank-only rows.
    2. Clear and/or re-date auto-matched ledger entries.
    3. Unclear cleared ledger entries the statement doesn't show.
    4. Compare the cleared balance as of the statement date.
    5. Refresh the account snapshot if anything was written.

    A failed write is recorded as a recommendation and the run continues.
    """

    def __init__(self, client: LedgerClient, budget_id: str, account_id: str):
        self.client = client
        self.budget_id = budget_id
        self.account_id = account_id

    def execute(
        self,
        analysis: ReconciliationAnalysis,
        options: Optional[ExecutionOptions] = None,
        initial_account: Optional[AccountSnapshot] = None,
    ) -> ExecutionResult:
        options = options or ExecutionOptions()
        if initial_account is None:
            initial_account = self.client.get_account(self.budget_id, self.account_id)

        summary = ExecutionSummary(
            bank_transactions_count=analysis.summary.bank_transactions_count,
            ynab_transactions_count=analysis.summary.ynab_transactions_count,
            matches_found=len(analysis.auto_matches),
            missing_in_ynab=analysis.summary.unmatched_bank,
            missing_in_bank=analysis.summary.unmatched_ynab,
            dry_run=options.dry_run,
        )
        run = _Run(summary=summary)

        if options.auto_create_transactions:
            self._create_missing(analysis, options, run)
        self._update_matched(analysis, options, run)
        if options.auto_unclear_missing:
            self._unclear_missing(analysis, options, run)

        balance_reconciliation = None
        if options.statement_balance is not None and options.statement_date is not None:
            balance_reconciliation = self._reconcile_balance(analysis, options, run)

        after_account = initial_account
        if run.dirty and not options.dry_run:
            try:
                after_account = self.client.get_account(self.budget_id, self.account_id)
                logger.info("Refreshed account %s snapshot after writes", self.account_id)
            except LedgerError as e:
                logger.warning("Could not refresh account %s: %s", self.account_id, e)
                run.fail(f"Could not refresh account balance: {e}")

        balance_change = 0
        if run.dirty and not options.dry_run:
            balance_change = after_account.balance - initial_account.balance

        recommendations = run.failures + build_recommendations(
            summary, options, analysis, balance_change
        )

        return ExecutionResult(
            summary=summary,
            balance_before=initial_account,
            balance_after=after_account,
            actions_taken=run.actions,
            recommendations=recommendations,
            balance_reconciliation=balance_reconciliation,
        )

    def _create_missing(self, analysis: ReconciliationAnalysis, options: ExecutionOptions, run: "_Run") -> None:
        for bank_txn in analysis.unmatched_bank:
            label = f"{bank_txn.payee or 'Unknown'} ({_display(bank_txn.amount, options)})"

            if options.dry_run:
                run.summary.transactions_created += 1
                run.actions.append(ExecutionAction(
                    type=CREATE_TRANSACTION,
                    transaction={
                        "date": bank_txn.date.isoformat(),
                        "amount": bank_txn.amount,
                        "payee_name": bank_txn.payee or None,
                    },
                    reason=f"Would create missing transaction: {label}",
                ))
                continue

            payload = {
                "account_id": self.account_id,
                "amount": bank_txn.amount,
                "date": bank_txn.date.isoformat(),
                "payee_name": bank_txn.payee or None,
                "memo": bank_txn.memo or DEFAULT_CREATE_MEMO,
                "cleared": ClearedStatus.CLEARED.value,
                "approved": True,
            }
            try:
                created = self.client.create_transaction(self.budget_id, payload)
            except LedgerError as e:
                logger.warning("Failed to create transaction for row %s: %s", bank_txn.original_csv_row, e)
                run.fail(f"Failed to create transaction {label}: {e}")
                continue

            logger.info("Created transaction %s for %s", created.id, label)
            run.summary.transactions_created += 1
            run.actions.append(ExecutionAction(
                type=CREATE_TRANSACTION,
                transaction=created.to_api(),
                reason=f"Created missing transaction: {label}",
            ))
            run.dirty = True

    def _update_matched(self, analysis: ReconciliationAnalysis, options: ExecutionOptions, run: "_Run") -> None:
        for match in analysis.auto_matches:
            ledger_txn = match.ledger_transaction
            if ledger_txn is None:
                continue
            needs_cleared, needs_date = update_flags(match, options)
            if not needs_cleared and not needs_date:
                continue

            reason = _update_reason(match, needs_cleared, needs_date)

            if options.dry_run:
                run.summary.transactions_updated += 1
                if needs_date:
                    run.summary.dates_adjusted += 1
                run.actions.append(ExecutionAction(
                    type=UPDATE_TRANSACTION,
                    transaction={
                        "transaction_id": ledger_txn.id,
                        "new_date": match.bank_transaction.date.isoformat() if needs_date else None,
                        "cleared": ClearedStatus.CLEARED.value if needs_cleared else None,
                    },
                    reason=f"Would update transaction: {reason}",
                ))
                continue

            new_date = match.bank_transaction.date if needs_date else ledger_txn.date
            new_cleared = ClearedStatus.CLEARED if needs_cleared else ledger_txn.cleared
            payload = {
                "account_id": self.account_id,
                "amount": ledger_txn.amount,
                "date": new_date.isoformat(),
                "cleared": new_cleared.value,
                "payee_name": ledger_txn.payee_name,
                "memo": ledger_txn.memo,
                "approved": ledger_txn.approved,
            }
            try:
                updated = self.client.update_transaction(self.budget_id, ledger_txn.id, payload)
            except LedgerError as e:
                logger.warning("Failed to update transaction %s: %s", ledger_txn.id, e)
                run.fail(f"Failed to update transaction {ledger_txn.id}: {e}")
                continue

            logger.info("Updated transaction %s: %s", ledger_txn.id, reason)
            run.summary.transactions_updated += 1
            if needs_date:
                run.summary.dates_adjusted += 1
            run.actions.append(ExecutionAction(
                type=UPDATE_TRANSACTION,
                transaction=updated.to_api(),
                reason=f"Updated transaction: {reason}",
            ))
            run.dirty = True

    def _unclear_missing(self, analysis: ReconciliationAnalysis, options: ExecutionOptions, run: "_Run") -> None:
        for ledger_txn in analysis.unmatched_ynab:
            if ledger_txn.cleared != ClearedStatus.CLEARED:
                continue

            if options.dry_run:
                run.summary.transactions_updated += 1
                run.actions.append(ExecutionAction(
                    type=UPDATE_TRANSACTION,
                    transaction={"transaction_id": ledger_txn.id, "cleared": ClearedStatus.UNCLEARED.value},
                    reason=f"Would mark transaction {ledger_txn.id} as uncleared - not present on statement",
                ))
                continue

            try:
                updated = self.client.update_transaction(
                    self.budget_id, ledger_txn.id, {"cleared": ClearedStatus.UNCLEARED.value}
                )
            except LedgerError as e:
                logger.warning("Failed to unclear transaction %s: %s", ledger_txn.id, e)
                run.fail(f"Failed to mark transaction {ledger_txn.id} as uncleared: {e}")
                continue

            logger.info("Marked transaction %s as uncleared", ledger_txn.id)
            run.summary.transactions_updated += 1
            run.actions.append(ExecutionAction(
                type=UPDATE_TRANSACTION,
                transaction=updated.to_api(),
                reason=f"Marked transaction {ledger_txn.id} as uncleared - not found on statement",
            ))
            run.dirty = True

    def _reconcile_balance(
        self, analysis: ReconciliationAnalysis, options: ExecutionOptions, run: "_Run"
    ) -> Optional[BalanceReconciliation]:
        statement_balance = assert_milli(options.statement_balance, "Statement balance must be integer milliunits")
        try:
            transactions = self.client.list_transactions_by_account(self.budget_id, self.account_id)
        except LedgerError as e:
            logger.warning("Balance verification skipped: %s", e)
            run.fail(f"Could not verify statement balance: {e}")
            return None

        cleared = sum_milli(
            txn.amount for txn in transactions
            if txn.is_cleared and txn.date <= options.statement_date
        )
        discrepancy = statement_balance - cleared

        if discrepancy == 0:
            return BalanceReconciliation(
                status=ReconciliationStatus.PERFECTLY_RECONCILED,
                statement_date=options.statement_date,
                bank_statement_balance=statement_balance,
                ledger_cleared_balance=cleared,
                discrepancy=0,
            )

        return BalanceReconciliation(
            status=ReconciliationStatus.DISCREPANCY_FOUND,
            statement_date=options.statement_date,
            bank_statement_balance=statement_balance,
            ledger_cleared_balance=cleared,
            discrepancy=discrepancy,
            discrepancy_analysis=likely_causes(discrepancy, analysis, options.currency_code),
        )


@dataclass
class _Run:
    """Mutable state of one execute() call."""
    summary: ExecutionSummary
    actions: List[ExecutionAction] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    dirty: bool = False

    def fail(self, message: str) -> None:
        self.summary.failed_actions += 1
        self.failures.append(message)


def update_flags(match: TransactionMatch, options: ExecutionOptions) -> Tuple[bool, bool]:
    """Return (needs_cleared_update, needs_date_update) for an auto match."""
    ledger_txn = match.ledger_transaction
    if ledger_txn is None:
        return False, False
    needs_cleared = options.auto_update_cleared_status and not ledger_txn.is_cleared
    needs_date = options.auto_adjust_dates and ledger_txn.date != match.bank_transaction.date
    return needs_cleared, needs_date


def _update_reason(match: TransactionMatch, needs_cleared: bool, needs_date: bool) -> str:
    parts = []
    if needs_cleared:
        parts.append("marked as cleared")
    if needs_date:
        parts.append(f"date adjusted to {match.bank_transaction.date.isoformat()}")
    return ", ".join(parts)


def _display(milli: int, options: ExecutionOptions) -> str:
    return to_money_value(milli, options.currency_code).value_display


def likely_causes(
    discrepancy: int, analysis: ReconciliationAnalysis, currency_code: str = "USD"
) -> Optional[DiscrepancyAnalysis]:
    """
    Heuristic explanations for a statement-minus-ledger discrepancy.

    - round amount (multiple of 0.50): bank fee or interest
    - equal to a bank-only row: that row is missing from the ledger
    - equal to minus a cleared ledger-only entry: it was cleared but never posted
    """
    causes: List[LikelyCause] = []
    display = to_money_value(discrepancy, currency_code).value_display

    for bank_txn in analysis.unmatched_bank:
        if bank_txn.amount == discrepancy:
            causes.append(LikelyCause(
                cause_type="missing_transaction",
                description=(
                    f"Statement row {bank_txn.original_csv_row} ({bank_txn.payee}, {display}) "
                    "is not in the ledger."
                ),
                confidence=0.9,
                amount_milliunits=discrepancy,
                suggested_resolution="Create the missing transaction and mark it cleared",
                evidence=(bank_txn.id,),
            ))
            break

    for ledger_txn in analysis.unmatched_ynab:
        if ledger_txn.is_cleared and ledger_txn.amount == -discrepancy:
            causes.append(LikelyCause(
                cause_type="unexpected_cleared",
                description=(
                    f"Ledger transaction {ledger_txn.id} ({ledger_txn.payee_name or 'unknown payee'}) "
                    "is cleared but does not appear on the statement."
                ),
                confidence=0.85,
                amount_milliunits=discrepancy,
                suggested_resolution="Mark the transaction uncleared or confirm it with the bank",
                evidence=(ledger_txn.id,),
            ))
            break

    if abs(discrepancy) % 500 == 0:
        causes.append(LikelyCause(
            cause_type="bank_fee",
            description="Round amount suggests a bank fee or interest adjustment.",
            confidence=0.8,
            amount_milliunits=discrepancy,
            suggested_resolution=(
                "Create bank fee transaction and mark cleared" if discrepancy < 0 else "Record interest income"
            ),
        ))

    if not causes:
        return None

    causes.sort(key=lambda cause: cause.confidence, reverse=True)
    best = causes[0].confidence
    return DiscrepancyAnalysis(
        confidence_level=best,
        likely_causes=tuple(causes),
        risk_assessment="LOW" if best >= 0.8 else "MEDIUM",
    )


def build_recommendations(
    summary: ExecutionSummary,
    options: ExecutionOptions,
    analysis: ReconciliationAnalysis,
    balance_change: int,
) -> List[str]:
    recommendations = []

    if summary.dates_adjusted:
        recommendations.append(
            f"Adjusted {summary.dates_adjusted} transaction date(s) to match bank statement dates"
        )
    if analysis.summary.unmatched_bank and not options.auto_create_transactions:
        recommendations.append(
            f"Consider enabling auto_create_transactions to automatically create "
            f"{analysis.summary.unmatched_bank} missing transaction(s)"
        )
    if analysis.auto_matches and not options.auto_adjust_dates:
        recommendations.append("Consider enabling auto_adjust_dates to align YNAB dates with bank statement dates")
    if analysis.summary.unmatched_ynab:
        recommendations.append(
            f"{analysis.summary.unmatched_ynab} transaction(s) exist in YNAB but not on the bank statement; "
            "review for duplicates or pending items"
        )
    if options.dry_run:
        recommendations.append("Dry run only; re-run with dry_run disabled to apply these changes")
    if abs(balance_change) > BALANCE_CHANGE_EPSILON:
        recommendations.append(
            f"Account balance changed by {to_money_value(balance_change, options.currency_code).value_display} "
            "during reconciliation"
        )

    return recommendations
