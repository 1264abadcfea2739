"""Account-level reconciliation: fetch, analyze and optionally execute under a lock."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from pathlib import Path
from typing import Iterator, Optional, Set, Tuple, Union

from ynab_reconcile.engine.analyzer import analyze_reconciliation
from ynab_reconcile.engine.executor import ExecutionOptions, ExecutionResult, ReconciliationExecutor
from ynab_reconcile.engine.models import MatchingConfig, ReconciliationAnalysis
from ynab_reconcile.ledger.client import LedgerClient
from ynab_reconcile.parsers.csv_format import CSVFormat

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 90


class ReconciliationInProgressError(RuntimeError):
    """Another reconciliation already holds the account."""


class AccountLockRegistry:
    """Non-blocking mutexes keyed by (budget_id, account_id)."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Set[Tuple[str, str]] = set()

    @contextmanager
    def hold(self, budget_id: str, account_id: str) -> Iterator[None]:
        key = (budget_id, account_id)
        with self._guard:
            if key in self._held:
                raise ReconciliationInProgressError(
                    f"Reconciliation already in progress for account {account_id} in budget {budget_id}"
                )
            self._held.add(key)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(key)

    def is_locked(self, budget_id: str, account_id: str) -> bool:
        with self._guard:
            return (budget_id, account_id) in self._held

    def __len__(self) -> int:
        with self._guard:
            return len(self._held)


DEFAULT_LOCKS = AccountLockRegistry()


@dataclass(frozen=True)
class ReconcileRequest:
    budget_id: str
    account_id: str
    statement_balance: int  # milliunits
    csv_content: Optional[str] = None
    csv_file_path: Optional[Union[str, Path]] = None
    csv_format: Optional[CSVFormat] = None
    statement_start_date: Optional[date] = None
    lookback_days: Optional[int] = DEFAULT_LOOKBACK_DAYS
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    execution: ExecutionOptions = field(default_factory=ExecutionOptions)

    @property
    def wants_execution(self) -> bool:
        options = self.execution
        return (
            options.auto_create_transactions
            or options.auto_update_cleared_status
            or options.auto_unclear_missing
            or options.auto_adjust_dates
            or options.statement_date is not None
        )


@dataclass(frozen=True)
class ReconciliationOutcome:
    analysis: ReconciliationAnalysis
    currency_code: str
    execution: Optional[ExecutionResult] = None


def reconcile_account(
    client: LedgerClient,
    request: ReconcileRequest,
    locks: AccountLockRegistry = DEFAULT_LOCKS,
    today: Optional[date] = None,
) -> ReconciliationOutcome:
    """
    Reconcile one account against a bank statement.

    Raises:
        ReconciliationInProgressError: If the account is already being reconciled.
        ValueError: If the CSV cannot be used.
        LedgerError: If the initial ledger reads fail.
    """
    with locks.hold(request.budget_id, request.account_id):
        logger.info("Reconciling account %s in budget %s", request.account_id, request.budget_id)

        since = request.statement_start_date
        if since is None and request.lookback_days is not None:
            since = (today or date.today()) - timedelta(days=request.lookback_days)
        budget = client.get_budget(request.budget_id)
        account = client.get_account(request.budget_id, request.account_id)
        transactions = client.list_transactions_by_account(request.budget_id, request.account_id, since)

        analysis = analyze_reconciliation(
            csv_content=request.csv_content,
            ledger_transactions=transactions,
            statement_balance=request.statement_balance,
            config=request.matching,
            csv_file_path=request.csv_file_path,
            csv_format=request.csv_format,
        )

        execution = None
        if request.wants_execution:
            options = replace(
                request.execution,
                statement_balance=(
                    request.statement_balance
                    if request.execution.statement_balance is None
                    else request.execution.statement_balance
                ),
                currency_code=budget.currency_code,
            )
            executor = ReconciliationExecutor(client, request.budget_id, request.account_id)
            execution = executor.execute(analysis, options, initial_account=account)

        logger.info(
            "Finished account %s: %d auto, %d suggested, discrepancy %d milliunits",
            request.account_id,
            analysis.summary.auto_matched,
            analysis.summary.suggested_matches,
            analysis.balance_info.discrepancy,
        )
        return ReconciliationOutcome(analysis=analysis, currency_code=budget.currency_code, execution=execution)
