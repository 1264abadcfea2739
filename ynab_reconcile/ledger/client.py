"""Ledger collaborator contract and an in-memory/JSON-file implementation."""

import itertools
import json
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ynab_reconcile.engine.models import ClearedStatus, LedgerTransaction, _coerce_date

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """A ledger read or write failed."""


@dataclass(frozen=True)
class AccountSnapshot:
    """Account balances in milliunits."""
    balance: int
    cleared_balance: int
    uncleared_balance: int


@dataclass(frozen=True)
class BudgetInfo:
    id: str
    currency_code: str = "USD"


class LedgerClient(ABC):
    """What the reconciliation core needs from the ledger API."""

    @abstractmethod
    def list_transactions_by_account(
        self, budget_id: str, account_id: str, since_date: Optional[date] = None
    ) -> List[LedgerTransaction]:
        ...

    @abstractmethod
    def get_account(self, budget_id: str, account_id: str) -> AccountSnapshot:
        ...

    @abstractmethod
    def get_budget(self, budget_id: str) -> BudgetInfo:
        ...

    @abstractmethod
    def create_transaction(self, budget_id: str, transaction: Mapping[str, Any]) -> LedgerTransaction:
        """Create from ``{account_id, amount, date, payee_name?, memo?, cleared, approved}``."""

    @abstractmethod
    def update_transaction(
        self, budget_id: str, transaction_id: str, fields: Mapping[str, Any]
    ) -> LedgerTransaction:
        """Apply a partial update and return the stored transaction."""


LedgerRecord = Union[LedgerTransaction, Mapping[str, Any]]


class InMemoryLedger(LedgerClient):
    """
    A single-budget ledger held in memory.

    Every create/update call is appended to ``writes`` as
    ``(operation, payload)`` so callers can verify what was sent.
    """

    def __init__(
        self,
        accounts: Optional[Mapping[str, Iterable[LedgerRecord]]] = None,
        budget_id: str = "default",
        currency_code: str = "USD",
    ):
        self.budget_id = budget_id
        self.currency_code = currency_code
        self.writes: List[Tuple[str, Dict[str, Any]]] = []
        self._accounts: Dict[str, "OrderedDict[str, LedgerTransaction]"] = {}
        self._ids = itertools.count(1)

        for account_id, records in (accounts or {}).items():
            store: "OrderedDict[str, LedgerTransaction]" = OrderedDict()
            for record in records:
                if isinstance(record, Mapping) and record.get("deleted"):
                    continue
                txn = LedgerTransaction.from_api(record)
                store[txn.id] = txn
            self._accounts[account_id] = store

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "InMemoryLedger":
        """
        Load a ledger file of the form::

            {"budget_id": "...", "currency_code": "USD",
             "accounts": {"<account_id>": [<transaction>, ...]}}

        Raises:
            FileNotFoundError: If the file doesn't exist.
            LedgerError: If the file is not a valid ledger document.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Ledger file not found: {path}")

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            return cls(
                accounts=document.get("accounts", {}),
                budget_id=document.get("budget_id", "default"),
                currency_code=document.get("currency_code", "USD"),
            )
        except (json.JSONDecodeError, AttributeError, KeyError, ValueError) as e:
            raise LedgerError(f"Invalid ledger file {path}: {e}") from e

    def save(self, path: Union[str, Path]) -> None:
        document = {
            "budget_id": self.budget_id,
            "currency_code": self.currency_code,
            "accounts": {
                account_id: [txn.to_api() for txn in store.values()]
                for account_id, store in self._accounts.items()
            },
        }
        Path(path).write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.info("Ledger saved to %s", path)

    @property
    def account_ids(self) -> List[str]:
        return list(self._accounts)

    def list_transactions_by_account(
        self, budget_id: str, account_id: str, since_date: Optional[date] = None
    ) -> List[LedgerTransaction]:
        store = self._account(budget_id, account_id)
        return [txn for txn in store.values() if since_date is None or txn.date >= since_date]

    def get_account(self, budget_id: str, account_id: str) -> AccountSnapshot:
        store = self._account(budget_id, account_id)
        cleared = sum(txn.amount for txn in store.values() if txn.is_cleared)
        uncleared = sum(txn.amount for txn in store.values() if not txn.is_cleared)
        return AccountSnapshot(
            balance=cleared + uncleared,
            cleared_balance=cleared,
            uncleared_balance=uncleared,
        )

    def get_budget(self, budget_id: str) -> BudgetInfo:
        self._check_budget(budget_id)
        return BudgetInfo(id=self.budget_id, currency_code=self.currency_code)

    def create_transaction(self, budget_id: str, transaction: Mapping[str, Any]) -> LedgerTransaction:
        self.writes.append(("create", dict(transaction)))
        account_id = transaction.get("account_id")
        store = self._account(budget_id, account_id)

        try:
            txn = LedgerTransaction.from_api({"id": f"txn-{next(self._ids)}", **transaction})
        except (KeyError, ValueError) as e:
            raise LedgerError(f"Invalid transaction: {e}") from e

        store[txn.id] = txn
        return txn

    def update_transaction(
        self, budget_id: str, transaction_id: str, fields: Mapping[str, Any]
    ) -> LedgerTransaction:
        self.writes.append(("update", {"id": transaction_id, **fields}))
        self._check_budget(budget_id)

        for store in self._accounts.values():
            if transaction_id in store:
                try:
                    updated = replace(store[transaction_id], **_update_fields(fields))
                except (TypeError, ValueError) as e:
                    raise LedgerError(f"Invalid update for {transaction_id}: {e}") from e
                store[transaction_id] = updated
                return updated

        raise LedgerError(f"Transaction not found: {transaction_id}")

    def _check_budget(self, budget_id: str) -> None:
        if budget_id != self.budget_id:
            raise LedgerError(f"Budget not found: {budget_id}")

    def _account(self, budget_id: str, account_id: Optional[str]) -> "OrderedDict[str, LedgerTransaction]":
        self._check_budget(budget_id)
        if account_id not in self._accounts:
            raise LedgerError(f"Account not found: {account_id}")
        return self._accounts[account_id]


def _update_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate API-shaped update fields to LedgerTransaction attributes."""
    changes: Dict[str, Any] = {}
    for key, value in fields.items():
        if key == "account_id":
            continue
        if key == "date":
            value = _coerce_date(value)
        elif key == "cleared":
            value = ClearedStatus(value)
        elif key == "amount" and (isinstance(value, bool) or not isinstance(value, int)):
            raise ValueError(f"amount must be integer milliunits: {value!r}")
        changes[key] = value
    return changes
