"""Confidence-scored matching of bank transactions against ledger transactions."""

import logging
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from ynab_reconcile.engine.models import (
    ADD_TO_YNAB,
    REVIEW_AND_CHOOSE,
    REVIEW_OR_ADD_NEW,
    BankTransaction,
    ClearedStatus,
    LedgerTransaction,
    MatchCandidate,
    MatchConfidence,
    MatchingConfig,
    TransactionMatch,
)
from ynab_reconcile.engine.payee import normalized_match, payee_contains, payee_similarity

logger = logging.getLogger(__name__)

AMOUNT_WEIGHT = 40
DATE_WEIGHT = 40
PAYEE_WEIGHT = 20

# Uncleared ledger entries are the natural target of a bank row
CLEARED_PRIORITY = {
    ClearedStatus.UNCLEARED: 0,
    ClearedStatus.CLEARED: 1,
    ClearedStatus.RECONCILED: 2,
}


def _sign(amount: int) -> int:
    return (amount > 0) - (amount < 0)


class TransactionMatcher:
    """
    Pair bank rows with ledger transactions.

    Scoring (0-100):
    1. Amount (0-40): exact gets full weight, within tolerance scales down to half.
    2. Date (0-40): same day gets full weight, minus 10 per day, floor 20.
    3. Payee (0-20): normalized equality, similarity bands, or containment.

    Candidates outside the date or amount tolerance, or with the opposite
    sign, are never considered.
    """

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig()

    def find_matches(
        self,
        bank_transactions: Sequence[BankTransaction],
        ledger_transactions: Sequence[LedgerTransaction],
        used_ids: Optional[Iterable[str]] = None,
    ) -> Tuple[List[TransactionMatch], Set[str]]:
        """
        Match every bank transaction in input order.

        Only HIGH matches claim their ledger transaction, so an earlier bank
        row keeps priority over later ones.

        Returns:
            Tuple of (one match per bank transaction, ids claimed so far).
        """
        claimed: Set[str] = set(used_ids or ())
        matches: List[TransactionMatch] = []

        for bank_txn in bank_transactions:
            match = self.find_best_match(bank_txn, ledger_transactions, claimed)
            matches.append(match)
            if match.ledger_transaction is not None:
                claimed = claimed | {match.ledger_transaction.id}

        logger.debug("Matched %d bank transactions; %d ledger ids claimed", len(matches), len(claimed))
        return matches, claimed

    def find_best_match(
        self,
        bank_txn: BankTransaction,
        ledger_transactions: Sequence[LedgerTransaction],
        used_ids: Set[str],
    ) -> TransactionMatch:
        """Classify the best pairing for one bank transaction. Does not modify used_ids."""
        candidates = self._find_candidates(bank_txn, ledger_transactions, used_ids)

        if not candidates:
            return TransactionMatch(
                bank_transaction=bank_txn,
                confidence=MatchConfidence.NONE,
                confidence_score=0,
                match_reason="No matching transaction found in YNAB",
                action_hint=ADD_TO_YNAB,
            )

        best = candidates[0]
        top = tuple(candidates[: self.config.max_candidates])

        if best.confidence_score >= self.config.auto_match_threshold:
            return TransactionMatch(
                bank_transaction=bank_txn,
                confidence=MatchConfidence.HIGH,
                confidence_score=best.confidence_score,
                match_reason=best.match_reason,
                ledger_transaction=best.ledger_transaction,
            )

        if best.confidence_score >= self.config.suggestion_threshold:
            return TransactionMatch(
                bank_transaction=bank_txn,
                confidence=MatchConfidence.MEDIUM,
                confidence_score=best.confidence_score,
                match_reason=best.match_reason,
                candidates=top,
                action_hint=REVIEW_AND_CHOOSE,
            )

        return TransactionMatch(
            bank_transaction=bank_txn,
            confidence=MatchConfidence.LOW,
            confidence_score=best.confidence_score,
            match_reason="Low confidence match",
            candidates=top,
            action_hint=REVIEW_OR_ADD_NEW,
        )

    def _find_candidates(
        self,
        bank_txn: BankTransaction,
        ledger_transactions: Sequence[LedgerTransaction],
        used_ids: Set[str],
    ) -> List[MatchCandidate]:
        scored = []

        for position, ledger_txn in enumerate(ledger_transactions):
            if ledger_txn.id in used_ids:
                continue

            # Refunds never pair with purchases
            if _sign(bank_txn.amount) != _sign(ledger_txn.amount):
                continue

            result = self._score(bank_txn, ledger_txn)
            if result is None:
                continue

            score, reasons = result
            candidate = MatchCandidate(
                ledger_transaction=ledger_txn,
                confidence_score=score,
                match_reason=", ".join(reasons),
                explanation=self._explain(ledger_txn, score, reasons),
            )
            days = abs((bank_txn.date - ledger_txn.date).days)
            sort_key = (-score, CLEARED_PRIORITY[ledger_txn.cleared], days, position)
            scored.append((sort_key, candidate))

        scored.sort(key=lambda item: item[0])
        return [candidate for _, candidate in scored]

    def _score(
        self, bank_txn: BankTransaction, ledger_txn: LedgerTransaction
    ) -> Optional[Tuple[int, List[str]]]:
        """Return (score, reasons), or None when outside tolerance."""
        reasons: List[str] = []

        amount_diff = abs(bank_txn.amount - ledger_txn.amount)
        tolerance = self.config.amount_tolerance_milliunits
        if amount_diff > tolerance:
            return None
        if amount_diff == 0:
            amount_score = AMOUNT_WEIGHT
            reasons.append("Amount matches")
        else:
            half = AMOUNT_WEIGHT // 2
            amount_score = max(half, round(AMOUNT_WEIGHT - half * amount_diff / tolerance))
            reasons.append("Amount within tolerance")

        days = abs((bank_txn.date - ledger_txn.date).days)
        if days > self.config.date_tolerance_days:
            return None
        date_score = max(DATE_WEIGHT // 2, DATE_WEIGHT - 10 * days)
        reasons.append("Exact date match" if days == 0 else f"Date within {days} days")

        payee_score = self._payee_score(bank_txn, ledger_txn, reasons)

        return amount_score + date_score + payee_score, reasons

    def _payee_score(
        self, bank_txn: BankTransaction, ledger_txn: LedgerTransaction, reasons: List[str]
    ) -> int:
        if normalized_match(bank_txn.payee, ledger_txn.payee_name):
            reasons.append("Payee exact match")
            return PAYEE_WEIGHT

        similarity = payee_similarity(bank_txn.payee, ledger_txn.payee_name)
        if similarity >= 95:
            reasons.append(f"Payee highly similar ({round(similarity)}%)")
            return 15
        if similarity >= 80:
            reasons.append(f"Payee similar ({round(similarity)}%)")
            return 10
        if similarity >= 60:
            reasons.append(f"Payee somewhat similar ({round(similarity)}%)")
            return 6

        if payee_contains(bank_txn.payee, ledger_txn.payee_name) or payee_contains(
            ledger_txn.payee_name, bank_txn.payee
        ):
            reasons.append("Payee partially contained")
            return 6
        if payee_contains(ledger_txn.memo, bank_txn.payee) or payee_contains(
            bank_txn.payee, ledger_txn.memo
        ):
            reasons.append("Description found in memo")
            return 3
        return 0

    @staticmethod
    def _explain(ledger_txn: LedgerTransaction, score: int, reasons: List[str]) -> str:
        parts = [f"Match confidence: {score}%", ", ".join(reasons)]
        if ledger_txn.cleared == ClearedStatus.UNCLEARED:
            parts.append("(Uncleared - awaiting confirmation)")
        return " | ".join(parts)
