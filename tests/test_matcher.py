"""Tests for the transaction matcher."""

from datetime import date

import pytest

from ynab_reconcile.engine.matcher import TransactionMatcher
from ynab_reconcile.engine.models import (
    ADD_TO_YNAB,
    REVIEW_AND_CHOOSE,
    REVIEW_OR_ADD_NEW,
    BankTransaction,
    ClearedStatus,
    LedgerTransaction,
    MatchConfidence,
    MatchingConfig,
)


def make_bank(id: str, day: str, amount: int, payee: str = "Test", row: int = 2) -> BankTransaction:
    """Helper to create bank transactions (amount in milliunits)."""
    return BankTransaction(
        id=id,
        date=date.fromisoformat(day),
        amount=amount,
        payee=payee,
        original_csv_row=row,
    )


def make_ledger(
    id: str,
    day: str,
    amount: int,
    payee: str = "Test",
    cleared: ClearedStatus = ClearedStatus.UNCLEARED,
    memo: str = None,
) -> LedgerTransaction:
    """Helper to create ledger transactions."""
    return LedgerTransaction(
        id=id,
        date=date.fromisoformat(day),
        amount=amount,
        payee_name=payee,
        cleared=cleared,
        memo=memo,
    )


class TestConfidenceTiers:
    """Test classification of the best candidate."""

    def test_exact_match_is_high(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -45230, "Shell Gas Station")
        ledger = [make_ledger("Y1", "2025-10-15", -45230, "Shell Gas Station")]

        match = matcher.find_best_match(bank, ledger, set())

        assert match.confidence == MatchConfidence.HIGH
        assert match.confidence_score == 100
        assert match.ledger_transaction.id == "Y1"
        assert match.candidates == ()
        assert match.is_matched

    def test_fuzzy_payee_is_medium(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -127430, "AMAZON.COM")
        ledger = [make_ledger("Y1", "2025-10-15", -127430, "Amazon Prime")]

        match = matcher.find_best_match(bank, ledger, set())

        assert match.confidence == MatchConfidence.MEDIUM
        assert 60 <= match.confidence_score < 90
        assert match.confidence_score == 86
        assert len(match.candidates) >= 1
        assert match.ledger_transaction is None
        assert match.action_hint == REVIEW_AND_CHOOSE

    def test_weak_candidate_is_low(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -10000, "Parking")
        ledger = [make_ledger("Y1", "2025-10-17", -10010, "Groceries")]

        match = matcher.find_best_match(bank, ledger, set())

        assert match.confidence == MatchConfidence.LOW
        assert match.confidence_score == 40
        assert match.match_reason == "Low confidence match"
        assert match.action_hint == REVIEW_OR_ADD_NEW
        assert match.top_candidate.ledger_transaction.id == "Y1"
        assert match.ledger_transaction is None

    def test_no_candidates_is_none(self):
        matcher = TransactionMatcher()
        match = matcher.find_best_match(make_bank("B1", "2025-10-15", -5000), [], set())

        assert match.confidence == MatchConfidence.NONE
        assert match.confidence_score == 0
        assert match.action_hint == ADD_TO_YNAB
        assert match.match_reason == "No matching transaction found in YNAB"

    def test_custom_thresholds(self):
        matcher = TransactionMatcher(MatchingConfig(auto_match_threshold=85, suggestion_threshold=50))
        bank = make_bank("B1", "2025-10-15", -127430, "AMAZON.COM")
        ledger = [make_ledger("Y1", "2025-10-15", -127430, "Amazon Prime")]

        assert matcher.find_best_match(bank, ledger, set()).confidence == MatchConfidence.HIGH


class TestScoring:
    """Test the individual score components."""

    @pytest.mark.parametrize("ledger_day,expected", [
        ("2025-10-15", 100),
        ("2025-10-14", 90),
        ("2025-10-17", 80),
    ])
    def test_date_component(self, ledger_day, expected):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        match = matcher.find_best_match(bank, [make_ledger("Y1", ledger_day, -5000, "Shell")], set())
        assert match.confidence_score == expected

    def test_date_beyond_tolerance_is_excluded(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        match = matcher.find_best_match(bank, [make_ledger("Y1", "2025-10-18", -5000, "Shell")], set())
        assert match.confidence == MatchConfidence.NONE

    def test_amount_within_tolerance_scores_lower(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        match = matcher.find_best_match(bank, [make_ledger("Y1", "2025-10-15", -5010, "Shell")], set())

        assert match.confidence_score == 80
        assert "Amount within tolerance" in match.match_reason

    def test_amount_beyond_tolerance_is_excluded(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        match = matcher.find_best_match(bank, [make_ledger("Y1", "2025-10-15", -5020, "Shell")], set())
        assert match.confidence == MatchConfidence.NONE

    def test_opposite_sign_never_matches(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -45230, "Shell Gas Station")
        ledger = [make_ledger("Y1", "2025-10-15", 45230, "Shell Gas Station")]

        assert matcher.find_best_match(bank, ledger, set()).confidence == MatchConfidence.NONE

    def test_zero_amount_only_pairs_with_zero(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", 0, "Card Verification")
        within_tolerance = [make_ledger("Y1", "2025-10-15", -10, "Card Verification")]
        exact = [make_ledger("Y2", "2025-10-15", 0, "Card Verification")]

        assert matcher.find_best_match(bank, within_tolerance, set()).confidence == MatchConfidence.NONE
        assert matcher.find_best_match(bank, exact, set()).confidence == MatchConfidence.HIGH

    def test_memo_containment_gives_partial_credit(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -15990, "Netflix")
        ledger = [make_ledger("Y1", "2025-10-15", -15990, "Subscriptions", memo="netflix monthly")]

        match = matcher.find_best_match(bank, ledger, set())
        assert match.confidence_score == 83
        assert "Description found in memo" in match.match_reason

    def test_explanation(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -127430, "AMAZON.COM")
        ledger = [make_ledger("Y1", "2025-10-15", -127430, "Amazon Prime")]

        explanation = matcher.find_best_match(bank, ledger, set()).top_candidate.explanation
        assert explanation.startswith("Match confidence: 86% | Amount matches, Exact date match")
        assert explanation.endswith("(Uncleared - awaiting confirmation)")


class TestTieBreaking:
    """Test candidate ordering."""

    def test_prefers_uncleared_on_equal_score(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        ledger = [
            make_ledger("Y-reconciled", "2025-10-15", -5000, "Shell", ClearedStatus.RECONCILED),
            make_ledger("Y-cleared", "2025-10-15", -5000, "Shell", ClearedStatus.CLEARED),
            make_ledger("Y-uncleared", "2025-10-15", -5000, "Shell"),
        ]

        assert matcher.find_best_match(bank, ledger, set()).ledger_transaction.id == "Y-uncleared"

    def test_input_order_breaks_remaining_ties(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        ledger = [make_ledger("Y1", "2025-10-15", -5000, "Shell"), make_ledger("Y2", "2025-10-15", -5000, "Shell")]

        assert matcher.find_best_match(bank, ledger, set()).ledger_transaction.id == "Y1"

    def test_candidates_are_capped(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -127430, "AMAZON.COM")
        ledger = [make_ledger(f"Y{i}", "2025-10-15", -127430, "Amazon Prime") for i in range(5)]

        match = matcher.find_best_match(bank, ledger, set())
        assert [c.ledger_transaction.id for c in match.candidates] == ["Y0", "Y1", "Y2"]


class TestUsedIds:
    """Test the no double-booking contract."""

    def test_used_ids_are_skipped(self):
        matcher = TransactionMatcher()
        bank = make_bank("B1", "2025-10-15", -5000, "Shell")
        ledger = [make_ledger("Y1", "2025-10-15", -5000, "Shell")]

        assert matcher.find_best_match(bank, ledger, {"Y1"}).confidence == MatchConfidence.NONE

    def test_earlier_bank_row_keeps_priority(self):
        matcher = TransactionMatcher()
        bank = [
            make_bank("B1", "2025-10-15", -5000, "Shell", row=2),
            make_bank("B2", "2025-10-15", -5000, "Shell", row=3),
        ]
        ledger = [make_ledger("Y1", "2025-10-15", -5000, "Shell")]

        matches, used = matcher.find_matches(bank, ledger)

        assert matches[0].ledger_transaction.id == "Y1"
        assert matches[1].confidence == MatchConfidence.NONE
        assert used == {"Y1"}

    def test_only_high_matches_claim_ids(self):
        matcher = TransactionMatcher()
        bank = [
            make_bank("B1", "2025-10-15", -127430, "AMAZON.COM"),
            make_bank("B2", "2025-10-15", -127430, "Amazon Prime"),
        ]
        ledger = [make_ledger("Y1", "2025-10-15", -127430, "Amazon Prime")]

        matches, used = matcher.find_matches(bank, ledger)

        assert matches[0].confidence == MatchConfidence.MEDIUM
        assert matches[1].confidence == MatchConfidence.HIGH
        assert used == {"Y1"}

    def test_initial_used_ids_are_not_mutated(self):
        matcher = TransactionMatcher()
        initial = {"other"}
        bank = [make_bank("B1", "2025-10-15", -5000, "Shell")]
        ledger = [make_ledger("Y1", "2025-10-15", -5000, "Shell")]

        _, used = matcher.find_matches(bank, ledger, initial)

        assert used == {"other", "Y1"}
        assert initial == {"other"}


class TestMatchingConfig:

    def test_defaults(self):
        config = MatchingConfig()
        assert (config.date_tolerance_days, config.amount_tolerance_cents) == (2, 1)
        assert (config.auto_match_threshold, config.suggestion_threshold) == (90, 60)
        assert config.amount_tolerance_milliunits == 10

    @pytest.mark.parametrize("kwargs", [
        {"auto_match_threshold": 101},
        {"suggestion_threshold": -1},
        {"suggestion_threshold": 95},
        {"date_tolerance_days": -1},
        {"amount_tolerance_cents": -1},
        {"max_candidates": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            MatchingConfig(**kwargs)
