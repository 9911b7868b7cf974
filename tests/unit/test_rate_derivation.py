"""
Unit tests for DSCR tier pricing and the LendScore adjustment.
"""

import os
import sys
from datetime import datetime
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from app.services.rate_derivation import (
    LendScore,
    MIN_RATE_BPS,
    adjust,
    adjust_rate_by_lend_score,
    base_rate,
    derive_rate,
    dscr_health,
    dscr_risk_tier,
    format_rate,
    get_stored_lend_score,
    lend_score_health,
    reason_descriptions,
    scale_dscr,
    unscale_dscr,
)


class TestBaseRate:
    """Tests for DSCR tier lookup."""

    @pytest.mark.unit
    @pytest.mark.parametrize("dscr,expected", [
        (4.33, 900),
        (2.0, 900),
        (1.99, 1050),
        (1.5, 1050),
        (1.3, 1200),
        (1.25, 1200),
        (1.0, 1350),
        (0.99, 1500),
        (0.0, 1500),
    ])
    def test_tiers(self, dscr, expected):
        assert base_rate(dscr) == expected

    @pytest.mark.unit
    def test_non_increasing_in_dscr(self):
        """Higher DSCR never yields a higher base rate."""
        values = [i / 100 for i in range(0, 400)]
        rates = [base_rate(v) for v in values]
        assert all(a >= b for a, b in zip(rates, rates[1:]))


class TestLendScoreAdjustment:
    """Tests for the supplemental score adjustment."""

    @pytest.mark.unit
    @pytest.mark.parametrize("score,expected", [
        (99, 1100),
        (80, 1100),
        (79, 1150),
        (60, 1150),
        (59, 1200),
        (40, 1200),
        (39, 1250),
        (20, 1250),
        (19, 1300),
        (1, 1300),
    ])
    def test_adjustment_bands(self, score, expected):
        assert adjust_rate_by_lend_score(score, 1200) == expected

    @pytest.mark.unit
    def test_floor(self):
        assert adjust_rate_by_lend_score(95, 150) == MIN_RATE_BPS

    @pytest.mark.unit
    def test_no_score_keeps_base(self):
        decision = adjust(1050, None)
        assert decision.base_rate == 1050
        assert decision.interest_rate == 1050
        assert decision.lend_score is None
        assert decision.reasons is None

    @pytest.mark.unit
    def test_score_with_reasons(self):
        score = LendScore(score=85, reason_codes=["CONSISTENT_INCOME", "NEW_CODE"])
        decision = derive_rate(1.6, score)
        assert decision.base_rate == 1050
        assert decision.interest_rate == 950
        assert decision.lend_score == 85
        assert decision.reasons == [
            "Consistent income deposits detected",
            "Unknown factor: NEW_CODE",
        ]

    @pytest.mark.unit
    def test_reason_descriptions_empty(self):
        assert reason_descriptions([]) == []


class TestStoredLendScore:
    """Tests for reading a LendScore off a loan application."""

    @pytest.mark.unit
    def test_missing_score(self):
        loan = SimpleNamespace(lend_score=None, lend_score_reason_codes=[], lend_score_retrieved_at=None)
        assert get_stored_lend_score(loan) is None

    @pytest.mark.unit
    def test_score_never_retrieved(self):
        loan = SimpleNamespace(lend_score=70, lend_score_reason_codes=[], lend_score_retrieved_at=None)
        assert get_stored_lend_score(loan) is None

    @pytest.mark.unit
    def test_stored_score(self):
        retrieved = datetime(2025, 5, 1)
        loan = SimpleNamespace(
            lend_score=70,
            lend_score_reason_codes=["REGULAR_SAVINGS"],
            lend_score_retrieved_at=retrieved,
        )
        score = get_stored_lend_score(loan)
        assert score.score == 70
        assert score.reason_codes == ["REGULAR_SAVINGS"]
        assert score.retrieved_at == retrieved


class TestConversionsAndLabels:
    """Tests for rate/DSCR formatting and health labels."""

    @pytest.mark.unit
    def test_rate_formatting(self):
        assert format_rate(1050) == "10.50%"
        assert format_rate(900) == "9.00%"

    @pytest.mark.unit
    def test_dscr_scaling(self):
        assert scale_dscr(1.85) == 1850
        assert unscale_dscr(1250) == 1.25

    @pytest.mark.unit
    def test_labels(self):
        assert dscr_health(2.1) == "Excellent"
        assert dscr_health(1.3) == "Adequate"
        assert dscr_health(0.5) == "Weak"
        assert dscr_risk_tier(1.6) == "Moderate Risk"
        assert lend_score_health(None) == "Unknown"
        assert lend_score_health(65) == "Good"
        assert lend_score_health(10) == "Poor"
