"""
Interest Rate Derivation

Risk-based pricing from DSCR, with an optional LendScore adjustment.

Rate format across layers:
- Pool contract: basis points (1050 = 10.5%)
- Notice feed: DSCR as decimal string, no rate
- API responses: basis points, formatted as percentage for display

DSCR tiers (lower bound inclusive, evaluated top-down):
- DSCR >= 2.0:  900 bps (9%)
- DSCR >= 1.5:  1050 bps (10.5%)
- DSCR >= 1.25: 1200 bps (12%)
- DSCR >= 1.0:  1350 bps (13.5%)
- DSCR <  1.0:  1500 bps (15%)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


DSCR_RATE_TIERS = [
    (2.0, 900),
    (1.5, 1050),
    (1.25, 1200),
    (1.0, 1350),
]
MAX_RATE_BPS = 1500

DSCR_SCALE_FACTOR = 1000
DSCR_THRESHOLD_SCALED = 1250

# LendScore adjustments: (minimum score, delta in bps)
LEND_SCORE_ADJUSTMENTS = [
    (80, -100),
    (60, -50),
    (40, 0),
    (20, 50),
]
LOWEST_SCORE_ADJUSTMENT = 100
MIN_RATE_BPS = 100

LENDSCORE_REASON_DESCRIPTIONS = {
    # Positive factors
    "CONSISTENT_INCOME": "Consistent income deposits detected",
    "HIGH_BALANCE_STABILITY": "Stable account balance maintained",
    "LOW_OVERDRAFT_FREQUENCY": "Low frequency of overdraft events",
    "REGULAR_SAVINGS": "Regular savings pattern detected",
    "DIVERSE_INCOME_SOURCES": "Multiple income sources identified",
    # Negative factors
    "HIGH_OVERDRAFT_FREQUENCY": "Frequent overdraft events detected",
    "DECLINING_BALANCE_TREND": "Account balance declining over time",
    "IRREGULAR_INCOME": "Irregular income pattern detected",
    "HIGH_EXPENSE_RATIO": "High expenses relative to income",
    "LIMITED_HISTORY": "Limited transaction history available",
    # Informational
    "MOCK_SANDBOX_DATA": "Mock data - LendScore API pending integration",
    "MOCK_DATA": "Mock data - LendScore API pending integration",
    "RECENT_ACCOUNT": "Account opened recently",
    "SEASONAL_INCOME": "Seasonal income pattern detected",
}


@dataclass
class LendScore:
    """Stored LendScore for a loan."""
    score: int
    reason_codes: list[str] = field(default_factory=list)
    retrieved_at: Optional[datetime] = None


@dataclass
class RateDecision:
    """Base rate, adjusted rate and the reasons behind the adjustment."""
    base_rate: int
    interest_rate: int
    lend_score: Optional[int] = None
    reasons: Optional[list[str]] = None


# =============================================================================
# CONVERSIONS
# =============================================================================


def basis_points_to_percent(basis_points: int) -> float:
    return basis_points / 100


def format_rate(basis_points: int) -> str:
    """Format basis points for display, e.g. 1050 -> '10.50%'."""
    return f"{basis_points_to_percent(basis_points):.2f}%"


def scale_dscr(dscr: float) -> int:
    return round(dscr * DSCR_SCALE_FACTOR)


def unscale_dscr(scaled: int) -> float:
    return scaled / DSCR_SCALE_FACTOR


# =============================================================================
# RATE DERIVATION
# =============================================================================


def base_rate(dscr: float) -> int:
    """Base interest rate in basis points for a DSCR value."""
    for lower_bound, rate in DSCR_RATE_TIERS:
        if dscr >= lower_bound:
            return rate
    return MAX_RATE_BPS


def adjust_rate_by_lend_score(lend_score: int, base: int) -> int:
    """Apply the LendScore adjustment; higher scores never raise the rate."""
    for min_score, delta in LEND_SCORE_ADJUSTMENTS:
        if lend_score >= min_score:
            return max(base + delta, MIN_RATE_BPS)
    return base + LOWEST_SCORE_ADJUSTMENT


def reason_descriptions(reason_codes: list[str]) -> list[str]:
    return [
        LENDSCORE_REASON_DESCRIPTIONS.get(code, f"Unknown factor: {code}")
        for code in reason_codes
    ]


def adjust(base: int, lend_score: Optional[LendScore]) -> RateDecision:
    """
    Adjust a base rate by the supplemental score.

    Without a score the adjusted rate equals the base rate and the reason
    list is None.
    """
    if lend_score is None or not lend_score.score:
        return RateDecision(base_rate=base, interest_rate=base)

    return RateDecision(
        base_rate=base,
        interest_rate=adjust_rate_by_lend_score(lend_score.score, base),
        lend_score=lend_score.score,
        reasons=reason_descriptions(lend_score.reason_codes or []),
    )


def derive_rate(dscr: float, lend_score: Optional[LendScore] = None) -> RateDecision:
    return adjust(base_rate(dscr), lend_score)


def get_stored_lend_score(loan) -> Optional[LendScore]:
    """LendScore stored on a loan application, or None if never retrieved."""
    if not loan.lend_score or not loan.lend_score_retrieved_at:
        return None
    return LendScore(
        score=loan.lend_score,
        reason_codes=list(loan.lend_score_reason_codes or []),
        retrieved_at=loan.lend_score_retrieved_at,
    )


# =============================================================================
# LABELS
# =============================================================================


def lend_score_health(score: Optional[int]) -> str:
    if score is None:
        return "Unknown"
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    if score >= 40:
        return "Fair"
    return "Poor"


def dscr_health(dscr: float) -> str:
    if dscr >= 2.0:
        return "Excellent"
    if dscr >= 1.5:
        return "Good"
    if dscr >= 1.25:
        return "Adequate"
    if dscr >= 1.0:
        return "Marginal"
    return "Weak"


def dscr_risk_tier(dscr: float) -> str:
    if dscr >= 2.0:
        return "Low Risk"
    if dscr >= 1.5:
        return "Moderate Risk"
    if dscr >= 1.25:
        return "Medium Risk"
    if dscr >= 1.0:
        return "High Risk"
    return "Very High Risk"
