"""Canonical protocol constants and math: single source of truth.

Every amount is an unsigned 64-bit integer in minor units of a 6-decimal
asset (``1_000_000`` == 1 unit). Rates are integer basis points. All helpers
below refuse to leave the u64 range and raise ``ArithmeticOverflow`` instead
of wrapping or going negative.

Reference values:
    total_due(30_000_000, 700)          -> 32_100_000
    split_installments(32_100_000, 3)   -> [10_700_000, 10_700_000, 10_700_000]
    penalty_for(10_000_000, 1000)       -> 1_000_000
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List

from stakecredit.models.exceptions import ArithmeticOverflow

# ---------------------------------------------------------------------------
# Scaling factors
# ---------------------------------------------------------------------------
ASSET_DECIMALS: int = 6
MINOR_UNITS_PER_UNIT: int = 10**ASSET_DECIMALS
BPS_DENOMINATOR: int = 10_000
U64_MAX: int = 2**64 - 1
U16_MAX: int = 2**16 - 1

# ---------------------------------------------------------------------------
# Credit score policy
# ---------------------------------------------------------------------------
INITIAL_SCORE: int = 500
MIN_SCORE: int = 0
MAX_SCORE: int = 1000
SCORE_ON_TIME: int = 5
SCORE_COMPLETION: int = 20
SCORE_LATE_RECOVERED: int = -20
SCORE_DEFAULT: int = -50

# ---------------------------------------------------------------------------
# Collateral policy
# ---------------------------------------------------------------------------
MIN_DEPOSIT_MINOR: int = 10 * MINOR_UNITS_PER_UNIT
MIN_LOCK_DAYS: int = 7
MAX_LOCK_DAYS: int = 365
COLLATERAL_RATIO_BPS: int = 10_000   # 1:1

# ---------------------------------------------------------------------------
# Contract policy
# ---------------------------------------------------------------------------
ALLOWED_INSTALLMENT_COUNTS = (3, 4, 6, 12, 18, 24, 36)
MIN_INTERVAL_DAYS: int = 15
MAX_INTERVAL_DAYS: int = 90
DEFAULT_INTERVAL_DAYS: int = 30
GRACE_PERIOD_DAYS: int = 15
PENALTY_RATE_BPS: int = 1_000        # 10 %
MAX_CONTRACTS_PER_YEAR: int = 5
CONTRACT_CAP_WINDOW_DAYS: int = 365


# ---------------------------------------------------------------------------
# Checked u64 arithmetic
# ---------------------------------------------------------------------------

def ensure_u64(value: int, label: str = "amount") -> int:
    """Return *value* if it fits in u64, else raise ``ArithmeticOverflow``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArithmeticOverflow("{0} must be an integer".format(label), value=value)
    if value < 0 or value > U64_MAX:
        raise ArithmeticOverflow("{0} out of u64 range".format(label), value=value)
    return value


def checked_add(left: int, right: int) -> int:
    """u64 addition."""
    return ensure_u64(ensure_u64(left) + ensure_u64(right), "sum")


def checked_sub(left: int, right: int) -> int:
    """u64 subtraction; underflow is an error, never a negative balance."""
    return ensure_u64(ensure_u64(left) - ensure_u64(right), "difference")


def checked_mul(left: int, right: int) -> int:
    """u64 multiplication."""
    return ensure_u64(ensure_u64(left) * ensure_u64(right), "product")


def apply_bps(amount: int, bps: int) -> int:
    """Return ``floor(amount * bps / 10000)``.

    The intermediate product must itself fit in u64.
    """
    return checked_mul(amount, bps) // BPS_DENOMINATOR


def total_due(principal: int, fee_rate_bps: int) -> int:
    """Principal plus the floored fee."""
    return checked_add(principal, apply_bps(principal, fee_rate_bps))


def penalty_for(installment_minor: int, penalty_rate_bps: int) -> int:
    """Late penalty charged on top of a liquidated installment."""
    return apply_bps(installment_minor, penalty_rate_bps)


def split_installments(total_minor: int, installment_count: int) -> List[int]:
    """Split *total_minor* into equal installments.

    The remainder of the integer division lands on the final installment so
    the installments sum exactly to ``total_minor``.
    """
    ensure_u64(total_minor, "total")
    if installment_count <= 0:
        raise ValueError("installment_count must be > 0")
    base_amount = total_minor // installment_count
    remainder = total_minor - base_amount * installment_count
    amounts = [base_amount] * installment_count
    amounts[-1] = checked_add(base_amount, remainder)
    return amounts


def credit_limit(principal: int, collateral_ratio_bps: int, limit_multiplier_bps: int) -> int:
    """Maximum contract principal supported by *principal* of collateral."""
    return apply_bps(apply_bps(principal, collateral_ratio_bps), limit_multiplier_bps)


def clamp_score(value: int, min_score: int = MIN_SCORE, max_score: int = MAX_SCORE) -> int:
    """Clamp a signed score to the configured bounds."""
    return max(min_score, min(max_score, value))


def add_days(moment: datetime, days: int) -> datetime:
    """Shift a timestamp by whole days, failing instead of overflowing."""
    try:
        return moment + timedelta(days=days)
    except OverflowError as exc:
        raise ArithmeticOverflow("timestamp out of range", moment=moment, days=days) from exc


def days_until(now: datetime, moment: datetime) -> int:
    """Whole days remaining until *moment*, rounded up; 0 once passed."""
    if moment <= now:
        return 0
    remaining = moment - now
    return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)
