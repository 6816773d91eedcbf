"""Common reusable utility exports."""

from .protocol_constants import (
    apply_bps,
    checked_add,
    checked_mul,
    checked_sub,
    clamp_score,
    credit_limit,
    ensure_u64,
    penalty_for,
    split_installments,
    total_due,
)

__all__ = [
    "apply_bps",
    "checked_add",
    "checked_mul",
    "checked_sub",
    "clamp_score",
    "credit_limit",
    "ensure_u64",
    "penalty_for",
    "split_installments",
    "total_due",
]
