"""Reusable enums for credit domain models."""

from enum import Enum


class StringEnum(str, Enum):
    """Base enum class with string behavior for JSON serialization."""


class UserRole(StringEnum):
    """Role names used for API authorization checks."""

    ADMIN = "ADMIN"
    SCORE_AUTHORITY = "SCORE_AUTHORITY"
    KEEPER = "KEEPER"


class PositionStatus(StringEnum):
    """Collateral position lifecycle states."""

    ACTIVE = "ACTIVE"
    WITHDRAWN = "WITHDRAWN"


class ContractStatus(StringEnum):
    """Installment contract lifecycle states."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULTED = "DEFAULTED"
    CANCELLED = "CANCELLED"


class InstallmentStatus(StringEnum):
    """Per-installment settlement states.

    ``GRACE_WAITING`` is never stored; it is derived for a PENDING installment
    whose due date has passed while its grace window is still open.
    """

    PENDING = "PENDING"
    GRACE_WAITING = "GRACE_WAITING"
    PAID = "PAID"
    LIQUIDATED = "LIQUIDATED"
    DEFAULTED = "DEFAULTED"


class PaymentOutcome(StringEnum):
    """How a settled installment was covered."""

    PAID = "PAID"
    LIQUIDATED = "LIQUIDATED"


class ScoreReason(StringEnum):
    """Reasons attached to credit score adjustments."""

    ON_TIME_PAYMENT = "ON_TIME_PAYMENT"
    LATE_RECOVERED = "LATE_RECOVERED"
    COMPLETION = "COMPLETION"
    DEFAULT = "DEFAULT"


class LiquidationActionType(StringEnum):
    """Recovery action categories."""

    FULL_RECOVERY = "FULL_RECOVERY"
    PARTIAL_RECOVERY = "PARTIAL_RECOVERY"
