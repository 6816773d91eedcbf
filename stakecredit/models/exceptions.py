"""Custom exceptions for the model, repository, and credit service layers."""

from typing import Any, Dict, Optional


class ModelError(Exception):
    """Base class for model-related failures."""


class ModelValidationError(ModelError):
    """Raised when model data fails custom business validation."""


class ModelNotFoundError(ModelError):
    """Raised when a requested document does not exist."""


class VersionConflictError(ModelError):
    """Raised when optimistic concurrency version checks fail."""


class CreditError(Exception):
    """Base class for credit protocol rule violations.

    Every subclass carries a stable ``code`` so API clients and logs can match
    on it without depending on the message text.
    """

    code = "CREDIT_ERROR"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: Dict[str, Any] = dict(context)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly error payload."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            payload["context"] = {key: str(value) for key, value in self.context.items()}
        return payload


class BelowMinimumDeposit(CreditError):
    code = "BELOW_MINIMUM_DEPOSIT"


class InvalidLockPeriod(CreditError):
    code = "INVALID_LOCK_PERIOD"


class StillLocked(CreditError):
    code = "STILL_LOCKED"


class InsufficientBalance(CreditError):
    code = "INSUFFICIENT_BALANCE"


class InsufficientCollateral(CreditError):
    code = "INSUFFICIENT_COLLATERAL"


class CollateralNotFound(CreditError):
    code = "COLLATERAL_NOT_FOUND"


class ScoreTooLow(CreditError):
    code = "SCORE_TOO_LOW"


class ScoreNotFound(CreditError):
    code = "SCORE_NOT_FOUND"


class AlreadyInitialized(CreditError):
    code = "ALREADY_INITIALIZED"


class InvalidInstallmentCount(CreditError):
    code = "INVALID_INSTALLMENT_COUNT"


class InvalidInterval(CreditError):
    code = "INVALID_INTERVAL"


class InvalidAmount(CreditError):
    code = "INVALID_AMOUNT"


class TooManyContracts(CreditError):
    code = "TOO_MANY_CONTRACTS"


class ContractNotFound(CreditError):
    code = "CONTRACT_NOT_FOUND"


class ContractNotActive(CreditError):
    """Raised when a contract is in a terminal state for the requested action."""

    code = "CONTRACT_NOT_ACTIVE"


class AlreadyCompleted(ContractNotActive):
    code = "ALREADY_COMPLETED"


class InstallmentNotFound(CreditError):
    code = "INSTALLMENT_NOT_FOUND"


class InstallmentOverdue(CreditError):
    """Raised when the owner tries to pay after the grace window closed."""

    code = "INSTALLMENT_OVERDUE"


class GracePeriodNotExpired(CreditError):
    code = "GRACE_PERIOD_NOT_EXPIRED"


class Unauthorized(CreditError):
    code = "UNAUTHORIZED"


class ArithmeticOverflow(CreditError):
    """Raised when an amount leaves the unsigned 64-bit range."""

    code = "ARITHMETIC_OVERFLOW"


def error_context(error: Exception) -> Optional[Dict[str, Any]]:
    """Return structured context for credit errors, if any."""
    if isinstance(error, CreditError):
        return error.to_dict()
    return None
