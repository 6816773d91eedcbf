"""Public model package exports for the credit core."""

from .base import BaseDocumentModel, Money, PercentageBps
from .collaterals import CollateralPositionModel, position_key
from .contracts import ContractModel, InstallmentStateModel, contract_key
from .credit_scores import CreditScoreModel
from .enums import (
    ContractStatus,
    InstallmentStatus,
    LiquidationActionType,
    PaymentOutcome,
    PositionStatus,
    ScoreReason,
    UserRole,
)
from .exceptions import (
    CreditError,
    ModelError,
    ModelNotFoundError,
    ModelValidationError,
    VersionConflictError,
)
from .liquidation_logs import LiquidationLogModel
from .repositories import (
    CollateralRepository,
    ContractRepository,
    CreditScoreRepository,
    LiquidationLogRepository,
)

__all__ = [
    "BaseDocumentModel",
    "Money",
    "PercentageBps",
    "CollateralPositionModel",
    "ContractModel",
    "InstallmentStateModel",
    "CreditScoreModel",
    "LiquidationLogModel",
    "position_key",
    "contract_key",
    "ContractStatus",
    "InstallmentStatus",
    "LiquidationActionType",
    "PaymentOutcome",
    "PositionStatus",
    "ScoreReason",
    "UserRole",
    "CreditError",
    "ModelError",
    "ModelValidationError",
    "ModelNotFoundError",
    "VersionConflictError",
    "CollateralRepository",
    "ContractRepository",
    "CreditScoreRepository",
    "LiquidationLogRepository",
]
