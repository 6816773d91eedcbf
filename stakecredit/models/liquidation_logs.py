"""Liquidation and recovery audit model."""

from datetime import datetime
import logging
from typing import Optional

from pydantic import Field, model_validator

from .base import U64_MAX, BaseDocumentModel, Money
from .enums import LiquidationActionType


logger = logging.getLogger(__name__)


class LiquidationLogModel(BaseDocumentModel):
    """Represents one liquidation attempt against an overdue installment."""

    log_id: str = Field(..., min_length=3)
    contract_id: str = Field(..., min_length=3)
    owner: str = Field(..., min_length=1)
    asset: str = Field(..., min_length=1)
    sequence_no: int = Field(..., gt=0)

    triggered_at: datetime = Field(...)
    triggered_by: str = Field(..., min_length=1)

    installment_minor: Money = Field(..., ge=0, le=U64_MAX)
    penalty_minor: Money = Field(default=0, ge=0, le=U64_MAX)
    needed_minor: Money = Field(..., ge=0, le=U64_MAX)
    seized_minor: Money = Field(..., ge=0, le=U64_MAX)
    outcome: LiquidationActionType = Field(...)
    notes: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def _validate_recovery_math(self) -> "LiquidationLogModel":
        """Validate recovery constraints for full and partial liquidation events."""
        if self.seized_minor > self.needed_minor:
            raise ValueError("seized_minor cannot exceed needed_minor")
        if self.needed_minor != self.installment_minor + self.penalty_minor:
            raise ValueError("needed_minor must equal installment_minor + penalty_minor")
        full = self.seized_minor == self.needed_minor
        if full != (self.outcome == LiquidationActionType.FULL_RECOVERY):
            raise ValueError("outcome does not match seized amount")
        return self
