"""Credit score record tracking repayment reputation per owner."""

from datetime import datetime
import logging
from typing import Optional

from pydantic import Field

from .base import BaseDocumentModel
from .enums import ScoreReason


logger = logging.getLogger(__name__)

U16_MAX = 2**16 - 1
U32_MAX = 2**32 - 1

REASON_COUNTERS = {
    ScoreReason.ON_TIME_PAYMENT: "on_time_count",
    ScoreReason.LATE_RECOVERED: "late_count",
    ScoreReason.COMPLETION: "completed_count",
    ScoreReason.DEFAULT: "default_count",
}


class CreditScoreModel(BaseDocumentModel):
    """Represents the bounded credit score and payment counters of an owner."""

    owner: str = Field(..., min_length=1)
    score: int = Field(..., ge=0, le=U16_MAX)
    on_time_count: int = Field(default=0, ge=0, le=U32_MAX)
    late_count: int = Field(default=0, ge=0, le=U32_MAX)
    default_count: int = Field(default=0, ge=0, le=U32_MAX)
    completed_count: int = Field(default=0, ge=0, le=U32_MAX)
    total_contracts: int = Field(default=0, ge=0, le=U32_MAX)
    last_reason: Optional[ScoreReason] = Field(default=None)
    last_updated: Optional[datetime] = Field(default=None)

    @property
    def total_payments(self) -> int:
        return self.on_time_count + self.late_count + self.default_count

    def on_time_percentage(self) -> float:
        """Share of on-time payments over all recorded outcomes, in percent."""
        total = self.total_payments
        if total == 0:
            return 0.0
        return round(self.on_time_count * 100.0 / total, 2)
