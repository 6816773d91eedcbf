"""Collateral position model for staked and locked deposits."""

from datetime import datetime
import logging

from pydantic import Field, model_validator

from .base import U64_MAX, BaseDocumentModel, Money
from .enums import PositionStatus


logger = logging.getLogger(__name__)


def position_key(owner: str, asset: str) -> str:
    """Return the document id of the position held by *owner* in *asset*."""
    return "{0}:{1}".format(owner, asset.upper())


class CollateralPositionModel(BaseDocumentModel):
    """Represents one owner's collateral in one asset."""

    owner: str = Field(..., min_length=1)
    asset: str = Field(..., min_length=1, max_length=16)
    principal: Money = Field(default=0, ge=0, le=U64_MAX)
    locked_until: datetime = Field(...)
    status: PositionStatus = Field(default=PositionStatus.ACTIVE)
    total_deposited: Money = Field(default=0, ge=0, le=U64_MAX)
    total_liquidated: Money = Field(default=0, ge=0, le=U64_MAX)

    @property
    def position_id(self) -> str:
        return position_key(self.owner, self.asset)

    def is_locked(self, now: datetime) -> bool:
        """Return whether withdrawals are still blocked at *now*."""
        return now < self.locked_until

    @model_validator(mode="after")
    def _validate_withdrawn_is_empty(self) -> "CollateralPositionModel":
        """A withdrawn position holds nothing."""
        if self.status == PositionStatus.WITHDRAWN and self.principal != 0:
            logger.warning(
                "Collateral validation failed owner=%s asset=%s principal=%s",
                self.owner,
                self.asset,
                self.principal,
            )
            raise ValueError("WITHDRAWN position must have zero principal")
        return self
