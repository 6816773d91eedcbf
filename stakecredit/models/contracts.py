"""Installment contract model with its embedded repayment schedule."""

from datetime import datetime, timedelta
import hashlib
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import U64_MAX, BaseDocumentModel, Money, PercentageBps
from .enums import ContractStatus, InstallmentStatus
from .exceptions import ModelValidationError


logger = logging.getLogger(__name__)

_SETTLED = {InstallmentStatus.PAID, InstallmentStatus.LIQUIDATED, InstallmentStatus.DEFAULTED}
_COUNTS_TOWARD_COMPLETION = {InstallmentStatus.PAID, InstallmentStatus.LIQUIDATED}


def contract_key(owner: str, nonce: int) -> str:
    """Derive the contract id from the owner and their creation counter."""
    raw = "{0}:{1}".format(owner, nonce)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class InstallmentStateModel(BaseModel):
    """One scheduled installment inside a contract."""

    model_config = ConfigDict(validate_assignment=True, use_enum_values=False)

    sequence_no: int = Field(..., gt=0)
    due_at: datetime = Field(...)
    amount_minor: Money = Field(..., ge=0, le=U64_MAX)
    status: InstallmentStatus = Field(default=InstallmentStatus.PENDING)
    settled_at: Optional[datetime] = Field(default=None)
    recovered_minor: Money = Field(default=0, ge=0, le=U64_MAX)
    penalty_minor: Money = Field(default=0, ge=0, le=U64_MAX)

    @model_validator(mode="after")
    def _validate_stored_status(self) -> "InstallmentStateModel":
        if self.status == InstallmentStatus.GRACE_WAITING:
            raise ValueError("GRACE_WAITING is derived and cannot be stored")
        return self

    @property
    def is_settled(self) -> bool:
        return self.status in _SETTLED

    def grace_deadline(self, grace_days: int) -> datetime:
        """Last instant at which the owner may still pay this installment."""
        return self.due_at + timedelta(days=grace_days)

    def is_past_grace(self, now: datetime, grace_days: int) -> bool:
        """Return True once the grace window has fully elapsed."""
        return now > self.grace_deadline(grace_days)

    def effective_status(self, now: datetime, grace_days: int) -> InstallmentStatus:
        """Stored status, with PENDING refined to GRACE_WAITING inside the grace window."""
        if self.status == InstallmentStatus.PENDING and self.due_at < now <= self.grace_deadline(grace_days):
            return InstallmentStatus.GRACE_WAITING
        return self.status


class ContractModel(BaseDocumentModel):
    """Represents an installment credit contract drawn against collateral."""

    contract_id: str = Field(..., min_length=8)
    owner: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)
    asset: str = Field(..., min_length=1, max_length=16)
    nonce: int = Field(default=0, ge=0)

    principal: Money = Field(..., gt=0, le=U64_MAX)
    benefit_tier: str = Field(default="STANDARD", min_length=1, max_length=16)
    fee_rate_bps: PercentageBps = Field(..., ge=0, le=10000)
    limit_multiplier_bps: PercentageBps = Field(..., ge=0)
    cashback_rate_bps: PercentageBps = Field(default=0, ge=0, le=10000)
    penalty_rate_bps: PercentageBps = Field(..., ge=0, le=10000)

    total_due: Money = Field(..., gt=0, le=U64_MAX)
    installment_count: int = Field(..., gt=0, le=255)
    installment_amount: Money = Field(..., ge=0, le=U64_MAX)
    final_installment_amount: Money = Field(..., ge=0, le=U64_MAX)
    interval_days: int = Field(..., gt=0)

    paid_installments: int = Field(default=0, ge=0)
    missed_installments: int = Field(default=0, ge=0)
    status: ContractStatus = Field(default=ContractStatus.ACTIVE)
    closed_at: Optional[datetime] = Field(default=None)
    schedule_hash: Optional[str] = Field(default=None)

    installments: List[InstallmentStateModel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_business_rules(self) -> "ContractModel":
        """Validate schedule and counter rules."""
        if len(self.installments) != self.installment_count:
            raise ValueError("installments length must equal installment_count")
        if self.paid_installments + self.missed_installments > self.installment_count:
            raise ValueError("paid_installments plus missed_installments exceed installment_count")
        if self.status == ContractStatus.COMPLETED and any(
            item.status not in _COUNTS_TOWARD_COMPLETION for item in self.installments
        ):
            raise ValueError("COMPLETED contract must have every installment settled")
        return self

    def installment(self, sequence_no: int) -> Optional[InstallmentStateModel]:
        """Return the installment with *sequence_no*, if present."""
        for item in self.installments:
            if item.sequence_no == sequence_no:
                return item
        return None

    def next_unsettled(self) -> Optional[InstallmentStateModel]:
        """Earliest installment that is still PENDING."""
        for item in sorted(self.installments, key=lambda entry: entry.sequence_no):
            if not item.is_settled:
                return item
        return None

    def all_settled(self) -> bool:
        return all(item.status in _COUNTS_TOWARD_COMPLETION for item in self.installments)

    def has_settlements(self) -> bool:
        return any(item.is_settled for item in self.installments)

    def to_view(self, now: datetime, grace_days: int) -> Dict[str, Any]:
        """Document form with each installment's status as observed at *now*.

        Only ACTIVE contracts derive GRACE_WAITING; closed contracts report stored states.
        """
        document = self.to_document()
        by_sequence = {item.sequence_no: item for item in self.installments}
        for entry in document["installments"]:
            item = by_sequence[entry["sequence_no"]]
            if self.status == ContractStatus.ACTIVE:
                entry["effective_status"] = item.effective_status(now, grace_days)
            else:
                entry["effective_status"] = item.status
        return document

    @classmethod
    def validate_schedule(cls, installments: List[InstallmentStateModel], expected_total_minor: Money) -> None:
        """Validate ordering and aggregate total for an installment schedule.

        Args:
            installments: Installment list for one contract.
            expected_total_minor: Expected aggregate amount for all installments.

        Raises:
            ModelValidationError: If ordering or total constraints fail.
        """
        if not installments:
            raise ModelValidationError("Installment schedule cannot be empty")

        ordered = sorted(installments, key=lambda item: item.sequence_no)
        for index, installment in enumerate(ordered, start=1):
            if installment.sequence_no != index:
                raise ModelValidationError("Installment sequence numbers must be continuous from 1")
        for previous, current in zip(ordered, ordered[1:]):
            if current.due_at <= previous.due_at:
                raise ModelValidationError("Installment due dates must be strictly increasing")

        total_minor = sum(item.amount_minor for item in ordered)
        if total_minor != expected_total_minor:
            raise ModelValidationError("Installment sum does not match expected total")

    @staticmethod
    def schedule_digest(installments: List[InstallmentStateModel]) -> str:
        """Build deterministic hash for a generated installment schedule."""
        raw = "|".join(
            "{0}:{1}:{2}".format(item.sequence_no, int(item.due_at.timestamp()), item.amount_minor)
            for item in installments
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
