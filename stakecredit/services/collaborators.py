"""Narrow interfaces to the systems the credit core consults but does not own."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
import logging
from threading import RLock
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from stakecredit.core.clock import Clock, utc_now
from stakecredit.core.config import AppSettings, BenefitTierSettings
from stakecredit.models.exceptions import Unauthorized


logger = logging.getLogger(__name__)


class Benefits(BaseModel):
    """Benefit tier values snapshotted onto a contract at creation time."""

    model_config = ConfigDict(frozen=True)

    tier: str = Field(default="STANDARD", min_length=1)
    fee_rate_bps: int = Field(..., ge=0, le=10000)
    limit_multiplier_bps: int = Field(default=10000, ge=0)
    cashback_rate_bps: int = Field(default=0, ge=0, le=10000)
    min_score: int = Field(default=0, ge=0)
    penalty_rate_bps: int = Field(..., ge=0, le=10000)
    allowed_installments: Tuple[int, ...] = Field(default=(3, 4, 6, 12))


class BenefitResolver(ABC):
    """Resolves an owner's benefit tier."""

    @abstractmethod
    def resolve_benefits(self, owner: str) -> Benefits:
        """Return the benefits that apply to *owner* right now."""


class StaticBenefitResolver(BenefitResolver):
    """Config-driven resolver: one default tier plus per-owner overrides."""

    def __init__(
        self,
        default: BenefitTierSettings,
        overrides: Optional[Mapping[str, BenefitTierSettings]] = None,
        default_penalty_rate_bps: int = 1000,
    ) -> None:
        self._default = default
        self._overrides: Dict[str, BenefitTierSettings] = dict(overrides or {})
        self._default_penalty_rate_bps = default_penalty_rate_bps

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "StaticBenefitResolver":
        return cls(
            default=settings.default_benefits,
            overrides=settings.owner_benefits,
            default_penalty_rate_bps=settings.protocol.penalty_rate_bps,
        )

    def resolve_benefits(self, owner: str) -> Benefits:
        tier = self._overrides.get(owner, self._default)
        penalty = tier.penalty_rate_bps
        return Benefits(
            tier=tier.tier,
            fee_rate_bps=tier.fee_rate_bps,
            limit_multiplier_bps=tier.limit_multiplier_bps,
            cashback_rate_bps=tier.cashback_rate_bps,
            min_score=tier.min_score,
            penalty_rate_bps=self._default_penalty_rate_bps if penalty is None else penalty,
            allowed_installments=tuple(tier.allowed_installments),
        )


class AccessPolicy(ABC):
    """Allow-list consulted before any owner-initiated operation."""

    @abstractmethod
    def is_authorized(self, owner: str) -> bool:
        """Return whether *owner* may use the protocol."""


class StaticAccessPolicy(AccessPolicy):
    """Allow everyone, or only a configured set of owners."""

    def __init__(self, allow_all: bool = True, owners: Iterable[str] = ()) -> None:
        self._allow_all = allow_all
        self._owners = {owner for owner in owners if owner}

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "StaticAccessPolicy":
        return cls(allow_all=settings.access_allow_all, owners=settings.access_owners)

    def is_authorized(self, owner: str) -> bool:
        return self._allow_all or owner in self._owners


def authorize_owner(policy: AccessPolicy, owner: str, signer: Optional[str]) -> None:
    """Require that *signer* is *owner* and that *owner* is allow-listed.

    Raises:
        Unauthorized: If either check fails.
    """
    if not signer or signer != owner:
        logger.warning("Signer mismatch owner=%s signer=%s", owner, signer)
        raise Unauthorized("Signer is not the owner", owner=owner, signer=signer)
    if not policy.is_authorized(owner):
        logger.warning("Owner not allow-listed owner=%s", owner)
        raise Unauthorized("Owner is not on the access list", owner=owner)


@dataclass(frozen=True)
class YieldCredit:
    owner: str
    amount: int
    source: str
    credited_at: datetime


class YieldSink(ABC):
    """Receives reward credits such as cashback."""

    @abstractmethod
    def credit_yield(self, owner: str, amount: int, source: str) -> None:
        """Credit *amount* minor units of reward to *owner*."""


class InMemoryYieldSink(YieldSink):
    """Records reward credits in memory."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._lock = RLock()
        self._clock = clock
        self._credits: List[YieldCredit] = []

    def credit_yield(self, owner: str, amount: int, source: str) -> None:
        if amount <= 0:
            raise ValueError("yield amount must be > 0")
        credited_at = self._clock.now() if self._clock is not None else utc_now()
        with self._lock:
            self._credits.append(YieldCredit(owner=owner, amount=amount, source=source, credited_at=credited_at))
        logger.info("Yield credited owner=%s amount=%s source=%s", owner, amount, source)

    def credits_for(self, owner: str) -> List[YieldCredit]:
        with self._lock:
            return [item for item in self._credits if item.owner == owner]

    def balance_of(self, owner: str) -> int:
        return sum(item.amount for item in self.credits_for(owner))
