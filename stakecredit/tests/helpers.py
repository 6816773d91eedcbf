"""Shared builders for service-level tests."""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from stakecredit.core.clock import FixedClock
from stakecredit.core.config import AppSettings, BenefitTierSettings, ProtocolPolicy
from stakecredit.services.container import CreditServices, build_services


UNIT = 1_000_000
START = datetime(2024, 1, 1, tzinfo=timezone.utc)
OWNER = "alice"
MERCHANT = "mer_201"


def make_settings(
    benefits: Optional[BenefitTierSettings] = None,
    owner_benefits: Optional[Dict[str, BenefitTierSettings]] = None,
    **protocol_overrides: Any,
) -> AppSettings:
    """Settings with library defaults, independent of the packaged config.yml."""
    return AppSettings(
        app_name="Stake Credit Test",
        debug=False,
        host="127.0.0.1",
        port=8000,
        log_level="INFO",
        protocol=replace(ProtocolPolicy(), **protocol_overrides),
        default_benefits=benefits or BenefitTierSettings(),
        owner_benefits=dict(owner_benefits or {}),
        access_allow_all=True,
        access_owners=(),
        keeper_enabled=False,
        keeper_poll_interval_sec=1,
    )


def make_services(settings: Optional[AppSettings] = None, **kwargs: Any) -> CreditServices:
    """Build services on a fixed clock starting at ``START``."""
    return build_services(settings or make_settings(), clock=FixedClock(START), **kwargs)


def onboard(services: CreditServices, owner: str = OWNER, units: int = 100, lock_days: int = 30) -> None:
    """Deposit collateral and initialise the score of *owner*."""
    services.ledger.deposit(owner, None, units * UNIT, lock_days, signer=owner)
    services.scores.initialize(owner, signer=owner)


def open_contract(
    services: CreditServices,
    principal_units: int = 30,
    installment_count: int = 3,
    interval_days: int = 30,
    owner: str = OWNER,
):
    """Open a contract for *owner* paying ``MERCHANT``."""
    return services.contracts.create_contract(
        owner=owner,
        principal=principal_units * UNIT,
        installment_count=installment_count,
        interval_days=interval_days,
        merchant_id=MERCHANT,
        signer=owner,
    )
