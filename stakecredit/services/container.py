"""Wires repositories, collaborators and services into one object graph."""

from dataclasses import dataclass
import logging
from typing import Optional

from stakecredit.core.clock import Clock, SystemClock
from stakecredit.core.config import AppSettings
from stakecredit.repositories.memory_repositories import (
    MemoryCollateralRepository,
    MemoryContractRepository,
    MemoryCreditScoreRepository,
    MemoryLiquidationLogRepository,
)
from stakecredit.repositories.memory_store import DocumentStore

from .collaborators import (
    AccessPolicy,
    BenefitResolver,
    InMemoryYieldSink,
    StaticAccessPolicy,
    StaticBenefitResolver,
    YieldSink,
)
from .collateral_ledger import CollateralLedger
from .contract_manager import BNPLContractManager
from .credit_score_engine import CreditScoreEngine
from .custody import CustodyGateway, InMemoryCustodyGateway
from .repayment_keeper import RepaymentKeeper
from .repayment_processor import RepaymentProcessor


logger = logging.getLogger(__name__)


@dataclass
class CreditServices:
    """Every long-lived component of one credit core instance."""

    settings: AppSettings
    clock: Clock
    store: DocumentStore
    custody: CustodyGateway
    access_policy: AccessPolicy
    benefits: BenefitResolver
    yield_sink: YieldSink
    ledger: CollateralLedger
    scores: CreditScoreEngine
    contracts: BNPLContractManager
    processor: RepaymentProcessor
    keeper: RepaymentKeeper


def build_services(
    settings: AppSettings,
    clock: Optional[Clock] = None,
    store: Optional[DocumentStore] = None,
    custody: Optional[CustodyGateway] = None,
    access_policy: Optional[AccessPolicy] = None,
    benefits: Optional[BenefitResolver] = None,
    yield_sink: Optional[YieldSink] = None,
) -> CreditServices:
    """Build the credit core with in-memory defaults for any collaborator not given."""
    clock = clock or SystemClock()
    store = store or DocumentStore()
    custody = custody or InMemoryCustodyGateway()
    access_policy = access_policy or StaticAccessPolicy.from_settings(settings)
    benefits = benefits or StaticBenefitResolver.from_settings(settings)
    yield_sink = yield_sink or InMemoryYieldSink(clock=clock)
    policy = settings.protocol

    ledger = CollateralLedger(
        store=store,
        positions=MemoryCollateralRepository(store),
        custody=custody,
        access_policy=access_policy,
        clock=clock,
        policy=policy,
    )
    scores = CreditScoreEngine(
        store=store,
        scores=MemoryCreditScoreRepository(store),
        access_policy=access_policy,
        clock=clock,
        policy=policy,
    )
    contracts = BNPLContractManager(
        store=store,
        contracts=MemoryContractRepository(store),
        ledger=ledger,
        scores=scores,
        custody=custody,
        benefits=benefits,
        access_policy=access_policy,
        yield_sink=yield_sink,
        clock=clock,
        policy=policy,
    )
    processor = RepaymentProcessor(
        store=store,
        manager=contracts,
        ledger=ledger,
        scores=scores,
        logs=MemoryLiquidationLogRepository(store),
        custody=custody,
        access_policy=access_policy,
        clock=clock,
        policy=policy,
    )
    keeper = RepaymentKeeper(
        processor,
        poll_interval_sec=settings.keeper_poll_interval_sec,
        enabled=settings.keeper_enabled,
    )
    logger.info("Credit services built default_asset=%s", policy.default_asset)
    return CreditServices(
        settings=settings,
        clock=clock,
        store=store,
        custody=custody,
        access_policy=access_policy,
        benefits=benefits,
        yield_sink=yield_sink,
        ledger=ledger,
        scores=scores,
        contracts=contracts,
        processor=processor,
        keeper=keeper,
    )
