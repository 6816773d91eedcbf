"""Service layer exports."""

from .collaborators import (
    AccessPolicy,
    BenefitResolver,
    Benefits,
    InMemoryYieldSink,
    StaticAccessPolicy,
    StaticBenefitResolver,
    YieldSink,
)
from .collateral_ledger import CollateralLedger
from .container import CreditServices, build_services
from .contract_manager import BNPLContractManager
from .credit_score_engine import CreditScoreEngine
from .custody import CustodyGateway, InMemoryCustodyGateway
from .repayment_keeper import RepaymentKeeper
from .repayment_processor import RepaymentProcessor, RepaymentReport

__all__ = [
    "AccessPolicy",
    "BenefitResolver",
    "Benefits",
    "InMemoryYieldSink",
    "StaticAccessPolicy",
    "StaticBenefitResolver",
    "YieldSink",
    "CollateralLedger",
    "CreditScoreEngine",
    "BNPLContractManager",
    "RepaymentProcessor",
    "RepaymentReport",
    "RepaymentKeeper",
    "CustodyGateway",
    "InMemoryCustodyGateway",
    "CreditServices",
    "build_services",
]
