"""Persistence layer exports."""

from .memory_repositories import (
    MemoryCollateralRepository,
    MemoryContractRepository,
    MemoryCreditScoreRepository,
    MemoryLiquidationLogRepository,
)
from .memory_store import DocumentStore, StoreTransaction

__all__ = [
    "DocumentStore",
    "StoreTransaction",
    "MemoryCollateralRepository",
    "MemoryContractRepository",
    "MemoryCreditScoreRepository",
    "MemoryLiquidationLogRepository",
]
