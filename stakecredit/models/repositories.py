"""Repository interfaces for datastore-agnostic model access."""

from abc import ABC, abstractmethod
from datetime import datetime
import logging
from typing import List, Optional

from .collaterals import CollateralPositionModel
from .contracts import ContractModel
from .credit_scores import CreditScoreModel
from .exceptions import ModelNotFoundError, VersionConflictError
from .liquidation_logs import LiquidationLogModel


logger = logging.getLogger(__name__)


class BaseRepository(ABC):
    """Common contract for create, read, and versioned update operations."""

    @abstractmethod
    def create(self, model):
        """Persist a new model.

        Raises:
            VersionConflictError: If a document with the same id already exists.
        """

    @abstractmethod
    def get_by_id(self, model_id: str):
        """Return model by identifier.

        Raises:
            ModelNotFoundError: If the document does not exist.
        """

    @abstractmethod
    def find(self, model_id: str):
        """Return model by identifier or ``None``."""

    @abstractmethod
    def update(self, model):
        """Update existing model with optimistic version check.

        Raises:
            ModelNotFoundError: If the document does not exist.
            VersionConflictError: If version does not match persisted document.
        """


class CollateralRepository(BaseRepository):
    """Collateral position data access abstraction."""

    @abstractmethod
    def create(self, model: CollateralPositionModel) -> CollateralPositionModel:
        """Persist a new position."""

    @abstractmethod
    def get_by_id(self, model_id: str) -> CollateralPositionModel:
        """Fetch a position by ``owner:asset`` identifier."""

    @abstractmethod
    def find(self, model_id: str) -> Optional[CollateralPositionModel]:
        """Fetch a position or ``None``."""

    @abstractmethod
    def update(self, model: CollateralPositionModel) -> CollateralPositionModel:
        """Update a position."""

    @abstractmethod
    def get_by_owner(self, owner: str) -> List[CollateralPositionModel]:
        """Return every position held by *owner*."""


class ContractRepository(BaseRepository):
    """Contract data access abstraction."""

    @abstractmethod
    def create(self, model: ContractModel) -> ContractModel:
        """Persist a new contract."""

    @abstractmethod
    def get_by_id(self, model_id: str) -> ContractModel:
        """Fetch a contract by identifier."""

    @abstractmethod
    def find(self, model_id: str) -> Optional[ContractModel]:
        """Fetch a contract or ``None``."""

    @abstractmethod
    def update(self, model: ContractModel) -> ContractModel:
        """Update a contract."""

    @abstractmethod
    def get_by_owner(self, owner: str) -> List[ContractModel]:
        """Return all contracts of *owner*, oldest first."""

    @abstractmethod
    def get_active(self) -> List[ContractModel]:
        """Return every ACTIVE contract."""

    @abstractmethod
    def count_created_since(self, owner: str, since: datetime) -> int:
        """Count non-cancelled contracts created by *owner* at or after *since*."""


class CreditScoreRepository(BaseRepository):
    """Credit score data access abstraction."""

    @abstractmethod
    def create(self, model: CreditScoreModel) -> CreditScoreModel:
        """Persist a new score record."""

    @abstractmethod
    def get_by_id(self, model_id: str) -> CreditScoreModel:
        """Fetch a score record by owner."""

    @abstractmethod
    def find(self, model_id: str) -> Optional[CreditScoreModel]:
        """Fetch a score record or ``None``."""

    @abstractmethod
    def update(self, model: CreditScoreModel) -> CreditScoreModel:
        """Update a score record."""


class LiquidationLogRepository(BaseRepository):
    """Liquidation log data access abstraction."""

    @abstractmethod
    def create(self, model: LiquidationLogModel) -> LiquidationLogModel:
        """Persist liquidation log."""

    @abstractmethod
    def get_by_id(self, model_id: str) -> LiquidationLogModel:
        """Fetch liquidation log by identifier."""

    @abstractmethod
    def find(self, model_id: str) -> Optional[LiquidationLogModel]:
        """Fetch liquidation log or ``None``."""

    @abstractmethod
    def update(self, model: LiquidationLogModel) -> LiquidationLogModel:
        """Update liquidation log document."""

    @abstractmethod
    def get_by_contract_id(self, contract_id: str) -> List[LiquidationLogModel]:
        """Fetch liquidation logs for a contract."""


__all__ = [
    "ModelNotFoundError",
    "VersionConflictError",
    "BaseRepository",
    "CollateralRepository",
    "ContractRepository",
    "CreditScoreRepository",
    "LiquidationLogRepository",
]
