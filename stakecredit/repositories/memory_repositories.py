"""Store-backed repository implementations for credit domain models."""

from datetime import datetime
import logging
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from stakecredit.models.base import BaseDocumentModel
from stakecredit.models.collaterals import CollateralPositionModel, position_key
from stakecredit.models.contracts import ContractModel
from stakecredit.models.credit_scores import CreditScoreModel
from stakecredit.models.enums import ContractStatus
from stakecredit.models.exceptions import ModelNotFoundError, VersionConflictError
from stakecredit.models.liquidation_logs import LiquidationLogModel
from stakecredit.models.repositories import (
    CollateralRepository,
    ContractRepository,
    CreditScoreRepository,
    LiquidationLogRepository,
)

from .memory_store import DocumentStore


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseDocumentModel)


class _DocumentRepository(Generic[ModelT]):
    """Shared create/read/update logic over one store collection."""

    collection: str = ""
    model_cls: Type[ModelT]
    key_fn: Callable[[Any], str]

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def _key(self, model: ModelT) -> str:
        return type(self).key_fn(model)

    def _parse(self, payload: Dict[str, Any]) -> ModelT:
        return self.model_cls.from_document(payload, doc_id=payload.get("id"))  # type: ignore[return-value]

    def create(self, model: ModelT) -> ModelT:
        doc_id = self._key(model)
        with self._store.transaction() as txn:
            if txn.get(self.collection, doc_id) is not None:
                raise VersionConflictError("{0} already exists: {1}".format(self.collection, doc_id))
            model.id = doc_id
            model.version = 1
            txn.put(self.collection, doc_id, model.to_document())
        return model

    def find(self, model_id: str) -> Optional[ModelT]:
        payload = self._store.get(self.collection, model_id)
        if payload is None or payload.get("is_deleted", False):
            return None
        return self._parse(payload)

    def get_by_id(self, model_id: str) -> ModelT:
        model = self.find(model_id)
        if model is None:
            raise ModelNotFoundError("{0} not found: {1}".format(self.collection, model_id))
        return model

    def update(self, model: ModelT) -> ModelT:
        doc_id = self._key(model)
        with self._store.transaction() as txn:
            current = txn.get(self.collection, doc_id)
            if current is None:
                raise ModelNotFoundError("{0} not found: {1}".format(self.collection, doc_id))
            if int(current.get("version", 1)) != model.version:
                raise VersionConflictError(
                    "{0}/{1} version mismatch stored={2} given={3}".format(
                        self.collection,
                        doc_id,
                        current.get("version"),
                        model.version,
                    )
                )
            model.version = model.version + 1
            txn.put(self.collection, doc_id, model.to_document())
        return model

    def _query(self, filters, order_by: Optional[str] = None) -> List[ModelT]:
        rows = self._store.query(self.collection, filters=filters, order_by=order_by)
        return [self._parse(row) for row in rows if not row.get("is_deleted", False)]


class MemoryCollateralRepository(_DocumentRepository[CollateralPositionModel], CollateralRepository):
    collection = "collateral_positions"
    model_cls = CollateralPositionModel
    key_fn = staticmethod(lambda model: position_key(model.owner, model.asset))

    def get_by_owner(self, owner: str) -> List[CollateralPositionModel]:
        return self._query([("owner", "==", owner)], order_by="asset")


class MemoryContractRepository(_DocumentRepository[ContractModel], ContractRepository):
    collection = "contracts"
    model_cls = ContractModel
    key_fn = staticmethod(lambda model: model.contract_id)

    def get_by_owner(self, owner: str) -> List[ContractModel]:
        return self._query([("owner", "==", owner)], order_by="nonce")

    def get_active(self) -> List[ContractModel]:
        return self._query([("status", "==", ContractStatus.ACTIVE)], order_by="created_at")

    def count_created_since(self, owner: str, since: datetime) -> int:
        rows = self._query(
            [
                ("owner", "==", owner),
                ("created_at", ">=", since),
                ("status", "!=", ContractStatus.CANCELLED),
            ]
        )
        return len(rows)


class MemoryCreditScoreRepository(_DocumentRepository[CreditScoreModel], CreditScoreRepository):
    collection = "credit_scores"
    model_cls = CreditScoreModel
    key_fn = staticmethod(lambda model: model.owner)


class MemoryLiquidationLogRepository(_DocumentRepository[LiquidationLogModel], LiquidationLogRepository):
    collection = "liquidation_logs"
    model_cls = LiquidationLogModel
    key_fn = staticmethod(lambda model: model.log_id)

    def get_by_contract_id(self, contract_id: str) -> List[LiquidationLogModel]:
        return self._query([("contract_id", "==", contract_id)], order_by="triggered_at")
