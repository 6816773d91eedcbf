"""In-memory document store with optimistic, all-or-nothing transactions.

Documents live in ``collection -> doc_id -> payload`` dictionaries guarded by
one re-entrant lock. Work happens inside :meth:`DocumentStore.transaction`:

* reads remember the ``version`` of every document they return (``0`` when
  the document was absent);
* writes are staged on the transaction and stay invisible to other callers;
* commit takes the store lock, re-checks every remembered version, runs the
  queued external effects, and only then applies the staged writes.

A body that raises, a stale version, or a failing effect discards every
staged write. Nested ``transaction()`` calls on the same store join the
caller's transaction, so a service calling another service commits once.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from copy import deepcopy
from dataclasses import dataclass
import logging
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from uuid import uuid4

from stakecredit.models.exceptions import VersionConflictError


logger = logging.getLogger(__name__)

FilterTuple = Tuple[str, str, Any]
DocKey = Tuple[str, str]


def _version_of(payload: Optional[Dict[str, Any]]) -> int:
    if payload is None:
        return 0
    return int(payload.get("version", 1))


def _matches_filters(payload: Dict[str, Any], filters: Sequence[FilterTuple]) -> bool:
    """Evaluate query-like filters against one document."""
    for field_name, operator, expected_value in filters:
        actual_value = payload.get(field_name)
        if operator == "==":
            if actual_value != expected_value:
                return False
        elif operator == "!=":
            if actual_value == expected_value:
                return False
        elif operator == ">":
            if actual_value is None or actual_value <= expected_value:
                return False
        elif operator == ">=":
            if actual_value is None or actual_value < expected_value:
                return False
        elif operator == "<":
            if actual_value is None or actual_value >= expected_value:
                return False
        elif operator == "<=":
            if actual_value is None or actual_value > expected_value:
                return False
        elif operator == "in":
            if actual_value not in expected_value:
                return False
        else:
            raise ValueError("Unsupported filter operator: {0}".format(operator))
    return True


@dataclass
class _Effect:
    name: str
    apply: Callable[[], Any]
    compensate: Optional[Callable[[], Any]] = None


class StoreTransaction:
    """Unit of work staged against a :class:`DocumentStore`."""

    def __init__(self, store: "DocumentStore") -> None:
        self.txn_id = uuid4().hex[:12]
        self._store = store
        self._reads: Dict[DocKey, int] = {}
        self._writes: Dict[DocKey, Dict[str, Any]] = {}
        self._effects: List[_Effect] = []

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Read one document, preferring this transaction's staged copy."""
        key = (collection, doc_id)
        if key in self._writes:
            return deepcopy(self._writes[key])
        payload = self._store._read_committed(collection, doc_id)
        self._reads.setdefault(key, _version_of(payload))
        return payload

    def query(
        self,
        collection: str,
        filters: Optional[Sequence[FilterTuple]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Query committed documents overlaid with this transaction's writes."""
        committed = self._store._snapshot(collection)
        merged: Dict[str, Dict[str, Any]] = dict(committed)
        for (name, doc_id), payload in self._writes.items():
            if name == collection:
                merged[doc_id] = deepcopy(payload)
        rows = []
        for doc_id, payload in merged.items():
            if not _matches_filters(payload, filters or []):
                continue
            self._reads.setdefault((collection, doc_id), _version_of(committed.get(doc_id)))
            rows.append(payload)
        if order_by:
            rows.sort(key=lambda item: item.get(order_by))
        return rows

    def put(self, collection: str, doc_id: str, payload: Dict[str, Any]) -> None:
        """Stage a full document write."""
        self._writes[(collection, doc_id)] = deepcopy(payload)

    def add_effect(
        self,
        name: str,
        apply: Callable[[], Any],
        compensate: Optional[Callable[[], Any]] = None,
    ) -> None:
        """Queue an external side effect to run at commit time.

        Effects run in order, after version checks pass and before writes are
        applied. If one fails, the ``compensate`` callbacks of the effects that
        already ran are invoked in reverse order and the commit is aborted.
        """
        self._effects.append(_Effect(name=name, apply=apply, compensate=compensate))

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    def commit(self) -> None:
        """Validate reads, run effects, and publish writes atomically."""
        with self._store._lock:
            for (collection, doc_id), seen_version in self._reads.items():
                current = _version_of(self._store._memory_store.get(collection, {}).get(doc_id))
                if current != seen_version:
                    logger.warning(
                        "Transaction conflict txn=%s collection=%s doc_id=%s seen=%s current=%s",
                        self.txn_id,
                        collection,
                        doc_id,
                        seen_version,
                        current,
                    )
                    raise VersionConflictError(
                        "Document {0}/{1} changed during transaction".format(collection, doc_id)
                    )

            self._run_effects()

            for (collection, doc_id), payload in self._writes.items():
                self._store._memory_store.setdefault(collection, {})[doc_id] = payload
        logger.debug(
            "Transaction committed txn=%s writes=%d effects=%d",
            self.txn_id,
            len(self._writes),
            len(self._effects),
        )

    def _run_effects(self) -> None:
        completed: List[_Effect] = []
        for effect in self._effects:
            try:
                effect.apply()
            except Exception:
                logger.exception("Transaction effect failed txn=%s effect=%s", self.txn_id, effect.name)
                for done in reversed(completed):
                    if done.compensate is None:
                        continue
                    try:
                        done.compensate()
                    except Exception:
                        logger.exception(
                            "Compensation failed txn=%s effect=%s",
                            self.txn_id,
                            done.name,
                        )
                raise
            completed.append(effect)


class DocumentStore:
    """Thread-safe in-memory document store."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._memory_store: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._active: ContextVar[Optional[StoreTransaction]] = ContextVar(
            "stakecredit_txn_{0}".format(id(self)),
            default=None,
        )

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Open a transaction, or join the one already active in this context."""
        current = self._active.get()
        if current is not None:
            yield current
            return

        txn = StoreTransaction(self)
        token = self._active.set(txn)
        try:
            yield txn
            txn.commit()
        finally:
            self._active.reset(token)

    @property
    def in_transaction(self) -> bool:
        return self._active.get() is not None

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Read one document, through the active transaction when there is one."""
        txn = self._active.get()
        if txn is not None:
            return txn.get(collection, doc_id)
        return self._read_committed(collection, doc_id)

    def query(
        self,
        collection: str,
        filters: Optional[Sequence[FilterTuple]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Query documents, through the active transaction when there is one."""
        txn = self._active.get()
        if txn is not None:
            return txn.query(collection, filters=filters, order_by=order_by)
        rows = [
            payload
            for payload in self._snapshot(collection).values()
            if _matches_filters(payload, filters or [])
        ]
        if order_by:
            rows.sort(key=lambda item: item.get(order_by))
        return rows

    def _read_committed(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            payload = self._memory_store.get(collection, {}).get(doc_id)
            if payload is None:
                return None
            result = deepcopy(payload)
            result.setdefault("id", doc_id)
            return result

    def _snapshot(self, collection: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            bucket = self._memory_store.get(collection, {})
            result = {}
            for doc_id, payload in bucket.items():
                row = deepcopy(payload)
                row.setdefault("id", doc_id)
                result[doc_id] = row
            return result
