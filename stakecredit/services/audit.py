"""Audit-friendly event trail written alongside every state transition."""

from datetime import datetime
import logging
from typing import Any, Dict, List
from uuid import uuid4

from stakecredit.repositories.memory_store import DocumentStore


logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "events"


def new_id(prefix: str) -> str:
    """Generate a prefixed unique identifier."""
    return "{0}_{1}".format(prefix, uuid4().hex[:16])


def record_event(
    store: DocumentStore,
    event_type: str,
    actor: str,
    payload: Dict[str, Any],
    now: datetime,
) -> Dict[str, Any]:
    """Stage an audit event in the active transaction, or write it directly."""
    event_id = new_id("evt")
    event_payload = {
        "event_id": event_id,
        "event_type": event_type,
        "actor": actor,
        "payload": payload,
        "created_at": now,
        "updated_at": now,
    }
    with store.transaction() as txn:
        txn.put(EVENTS_COLLECTION, event_id, event_payload)
    return event_payload


def list_events(store: DocumentStore, limit: int = 100) -> List[Dict[str, Any]]:
    """Return the most recent events, newest first."""
    rows = store.query(EVENTS_COLLECTION, order_by="created_at")
    rows.reverse()
    return rows[: int(limit)]
