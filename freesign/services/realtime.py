"""
Fan-out of committed entity changes to viewers of a document.

Changes are captured from SQLAlchemy session events: rows are snapshotted
in ``after_flush`` and published in ``after_commit``, so a rolled-back
transaction never produces an event. Delivery is per subscriber through an
asyncio queue; there is no replay, a reconnecting client re-fetches state.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from .. import models

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"

ENTITIES = {
    models.Document: "document",
    models.Recipient: "recipient",
    models.SigningElement: "signing_element",
    models.Signature: "signature",
    models.AuditLogEntry: "audit_log_entry",
}
# Never leave the server
HIDDEN_FIELDS = {"access_token", "token_expiry", "hashed_password"}
# Owner-only: storage locations and the owning account
RECIPIENT_HIDDEN_FIELDS = {"file_path", "signed_file_path", "user_id"}

_PENDING_KEY = "freesign_realtime_pending"


@dataclass
class ChangeEvent:
    type: str
    entity: str
    document_id: int
    row_id: int
    data: Dict[str, Any]
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self, hidden=()):
        return {
            "event_id": self.event_id,
            "type": self.type,
            "entity": self.entity,
            "document_id": self.document_id,
            "row_id": self.row_id,
            "data": {key: value for key, value in self.data.items() if key not in hidden},
        }


class Subscription:
    def __init__(self, document_id: int, loop: asyncio.AbstractEventLoop, predicate=None):
        self.document_id = document_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()
        self.predicate: Optional[Callable[[ChangeEvent], bool]] = predicate

    def wants(self, change: ChangeEvent) -> bool:
        return self.predicate is None or self.predicate(change)

    async def get(self) -> ChangeEvent:
        return await self.queue.get()


class RealtimeHub:
    def __init__(self):
        self._subscriptions: Dict[int, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, document_id: int, predicate=None) -> Subscription:
        subscription = Subscription(document_id, asyncio.get_running_loop(), predicate)
        with self._lock:
            self._subscriptions.setdefault(document_id, []).append(subscription)
        logger.info("Viewer subscribed", extra={"document_id": document_id})
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscriptions.get(subscription.document_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.document_id, None)
        logger.info("Viewer unsubscribed", extra={"document_id": subscription.document_id})

    def subscriber_count(self, document_id: int) -> int:
        with self._lock:
            return len(self._subscriptions.get(document_id, []))

    def publish(self, change: ChangeEvent):
        # Called from whichever thread committed; hand off to each subscriber's loop
        with self._lock:
            subscribers = list(self._subscriptions.get(change.document_id, []))
        for subscription in subscribers:
            if not subscription.wants(change):
                continue
            try:
                subscription.loop.call_soon_threadsafe(subscription.queue.put_nowait, change)
            except RuntimeError:
                # Loop already closed: the viewer is gone
                self.unsubscribe(subscription)


hub = RealtimeHub()


def _document_id(obj) -> Optional[int]:
    if isinstance(obj, models.Document):
        return obj.id
    return getattr(obj, "document_id", None)


def snapshot(obj) -> Dict[str, Any]:
    state = inspect(obj)
    data = {}
    for attr in state.mapper.column_attrs:
        if attr.key in HIDDEN_FIELDS:
            continue
        data[attr.key] = state.dict.get(attr.key)
    return jsonable_encoder(data)


def _collect(session: Session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, [])
    for change_type, objects in ((INSERT, session.new), (UPDATE, session.dirty), (DELETE, session.deleted)):
        for obj in objects:
            entity = ENTITIES.get(type(obj))
            if entity is None:
                continue
            if change_type == UPDATE and not session.is_modified(obj, include_collections=False):
                continue
            document_id = _document_id(obj)
            if document_id is None:
                continue
            pending.append(ChangeEvent(change_type, entity, document_id, obj.id, snapshot(obj)))


def _publish(session: Session):
    pending = session.info.pop(_PENDING_KEY, [])
    for change in pending:
        hub.publish(change)


def _discard(session: Session, previous_transaction=None):
    session.info.pop(_PENDING_KEY, None)


def install(target=Session):
    """Attach change capture to ``target`` (a Session class or sessionmaker)."""
    if not event.contains(target, "after_flush", _collect):
        event.listen(target, "after_flush", _collect)
        event.listen(target, "after_commit", _publish)
        event.listen(target, "after_soft_rollback", _discard)


install()
