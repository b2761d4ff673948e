import logging
from typing import Optional

from sqlalchemy.orm import Session

from .. import models
from ..schemas import ClientInfo

logger = logging.getLogger(__name__)


def build_entry(
    event,
    document_id: Optional[int],
    client_info: Optional[ClientInfo] = None,
    signature_id: Optional[int] = None,
) -> models.AuditLogEntry:
    """Create (but do not commit) an audit entry for a typed ``event`` payload."""
    geolocation = None
    if client_info is not None and client_info.geolocation is not None:
        geolocation = client_info.geolocation.model_dump()
    return models.AuditLogEntry(
        signature_id=signature_id,
        document_id=document_id,
        event_type=event.event_type,
        event_data=event.model_dump(mode="json"),
        ip_address=client_info.ip if client_info else None,
        user_agent=client_info.user_agent if client_info else None,
        geolocation=geolocation,
    )


def record(
    db: Session,
    event,
    document_id: Optional[int],
    client_info: Optional[ClientInfo] = None,
    signature_id: Optional[int] = None,
) -> models.AuditLogEntry:
    """Add an audit entry to the current transaction; the caller commits."""
    entry = build_entry(event, document_id, client_info, signature_id)
    db.add(entry)
    logger.info(
        "Audit event %s",
        event.event_type,
        extra={"document_id": document_id, "signature_id": signature_id, "event_type": event.event_type},
    )
    return entry


def has_event(db: Session, signature_id: int, event_type: str) -> bool:
    return (
        db.query(models.AuditLogEntry.id)
        .filter(
            models.AuditLogEntry.signature_id == signature_id,
            models.AuditLogEntry.event_type == event_type,
        )
        .first()
        is not None
    )
