"""
Document lifecycle: draft -> sent -> partially_signed -> completed.

Only dispatch moves a document out of draft. After that the status is
derived from recipient states alone and recomputed after every recipient
status write; it never moves backwards and is never taken from a client.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from .. import models
from ..exceptions import ConflictError, PreconditionError, ValidationError
from ..schemas import DocumentCompletedEvent, RecipientCompletedEvent, RecipientViewedEvent
from . import audit

logger = logging.getLogger(__name__)

DocumentStatus = models.DocumentStatus
RecipientStatus = models.RecipientStatus

DOCUMENT_ORDER = [
    DocumentStatus.DRAFT.value,
    DocumentStatus.SENT.value,
    DocumentStatus.PARTIALLY_SIGNED.value,
    DocumentStatus.COMPLETED.value,
]
RECIPIENT_ORDER = [
    RecipientStatus.PENDING.value,
    RecipientStatus.VIEWED.value,
    RecipientStatus.COMPLETED.value,
]


def ensure_dispatchable(db: Session, document: models.Document):
    if document.status != DocumentStatus.DRAFT.value:
        raise PreconditionError("Document has already been sent", document_id=document.id)

    recipients = db.query(models.Recipient).filter(models.Recipient.document_id == document.id).all()
    if not recipients:
        raise PreconditionError("Add at least one recipient before sending", document_id=document.id)

    for recipient in recipients:
        has_element = (
            db.query(models.SigningElement.id)
            .filter(models.SigningElement.recipient_id == recipient.id)
            .first()
        )
        if not has_element:
            raise PreconditionError(
                f"Recipient {recipient.email} has no fields to sign",
                document_id=document.id,
                recipient_id=recipient.id,
            )
    return recipients


def derive_status(current: str, recipient_statuses) -> str:
    if current == DocumentStatus.DRAFT.value:
        return current

    statuses = list(recipient_statuses)
    completed = [s for s in statuses if s == RecipientStatus.COMPLETED.value]
    if statuses and len(completed) == len(statuses):
        return DocumentStatus.COMPLETED.value
    if completed:
        return DocumentStatus.PARTIALLY_SIGNED.value
    return DocumentStatus.SENT.value


def recompute_status(db: Session, document: models.Document, client_info=None) -> str:
    """Bring ``document.status`` up to date with its recipients (no commit)."""
    db.flush()
    rows = db.query(models.Recipient.id, models.Recipient.status).filter(
        models.Recipient.document_id == document.id
    ).all()
    derived = derive_status(document.status, [status for _, status in rows])

    if DOCUMENT_ORDER.index(derived) > DOCUMENT_ORDER.index(document.status):
        logger.info(
            "Document status %s -> %s",
            document.status,
            derived,
            extra={"document_id": document.id},
        )
        document.status = derived
        if derived == DocumentStatus.COMPLETED.value:
            event = DocumentCompletedEvent(recipient_ids=[recipient_id for recipient_id, _ in rows])
            audit.record(db, event, document.id, client_info)
    return document.status


def advance_recipient(db: Session, recipient: models.Recipient, target: str, client_info=None) -> models.Recipient:
    target = RecipientStatus(target).value
    current_rank = RECIPIENT_ORDER.index(recipient.status)
    target_rank = RECIPIENT_ORDER.index(target)

    if target_rank < current_rank:
        raise ConflictError(
            f"Recipient status cannot go from {recipient.status} back to {target}",
            document_id=recipient.document_id,
            recipient_id=recipient.id,
        )
    if target_rank == current_rank:
        return recipient

    recipient.status = target
    if target == RecipientStatus.VIEWED.value:
        audit.record(db, RecipientViewedEvent(recipient_id=recipient.id), recipient.document_id, client_info)
    elif target == RecipientStatus.COMPLETED.value:
        recipient.completed_at = datetime.now(timezone.utc)
        audit.record(db, RecipientCompletedEvent(recipient_id=recipient.id), recipient.document_id, client_info)

    recompute_status(db, recipient.document, client_info)
    db.commit()
    db.refresh(recipient)
    return recipient


def mark_viewed(db: Session, recipient: models.Recipient, client_info=None) -> models.Recipient:
    if recipient.status != RecipientStatus.PENDING.value:
        return recipient
    return advance_recipient(db, recipient, RecipientStatus.VIEWED.value, client_info)


def complete_recipient(db: Session, recipient: models.Recipient, client_info=None) -> models.Recipient:
    if recipient.status == RecipientStatus.COMPLETED.value:
        raise ConflictError("Recipient has already completed signing", recipient_id=recipient.id)

    missing = [
        element.id
        for element in db.query(models.SigningElement)
        .filter(
            models.SigningElement.document_id == recipient.document_id,
            models.SigningElement.recipient_id == recipient.id,
        )
        .all()
        if element.required and not element.is_filled
    ]
    if missing:
        raise ValidationError(
            f"{len(missing)} required field(s) still need to be filled",
            document_id=recipient.document_id,
            recipient_id=recipient.id,
        )
    return advance_recipient(db, recipient, RecipientStatus.COMPLETED.value, client_info)


def assert_status_claim(db: Session, document: models.Document, claimed: str) -> str:
    """Reject a client-asserted status that recipient states do not support."""
    claimed = DocumentStatus(claimed).value
    actual = recompute_status(db, document)
    db.commit()
    if claimed != actual:
        raise ConflictError(
            f"Document status is {actual}, not {claimed}",
            document_id=document.id,
        )
    return actual
