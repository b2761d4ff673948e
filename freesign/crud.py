"""
Document-scoped reads and writes shared by the owner and recipient routers.

Lookups that fail for any reason (unknown id, another owner's document,
an id that belongs to a different document) raise the same NotFoundError.
"""

import logging

from sqlalchemy.orm import Session

from . import models
from .exceptions import ConflictError, NotFoundError
from .services import lifecycle

logger = logging.getLogger(__name__)


def get_owned_document(db: Session, document_id: int, user: models.User) -> models.Document:
    document = (
        db.query(models.Document)
        .filter(models.Document.id == document_id, models.Document.user_id == user.id)
        .first()
    )
    if not document:
        raise NotFoundError("Document not found", document_id=document_id)
    return document


def list_documents(db: Session, user: models.User):
    return (
        db.query(models.Document)
        .filter(models.Document.user_id == user.id)
        .order_by(models.Document.id)
        .all()
    )


def create_document(db: Session, user: models.User, name: str, file_path=None, page_sizes=None) -> models.Document:
    document = models.Document(
        user_id=user.id,
        name=name,
        file_path=file_path,
        page_sizes=page_sizes,
        status=models.DocumentStatus.DRAFT.value,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("Document created", extra={"document_id": document.id})
    return document


def get_recipient(db: Session, document: models.Document, recipient_id: int) -> models.Recipient:
    recipient = (
        db.query(models.Recipient)
        .filter(models.Recipient.id == recipient_id, models.Recipient.document_id == document.id)
        .first()
    )
    if not recipient:
        raise NotFoundError("Recipient not found", document_id=document.id, recipient_id=recipient_id)
    return recipient


def create_recipient(db: Session, document: models.Document, name: str, email: str) -> models.Recipient:
    if document.status == models.DocumentStatus.COMPLETED.value:
        raise ConflictError("Cannot add recipients to a completed document", document_id=document.id)

    email = email.strip().lower()
    existing = (
        db.query(models.Recipient)
        .filter(models.Recipient.document_id == document.id, models.Recipient.email == email)
        .first()
    )
    if existing:
        raise ConflictError("A recipient with this email already exists on the document", document_id=document.id)

    recipient = models.Recipient(
        document_id=document.id,
        name=name.strip(),
        email=email,
        status=models.RecipientStatus.PENDING.value,
    )
    db.add(recipient)
    db.commit()
    db.refresh(recipient)
    logger.info("Recipient added", extra={"document_id": document.id, "recipient_id": recipient.id})
    return recipient


def delete_recipient(db: Session, recipient: models.Recipient):
    signed = (
        db.query(models.Signature.id).filter(models.Signature.recipient_id == recipient.id).first()
        or any(e.is_signed for e in recipient.elements)
    )
    if signed:
        raise ConflictError(
            "Cannot remove a recipient who has signed",
            document_id=recipient.document_id,
            recipient_id=recipient.id,
        )
    document = recipient.document
    document_id, recipient_id = document.id, recipient.id
    db.delete(recipient)
    # Removing the last pending signer can complete the document
    lifecycle.recompute_status(db, document)
    db.commit()
    logger.info("Recipient removed", extra={"document_id": document_id, "recipient_id": recipient_id})


def get_element(db: Session, document: models.Document, element_id: int) -> models.SigningElement:
    element = (
        db.query(models.SigningElement)
        .filter(models.SigningElement.id == element_id, models.SigningElement.document_id == document.id)
        .first()
    )
    if not element:
        raise NotFoundError("Element not found", document_id=document.id, element_id=element_id)
    return element


def list_elements(db: Session, document: models.Document, recipient: models.Recipient = None):
    query = db.query(models.SigningElement).filter(models.SigningElement.document_id == document.id)
    if recipient is not None:
        query = query.filter(models.SigningElement.recipient_id == recipient.id)
    return query.order_by(models.SigningElement.id).all()


def list_audit_entries(db: Session, document: models.Document):
    return (
        db.query(models.AuditLogEntry)
        .filter(models.AuditLogEntry.document_id == document.id)
        .order_by(models.AuditLogEntry.id)
        .all()
    )
