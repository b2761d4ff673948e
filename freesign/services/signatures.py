"""
Signature capture and verification.

A signature captured against a document carries a SHA-256 verification
hash over ``artifact || signer identity || timestamp || document id``.
Verification recomputes that hash from the stored row; it is the only
source of truth for "this signature is intact".

Capture is two transactions: the signature row first, then its
``signature_created`` audit entry together with the signature fields it
fills. If the second one fails the signature is kept and
AuditLogWriteError tells the caller to retry the audit write.
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..exceptions import AuditLogWriteError, ConflictError, NotFoundError, ValidationError
from ..schemas import ClientInfo, SignatureCreatedEvent, Signer, VerificationInfo
from . import audit

logger = logging.getLogger(__name__)


def compute_verification_hash(artifact: str, signer_identity: str, timestamp: str, document_id) -> str:
    data = f"{artifact}{signer_identity}{timestamp}{document_id}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def capture_signature(
    db: Session,
    signer: Union[models.User, models.Recipient],
    signature_type: str,
    artifact: str,
    client_info: ClientInfo,
    document_id: Optional[int] = None,
) -> models.Signature:
    if not artifact:
        raise ValidationError("Signature image is required")
    if isinstance(signer, models.Recipient) and signer.status == models.RecipientStatus.COMPLETED.value:
        raise ConflictError("Recipient has already completed signing", recipient_id=signer.id)
    signature_type = models.SignatureType(signature_type).value

    signature = models.Signature(
        type=signature_type,
        data_url=artifact,
        document_id=document_id,
        signed_at=client_info.timestamp,
        ip_address=client_info.ip,
        user_agent=client_info.user_agent,
        geolocation=client_info.geolocation.model_dump() if client_info.geolocation else None,
    )
    if isinstance(signer, models.Recipient):
        signature.recipient_id = signer.id
    else:
        signature.user_id = signer.id

    if document_id is not None:
        signature.verification_hash = compute_verification_hash(
            artifact, signature.signer_identity, client_info.timestamp, document_id
        )

    db.add(signature)
    db.commit()
    db.refresh(signature)
    logger.info(
        "Signature captured",
        extra={"signature_id": signature.id, "document_id": document_id, "recipient_id": signature.recipient_id},
    )

    if document_id is not None:
        _record_capture(db, signature, client_info)
    return signature


def _fill_signature_elements(db: Session, signature: models.Signature):
    if signature.recipient_id is None or signature.document_id is None:
        return []
    elements = (
        db.query(models.SigningElement)
        .filter(
            models.SigningElement.document_id == signature.document_id,
            models.SigningElement.recipient_id == signature.recipient_id,
            models.SigningElement.type.in_(models.SIGNATURE_ELEMENT_TYPES),
            models.SigningElement.signature_id.is_(None),
        )
        .all()
    )
    for element in elements:
        element.value = signature.data_url
        element.signature_id = signature.id
    return elements


def _record_capture(db: Session, signature: models.Signature, client_info: ClientInfo):
    signature_id, document_id = signature.id, signature.document_id
    try:
        filled = _fill_signature_elements(db, signature)
        db.flush()
        event = SignatureCreatedEvent(
            signature_type=signature.type,
            signer=signature.signer_identity,
            signed_at=signature.signed_at,
            filled_element_ids=[e.id for e in filled],
        )
        audit.record(db, event, signature.document_id, client_info, signature_id=signature.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Audit log write failed for stored signature",
            extra={"signature_id": signature_id, "document_id": document_id},
        )
        raise AuditLogWriteError(signature_id, document_id=document_id)


def get_signature(db: Session, signature_id: int) -> models.Signature:
    signature = db.query(models.Signature).filter(models.Signature.id == signature_id).first()
    if not signature:
        raise NotFoundError("Signature not found", signature_id=signature_id)
    return signature


def retry_audit_log(db: Session, signature: models.Signature) -> bool:
    """Write the missing ``signature_created`` entry. Returns False if it already existed."""
    if signature.document_id is None:
        raise ValidationError("Signature is not bound to a document", signature_id=signature.id)
    if audit.has_event(db, signature.id, models.AuditEventType.SIGNATURE_CREATED.value):
        return False

    client_info = ClientInfo(
        timestamp=signature.signed_at,
        user_agent=signature.user_agent,
        ip=signature.ip_address,
        geolocation=signature.geolocation,
    )
    _record_capture(db, signature, client_info)
    return True


def verify_signature(db: Session, signature_id: int, document_id) -> dict:
    signature = get_signature(db, signature_id)
    is_valid = False
    if signature.verification_hash:
        expected = compute_verification_hash(
            signature.data_url, signature.signer_identity, signature.signed_at, document_id
        )
        is_valid = hmac.compare_digest(expected, signature.verification_hash)
    if not is_valid:
        logger.warning(
            "Signature failed verification",
            extra={"signature_id": signature_id, "document_id": document_id},
        )
    return {
        "is_valid": is_valid,
        "signed_by": _signer(signature),
        "timestamp": signature.signed_at,
    }


def _signer(signature: models.Signature) -> Signer:
    if signature.recipient is not None:
        return Signer(name=signature.recipient.name, email=signature.recipient.email)
    if signature.user is not None:
        return Signer(name=signature.user.display_name, email=signature.user.email)
    return Signer()


def get_verification_info(db: Session, signature_id: int, document_id: int) -> VerificationInfo:
    result = verify_signature(db, signature_id, document_id)
    signature = get_signature(db, signature_id)
    return VerificationInfo(
        is_valid=result["is_valid"],
        timestamp=result["timestamp"],
        signed_by=result["signed_by"],
        document_id=document_id,
        verification_hash=signature.verification_hash,
    )
