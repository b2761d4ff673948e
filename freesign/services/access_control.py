"""
Per-recipient access tokens for anonymous signers.

A recipient holds at most one live token; issuing a new one replaces the
stored value, which invalidates every earlier link. Validation is repeated
on every request and fails closed with a single Unauthorized outcome.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from .. import models
from ..config import settings
from ..exceptions import Unauthorized

logger = logging.getLogger(__name__)

# 32 random bytes = 256 bits of entropy
TOKEN_BYTES = 32


def _utcnow():
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def issue_token(db: Session, recipient: models.Recipient, ttl: timedelta = None, commit: bool = True):
    """Generate a fresh token for ``recipient`` and return ``(token, expiry)``."""
    if ttl is None:
        ttl = timedelta(hours=settings.RECIPIENT_TOKEN_TTL_HOURS)

    token = secrets.token_urlsafe(TOKEN_BYTES)
    expiry = _utcnow() + ttl
    recipient.access_token = token
    recipient.token_expiry = expiry
    if commit:
        db.commit()
    else:
        db.flush()
    logger.info(
        "Access token issued",
        extra={"document_id": recipient.document_id, "recipient_id": recipient.id},
    )
    return token, expiry


def validate_token(db: Session, document_id: int, token: str) -> models.Recipient:
    if not token:
        raise Unauthorized(document_id=document_id)

    recipient = db.query(models.Recipient).filter(models.Recipient.access_token == token).first()

    valid = (
        recipient is not None
        and hmac.compare_digest(recipient.access_token, token)
        and recipient.document_id == document_id
        and recipient.token_expiry is not None
        and _as_utc(recipient.token_expiry) > _utcnow()
    )
    if not valid:
        logger.warning("Rejected recipient token", extra={"document_id": document_id})
        raise Unauthorized(document_id=document_id)
    return recipient


def signing_link(document_id: int, token: str) -> str:
    return f"{settings.APP_URL}/sign/{document_id}?recipient={token}"
