"""
Sending a prepared document to its recipients.

The gateway only delivers invitations. ``send_for_signature`` checks the
preconditions, issues one token per recipient, hands the links to the
gateway and records ``sent`` only once the gateway reports success. On any
failure the transaction is rolled back so the document stays a draft and
the call can simply be repeated.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import requests
from sqlalchemy.orm import Session

from .. import models
from ..config import settings
from ..exceptions import DispatchError
from ..schemas import DocumentSentEvent
from . import access_control, audit, lifecycle

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass
class Invitation:
    recipient_id: int
    name: str
    email: str
    link: str


@dataclass
class DispatchResult:
    success: bool
    error: Optional[str] = None


def render_invitation_email(sender_name: str, document_name: str, invitation: Invitation, message: Optional[str]):
    subject = f"{sender_name} has sent you {document_name} to sign"
    lines = [f"Hello {invitation.name},", "", f"{sender_name} has requested your signature on \"{document_name}\"."]
    if message:
        lines += ["", message]
    lines += ["", f"Review and sign: {invitation.link}", "", "This link is personal to you. Do not forward it."]
    return subject, "\n".join(lines)


class DispatchGateway:
    def send(self, document: models.Document, invitations: List[Invitation], message: Optional[str]) -> DispatchResult:
        raise NotImplementedError


class LoggingDispatchGateway(DispatchGateway):
    """Writes the signing links to the log instead of emailing them."""

    def send(self, document, invitations, message):
        for invitation in invitations:
            logger.info(
                f"SENDING EMAIL TO {invitation.email}: {invitation.link}",
                extra={"document_id": document.id, "recipient_id": invitation.recipient_id},
            )
        return DispatchResult(success=True)


class SendGridDispatchGateway(DispatchGateway):
    def __init__(self, api_key: str, sender_email: str, sender_name: str, timeout: float = 10):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.timeout = timeout

    def send(self, document, invitations, message):
        owner_name = document.owner.display_name if document.owner else self.sender_name
        for invitation in invitations:
            subject, body = render_invitation_email(owner_name, document.name, invitation, message)
            payload = {
                "personalizations": [{"to": [{"email": invitation.email, "name": invitation.name}]}],
                "from": {"email": self.sender_email, "name": self.sender_name},
                "subject": subject,
                "content": [{"type": "text/plain", "value": body}],
            }
            try:
                response = requests.post(
                    SENDGRID_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                return DispatchResult(success=False, error=str(e))
            if response.status_code >= 400:
                return DispatchResult(success=False, error=f"SendGrid returned {response.status_code}")
        return DispatchResult(success=True)


def get_gateway() -> DispatchGateway:
    if settings.SENDGRID_API_KEY:
        return SendGridDispatchGateway(settings.SENDGRID_API_KEY, settings.EMAIL_FROM, settings.EMAIL_FROM_NAME)
    return LoggingDispatchGateway()


def send_for_signature(
    db: Session,
    document: models.Document,
    gateway: DispatchGateway,
    message: Optional[str] = None,
    client_info=None,
) -> models.Document:
    recipients = lifecycle.ensure_dispatchable(db, document)
    document_id = document.id

    try:
        invitations = []
        for recipient in recipients:
            token, _ = access_control.issue_token(db, recipient, commit=False)
            invitations.append(
                Invitation(
                    recipient_id=recipient.id,
                    name=recipient.name,
                    email=recipient.email,
                    link=access_control.signing_link(document.id, token),
                )
            )
        result = gateway.send(document, invitations, message)
    except Exception:
        db.rollback()
        logger.exception("Dispatch gateway raised", extra={"document_id": document_id})
        raise DispatchError(document_id=document_id)

    if not result.success:
        db.rollback()
        logger.error(f"Dispatch failed: {result.error}", extra={"document_id": document_id})
        raise DispatchError(result.error or DispatchError.detail, document_id=document_id)

    document.status = models.DocumentStatus.SENT.value
    audit.record(
        db,
        DocumentSentEvent(recipient_ids=[r.id for r in recipients], message=message),
        document.id,
        client_info,
    )
    db.commit()
    db.refresh(document)
    logger.info("Document sent", extra={"document_id": document.id})
    return document
