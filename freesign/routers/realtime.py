import asyncio
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from .. import models
from ..database import get_db
from ..exceptions import FreeSignError
from ..services import access_control
from ..services.realtime import RECIPIENT_HIDDEN_FIELDS, hub
from .users import user_from_token

logger = logging.getLogger(__name__)

router = APIRouter()


def recipient_filter(recipient_id: int):
    """Events a recipient is allowed to see: the document, itself, its own fields."""

    def allowed(change):
        if change.entity == "document":
            return True
        if change.entity == "recipient":
            return change.row_id == recipient_id
        if change.entity == "signing_element":
            return change.data.get("recipient_id") == recipient_id
        return False

    return allowed


def authorize_viewer(db: Session, document_id: int, token: str = None, recipient: str = None):
    """Return the event filter for this viewer, or None when access is denied."""
    if token:
        user = user_from_token(db, token)
        if user is None:
            return None
        document = (
            db.query(models.Document)
            .filter(models.Document.id == document_id, models.Document.user_id == user.id)
            .first()
        )
        return (lambda change: True) if document else None
    if recipient:
        try:
            signer = access_control.validate_token(db, document_id, recipient)
        except FreeSignError:
            return None
        return recipient_filter(signer.id)
    return None


def check_viewer(db: Session, document_id: int, token: str = None, recipient: str = None):
    """Authorize against current state, then hand the connection back to the pool."""
    try:
        return authorize_viewer(db, document_id, token, recipient)
    finally:
        db.close()


async def _wait_for_disconnect(websocket: WebSocket):
    # Client messages carry nothing; reading them is how a disconnect is noticed
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/documents/{document_id}/events")
async def document_events(
    websocket: WebSocket,
    document_id: int,
    token: str = Query(None),
    recipient: str = Query(None),
    db: Session = Depends(get_db),
):
    predicate = await run_in_threadpool(check_viewer, db, document_id, token, recipient)
    if predicate is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hidden = () if token else RECIPIENT_HIDDEN_FIELDS
    await websocket.accept()
    subscription = hub.subscribe(document_id, predicate)
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            next_change = asyncio.create_task(subscription.get())
            done, _ = await asyncio.wait({next_change, disconnected}, return_when=asyncio.FIRST_COMPLETED)
            if disconnected in done:
                next_change.cancel()
                break
            # A reissued or expired link stops the stream
            if await run_in_threadpool(check_viewer, db, document_id, token, recipient) is None:
                logger.info("Viewer access revoked", extra={"document_id": document_id})
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                break
            await websocket.send_json(next_change.result().to_dict(hidden))
    finally:
        disconnected.cancel()
        hub.unsubscribe(subscription)
        logger.info("Viewer disconnected", extra={"document_id": document_id})
