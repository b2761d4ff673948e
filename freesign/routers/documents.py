import io
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..database import get_db
from ..exceptions import ValidationError
from ..services import access_control, client_context, dispatch, lifecycle, pdf_service, placement, storage
from .users import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dispatch_gateway() -> dispatch.DispatchGateway:
    return dispatch.get_gateway()


@router.post("/upload", response_model=schemas.Document)
async def upload_document(
    file: UploadFile = File(...),
    name: str = Form(None),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    content = await file.read()
    page_sizes = pdf_service.read_page_sizes(content)

    unique_filename = f"{uuid.uuid4()}_{file.filename}"
    file_path = await storage.upload_file(io.BytesIO(content), unique_filename, storage.UPLOADS)

    try:
        document = await run_in_threadpool(
            crud.create_document, db, current_user, name or file.filename, file_path, page_sizes
        )
    except SQLAlchemyError:
        await run_in_threadpool(db.rollback)
        await storage.delete_file(file_path)
        raise
    logger.info(f"Uploaded {file.filename} ({len(page_sizes)} pages)", extra={"document_id": document.id})
    return await run_in_threadpool(schemas.Document.from_model, document)


@router.get("/", response_model=list[schemas.Document])
def list_documents(current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [schemas.Document.from_model(d) for d in crud.list_documents(db, current_user)]


@router.get("/{document_id}", response_model=schemas.Document)
def get_document(document_id: int, current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return schemas.Document.from_model(crud.get_owned_document(db, document_id, current_user))


@router.get("/{document_id}/download")
async def download_document(
    document_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = await run_in_threadpool(crud.get_owned_document, db, document_id, current_user)
    return await document_file_response(document)


async def document_file_response(document: models.Document) -> Response:
    # Serve the executed copy once there is one
    file_path, filename = document.file_path, document.name
    if document.signed_file_path:
        file_path, filename = document.signed_file_path, f"signed_{document.name}"
    if not file_path:
        raise ValidationError("Document has no file", document_id=document.id)

    file_content = await storage.download_file(file_path)
    return Response(
        content=file_content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/{document_id}/recipients", response_model=schemas.Recipient)
def add_recipient(
    document_id: int,
    recipient: schemas.RecipientCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    return crud.create_recipient(db, document, recipient.name, recipient.email)


@router.delete("/{document_id}/recipients/{recipient_id}", status_code=204)
def remove_recipient(
    document_id: int,
    recipient_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    crud.delete_recipient(db, crud.get_recipient(db, document, recipient_id))
    return Response(status_code=204)


@router.post("/{document_id}/recipients/{recipient_id}/token", response_model=schemas.RecipientToken)
def reissue_token(
    document_id: int,
    recipient_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace the recipient's signing link; earlier links stop working."""
    document = crud.get_owned_document(db, document_id, current_user)
    recipient = crud.get_recipient(db, document, recipient_id)
    if document.status == models.DocumentStatus.DRAFT.value:
        raise ValidationError("Signing links are issued when the document is sent", document_id=document.id)

    token, expiry = access_control.issue_token(db, recipient)
    return schemas.RecipientToken(
        recipient_id=recipient.id,
        token=token,
        expiry=expiry,
        signing_link=access_control.signing_link(document.id, token),
    )


@router.post("/{document_id}/elements", response_model=schemas.Element)
def add_element(
    document_id: int,
    element: schemas.ElementCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    created = placement.add_element(
        db,
        document,
        element.recipient_id,
        element.type.value,
        element.position,
        element.size,
        required=element.required,
        label=element.label,
    )
    return schemas.Element.from_model(created)


@router.patch("/{document_id}/elements/{element_id}", response_model=schemas.Element)
def update_element(
    document_id: int,
    element_id: int,
    changes: schemas.ElementUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    element = crud.get_element(db, document, element_id)

    if changes.size is not None:
        element = placement.resize_element(db, element, changes.size)
    if changes.position is not None:
        element = placement.move_element(db, element, changes.position)
    if changes.recipient_id is not None and changes.recipient_id != element.recipient_id:
        element = placement.reassign_element(db, element, changes.recipient_id)
    if changes.required is not None or changes.label is not None:
        if changes.required is not None:
            element.required = changes.required
        if changes.label is not None:
            element.label = changes.label
        db.commit()
        db.refresh(element)
    return schemas.Element.from_model(element)


@router.put("/{document_id}/elements/{element_id}/value", response_model=schemas.Element)
def prefill_element(
    document_id: int,
    element_id: int,
    prefill: schemas.ElementPrefill,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    element = crud.get_element(db, document, element_id)
    element = placement.prefill_element(db, element, current_user, prefill.value, prefill.signature_id)
    return schemas.Element.from_model(element)


@router.delete("/{document_id}/elements/{element_id}", status_code=204)
def remove_element(
    document_id: int,
    element_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    placement.remove_element(db, crud.get_element(db, document, element_id))
    return Response(status_code=204)


@router.post("/{document_id}/send", response_model=schemas.SendResult)
def send_document(
    document_id: int,
    request: Request,
    send: Optional[schemas.SendRequest] = None,
    gateway: dispatch.DispatchGateway = Depends(get_dispatch_gateway),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    client_info = client_context.request_client_info(request)
    message = send.message if send else None
    document = dispatch.send_for_signature(db, document, gateway, message, client_info)
    return schemas.SendResult(
        document_id=document.id,
        status=document.status,
        recipients=[schemas.Recipient.model_validate(r) for r in document.recipients],
    )


@router.post("/{document_id}/status", response_model=schemas.Document)
def claim_status(
    document_id: int,
    claim: schemas.StatusClaim,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Confirm a status the client believes the document is in."""
    document = crud.get_owned_document(db, document_id, current_user)
    lifecycle.assert_status_claim(db, document, claim.status.value)
    return schemas.Document.from_model(document)


@router.get("/{document_id}/audit", response_model=list[schemas.AuditLogEntry])
def audit_trail(
    document_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = crud.get_owned_document(db, document_id, current_user)
    return crud.list_audit_entries(db, document)
