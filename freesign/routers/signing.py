import io
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..config import settings
from ..database import get_db
from ..exceptions import NotFoundError
from ..services import access_control, client_context, lifecycle, pdf_service, placement, signatures, storage
from .documents import document_file_response

logger = logging.getLogger(__name__)

router = APIRouter()


def get_signing_recipient(
    document_id: int,
    recipient: str = Query(None, description="Recipient access token from the signing link"),
    db: Session = Depends(get_db),
) -> models.Recipient:
    # Validated on every request; the token is never turned into a session
    return access_control.validate_token(db, document_id, recipient)


def signing_view(db: Session, recipient: models.Recipient) -> schemas.SigningView:
    document = recipient.document
    return schemas.SigningView(
        document_id=document.id,
        name=document.name,
        status=document.status,
        page_sizes=document.page_sizes,
        recipient=schemas.Recipient.model_validate(recipient),
        elements=[schemas.Element.from_model(e) for e in crud.list_elements(db, document, recipient)],
    )


@router.get("/{document_id}", response_model=schemas.SigningView)
def view_document_for_signing(
    request: Request,
    recipient: models.Recipient = Depends(get_signing_recipient),
    db: Session = Depends(get_db),
):
    recipient = lifecycle.mark_viewed(db, recipient, client_context.request_client_info(request))
    return signing_view(db, recipient)


@router.get("/{document_id}/download")
async def download_for_recipient(recipient: models.Recipient = Depends(get_signing_recipient)):
    document = await run_in_threadpool(lambda: recipient.document)
    return await document_file_response(document)


@router.put("/{document_id}/elements/{element_id}", response_model=schemas.Element)
def fill_element(
    element_id: int,
    update: schemas.ElementValue,
    recipient: models.Recipient = Depends(get_signing_recipient),
    db: Session = Depends(get_db),
):
    element = placement.fill_element(db, recipient, element_id, update.value)
    return schemas.Element.from_model(element)


@router.post("/{document_id}/signatures", response_model=schemas.Signature)
async def sign_document(
    document_id: int,
    submission: schemas.RecipientSignatureCreate,
    request: Request,
    recipient: models.Recipient = Depends(get_signing_recipient),
    db: Session = Depends(get_db),
):
    client_info = await client_context.collect_client_info(request, submission.geolocation)
    return await run_in_threadpool(
        signatures.capture_signature,
        db,
        recipient,
        submission.type.value,
        submission.data_url,
        client_info,
        document_id=document_id,
    )


@router.post("/{document_id}/complete", response_model=schemas.SigningView)
async def complete_signing(
    request: Request,
    recipient: models.Recipient = Depends(get_signing_recipient),
    db: Session = Depends(get_db),
):
    client_info = client_context.request_client_info(request)
    recipient = await run_in_threadpool(lifecycle.complete_recipient, db, recipient, client_info)

    document = await run_in_threadpool(lambda: recipient.document)
    if document.status == models.DocumentStatus.COMPLETED.value:
        await store_executed_copy(db, document)
    return await run_in_threadpool(signing_view, db, recipient)


def _filled_elements(db: Session, document: models.Document):
    elements = []
    for element in crud.list_elements(db, document):
        if not element.is_filled:
            continue
        elements.append(
            {
                "id": element.id,
                "page_index": element.page_index,
                "x": element.x,
                "y": element.y,
                "width": element.width,
                "height": element.height,
                "type": element.type,
                "value": element.value,
                "signer_name": element.recipient.name,
                "signed_at": element.recipient.completed_at.strftime("%Y-%m-%d %H:%M")
                if element.recipient.completed_at
                else "",
            }
        )
    return elements


def _save_signed_path(db: Session, document: models.Document, signed_path: str):
    document.signed_file_path = signed_path
    db.commit()


async def store_executed_copy(db: Session, document: models.Document):
    """Burn every filled field into the PDF; failures leave the document completed."""
    document_id, file_path = document.id, document.file_path
    if not file_path:
        return

    elements = await run_in_threadpool(_filled_elements, db, document)
    try:
        original_pdf_bytes = await storage.download_file(file_path)
        signed_pdf_bytes = pdf_service.render_signed_pdf(original_pdf_bytes, elements, settings.PLACEMENT_SCALE)
        signed_path = await storage.upload_file(
            io.BytesIO(signed_pdf_bytes), f"signed_{document_id}.pdf", storage.SIGNED
        )
    except Exception:
        logger.exception("Error rendering executed copy", extra={"document_id": document_id})
        return

    await run_in_threadpool(_save_signed_path, db, document, signed_path)
    logger.info("Executed copy stored", extra={"document_id": document_id})


@router.post("/{document_id}/signatures/{signature_id}/audit/retry")
def retry_signature_audit(
    signature_id: int,
    recipient: models.Recipient = Depends(get_signing_recipient),
    db: Session = Depends(get_db),
):
    signature = signatures.get_signature(db, signature_id)
    if signature.recipient_id != recipient.id:
        raise NotFoundError("Signature not found", signature_id=signature_id)
    written = signatures.retry_audit_log(db, signature)
    return {"signature_id": signature_id, "written": written}
