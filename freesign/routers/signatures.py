from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..database import get_db
from ..exceptions import NotFoundError
from ..services import client_context, signatures
from .users import get_current_user

router = APIRouter()


def _capture_owner_signature(db: Session, user: models.User, submission: schemas.SignatureCreate, client_info):
    if submission.document_id is not None:
        document = db.get(models.Document, submission.document_id)
        # Unknown ids still hash; someone else's document is never written to
        if document is not None and document.user_id != user.id:
            raise NotFoundError("Document not found", document_id=submission.document_id)
    return signatures.capture_signature(
        db, user, submission.type.value, submission.data_url, client_info, submission.document_id
    )


@router.post("/signatures", response_model=schemas.Signature)
async def create_signature(
    submission: schemas.SignatureCreate,
    request: Request,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Save an owner signature, optionally bound to a document.

    Without ``document_id`` the signature goes to the personal library and
    carries no verification hash.
    """
    client_info = await client_context.collect_client_info(request, submission.geolocation)
    return await run_in_threadpool(_capture_owner_signature, db, current_user, submission, client_info)


@router.get("/signatures", response_model=list[schemas.Signature])
def list_signatures(current_user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return (
        db.query(models.Signature)
        .filter(models.Signature.user_id == current_user.id)
        .order_by(models.Signature.id)
        .all()
    )


def _owned_signature(db: Session, signature_id: int, user: models.User) -> models.Signature:
    signature = signatures.get_signature(db, signature_id)
    if signature.user_id == user.id:
        return signature
    if signature.recipient is not None and signature.recipient.document.user_id == user.id:
        return signature
    raise NotFoundError("Signature not found", signature_id=signature_id)


@router.post("/signatures/{signature_id}/audit/retry")
def retry_audit_log(
    signature_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    signature = _owned_signature(db, signature_id, current_user)
    written = signatures.retry_audit_log(db, signature)
    return {"signature_id": signature_id, "written": written}


@router.get(
    "/documents/{document_id}/signatures/{signature_id}/verification",
    response_model=schemas.VerificationInfo,
)
def verification_info(
    document_id: int,
    signature_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    crud.get_owned_document(db, document_id, current_user)
    _owned_signature(db, signature_id, current_user)
    return signatures.get_verification_info(db, signature_id, document_id)
