"""
Signing element placement.

Coordinates are editor pixels with the origin at the top-left corner of the
page; the page's pixel size is its PDF point size times PLACEMENT_SCALE.
Out-of-bounds positions are clamped (ELEMENT_BOUNDS_MODE=clamp, the
default) or rejected (ELEMENT_BOUNDS_MODE=reject).
"""

import logging
from typing import NamedTuple, Optional

from reportlab.lib.pagesizes import letter
from sqlalchemy.orm import Session

from .. import crud, models
from ..config import settings
from ..exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

REJECT = "reject"

DEFAULT_SIZES = {
    models.ElementType.SIGNATURE.value: (200, 80),
    models.ElementType.INITIALS.value: (100, 50),
    models.ElementType.CHECKBOX.value: (50, 50),
    models.ElementType.DATE.value: (150, 40),
}
GENERIC_SIZE = (150, 50)


class PageGeometry(NamedTuple):
    width: float
    height: float


def default_size(element_type: str):
    return DEFAULT_SIZES.get(element_type, GENERIC_SIZE)


def page_geometry(document: models.Document, page_index: int, scale: float = None) -> PageGeometry:
    scale = settings.PLACEMENT_SCALE if scale is None else scale
    sizes = document.page_sizes or [list(letter)]
    if page_index < 0 or page_index >= len(sizes):
        raise ValidationError(
            f"Page {page_index} does not exist (document has {len(sizes)} pages)",
            document_id=document.id,
        )
    width, height = sizes[page_index]
    return PageGeometry(float(width) * scale, float(height) * scale)


def fit_to_page(x, y, width, height, page: PageGeometry, mode: str = None):
    """Return ``(x, y)`` so the box ``width`` x ``height`` lies on ``page``."""
    mode = mode or settings.ELEMENT_BOUNDS_MODE
    if width <= 0 or height <= 0:
        raise ValidationError("Element width and height must be positive")
    if width > page.width or height > page.height:
        raise ValidationError("Element is larger than the page")

    max_x = page.width - width
    max_y = page.height - height
    if mode == REJECT:
        if not (0 <= x <= max_x and 0 <= y <= max_y):
            raise ValidationError("Element position is outside the page")
        return x, y
    return min(max(x, 0.0), max_x), min(max(y, 0.0), max_y)


def _ensure_editable(document: models.Document):
    if document.status == models.DocumentStatus.COMPLETED.value:
        raise ConflictError("Completed documents cannot be edited", document_id=document.id)


def _ensure_unsigned(element: models.SigningElement):
    # Signed fields keep the geometry they were signed at
    if element.is_signed:
        raise ConflictError("Cannot move a signed field", element_id=element.id)


def add_element(
    db: Session,
    document: models.Document,
    recipient_id: int,
    element_type: str,
    position,
    size=None,
    required: bool = True,
    label: Optional[str] = None,
    mode: str = None,
) -> models.SigningElement:
    _ensure_editable(document)
    recipient = crud.get_recipient(db, document, recipient_id)

    element_type = models.ElementType(element_type).value
    width, height = (size.width, size.height) if size is not None else default_size(element_type)
    page = page_geometry(document, position.page_index)
    x, y = fit_to_page(position.x, position.y, width, height, page, mode)

    element = models.SigningElement(
        document_id=document.id,
        recipient_id=recipient.id,
        type=element_type,
        x=x,
        y=y,
        page_index=position.page_index,
        width=width,
        height=height,
        value=False if element_type == models.ElementType.CHECKBOX.value else None,
        required=required,
        label=label,
    )
    db.add(element)
    db.commit()
    db.refresh(element)
    logger.info(
        "Element added",
        extra={"document_id": document.id, "recipient_id": recipient.id, "element_id": element.id},
    )
    return element


def move_element(db: Session, element: models.SigningElement, position, mode: str = None) -> models.SigningElement:
    _ensure_editable(element.document)
    _ensure_unsigned(element)
    page = page_geometry(element.document, position.page_index)
    x, y = fit_to_page(position.x, position.y, element.width, element.height, page, mode)
    element.page_index = position.page_index
    element.x = x
    element.y = y
    db.commit()
    db.refresh(element)
    return element


def resize_element(db: Session, element: models.SigningElement, size, mode: str = None) -> models.SigningElement:
    _ensure_editable(element.document)
    _ensure_unsigned(element)
    page = page_geometry(element.document, element.page_index)
    x, y = fit_to_page(element.x, element.y, size.width, size.height, page, mode)
    element.width = size.width
    element.height = size.height
    element.x = x
    element.y = y
    db.commit()
    db.refresh(element)
    return element


def reassign_element(db: Session, element: models.SigningElement, recipient_id: int) -> models.SigningElement:
    _ensure_editable(element.document)
    if element.is_signed or element.is_filled:
        raise ConflictError("Cannot reassign a filled field", element_id=element.id)
    recipient = crud.get_recipient(db, element.document, recipient_id)
    element.recipient_id = recipient.id
    db.commit()
    db.refresh(element)
    return element


def remove_element(db: Session, element: models.SigningElement):
    if element.is_signed:
        raise ConflictError(
            "cannot remove a signed field",
            document_id=element.document_id,
            element_id=element.id,
        )
    element_id, document_id = element.id, element.document_id
    db.delete(element)
    db.commit()
    logger.info("Element removed", extra={"document_id": document_id, "element_id": element_id})


def _check_value_type(element: models.SigningElement, value):
    if value is None:
        return
    if element.type == models.ElementType.CHECKBOX.value:
        if not isinstance(value, bool):
            raise ValidationError("Checkbox values must be true or false", element_id=element.id)
    elif not isinstance(value, str):
        raise ValidationError("Field values must be text", element_id=element.id)


def prefill_element(
    db: Session,
    element: models.SigningElement,
    user: models.User,
    value=None,
    signature_id: Optional[int] = None,
) -> models.SigningElement:
    """Owner pre-fill while the document is still a draft."""
    if element.document.status != models.DocumentStatus.DRAFT.value:
        raise ConflictError("Fields can only be pre-filled before sending", element_id=element.id)
    if element.is_signed:
        raise ConflictError("Field is already signed", element_id=element.id)

    if element.type in models.SIGNATURE_ELEMENT_TYPES:
        if signature_id is None:
            raise ValidationError("Signature fields are pre-filled with a stored signature", element_id=element.id)
        signature = (
            db.query(models.Signature)
            .filter(models.Signature.id == signature_id, models.Signature.user_id == user.id)
            .first()
        )
        if not signature:
            raise NotFoundError("Signature not found", signature_id=signature_id)
        element.value = signature.data_url
        element.signature_id = signature.id
    else:
        _check_value_type(element, value)
        element.value = value

    db.commit()
    db.refresh(element)
    return element


def fill_element(db: Session, recipient: models.Recipient, element_id: int, value) -> models.SigningElement:
    """Recipient write to one of its own fields."""
    element = (
        db.query(models.SigningElement)
        .filter(
            models.SigningElement.id == element_id,
            models.SigningElement.document_id == recipient.document_id,
            models.SigningElement.recipient_id == recipient.id,
        )
        .first()
    )
    if not element:
        raise NotFoundError("Element not found", document_id=recipient.document_id, element_id=element_id)
    if recipient.status == models.RecipientStatus.COMPLETED.value:
        raise ConflictError("Recipient has already completed signing", recipient_id=recipient.id)
    if element.type in models.SIGNATURE_ELEMENT_TYPES:
        raise ValidationError("Signature fields are filled by capturing a signature", element_id=element.id)

    _check_value_type(element, value)
    element.value = value
    db.commit()
    db.refresh(element)
    logger.info(
        "Element filled",
        extra={"document_id": element.document_id, "recipient_id": recipient.id, "element_id": element.id},
    )
    return element
