from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import DocumentStatus, ElementType, RecipientStatus, SignatureType

AUDIT_SCHEMA_VERSION = 1


class UserBase(BaseModel):
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(min_length=8)
    full_name: Optional[str] = None


class User(UserBase):
    id: int
    full_name: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str


class Geolocation(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


class ClientInfo(BaseModel):
    timestamp: str
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    geolocation: Optional[Geolocation] = None


class Position(BaseModel):
    # Negative input is accepted here; the placement engine fits it to the page
    x: float
    y: float
    page_index: int = Field(default=0, ge=0)


class Size(BaseModel):
    width: float
    height: float


class RecipientCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)


class Recipient(BaseModel):
    id: int
    document_id: int
    name: str
    email: str
    status: RecipientStatus
    completed_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class RecipientToken(BaseModel):
    recipient_id: int
    token: str
    expiry: datetime
    signing_link: str


class ElementCreate(BaseModel):
    recipient_id: int
    type: ElementType = ElementType.SIGNATURE
    position: Position
    size: Optional[Size] = None
    required: bool = True
    label: Optional[str] = None


class ElementUpdate(BaseModel):
    position: Optional[Position] = None
    size: Optional[Size] = None
    recipient_id: Optional[int] = None
    required: Optional[bool] = None
    label: Optional[str] = None


class ElementPrefill(BaseModel):
    value: Union[bool, str, None] = None
    signature_id: Optional[int] = None


class ElementValue(BaseModel):
    value: Union[bool, str, None]


class Element(BaseModel):
    id: int
    document_id: int
    recipient_id: int
    type: ElementType
    position: Position
    size: Size
    value: Union[bool, str, None] = None
    required: bool
    label: Optional[str] = None
    signature_id: Optional[int] = None

    @classmethod
    def from_model(cls, element):
        return cls(
            id=element.id,
            document_id=element.document_id,
            recipient_id=element.recipient_id,
            type=element.type,
            position=Position(x=element.x, y=element.y, page_index=element.page_index),
            size=Size(width=element.width, height=element.height),
            value=element.value,
            required=element.required,
            label=element.label,
            signature_id=element.signature_id,
        )


class Document(BaseModel):
    id: int
    name: str
    status: DocumentStatus
    page_sizes: Optional[List[List[float]]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    recipients: List[Recipient] = []
    elements: List[Element] = []

    @classmethod
    def from_model(cls, document, elements=None):
        return cls(
            id=document.id,
            name=document.name,
            status=document.status,
            page_sizes=document.page_sizes,
            created_at=document.created_at,
            updated_at=document.updated_at,
            recipients=[Recipient.model_validate(r) for r in document.recipients],
            elements=[Element.from_model(e) for e in (document.elements if elements is None else elements)],
        )


class SendRequest(BaseModel):
    message: Optional[str] = None


class SendResult(BaseModel):
    document_id: int
    status: DocumentStatus
    recipients: List[Recipient]


class StatusClaim(BaseModel):
    status: DocumentStatus


class SignatureCreate(BaseModel):
    type: SignatureType
    data_url: str = Field(min_length=1)
    document_id: Optional[int] = None
    geolocation: Optional[Geolocation] = None


class RecipientSignatureCreate(BaseModel):
    type: SignatureType
    data_url: str = Field(min_length=1)
    geolocation: Optional[Geolocation] = None


class Signature(BaseModel):
    id: int
    type: SignatureType
    data_url: str
    user_id: Optional[int] = None
    recipient_id: Optional[int] = None
    document_id: Optional[int] = None
    signed_at: str
    verification_hash: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geolocation: Optional[Geolocation] = None
    model_config = ConfigDict(from_attributes=True)


class Signer(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class VerificationInfo(BaseModel):
    is_valid: bool
    timestamp: str
    signed_by: Signer
    document_id: int
    verification_hash: Optional[str] = None


class SigningView(BaseModel):
    document_id: int
    name: str
    status: DocumentStatus
    page_sizes: Optional[List[List[float]]] = None
    recipient: Recipient
    elements: List[Element]


# Audit event payloads, discriminated on event_type


class _AuditEvent(BaseModel):
    schema_version: int = AUDIT_SCHEMA_VERSION


class SignatureCreatedEvent(_AuditEvent):
    event_type: Literal["signature_created"] = "signature_created"
    signature_type: SignatureType
    signer: str
    signed_at: str
    filled_element_ids: List[int] = []


class DocumentSentEvent(_AuditEvent):
    event_type: Literal["document_sent"] = "document_sent"
    recipient_ids: List[int]
    message: Optional[str] = None


class RecipientViewedEvent(_AuditEvent):
    event_type: Literal["recipient_viewed"] = "recipient_viewed"
    recipient_id: int


class RecipientCompletedEvent(_AuditEvent):
    event_type: Literal["recipient_completed"] = "recipient_completed"
    recipient_id: int


class DocumentCompletedEvent(_AuditEvent):
    event_type: Literal["document_completed"] = "document_completed"
    recipient_ids: List[int]


AuditEvent = Annotated[
    Union[
        SignatureCreatedEvent,
        DocumentSentEvent,
        RecipientViewedEvent,
        RecipientCompletedEvent,
        DocumentCompletedEvent,
    ],
    Field(discriminator="event_type"),
]


class AuditLogEntry(BaseModel):
    id: int
    signature_id: Optional[int] = None
    document_id: Optional[int] = None
    event_type: str
    event_data: AuditEvent
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geolocation: Optional[Geolocation] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)
