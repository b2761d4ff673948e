import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import object_session, relationship, validates
from sqlalchemy.sql import func

from .database import Base
from .exceptions import ValidationError


class DocumentStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"


class RecipientStatus(str, enum.Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    COMPLETED = "completed"


class ElementType(str, enum.Enum):
    SIGNATURE = "signature"
    INITIALS = "initials"
    DATE = "date"
    TEXT = "text"
    CHECKBOX = "checkbox"
    NAME = "name"
    EMAIL = "email"
    ADDRESS = "address"
    TITLE = "title"


# Elements whose value is a captured signature artifact
SIGNATURE_ELEMENT_TYPES = (ElementType.SIGNATURE.value, ElementType.INITIALS.value)


class SignatureType(str, enum.Enum):
    DRAWN = "drawn"
    TYPED = "typed"
    UPLOADED = "uploaded"


class AuditEventType(str, enum.Enum):
    SIGNATURE_CREATED = "signature_created"
    DOCUMENT_SENT = "document_sent"
    RECIPIENT_VIEWED = "recipient_viewed"
    RECIPIENT_COMPLETED = "recipient_completed"
    DOCUMENT_COMPLETED = "document_completed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String, nullable=True)
    hashed_password = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    documents = relationship("Document", back_populates="owner")

    @property
    def display_name(self):
        return self.full_name or self.email


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    file_path = Column(String, nullable=True)
    signed_file_path = Column(String, nullable=True)
    # [[width, height], ...] in PDF points, one entry per page
    page_sizes = Column(JSON, nullable=True)
    status = Column(String, default=DocumentStatus.DRAFT.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="documents")
    recipients = relationship(
        "Recipient", back_populates="document", cascade="all, delete-orphan", order_by="Recipient.id"
    )
    elements = relationship(
        "SigningElement", back_populates="document", cascade="all, delete-orphan", order_by="SigningElement.id"
    )


class Recipient(Base):
    __tablename__ = "recipients"
    __table_args__ = (UniqueConstraint("document_id", "email", name="uq_recipient_document_email"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    status = Column(String, default=RecipientStatus.PENDING.value, nullable=False)
    access_token = Column(String, unique=True, index=True, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    document = relationship("Document", back_populates="recipients")
    elements = relationship("SigningElement", back_populates="recipient", cascade="all, delete-orphan")

    @validates("email")
    def normalize_email(self, key, value):
        if not value or not value.strip():
            raise ValidationError("Recipient email is required", field="email")
        return value.strip().lower()


class SigningElement(Base):
    __tablename__ = "signing_elements"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=False, index=True)
    type = Column(String, default=ElementType.SIGNATURE.value, nullable=False)
    x = Column(Float, nullable=False, default=0)
    y = Column(Float, nullable=False, default=0)
    page_index = Column(Integer, nullable=False, default=0)
    width = Column(Float, nullable=False)
    height = Column(Float, nullable=False)
    value = Column(JSON, nullable=True)
    required = Column(Boolean, default=True, nullable=False)
    label = Column(String, nullable=True)
    signature_id = Column(Integer, ForeignKey("signatures.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    document = relationship("Document", back_populates="elements")
    recipient = relationship("Recipient", back_populates="elements")
    signature = relationship("Signature")

    @validates("x", "y", "page_index")
    def validate_coordinate(self, key, value):
        if value is None or value < 0:
            raise ValidationError(f"{key} must be a non-negative number", field=key)
        return value

    @validates("width", "height")
    def validate_dimension(self, key, value):
        if value is None or value <= 0:
            raise ValidationError(f"{key} must be a positive number", field=key)
        return value

    @property
    def is_filled(self):
        if self.type == ElementType.CHECKBOX.value:
            return self.value is True
        return self.value not in (None, "", False)

    @property
    def is_signed(self):
        return self.signature_id is not None


class Signature(Base):
    __tablename__ = "signatures"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    recipient_id = Column(Integer, ForeignKey("recipients.id"), nullable=True, index=True)
    # Not a foreign key: the document binding lives in verification_hash
    document_id = Column(Integer, nullable=True, index=True)
    type = Column(String, nullable=False)
    data_url = Column(Text, nullable=False)
    # ISO-8601 UTC timestamp exactly as it entered the hash
    signed_at = Column(String, nullable=False)
    verification_hash = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    geolocation = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User")
    recipient = relationship("Recipient")

    @property
    def signer_identity(self):
        if self.recipient_id is not None:
            return f"recipient:{self.recipient_id}"
        return f"user:{self.user_id}"


class AuditLogEntry(Base):
    __tablename__ = "audit_log_entries"

    id = Column(Integer, primary_key=True, index=True)
    signature_id = Column(Integer, ForeignKey("signatures.id"), nullable=True, index=True)
    document_id = Column(Integer, nullable=True, index=True)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    geolocation = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ImmutableRowError(RuntimeError):
    pass


def _forbid_update(mapper, connection, target):
    session = object_session(target)
    if session is None or session.is_modified(target, include_collections=False):
        raise ImmutableRowError(f"{type(target).__name__} rows are append-only")


def _forbid_delete(mapper, connection, target):
    raise ImmutableRowError(f"{type(target).__name__} rows are append-only")


for _model in (Signature, AuditLogEntry):
    event.listen(_model, "before_update", _forbid_update)
    event.listen(_model, "before_delete", _forbid_delete)
