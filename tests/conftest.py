"""
Shared pytest fixtures.

Provides:
    - engine / session_factory: in-memory SQLite shared across sessions (StaticPool)
    - db: a session for service-level tests
    - client: TestClient wired to the same database and a recording dispatch gateway
    - owner, document, recipients: pre-created entities
    - client_info: fixed client context for signature capture
"""

import io

import pytest
from fastapi.testclient import TestClient
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from freesign import crud, models
from freesign.config import settings
from freesign.database import Base, get_db
from freesign.main import app
from freesign.routers.documents import get_dispatch_gateway
from freesign.routers.users import create_access_token, hash_password
from freesign.schemas import ClientInfo
from freesign.services.dispatch import DispatchGateway, DispatchResult

TIMESTAMP = "2024-05-01T12:00:00+00:00"


class RecordingGateway(DispatchGateway):
    """Collects invitations instead of sending them; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.result = DispatchResult(success=True)
        self.error = None

    def send(self, document, invitations, message):
        if self.error is not None:
            raise self.error
        self.sent.append({"document_id": document.id, "invitations": invitations, "message": message})
        return self.result

    @property
    def links(self):
        return {i.email: i.link for batch in self.sent for i in batch["invitations"]}

    @property
    def tokens(self):
        return {email: link.split("recipient=", 1)[1] for email, link in self.links.items()}


# ── Settings ─────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "SIGNED_DIR", str(tmp_path / "signed"))
    monkeypatch.setattr(settings, "BLOB_READ_WRITE_TOKEN", "")
    monkeypatch.setattr(settings, "GEOLOCATION_LOOKUP_URL", "")
    monkeypatch.setattr(settings, "ELEMENT_BOUNDS_MODE", "clamp")
    monkeypatch.setattr(settings, "PLACEMENT_SCALE", 1.0)
    monkeypatch.setattr(settings, "APP_URL", "http://testserver")


# ── Database ─────────────────────────────────────────────────────────────


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def gateway():
    return RecordingGateway()


@pytest.fixture()
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatch_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# ── Entities ─────────────────────────────────────────────────────────────


@pytest.fixture()
def owner(db):
    user = models.User(email="owner@example.com", full_name="Olive Owner", hashed_password=hash_password("password123"))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def auth_headers(owner):
    return {"Authorization": f"Bearer {create_access_token(owner)}"}


@pytest.fixture()
def document(db, owner):
    return crud.create_document(db, owner, "Contract.pdf", page_sizes=[[600, 800]])


@pytest.fixture()
def recipients(db, document):
    return [
        crud.create_recipient(db, document, "Rita One", "r1@example.com"),
        crud.create_recipient(db, document, "Rob Two", "r2@example.com"),
    ]


@pytest.fixture()
def client_info():
    return ClientInfo(timestamp=TIMESTAMP, user_agent="pytest", ip="127.0.0.1")


@pytest.fixture()
def pdf_bytes():
    """A two-page letter-size PDF."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=letter)
    for i in range(2):
        c.drawString(72, 720, f"Page {i + 1}")
        c.showPage()
    c.save()
    return buffer.getvalue()
