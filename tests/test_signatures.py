import hashlib

import pytest
from sqlalchemy.exc import OperationalError

from freesign import models
from freesign.exceptions import AuditLogWriteError, ConflictError, ValidationError
from freesign.models import ImmutableRowError
from freesign.schemas import Position
from freesign.services import audit, placement, signatures

ARTIFACT = "data:image/png;base64,iVBORw0KGgo="


def test_hash_covers_artifact_signer_timestamp_and_document():
    expected = hashlib.sha256(b"abcrecipient:72024-01-01T00:00:00+00:0042").hexdigest()
    assert signatures.compute_verification_hash("abc", "recipient:7", "2024-01-01T00:00:00+00:00", 42) == expected


def test_capture_stores_hash_and_client_context(db, document, recipients, client_info):
    signature = signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)

    assert signature.recipient_id == recipients[0].id
    assert signature.signed_at == client_info.timestamp
    assert signature.ip_address == "127.0.0.1"
    assert signature.user_agent == "pytest"
    assert signature.verification_hash == signatures.compute_verification_hash(
        ARTIFACT, f"recipient:{recipients[0].id}", client_info.timestamp, document.id
    )


def test_capture_writes_one_audit_entry(db, document, recipients, client_info):
    signature = signatures.capture_signature(db, recipients[0], "typed", ARTIFACT, client_info, document.id)

    entries = db.query(models.AuditLogEntry).filter(models.AuditLogEntry.signature_id == signature.id).all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.event_type == "signature_created"
    assert entry.document_id == document.id
    assert entry.event_data["schema_version"] == 1
    assert entry.event_data["signer"] == f"recipient:{recipients[0].id}"


def test_capture_fills_the_recipients_signature_fields(db, document, recipients, client_info):
    mine = placement.add_element(db, document, recipients[0].id, "signature", Position(x=0, y=0))
    initials = placement.add_element(db, document, recipients[0].id, "initials", Position(x=0, y=100))
    theirs = placement.add_element(db, document, recipients[1].id, "signature", Position(x=0, y=200))

    signature = signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)
    for element in (mine, initials, theirs):
        db.refresh(element)

    assert mine.signature_id == signature.id and mine.value == ARTIFACT
    assert initials.signature_id == signature.id
    assert theirs.signature_id is None


def test_empty_artifact_is_rejected(db, document, recipients, client_info):
    with pytest.raises(ValidationError):
        signatures.capture_signature(db, recipients[0], "drawn", "", client_info, document.id)


def test_completed_recipient_cannot_sign_again(db, document, recipients, client_info):
    recipients[0].status = models.RecipientStatus.COMPLETED.value
    db.commit()
    with pytest.raises(ConflictError):
        signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)


def test_library_signature_has_no_hash(db, owner, client_info):
    signature = signatures.capture_signature(db, owner, "uploaded", ARTIFACT, client_info)
    assert signature.document_id is None
    assert signature.verification_hash is None
    assert db.query(models.AuditLogEntry).count() == 0
    assert signatures.verify_signature(db, signature.id, 1)["is_valid"] is False


def test_verify_is_repeatable(db, document, recipients, client_info):
    signature = signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)

    first = signatures.verify_signature(db, signature.id, document.id)
    second = signatures.verify_signature(db, signature.id, document.id)
    assert first == second
    assert first["is_valid"] is True
    assert first["timestamp"] == client_info.timestamp
    assert first["signed_by"].email == "r1@example.com"


def test_capture_against_unknown_document_then_verify_elsewhere(db, recipients, client_info):
    signature = signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, 9999)

    assert signature.verification_hash is not None
    assert signatures.verify_signature(db, signature.id, 9999)["is_valid"] is True
    assert signatures.verify_signature(db, signature.id, 1)["is_valid"] is False


def test_signatures_cannot_be_edited_or_deleted(db, document, recipients, client_info):
    signature = signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)

    signature.data_url = "data:image/png;base64,FORGED"
    with pytest.raises(ImmutableRowError):
        db.commit()
    db.rollback()

    db.delete(signature)
    with pytest.raises(ImmutableRowError):
        db.commit()
    db.rollback()

    db.refresh(signature)
    assert signature.data_url == ARTIFACT


def test_audit_entries_cannot_be_deleted(db, document, recipients, client_info):
    signature = signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)
    entry = db.query(models.AuditLogEntry).filter(models.AuditLogEntry.signature_id == signature.id).one()

    db.delete(entry)
    with pytest.raises(ImmutableRowError):
        db.commit()
    db.rollback()


class TestAuditWriteFailure:
    @pytest.fixture()
    def failing_audit(self, monkeypatch):
        def broken_record(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_log_entries", {}, Exception("disk I/O error"))

        monkeypatch.setattr(audit, "record", broken_record)

    def test_signature_survives_and_error_names_it(self, db, document, recipients, client_info, failing_audit):
        with pytest.raises(AuditLogWriteError) as exc_info:
            signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)

        signature_id = exc_info.value.signature_id
        stored = db.query(models.Signature).filter(models.Signature.id == signature_id).one()
        assert stored.verification_hash is not None
        assert db.query(models.AuditLogEntry).count() == 0

    def test_retry_writes_the_entry_once(self, db, document, recipients, client_info, monkeypatch):
        original = audit.record

        def broken_record(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_log_entries", {}, Exception("disk I/O error"))

        placement.add_element(db, document, recipients[0].id, "signature", Position(x=0, y=0))
        monkeypatch.setattr(audit, "record", broken_record)
        with pytest.raises(AuditLogWriteError) as exc_info:
            signatures.capture_signature(db, recipients[0], "drawn", ARTIFACT, client_info, document.id)
        monkeypatch.setattr(audit, "record", original)

        signature = signatures.get_signature(db, exc_info.value.signature_id)
        element = db.query(models.SigningElement).one()
        assert element.signature_id is None

        assert signatures.retry_audit_log(db, signature) is True
        assert signatures.retry_audit_log(db, signature) is False

        db.refresh(element)
        assert element.signature_id == signature.id
        assert db.query(models.AuditLogEntry).filter(models.AuditLogEntry.signature_id == signature.id).count() == 1

    def test_api_reports_signature_id(self, client, db, document, recipients, failing_audit):
        from freesign.services import access_control

        document.status = models.DocumentStatus.SENT.value
        db.commit()
        token, _ = access_control.issue_token(db, recipients[0])

        resp = client.post(
            f"/signing/{document.id}/signatures",
            params={"recipient": token},
            json={"type": "drawn", "data_url": ARTIFACT},
        )
        assert resp.status_code == 500
        body = resp.json()
        assert body["detail"] == AuditLogWriteError.detail
        assert isinstance(body["signature_id"], int)
