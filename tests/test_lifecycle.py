from itertools import permutations

import pytest

from freesign import crud, models
from freesign.exceptions import ConflictError, PreconditionError, ValidationError
from freesign.schemas import Position
from freesign.services import dispatch, lifecycle, placement, signatures

ARTIFACT = "data:image/png;base64,iVBORw0KGgo="

SENT = "sent"
PARTIAL = "partially_signed"
COMPLETED = "completed"


@pytest.fixture()
def sent_document(db, document, recipients, gateway):
    """Scenario document: R1 has a signature and a date field, R2 one signature field."""
    r1, r2 = recipients
    placement.add_element(db, document, r1.id, "signature", Position(x=10, y=10))
    placement.add_element(db, document, r1.id, "date", Position(x=10, y=200))
    placement.add_element(db, document, r2.id, "signature", Position(x=10, y=400))
    dispatch.send_for_signature(db, document, gateway)
    return document


def _sign(db, recipient, client_info):
    signatures.capture_signature(db, recipient, "drawn", ARTIFACT, client_info, recipient.document_id)
    for element in crud.list_elements(db, recipient.document, recipient):
        if element.type == "date":
            placement.fill_element(db, recipient, element.id, "2024-05-01")
    return lifecycle.complete_recipient(db, recipient, client_info)


def test_two_recipients_partial_then_completed(db, sent_document, recipients, client_info):
    r1, r2 = recipients
    assert sent_document.status == SENT

    _sign(db, r1, client_info)
    db.refresh(sent_document)
    assert sent_document.status == PARTIAL

    _sign(db, r2, client_info)
    db.refresh(sent_document)
    assert sent_document.status == COMPLETED


def test_document_completed_audit_entry(db, sent_document, recipients, client_info):
    for recipient in recipients:
        _sign(db, recipient, client_info)

    events = [e.event_type for e in crud.list_audit_entries(db, sent_document)]
    assert events.count("document_completed") == 1
    assert events.count("recipient_completed") == 2
    assert events[0] == "document_sent"
    assert events[-1] == "document_completed"


def test_completion_requires_required_fields(db, sent_document, recipients, client_info):
    r1 = recipients[0]
    signatures.capture_signature(db, r1, "drawn", ARTIFACT, client_info, sent_document.id)

    with pytest.raises(ValidationError):
        lifecycle.complete_recipient(db, r1, client_info)
    db.refresh(r1)
    assert r1.status == "pending"


def test_optional_fields_do_not_block_completion(db, document, recipients, gateway, client_info):
    r1, r2 = recipients
    placement.add_element(db, document, r1.id, "text", Position(x=0, y=0), required=False)
    placement.add_element(db, document, r2.id, "checkbox", Position(x=0, y=0), required=False)
    dispatch.send_for_signature(db, document, gateway)

    lifecycle.complete_recipient(db, r1, client_info)
    db.refresh(document)
    assert document.status == PARTIAL


@pytest.mark.parametrize("order", list(permutations(range(3))))
def test_status_only_moves_forward(db, document, order, gateway, client_info):
    people = [crud.create_recipient(db, document, f"Signer {i}", f"s{i}@example.com") for i in range(3)]
    for person in people:
        placement.add_element(db, document, person.id, "text", Position(x=0, y=0), required=False)
    dispatch.send_for_signature(db, document, gateway)

    rank = lifecycle.DOCUMENT_ORDER.index
    seen = [document.status]
    for index in order:
        lifecycle.mark_viewed(db, people[index], client_info)
        lifecycle.complete_recipient(db, people[index], client_info)
        db.refresh(document)
        seen.append(document.status)

    assert all(rank(a) <= rank(b) for a, b in zip(seen, seen[1:]))
    assert seen == [SENT, PARTIAL, PARTIAL, COMPLETED]


def test_recipient_status_cannot_regress(db, sent_document, recipients, client_info):
    r1, r2 = recipients
    lifecycle.mark_viewed(db, r1)
    assert r1.status == "viewed"
    with pytest.raises(ConflictError):
        lifecycle.advance_recipient(db, r1, "pending")

    _sign(db, r2, client_info)
    for target in ("pending", "viewed"):
        with pytest.raises(ConflictError):
            lifecycle.advance_recipient(db, r2, target)
    db.refresh(r2)
    assert r2.status == COMPLETED


def test_viewing_twice_writes_one_audit_entry(db, sent_document, recipients):
    lifecycle.mark_viewed(db, recipients[0])
    lifecycle.mark_viewed(db, recipients[0])
    events = [e.event_type for e in crud.list_audit_entries(db, sent_document)]
    assert events.count("recipient_viewed") == 1


def test_completing_twice_conflicts(db, sent_document, recipients, client_info):
    _sign(db, recipients[0], client_info)
    with pytest.raises(ConflictError):
        lifecycle.complete_recipient(db, recipients[0], client_info)


def test_derive_status():
    assert lifecycle.derive_status("draft", ["completed"]) == "draft"
    assert lifecycle.derive_status(SENT, ["pending", "viewed"]) == SENT
    assert lifecycle.derive_status(SENT, ["completed", "viewed"]) == PARTIAL
    assert lifecycle.derive_status(SENT, ["completed", "completed"]) == COMPLETED


def test_status_claim_must_match_recipients(db, sent_document, recipients, client_info):
    assert lifecycle.assert_status_claim(db, sent_document, SENT) == SENT
    with pytest.raises(ConflictError):
        lifecycle.assert_status_claim(db, sent_document, COMPLETED)

    _sign(db, recipients[0], client_info)
    with pytest.raises(ConflictError):
        lifecycle.assert_status_claim(db, sent_document, COMPLETED)
    assert lifecycle.assert_status_claim(db, sent_document, PARTIAL) == PARTIAL


class TestDispatchPreconditions:
    def test_needs_recipients(self, db, document):
        with pytest.raises(PreconditionError):
            lifecycle.ensure_dispatchable(db, document)

    def test_every_recipient_needs_a_field(self, db, document, recipients):
        placement.add_element(db, document, recipients[0].id, "signature", Position(x=0, y=0))
        with pytest.raises(PreconditionError):
            lifecycle.ensure_dispatchable(db, document)

    def test_only_drafts_are_sent(self, db, sent_document):
        with pytest.raises(PreconditionError):
            lifecycle.ensure_dispatchable(db, sent_document)

    def test_ready_document(self, db, document, recipients):
        for recipient in recipients:
            placement.add_element(db, document, recipient.id, "signature", Position(x=0, y=0))
        assert [r.id for r in lifecycle.ensure_dispatchable(db, document)] == [r.id for r in recipients]
        assert document.status == models.DocumentStatus.DRAFT.value


def test_removing_last_pending_recipient_completes(db, sent_document, recipients, client_info):
    r1, r2 = recipients
    _sign(db, r1, client_info)

    crud.delete_recipient(db, r2)
    db.refresh(sent_document)
    assert sent_document.status == COMPLETED
