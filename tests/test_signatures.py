"""
Signature collection tests.

Covers:
    - sign(): only the assigned person, only while pending_signature,
      last signature locks the document
    - reject(): reason required, document back to needs_revision, all seats reset
    - assign_signer(): fills unresolved seats before signing starts, by
      person or from the project role directory
"""

import pytest

from docops.core.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from docops.models import db
from docops.models.document import LOCKED_STATUSES, Document, Signature
from docops.models.project import Person
from docops.services import workflow_engine


def _seat(doc, role):
    return next(s for s in doc.signatures if s.signer_role == role)


class TestSign:
    def test_sequential_signing_locks_document(self, make_document, staff):
        doc = make_document(status="pending_signature")
        tech = _seat(doc, "tech_supervisor_rep")
        author = _seat(doc, "author_supervisor_rep")

        first = workflow_engine.sign(tech.id, staff["tech_supervisor_rep"].id, comment="OK")
        assert first["document_signed"] is False
        assert first["signature"]["status"] == "signed"
        assert first["signature"]["comment"] == "OK"
        assert first["document"]["status"] == "pending_signature"

        second = workflow_engine.sign(author.id, staff["author_supervisor_rep"].id)
        assert second["document_signed"] is True
        assert second["document"]["status"] == "signed"
        assert second["document"]["is_locked"] is True

        refreshed = db.session.get(Document, doc.id)
        assert refreshed.locked_at is not None
        assert refreshed.status in LOCKED_STATUSES

        last = workflow_engine.get_history(doc.id)[-1]
        assert (last["from_status"], last["to_status"]) == ("pending_signature", "signed")
        assert last["comment"] == "All signatures collected"

    def test_signing_order_is_free(self, make_document, staff):
        doc = make_document(status="pending_signature")
        workflow_engine.sign(_seat(doc, "author_supervisor_rep").id, staff["author_supervisor_rep"].id)
        result = workflow_engine.sign(_seat(doc, "tech_supervisor_rep").id, staff["tech_supervisor_rep"].id)
        assert result["document_signed"] is True

    def test_only_assigned_person_may_sign(self, make_document, staff):
        doc = make_document(status="pending_signature")
        seat = _seat(doc, "tech_supervisor_rep")
        with pytest.raises(PermissionDeniedError):
            workflow_engine.sign(seat.id, staff["qa_engineer"].id)
        assert db.session.get(Signature, seat.id).status == "pending"

    def test_seat_without_person(self, make_document, staff):
        doc = make_document(status="pending_signature")
        seat = _seat(doc, "tech_supervisor_rep")
        seat.assigned_person_id = None
        db.session.flush()
        with pytest.raises(PermissionDeniedError):
            workflow_engine.sign(seat.id, staff["tech_supervisor_rep"].id)

    def test_cannot_sign_twice(self, make_document, staff):
        doc = make_document(status="pending_signature")
        seat = _seat(doc, "tech_supervisor_rep")
        workflow_engine.sign(seat.id, staff["tech_supervisor_rep"].id)
        with pytest.raises(IllegalTransitionError):
            workflow_engine.sign(seat.id, staff["tech_supervisor_rep"].id)

    @pytest.mark.parametrize("status", ["draft", "in_review", "needs_revision"])
    def test_document_must_await_signatures(self, make_document, staff, status):
        doc = make_document(status=status)
        seat = _seat(doc, "tech_supervisor_rep")
        with pytest.raises(IllegalTransitionError):
            workflow_engine.sign(seat.id, staff["tech_supervisor_rep"].id)

    def test_unknown_signature(self, staff):
        with pytest.raises(NotFoundError):
            workflow_engine.sign(99999, staff["tech_supervisor_rep"].id)


class TestReject:
    def test_reject_returns_document_for_revision(self, make_document, staff):
        doc = make_document(status="pending_signature")
        tech = _seat(doc, "tech_supervisor_rep")
        author = _seat(doc, "author_supervisor_rep")
        workflow_engine.sign(tech.id, staff["tech_supervisor_rep"].id)

        result = workflow_engine.reject(author.id, staff["author_supervisor_rep"].id, "Photos missing")

        assert result["reason"] == "Photos missing"
        assert result["document"]["status"] == "needs_revision"
        assert result["document"]["is_locked"] is False
        assert [s["status"] for s in result["document"]["signatures"]] == ["pending", "pending"]

        last = workflow_engine.get_history(doc.id)[-1]
        assert last["to_status"] == "needs_revision"
        assert last["comment"] == "Rejected by author_supervisor_rep: Photos missing"
        assert last["performed_by_id"] == staff["author_supervisor_rep"].id

    def test_reason_required(self, make_document, staff):
        doc = make_document(status="pending_signature")
        with pytest.raises(ValidationError):
            workflow_engine.reject(_seat(doc, "tech_supervisor_rep").id, staff["tech_supervisor_rep"].id, "  ")

    def test_only_assigned_person_may_reject(self, make_document, staff):
        doc = make_document(status="pending_signature")
        with pytest.raises(PermissionDeniedError):
            workflow_engine.reject(_seat(doc, "tech_supervisor_rep").id, staff["qa_engineer"].id, "No")

    def test_resubmission_after_rejection(self, make_document, staff):
        doc = make_document(status="pending_signature")
        seat = _seat(doc, "tech_supervisor_rep")
        workflow_engine.reject(seat.id, staff["tech_supervisor_rep"].id, "Wrong date")

        actor = staff["responsible_producer"].id
        workflow_engine.transition(doc.id, "in_review", actor)
        workflow_engine.transition(doc.id, "pending_signature", actor)

        workflow_engine.sign(seat.id, staff["tech_supervisor_rep"].id)
        result = workflow_engine.sign(_seat(doc, "author_supervisor_rep").id, staff["author_supervisor_rep"].id)
        assert result["document"]["status"] == "signed"


class TestAssignSigner:
    def test_fill_unresolved_seat(self, make_document, staff):
        doc = make_document()
        seat = _seat(doc, "tech_supervisor_rep")
        seat.assigned_person_id = None
        db.session.flush()

        stand_in = Person(full_name="Pavel Morozov")
        db.session.add(stand_in)
        db.session.flush()

        result = workflow_engine.assign_signer(seat.id, stand_in.id, actor_id=staff["qa_engineer"].id)
        assert result["assigned_person_id"] == stand_in.id
        assert result["assigned_person_name"] == "Pavel Morozov"

    def test_not_after_submission(self, make_document, staff):
        doc = make_document(status="pending_signature")
        with pytest.raises(IllegalTransitionError):
            workflow_engine.assign_signer(_seat(doc, "tech_supervisor_rep").id, staff["qa_engineer"].id)

    def test_unknown_person(self, make_document):
        doc = make_document()
        with pytest.raises(NotFoundError):
            workflow_engine.assign_signer(_seat(doc, "tech_supervisor_rep").id, 99999)

    def test_seat_filled_from_role_directory(self, make_document, staff):
        doc = make_document()
        seat = _seat(doc, "tech_supervisor_rep")
        seat.assigned_person_id = None
        db.session.flush()

        result = workflow_engine.assign_signer(seat.id)
        assert result["assigned_person_id"] == staff["tech_supervisor_rep"].id

    def test_seat_role_nobody_holds(self, make_document):
        doc = make_document()
        seat = _seat(doc, "author_supervisor_rep")
        seat.signer_role = "geodesist"
        db.session.flush()
        with pytest.raises(ValidationError) as exc_info:
            workflow_engine.assign_signer(seat.id)
        assert exc_info.value.details == {"signer_role": "unassigned"}
