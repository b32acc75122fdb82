"""
Shared pytest fixtures for the DocOps Compliance Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - blob_store: LocalBlobStore under tmp_path, installed as the active store
    - project / staff / work_unit: a concrete-works project with every role assigned
    - make_document: factory for acts in any status, valid by default
"""

from datetime import datetime, timezone

import pytest

from docops import create_app
from docops.models import db as _db
from docops.models.document import LOCKED_STATUSES, Attachment, Document, Signature
from docops.models.project import Location, Person, Project, ProjectMember, WorkUnit
from docops.services.storage import LocalBlobStore, set_blob_store

STAFF_ROLES = {
    "responsible_producer": "Ivan Petrov",
    "tech_supervisor_rep": "Olga Smirnova",
    "author_supervisor_rep": "Sergei Volkov",
    "qa_engineer": "Anna Kuznetsova",
    "general_contractor_rep": "Dmitry Orlov",
    "developer_rep": "Elena Sokolova",
}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def blob_store(tmp_path):
    """Local blob store rooted in a per-test temp directory."""
    store = LocalBlobStore(str(tmp_path / "blobs"))
    set_blob_store(store)
    yield store
    set_blob_store(None)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """A project with one location."""
    p = Project(code="PRJ-001", name="Residential Block A")
    _db.session.add(p)
    _db.session.flush()
    return p


@pytest.fixture()
def staff(project):
    """role → Person, every role in STAFF_ROLES assigned on *project*."""
    people = {}
    for role, name in STAFF_ROLES.items():
        person = Person(full_name=name, position=role.replace("_", " "))
        _db.session.add(person)
        _db.session.flush()
        _db.session.add(ProjectMember(project_id=project.id, person_id=person.id, role=role))
        people[role] = person
    _db.session.flush()
    return people


@pytest.fixture()
def work_unit(project):
    """Concrete works on level 1 of the project."""
    loc = Location(project_id=project.id, name="Block A, level 1")
    _db.session.add(loc)
    _db.session.flush()
    wu = WorkUnit(
        project_id=project.id,
        location_id=loc.id,
        name="Slab pour, axes 1-4",
        work_category="concrete",
    )
    _db.session.add(wu)
    _db.session.flush()
    return wu


# ── Document factory ─────────────────────────────────────────────────────

VALID_ACT_FIELDS = {
    "act_number": "HW-001",
    "work_description": "Concrete pour of slab, axes 1-4",
    "start_date": "2024-01-10",
    "end_date": "2024-01-12",
    "project_documentation": "PD-KR-01 sheet 4",
    "materials": "Concrete B25 W6 F150",
    "next_work_description": "Waterproofing of slab",
}

ACT_ATTACHMENT_LABELS = ["material certificate", "as-built diagram", "Photo record"]

ACT_ATTACHMENTS = [
    ("certificate", "concrete_passport_123.pdf"),
    ("scheme", "slab_scheme.pdf"),
]

DEFAULT_SIGNERS = ("tech_supervisor_rep", "author_supervisor_rep")


@pytest.fixture()
def make_document(project, work_unit, staff):
    """Factory for documents attached to *work_unit*.

    Defaults produce a hidden work act that passes validation (photo
    warning and no-materials warning only).  Seats of documents created
    in a locked status are already signed and ``locked_at`` is set.
    """

    def _make(
        status="draft",
        kind="hidden_work_act",
        fields=None,
        signer_roles=DEFAULT_SIGNERS,
        attachments=ACT_ATTACHMENTS,
        required_attachments=ACT_ATTACHMENT_LABELS,
        **columns,
    ):
        locked = status in LOCKED_STATUSES
        doc = Document(
            project_id=project.id,
            kind=kind,
            title=columns.pop("title", f"{kind} for {work_unit.name}"),
            status=status,
            revision=columns.pop("revision", 1),
            fields=dict(VALID_ACT_FIELDS) if fields is None else dict(fields),
            work_unit_id=columns.pop("work_unit_id", work_unit.id),
            location_id=columns.pop("location_id", work_unit.location_id),
            required_attachments=(
                list(required_attachments) if required_attachments is not None else None
            ),
            locked_at=datetime.now(timezone.utc) if locked else None,
            **columns,
        )
        _db.session.add(doc)
        _db.session.flush()
        for order, role in enumerate(signer_roles):
            _db.session.add(Signature(
                document_id=doc.id,
                signer_role=role,
                assigned_person_id=staff[role].id,
                status="signed" if locked else "pending",
                signed_at=datetime.now(timezone.utc) if locked else None,
                sort_order=order,
            ))
        for category, file_name in attachments:
            _db.session.add(Attachment(document_id=doc.id, category=category, file_name=file_name))
        _db.session.flush()
        _db.session.refresh(doc)
        return doc

    return _make
