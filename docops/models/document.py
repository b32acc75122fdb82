"""
Quality-control documents and their signature seats.

Models:
    - Document:   act / protocol / drawing with an opaque per-kind ``fields`` payload
    - Signature:  one required approval on a document, bound to a role seat
    - Attachment: supporting file (certificate, protocol, photo, scheme, …)

Status changes are owned by ``docops.services.workflow_engine``; nothing
else may assign ``Document.status`` or ``Document.locked_at``.
"""

from datetime import date, datetime, timezone

from docops.models import db
from docops.models.soft_delete import SoftDeleteMixin

# ── Document kinds ───────────────────────────────────────────────────────────

DOCUMENT_KINDS = {
    "site_handover": "Site handover act",
    "assignment_order": "Assignment order",
    "hse_briefing": "HSE briefing log",
    "work_plan": "Work execution plan",
    "kickoff_protocol": "Kick-off meeting protocol",
    "hidden_work_act": "Hidden work inspection act",
    "critical_structure_act": "Critical structure inspection act",
    "network_act": "Utility network inspection act",
    "geodetic_act": "Geodetic survey act",
    "executive_drawing": "As-built drawing",
    "incoming_control_act": "Incoming control act",
    "material_certificate": "Material certificate",
    "test_protocol": "Test protocol",
    "interim_acceptance": "Interim acceptance act",
    "defect_list": "Defect list",
    "completion_act": "Completion act",
    "handover_act": "Documentation handover act",
    "correspondence": "Correspondence",
    "other": "Document",
}

# Kinds that certify physical work: material certificates and duplicate checks apply
ACT_KINDS = frozenset({"hidden_work_act", "critical_structure_act", "network_act"})

# ── Lifecycle ────────────────────────────────────────────────────────────────

DOCUMENT_STATUSES = {
    "draft",
    "in_review",
    "needs_revision",
    "pending_signature",
    "signed",
    "archived",
    "in_package",
}

DOCUMENT_TRANSITIONS = {
    "draft":             ["in_review"],
    "in_review":         ["needs_revision", "pending_signature"],
    "needs_revision":    ["in_review", "draft"],   # draft = explicit rollback
    "pending_signature": ["signed", "needs_revision"],
    "signed":            ["archived", "in_package"],
    "archived":          [],
    "in_package":        [],
}

LOCKED_STATUSES = frozenset({"signed", "archived", "in_package"})

# Statuses in which authors may still edit fields / attachments
EDITABLE_STATUSES = frozenset({"draft", "needs_revision"})

SIGNATURE_STATUSES = {"pending", "signed", "rejected"}

ATTACHMENT_CATEGORIES = {"certificate", "protocol", "photo", "scheme", "drawing", "other"}


def validate_document_transition(old_status, new_status):
    """Return True if Document status transition is valid."""
    return new_status in DOCUMENT_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Document(SoftDeleteMixin, db.Model):
    """
    A quality-control document.

    Business rules:
    - locked_at is set iff status ∈ LOCKED_STATUSES.
    - A locked document is immutable apart from signed → archived / in_package.
    - revision starts at 1; a superseding revision carries parent_document_id
      and a strictly higher revision number.
    - required_attachments is a snapshot of the matrix rule at creation time.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_project_kind", "project_id", "kind"),
        db.Index("ix_documents_work_unit_kind", "work_unit_id", "kind"),
        db.Index("ix_documents_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    kind = db.Column(db.String(50), nullable=False, comment="Key of DOCUMENT_KINDS")
    title = db.Column(db.String(500), nullable=False)
    number = db.Column(db.String(100), nullable=True)
    document_date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(db.String(30), nullable=False, default="draft")
    revision = db.Column(db.Integer, nullable=False, default=1)
    parent_document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="Document this revision supersedes",
    )
    fields = db.Column(db.JSON, nullable=False, default=dict)

    work_unit_id = db.Column(
        db.Integer, db.ForeignKey("work_units.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    # Matrix rule snapshot
    matrix_rule_id = db.Column(
        db.Integer, db.ForeignKey("matrix_rules.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    trigger_event = db.Column(db.String(255), nullable=True)
    required_attachments = db.Column(
        db.JSON, nullable=True,
        comment="Attachment labels copied from the matrix rule; NULL = look up at validation time",
    )

    # Primary rendered file in the blob store
    file_path = db.Column(db.String(500), nullable=True)
    file_name = db.Column(db.String(255), nullable=True)

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True,
    )
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    signatures = db.relationship(
        "Signature", backref="document", lazy="select",
        order_by="Signature.sort_order", cascade="all, delete-orphan",
    )
    attachments = db.relationship(
        "Attachment", backref="document", lazy="select",
        order_by="Attachment.id", cascade="all, delete-orphan",
    )
    work_unit = db.relationship("WorkUnit")
    location = db.relationship("Location")
    matrix_rule = db.relationship("MatrixRule")
    parent = db.relationship("Document", remote_side=[id])

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def kind_label(self) -> str:
        return DOCUMENT_KINDS.get(self.kind, DOCUMENT_KINDS["other"])

    def to_dict(self, include_children: bool = False) -> dict:
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "kind": self.kind,
            "kind_label": self.kind_label,
            "title": self.title,
            "number": self.number,
            "document_date": _iso(self.document_date),
            "status": self.status,
            "revision": self.revision,
            "parent_document_id": self.parent_document_id,
            "fields": dict(self.fields or {}),
            "work_unit_id": self.work_unit_id,
            "location_id": self.location_id,
            "matrix_rule_id": self.matrix_rule_id,
            "trigger_event": self.trigger_event,
            "required_attachments": self.required_attachments,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "created_by_id": self.created_by_id,
            "is_locked": self.is_locked,
            "locked_at": _iso(self.locked_at),
            "deleted_at": _iso(self.deleted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["signatures"] = [s.to_dict() for s in self.signatures]
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    def __repr__(self):
        return f"<Document {self.id}: {self.kind} rev{self.revision} [{self.status}]>"


class Signature(db.Model):
    """
    One required approval on a document.

    ``signer_role`` names the seat, not the person's organisational role.
    ``assigned_person_id`` is NULL when the project had nobody in that role
    when the seat was created — a configuration gap surfaced to the caller.
    """

    __tablename__ = "signatures"
    __table_args__ = (
        db.Index("ix_signatures_document_order", "document_id", "sort_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    signer_role = db.Column(db.String(50), nullable=False)
    assigned_person_id = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | signed | rejected")
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    assigned_person = db.relationship("Person")

    def reset(self):
        """Return the seat to an unsigned state."""
        self.status = "pending"
        self.signed_at = None
        self.comment = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "signer_role": self.signer_role,
            "assigned_person_id": self.assigned_person_id,
            "assigned_person_name": self.assigned_person.full_name if self.assigned_person else None,
            "status": self.status,
            "signed_at": _iso(self.signed_at),
            "comment": self.comment,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<Signature {self.id}: doc={self.document_id} {self.signer_role} [{self.status}]>"


class Attachment(db.Model):
    __tablename__ = "attachments"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    category = db.Column(
        db.String(20), nullable=False, default="other",
        comment="certificate | protocol | photo | scheme | drawing | other",
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(500), nullable=True)
    uploaded_by_id = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "category": self.category,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }
