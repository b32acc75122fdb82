"""
Document matrix — which documents a unit of work needs, and who signs them.

Models:
    - MatrixRule: (work_category, document_kind, trigger_event) →
      (preparer, checker, signers, required attachments, linked log).

``project_id IS NULL`` marks a global rule; project rules shadow global
rules of the same document kind during resolution.

DEFAULT_MATRIX_RULES is the built-in catalog (hidden works, critical
structures and utility networks per RD-11-02-2006 / SP 48.13330) used to
seed the table and as the last-resort lookup of the validation engine.
"""

from datetime import datetime, timezone

from docops.models import db

# ── Built-in catalog ─────────────────────────────────────────────────────────

_STANDARD_SIGNERS = ["responsible_producer", "tech_supervisor_rep", "author_supervisor_rep"]

DEFAULT_MATRIX_RULES = [
    # Concrete
    {
        "work_category": "concrete",
        "document_kind": "hidden_work_act",
        "trigger_event": "hidden concrete work completed before next stage",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for concrete mix",
            "As-built diagram",
            "Photo record",
        ],
        "linked_log_category": "concrete",
    },
    {
        "work_category": "concrete",
        "document_kind": "test_protocol",
        "trigger_event": "concrete strength achieved (7/14/28 days)",
        "preparer_role": "qa_engineer",
        "checker_role": None,
        "signer_roles": ["qa_engineer", "tech_supervisor_rep"],
        "required_attachments": [
            "Laboratory test protocol",
            "Sampling act",
        ],
        "linked_log_category": "concrete",
    },
    {
        "work_category": "concrete",
        "document_kind": "executive_drawing",
        "trigger_event": "concreting of structure completed",
        "preparer_role": "qa_engineer",
        "checker_role": "responsible_producer",
        "signer_roles": ["responsible_producer", "tech_supervisor_rep"],
        "required_attachments": [
            "As-built geodetic diagram",
        ],
        "linked_log_category": None,
    },
    # Reinforcement
    {
        "work_category": "reinforcement",
        "document_kind": "hidden_work_act",
        "trigger_event": "reinforcement completed before concreting",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for reinforcement steel",
            "As-built reinforcement diagram",
            "Photo record",
            "Welding log (if applicable)",
        ],
        "linked_log_category": None,
    },
    # Masonry
    {
        "work_category": "masonry",
        "document_kind": "hidden_work_act",
        "trigger_event": "masonry completed before covering with next layer",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for bricks/blocks",
            "Passports/certificates for mortar",
            "As-built diagram",
            "Photo record",
        ],
        "linked_log_category": None,
    },
    # Waterproofing
    {
        "work_category": "waterproofing",
        "document_kind": "hidden_work_act",
        "trigger_event": "waterproofing completed before covering",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for waterproofing materials",
            "Water-tightness test protocol (if applicable)",
            "Photo record",
        ],
        "linked_log_category": None,
    },
    # Insulation
    {
        "work_category": "insulation",
        "document_kind": "hidden_work_act",
        "trigger_event": "insulation completed before finishing",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for insulation",
            "Fire safety certificate for insulation",
            "Photo record",
        ],
        "linked_log_category": "insulation",
    },
    # HVAC
    {
        "work_category": "hvac",
        "document_kind": "network_act",
        "trigger_event": "HVAC network section installed",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for equipment",
            "Passports/certificates for pipes/ducts",
            "As-built network diagram",
            "Pressure test protocol",
            "Photo record",
        ],
        "linked_log_category": "installation",
    },
    # Plumbing
    {
        "work_category": "plumbing",
        "document_kind": "network_act",
        "trigger_event": "plumbing network section installed",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for pipes and fittings",
            "Passports/certificates for sanitary equipment",
            "As-built network diagram",
            "Hydraulic test protocol",
            "Photo record",
        ],
        "linked_log_category": "installation",
    },
    # Electrical
    {
        "work_category": "electrical",
        "document_kind": "network_act",
        "trigger_event": "electrical network section installed",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for cables",
            "Passports/certificates for electrical equipment",
            "As-built network diagram",
            "Insulation resistance test protocol",
            "Photo record",
        ],
        "linked_log_category": "installation",
    },
    # Steel structures
    {
        "work_category": "steel_structure",
        "document_kind": "critical_structure_act",
        "trigger_event": "critical steel structure erected",
        "preparer_role": "responsible_producer",
        "checker_role": "qa_engineer",
        "signer_roles": _STANDARD_SIGNERS,
        "required_attachments": [
            "Passports/certificates for steel structures",
            "Welding log",
            "Weld inspection protocol (ultrasonic/X-ray)",
            "As-built diagram",
            "Photo record",
            "Certificates for welding consumables",
        ],
        "linked_log_category": "welding",
    },
]

# Fields that may still change after a document references the rule
MUTABLE_WHEN_REFERENCED = frozenset({"is_active"})


class MatrixRule(db.Model):
    """
    One row of the document matrix.

    Business rules:
    - (work_category, document_kind, trigger_event) is unique within a scope
      (one project, or the global scope).
    - signer_roles is an ordered, non-empty list; order defines signature order.
    - Once a Document references the rule, only ``is_active`` may change.
    """

    __tablename__ = "matrix_rules"
    __table_args__ = (
        db.UniqueConstraint(
            "project_id", "work_category", "document_kind", "trigger_event",
            name="uq_matrix_rules_project_scope",
        ),
        # NULL project_id is never equal in SQL; global uniqueness needs a partial index
        db.Index(
            "uq_matrix_rules_global_scope",
            "work_category", "document_kind", "trigger_event",
            unique=True,
            postgresql_where=db.text("project_id IS NULL"),
            sqlite_where=db.text("project_id IS NULL"),
        ),
        db.Index("ix_matrix_rules_lookup", "work_category", "trigger_event", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL = global rule",
    )
    work_category = db.Column(db.String(50), nullable=False)
    document_kind = db.Column(db.String(50), nullable=False)
    trigger_event = db.Column(
        db.String(255), nullable=False,
        comment="Free-text construction milestone, e.g. 'work completed'",
    )
    preparer_role = db.Column(db.String(50), nullable=False)
    checker_role = db.Column(db.String(50), nullable=True)
    signer_roles = db.Column(db.JSON, nullable=False, default=list)
    required_attachments = db.Column(db.JSON, nullable=False, default=list)
    linked_log_category = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_global(self) -> bool:
        return self.project_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "scope": "global" if self.is_global else "project",
            "work_category": self.work_category,
            "document_kind": self.document_kind,
            "trigger_event": self.trigger_event,
            "preparer_role": self.preparer_role,
            "checker_role": self.checker_role,
            "signer_roles": list(self.signer_roles or []),
            "required_attachments": list(self.required_attachments or []),
            "linked_log_category": self.linked_log_category,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        scope = "global" if self.is_global else f"project={self.project_id}"
        return f"<MatrixRule {self.id}: {self.work_category}/{self.document_kind} ({scope})>"
