"""
Delivery packages (as-built documentation sets).

Models:
    - Package:     named, project-scoped collection of documents to deliver
    - PackageItem: (package, document) membership with target folder + order

Folder layout of every built archive is fixed by PACKAGE_FOLDERS; a
document's folder comes from KIND_FOLDERS.
"""

from datetime import datetime, timezone

from docops.models import db

# ── Archive layout ───────────────────────────────────────────────────────────

SUMMARY_FOLDER = "00_summary"
LOGS_FOLDER = "01_logs"
HIDDEN_WORKS_FOLDER = "02_hidden_work_acts"
CRITICAL_STRUCTURES_FOLDER = "03_critical_structure_acts"
NETWORKS_FOLDER = "04_utility_networks"
DRAWINGS_FOLDER = "05_as_built_drawings"
CERTIFICATES_FOLDER = "06_certificates"
PROTOCOLS_FOLDER = "07_test_protocols"
CORRESPONDENCE_FOLDER = "08_correspondence"

PACKAGE_FOLDERS = [
    SUMMARY_FOLDER,
    LOGS_FOLDER,
    HIDDEN_WORKS_FOLDER,
    CRITICAL_STRUCTURES_FOLDER,
    NETWORKS_FOLDER,
    DRAWINGS_FOLDER,
    CERTIFICATES_FOLDER,
    PROTOCOLS_FOLDER,
    CORRESPONDENCE_FOLDER,
]

KIND_FOLDERS = {
    "site_handover": SUMMARY_FOLDER,
    "assignment_order": SUMMARY_FOLDER,
    "hse_briefing": SUMMARY_FOLDER,
    "work_plan": SUMMARY_FOLDER,
    "kickoff_protocol": SUMMARY_FOLDER,
    "hidden_work_act": HIDDEN_WORKS_FOLDER,
    "critical_structure_act": CRITICAL_STRUCTURES_FOLDER,
    "network_act": NETWORKS_FOLDER,
    "geodetic_act": DRAWINGS_FOLDER,
    "executive_drawing": DRAWINGS_FOLDER,
    "incoming_control_act": CERTIFICATES_FOLDER,
    "material_certificate": CERTIFICATES_FOLDER,
    "test_protocol": PROTOCOLS_FOLDER,
    "interim_acceptance": SUMMARY_FOLDER,
    "defect_list": SUMMARY_FOLDER,
    "completion_act": SUMMARY_FOLDER,
    "handover_act": SUMMARY_FOLDER,
    "correspondence": CORRESPONDENCE_FOLDER,
    "other": SUMMARY_FOLDER,
}


def folder_for_kind(kind: str) -> str:
    """Deterministic archive folder for a document kind."""
    return KIND_FOLDERS.get(kind, SUMMARY_FOLDER)


# ── Lifecycle ────────────────────────────────────────────────────────────────

PACKAGE_STATUSES = {"draft", "generating", "ready", "delivered"}

PACKAGE_TRANSITIONS = {
    "draft":      ["generating"],
    "generating": ["ready", "draft"],   # draft = failed / timed-out build
    "ready":      ["generating", "delivered", "draft"],
    "delivered":  [],
}

# Statuses from which a build may start
BUILDABLE_STATUSES = ("draft", "ready")


def validate_package_transition(old_status, new_status):
    """Return True if Package status transition is valid."""
    return new_status in PACKAGE_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Package(db.Model):
    """
    A deliverable documentation set for one project.

    Business rules:
    - ``generating`` excludes concurrent builds of the same package and never
      outlives a build: failures and timeouts revert to ``draft``.
    - archive_path / inventory_path are only meaningful while ``ready`` or
      ``delivered``.
    - Adding documents to a ``ready`` package invalidates the archive
      (status returns to ``draft``).
    """

    __tablename__ = "packages"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft | generating | ready | delivered")
    date_from = db.Column(db.Date, nullable=True)
    date_to = db.Column(db.Date, nullable=True)

    archive_path = db.Column(db.String(500), nullable=True)
    inventory_path = db.Column(db.String(500), nullable=True)
    byte_size = db.Column(db.Integer, nullable=True)
    document_count = db.Column(db.Integer, nullable=True)
    built_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    project = db.relationship("Project")
    items = db.relationship(
        "PackageItem", backref="package", lazy="select",
        order_by="PackageItem.sort_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "date_from": _iso(self.date_from),
            "date_to": _iso(self.date_to),
            "archive_path": self.archive_path,
            "inventory_path": self.inventory_path,
            "byte_size": self.byte_size,
            "document_count": self.document_count,
            "item_count": len(self.items),
            "built_at": _iso(self.built_at),
            "delivered_at": _iso(self.delivered_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<Package {self.id}: {self.name!r} [{self.status}]>"


class PackageItem(db.Model):
    __tablename__ = "package_items"
    __table_args__ = (
        db.UniqueConstraint("package_id", "document_id", name="uq_package_items_package_document"),
    )

    id = db.Column(db.Integer, primary_key=True)
    package_id = db.Column(
        db.Integer, db.ForeignKey("packages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    folder_path = db.Column(db.String(255), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    document = db.relationship("Document")

    def to_dict(self) -> dict:
        doc = self.document
        return {
            "id": self.id,
            "package_id": self.package_id,
            "document_id": self.document_id,
            "folder_path": self.folder_path,
            "sort_order": self.sort_order,
            "document_title": doc.title if doc else None,
            "document_number": doc.number if doc else None,
            "document_status": doc.status if doc else None,
        }
