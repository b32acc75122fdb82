"""
Project-side reference data read by the compliance engine.

Models:
    - Project:             construction project (scope of rules, documents, packages)
    - Person:              individual who prepares, checks or signs documents
    - ProjectMember:       role directory — (project, role) → person
    - Location:            zone / section of the site
    - WorkUnit:            trackable unit of physical work with a work category
    - Material:            construction material delivered to the project
    - MaterialCertificate: quality certificate / passport of a material
    - MaterialUsage:       material consumed by a work unit

These tables are maintained by the surrounding CRUD layer; the engine only
reads them (plus ``ProjectMember`` writes through ``role_directory``).
"""

from datetime import datetime, timezone

from docops.models import db
from docops.models.soft_delete import SoftDeleteMixin


def _utcnow():
    return datetime.now(timezone.utc)


class Project(SoftDeleteMixin, db.Model):
    """Construction project — the scope for rules, documents and packages."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    members = db.relationship("ProjectMember", backref="project", lazy="dynamic",
                              cascade="all, delete-orphan")
    locations = db.relationship("Location", backref="project", lazy="dynamic",
                                cascade="all, delete-orphan")
    work_units = db.relationship("WorkUnit", backref="project", lazy="dynamic",
                                 cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.code}>"


class Person(db.Model):
    """Individual who can be assigned a project role."""

    __tablename__ = "persons"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    position = db.Column(db.String(255), nullable=True)
    organization = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "position": self.position,
            "organization": self.organization,
            "email": self.email,
        }

    def __repr__(self):
        return f"<Person {self.id}: {self.full_name}>"


class ProjectMember(db.Model):
    """Role assignment: at most one person per (project, role)."""

    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "role", name="uq_project_members_project_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    person_id = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role = db.Column(
        db.String(50), nullable=False,
        comment="responsible_producer | qa_engineer | tech_supervisor_rep | …",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    person = db.relationship("Person")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "person_id": self.person_id,
            "person_name": self.person.full_name if self.person else None,
            "role": self.role,
        }


class Location(db.Model):
    """Zone of the construction site (block, floor, axis range)."""

    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "project_id": self.project_id, "name": self.name}


class WorkUnit(SoftDeleteMixin, db.Model):
    """A discrete, trackable scope of physical work."""

    __tablename__ = "work_units"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    work_category = db.Column(
        db.String(50), nullable=False,
        comment="concrete | reinforcement | masonry | hvac | electrical | …",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    location = db.relationship("Location")
    material_usages = db.relationship("MaterialUsage", backref="work_unit", lazy="select",
                                      cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "location_id": self.location_id,
            "name": self.name,
            "work_category": self.work_category,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def __repr__(self):
        return f"<WorkUnit {self.id}: {self.work_category} {self.name!r}>"


class Material(db.Model):
    __tablename__ = "materials"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    supplier = db.Column(db.String(255), nullable=True)

    certificates = db.relationship("MaterialCertificate", backref="material", lazy="select",
                                   cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "supplier": self.supplier,
            "certificate_count": len(self.certificates),
        }


class MaterialCertificate(db.Model):
    __tablename__ = "material_certificates"

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(
        db.Integer, db.ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    number = db.Column(db.String(100), nullable=True)
    file_path = db.Column(db.String(500), nullable=True)
    valid_until = db.Column(db.Date, nullable=True)


class MaterialUsage(db.Model):
    __tablename__ = "material_usages"

    id = db.Column(db.Integer, primary_key=True)
    work_unit_id = db.Column(
        db.Integer, db.ForeignKey("work_units.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    material_id = db.Column(
        db.Integer, db.ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    quantity = db.Column(db.Numeric(14, 3), nullable=True)
    unit = db.Column(db.String(20), nullable=True)

    material = db.relationship("Material")
