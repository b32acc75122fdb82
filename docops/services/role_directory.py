"""
Identity / role directory.

Answers "who holds role X on project P" for the requirement resolver and
the signature assignment flow.  At most one person per (project, role).
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from docops.core.exceptions import DuplicateAssignmentError, NotFoundError
from docops.models import db
from docops.models.project import Person, Project, ProjectMember

logger = logging.getLogger(__name__)


def resolve_assignee(project_id: int, role: str) -> Person | None:
    """Return the person assigned to *role* on the project, or None."""
    if not role:
        return None
    member = db.session.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.role == role,
        )
    ).scalar_one_or_none()
    return member.person if member else None


def role_map(project_id: int) -> dict[str, Person]:
    """All role assignments of a project, keyed by role."""
    rows = db.session.execute(
        select(ProjectMember).where(ProjectMember.project_id == project_id)
    ).scalars().all()
    return {m.role: m.person for m in rows}


def assign_role(project_id: int, person_id: int, role: str) -> dict:
    """Assign *person_id* to *role*; raises DuplicateAssignmentError if the role is taken."""
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    if db.session.get(Person, person_id) is None:
        raise NotFoundError(resource="Person", resource_id=person_id)

    existing = db.session.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project_id,
            ProjectMember.role == role,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise DuplicateAssignmentError(project_id, role)

    member = ProjectMember(project_id=project_id, person_id=person_id, role=role)
    db.session.add(member)
    try:
        db.session.commit()
    except IntegrityError as exc:
        # concurrent assignment of the same role won the unique constraint
        db.session.rollback()
        raise DuplicateAssignmentError(project_id, role) from exc

    logger.info(
        "Role %s on project %s assigned to person %s", role, project_id, person_id,
        extra={"project_id": project_id},
    )
    return member.to_dict()
