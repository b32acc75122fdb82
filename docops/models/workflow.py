"""
Lifecycle audit trail.

Models:
    - WorkflowTransition: immutable, append-only record of every transition
      attempt on a document (applied or rejected).

The history endpoint reads only this table; the document's own
``status`` / ``locked_at`` remain the source of truth when an audit write
was lost.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from docops.models import db

logger = logging.getLogger(__name__)

# created marks the first row of a revision; it is not a graph edge
TRANSITION_OUTCOMES = {"applied", "rejected", "created"}


class WorkflowTransition(db.Model):
    """
    One transition attempt, or the creation event of a revision.

    Rows are never updated or deleted.  ``outcome="rejected"`` rows carry
    the precondition that failed in ``error`` so a refused transition can
    never be mistaken for one that happened.
    """

    __tablename__ = "workflow_transitions"
    __table_args__ = (
        db.Index("ix_workflow_transitions_document_ts", "document_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_status = db.Column(db.String(30), nullable=False)
    to_status = db.Column(db.String(30), nullable=False)
    performed_by_id = db.Column(
        db.Integer, db.ForeignKey("persons.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="NULL for system-driven transitions (package build)",
    )
    comment = db.Column(db.Text, nullable=True)
    outcome = db.Column(db.String(20), nullable=False, default="applied",
                        comment="applied | rejected | created")
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    performed_by = db.relationship("Person")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "performed_by_id": self.performed_by_id,
            "performed_by_name": self.performed_by.full_name if self.performed_by else None,
            "comment": self.comment,
            "outcome": self.outcome,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<WorkflowTransition {self.id}: doc={self.document_id} "
            f"{self.from_status}→{self.to_status} {self.outcome}>"
        )


# ── Convenience writer ───────────────────────────────────────────────────────

def record_transition(
    *,
    document_id: int,
    from_status: str,
    to_status: str,
    performed_by_id: int | None = None,
    comment: str | None = None,
    outcome: str = "applied",
    error: str | None = None,
) -> WorkflowTransition | None:
    """
    Append a single transition row inside a savepoint.

    Callers keep transaction control.  A failed insert rolls back only the
    savepoint, is logged, and returns None — the caller's status change
    proceeds regardless.
    """
    row = WorkflowTransition(
        document_id=document_id,
        from_status=from_status,
        to_status=to_status,
        performed_by_id=performed_by_id,
        comment=comment,
        outcome=outcome,
        error=error,
    )
    try:
        with db.session.begin_nested():
            db.session.add(row)
    except SQLAlchemyError:
        logger.exception(
            "Audit write failed for document %s (%s → %s, %s)",
            document_id, from_status, to_status, outcome,
            extra={"document_id": document_id, "event_type": "audit_write_failed"},
        )
        return None
    return row
