"""
Soft Delete Mixin

Adds `deleted_at` timestamp column for soft delete.
Documents, work units and projects are never physically removed: audit
history and built packages must stay resolvable.

Usage:
    class Document(SoftDeleteMixin, db.Model):
        ...

    doc.soft_delete()
    db.session.commit()
"""

from datetime import datetime, timezone

from docops.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None
