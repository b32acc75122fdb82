"""
Document authoring — edits, attachments, soft delete and revisions.

Authors may change a document only while it is in an editable status
(draft / needs_revision) and unlocked.  Status and ``locked_at`` are never
touched here; they belong to ``workflow_engine``.

A superseding revision is a new draft that copies the source's payload and
signature seats (all pending) and points back at it through
``parent_document_id``.  Revision numbers strictly increase along the chain.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from docops.core.exceptions import (
    DocumentLockedError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from docops.models import db
from docops.models.document import (
    ATTACHMENT_CATEGORIES,
    EDITABLE_STATUSES,
    Attachment,
    Document,
    Signature,
)
from docops.models.workflow import record_transition
from docops.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

# Author-editable columns; everything else is owned by the engine
_EDITABLE_FIELDS = ("title", "number", "file_path", "file_name")

# Revisions may only supersede finalised documents
_REVISABLE_STATUSES = ("signed", "in_package")


def _get_active(document_id: int) -> Document:
    doc = db.session.get(Document, document_id)
    if doc is None or doc.is_deleted:
        raise NotFoundError(resource="Document", resource_id=document_id)
    return doc


def _ensure_editable(doc: Document) -> None:
    if doc.locked_at is not None:
        raise DocumentLockedError(doc.id, doc.status, "document is locked")
    if doc.status not in EDITABLE_STATUSES:
        raise DocumentLockedError(doc.id, doc.status)


def get_document(document_id: int) -> dict:
    return _get_active(document_id).to_dict(include_children=True)


def update_document(document_id: int, data: dict) -> dict:
    """Patch author-editable columns and merge ``fields``.

    ``fields`` keys with a ``None`` value are removed from the payload.
    """
    doc = _get_active(document_id)
    _ensure_editable(doc)

    for name in _EDITABLE_FIELDS:
        if name in data:
            value = data[name]
            if name == "title" and not (isinstance(value, str) and value.strip()):
                raise ValidationError("title must not be empty", details={"title": "required"})
            setattr(doc, name, value.strip() if isinstance(value, str) else value)

    if "document_date" in data:
        try:
            document_date = parse_date_input(data["document_date"])
        except ValueError as exc:
            raise ValidationError(str(exc), details={"document_date": "invalid"}) from exc
        if document_date is None:
            raise ValidationError("document_date must not be empty", details={"document_date": "required"})
        doc.document_date = document_date

    if "fields" in data:
        incoming = data["fields"]
        if not isinstance(incoming, dict):
            raise ValidationError("fields must be an object", details={"fields": "invalid"})
        merged = dict(doc.fields or {})
        for key, value in incoming.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        doc.fields = merged

    db.session.commit()
    logger.info("Document %s updated", doc.id, extra={"document_id": doc.id, "project_id": doc.project_id})
    return doc.to_dict(include_children=True)


def add_attachment(document_id: int, data: dict, uploaded_by_id: int | None = None) -> dict:
    doc = _get_active(document_id)
    _ensure_editable(doc)

    file_name = (data.get("file_name") or "").strip()
    if not file_name:
        raise ValidationError("file_name is required", details={"file_name": "required"})
    category = data.get("category") or "other"
    if category not in ATTACHMENT_CATEGORIES:
        raise ValidationError(
            f"Unknown attachment category '{category}'",
            details={"category": sorted(ATTACHMENT_CATEGORIES)},
        )

    attachment = Attachment(
        document_id=doc.id,
        category=category,
        file_name=file_name,
        file_path=data.get("file_path"),
        uploaded_by_id=uploaded_by_id,
    )
    db.session.add(attachment)
    db.session.commit()
    logger.info(
        "Attachment %s (%s) added to document %s", attachment.id, category, doc.id,
        extra={"document_id": doc.id, "project_id": doc.project_id},
    )
    return attachment.to_dict()


def delete_document(document_id: int) -> None:
    """Soft-delete an editable document."""
    doc = _get_active(document_id)
    _ensure_editable(doc)
    doc.soft_delete()
    db.session.commit()
    logger.info("Document %s soft-deleted", doc.id, extra={"document_id": doc.id, "project_id": doc.project_id})


# ── Revisions ────────────────────────────────────────────────────────────────


def _chain_root(doc: Document) -> Document:
    seen = {doc.id}
    while doc.parent is not None and doc.parent.id not in seen:
        doc = doc.parent
        seen.add(doc.id)
    return doc


def _max_revision_in_chain(doc: Document) -> int:
    """Highest revision among the chain's root and everything that descends from it."""
    root = _chain_root(doc)
    ids = {root.id}
    frontier = [root.id]
    highest = root.revision
    while frontier:
        rows = db.session.execute(
            select(Document.id, Document.revision).where(Document.parent_document_id.in_(frontier))
        ).all()
        frontier = [r.id for r in rows if r.id not in ids]
        ids.update(frontier)
        if rows:
            highest = max(highest, *(r.revision for r in rows))
    return highest


def create_revision(document_id: int, actor_id: int | None = None) -> dict:
    """Supersede a finalised document with a new draft revision."""
    source = _get_active(document_id)
    if source.status not in _REVISABLE_STATUSES:
        raise IllegalTransitionError(
            source.status, "draft",
            f"revisions can only supersede documents in {', '.join(_REVISABLE_STATUSES)}",
        )

    revision = _max_revision_in_chain(source) + 1
    doc = Document(
        project_id=source.project_id,
        kind=source.kind,
        title=source.title,
        number=source.number,
        status="draft",
        revision=revision,
        parent_document_id=source.id,
        fields=dict(source.fields or {}),
        work_unit_id=source.work_unit_id,
        location_id=source.location_id,
        matrix_rule_id=source.matrix_rule_id,
        trigger_event=source.trigger_event,
        required_attachments=(
            list(source.required_attachments) if source.required_attachments is not None else None
        ),
        created_by_id=actor_id or source.created_by_id,
    )
    db.session.add(doc)
    db.session.flush()

    for seat in source.signatures:
        db.session.add(Signature(
            document_id=doc.id,
            signer_role=seat.signer_role,
            assigned_person_id=seat.assigned_person_id,
            status="pending",
            sort_order=seat.sort_order,
        ))

    record_transition(
        document_id=doc.id,
        from_status="draft",
        to_status="draft",
        performed_by_id=actor_id,
        comment=f"Created revision {revision} superseding document {source.id}",
        outcome="created",
    )
    db.session.commit()

    logger.info(
        "Document %s superseded by %s (revision %d)", source.id, doc.id, revision,
        extra={"document_id": doc.id, "project_id": doc.project_id, "event_type": "revision"},
    )
    return doc.to_dict(include_children=True)


def revision_chain(document_id: int) -> list[dict]:
    """Every document in the chain, ordered by revision."""
    doc = db.session.get(Document, document_id)
    if doc is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    root = _chain_root(doc)
    chain = [root]
    frontier = [root.id]
    while frontier:
        children = db.session.execute(
            select(Document).where(Document.parent_document_id.in_(frontier))
        ).scalars().all()
        chain.extend(children)
        frontier = [c.id for c in children]
    chain.sort(key=lambda d: (d.revision, d.id))
    return [{"id": d.id, "revision": d.revision, "status": d.status,
             "parent_document_id": d.parent_document_id} for d in chain]
