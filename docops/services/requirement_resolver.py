"""
Requirement Resolver — which documents a unit of work needs for a trigger event.

Two-step contract:

    rules = resolve(work_unit, trigger_event)
    result = apply(work_unit, trigger_event, rules, actor_id=...)

``apply_trigger(work_unit_id, trigger_event, actor_id)`` is the outward
operation: it locks the work unit row, resolves, applies and commits in one
unit of work so that concurrent triggers for the same unit cannot create
duplicates.

Resolution rules:
    - only active rules with matching work_category and trigger_event
    - project-scoped rules first, global rules after, then sort_order
    - deduplicate by document_kind (first wins → project rules shadow global)

Application rules:
    - skip kinds that already have a non-deleted document for the work unit
    - create a draft Document (revision 1) with the rule's attachment labels
    - create one pending Signature per signer role, in rule order; a role
      with nobody assigned yields a seat with assigned_person_id=None and is
      reported in ``unresolved_signatures`` (never dropped, never fatal)
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select

from docops.core.exceptions import NotFoundError, ValidationError
from docops.models import db
from docops.models.document import DOCUMENT_KINDS, Document, Signature
from docops.models.matrix import MatrixRule
from docops.models.project import WorkUnit
from docops.services.role_directory import role_map

logger = logging.getLogger(__name__)


# ── Resolution ───────────────────────────────────────────────────────────────


def resolve(work_unit: WorkUnit, trigger_event: str) -> list[MatrixRule]:
    """Applicable rules for the work unit and trigger, deduplicated by kind."""
    stmt = (
        select(MatrixRule)
        .where(
            MatrixRule.is_active.is_(True),
            MatrixRule.work_category == work_unit.work_category,
            MatrixRule.trigger_event == trigger_event,
            or_(MatrixRule.project_id == work_unit.project_id, MatrixRule.project_id.is_(None)),
        )
        .order_by(
            MatrixRule.project_id.is_(None),   # project-scoped (False) first
            MatrixRule.sort_order,
            MatrixRule.id,
        )
    )
    rules = db.session.execute(stmt).scalars().all()

    seen: set[str] = set()
    resolved = []
    for rule in rules:
        if rule.document_kind in seen:
            continue
        seen.add(rule.document_kind)
        resolved.append(rule)
    return resolved


def _existing_kinds(work_unit_id: int) -> set[str]:
    rows = db.session.execute(
        select(Document.kind).where(
            Document.work_unit_id == work_unit_id,
            Document.deleted_at.is_(None),
        )
    ).scalars().all()
    return set(rows)


# ── Application ──────────────────────────────────────────────────────────────


def apply(
    work_unit: WorkUnit,
    trigger_event: str,
    rules: list[MatrixRule],
    actor_id: int | None = None,
) -> dict:
    """Create the missing documents and their signature seats.

    Flushes but does NOT commit; ``apply_trigger`` owns the transaction.

    Returns:
        {
            "created": [document dict with signatures],
            "skipped": [{"document_kind", "reason", "document_id"}],
            "unresolved_signatures": [{"document_id", "signature_id", "signer_role"}],
        }
    """
    existing = _existing_kinds(work_unit.id)
    assignees = role_map(work_unit.project_id)

    created: list[Document] = []
    skipped: list[dict] = []
    unresolved: list[dict] = []

    for rule in rules:
        if rule.document_kind in existing:
            skipped.append({
                "document_kind": rule.document_kind,
                "rule_id": rule.id,
                "reason": "document already exists for work unit",
            })
            continue

        preparer = assignees.get(rule.preparer_role)
        doc = Document(
            project_id=work_unit.project_id,
            kind=rule.document_kind,
            title=f"{DOCUMENT_KINDS.get(rule.document_kind, DOCUMENT_KINDS['other'])} — {work_unit.name}",
            status="draft",
            revision=1,
            fields={},
            work_unit_id=work_unit.id,
            location_id=work_unit.location_id,
            matrix_rule_id=rule.id,
            trigger_event=trigger_event,
            required_attachments=list(rule.required_attachments or []),
            created_by_id=preparer.id if preparer else actor_id,
        )
        db.session.add(doc)
        db.session.flush()

        for order, role in enumerate(rule.signer_roles or []):
            person = assignees.get(role)
            sig = Signature(
                document_id=doc.id,
                signer_role=role,
                assigned_person_id=person.id if person else None,
                status="pending",
                sort_order=order,
            )
            db.session.add(sig)
            if person is None:
                unresolved.append({"document_id": doc.id, "signer_role": role, "signature": sig})

        existing.add(rule.document_kind)
        created.append(doc)

    db.session.flush()

    unresolved_out = [
        {"document_id": u["document_id"], "signature_id": u["signature"].id, "signer_role": u["signer_role"]}
        for u in unresolved
    ]
    if unresolved_out:
        logger.warning(
            "%d signature seat(s) without an assigned person on work unit %s",
            len(unresolved_out), work_unit.id,
            extra={"project_id": work_unit.project_id, "event_type": "unresolved_signer"},
        )

    return {
        "created": [d.to_dict(include_children=True) for d in created],
        "skipped": skipped,
        "unresolved_signatures": unresolved_out,
    }


def _lock_work_unit(work_unit_id: int) -> WorkUnit:
    work_unit = db.session.execute(
        select(WorkUnit).where(WorkUnit.id == work_unit_id).with_for_update()
    ).scalar_one_or_none()
    if work_unit is None or work_unit.is_deleted:
        raise NotFoundError(resource="WorkUnit", resource_id=work_unit_id)
    return work_unit


def apply_trigger(work_unit_id: int, trigger_event: str, actor_id: int | None = None) -> dict:
    """create-documents-from-trigger: resolve + apply + commit, under a work unit lock."""
    trigger_event = (trigger_event or "").strip()
    if not trigger_event:
        raise ValidationError("trigger_event is required", details={"trigger_event": "required"})

    try:
        work_unit = _lock_work_unit(work_unit_id)
        rules = resolve(work_unit, trigger_event)
        result = apply(work_unit, trigger_event, rules, actor_id=actor_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    result["work_unit_id"] = work_unit_id
    result["trigger_event"] = trigger_event
    result["rules_matched"] = len(rules)
    logger.info(
        "Trigger '%s' on work unit %s: %d created, %d skipped",
        trigger_event, work_unit_id, len(result["created"]), len(result["skipped"]),
        extra={"project_id": work_unit.project_id},
    )
    return result


def missing_documents(work_unit_id: int, trigger_event: str) -> list[dict]:
    """Preview: resolved rules whose document kind does not exist yet for the work unit."""
    work_unit = db.session.get(WorkUnit, work_unit_id)
    if work_unit is None or work_unit.is_deleted:
        raise NotFoundError(resource="WorkUnit", resource_id=work_unit_id)
    existing = _existing_kinds(work_unit_id)
    return [
        rule.to_dict()
        for rule in resolve(work_unit, trigger_event)
        if rule.document_kind not in existing
    ]
