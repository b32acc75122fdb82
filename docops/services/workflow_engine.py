"""
Lifecycle State Machine — document statuses, signatures, locking.

States (DOCUMENT_TRANSITIONS):
    draft → in_review → {needs_revision, pending_signature}
    needs_revision → {in_review, draft}
    pending_signature → {signed, needs_revision}
    signed → {archived, in_package}
    archived, in_package: terminal

Preconditions per target:
    pending_signature  at least one signature seat; validation engine must pass
    signed             every signature signed; sets locked_at
    needs_revision     non-empty comment; clears locked_at; resets all signatures
    draft              clears locked_at; resets all signatures

Every attempt writes a WorkflowTransition row (``applied`` or ``rejected``)
before the status change is applied or refused.  Refused attempts commit
their audit row and then raise.

Concurrency: the document row is locked (SELECT … FOR UPDATE) before any
precondition is evaluated, so signature counts and status are read and
written under one lock per document.

Public API:
    get_allowed_transitions(document_id)                       → dict
    transition(document_id, to_status, actor_id, comment=None) → dict
    bulk_transition(document_ids, to_status, actor_id, comment=None) → dict
    sign(signature_id, actor_id, comment=None)                 → dict
    reject(signature_id, actor_id, reason)                     → dict
    assign_signer(signature_id, person_id=None, actor_id=None) → dict
    get_history(document_id, include_rejected=False)           → list[dict]
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from docops.core.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    ValidationFailedError,
)
from docops.models import db
from docops.models.document import (
    DOCUMENT_STATUSES,
    DOCUMENT_TRANSITIONS,
    Document,
    Signature,
    validate_document_transition,
)
from docops.models.project import Person
from docops.models.workflow import WorkflowTransition, record_transition
from docops.services import role_directory, validation_service

logger = logging.getLogger(__name__)

# Targets that reset every signature seat back to pending
_RESET_TARGETS = ("needs_revision", "draft")

# Statuses in which a signature seat may be (re)assigned
_ASSIGNABLE_STATUSES = ("draft", "in_review", "needs_revision")


# ── Private helpers ──────────────────────────────────────────────────────────


def _lock_document(document_id: int) -> Document:
    """Load the document under an exclusive row lock."""
    doc = db.session.execute(
        select(Document)
        .where(Document.id == document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if doc is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    return doc


def _precondition_failure(doc: Document, to_status: str, comment: str | None) -> str | None:
    """Return why *doc* cannot move to *to_status*, or None when it can.

    Validation-engine gating is handled separately by the caller.
    """
    if doc.is_deleted:
        return "document is deleted"
    if to_status not in DOCUMENT_STATUSES:
        return f"unknown status '{to_status}'"
    if not validate_document_transition(doc.status, to_status):
        allowed = DOCUMENT_TRANSITIONS.get(doc.status, [])
        return f"allowed targets: {', '.join(allowed) if allowed else 'none (terminal state)'}"
    if doc.locked_at is not None and to_status not in ("archived", "in_package"):
        return "document is locked"

    if to_status == "pending_signature" and not doc.signatures:
        return "no signature seats configured"
    if to_status == "signed":
        if not doc.signatures:
            return "no signature seats configured"
        outstanding = [s for s in doc.signatures if s.status != "signed"]
        if outstanding:
            return f"{len(outstanding)} signature(s) not signed"
    if to_status == "needs_revision" and not (comment or "").strip():
        return "a comment stating the reason is required"
    return None


def _reject(doc: Document, to_status: str, actor_id, comment, reason: str) -> None:
    record_transition(
        document_id=doc.id,
        from_status=doc.status,
        to_status=to_status,
        performed_by_id=actor_id,
        comment=comment,
        outcome="rejected",
        error=reason,
    )
    logger.info(
        "Transition refused for document %s: %s → %s (%s)",
        doc.id, doc.status, to_status, reason,
        extra={"document_id": doc.id, "project_id": doc.project_id, "event_type": "transition_rejected"},
    )


def _apply_transition(
    doc: Document,
    to_status: str,
    actor_id: int | None,
    comment: str | None = None,
    *,
    skip_validation: bool = False,
) -> Document:
    """Check, audit and apply one transition on an already-locked document.

    Flushes only; the caller owns the transaction.  On refusal the rejected
    audit row is pending in the session and the error is raised.
    """
    from_status = doc.status

    reason = _precondition_failure(doc, to_status, comment)
    if reason:
        _reject(doc, to_status, actor_id, comment, reason)
        raise IllegalTransitionError(from_status, to_status, reason)

    if to_status == "pending_signature" and not skip_validation:
        result = validation_service.validate(doc)
        if not result["valid"]:
            _reject(doc, to_status, actor_id, comment,
                    f"validation failed: {'; '.join(result['errors'])}")
            raise ValidationFailedError(doc.id, result["errors"], result["warnings"])

    record_transition(
        document_id=doc.id,
        from_status=from_status,
        to_status=to_status,
        performed_by_id=actor_id,
        comment=comment,
        outcome="applied",
    )

    now = datetime.now(timezone.utc)
    doc.status = to_status
    if to_status == "signed":
        doc.locked_at = now
    elif to_status in _RESET_TARGETS:
        doc.locked_at = None
        for sig in doc.signatures:
            sig.reset()
    db.session.flush()

    logger.info(
        "Document %s: %s → %s", doc.id, from_status, to_status,
        extra={"document_id": doc.id, "project_id": doc.project_id, "event_type": "transition"},
    )
    return doc


def _commit_refusal():
    """Persist the rejected audit row, then let the caller re-raise."""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Could not persist rejected-transition audit row")


# ── Transitions ──────────────────────────────────────────────────────────────


def get_allowed_transitions(document_id: int) -> dict:
    """Graph targets of the current status plus whether each is available now."""
    doc = db.session.get(Document, document_id)
    if doc is None or doc.is_deleted:
        raise NotFoundError(resource="Document", resource_id=document_id)

    targets = []
    for to_status in DOCUMENT_TRANSITIONS.get(doc.status, []):
        # comment requirement is input-dependent; report it separately
        reason = _precondition_failure(doc, to_status, comment="-")
        targets.append({
            "to_status": to_status,
            "available": reason is None,
            "reason": reason,
            "requires_comment": to_status == "needs_revision",
            "requires_validation": to_status == "pending_signature",
        })
    return {
        "document_id": doc.id,
        "status": doc.status,
        "is_locked": doc.locked_at is not None,
        "allowed": [t["to_status"] for t in targets],
        "transitions": targets,
    }


def transition(
    document_id: int,
    to_status: str,
    actor_id: int | None,
    comment: str | None = None,
    *,
    skip_validation: bool = False,
) -> dict:
    """Move one document to *to_status* and commit.

    Raises:
        NotFoundError            document does not exist
        IllegalTransitionError   edge not allowed or precondition failed
        ValidationFailedError    → pending_signature refused by the validation engine
    """
    doc = _lock_document(document_id)
    try:
        _apply_transition(doc, to_status, actor_id, comment, skip_validation=skip_validation)
    except (IllegalTransitionError, ValidationFailedError):
        _commit_refusal()
        raise
    db.session.commit()
    return doc.to_dict(include_children=True)


def stage_transition(
    document_id: int,
    to_status: str,
    actor_id: int | None,
    comment: str | None = None,
) -> Document:
    """Lock and transition a document inside the caller's unit of work.

    Used when a status change must commit atomically with other writes
    (package build).  Never commits; on refusal the caller rolls back.
    """
    doc = _lock_document(document_id)
    return _apply_transition(doc, to_status, actor_id, comment, skip_validation=True)


def bulk_transition(
    document_ids: list[int],
    to_status: str,
    actor_id: int | None,
    comment: str | None = None,
) -> dict:
    """Independent per-document transitions.  Partial success allowed.

    Returns:
        {"results": [{"document_id", "ok", ...}], "succeeded": int, "failed": int}
    """
    limit = current_app.config.get("BULK_TRANSITION_LIMIT", 50)
    if not document_ids:
        raise ValidationError("document_ids must not be empty", details={"document_ids": "required"})
    if len(document_ids) > limit:
        raise ValidationError(
            f"At most {limit} documents per bulk transition",
            details={"document_ids": f"max {limit}"},
        )

    results = []
    seen: set[int] = set()
    for document_id in document_ids:
        if document_id in seen:
            continue
        seen.add(document_id)
        try:
            doc = transition(document_id, to_status, actor_id, comment)
            results.append({"document_id": document_id, "ok": True, "status": doc["status"]})
        except ValidationFailedError as e:
            results.append({
                "document_id": document_id,
                "ok": False,
                "error": str(e),
                "error_type": type(e).__name__,
                "errors": e.errors,
                "warnings": e.warnings,
            })
        except (NotFoundError, IllegalTransitionError) as e:
            db.session.rollback()
            results.append({
                "document_id": document_id,
                "ok": False,
                "error": str(e),
                "error_type": type(e).__name__,
            })

    succeeded = sum(1 for r in results if r["ok"])
    logger.info(
        "Bulk transition → %s: %d succeeded, %d failed", to_status, succeeded, len(results) - succeeded,
        extra={"event_type": "bulk_transition"},
    )
    return {"results": results, "succeeded": succeeded, "failed": len(results) - succeeded}


# ── Signatures ───────────────────────────────────────────────────────────────


def _load_signature_locked(signature_id: int) -> tuple[Signature, Document]:
    sig = db.session.get(Signature, signature_id)
    if sig is None:
        raise NotFoundError(resource="Signature", resource_id=signature_id)
    doc = _lock_document(sig.document_id)
    db.session.refresh(sig)
    if doc.is_deleted:
        raise NotFoundError(resource="Document", resource_id=doc.id)
    return sig, doc


def _check_signer(sig: Signature, doc: Document, actor_id, target: str) -> None:
    if doc.status != "pending_signature":
        raise IllegalTransitionError(doc.status, target, "document is not awaiting signatures")
    if sig.assigned_person_id is None:
        raise PermissionDeniedError(f"Signature {sig.id} ({sig.signer_role}) has no assigned signer")
    if actor_id is None or int(actor_id) != sig.assigned_person_id:
        raise PermissionDeniedError(
            f"Only the assigned person may act on signature {sig.id} ({sig.signer_role})"
        )
    if sig.status != "pending":
        raise IllegalTransitionError(sig.status, target, f"signature {sig.id} is not pending")


def sign(signature_id: int, actor_id: int, comment: str | None = None) -> dict:
    """Sign a seat; the last signature moves the document to ``signed``."""
    sig, doc = _load_signature_locked(signature_id)
    _check_signer(sig, doc, actor_id, "signed")

    sig.status = "signed"
    sig.signed_at = datetime.now(timezone.utc)
    sig.comment = (comment or "").strip() or None
    db.session.flush()

    document_signed = all(s.status == "signed" for s in doc.signatures)
    if document_signed:
        try:
            _apply_transition(doc, "signed", actor_id, "All signatures collected")
        except IllegalTransitionError:
            db.session.rollback()
            raise
    db.session.commit()

    logger.info(
        "Signature %s (%s) signed by person %s on document %s",
        sig.id, sig.signer_role, actor_id, doc.id,
        extra={"document_id": doc.id, "project_id": doc.project_id, "event_type": "signature_signed"},
    )
    return {
        "signature": sig.to_dict(),
        "document": doc.to_dict(include_children=True),
        "document_signed": document_signed,
    }


def reject(signature_id: int, actor_id: int, reason: str) -> dict:
    """Reject a seat; the document returns to ``needs_revision`` with the reason."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "required"})

    sig, doc = _load_signature_locked(signature_id)
    _check_signer(sig, doc, actor_id, "rejected")

    sig.status = "rejected"
    sig.comment = reason
    db.session.flush()

    try:
        _apply_transition(doc, "needs_revision", actor_id, f"Rejected by {sig.signer_role}: {reason}")
    except IllegalTransitionError:
        db.session.rollback()
        raise
    db.session.commit()

    logger.info(
        "Signature %s (%s) rejected by person %s on document %s",
        sig.id, sig.signer_role, actor_id, doc.id,
        extra={"document_id": doc.id, "project_id": doc.project_id, "event_type": "signature_rejected"},
    )
    return {
        "signature": sig.to_dict(),
        "document": doc.to_dict(include_children=True),
        "reason": reason,
    }


def assign_signer(signature_id: int, person_id: int | None = None, actor_id: int | None = None) -> dict:
    """Fill (or change) the person behind a seat before signing starts.

    Without *person_id* the seat goes to whoever holds its role on the project.
    """
    sig, doc = _load_signature_locked(signature_id)
    if doc.locked_at is not None or doc.status not in _ASSIGNABLE_STATUSES:
        raise IllegalTransitionError(
            doc.status, doc.status,
            f"signers can only be assigned in {', '.join(_ASSIGNABLE_STATUSES)}",
        )
    if person_id is None:
        person = role_directory.resolve_assignee(doc.project_id, sig.signer_role)
        if person is None:
            raise ValidationError(
                f"No person holds role '{sig.signer_role}' on the project",
                details={"signer_role": "unassigned"},
            )
        person_id = person.id
    elif db.session.get(Person, person_id) is None:
        raise NotFoundError(resource="Person", resource_id=person_id)

    previous = sig.assigned_person_id
    sig.assigned_person_id = person_id
    db.session.commit()
    logger.info(
        "Signature %s (%s) on document %s reassigned %s → %s by %s",
        sig.id, sig.signer_role, doc.id, previous, person_id, actor_id,
        extra={"document_id": doc.id, "project_id": doc.project_id},
    )
    return sig.to_dict()


# ── History ──────────────────────────────────────────────────────────────────


def get_history(document_id: int, include_rejected: bool = False) -> list[dict]:
    """Lifecycle history in chronological order.

    Applied transitions and revision creation events by default; refused
    attempts only with ``include_rejected``.
    """
    doc = db.session.get(Document, document_id)
    if doc is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    stmt = select(WorkflowTransition).where(WorkflowTransition.document_id == document_id)
    if not include_rejected:
        stmt = stmt.where(WorkflowTransition.outcome != "rejected")
    stmt = stmt.order_by(WorkflowTransition.created_at, WorkflowTransition.id)
    return [t.to_dict() for t in db.session.execute(stmt).scalars().all()]
