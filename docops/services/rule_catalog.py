"""
Document matrix rule catalog.

Pure data + lookup: rules are flat records keyed by
(work_category, document_kind, trigger_event) within a scope, never a
class-per-kind hierarchy.  Adding a rule is a data change.

Public API:
    create_rule(data, project_id=None)      → dict          DuplicateRuleError
    update_rule(rule_id, data)              → dict          ConflictError once referenced
    set_rule_active(rule_id, is_active)     → dict
    list_rules(...)                         → list[dict]
    seed_default_rules(project_id=None, work_categories=None) → int   (flush only)
    install_default_rules(project_id=None, work_categories=None) → int (commits)
    find_rule_for_kind(kind, work_category, project_id)        → dict | None
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select

from docops.core.exceptions import (
    ConflictError,
    DuplicateRuleError,
    NotFoundError,
    ValidationError,
)
from docops.models import db
from docops.models.document import DOCUMENT_KINDS, Document
from docops.models.matrix import DEFAULT_MATRIX_RULES, MUTABLE_WHEN_REFERENCED, MatrixRule
from docops.models.project import Project

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("work_category", "document_kind", "trigger_event", "preparer_role", "signer_roles")

_EDITABLE_FIELDS = (
    "work_category",
    "document_kind",
    "trigger_event",
    "preparer_role",
    "checker_role",
    "signer_roles",
    "required_attachments",
    "linked_log_category",
    "is_active",
    "sort_order",
)


# ── Private helpers ──────────────────────────────────────────────────────────


def _get_rule(rule_id: int) -> MatrixRule:
    rule = db.session.get(MatrixRule, rule_id)
    if rule is None:
        raise NotFoundError(resource="MatrixRule", resource_id=rule_id)
    return rule


def _clean_list(value, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list", details={field: "expected a list of strings"})
    return [str(v).strip() for v in value if str(v).strip()]


def _normalise(data: dict) -> dict:
    """Validate and coerce an incoming rule payload."""
    missing = [k for k in _REQUIRED_KEYS if not data.get(k)]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={k: "required" for k in missing},
        )
    kind = str(data["document_kind"]).strip()
    if kind not in DOCUMENT_KINDS:
        raise ValidationError(
            f"Unknown document_kind '{kind}'",
            details={"document_kind": f"one of {sorted(DOCUMENT_KINDS)}"},
        )
    signer_roles = _clean_list(data.get("signer_roles"), "signer_roles")
    if not signer_roles:
        raise ValidationError("signer_roles must not be empty", details={"signer_roles": "non-empty list"})
    try:
        sort_order = int(data.get("sort_order") or 0)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("sort_order must be an integer", details={"sort_order": "integer"}) from exc

    return {
        "work_category": str(data["work_category"]).strip(),
        "document_kind": kind,
        "trigger_event": str(data["trigger_event"]).strip(),
        "preparer_role": str(data["preparer_role"]).strip(),
        "checker_role": (str(data["checker_role"]).strip() or None) if data.get("checker_role") else None,
        "signer_roles": signer_roles,
        "required_attachments": _clean_list(data.get("required_attachments"), "required_attachments"),
        "linked_log_category": data.get("linked_log_category") or None,
        "is_active": bool(data.get("is_active", True)),
        "sort_order": sort_order,
    }


def _scope_exists(project_id, work_category, document_kind, trigger_event, exclude_id=None) -> bool:
    stmt = select(MatrixRule.id).where(
        MatrixRule.work_category == work_category,
        MatrixRule.document_kind == document_kind,
        MatrixRule.trigger_event == trigger_event,
        MatrixRule.project_id.is_(None) if project_id is None else MatrixRule.project_id == project_id,
    )
    if exclude_id is not None:
        stmt = stmt.where(MatrixRule.id != exclude_id)
    return db.session.execute(stmt.limit(1)).first() is not None


def is_referenced(rule_id: int) -> bool:
    """True once any document (deleted or not) was created from the rule."""
    count = db.session.execute(
        select(func.count(Document.id)).where(Document.matrix_rule_id == rule_id)
    ).scalar()
    return bool(count)


# ── Public API ───────────────────────────────────────────────────────────────


def create_rule(data: dict, project_id: int | None = None) -> dict:
    """Create a matrix rule in the global scope or a project scope."""
    if project_id is not None and db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    values = _normalise(data)
    if _scope_exists(project_id, values["work_category"], values["document_kind"], values["trigger_event"]):
        raise DuplicateRuleError(values["work_category"], values["document_kind"], values["trigger_event"])

    rule = MatrixRule(project_id=project_id, **values)
    db.session.add(rule)
    db.session.commit()
    logger.info(
        "Matrix rule %s created (%s/%s, %s)",
        rule.id, rule.work_category, rule.document_kind,
        "global" if project_id is None else f"project={project_id}",
        extra={"project_id": project_id},
    )
    return rule.to_dict()


def update_rule(rule_id: int, data: dict) -> dict:
    """Update a rule.  Referenced rules accept activation changes only."""
    rule = _get_rule(rule_id)

    changes = {k: data[k] for k in _EDITABLE_FIELDS if k in data}
    if not changes:
        return rule.to_dict()

    if is_referenced(rule_id):
        blocked = sorted(
            k for k, v in changes.items()
            if k not in MUTABLE_WHEN_REFERENCED and v != getattr(rule, k)
        )
        if blocked:
            raise ConflictError(
                "MatrixRule", ",".join(blocked), str(rule_id),
                message=(
                    f"MatrixRule {rule_id} is referenced by documents; "
                    f"only activation may change (attempted: {', '.join(blocked)})"
                ),
            )

    merged = rule.to_dict()
    merged.update(changes)
    values = _normalise(merged)
    if _scope_exists(
        rule.project_id, values["work_category"], values["document_kind"], values["trigger_event"],
        exclude_id=rule.id,
    ):
        raise DuplicateRuleError(values["work_category"], values["document_kind"], values["trigger_event"])

    for key, value in values.items():
        setattr(rule, key, value)
    db.session.commit()
    logger.info("Matrix rule %s updated: %s", rule.id, ", ".join(sorted(changes)))
    return rule.to_dict()


def set_rule_active(rule_id: int, is_active: bool) -> dict:
    """Toggle activation — always allowed, even for referenced rules."""
    rule = _get_rule(rule_id)
    rule.is_active = bool(is_active)
    db.session.commit()
    logger.info("Matrix rule %s %s", rule.id, "activated" if rule.is_active else "deactivated")
    return rule.to_dict()


def list_rules(
    project_id: int | None = None,
    work_category: str | None = None,
    include_global: bool = True,
    active_only: bool = False,
) -> list[dict]:
    """Rules of a scope, project rules first, then by sort_order."""
    stmt = select(MatrixRule)
    if project_id is None:
        stmt = stmt.where(MatrixRule.project_id.is_(None))
    elif include_global:
        stmt = stmt.where(or_(MatrixRule.project_id == project_id, MatrixRule.project_id.is_(None)))
    else:
        stmt = stmt.where(MatrixRule.project_id == project_id)
    if work_category:
        stmt = stmt.where(MatrixRule.work_category == work_category)
    if active_only:
        stmt = stmt.where(MatrixRule.is_active.is_(True))
    stmt = stmt.order_by(
        MatrixRule.project_id.is_(None),
        MatrixRule.sort_order,
        MatrixRule.id,
    )
    return [r.to_dict() for r in db.session.execute(stmt).scalars().all()]


def seed_default_rules(project_id: int | None = None, work_categories: list[str] | None = None) -> int:
    """Insert the built-in catalog into a scope.  Idempotent: existing rules are skipped.

    Does NOT commit; callers own the transaction (CLI command, blueprint).
    Returns the number of rules created.
    """
    if project_id is not None and db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    created = 0
    for index, definition in enumerate(DEFAULT_MATRIX_RULES):
        if work_categories and definition["work_category"] not in work_categories:
            continue
        if _scope_exists(
            project_id, definition["work_category"], definition["document_kind"], definition["trigger_event"],
        ):
            continue
        db.session.add(MatrixRule(
            project_id=project_id,
            work_category=definition["work_category"],
            document_kind=definition["document_kind"],
            trigger_event=definition["trigger_event"],
            preparer_role=definition["preparer_role"],
            checker_role=definition["checker_role"],
            signer_roles=list(definition["signer_roles"]),
            required_attachments=list(definition["required_attachments"]),
            linked_log_category=definition["linked_log_category"],
            is_active=True,
            sort_order=index,
        ))
        created += 1
    db.session.flush()
    logger.info(
        "Seeded %d default matrix rule(s) into %s scope", created,
        "global" if project_id is None else f"project={project_id}",
        extra={"project_id": project_id},
    )
    return created


def find_rule_for_kind(kind: str, work_category: str | None, project_id: int | None) -> dict | None:
    """Best matching rule for a document kind (validation lookup).

    Order: active project rule → active global rule → built-in catalog.
    A matching work_category is preferred at every level; without one the
    first rule of that kind is used.
    """
    stmt = (
        select(MatrixRule)
        .where(MatrixRule.document_kind == kind, MatrixRule.is_active.is_(True))
        .order_by(MatrixRule.sort_order, MatrixRule.id)
    )
    scopes = ([project_id] if project_id is not None else []) + [None]
    for scope in scopes:
        scoped = stmt.where(
            MatrixRule.project_id.is_(None) if scope is None else MatrixRule.project_id == scope
        )
        rules = db.session.execute(scoped).scalars().all()
        if not rules:
            continue
        for rule in rules:
            if work_category and rule.work_category == work_category:
                return rule.to_dict()
        return rules[0].to_dict()

    defaults = [r for r in DEFAULT_MATRIX_RULES if r["document_kind"] == kind]
    for definition in defaults:
        if work_category and definition["work_category"] == work_category:
            return dict(definition)
    return dict(defaults[0]) if defaults else None


def install_default_rules(project_id: int | None = None, work_categories: list[str] | None = None) -> int:
    """``seed_default_rules`` as its own unit of work (HTTP endpoint, CLI)."""
    try:
        created = seed_default_rules(project_id, work_categories)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return created
