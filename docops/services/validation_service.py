"""
Validation Engine — completeness and consistency checks before signature.

``validate(document)`` runs every check and unions the findings; a failing
check never short-circuits the others, so the author sees the complete
problem list in one pass.  The engine is read-only and uncached: every call
re-reads the document, its attachments, the work unit's materials and the
other documents of the project.

Checks:
    1. required fields per kind               (errors)
    2. required attachments from the matrix   (errors; "photo" / "if applicable" → warnings)
    3. date sanity                            (errors)
    4. cross-document references              (errors)
    5. material certificates for act kinds    (errors per material; no materials → warning)
    +  duplicate act detection                (warnings only)
    +  no signatories                         (error)
    +  unexpected status                      (warning)

Public API:
    validate(document)            → {"valid", "errors", "warnings"}
    validate_document(document_id) → same, with NotFoundError for missing/deleted
    can_submit(document_id)       → bool
"""

from __future__ import annotations

import logging
import re
from datetime import date

from sqlalchemy import select

from docops.core.exceptions import NotFoundError
from docops.models import db
from docops.models.document import ACT_KINDS, Document
from docops.services.rule_catalog import find_rule_for_kind
from docops.utils.helpers import parse_date

logger = logging.getLogger(__name__)

# ── Per-kind schema ──────────────────────────────────────────────────────────

REQUIRED_FIELDS = {
    "hidden_work_act": [
        "act_number",
        "work_description",
        "start_date",
        "end_date",
        "project_documentation",
        "materials",
        "next_work_description",
    ],
    "critical_structure_act": [
        "act_number",
        "construction_description",
        "project_documentation",
        "results",
    ],
    "network_act": [
        "act_number",
        "network_description",
        "start_date",
        "end_date",
        "test_results",
    ],
    "test_protocol": [
        "protocol_number",
        "test_type",
        "test_date",
        "results",
        "passed",
    ],
    "geodetic_act": [
        "act_number",
        "survey_date",
        "deviations",
    ],
    "executive_drawing": [
        "drawing_number",
        "drawing_description",
    ],
    "incoming_control_act": [
        "act_number",
        "material_name",
        "control_date",
        "result",
    ],
}

# keyword in requirement label → attachment category that satisfies it
ATTACHMENT_KEYWORDS = [
    (("certificate", "passport"), "certificate"),
    (("protocol", "test"), "protocol"),
    (("photo",), "photo"),
    (("diagram", "scheme", "drawing"), "scheme"),
    (("as-built", "executive"), "drawing"),
]

# labels containing these markers only warn when unmet
SOFT_ATTACHMENT_MARKERS = ("photo", "if applicable")

START_FIELDS = ("start_date", "date_start")
END_FIELDS = ("end_date", "date_end")

REFERENCE_MARKERS = ("documentid", "documentref", "linkeddoc", "referencedoc")
PROJECT_DOC_FIELDS = ("project_documentation", "project_doc_ref", "pd_ref")

_LABEL_SPLIT = re.compile(r"[\s/,()]+")

# upper bound of a BIGINT primary key
MAX_REFERENCE_ID = 2**63 - 1


def _is_blank(value) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict)) and not value)


# ── Individual checks ────────────────────────────────────────────────────────


def check_required_fields(kind: str, fields, errors: list[str]) -> None:
    if not isinstance(fields, dict):
        errors.append("Missing document data (field: fields)")
        return
    for name in REQUIRED_FIELDS.get(kind, []):
        if _is_blank(fields.get(name)):
            errors.append(f'Required field not filled: "{name}"')


def attachment_present(label: str, file_names: list[str], categories: set[str]) -> bool:
    """Fuzzy match of a requirement label against the document's attachments.

    Category keywords first, then any label word longer than three
    characters found inside an attachment file name.
    """
    lowered = label.lower()
    for keywords, category in ATTACHMENT_KEYWORDS:
        if any(kw in lowered for kw in keywords) and category in categories:
            return True
    words = [w for w in _LABEL_SPLIT.split(lowered) if len(w) > 3]
    return any(w in name for name in file_names for w in words)


def _required_attachment_labels(document: Document) -> list[str]:
    if document.required_attachments is not None:
        return list(document.required_attachments)
    work_category = document.work_unit.work_category if document.work_unit else None
    rule = find_rule_for_kind(document.kind, work_category, document.project_id)
    return list(rule["required_attachments"]) if rule else []


def check_required_attachments(document: Document, errors: list[str], warnings: list[str]) -> None:
    labels = _required_attachment_labels(document)
    if not labels:
        return
    file_names = [a.file_name.lower() for a in document.attachments]
    categories = {a.category for a in document.attachments}
    for label in labels:
        if attachment_present(label, file_names, categories):
            continue
        lowered = label.lower()
        if any(marker in lowered for marker in SOFT_ATTACHMENT_MARKERS):
            warnings.append(f"Recommended to attach: {label}")
        else:
            errors.append(f"Required attachment missing: {label}")


def _first_present(fields: dict, names) -> object:
    for name in names:
        if fields.get(name):
            return fields[name]
    return None


def check_dates(document: Document, errors: list[str], today: date | None = None) -> None:
    """No future dates (inclusive through end of today); start not after end."""
    today = today or date.today()

    if document.document_date and document.document_date > today:
        errors.append(f"Document date ({document.document_date.isoformat()}) cannot be in the future")

    fields = document.fields if isinstance(document.fields, dict) else {}
    for key, value in fields.items():
        if "date" not in key.lower() or not value:
            continue
        parsed = parse_date(value)
        if parsed is None:
            continue
        if parsed > today:
            errors.append(f'Field "{key}" contains a future date: {parsed.isoformat()}')

    start = parse_date(_first_present(fields, START_FIELDS))
    end = parse_date(_first_present(fields, END_FIELDS))
    if start and end and start > end:
        errors.append(f"Start date ({start.isoformat()}) is after end date ({end.isoformat()})")


def _normalised_key(key: str) -> str:
    return key.lower().replace("_", "").replace("-", "")


def _reference_id(value) -> int | None:
    """Positive integer id within the BIGINT range, else None."""
    if isinstance(value, bool):
        return None
    try:
        ref_id = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if isinstance(value, float) and value != ref_id:
        return None
    if not 0 < ref_id <= MAX_REFERENCE_ID:
        return None
    return ref_id


def check_references(document: Document, errors: list[str]) -> None:
    fields = document.fields if isinstance(document.fields, dict) else {}

    for key, value in fields.items():
        normalised = _normalised_key(key)
        if not any(marker in normalised for marker in REFERENCE_MARKERS):
            continue
        if _is_blank(value):
            continue
        ref_id = _reference_id(value)
        if ref_id is None:
            errors.append(f'Invalid document reference in field "{key}": {value}')
            continue
        ref = db.session.get(Document, ref_id)
        if ref is None or ref.project_id != document.project_id:
            errors.append(f'Reference to non-existent document in field "{key}": {value}')
        elif ref.is_deleted:
            errors.append(f'Reference to deleted document in field "{key}": {value}')

    if document.kind == "hidden_work_act" and not _first_present(fields, PROJECT_DOC_FIELDS):
        errors.append(
            "Hidden work act must reference governing project documentation (project_documentation)"
        )


def check_material_certificates(document: Document, errors: list[str], warnings: list[str]) -> None:
    if document.kind not in ACT_KINDS or document.work_unit is None:
        return
    usages = document.work_unit.material_usages
    if not usages:
        warnings.append("No materials specified for this type of work")
        return
    reported: set[int] = set()
    for usage in usages:
        material = usage.material
        if material is None or material.id in reported:
            continue
        if not material.certificates:
            reported.add(material.id)
            errors.append(f'Material "{material.name}" has no quality certificates/passports')


def check_duplicates(document: Document, warnings: list[str]) -> None:
    """Warn about other submitted acts of the same kind for the same location / work unit."""
    if document.kind not in ACT_KINDS:
        return
    if document.location_id is None and document.work_unit_id is None:
        return

    stmt = select(Document).where(
        Document.project_id == document.project_id,
        Document.kind == document.kind,
        Document.deleted_at.is_(None),
        Document.status.notin_(("draft", "needs_revision")),
    )
    if document.id is not None:
        stmt = stmt.where(Document.id != document.id)
    if document.location_id is not None:
        stmt = stmt.where(Document.location_id == document.location_id)
    if document.work_unit_id is not None:
        stmt = stmt.where(Document.work_unit_id == document.work_unit_id)

    duplicates = db.session.execute(stmt.order_by(Document.id)).scalars().all()
    if duplicates:
        info = ", ".join(f"{d.number or d.id} ({d.status})" for d in duplicates)
        warnings.append(
            f"Similar acts found for the same location/work unit: {info}. "
            "Make sure this is not a duplicate."
        )


# ── Public API ───────────────────────────────────────────────────────────────


def validate(document: Document, today: date | None = None) -> dict:
    """Run every check on *document*; never mutates state."""
    errors: list[str] = []
    warnings: list[str] = []

    if document.is_deleted:
        return {"valid": False, "errors": ["Document is deleted"], "warnings": []}

    if document.status not in ("draft", "in_review"):
        warnings.append(
            f'Document is in status "{document.status}", expected "draft" or "in_review"'
        )

    check_required_fields(document.kind, document.fields, errors)
    check_required_attachments(document, errors, warnings)
    check_dates(document, errors, today=today)
    check_references(document, errors)
    check_duplicates(document, warnings)
    check_material_certificates(document, errors, warnings)

    if not document.signatures:
        errors.append("No signatories assigned to document")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


def validate_document(document_id: int) -> dict:
    document = db.session.get(Document, document_id)
    if document is None or document.is_deleted:
        raise NotFoundError(resource="Document", resource_id=document_id)
    result = validate(document)
    logger.debug(
        "Validated document %s: %d error(s), %d warning(s)",
        document_id, len(result["errors"]), len(result["warnings"]),
        extra={"project_id": document.project_id},
    )
    return result


def can_submit(document_id: int) -> bool:
    """Thin wrapper: only the verdict."""
    return validate_document(document_id)["valid"]
