"""
Archive Assembler — foldered, inventoried ZIP of finalised documents.

Package lifecycle (PACKAGE_TRANSITIONS):
    draft → generating → ready → delivered
    generating → draft on any failure or timeout

build():
    1. compare-and-set draft|ready → generating, committed immediately so a
       concurrent build of the same package sees it (ConflictError)
    2. items ordered by folder, then item order
    3. primary file → {folder}/{file_name}; unreadable → placeholder note
    4. attachments routed by category (certificates/protocols to their
       top-level folders, photos / drawings nested under the parent folder)
    5. inventory as ';'-delimited CSV and styled XLSX in 00_summary,
       .keep in every standard folder
    6. archive + CSV inventory → blob store
    7. one transaction: package ready, every item document in ``signed``
       → ``in_package`` (with an applied audit row each)

All blob I/O runs against a deadline; exceeding it raises
OperationTimeoutError and the package reverts to ``draft``.  The deadline is
checked before each store call, so a single hanging get/put is bounded only
by the adapter's own timeout.

Contents may change (add_documents, remove_item) only while the package is
``draft`` or ``ready``; a change to a ``ready`` package returns it to
``draft``.
"""

from __future__ import annotations

import csv
import io
import logging
import time
import zipfile
from datetime import date, datetime, timezone

from flask import current_app
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from docops.core.exceptions import (
    BlobNotFoundError,
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    OperationTimeoutError,
    StorageUnavailableError,
    ValidationError,
)
from docops.models import db
from docops.models.document import Document
from docops.models.package import (
    BUILDABLE_STATUSES,
    CERTIFICATES_FOLDER,
    PACKAGE_FOLDERS,
    PROTOCOLS_FOLDER,
    SUMMARY_FOLDER,
    Package,
    PackageItem,
    folder_for_kind,
    validate_package_transition,
)
from docops.models.project import Project
from docops.services import workflow_engine
from docops.services.storage import get_blob_store
from docops.utils.file_naming import document_file_name, package_object_name
from docops.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

INVENTORY_HEADERS = [
    "No.",
    "Document number",
    "Title",
    "Date",
    "Kind",
    "Location",
    "Folder",
    "Status",
    "Signatories",
]

INVENTORY_CSV_NAME = f"{SUMMARY_FOLDER}/inventory.csv"
INVENTORY_XLSX_NAME = f"{SUMMARY_FOLDER}/inventory.xlsx"

# Statuses a document may have and still be packaged without allow_unsigned
_FINAL_STATUSES = ("signed", "in_package", "archived")


# ── Package CRUD ─────────────────────────────────────────────────────────────


def _get_package(package_id: int) -> Package:
    pkg = db.session.get(Package, package_id)
    if pkg is None:
        raise NotFoundError(resource="Package", resource_id=package_id)
    return pkg


def create_package(
    project_id: int,
    name: str,
    date_from=None,
    date_to=None,
    description: str | None = None,
) -> dict:
    project = db.session.get(Project, project_id)
    if project is None or project.is_deleted:
        raise NotFoundError(resource="Project", resource_id=project_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    try:
        start = parse_date_input(date_from)
        end = parse_date_input(date_to)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"date_from/date_to": "invalid"}) from exc
    if start and end and start > end:
        raise ValidationError("date_from must not be after date_to", details={"date_from": "after date_to"})

    pkg = Package(
        project_id=project_id,
        name=name,
        description=description,
        status="draft",
        date_from=start,
        date_to=end,
    )
    db.session.add(pkg)
    db.session.commit()
    logger.info("Package %s created for project %s", pkg.id, project_id,
                extra={"package_id": pkg.id, "project_id": project_id})
    return pkg.to_dict()


def get_package(package_id: int) -> dict:
    return _get_package(package_id).to_dict(include_items=True)


def _ensure_mutable(pkg: Package) -> None:
    if pkg.status not in BUILDABLE_STATUSES:
        raise IllegalTransitionError(pkg.status, pkg.status, "package contents are frozen")


def add_documents(package_id: int, document_ids: list[int]) -> dict:
    """Add documents with their kind's folder.  Per-document outcomes.

    Returns:
        {"added": [item dicts], "skipped": [{"document_id", "reason"}], "package": {...}}
    """
    pkg = _get_package(package_id)
    _ensure_mutable(pkg)
    if not document_ids:
        raise ValidationError("document_ids must not be empty", details={"document_ids": "required"})

    next_order = db.session.execute(
        select(func.coalesce(func.max(PackageItem.sort_order), -1)).where(PackageItem.package_id == pkg.id)
    ).scalar_one() + 1
    present = set(db.session.execute(
        select(PackageItem.document_id).where(PackageItem.package_id == pkg.id)
    ).scalars().all())

    added: list[PackageItem] = []
    skipped: list[dict] = []
    for document_id in document_ids:
        doc = db.session.get(Document, document_id)
        if doc is None or doc.is_deleted:
            skipped.append({"document_id": document_id, "reason": "document not found"})
            continue
        if doc.project_id != pkg.project_id:
            skipped.append({"document_id": document_id, "reason": "document belongs to another project"})
            continue
        if document_id in present:
            skipped.append({"document_id": document_id, "reason": "already in package"})
            continue
        try:
            with db.session.begin_nested():
                item = PackageItem(
                    package_id=pkg.id,
                    document_id=document_id,
                    folder_path=folder_for_kind(doc.kind),
                    sort_order=next_order,
                )
                db.session.add(item)
        except IntegrityError:
            skipped.append({"document_id": document_id, "reason": "already in package"})
            continue
        present.add(document_id)
        next_order += 1
        added.append(item)

    if added and pkg.status == "ready":
        # contents changed; the stored archive is stale
        pkg.status = "draft"
    db.session.commit()

    logger.info(
        "Package %s: %d document(s) added, %d skipped", pkg.id, len(added), len(skipped),
        extra={"package_id": pkg.id, "project_id": pkg.project_id},
    )
    return {
        "added": [i.to_dict() for i in added],
        "skipped": skipped,
        "package": pkg.to_dict(),
    }


def collect_signed_documents(package_id: int) -> dict:
    """Add every signed document of the project inside the package's date range."""
    pkg = _get_package(package_id)
    _ensure_mutable(pkg)
    stmt = select(Document.id).where(
        Document.project_id == pkg.project_id,
        Document.status == "signed",
        Document.deleted_at.is_(None),
    )
    if pkg.date_from:
        stmt = stmt.where(Document.document_date >= pkg.date_from)
    if pkg.date_to:
        stmt = stmt.where(Document.document_date <= pkg.date_to)
    ids = db.session.execute(stmt.order_by(Document.document_date, Document.id)).scalars().all()
    if not ids:
        return {"added": [], "skipped": [], "package": pkg.to_dict()}
    return add_documents(package_id, list(ids))


def remove_item(package_id: int, item_id: int) -> dict:
    """Take one document out of a draft or ready package."""
    pkg = _get_package(package_id)
    _ensure_mutable(pkg)
    item = db.session.get(PackageItem, item_id)
    if item is None or item.package_id != pkg.id:
        raise NotFoundError(resource="PackageItem", resource_id=item_id)

    document_id = item.document_id
    db.session.delete(item)
    if pkg.status == "ready":
        pkg.status = "draft"
    db.session.commit()

    logger.info("Package %s: document %s removed", pkg.id, document_id,
                extra={"package_id": pkg.id, "project_id": pkg.project_id, "document_id": document_id})
    return pkg.to_dict(include_items=True)


def update_package(package_id: int, data: dict) -> dict:
    """Edit name, description or date range while no build is running and before delivery."""
    pkg = _get_package(package_id)
    if pkg.status in ("generating", "delivered"):
        raise IllegalTransitionError(pkg.status, pkg.status, "package cannot be edited in this status")

    name = pkg.name
    if "name" in data:
        name = data["name"].strip() if isinstance(data["name"], str) else ""
        if not name:
            raise ValidationError("name must not be empty", details={"name": "required"})
    date_from, date_to = pkg.date_from, pkg.date_to
    try:
        if "date_from" in data:
            date_from = parse_date_input(data["date_from"])
        if "date_to" in data:
            date_to = parse_date_input(data["date_to"])
    except ValueError as exc:
        raise ValidationError(str(exc), details={"date_from/date_to": "invalid"}) from exc
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to", details={"date_from": "after date_to"})

    pkg.name = name
    pkg.date_from, pkg.date_to = date_from, date_to
    if "description" in data:
        pkg.description = data["description"] or None
    db.session.commit()
    logger.info("Package %s updated", pkg.id, extra={"package_id": pkg.id, "project_id": pkg.project_id})
    return pkg.to_dict()


def delete_package(package_id: int) -> None:
    """Delete an undelivered package, its items and any stored archive."""
    pkg = _get_package(package_id)
    if pkg.status in ("generating", "delivered"):
        raise IllegalTransitionError(pkg.status, pkg.status, "package cannot be deleted in this status")

    artefacts = [p for p in (pkg.archive_path, pkg.inventory_path) if p]
    project_id = pkg.project_id
    db.session.delete(pkg)
    db.session.commit()

    if artefacts:
        store = get_blob_store()
        for path in artefacts:
            try:
                store.delete(path)
            except StorageUnavailableError:
                logger.warning("Could not remove blob %s of deleted package %s", path, package_id)
    logger.info("Package %s deleted", package_id, extra={"package_id": package_id, "project_id": project_id})


def deliver(package_id: int, actor_id: int | None = None) -> dict:
    pkg = _get_package(package_id)
    if not validate_package_transition(pkg.status, "delivered"):
        raise IllegalTransitionError(pkg.status, "delivered", "only a ready package can be delivered")
    pkg.status = "delivered"
    pkg.delivered_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Package %s delivered by %s", pkg.id, actor_id,
                extra={"package_id": pkg.id, "project_id": pkg.project_id})
    return pkg.to_dict()


# ── Build helpers ────────────────────────────────────────────────────────────


class _Deadline:
    """Wall-clock budget checked between store calls; it cannot interrupt one."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires = time.monotonic() + seconds

    def check(self, what: str) -> None:
        if time.monotonic() > self.expires:
            raise OperationTimeoutError(f"Package build exceeded {self.seconds:g}s while {what}")


def attachment_folder(parent_folder: str, category: str) -> str:
    """Archive folder for an attachment of *category* under *parent_folder*."""
    if category == "certificate":
        return CERTIFICATES_FOLDER
    if category == "protocol":
        return PROTOCOLS_FOLDER
    if category == "photo":
        return f"{parent_folder}/photos"
    if category in ("scheme", "drawing"):
        return f"{parent_folder}/drawings"
    return f"{parent_folder}/attachments"


def _primary_file_name(doc: Document) -> str:
    if doc.file_name:
        return doc.file_name
    work = doc.work_unit.name if doc.work_unit else None
    zone = doc.location.name if doc.location else None
    return document_file_name(doc.kind, zone, work, doc.document_date, doc.revision)


def _signers_text(doc: Document) -> str:
    signed = [
        f"{s.assigned_person.full_name if s.assigned_person else '?'} ({s.signer_role})"
        for s in doc.signatures
        if s.status == "signed"
    ]
    return "; ".join(signed) or "-"


def _fetch(store, path: str, deadline: _Deadline) -> bytes | None:
    deadline.check(f"reading {path}")
    try:
        return store.get(path)
    except (BlobNotFoundError, StorageUnavailableError) as exc:
        logger.warning("Blob %s unavailable for package build: %s", path, exc)
        return None


def inventory_csv(rows: list[list[str]]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(INVENTORY_HEADERS)
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8")


def inventory_xlsx(package_name: str, rows: list[list[str]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"

    for col, header in enumerate(INVENTORY_HEADERS, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    for r, values in enumerate(rows, 2):
        for col, value in enumerate(values, 1):
            ws.cell(row=r, column=col, value=value).border = THIN_BORDER

    for col in ws.columns:
        width = max((min(len(str(c.value)), 60) for c in col if c.value), default=0)
        ws.column_dimensions[get_column_letter(col[0].column)].width = max(width + 4, 12)
    ws.freeze_panes = "A2"
    ws.sheet_properties.tabColor = "354A5F"
    wb.properties.title = f"Inventory — {package_name}"

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _load_items(package_id: int) -> list[PackageItem]:
    return db.session.execute(
        select(PackageItem)
        .where(PackageItem.package_id == package_id)
        .order_by(PackageItem.folder_path, PackageItem.sort_order, PackageItem.id)
    ).scalars().all()


def assemble_archive(items: list[PackageItem], deadline: _Deadline, store) -> tuple[bytes, bytes, list[dict]]:
    """Write the ZIP in memory.  Returns (zip bytes, CSV inventory bytes, missing files)."""
    rows: list[list[str]] = []
    missing: list[dict] = []
    buf = io.BytesIO()

    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for seq, item in enumerate(items, 1):
            doc = item.document
            folder = item.folder_path or folder_for_kind(doc.kind)
            label = doc.number or str(doc.id)

            data = _fetch(store, doc.file_path, deadline) if doc.file_path else None
            if data is not None:
                zf.writestr(f"{folder}/{_primary_file_name(doc)}", data)
            else:
                reason = f"File not found: {doc.file_path}" if doc.file_path else "No file stored for this document"
                zf.writestr(f"{folder}/{label}_FILE_MISSING.txt", f"{reason}\nDocument: {doc.title}\n")
                missing.append({"document_id": doc.id, "file_path": doc.file_path, "kind": "document"})

            for attachment in doc.attachments:
                if not attachment.file_path:
                    continue
                att_data = _fetch(store, attachment.file_path, deadline)
                if att_data is None:
                    missing.append({
                        "document_id": doc.id,
                        "attachment_id": attachment.id,
                        "file_path": attachment.file_path,
                        "kind": "attachment",
                    })
                    continue
                zf.writestr(f"{attachment_folder(folder, attachment.category)}/{attachment.file_name}", att_data)

            rows.append([
                str(seq),
                doc.number or "-",
                doc.title,
                doc.document_date.isoformat() if doc.document_date else "-",
                doc.kind,
                doc.location.name if doc.location else "-",
                folder,
                doc.status,
                _signers_text(doc),
            ])

        csv_bytes = inventory_csv(rows)
        zf.writestr(INVENTORY_CSV_NAME, csv_bytes)
        zf.writestr(INVENTORY_XLSX_NAME, inventory_xlsx(items[0].package.name, rows))
        for folder_name in PACKAGE_FOLDERS:
            zf.writestr(f"{folder_name}/.keep", b"")

    return buf.getvalue(), csv_bytes, missing


def _claim_for_build(package_id: int) -> None:
    """Compare-and-set draft|ready → generating, committed."""
    result = db.session.execute(
        update(Package)
        .where(Package.id == package_id, Package.status.in_(BUILDABLE_STATUSES))
        .values(status="generating", updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.session.commit()
        return
    db.session.rollback()
    pkg = _get_package(package_id)
    if pkg.status == "generating":
        raise ConflictError("Package", "status", pkg.status,
                            message=f"Package {package_id} is already being built")
    raise IllegalTransitionError(pkg.status, "generating")


def _revert_to_draft(package_id: int) -> None:
    db.session.rollback()
    db.session.execute(
        update(Package)
        .where(Package.id == package_id, Package.status == "generating")
        .values(status="draft", updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


# ── Build ────────────────────────────────────────────────────────────────────


def build(
    package_id: int,
    actor_id: int | None = None,
    *,
    timeout: float | None = None,
    allow_unsigned: bool = False,
) -> dict:
    """Assemble, store and finalise the package archive.

    Returns:
        {"archive_path", "inventory_path", "byte_size", "document_count",
         "missing_files", "package"}
    Raises:
        NotFoundError, ValidationError (empty / unsigned contents),
        ConflictError (concurrent build), IllegalTransitionError (delivered),
        OperationTimeoutError, StorageUnavailableError (archive upload)
    """
    pkg = _get_package(package_id)
    items = _load_items(pkg.id)
    if not items:
        raise ValidationError("Package contains no documents", details={"items": "empty"})
    if not allow_unsigned:
        unsigned = [i.document_id for i in items if i.document.status not in _FINAL_STATUSES]
        if unsigned:
            raise ValidationError(
                f"{len(unsigned)} document(s) in the package are not signed",
                details={"unsigned_document_ids": unsigned},
            )

    _claim_for_build(pkg.id)
    timeout = timeout if timeout is not None else current_app.config["PACKAGE_BUILD_TIMEOUT_SECONDS"]
    deadline = _Deadline(timeout)
    store = get_blob_store()
    stored: list[str] = []

    try:
        pkg = _get_package(package_id)
        items = _load_items(pkg.id)
        archive, csv_bytes, missing = assemble_archive(items, deadline, store)

        built_on = date.today()
        archive_path = package_object_name(pkg.project.code, pkg.name, built_on, ".zip")
        inventory_path = package_object_name(pkg.project.code, pkg.name, built_on, "_inventory.csv")
        deadline.check("storing the archive")
        stored.append(store.put(archive_path, archive, "application/zip"))
        deadline.check("storing the inventory")
        stored.append(store.put(inventory_path, csv_bytes, "text/csv; charset=utf-8"))

        # package ready + document statuses in one unit of work
        for item in items:
            if item.document.status == "signed":
                workflow_engine.stage_transition(
                    item.document_id, "in_package", actor_id, f"Included in package '{pkg.name}'",
                )
        pkg.status = "ready"
        pkg.archive_path = archive_path
        pkg.inventory_path = inventory_path
        pkg.byte_size = len(archive)
        pkg.document_count = len(items)
        pkg.built_at = datetime.now(timezone.utc)
        db.session.commit()
    except Exception:
        logger.exception("Package %s build failed; reverting to draft", package_id,
                         extra={"package_id": package_id})
        _revert_to_draft(package_id)
        for path in stored:
            try:
                store.delete(path)
            except StorageUnavailableError:
                logger.warning("Could not remove orphaned blob %s", path)
        raise

    logger.info(
        "Package %s built: %d document(s), %d byte(s), %d missing file(s)",
        pkg.id, pkg.document_count, pkg.byte_size, len(missing),
        extra={"package_id": pkg.id, "project_id": pkg.project_id, "event_type": "package_built"},
    )
    return {
        "archive_path": pkg.archive_path,
        "inventory_path": pkg.inventory_path,
        "byte_size": pkg.byte_size,
        "document_count": pkg.document_count,
        "missing_files": missing,
        "package": pkg.to_dict(),
    }
