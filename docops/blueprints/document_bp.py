"""
Documents Blueprint — lifecycle, signatures, validation, revisions, authoring.

Endpoints:
    GET    /api/v1/documents/<id>
    PUT    /api/v1/documents/<id>                   Body: title / number / document_date / fields / file_*
    DELETE /api/v1/documents/<id>                   soft delete (editable documents only)
    POST   /api/v1/documents/<id>/attachments       Body: { "file_name", "category", "file_path", "actor_id" }

    GET    /api/v1/documents/<id>/transitions
    POST   /api/v1/documents/<id>/transition        Body: { "to_status", "actor_id", "comment" }
    POST   /api/v1/documents/bulk-transition        Body: { "document_ids", "to_status", "actor_id", "comment" }
    GET    /api/v1/documents/<id>/history?include_rejected=
    GET    /api/v1/documents/<id>/validation
    POST   /api/v1/documents/<id>/revisions         Body: { "actor_id" }
    GET    /api/v1/documents/<id>/revisions

    POST   /api/v1/signatures/<id>/sign             Body: { "actor_id", "comment" }
    POST   /api/v1/signatures/<id>/reject           Body: { "actor_id", "reason" }
    POST   /api/v1/signatures/<id>/assign           Body: { "person_id", "actor_id" }  (no person_id: the role holder)

The acting person always arrives as ``actor_id`` in the JSON body.
Bulk transition answers 200 with a per-document result list, even when
some documents failed.
"""

import logging

from flask import Blueprint, jsonify, request

from docops.blueprints import optional_int, parse_id_list
from docops.models.document import DOCUMENT_STATUSES
from docops.services import document_service, validation_service, workflow_engine
from docops.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

document_bp = Blueprint("documents", __name__, url_prefix="/api/v1")
register_error_handlers(document_bp)


def _actor(data: dict, required: bool = False):
    """Return (actor_id, error_response)."""
    try:
        actor_id = optional_int(data.get("actor_id"))
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "actor_id must be an integer")
    if required and actor_id is None:
        return None, api_error(E.VALIDATION_REQUIRED, "Field 'actor_id' is required.")
    return actor_id, None


def _target_status(data: dict):
    to_status = data.get("to_status")
    if to_status is not None and not isinstance(to_status, str):
        return None, api_error(E.VALIDATION_INVALID, "Field 'to_status' must be a string.")
    to_status = (to_status or "").strip()
    if not to_status:
        return None, api_error(E.VALIDATION_REQUIRED, "Field 'to_status' is required.")
    if to_status not in DOCUMENT_STATUSES:
        return None, api_error(
            E.VALIDATION_INVALID, f"Unknown status '{to_status}'.",
            details={"valid_statuses": sorted(DOCUMENT_STATUSES)},
        )
    return to_status, None


# ── Authoring ────────────────────────────────────────────────────────────────


@document_bp.route("/documents/<int:document_id>", methods=["GET"])
def get_document(document_id: int):
    return jsonify(document_service.get_document(document_id)), 200


@document_bp.route("/documents/<int:document_id>", methods=["PUT"])
def update_document(document_id: int):
    data = request.get_json(silent=True) or {}
    return jsonify(document_service.update_document(document_id, data)), 200


@document_bp.route("/documents/<int:document_id>", methods=["DELETE"])
def delete_document(document_id: int):
    document_service.delete_document(document_id)
    return jsonify({"deleted": True, "id": document_id}), 200


@document_bp.route("/documents/<int:document_id>/attachments", methods=["POST"])
def add_attachment(document_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, err = _actor(data)
    if err:
        return err
    return jsonify(document_service.add_attachment(document_id, data, uploaded_by_id=actor_id)), 201


# ── Lifecycle ────────────────────────────────────────────────────────────────


@document_bp.route("/documents/<int:document_id>/transitions", methods=["GET"])
def get_transitions(document_id: int):
    return jsonify(workflow_engine.get_allowed_transitions(document_id)), 200


@document_bp.route("/documents/<int:document_id>/transition", methods=["POST"])
def transition(document_id: int):
    """Move a document along the lifecycle graph.

    Returns 200 with the document, 409 on an illegal transition,
    422 with the full error/warning lists when validation blocks submission.
    """
    data = request.get_json(silent=True) or {}
    to_status, err = _target_status(data)
    if err:
        return err
    actor_id, err = _actor(data, required=True)
    if err:
        return err

    doc = workflow_engine.transition(document_id, to_status, actor_id, comment=data.get("comment"))
    return jsonify(doc), 200


@document_bp.route("/documents/bulk-transition", methods=["POST"])
def bulk_transition():
    data = request.get_json(silent=True) or {}
    document_ids = parse_id_list(data.get("document_ids"))
    if not document_ids:
        return api_error(E.VALIDATION_REQUIRED, "Field 'document_ids' (list of ids) is required.")
    to_status, err = _target_status(data)
    if err:
        return err
    actor_id, err = _actor(data, required=True)
    if err:
        return err

    result = workflow_engine.bulk_transition(document_ids, to_status, actor_id, comment=data.get("comment"))
    return jsonify(result), 200


@document_bp.route("/documents/<int:document_id>/history", methods=["GET"])
def get_history(document_id: int):
    include_rejected = (request.args.get("include_rejected") or "").lower() in ("1", "true", "yes")
    history = workflow_engine.get_history(document_id, include_rejected=include_rejected)
    return jsonify({"history": history, "total": len(history)}), 200


@document_bp.route("/documents/<int:document_id>/validation", methods=["GET"])
def validate(document_id: int):
    return jsonify(validation_service.validate_document(document_id)), 200


@document_bp.route("/documents/<int:document_id>/revisions", methods=["POST"])
def create_revision(document_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, err = _actor(data)
    if err:
        return err
    return jsonify(document_service.create_revision(document_id, actor_id=actor_id)), 201


@document_bp.route("/documents/<int:document_id>/revisions", methods=["GET"])
def list_revisions(document_id: int):
    chain = document_service.revision_chain(document_id)
    return jsonify({"items": chain, "total": len(chain)}), 200


# ── Signatures ───────────────────────────────────────────────────────────────


@document_bp.route("/signatures/<int:signature_id>/sign", methods=["POST"])
def sign(signature_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, err = _actor(data, required=True)
    if err:
        return err
    return jsonify(workflow_engine.sign(signature_id, actor_id, comment=data.get("comment"))), 200


@document_bp.route("/signatures/<int:signature_id>/reject", methods=["POST"])
def reject(signature_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, err = _actor(data, required=True)
    if err:
        return err
    reason = (data.get("reason") or "").strip()
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "A 'reason' is required to reject a signature.")
    return jsonify(workflow_engine.reject(signature_id, actor_id, reason)), 200


@document_bp.route("/signatures/<int:signature_id>/assign", methods=["POST"])
def assign_signer(signature_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, err = _actor(data)
    if err:
        return err
    try:
        person_id = optional_int(data.get("person_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "person_id must be an integer")
    return jsonify(workflow_engine.assign_signer(signature_id, person_id, actor_id=actor_id)), 200
