"""
Matrix Blueprint — rule catalog, role assignments and trigger application.

Endpoints:
    GET    /api/v1/matrix/rules?project_id=&work_category=&include_global=&active_only=
    POST   /api/v1/matrix/rules                      Body: rule fields + optional project_id
    PUT    /api/v1/matrix/rules/<rule_id>
    POST   /api/v1/matrix/rules/<rule_id>/active     Body: { "is_active": bool }
    POST   /api/v1/matrix/seed-defaults              Body: { "project_id"?, "work_categories"? }

    POST   /api/v1/projects/<project_id>/roles       Body: { "person_id", "role" }

    POST   /api/v1/work-units/<work_unit_id>/triggers
           Body: { "trigger_event": "...", "actor_id": <int optional> }
           Returns: 201 with created / skipped / unresolved_signatures
    GET    /api/v1/work-units/<work_unit_id>/required-documents?trigger_event=

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON.
    - NO db.session calls here — all writes owned by the services.
"""

import logging

from flask import Blueprint, jsonify, request

from docops.blueprints import optional_int
from docops.services import requirement_resolver, role_directory, rule_catalog
from docops.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

matrix_bp = Blueprint("matrix", __name__, url_prefix="/api/v1")
register_error_handlers(matrix_bp)


def _flag(name: str, default: bool) -> bool:
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes")


# ── Rule catalog ─────────────────────────────────────────────────────────────


@matrix_bp.route("/matrix/rules", methods=["GET"])
def list_rules():
    project_id = request.args.get("project_id", type=int)
    rules = rule_catalog.list_rules(
        project_id=project_id,
        work_category=request.args.get("work_category") or None,
        include_global=_flag("include_global", True),
        active_only=_flag("active_only", False),
    )
    return jsonify({"items": rules, "total": len(rules)}), 200


@matrix_bp.route("/matrix/rules", methods=["POST"])
def create_rule():
    data = request.get_json(silent=True) or {}
    try:
        project_id = optional_int(data.pop("project_id", None))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "project_id must be an integer")
    return jsonify(rule_catalog.create_rule(data, project_id=project_id)), 201


@matrix_bp.route("/matrix/rules/<int:rule_id>", methods=["PUT"])
def update_rule(rule_id: int):
    data = request.get_json(silent=True) or {}
    return jsonify(rule_catalog.update_rule(rule_id, data)), 200


@matrix_bp.route("/matrix/rules/<int:rule_id>/active", methods=["POST"])
def set_rule_active(rule_id: int):
    data = request.get_json(silent=True) or {}
    if "is_active" not in data or not isinstance(data["is_active"], bool):
        return api_error(E.VALIDATION_REQUIRED, "Field 'is_active' (boolean) is required.")
    return jsonify(rule_catalog.set_rule_active(rule_id, data["is_active"])), 200


@matrix_bp.route("/matrix/seed-defaults", methods=["POST"])
def seed_defaults():
    data = request.get_json(silent=True) or {}
    try:
        project_id = optional_int(data.get("project_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "project_id must be an integer")
    work_categories = data.get("work_categories")
    if work_categories is not None and not isinstance(work_categories, list):
        return api_error(E.VALIDATION_INVALID, "work_categories must be a list")
    created = rule_catalog.install_default_rules(project_id, work_categories)
    return jsonify({"created": created, "project_id": project_id}), 200


# ── Role directory ───────────────────────────────────────────────────────────


@matrix_bp.route("/projects/<int:project_id>/roles", methods=["POST"])
def assign_role(project_id: int):
    data = request.get_json(silent=True) or {}
    role = (data.get("role") or "").strip()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "Field 'role' is required.")
    try:
        person_id = optional_int(data.get("person_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "person_id must be an integer")
    if person_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'person_id' is required.")
    return jsonify(role_directory.assign_role(project_id, person_id, role)), 201


# ── Trigger application ──────────────────────────────────────────────────────


@matrix_bp.route("/work-units/<int:work_unit_id>/triggers", methods=["POST"])
def apply_trigger(work_unit_id: int):
    """Create the documents a trigger event requires for the work unit."""
    data = request.get_json(silent=True) or {}
    trigger_event = (data.get("trigger_event") or "").strip()
    if not trigger_event:
        return api_error(E.VALIDATION_REQUIRED, "Field 'trigger_event' is required.")
    try:
        actor_id = optional_int(data.get("actor_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "actor_id must be an integer")

    result = requirement_resolver.apply_trigger(work_unit_id, trigger_event, actor_id=actor_id)
    return jsonify(result), 201


@matrix_bp.route("/work-units/<int:work_unit_id>/required-documents", methods=["GET"])
def required_documents(work_unit_id: int):
    trigger_event = (request.args.get("trigger_event") or "").strip()
    if not trigger_event:
        return api_error(E.VALIDATION_REQUIRED, "Query parameter 'trigger_event' is required.")
    missing = requirement_resolver.missing_documents(work_unit_id, trigger_event)
    return jsonify({"items": missing, "total": len(missing)}), 200
