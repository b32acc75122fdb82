"""
Packages Blueprint — as-built documentation sets.

Endpoints:
    POST   /api/v1/packages                 Body: { "project_id", "name", "date_from", "date_to", "description" }
    GET    /api/v1/packages/<id>
    PUT    /api/v1/packages/<id>            Body: { "name", "description", "date_from", "date_to" }
    DELETE /api/v1/packages/<id>
    POST   /api/v1/packages/<id>/items      Body: { "document_ids": [...] }
    DELETE /api/v1/packages/<id>/items/<item_id>
    POST   /api/v1/packages/<id>/collect    add every signed document in the date range
    POST   /api/v1/packages/<id>/build      Body: { "actor_id", "timeout", "allow_unsigned" }
    POST   /api/v1/packages/<id>/deliver    Body: { "actor_id" }
"""

import logging

from flask import Blueprint, jsonify, request

from docops.blueprints import optional_int, parse_id_list
from docops.services import package_builder
from docops.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

package_bp = Blueprint("packages", __name__, url_prefix="/api/v1/packages")
register_error_handlers(package_bp)


@package_bp.route("", methods=["POST"])
def create_package():
    data = request.get_json(silent=True) or {}
    try:
        project_id = optional_int(data.get("project_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "project_id must be an integer")
    if project_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'project_id' is required.")
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required.")

    pkg = package_builder.create_package(
        project_id,
        data["name"],
        date_from=data.get("date_from"),
        date_to=data.get("date_to"),
        description=data.get("description"),
    )
    return jsonify(pkg), 201


@package_bp.route("/<int:package_id>", methods=["GET"])
def get_package(package_id: int):
    return jsonify(package_builder.get_package(package_id)), 200


@package_bp.route("/<int:package_id>", methods=["PUT"])
def update_package(package_id: int):
    data = request.get_json(silent=True) or {}
    return jsonify(package_builder.update_package(package_id, data)), 200


@package_bp.route("/<int:package_id>", methods=["DELETE"])
def delete_package(package_id: int):
    package_builder.delete_package(package_id)
    return jsonify({"deleted": True, "id": package_id}), 200


@package_bp.route("/<int:package_id>/items", methods=["POST"])
def add_items(package_id: int):
    data = request.get_json(silent=True) or {}
    document_ids = parse_id_list(data.get("document_ids"))
    if not document_ids:
        return api_error(E.VALIDATION_REQUIRED, "Field 'document_ids' (list of ids) is required.")
    return jsonify(package_builder.add_documents(package_id, document_ids)), 200


@package_bp.route("/<int:package_id>/items/<int:item_id>", methods=["DELETE"])
def remove_item(package_id: int, item_id: int):
    return jsonify(package_builder.remove_item(package_id, item_id)), 200


@package_bp.route("/<int:package_id>/collect", methods=["POST"])
def collect(package_id: int):
    return jsonify(package_builder.collect_signed_documents(package_id)), 200


@package_bp.route("/<int:package_id>/build", methods=["POST"])
def build(package_id: int):
    """Assemble the archive.  409 while another build of the package runs."""
    data = request.get_json(silent=True) or {}
    try:
        actor_id = optional_int(data.get("actor_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "actor_id must be an integer")

    timeout = data.get("timeout")
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "timeout must be a number of seconds")
        if timeout <= 0:
            return api_error(E.VALIDATION_INVALID, "timeout must be positive")

    result = package_builder.build(
        package_id,
        actor_id,
        timeout=timeout,
        allow_unsigned=bool(data.get("allow_unsigned", False)),
    )
    return jsonify(result), 200


@package_bp.route("/<int:package_id>/deliver", methods=["POST"])
def deliver(package_id: int):
    data = request.get_json(silent=True) or {}
    try:
        actor_id = optional_int(data.get("actor_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "actor_id must be an integer")
    return jsonify(package_builder.deliver(package_id, actor_id=actor_id)), 200
