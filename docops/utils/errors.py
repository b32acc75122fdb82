"""Standardised API error responses.

Usage
-----
    from docops.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Document not found")
    return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

Blueprints call ``register_error_handlers(bp)`` once so that service
exceptions from ``docops.core.exceptions`` map to the same JSON body and
status code everywhere.
"""

from __future__ import annotations

import logging

from flask import jsonify

from docops.core.exceptions import (
    BlobNotFoundError,
    ConflictError,
    DocumentLockedError,
    IllegalTransitionError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    StorageUnavailableError,
    ValidationError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    VALIDATION_FAILED = "ERR_VALIDATION_FAILED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    ILLEGAL_TRANSITION = "ERR_ILLEGAL_TRANSITION"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Upstream – HTTP 503 / 504
    STORAGE_UNAVAILABLE = "ERR_STORAGE_UNAVAILABLE"
    TIMEOUT = "ERR_TIMEOUT"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.VALIDATION_FAILED: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.ILLEGAL_TRANSITION: 409,
    E.FORBIDDEN: 403,
    E.STORAGE_UNAVAILABLE: 503,
    E.TIMEOUT: 504,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (validation findings, per-item results, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Blueprint exception mapping ───────────────────────────────────────

def register_error_handlers(bp) -> None:
    """Attach handlers for the service exception hierarchy to *bp*."""

    @bp.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(BlobNotFoundError)
    def _blob_not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(ValidationFailedError)
    def _validation_failed(exc):
        return api_error(E.VALIDATION_FAILED, str(exc), details=exc.details)

    @bp.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details or None)

    @bp.errorhandler(IllegalTransitionError)
    def _illegal_transition(exc):
        return api_error(
            E.ILLEGAL_TRANSITION, str(exc),
            details={"current_status": exc.current_status, "target_status": exc.target_status},
        )

    @bp.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @bp.errorhandler(DocumentLockedError)
    def _locked(exc):
        return api_error(E.CONFLICT_STATE, str(exc), details={"status": exc.status})

    @bp.errorhandler(PermissionDeniedError)
    def _forbidden(exc):
        return api_error(E.FORBIDDEN, str(exc))

    @bp.errorhandler(StorageUnavailableError)
    def _storage(exc):
        logger.error("Blob store unavailable: %s", exc)
        return api_error(E.STORAGE_UNAVAILABLE, "File storage is unavailable")

    @bp.errorhandler(OperationTimeoutError)
    def _timeout(exc):
        return api_error(E.TIMEOUT, str(exc))
