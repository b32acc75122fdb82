"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``docops.utils.errors.register_error_handlers``) and get consistent
HTTP status codes everywhere.

Usage:
    from docops.core.exceptions import NotFoundError, IllegalTransitionError

    raise NotFoundError(resource="Document", resource_id=42)
    raise IllegalTransitionError("draft", "signed", "not an allowed transition")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is soft-deleted.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Document", "WorkUnit").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. empty signer list, package without items).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ValidationFailedError(ValidationError):
    """Raised when the document validation engine rejects a submission.

    Carries the complete error and warning lists so callers can render
    every problem at once.
    """

    def __init__(self, document_id: int, errors: list[str], warnings: list[str]) -> None:
        self.document_id = document_id
        self.errors = list(errors)
        self.warnings = list(warnings)
        super().__init__(
            f"Document {document_id} failed validation with {len(self.errors)} error(s)",
            details={"errors": self.errors, "warnings": self.warnings},
        )


class IllegalTransitionError(Exception):
    """Raised when a lifecycle transition or signature precondition is violated.

    Maps to HTTP 409.
    """

    def __init__(self, current: str, target: str, reason: str | None = None) -> None:
        msg = f"Cannot move from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.current_status = current
        self.target_status = target
        self.reason = reason


class PermissionDeniedError(Exception):
    """Raised when the acting person is not allowed to perform an action.

    Maps to HTTP 403.
    """


class ConflictError(Exception):
    """Raised when an operation would create a duplicate or collides with a concurrent one.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
        message: Optional override for the default duplicate message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class DuplicateRuleError(ConflictError):
    """A matrix rule with the same (work_category, document_kind, trigger_event) exists in scope."""

    def __init__(self, work_category: str, document_kind: str, trigger_event: str) -> None:
        super().__init__(
            "MatrixRule",
            "work_category/document_kind/trigger_event",
            f"{work_category}/{document_kind}/{trigger_event}",
        )


class DuplicateAssignmentError(ConflictError):
    """The project already has a person assigned to this role."""

    def __init__(self, project_id: int, role: str) -> None:
        super().__init__("ProjectMember", "role", role)
        self.project_id = project_id


class StorageUnavailableError(Exception):
    """Raised when the blob store cannot be reached or refuses an operation.

    Maps to HTTP 503.
    """


class BlobNotFoundError(Exception):
    """Raised by the blob store when a path has no stored object."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Blob not found: {path}")


class OperationTimeoutError(Exception):
    """Raised when external I/O exceeds the caller-supplied deadline.

    Maps to HTTP 504.
    """


class DocumentLockedError(Exception):
    """Raised when an edit targets a locked (signed / archived / packaged) document
    or one whose status no longer accepts author changes.

    Maps to HTTP 409.
    """

    def __init__(self, document_id: int, status: str, reason: str | None = None) -> None:
        self.document_id = document_id
        self.status = status
        msg = f"Document {document_id} cannot be modified in status '{status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
