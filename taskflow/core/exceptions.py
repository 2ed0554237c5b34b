"""
Service-wide exception hierarchy.

Services raise these; blueprints register handlers against them once
(``taskflow.blueprints.register_error_handlers``) and every endpoint gets the
same ``{success: false, message, code}`` body and HTTP status.

Each exception carries a stable ``code`` from ``taskflow.utils.errors.E``.

Usage:
    from taskflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Task", resource_id=42)
    raise ValidationError("Comments are required when rejecting review")
"""

from taskflow.utils.errors import E


class TaskflowError(Exception):
    """Base class; ``code`` is the machine-readable error code."""

    code = E.INTERNAL

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None) -> None:
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class NotFoundError(TaskflowError):
    """Raised when a requested resource does not exist (or is soft-deleted
    where the operation requires a live row).

    Args:
        resource: Human-readable entity name (e.g. "Task", "Edit request").
        resource_id: The PK that was looked up.
    """

    code = E.NOT_FOUND

    def __init__(self, resource: str, resource_id: int | str | None = None, *, message: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        if message is None:
            message = f"{resource}"
            if resource_id is not None:
                message += f" id={resource_id}"
            message += " not found"
        super().__init__(message)


class ValidationError(TaskflowError):
    """Raised when input fails a precondition before any write happens.

    Covers empty required fields, a change-set with nothing to change,
    rejection without comments and disallowed file types.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    code = E.VALIDATION_INVALID


class ConflictError(TaskflowError):
    """Raised when an operation would violate a uniqueness rule
    (e.g. a second pending edit request for the same task).

    Maps to HTTP 409.
    """

    code = E.CONFLICT_DUPLICATE


class PermissionDenied(TaskflowError):
    """Raised when the acting user's role or assignment does not allow the action."""

    code = E.FORBIDDEN

    def __init__(self, message: str, *, user_id: int | None = None, code: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message, code=code)


class TransitionError(TaskflowError):
    """Raised when a lifecycle procedure runs and refuses the request.

    The message is user-facing and is passed through to clients verbatim.
    """

    code = E.TRANSITION_INVALID

    def __init__(
        self,
        message: str,
        *,
        action: str | None = None,
        current: str | None = None,
        code: str | None = None,
    ) -> None:
        self.action = action
        self.current_status = current
        super().__init__(message, code=code)


class TransportError(TaskflowError):
    """Raised when a serverless endpoint cannot be reached or answers non-2xx."""

    code = E.TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PartialFailure(TaskflowError):
    """Raised when a multi-step operation outside the database transaction
    (blob write + row insert) could not be completed nor compensated.

    ``details["completed"]`` lists the steps that took effect.
    """

    code = E.PARTIAL_FAILURE

    def __init__(self, message: str, *, completed: list[str], failed: str, details: dict | None = None) -> None:
        self.completed = completed
        self.failed = failed
        merged = {"completed": completed, "failed": failed}
        merged.update(details or {})
        super().__init__(message, details=merged)
