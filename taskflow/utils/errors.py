"""Standardised API error responses.

Usage
-----
    from taskflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Task not found")
    return api_error(E.VALIDATION_REQUIRED, "comments are required")

Every failure body has the same shape::

    {"success": false, "message": "...", "code": "ERR_..."}

Clients switch on ``code``; ``message`` is for humans and may change.
"""

from __future__ import annotations

from flask import jsonify

# Bumped when a code is renamed or removed (adding codes is compatible)
ERROR_CONTRACT_VERSION = 1


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_NO_CHANGES = "ERR_VALIDATION_NO_CHANGES"
    VALIDATION_FILE_TYPE = "ERR_VALIDATION_FILE_TYPE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_PENDING_REQUEST = "ERR_CONFLICT_PENDING_REQUEST"

    # Lifecycle – HTTP 409 (procedure ran and refused)
    TRANSITION_INVALID = "ERR_TRANSITION_INVALID"
    TASK_CLOSED = "ERR_TASK_CLOSED"
    TASK_DELETED = "ERR_TASK_DELETED"
    REQUEST_NOT_PENDING = "ERR_REQUEST_NOT_PENDING"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_ASSIGNEE = "ERR_NOT_ASSIGNEE"

    # Upstream – HTTP 502
    TRANSPORT = "ERR_TRANSPORT"
    PARTIAL_FAILURE = "ERR_PARTIAL_FAILURE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_NO_CHANGES: 422,
    E.VALIDATION_FILE_TYPE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_PENDING_REQUEST: 409,
    E.TRANSITION_INVALID: 409,
    E.TASK_CLOSED: 409,
    E.TASK_DELETED: 409,
    E.REQUEST_NOT_PENDING: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_ASSIGNEE: 403,
    E.TRANSPORT: 502,
    E.PARTIAL_FAILURE: 502,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def status_for(code: str) -> int:
    """HTTP status for an error code (400 when unknown)."""
    return _DEFAULT_STATUS.get(code, 400)


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
        Extra structured payload (field errors, orphaned paths, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or status_for(code)

    body: dict = {
        "success": False,
        "message": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
