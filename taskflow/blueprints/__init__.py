"""
Taskflow
Blueprint registry helpers: actor resolution, role gate, pagination, error handlers.
"""

import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from taskflow.core.exceptions import PermissionDenied, TaskflowError, ValidationError
from taskflow.models import db
from taskflow.services.user_service import get_user_role
from taskflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def current_user_id() -> int:
    """Acting user from the ``X-User-Id`` header."""
    raw = request.headers.get(USER_HEADER, "").strip()
    if not raw:
        raise PermissionDenied(f"Missing {USER_HEADER} header", code=E.UNAUTHENTICATED)
    try:
        return int(raw)
    except ValueError:
        raise PermissionDenied(f"Invalid {USER_HEADER} header", code=E.UNAUTHENTICATED) from None


def require_role(*roles) -> int:
    """Acting user id, provided their cached role is one of ``roles``."""
    user_id = current_user_id()
    if get_user_role(user_id) not in roles:
        raise PermissionDenied("Your role does not allow this action", user_id=user_id)
    return user_id


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def pagination_args(default_limit=50, max_limit=500):
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def register_error_handlers(app):
    """Render service exceptions as ``{success: false, message, code}``."""

    @app.errorhandler(TaskflowError)
    def _handle_taskflow_error(exc):
        if exc.code == E.PARTIAL_FAILURE:
            logger.error("Partial failure: %s details=%s", exc.message, exc.details)
        return api_error(exc.code, exc.message, details=exc.details or None)

    @app.errorhandler(SQLAlchemyError)
    def _handle_db_error(exc):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def _unsupported(e):
        return api_error(E.VALIDATION_INVALID, e.description or "Unsupported media type", status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return jsonify({"success": False, "message": "Too many requests", "retry_after": e.description}), 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
