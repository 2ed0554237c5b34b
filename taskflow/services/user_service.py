"""
User Service — lookups, account provisioning, password reset.

Account provisioning and password reset go through the serverless
functions gateway. When it is unreachable the action still completes
with a locally generated password, and the degradation is reported in
the ``warnings`` list of the result.
"""

import logging
import secrets

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from taskflow.core.exceptions import ConflictError, NotFoundError, PermissionDenied, TransportError, ValidationError
from taskflow.models import db
from taskflow.models.user import PRIVILEGED_ROLES, ROLE_SUPER_ADMIN, ROLE_USER, USER_ROLES, User
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

ROLE_TTL = 300   # 5 minutes


def _role_key(user_id):
    return f"role:{user_id}"


def generate_password(length: int = 16) -> str:
    """Random URL-safe password used when the account service is unreachable."""
    return secrets.token_urlsafe(length)[:length]


# ═══════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════
def get_user(user_id: int) -> User | None:
    """Find a non-deleted user by ID."""
    user = db.session.get(User, user_id)
    if user is None or user.is_deleted:
        return None
    return user


def get_active_user(user_id: int) -> User:
    """Return the acting user or raise.

    Raises:
        NotFoundError: no such user, or soft-deleted.
        PermissionDenied: the account is deactivated.
    """
    user = get_user(user_id) if user_id is not None else None
    if user is None:
        raise NotFoundError("User", user_id)
    if not user.is_active:
        raise PermissionDenied("User account is inactive", user_id=user_id)
    return user


def get_user_role(user_id: int) -> str | None:
    """Role of an active user, cached for ``ROLE_TTL`` seconds."""
    def _load():
        user = get_user(user_id)
        return user.role if user and user.is_active else None

    return current_app.extensions["query_cache"].get(_role_key(user_id), loader=_load, ttl=ROLE_TTL)


def invalidate_user_cache(user_id: int) -> None:
    current_app.extensions["query_cache"].invalidate(_role_key(user_id))


def list_users(*, role: str | None = None, include_inactive: bool = False) -> list[User]:
    q = User.query_active()
    if role:
        q = q.filter_by(role=role)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(User.full_name, User.id).all()


# ═══════════════════════════════════════════════════════════════
# Provisioning
# ═══════════════════════════════════════════════════════════════
def _normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", code=E.VALIDATION_INVALID) from e


def create_user(*, email: str, full_name: str = "", role: str = ROLE_USER, created_by: int) -> dict:
    """Create a user account.

    Admins may create ordinary users; only a super admin may create
    admins or other super admins.

    Returns:
        {"success": True, "user": {...}, "warnings": [...],
         "temporary_password"?: str}  (only when generated locally)
    """
    actor = get_active_user(created_by)
    if actor.role not in PRIVILEGED_ROLES:
        raise PermissionDenied("Only admins can create users", user_id=created_by)
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role: {role}")
    if role != ROLE_USER and actor.role != ROLE_SUPER_ADMIN:
        raise PermissionDenied("Only Super Admin can create admin accounts", user_id=created_by)

    email = _normalize_email(email)
    if User.query_active().filter_by(email=email).first():
        raise ConflictError(f"User with email {email} already exists")

    warnings = []
    temporary_password = None
    gateway = current_app.extensions["functions_gateway"]
    try:
        gateway.invoke("create-user", {"email": email, "full_name": full_name, "role": role})
    except TransportError as exc:
        logger.warning("create-user function unavailable, using local fallback: %s", exc)
        temporary_password = generate_password()
        warnings.append(f"Account service unavailable ({exc.message}); a temporary password was generated locally")

    user = User(email=email, full_name=full_name or "", role=role)
    db.session.add(user)
    commit_or_raise(f"User with email {email} already exists")
    logger.info("User created id=%s role=%s by=%s", user.id, role, created_by)

    result = {"success": True, "message": "User created", "user": user.to_dict(), "warnings": warnings}
    if temporary_password:
        result["temporary_password"] = temporary_password
    return result


def reset_password(user_id: int, *, requested_by: int) -> dict:
    """Reset a user's password via the account service.

    Returns:
        {"success": True, "warnings": [...], "temporary_password"?: str}
    """
    actor = get_active_user(requested_by)
    if actor.role not in PRIVILEGED_ROLES:
        raise PermissionDenied("Only admins can reset passwords", user_id=requested_by)
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    gateway = current_app.extensions["functions_gateway"]
    try:
        result = gateway.invoke("reset-user-password", {"user_id": user.id, "email": user.email})
    except TransportError as exc:
        logger.warning("reset-user-password function unavailable, using local fallback: %s", exc)
        return {
            "success": True,
            "message": "Password reset",
            "temporary_password": generate_password(),
            "warnings": [f"Password service unavailable ({exc.message}); a temporary password was generated locally"],
        }

    response = {"success": True, "message": result.data.get("message") or "Password reset", "warnings": []}
    if result.data.get("password"):
        response["temporary_password"] = result.data["password"]
    return response


def update_role(user_id: int, role: str, *, updated_by: int) -> User:
    actor = get_active_user(updated_by)
    if actor.role != ROLE_SUPER_ADMIN:
        raise PermissionDenied("Only Super Admin can change roles", user_id=updated_by)
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role: {role}")
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    user.role = role
    commit_or_raise()
    invalidate_user_cache(user_id)
    return user
