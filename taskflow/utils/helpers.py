"""Shared utility functions for services and blueprints.

parse_date:        returns None on bad input (query-string filters)
parse_date_input:  raises ValueError on bad input (change-sets)
commit_or_raise:   commit, mapping constraint violations to ConflictError
is_blank:          empty / whitespace-only text check
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError

from taskflow.core.exceptions import ConflictError
from taskflow.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse an ISO date string to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Same as parse_date() but raises ValueError instead of returning None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f"Invalid date format: {value!r}. Use YYYY-MM-DD.")
    return parsed


def is_blank(value) -> bool:
    return value is None or not str(value).strip()


def escape_like(term: str, escape_char: str = "\\") -> str:
    """Make ``%`` and ``_`` literal inside a LIKE pattern (pair with ``escape=``)."""
    return (
        term.replace(escape_char, escape_char * 2)
        .replace("%", f"{escape_char}%")
        .replace("_", f"{escape_char}_")
    )


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(conflict_message="Duplicate or constraint violation", conflict_code=None):
    """Commit the current SQLAlchemy session.

    IntegrityError → rollback + ConflictError (HTTP 409)
    Anything else  → rollback + re-raise

    Usage::

        db.session.add(row)
        commit_or_raise("A pending edit request already exists for this task")
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(conflict_message, code=conflict_code) from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise
