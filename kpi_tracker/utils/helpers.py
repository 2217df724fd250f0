"""Shared utility functions used by parsers, services and blueprints.

parse_date:      lenient — returns None on bad input
clamp_progress:  any number-ish → int in 0..100
db_commit_or_error: commit with a ready-made error response
"""
import logging
from datetime import date, datetime

logger = logging.getLogger(__name__)

_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d.%m.%Y", "%d-%m-%Y")


def parse_date(value):
    """Parse a date cell/string to a ``date`` object.

    Returns None for empty/invalid input. Supports:
    - date / datetime objects (datetime → .date())
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY, DD.MM.YYYY, DD-MM-YYYY
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def clamp_progress(value) -> int:
    """Round to int and clamp into 0..100. Non-numeric input → 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    return max(0, min(100, int(round(number))))


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError   → 409 (duplicate id / constraint violation)
    SQLAlchemyError  → 503 (connection / lock issues)
    """
    from sqlalchemy.exc import IntegrityError, SQLAlchemyError

    from kpi_tracker.models import db
    from kpi_tracker.utils.errors import E, api_error

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.VALIDATION_INVALID, "Duplicate or constraint violation", status=409)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database error on commit")
        return api_error(E.PERSISTENCE, "Database error")
