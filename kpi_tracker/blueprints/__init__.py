"""
KPI Tracker
Blueprint registry: pagination helper and the shared exception → HTTP mapping.
"""

import logging

from flask import request

from kpi_tracker.core.exceptions import (
    DuplicateFileError,
    ImportValidationError,
    NotFoundError,
    ParseError,
    PermissionDeniedError,
    PersistenceError,
    UnsupportedFormatError,
    ValidationError,
)
from kpi_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def paginate_list(items, default_limit=200, max_limit=1000):
    """Same contract as paginate_query, for lists already in memory."""
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], len(items)


def register_error_handlers(app):
    """Translate service exceptions into standard JSON error responses."""

    @app.errorhandler(UnsupportedFormatError)
    def _unsupported(exc):
        return api_error(E.IMPORT_UNSUPPORTED_FORMAT, str(exc), details={"file_name": exc.file_name})

    @app.errorhandler(DuplicateFileError)
    def _duplicate(exc):
        return api_error(E.IMPORT_DUPLICATE, str(exc), details={"original": exc.original.to_dict()})

    @app.errorhandler(ParseError)
    def _parse(exc):
        details = {"missing": exc.missing} if exc.missing else None
        return api_error(E.IMPORT_PARSE, str(exc), details=details)

    @app.errorhandler(ImportValidationError)
    def _import_validation(exc):
        return api_error(E.IMPORT_VALIDATION, "Errores de validación", details={"errors": exc.errors})

    @app.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @app.errorhandler(PermissionDeniedError)
    def _forbidden(exc):
        logger.info("Permission denied: %s", exc)
        return api_error(E.FORBIDDEN, "No tiene permisos para esta operación", details={"action": exc.action})

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(PersistenceError)
    def _persistence(exc):
        logger.error("Persistence failure: %s", exc)
        return api_error(E.PERSISTENCE, "Storage unavailable, try again later",
                         details={"attempts": exc.attempts})
