"""
Platform-wide exception hierarchy.

Services raise these; blueprints register one handler per type and get
consistent HTTP status codes everywhere.

Usage:
    from kpi_tracker.core.exceptions import NotFoundError, ParseError

    raise NotFoundError(resource="Indicator", resource_id="ind-1")
    raise ParseError("No tables found", missing=["tabla-kpis"])

Status mapping (see blueprints/__init__.py):
    UnsupportedFormatError → 415
    DuplicateFileError     → 409
    ParseError             → 400
    ImportValidationError  → 422
    ValidationError        → 422
    PermissionDeniedError  → 403
    NotFoundError          → 404
    PersistenceError       → 503
"""


class KpiTrackerError(Exception):
    """Base class for every error raised by the import pipeline and services."""


class UnsupportedFormatError(KpiTrackerError):
    """The uploaded file extension has no parser.

    Args:
        file_name: Name as submitted by the client.
    """

    def __init__(self, file_name: str) -> None:
        self.file_name = file_name
        super().__init__(
            f"Formato de archivo no soportado: {file_name}. "
            "Use archivos HTML (.html, .htm) o Excel (.xlsx, .xls)"
        )


class DuplicateFileError(KpiTrackerError):
    """The upload matches an earlier import (same content hash or same name).

    Args:
        original: The ``ImportHistoryEntry`` that was matched.
    """

    def __init__(self, original) -> None:
        self.original = original
        when = original.imported_at.strftime("%d/%m/%Y %H:%M") if original.imported_at else "?"
        who = original.imported_by or "desconocido"
        super().__init__(
            f"Este archivo ya fue importado el {when} por {who}"
        )


class ParseError(KpiTrackerError):
    """The document could not be decoded, or holds none of the expected tables.

    Args:
        message: Human-readable explanation.
        missing: Names of tables/sheets that were looked for and not found.
    """

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        self.missing = list(missing or [])
        super().__init__(message)


class ImportValidationError(KpiTrackerError):
    """A parsed batch failed validation. Carries every error, not just the first."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Errores de validación:\n" + "\n".join(self.errors))


class PermissionDeniedError(KpiTrackerError):
    """The actor's role does not allow the requested operation.

    Args:
        action: Operation that was refused (e.g. "import", "delete_history").
        role: Role of the actor, for logging.
    """

    def __init__(self, action: str, role: str | None = None) -> None:
        self.action = action
        self.role = role
        super().__init__(f"Permission denied: {action} (role={role or 'anonymous'})")


class PersistenceError(KpiTrackerError):
    """The storage collaborator failed after all retry attempts."""

    def __init__(self, message: str, attempts: int = 1) -> None:
        self.attempts = attempts
        super().__init__(message)


class NotFoundError(KpiTrackerError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Indicator").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(KpiTrackerError):
    """Raised when manual dataset input fails a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
