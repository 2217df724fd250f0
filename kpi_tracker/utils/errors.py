"""Standardised API error responses.

Usage
-----
    from kpi_tracker.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Indicator not found")
    return api_error(E.IMPORT_VALIDATION, "Validation failed", details={"errors": [...]})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_     prefix for standard application errors
     • IMPORT_  prefix for import pipeline rejections
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"
    PERSISTENCE = "ERR_PERSISTENCE"

    # Import pipeline
    IMPORT_UNSUPPORTED_FORMAT = "IMPORT_UNSUPPORTED_FORMAT"
    IMPORT_DUPLICATE = "IMPORT_DUPLICATE"
    IMPORT_PARSE = "IMPORT_PARSE"
    IMPORT_VALIDATION = "IMPORT_VALIDATION"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.INTERNAL: 500,
    E.PERSISTENCE: 503,
    E.IMPORT_UNSUPPORTED_FORMAT: 415,
    E.IMPORT_DUPLICATE: 409,
    E.IMPORT_PARSE: 400,
    E.IMPORT_VALIDATION: 422,
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
        Human-readable explanation for the UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (validation list, original import, ...).

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
