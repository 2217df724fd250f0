"""
JWT Service — access token generation and verification.

Tokens are issued by the surrounding identity provider; this service only
needs to mint them for the CLI and tests, and to verify incoming ones.

Access token:  60 minutes (configurable via JWT_ACCESS_EXPIRES)
Algorithm:     HS256

Token payload:
{
    "sub": <actor_id>,
    "name": <display name>,
    "role": "admin" | "area_manager" | "analyst" | "consultant",
    "area": <area code or null>,
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from kpi_tracker.services.permission import ROLES


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 3600      # 60 minutes
ALGORITHM = "HS256"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(actor_id: str, name: str, role: str, area: str | None = None) -> str:
    """Generate a short-lived access token for an actor."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(actor_id),
        "name": name,
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    if area is not None:
        payload["area"] = area
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])

    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")

    return payload


def decode_access_token(token: str) -> dict:
    """Decode an access token and check the actor claims it must carry."""
    payload = decode_token(token, expected_type="access")
    if not payload.get("sub"):
        raise jwt.InvalidTokenError("Token has no subject")
    if payload.get("role") not in ROLES:
        raise jwt.InvalidTokenError(f"Unknown role: {payload.get('role')!r}")
    return payload
