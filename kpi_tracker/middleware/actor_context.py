"""
Actor Context Middleware — Authorization: Bearer <jwt> → g.actor.

Every /api/v1/ route except the health checks needs a valid access token.
Role checks happen later, in the services, against ``g.actor.role``.
"""

import logging

import jwt as pyjwt
from flask import g, request

from kpi_tracker.services.jwt_service import decode_access_token
from kpi_tracker.services.permission import Actor
from kpi_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip actor resolution entirely
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def current_actor():
    return getattr(g, "actor", None)


def init_actor_context(app):
    """Register the actor resolver as a before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        if path.startswith(ACTOR_SKIP_PREFIXES):
            return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHORIZED, "Authentication required")

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return api_error(E.UNAUTHORIZED, "Invalid token")

        g.actor = Actor.from_claims(payload)
        return None
