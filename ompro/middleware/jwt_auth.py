"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.current_user.

Every /api/v1/ route except login and health requires a valid bearer token.
The profile is re-read on each request: a token whose user has been deleted
is rejected with ERR_PROFILE_MISSING so the client signs out.
"""

import logging

import jwt as pyjwt
from flask import g, request

from ompro.models import db
from ompro.models.auth import User
from ompro.services.jwt_service import decode_access_token
from ompro.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.jwt_user_id = None
        g.jwt_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        if request.method == "OPTIONS":
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.AUTH_REQUIRED, "Authentication required")

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.AUTH_INVALID, "Session expired, please sign in again")
        except pyjwt.InvalidTokenError:
            return api_error(E.AUTH_INVALID, "Invalid token")

        user = db.session.get(User, payload["sub"])
        if user is None:
            logger.warning("Token for missing profile user_id=%s on %s", payload["sub"], path)
            return api_error(E.PROFILE_MISSING, "User profile not found")

        g.current_user = user
        g.jwt_user_id = user.id
        # The stored role wins over the claim so role changes apply immediately
        g.jwt_role = user.role
        return None
