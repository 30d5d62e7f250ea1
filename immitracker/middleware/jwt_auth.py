"""
JWT Auth Middleware — parses the Bearer token, sets g.jwt_*.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_roles

Invalid or expired tokens leave the context empty; the route decorators in
``permission_required`` decide whether an anonymous caller may proceed.
"""

import logging

import jwt as pyjwt
from flask import g, request

from immitracker.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.info("Invalid access token on %s: %s", path, exc)
            return

        g.jwt_user_id = payload.get("sub")
        g.jwt_roles = payload.get("roles", [])
