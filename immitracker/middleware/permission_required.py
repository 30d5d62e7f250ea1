"""
Identity decorators for route protection.

    @require_user    caller must be identified (401 otherwise)
    @require_admin   caller must hold the "admin" role (401/403 otherwise)

Identity comes from the JWT middleware (``g.jwt_user_id``). With
API_AUTH_ENABLED=false (development, tests) the ``X-User`` header is accepted
as the user id and admin checks pass through.
"""

import functools
import logging

from flask import current_app, g, request

from immitracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def is_auth_enabled() -> bool:
    value = str(current_app.config.get("API_AUTH_ENABLED", "true"))
    return value.lower() not in ("false", "0", "no", "off")


def current_user_id() -> str | None:
    """Opaque id of the calling user, or None when anonymous."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is not None:
        return str(user_id)
    if not is_auth_enabled():
        header = request.headers.get("X-User", "").strip()
        return header or None
    return None


def require_user(f):
    """Decorator: reject anonymous callers with 401."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_user_id() is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return f(*args, **kwargs)
    return decorated


def require_admin(f):
    """Decorator: require the admin role when auth is enabled."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not is_auth_enabled():
            return f(*args, **kwargs)
        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        if ADMIN_ROLE not in (getattr(g, "jwt_roles", None) or []):
            logger.warning("User %s denied: admin role required on %s", user_id, f.__name__)
            return api_error(E.FORBIDDEN, "Admin role required")
        return f(*args, **kwargs)
    return decorated
