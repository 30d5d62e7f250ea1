"""Standardised API error responses.

Usage
-----
    from immitracker.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Milestone template not found")
    return api_error(E.VALIDATION_REQUIRED, "programType is required")
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / flag state – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    ALREADY_FLAGGED = "ERR_ALREADY_FLAGGED"
    NOT_FLAGGED = "ERR_NOT_FLAGGED"

    # Server – HTTP 500
    MERGE_FAILED = "ERR_MERGE_FAILED"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.ALREADY_FLAGGED: 409,
    E.NOT_FLAGGED: 409,
    E.MERGE_FAILED: 500,
    E.INTERNAL: 500,
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
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, failing ids, etc.).

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


def register_error_handlers(bp, logger):
    """Attach the service-exception → JSON handlers to a blueprint.

    Every API blueprint maps the platform exceptions the same way, so the
    mapping lives here instead of being repeated per module.
    """
    from flask import request

    from immitracker.core.exceptions import (
        FlagStateError,
        ForbiddenError,
        MergeError,
        NotFoundError,
        ValidationError,
    )

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(FlagStateError)
    def _handle_flag_state(error: FlagStateError):
        return api_error(error.code, str(error), status=409)

    @bp.errorhandler(MergeError)
    def _handle_merge(error: MergeError):
        logger.error("Merge failed endpoint=%s: %s", request.endpoint, error)
        return api_error(E.MERGE_FAILED, str(error), details={"normalized_key": error.normalized_key})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
