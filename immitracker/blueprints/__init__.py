"""
ImmiTracker
Blueprint helpers shared by the API modules.
"""

from flask import request

_TRUE_VALUES = ("1", "true", "yes", "on")


def bool_arg(name: str, default: bool = False) -> bool:
    """Read a boolean query-string flag (``?merge=true``)."""
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def json_body() -> dict | None:
    """The request's JSON object, or None when the body is not a JSON object."""
    data = request.get_json(silent=True)
    if data is None and not request.data:
        return {}
    return data if isinstance(data, dict) else None
