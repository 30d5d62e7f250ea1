"""
Service-layer exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from immitracker.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="MilestoneTemplate", resource_id=tid)
    raise ValidationError("name is required", details={"name": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "MilestoneTemplate").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when an operation is not allowed on the target entity.

    Deleting a default (seeded) milestone is the canonical case. Maps to 403.
    """

    def __init__(self, message: str, resource: str | None = None,
                 resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(message)


class FlagStateError(Exception):
    """Base for flag/unflag requests that conflict with the current flag set.

    Maps to HTTP 409.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, resource: str, resource_id: int | str, user_id: str, message: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.user_id = user_id
        super().__init__(message)


class AlreadyFlaggedError(FlagStateError):
    """The user has already flagged this template."""

    code = "ERR_ALREADY_FLAGGED"

    def __init__(self, resource: str, resource_id: int | str, user_id: str) -> None:
        super().__init__(
            resource, resource_id, user_id,
            f"You have already flagged this {_label(resource)}",
        )


class NotFlaggedError(FlagStateError):
    """The user has not flagged this template, so there is nothing to remove."""

    code = "ERR_NOT_FLAGGED"

    def __init__(self, resource: str, resource_id: int | str, user_id: str) -> None:
        super().__init__(
            resource, resource_id, user_id,
            f"You have not flagged this {_label(resource)}",
        )


class MergeError(Exception):
    """Raised when a duplicate group could not be merged.

    The group's transaction has been rolled back; nothing was re-pointed.
    """

    def __init__(self, normalized_key: str, reason: str) -> None:
        self.normalized_key = normalized_key
        self.reason = reason
        super().__init__(f"Merge of group {normalized_key!r} failed: {reason}")


def _label(resource: str) -> str:
    """'MilestoneTemplate' -> 'milestone template'."""
    out = []
    for ch in resource:
        if ch.isupper() and out:
            out.append(" ")
        out.append(ch.lower())
    return "".join(out)
