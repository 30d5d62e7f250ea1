"""
Application type service layer.

Crowd-sourced application types (study permit, work permit, ...) scoped by
category. Same lifecycle as milestone templates with ``is_default`` as the
approval flag; application types are never merged.
"""

from __future__ import annotations

import logging

from immitracker.core.exceptions import ValidationError
from immitracker.models.application import ApplicationType
from immitracker.services.repositories import ApplicationTypeRepository
from immitracker.services.template_lifecycle import TemplateLifecycle

logger = logging.getLogger(__name__)


class ApplicationTypeService:
    """Listing, create-or-reuse, flagging and promotion of application types."""

    def __init__(self, repo: ApplicationTypeRepository | None = None, lifecycle: TemplateLifecycle | None = None):
        self.repo = repo or ApplicationTypeRepository()
        self.lifecycle = lifecycle or TemplateLifecycle(self.repo)

    @property
    def session(self):
        return self.repo.session

    def list_application_types(self, include_non_default=False) -> list[dict]:
        return [t.to_dict() for t in self.repo.list_all(include_non_default=include_non_default)]

    def list_by_category(self, category: str) -> list[dict]:
        """Default application types of one category."""
        return [t.to_dict() for t in self.repo.list_all(category=category)]

    def create_or_reuse(
        self,
        name: str,
        category: str,
        *,
        description: str | None = None,
        user_id: str | None = None,
    ) -> ApplicationType:
        """Reuse the matching application type (use_count + 1) or create one."""
        details = {}
        if not (name or "").strip():
            details["name"] = "missing"
        if not (category or "").strip():
            details["category"] = "missing"
        if details:
            raise ValidationError("name and category are required", details=details)

        try:
            app_type, _created = self.lifecycle.create_or_reuse(
                name,
                {"category": category.strip()},
                actor_id=user_id,
                description=description,
            )
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        return app_type

    def flag(self, type_id, user_id: str) -> ApplicationType:
        try:
            app_type = self.lifecycle.flag(type_id, user_id)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        return app_type

    def unflag(self, type_id, user_id: str) -> ApplicationType:
        try:
            app_type = self.lifecycle.unflag(type_id, user_id)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        return app_type

    def promote_popular(self, threshold: int | None = None) -> list[dict]:
        """Mark popular application types as default."""
        promoted = self.lifecycle.promote_popular(threshold)
        self.session.commit()
        return [t.to_dict() for t in promoted]

    def process_flagged(self) -> list[dict]:
        """Remove the default mark from heavily flagged, unused types."""
        demoted = self.lifecycle.process_flagged()
        self.session.commit()
        logger.info("Processed flagged application types: %d demoted", len(demoted))
        return [t.to_dict() for t in demoted]
