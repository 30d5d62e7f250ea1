"""
Template Lifecycle — use-count promotion and flag-based demotion.

Shared by milestone templates and application types; the repository decides
which table, which scope columns and which boolean ("is_approved" or
"is_default") carries the approval state.

Approval axis:
    unapproved ──(use_count ≥ approval_threshold)──► approved
    approved ──(flag_count ≥ flag_threshold and no live usages)──► unapproved

Unflagging never restores approval. Flags are one per (template, user).

Usage:
    lifecycle = TemplateLifecycle(MilestoneTemplateRepository())
    template, created = lifecycle.create_or_reuse(
        "Biometrics Completed", {"program_type": "work_permit", "program_sub_type": ""},
    )
    lifecycle.flag(template.id, "user-1")
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context

from immitracker.core.exceptions import (
    AlreadyFlaggedError,
    NotFlaggedError,
    NotFoundError,
    ValidationError,
)
from immitracker.utils.string_normalizer import normalize

logger = logging.getLogger(__name__)

APPROVAL_THRESHOLD = 3
FLAG_THRESHOLD = 3


def _config_threshold(key: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(key, default))
    return default


class TemplateLifecycle:
    """Create-or-reuse, flag and unflag over one template repository."""

    def __init__(self, repo, *, approval_threshold: int | None = None, flag_threshold: int | None = None):
        self.repo = repo
        self._approval_threshold = approval_threshold
        self._flag_threshold = flag_threshold

    @property
    def approval_threshold(self) -> int:
        if self._approval_threshold is not None:
            return self._approval_threshold
        return _config_threshold("TEMPLATE_APPROVAL_THRESHOLD", APPROVAL_THRESHOLD)

    @property
    def flag_threshold(self) -> int:
        if self._flag_threshold is not None:
            return self._flag_threshold
        return _config_threshold("TEMPLATE_FLAG_THRESHOLD", FLAG_THRESHOLD)

    @property
    def resource(self) -> str:
        return self.repo.model.__name__

    def _is_approved(self, template) -> bool:
        return bool(getattr(template, self.repo.approval_attr))

    def get_or_raise(self, template_id):
        template = self.repo.get(template_id)
        # Merged (deprecated) rows are terminal.
        if template is None or not self.repo.is_live(template):
            raise NotFoundError(resource=self.resource, resource_id=template_id)
        return template

    # ── Create or reuse ──────────────────────────────────────────────────

    def create_or_reuse(self, name: str, scope: dict, *, actor_id: str | None = None, **fields):
        """Reuse the live template whose normalized name matches, else create one.

        Returns ``(template, created)``. Does not commit.

        Raises:
            ValidationError: name normalizes to an empty key.
        """
        key = normalize(name)
        if not key:
            raise ValidationError("name is required", details={"name": "empty after normalization"})

        was_approved = None
        existing = self.repo.find_live(key, scope)
        if existing is not None:
            was_approved = self._is_approved(existing)

        template, created = self.repo.insert_or_increment(
            key,
            scope,
            approval_threshold=self.approval_threshold,
            name=name.strip(),
            created_by_id=actor_id,
            **fields,
        )

        if created:
            logger.info("%s created: %r key=%r scope=%s", self.resource, template.name, key, scope)
        else:
            logger.info(
                "%s %r use count incremented to %d", self.resource, template.name, template.use_count,
            )
            if self._is_approved(template) and was_approved is False:
                logger.info(
                    "%s %r promoted at use_count=%d", self.resource, template.name, template.use_count,
                    extra={"template_id": template.id},
                )
        return template, created

    # ── Flags ────────────────────────────────────────────────────────────

    def flag(self, template_id, user_id: str):
        """Record ``user_id``'s flag; demote at the threshold when unused.

        Raises:
            NotFoundError: unknown template.
            AlreadyFlaggedError: the user already flagged it.
        """
        template = self.get_or_raise(template_id)
        if not self.repo.add_flag(template.id, user_id):
            raise AlreadyFlaggedError(self.resource, template.id, user_id)

        if template.flag_count >= self.flag_threshold and self._is_approved(template):
            usages = self.repo.count_live_usages(template.id)
            if usages == 0:
                self.repo.set_approval(template.id, False)
                logger.info(
                    "%s %r flagged %d times with no live usages; demoted",
                    self.resource, template.name, template.flag_count,
                    extra={"template_id": template.id},
                )
            else:
                logger.info(
                    "%s %r flagged %d times but kept: %d live usage(s)",
                    self.resource, template.name, template.flag_count, usages,
                )
        return template

    def unflag(self, template_id, user_id: str):
        """Withdraw ``user_id``'s flag. Approval is not restored.

        Raises:
            NotFoundError: unknown template.
            NotFlaggedError: the user had not flagged it.
        """
        template = self.get_or_raise(template_id)
        if not self.repo.remove_flag(template.id, user_id):
            raise NotFlaggedError(self.resource, template.id, user_id)
        return template

    # ── Batch passes ─────────────────────────────────────────────────────

    def promote_popular(self, threshold: int | None = None) -> list:
        """Approve every unapproved live row whose use_count reached the threshold."""
        threshold = threshold if threshold is not None else self.approval_threshold
        promoted = []
        for template in self.repo.list_popular(threshold):
            self.repo.set_approval(template.id, True)
            promoted.append(template)
            logger.info("Popular %s %r promoted (use_count=%d)", self.resource, template.name, template.use_count)
        return promoted

    def process_flagged(self) -> list:
        """Demote approved rows at/over the flag threshold that nothing uses."""
        demoted = []
        for template in self.repo.list_flagged(self.flag_threshold):
            usages = self.repo.count_live_usages(template.id)
            if usages:
                logger.info(
                    "Flagged %s %r kept: %d live usage(s)", self.resource, template.name, usages,
                )
                continue
            self.repo.set_approval(template.id, False)
            demoted.append(template)
            logger.info("Flagged %s %r demoted", self.resource, template.name)
        return demoted
