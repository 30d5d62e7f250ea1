"""
Milestone service layer.

Milestone templates (crowd-sourced, normalized, promoted by use and demoted
by flags) and the ordered per-program milestone lists built from them.

Rules:
  - Program scope is (program_type, program_sub_type); a missing sub type is
    stored as "".
  - db.session.commit() happens only in this layer.
  - Deprecated templates never appear in listings or matching.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select

from immitracker.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from immitracker.models import db
from immitracker.models.milestone import MILESTONE_CATEGORIES, Milestone, MilestoneTemplate
from immitracker.services.repositories import MilestoneTemplateRepository
from immitracker.services.template_lifecycle import TemplateLifecycle
from immitracker.utils.milestone_normalizer import categorize
from immitracker.utils.string_normalizer import normalize

logger = logging.getLogger(__name__)


def _scope(program_type: str | None, program_sub_type: str | None = None) -> dict:
    program_type = (program_type or "").strip()
    if not program_type:
        raise ValidationError("programType is required", details={"programType": "missing"})
    return {"program_type": program_type, "program_sub_type": (program_sub_type or "").strip()}


class MilestoneService:
    """Milestone templates and per-program milestone lists."""

    def __init__(self, repo: MilestoneTemplateRepository | None = None, lifecycle: TemplateLifecycle | None = None):
        self.repo = repo or MilestoneTemplateRepository()
        self.lifecycle = lifecycle or TemplateLifecycle(self.repo)

    @property
    def session(self):
        return self.repo.session

    # ═════════════════════════════════════════════════════════════════
    # Templates
    # ═════════════════════════════════════════════════════════════════

    def list_templates(self, program_type, program_sub_type=None, include_unapproved=False) -> list[dict]:
        """Live templates of a program scope, most used first."""
        scope = _scope(program_type, program_sub_type)
        rows = self.repo.list_live(
            program_type=scope["program_type"],
            program_sub_type=scope["program_sub_type"] or None,
            include_unapproved=include_unapproved,
        )
        return [t.to_dict() for t in rows]

    def list_all_unique_templates(self, include_unapproved=False) -> list[dict]:
        """One live template per normalized name (the most used), sorted by name."""
        seen: dict[str, MilestoneTemplate] = {}
        for template in self.repo.list_live(include_unapproved=include_unapproved):
            seen.setdefault(template.normalized_name, template)
        return [t.to_dict() for t in sorted(seen.values(), key=lambda t: t.name.lower())]

    def list_templates_by_category(self, program_type=None, program_sub_type=None) -> dict[str, list[dict]]:
        """Live templates grouped by category (empty categories omitted)."""
        rows = self.repo.list_live(
            program_type=program_type or None,
            program_sub_type=program_sub_type or None,
            include_unapproved=True,
        )
        grouped: dict[str, list[dict]] = {}
        for template in rows:
            category = template.category if template.category in MILESTONE_CATEGORIES else "other"
            grouped.setdefault(category, []).append(template.to_dict())
        return grouped

    def create_or_reuse_template(
        self,
        name: str,
        program_type: str,
        program_sub_type: str | None = None,
        *,
        description: str | None = None,
        user_id: str | None = None,
        commit: bool = True,
    ) -> MilestoneTemplate:
        """Reuse the matching live template (use_count + 1) or create a new one."""
        if not (name or "").strip():
            raise ValidationError("name is required", details={"name": "missing"})
        scope = _scope(program_type, program_sub_type)
        template, _created = self.lifecycle.create_or_reuse(
            name,
            scope,
            actor_id=user_id,
            description=description,
            category=categorize(name),
        )
        if commit:
            self.session.commit()
        return template

    def approve_template(self, template_id) -> MilestoneTemplate:
        template = self.lifecycle.get_or_raise(template_id)
        self.repo.set_approval(template.id, True)
        self.session.commit()
        logger.info("Milestone template %r approved manually", template.name)
        return template

    def flag_template(self, template_id, user_id: str) -> MilestoneTemplate:
        try:
            template = self.lifecycle.flag(template_id, user_id)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        return template

    def unflag_template(self, template_id, user_id: str) -> MilestoneTemplate:
        try:
            template = self.lifecycle.unflag(template_id, user_id)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        return template

    def get_popular_templates(self, threshold: int | None = None) -> list[dict]:
        """Unapproved live templates that reached the use threshold."""
        threshold = threshold if threshold is not None else self.lifecycle.approval_threshold
        return [t.to_dict() for t in self.repo.list_popular(threshold)]

    def promote_popular_templates(self, threshold: int | None = None) -> list[dict]:
        """Approve popular templates and make their milestones default entries."""
        results = []
        for template in self.lifecycle.promote_popular(threshold):
            milestones = self.session.execute(
                select(Milestone).where(Milestone.template_id == template.id)
            ).scalars().all()
            for milestone in milestones:
                milestone.is_default = True
            results.append({
                "template": template.name,
                "template_id": template.id,
                "milestones_updated": len(milestones),
            })
        self.session.commit()
        return results

    def process_flagged_templates(self) -> list[dict]:
        demoted = self.lifecycle.process_flagged()
        self.session.commit()
        return [
            {"template": t.name, "template_id": t.id, "program_type": t.program_type}
            for t in demoted
        ]

    # ═════════════════════════════════════════════════════════════════
    # Milestones
    # ═════════════════════════════════════════════════════════════════

    def list_milestones(self, program_type, program_sub_type=None) -> list[dict]:
        scope = _scope(program_type, program_sub_type)
        stmt = select(Milestone).where(Milestone.program_type == scope["program_type"])
        if scope["program_sub_type"]:
            stmt = stmt.where(Milestone.program_sub_type == scope["program_sub_type"])
        stmt = stmt.order_by(Milestone.order.asc(), Milestone.created_at.asc())
        return [m.to_dict() for m in self.session.execute(stmt).scalars().all()]

    def _scope_milestones(self, program_type, program_sub_type):
        return self.session.execute(
            select(Milestone)
            .where(
                Milestone.program_type == program_type,
                Milestone.program_sub_type == program_sub_type,
            )
            .order_by(Milestone.order.asc(), Milestone.created_at.asc())
        ).scalars().all()

    def add_custom_milestone(
        self,
        name: str,
        program_type: str,
        program_sub_type: str | None = None,
        *,
        description: str | None = None,
        user_id: str | None = None,
    ) -> Milestone:
        """Create-or-reuse the template, then append a user milestone to the scope."""
        template = self.create_or_reuse_template(
            name, program_type, program_sub_type,
            description=description, user_id=user_id, commit=False,
        )
        scope = _scope(program_type, program_sub_type)
        highest = self.session.execute(
            select(func.max(Milestone.order)).where(
                Milestone.program_type == scope["program_type"],
                Milestone.program_sub_type == scope["program_sub_type"],
            )
        ).scalar()
        milestone = Milestone(
            name=name.strip(),
            description=description,
            is_default=False,
            order=0 if highest is None else highest + 1,
            template_id=template.id,
            **scope,
        )
        self.session.add(milestone)
        self.session.commit()
        logger.info("Custom milestone %r added to %s at order %d", milestone.name, scope, milestone.order)
        return milestone

    def _get_milestone(self, milestone_id) -> Milestone:
        milestone = self.session.get(Milestone, milestone_id)
        if milestone is None:
            raise NotFoundError(resource="Milestone", resource_id=milestone_id)
        return milestone

    def update_milestone_order(self, milestone_id, new_order: int) -> Milestone:
        """Move a milestone to ``new_order`` within its scope; orders stay dense."""
        if isinstance(new_order, bool) or not isinstance(new_order, int) or new_order < 0:
            raise ValidationError("order must be a non-negative integer", details={"order": new_order})
        milestone = self._get_milestone(milestone_id)
        siblings = [
            m for m in self._scope_milestones(milestone.program_type, milestone.program_sub_type)
            if m.id != milestone.id
        ]
        position = min(new_order, len(siblings))
        siblings.insert(position, milestone)
        for index, item in enumerate(siblings):
            item.order = index
        self.session.commit()
        return milestone

    def delete_milestone(self, milestone_id) -> None:
        """Delete a user-created milestone. Default milestones are protected."""
        milestone = self._get_milestone(milestone_id)
        if milestone.is_default:
            raise ForbiddenError(
                "Cannot delete a default milestone", resource="Milestone", resource_id=milestone_id,
            )
        program_type, program_sub_type = milestone.program_type, milestone.program_sub_type
        self.session.delete(milestone)
        self.session.flush()
        for index, item in enumerate(self._scope_milestones(program_type, program_sub_type)):
            item.order = index
        self.session.commit()
        logger.info("Milestone %s deleted", milestone_id)

    # ═════════════════════════════════════════════════════════════════
    # Seeding
    # ═════════════════════════════════════════════════════════════════

    def seed_default_milestones(self, program_type: str, milestone_names: list[str]) -> list[Milestone]:
        """Replace the default milestone list of a program.

        Seeded templates are approved. Re-seeding reuses them without
        touching use counts, so the operation is safe to repeat.
        """
        scope = _scope(program_type)
        self.session.execute(
            delete(Milestone).where(
                Milestone.program_type == scope["program_type"],
                Milestone.is_default.is_(True),
            )
        )
        created = []
        for index, name in enumerate(milestone_names):
            key = normalize(name)
            template = self.repo.find_live(key, scope)
            if template is None:
                template = MilestoneTemplate(
                    name=name,
                    normalized_name=key,
                    category=categorize(name),
                    use_count=1,
                    is_approved=True,
                    **scope,
                )
                self.session.add(template)
                self.session.flush()
            elif not template.is_approved:
                template.is_approved = True
            milestone = Milestone(
                name=name,
                is_default=True,
                order=index,
                template_id=template.id,
                **scope,
            )
            self.session.add(milestone)
            created.append(milestone)
        self.session.commit()
        logger.info("Seeded %d default milestones for %s", len(created), scope["program_type"])
        return created

    def seed_all_programs(self, programs=None) -> list[dict]:
        """Seed default milestones for every program of the bundled catalog."""
        from immitracker.data.immigration_programs import IMMIGRATION_PROGRAMS

        results = []
        for program in programs or IMMIGRATION_PROGRAMS:
            milestones = self.seed_default_milestones(program["id"], program["milestone_updates"])
            results.append({"program_id": program["id"], "milestones_created": len(milestones)})
        return results
