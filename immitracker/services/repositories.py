"""
Persistence primitives for crowd-sourced templates.

One repository per entity, built over a SQLAlchemy session (``db.session``
by default) so services can be composed in one unit of work and tests can
hand in their own session or a stand-in.

Rules:
  - Repositories flush, they never commit. Services own transaction
    boundaries.
  - Counters are changed with SQL-side expressions (``col = col + 1``) or
    recomputed from the association table, never read-modify-written in
    Python.
  - Create-or-reuse is one primitive (``insert_or_increment``) guarded by the
    live-key unique index; a lost insert race turns into an increment.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select, true, update
from sqlalchemy.exc import IntegrityError

from immitracker.models import db
from immitracker.models.application import (
    Application,
    ApplicationType,
    ApplicationTypeFlag,
    StatusHistory,
)
from immitracker.models.milestone import Milestone, MilestoneTemplate, MilestoneTemplateFlag

logger = logging.getLogger(__name__)


class TemplateRepository:
    """Shared create/flag primitives; subclasses bind the concrete tables.

    Subclass attributes:
        model:          the template model class
        flag_model:     association model with (<flag_fk>, user_id) primary key
        flag_fk:        name of the template FK column on ``flag_model``
        approval_attr:  boolean column promoted by use and demoted by flags
        scope_attrs:    columns that, with ``normalized_name``, form the key
    """

    model = None
    flag_model = None
    flag_fk = None
    approval_attr = None
    scope_attrs: tuple[str, ...] = ()

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    # ── Lookup ───────────────────────────────────────────────────────────

    def get(self, template_id):
        return self.session.get(self.model, template_id)

    def is_live(self, row) -> bool:
        return True

    def _live_clause(self):
        return true()

    def find_live(self, normalized_name: str, scope: dict, *, for_update: bool = False):
        """Return the live row for ``normalized_name`` within ``scope``, or None."""
        stmt = select(self.model).where(
            self.model.normalized_name == normalized_name,
            self._live_clause(),
            *[getattr(self.model, attr) == scope[attr] for attr in self.scope_attrs],
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalars().first()

    # ── Create or reuse ──────────────────────────────────────────────────

    def insert_or_increment(
        self,
        normalized_name: str,
        scope: dict,
        *,
        approval_threshold: int,
        **fields,
    ):
        """Insert a new row with ``use_count=1`` or bump the live one.

        Returns ``(row, created)``. On increment the approval column flips to
        True in the same UPDATE once ``use_count`` reaches the threshold.
        """
        existing = self.find_live(normalized_name, scope, for_update=True)
        if existing is None:
            row = self.model(
                normalized_name=normalized_name,
                use_count=1,
                flag_count=0,
                **{self.approval_attr: False},
                **scope,
                **fields,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(row)
            except IntegrityError:
                # Another request inserted the same key first.
                logger.info(
                    "%s insert raced on key=%r scope=%s; reusing existing row",
                    self.model.__name__, normalized_name, scope,
                )
                existing = self.find_live(normalized_name, scope, for_update=True)
                if existing is None:
                    raise
            else:
                return row, True

        self.increment_use(existing.id, approval_threshold=approval_threshold)
        return existing, False

    def increment_use(self, template_id, *, approval_threshold: int) -> None:
        approval_col = getattr(self.model, self.approval_attr)
        self.session.execute(
            update(self.model)
            .where(self.model.id == template_id)
            .values(
                use_count=self.model.use_count + 1,
                **{self.approval_attr: or_(approval_col, self.model.use_count + 1 >= approval_threshold)},
            )
            .execution_options(synchronize_session=False)
        )
        self._refresh(template_id)

    def set_approval(self, template_id, value: bool) -> None:
        self.session.execute(
            update(self.model)
            .where(self.model.id == template_id)
            .values(**{self.approval_attr: value})
            .execution_options(synchronize_session=False)
        )
        self._refresh(template_id)

    # ── Flags ────────────────────────────────────────────────────────────

    def _find_flag(self, template_id, user_id: str):
        fk_col = getattr(self.flag_model, self.flag_fk)
        return self.session.execute(
            select(self.flag_model).where(fk_col == template_id, self.flag_model.user_id == user_id)
        ).scalars().first()

    def has_flag(self, template_id, user_id: str) -> bool:
        return self._find_flag(template_id, user_id) is not None

    def add_flag(self, template_id, user_id: str) -> bool:
        """Insert the (template, user) flag row. False if it already exists."""
        if self.has_flag(template_id, user_id):
            return False
        flag = self.flag_model(**{self.flag_fk: template_id, "user_id": user_id})
        try:
            with self.session.begin_nested():
                self.session.add(flag)
        except IntegrityError:
            # Primary key (template, user) is the authoritative guard.
            return False
        self._sync_flag_count(template_id)
        return True

    def remove_flag(self, template_id, user_id: str) -> bool:
        """Delete the (template, user) flag row. False if there was none."""
        flag = self._find_flag(template_id, user_id)
        if flag is None:
            return False
        self.session.delete(flag)
        self.session.flush()
        self._sync_flag_count(template_id)
        return True

    def _sync_flag_count(self, template_id) -> None:
        """Recompute the denormalized flag_count from the association rows."""
        fk_col = getattr(self.flag_model, self.flag_fk)
        count_q = (
            select(func.count())
            .select_from(self.flag_model)
            .where(fk_col == template_id)
            .scalar_subquery()
        )
        self.session.execute(
            update(self.model)
            .where(self.model.id == template_id)
            .values(flag_count=count_q)
            .execution_options(synchronize_session=False)
        )
        self._refresh(template_id)

    # ── Usage ────────────────────────────────────────────────────────────

    def count_live_usages(self, template_id) -> int:
        raise NotImplementedError

    def list_flagged(self, threshold: int):
        """Approved rows whose flag_count reached ``threshold``."""
        stmt = select(self.model).where(
            self.model.flag_count >= threshold,
            getattr(self.model, self.approval_attr).is_(True),
            self._live_clause(),
        )
        return self.session.execute(stmt).scalars().all()

    def list_popular(self, threshold: int):
        """Unapproved rows whose use_count reached ``threshold``."""
        stmt = (
            select(self.model)
            .where(
                self.model.use_count >= threshold,
                getattr(self.model, self.approval_attr).is_(False),
                self._live_clause(),
            )
            .order_by(self.model.use_count.desc())
        )
        return self.session.execute(stmt).scalars().all()

    def _refresh(self, template_id) -> None:
        # Bulk UPDATEs bypass the identity map; reload the cached instance.
        row = self.session.get(self.model, template_id)
        if row is not None:
            self.session.expire(row)
            self.session.refresh(row)


class MilestoneTemplateRepository(TemplateRepository):
    """Milestone templates, keyed by normalized name + program scope."""

    model = MilestoneTemplate
    flag_model = MilestoneTemplateFlag
    flag_fk = "template_id"
    approval_attr = "is_approved"
    scope_attrs = ("program_type", "program_sub_type")

    def _live_clause(self):
        return MilestoneTemplate.is_deprecated.is_(False)

    def is_live(self, row) -> bool:
        return not row.is_deprecated

    def count_live_usages(self, template_id) -> int:
        """Milestones plus status-history entries that point at the template."""
        milestones = self.session.execute(
            select(func.count()).select_from(Milestone).where(Milestone.template_id == template_id)
        ).scalar_one()
        history = self.session.execute(
            select(func.count()).select_from(StatusHistory).where(StatusHistory.template_id == template_id)
        ).scalar_one()
        return milestones + history

    def list_live(self, *, program_type=None, program_sub_type=None, include_unapproved=False):
        stmt = select(MilestoneTemplate).where(self._live_clause())
        if program_type:
            stmt = stmt.where(MilestoneTemplate.program_type == program_type)
        if program_sub_type:
            stmt = stmt.where(MilestoneTemplate.program_sub_type == program_sub_type)
        if not include_unapproved:
            stmt = stmt.where(MilestoneTemplate.is_approved.is_(True))
        stmt = stmt.order_by(MilestoneTemplate.use_count.desc(), MilestoneTemplate.created_at.asc())
        return self.session.execute(stmt).scalars().all()

    def lock_live(self, template_ids):
        """Lock and return the still-live rows among ``template_ids``."""
        stmt = (
            select(MilestoneTemplate)
            .where(MilestoneTemplate.id.in_(list(template_ids)), self._live_clause())
            .order_by(MilestoneTemplate.created_at.asc(), MilestoneTemplate.id.asc())
            .with_for_update()
        )
        return self.session.execute(stmt).scalars().all()

    def repoint_references(self, from_id, to_id) -> tuple[int, int]:
        """Move status history and milestones from one template to another."""
        history = self.session.execute(
            update(StatusHistory)
            .where(StatusHistory.template_id == from_id)
            .values(template_id=to_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        milestones = self.session.execute(
            update(Milestone)
            .where(Milestone.template_id == from_id)
            .values(template_id=to_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        return history, milestones


class ApplicationTypeRepository(TemplateRepository):
    """Application types, keyed by normalized name + category."""

    model = ApplicationType
    flag_model = ApplicationTypeFlag
    flag_fk = "application_type_id"
    approval_attr = "is_default"
    scope_attrs = ("category",)

    def count_live_usages(self, template_id) -> int:
        return self.session.execute(
            select(func.count()).select_from(Application).where(Application.application_type_id == template_id)
        ).scalar_one()

    def list_all(self, *, include_non_default=False, category=None):
        stmt = select(ApplicationType)
        if not include_non_default:
            stmt = stmt.where(ApplicationType.is_default.is_(True))
        if category:
            stmt = stmt.where(ApplicationType.category == category)
        return self.session.execute(stmt.order_by(ApplicationType.name.asc())).scalars().all()
