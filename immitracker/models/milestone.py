"""
Milestone domain models.

    MilestoneTemplate       crowd-sourced, reusable milestone definition
    MilestoneTemplateFlag   one row per (template, user) flag
    Milestone               ordered per-program milestone list entry

Template lifecycle:
    unapproved ──(use_count ≥ 3)──► approved
    approved ──(flag_count ≥ 3 and no live usages)──► unapproved
    any ──(merge)──► deprecated (terminal, canonical_id set)

Deprecated templates are kept for history but never match or list.
"""

import uuid
from datetime import datetime, timezone

from immitracker.models import db


def _uuid():
    """Generate a UUID4 string for primary keys."""
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


MILESTONE_CATEGORIES = (
    "application",
    "biometrics",
    "medical",
    "document",
    "decision",
    "background_check",
    "other",
)


class MilestoneTemplate(db.Model):
    """Reusable milestone definition shared across users and applications."""

    __tablename__ = "milestone_templates"
    __table_args__ = (
        # Only live rows compete for a key; merged rows keep their old key.
        db.Index(
            "uq_milestone_templates_live_key",
            "normalized_name", "program_type", "program_sub_type",
            unique=True,
            sqlite_where=db.text("NOT is_deprecated"),
            postgresql_where=db.text("NOT is_deprecated"),
        ),
        db.Index("idx_mt_scope", "program_type", "program_sub_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    normalized_name = db.Column(db.String(255), nullable=False, index=True)
    category = db.Column(
        db.String(30), nullable=False, default="other",
        comment="application | biometrics | medical | document | decision | background_check | other",
    )
    program_type = db.Column(db.String(255), nullable=False)
    program_sub_type = db.Column(
        db.String(255), nullable=False, default="",
        comment="Empty string when the template applies to the whole program type",
    )

    use_count = db.Column(db.Integer, nullable=False, default=1)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    is_deprecated = db.Column(db.Boolean, nullable=False, default=False)
    canonical_id = db.Column(
        db.String(36), db.ForeignKey("milestone_templates.id", ondelete="SET NULL"),
        nullable=True, comment="Surviving template after a merge",
    )
    flag_count = db.Column(db.Integer, nullable=False, default=0)

    created_by_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    flags = db.relationship(
        "MilestoneTemplateFlag", back_populates="template",
        lazy="select", cascade="all, delete-orphan",
    )
    milestones = db.relationship("Milestone", back_populates="template", lazy="dynamic")
    canonical = db.relationship("MilestoneTemplate", remote_side=[id])

    @property
    def flagged_by(self):
        return {f.user_id for f in self.flags}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "normalized_name": self.normalized_name,
            "category": self.category,
            "program_type": self.program_type,
            "program_sub_type": self.program_sub_type or None,
            "use_count": self.use_count,
            "is_approved": self.is_approved,
            "is_deprecated": self.is_deprecated,
            "canonical_id": self.canonical_id,
            "flag_count": self.flag_count,
            "flagged_by": sorted(self.flagged_by),
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<MilestoneTemplate {self.id} {self.name!r} [{self.program_type}]>"


class MilestoneTemplateFlag(db.Model):
    """A user's report that a template is irrelevant or incorrect."""

    __tablename__ = "milestone_template_flags"

    template_id = db.Column(
        db.String(36), db.ForeignKey("milestone_templates.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id = db.Column(db.String(64), primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    template = db.relationship("MilestoneTemplate", back_populates="flags")


class Milestone(db.Model):
    """One entry of the ordered milestone list of a program (sub)type."""

    __tablename__ = "milestones"
    __table_args__ = (
        db.Index("idx_ms_scope_order", "program_type", "program_sub_type", "order"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    program_type = db.Column(db.String(255), nullable=False)
    program_sub_type = db.Column(db.String(255), nullable=False, default="")
    is_default = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Seeded entries; cannot be deleted by users",
    )
    order = db.Column(db.Integer, nullable=False, default=0)
    template_id = db.Column(
        db.String(36), db.ForeignKey("milestone_templates.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    template = db.relationship("MilestoneTemplate", back_populates="milestones")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "program_type": self.program_type,
            "program_sub_type": self.program_sub_type or None,
            "is_default": self.is_default,
            "order": self.order,
            "template_id": self.template_id,
        }
