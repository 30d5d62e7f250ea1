"""
Application domain models.

    ApplicationType       crowd-sourced application type (visa, permit, ...)
    ApplicationTypeFlag   one row per (application type, user) flag
    Application           a user's tracked immigration application
    StatusHistory         dated milestone events of an application

ApplicationType follows the same lifecycle as MilestoneTemplate, scoped by
category instead of program type, with ``is_default`` in place of
``is_approved`` and without a merge step.
"""

import uuid
from datetime import datetime, timezone

from immitracker.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class ApplicationType(db.Model):
    """Crowd-sourced application type, promoted to default by popularity."""

    __tablename__ = "application_types"
    __table_args__ = (
        db.UniqueConstraint("normalized_name", "category", name="uq_application_type_key"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    normalized_name = db.Column(db.String(255), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False, index=True)

    use_count = db.Column(db.Integer, nullable=False, default=1)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    flag_count = db.Column(db.Integer, nullable=False, default=0)

    created_by_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    flags = db.relationship(
        "ApplicationTypeFlag", back_populates="application_type",
        lazy="select", cascade="all, delete-orphan",
    )
    applications = db.relationship("Application", back_populates="application_type", lazy="dynamic")

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
            "use_count": self.use_count,
            "is_default": self.is_default,
            "flag_count": self.flag_count,
            "flagged_by": sorted(self.flagged_by),
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ApplicationType {self.id} {self.name!r} [{self.category}]>"


class ApplicationTypeFlag(db.Model):
    """A user's report that an application type is irrelevant or incorrect."""

    __tablename__ = "application_type_flags"

    application_type_id = db.Column(
        db.String(36), db.ForeignKey("application_types.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id = db.Column(db.String(64), primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    application_type = db.relationship("ApplicationType", back_populates="flags")


class Application(db.Model):
    """A user's immigration application being tracked."""

    __tablename__ = "applications"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    application_type_id = db.Column(
        db.String(36), db.ForeignKey("application_types.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    program_type = db.Column(db.String(255), nullable=False)
    program_sub_type = db.Column(db.String(255), nullable=False, default="")
    country = db.Column(db.String(100), nullable=True)
    submission_date = db.Column(db.Date, nullable=True)
    current_status = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    application_type = db.relationship("ApplicationType", back_populates="applications")
    status_history = db.relationship(
        "StatusHistory", back_populates="application",
        order_by="StatusHistory.status_date", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "application_type_id": self.application_type_id,
            "program_type": self.program_type,
            "program_sub_type": self.program_sub_type or None,
            "country": self.country,
            "submission_date": self.submission_date.isoformat() if self.submission_date else None,
            "current_status": self.current_status,
            "status_history": [s.to_dict() for s in self.status_history],
        }


class StatusHistory(db.Model):
    """Dated milestone event recorded against an application."""

    __tablename__ = "status_history"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status_name = db.Column(db.String(255), nullable=False)
    status_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    template_id = db.Column(
        db.String(36), db.ForeignKey("milestone_templates.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="Re-pointed to the canonical template when duplicates are merged",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    application = db.relationship("Application", back_populates="status_history")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "status_name": self.status_name,
            "status_date": self.status_date.isoformat() if self.status_date else None,
            "notes": self.notes,
            "template_id": self.template_id,
        }
