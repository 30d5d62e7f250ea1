"""milestone_templates_and_application_types

Creates the template tables and the application tables they are used by:
  - milestone_templates  crowd-sourced milestone definitions
  - milestone_template_flags  one row per (template, user) flag
  - milestones  ordered per-program milestone lists
  - application_types  crowd-sourced application types
  - application_type_flags  one row per (application type, user) flag
  - applications  tracked immigration applications
  - status_history  dated milestone events, linked to templates

Live milestone templates are unique per (normalized_name, program_type,
program_sub_type) through a partial index; merged (deprecated) rows keep
their key without competing for it.

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 7c1e4a2b9d30
Revises:
Create Date: 2026-10-17 09:12:44.318205
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e4a2b9d30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── MilestoneTemplate ─────────────────────────────────────────────────
    if "milestone_templates" not in existing:
        op.create_table(
            "milestone_templates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("normalized_name", sa.String(length=255), nullable=False),
            sa.Column(
                "category", sa.String(length=30), nullable=False,
                server_default="other",
                comment="application | biometrics | medical | document | decision | background_check | other",
            ),
            sa.Column("program_type", sa.String(length=255), nullable=False),
            sa.Column(
                "program_sub_type", sa.String(length=255), nullable=False,
                server_default="",
                comment="Empty string when the template applies to the whole program type",
            ),
            sa.Column("use_count", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_deprecated", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "canonical_id", sa.String(length=36), nullable=True,
                comment="Surviving template after a merge",
            ),
            sa.Column("flag_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_by_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["canonical_id"], ["milestone_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_milestone_templates_normalized_name", "milestone_templates", ["normalized_name"])
        op.create_index("idx_mt_scope", "milestone_templates", ["program_type", "program_sub_type"])
        op.create_index(
            "uq_milestone_templates_live_key",
            "milestone_templates",
            ["normalized_name", "program_type", "program_sub_type"],
            unique=True,
            sqlite_where=sa.text("NOT is_deprecated"),
            postgresql_where=sa.text("NOT is_deprecated"),
        )

    if "milestone_template_flags" not in existing:
        op.create_table(
            "milestone_template_flags",
            sa.Column("template_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["template_id"], ["milestone_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("template_id", "user_id"),
        )

    # ── Milestone ─────────────────────────────────────────────────────────
    if "milestones" not in existing:
        op.create_table(
            "milestones",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("program_type", sa.String(length=255), nullable=False),
            sa.Column("program_sub_type", sa.String(length=255), nullable=False, server_default=""),
            sa.Column(
                "is_default", sa.Boolean(), nullable=False, server_default=sa.false(),
                comment="Seeded entries; cannot be deleted by users",
            ),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("template_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["template_id"], ["milestone_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_milestones_template_id", "milestones", ["template_id"])
        op.create_index("idx_ms_scope_order", "milestones", ["program_type", "program_sub_type", "order"])

    # ── ApplicationType ───────────────────────────────────────────────────
    if "application_types" not in existing:
        op.create_table(
            "application_types",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("normalized_name", sa.String(length=255), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=False),
            sa.Column("use_count", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("flag_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_by_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("normalized_name", "category", name="uq_application_type_key"),
        )
        op.create_index("ix_application_types_normalized_name", "application_types", ["normalized_name"])
        op.create_index("ix_application_types_category", "application_types", ["category"])

    if "application_type_flags" not in existing:
        op.create_table(
            "application_type_flags",
            sa.Column("application_type_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["application_type_id"], ["application_types.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("application_type_id", "user_id"),
        )

    # ── Application + StatusHistory ───────────────────────────────────────
    if "applications" not in existing:
        op.create_table(
            "applications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("application_type_id", sa.String(length=36), nullable=True),
            sa.Column("program_type", sa.String(length=255), nullable=False),
            sa.Column("program_sub_type", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("country", sa.String(length=100), nullable=True),
            sa.Column("submission_date", sa.Date(), nullable=True),
            sa.Column("current_status", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["application_type_id"], ["application_types.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_applications_user_id", "applications", ["user_id"])
        op.create_index("ix_applications_application_type_id", "applications", ["application_type_id"])

    if "status_history" not in existing:
        op.create_table(
            "status_history",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("application_id", sa.String(length=36), nullable=False),
            sa.Column("status_name", sa.String(length=255), nullable=False),
            sa.Column("status_date", sa.Date(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column(
                "template_id", sa.String(length=36), nullable=True,
                comment="Re-pointed to the canonical template when duplicates are merged",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["milestone_templates.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_status_history_application_id", "status_history", ["application_id"])
        op.create_index("ix_status_history_template_id", "status_history", ["template_id"])


def downgrade():
    op.drop_table("status_history")
    op.drop_table("applications")
    op.drop_table("application_type_flags")
    op.drop_table("application_types")
    op.drop_table("milestones")
    op.drop_table("milestone_template_flags")
    op.drop_table("milestone_templates")
