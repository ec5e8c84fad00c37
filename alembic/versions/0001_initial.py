"""weekly schedule, approval ledger and rejection log

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="support"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("role IN ('admin', 'support')", name="ck_users_role"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "sessions",
        sa.Column("session_id", sa.String(length=128), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])

    op.create_table(
        "weeks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.CheckConstraint("week_number >= 1", name="ck_weeks_week_number"),
    )
    op.create_index("ix_weeks_week_number", "weeks", ["week_number"], unique=True)

    op.create_table(
        "days",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("week_id", sa.Integer(), sa.ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_name", sa.String(length=20), nullable=False),
        sa.UniqueConstraint("week_id", "day_name", name="uq_days_week_day_name"),
        sa.CheckConstraint(
            "day_name IN ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')",
            name="ck_days_day_name",
        ),
    )
    op.create_index("ix_days_week_id", "days", ["week_id"])
    op.create_index("ix_days_day_name", "days", ["day_name"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("day_id", sa.Integer(), sa.ForeignKey("days.id", ondelete="CASCADE"), nullable=False),
        sa.Column("time", sa.String(length=5), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("period", sa.String(length=20), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("period IN ('MORNING', 'AFTERNOON', 'EVENING')", name="ck_activities_period"),
    )
    op.create_index("ix_activities_day_id", "activities", ["day_id"])
    op.create_index("ix_activities_bucket", "activities", ["day_id", "period", "order_index"])
    op.create_index("ix_activities_identity", "activities", ["time", "description"])

    op.create_table(
        "labels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "activity_labels",
        sa.Column("activity_id", sa.Integer(), sa.ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("label_id", sa.Integer(), sa.ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "pending_changes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("week_id", sa.Integer(), sa.ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("change_type", sa.String(length=10), nullable=False),
        sa.Column("change_data", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("change_type IN ('ADD', 'EDIT', 'DELETE')", name="ck_pending_changes_change_type"),
    )
    op.create_index("ix_pending_changes_week_id", "pending_changes", ["week_id"])
    op.create_index("ix_pending_changes_user_id", "pending_changes", ["user_id"])
    op.create_index("ix_pending_changes_created_at", "pending_changes", ["created_at"])

    op.create_table(
        "rejected_changes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("week_id", sa.Integer(), sa.ForeignKey("weeks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("change_type", sa.String(length=10), nullable=False),
        sa.Column("change_data", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rejected_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.CheckConstraint("change_type IN ('ADD', 'EDIT', 'DELETE')", name="ck_rejected_changes_change_type"),
    )
    op.create_index("ix_rejected_changes_week_id", "rejected_changes", ["week_id"])
    op.create_index("ix_rejected_changes_user_id", "rejected_changes", ["user_id"])
    op.create_index("ix_rejected_changes_rejected_at", "rejected_changes", ["rejected_at"])


def downgrade() -> None:
    op.drop_table("rejected_changes")
    op.drop_table("pending_changes")
    op.drop_table("activity_labels")
    op.drop_table("labels")
    op.drop_table("activities")
    op.drop_table("days")
    op.drop_table("weeks")
    op.drop_table("sessions")
    op.drop_table("users")
