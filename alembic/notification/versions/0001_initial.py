"""initial notification schema

Revision ID: 0001_notification
Revises:
Create Date: 2024-03-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_notification"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notification_tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_tasks_owner_id", "notification_tasks", ["owner_id"])
    op.create_index("ix_notification_tasks_run_at", "notification_tasks", ["run_at"])
    op.create_index("ix_notification_tasks_status", "notification_tasks", ["status"])

    op.create_table(
        "delivery_targets",
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("owner_id", "token"),
    )

    op.create_table(
        "notification_inbox_events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("consumed_by_service", sa.String(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("event_id", "consumed_by_service"),
    )


def downgrade() -> None:
    op.drop_table("notification_inbox_events")
    op.drop_table("delivery_targets")
    op.drop_index("ix_notification_tasks_status", table_name="notification_tasks")
    op.drop_index("ix_notification_tasks_run_at", table_name="notification_tasks")
    op.drop_index("ix_notification_tasks_owner_id", table_name="notification_tasks")
    op.drop_table("notification_tasks")
