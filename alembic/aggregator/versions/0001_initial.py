"""initial aggregator schema

Revision ID: 0001_aggregator
Revises:
Create Date: 2024-03-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_aggregator"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "aggregate_buckets",
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("day", sa.String(length=10), nullable=False),
        sa.Column("total_count", sa.Integer(), nullable=False),
        sa.Column("sum_impact", sa.Float(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("owner_id", "day"),
    )

    op.create_table(
        "derived_scores",
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("average_impact", sa.Float(), nullable=False),
        sa.Column("window_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("owner_id"),
    )

    op.create_table(
        "insight_sets",
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("insights", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("owner_id"),
    )

    op.create_table(
        "challenges",
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("day", sa.String(length=10), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("difficulty", sa.String(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("time_estimate", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("owner_id", "day"),
    )

    op.create_table(
        "aggregator_outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_aggregator_outbox_events_owner_id", "aggregator_outbox_events", ["owner_id"])
    op.create_index("ix_aggregator_outbox_events_aggregate_id", "aggregator_outbox_events", ["aggregate_id"])
    op.create_index("ix_aggregator_outbox_events_event_type", "aggregator_outbox_events", ["event_type"])
    op.create_index("ix_aggregator_outbox_events_status", "aggregator_outbox_events", ["status"])

    op.create_table(
        "aggregator_inbox_events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("consumed_by_service", sa.String(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("event_id", "consumed_by_service"),
    )


def downgrade() -> None:
    op.drop_table("aggregator_inbox_events")
    op.drop_index("ix_aggregator_outbox_events_status", table_name="aggregator_outbox_events")
    op.drop_index("ix_aggregator_outbox_events_event_type", table_name="aggregator_outbox_events")
    op.drop_index("ix_aggregator_outbox_events_aggregate_id", table_name="aggregator_outbox_events")
    op.drop_index("ix_aggregator_outbox_events_owner_id", table_name="aggregator_outbox_events")
    op.drop_table("aggregator_outbox_events")
    op.drop_table("challenges")
    op.drop_table("insight_sets")
    op.drop_table("derived_scores")
    op.drop_table("aggregate_buckets")
