"""initial ledger schema

Revision ID: 0001_ledger
Revises:
Create Date: 2024-03-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "owners",
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("owner_id"),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("impact", sa.Float(), nullable=False),
        sa.Column("note", sa.String(length=2000), nullable=True),
        sa.Column("image_path", sa.String(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("local_day", sa.String(length=10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_entries_owner_id", "entries", ["owner_id"])
    op.create_index("ix_entries_timestamp", "entries", ["timestamp"])
    op.create_index("ix_entries_local_day", "entries", ["local_day"])

    op.create_table(
        "ledger_outbox_events",
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
    op.create_index("ix_ledger_outbox_events_owner_id", "ledger_outbox_events", ["owner_id"])
    op.create_index("ix_ledger_outbox_events_aggregate_id", "ledger_outbox_events", ["aggregate_id"])
    op.create_index("ix_ledger_outbox_events_event_type", "ledger_outbox_events", ["event_type"])
    op.create_index("ix_ledger_outbox_events_status", "ledger_outbox_events", ["status"])


def downgrade() -> None:
    op.drop_index("ix_ledger_outbox_events_status", table_name="ledger_outbox_events")
    op.drop_index("ix_ledger_outbox_events_event_type", table_name="ledger_outbox_events")
    op.drop_index("ix_ledger_outbox_events_aggregate_id", table_name="ledger_outbox_events")
    op.drop_index("ix_ledger_outbox_events_owner_id", table_name="ledger_outbox_events")
    op.drop_table("ledger_outbox_events")
    op.drop_index("ix_entries_local_day", table_name="entries")
    op.drop_index("ix_entries_timestamp", table_name="entries")
    op.drop_index("ix_entries_owner_id", table_name="entries")
    op.drop_table("entries")
    op.drop_table("owners")
