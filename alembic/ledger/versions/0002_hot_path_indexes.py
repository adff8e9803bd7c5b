"""add hot-path indexes for entry windows and outbox claims

Revision ID: 0002_ledger_hot_path
Revises: 0001_ledger
Create Date: 2024-03-08
"""

from alembic import op


revision = "0002_ledger_hot_path"
down_revision = "0001_ledger"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_entries_owner_id_timestamp",
        "entries",
        ["owner_id", "timestamp"],
    )
    op.create_index(
        "ix_ledger_outbox_events_status_created_at",
        "ledger_outbox_events",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_ledger_outbox_events_status_created_at", table_name="ledger_outbox_events")
    op.drop_index("ix_entries_owner_id_timestamp", table_name="entries")
