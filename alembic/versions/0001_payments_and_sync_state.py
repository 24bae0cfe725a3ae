"""payments and sync cursor tables

Revision ID: 0001_payments_and_sync_state
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payments_and_sync_state"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payments (
          id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
          bill_id uuid NOT NULL,
          plaid_id text UNIQUE,
          amount_cents bigint NOT NULL CHECK (amount_cents > 0),
          status text NOT NULL DEFAULT 'NEW'
            CHECK (status IN ('NEW','PENDING','POSTED','SETTLED','RETURNED','FAILED','CANCELLED')),
          error_message text,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_payments_bill_id ON app.payments (bill_id);")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.sync_state (
          key text PRIMARY KEY,
          last_sync_num bigint NOT NULL CHECK (last_sync_num >= 0),
          updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.sync_state;")
    op.execute("DROP TABLE IF EXISTS app.payments;")
