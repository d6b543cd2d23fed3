"""Envelope store: one versioned JSON document per store key."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261012_01_stored_envelopes"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "stored_envelopes",
        sa.Column("store_key", sa.String(length=191), primary_key=True, nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("last_modified", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_stored_envelopes_kind", "stored_envelopes", ["kind"])


def downgrade() -> None:
    op.drop_index("ix_stored_envelopes_kind", table_name="stored_envelopes")
    op.drop_table("stored_envelopes")
