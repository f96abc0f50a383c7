from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "swap_runs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("chain_id", sa.Integer, nullable=False),
        sa.Column("status", sa.String(32), index=True, nullable=False),
        sa.Column("token_in", sa.String(64), index=True),
        sa.Column("token_out", sa.String(64), index=True),
        sa.Column("feed_outcome", sa.String(32)),
        sa.Column("signal_tx_hash", sa.String(80)),
        sa.Column("signal_block_number", sa.BigInteger),
        sa.Column("signal_amount", sa.String(80)),
        sa.Column("amount_in_wei", sa.String(80)),
        sa.Column("expected_out_wei", sa.String(80)),
        sa.Column("route_source", sa.String(32)),
        sa.Column("approve_tx_hash", sa.String(80)),
        sa.Column("swap_tx_hash", sa.String(80), index=True),
        sa.Column("block_number", sa.BigInteger),
        sa.Column("gas_used", sa.BigInteger),
        sa.Column("error_kind", sa.String(64)),
        sa.Column("error_step", sa.String(32)),
        sa.Column("error", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )


def downgrade():
    op.drop_table("swap_runs")
