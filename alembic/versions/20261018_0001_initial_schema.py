"""Initial schema: cursors, campaigns, trades, votes, candles, stats.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AMOUNT = sa.Numeric(78, 18)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "indexer_cursors",
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("family", sa.String(32), nullable=False),
        sa.Column("last_scanned_block", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("chain_id", "family"),
    )

    op.create_table(
        "campaigns",
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("campaign_address", sa.String(42), nullable=False),
        sa.Column("token_address", sa.String(42), nullable=False),
        sa.Column("creator_address", sa.String(42), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("created_block", sa.BigInteger(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("chain_id", "campaign_address"),
    )
    op.create_index("idx_campaigns_chain_active", "campaigns", ["chain_id", "is_active"])

    op.create_table(
        "curve_trades",
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("campaign_address", sa.String(42), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("token_amount_raw", sa.String(80), nullable=False),
        sa.Column("native_amount_raw", sa.String(80), nullable=False),
        sa.Column("token_amount", AMOUNT, nullable=False),
        sa.Column("native_amount", AMOUNT, nullable=False),
        sa.Column("price_native", AMOUNT, nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("chain_id", "tx_hash", "log_index"),
    )
    op.create_index(
        "idx_curve_trades_campaign_pos",
        "curve_trades",
        ["chain_id", "campaign_address", "block_number", "log_index"],
    )
    op.create_index(
        "idx_curve_trades_campaign_ts",
        "curve_trades",
        ["chain_id", "campaign_address", "block_timestamp"],
    )
    op.create_index("idx_curve_trades_chain_block", "curve_trades", ["chain_id", "block_number"])

    op.create_table(
        "votes",
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("campaign_address", sa.String(42), nullable=False),
        sa.Column("voter_address", sa.String(42), nullable=False),
        sa.Column("asset_address", sa.String(42), nullable=False),
        sa.Column("amount_raw", sa.String(80), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("meta", sa.String(66), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("chain_id", "tx_hash", "log_index"),
    )
    op.create_index(
        "idx_votes_campaign_pos",
        "votes",
        ["chain_id", "campaign_address", "block_number", "log_index"],
    )
    op.create_index("idx_votes_chain_block", "votes", ["chain_id", "block_number"])
    op.create_index("idx_votes_voter", "votes", ["chain_id", "voter_address"])

    op.create_table(
        "token_candles",
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("campaign_address", sa.String(42), nullable=False),
        sa.Column("timeframe", sa.String(8), nullable=False),
        sa.Column("bucket_start", sa.BigInteger(), nullable=False),
        sa.Column("open_price", AMOUNT, nullable=False),
        sa.Column("high_price", AMOUNT, nullable=False),
        sa.Column("low_price", AMOUNT, nullable=False),
        sa.Column("close_price", AMOUNT, nullable=False),
        sa.Column("volume_native", AMOUNT, nullable=False),
        sa.Column("trade_count", sa.Integer(), nullable=False),
        sa.Column("first_block_number", sa.BigInteger(), nullable=False),
        sa.Column("first_log_index", sa.Integer(), nullable=False),
        sa.Column("last_block_number", sa.BigInteger(), nullable=False),
        sa.Column("last_log_index", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("chain_id", "campaign_address", "timeframe", "bucket_start"),
    )

    op.create_table(
        "token_stats",
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("campaign_address", sa.String(42), nullable=False),
        sa.Column("last_price_native", AMOUNT, nullable=True),
        sa.Column("sold_tokens", AMOUNT, nullable=False),
        sa.Column("marketcap_native", AMOUNT, nullable=True),
        sa.Column("volume_24h_native", AMOUNT, nullable=False),
        sa.Column("volume_total_native", AMOUNT, nullable=False),
        sa.Column("trades_count", sa.Integer(), nullable=False),
        sa.Column("buys_count", sa.Integer(), nullable=False),
        sa.Column("sells_count", sa.Integer(), nullable=False),
        sa.Column("votes_count", sa.Integer(), nullable=False),
        sa.Column("last_trade_block", sa.BigInteger(), nullable=True),
        sa.Column("last_trade_at", sa.BigInteger(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("chain_id", "campaign_address"),
    )


def downgrade() -> None:
    op.drop_table("token_stats")
    op.drop_table("token_candles")
    op.drop_index("idx_votes_voter", table_name="votes")
    op.drop_index("idx_votes_chain_block", table_name="votes")
    op.drop_index("idx_votes_campaign_pos", table_name="votes")
    op.drop_table("votes")
    op.drop_index("idx_curve_trades_chain_block", table_name="curve_trades")
    op.drop_index("idx_curve_trades_campaign_ts", table_name="curve_trades")
    op.drop_index("idx_curve_trades_campaign_pos", table_name="curve_trades")
    op.drop_table("curve_trades")
    op.drop_index("idx_campaigns_chain_active", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("indexer_cursors")
