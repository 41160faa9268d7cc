"""SQLAlchemy models for persistent storage.

This module defines the database schema for indexer cursors, campaign
registrations, curve trades, votes, and the derived candle and summary
tables.

Raw uint256 amounts are stored as decimal strings so they round-trip
exactly on every backend; block timestamps and candle bucket starts are
unix seconds.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Fixed-point amounts with 18 decimals (wei-scaled values).
AMOUNT = Numeric(78, 18)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class IndexerCursorModel(Base):
    """Last fully persisted block per (chain, contract family)."""

    __tablename__ = "indexer_cursors"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_scanned_block: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class CampaignModel(Base):
    """Campaigns registered through the launch factory."""

    __tablename__ = "campaigns"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_address: Mapped[str] = mapped_column(String(42), primary_key=True)

    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    creator_address: Mapped[str] = mapped_column(String(42), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    created_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_campaigns_chain_active", "chain_id", "is_active"),)


class CurveTradeModel(Base):
    """Bonding-curve buys and sells, one row per on-chain log."""

    __tablename__ = "curve_trades"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    log_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    campaign_address: Mapped[str] = mapped_column(String(42), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    side: Mapped[str] = mapped_column(String(4), nullable=False)  # buy/sell
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)

    token_amount_raw: Mapped[str] = mapped_column(String(80), nullable=False)
    native_amount_raw: Mapped[str] = mapped_column(String(80), nullable=False)
    token_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    native_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    price_native: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="confirmed")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_curve_trades_campaign_pos", "chain_id", "campaign_address", "block_number", "log_index"),
        Index("idx_curve_trades_campaign_ts", "chain_id", "campaign_address", "block_timestamp"),
        Index("idx_curve_trades_chain_block", "chain_id", "block_number"),
    )


class VoteModel(Base):
    """Votes cast through the vote treasury, one row per on-chain log."""

    __tablename__ = "votes"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    log_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    campaign_address: Mapped[str] = mapped_column(String(42), nullable=False)
    voter_address: Mapped[str] = mapped_column(String(42), nullable=False)
    asset_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount_raw: Mapped[str] = mapped_column(String(80), nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    meta: Mapped[str] = mapped_column(String(66), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="confirmed")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_votes_campaign_pos", "chain_id", "campaign_address", "block_number", "log_index"),
        Index("idx_votes_chain_block", "chain_id", "block_number"),
        Index("idx_votes_voter", "chain_id", "voter_address"),
    )


class TokenCandleModel(Base):
    """Per-campaign OHLCV buckets derived from confirmed trades."""

    __tablename__ = "token_candles"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    timeframe: Mapped[str] = mapped_column(String(8), primary_key=True)
    bucket_start: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    open_price: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    high_price: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    low_price: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    close_price: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    volume_native: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    trade_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Chain positions of the trades that set open and close.
    first_block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    first_log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    last_block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class CampaignSummaryModel(Base):
    """Per-campaign rolled-up stats derived from trades and votes."""

    __tablename__ = "token_stats"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_address: Mapped[str] = mapped_column(String(42), primary_key=True)

    last_price_native: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    sold_tokens: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    marketcap_native: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    volume_24h_native: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    volume_total_native: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    trades_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    buys_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sells_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    votes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_trade_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_trade_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
