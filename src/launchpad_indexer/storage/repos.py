"""Repository pattern implementations for data access.

This module provides data access abstractions for indexer cursors,
campaigns, curve trades, votes, candles, and campaign summaries.

All event writes are upserts keyed by the natural key
``(chain_id, tx_hash, log_index)``; the statement is built with the
dialect-native ``INSERT ... ON CONFLICT DO UPDATE`` of the bound engine
(PostgreSQL in production, SQLite in tests).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from launchpad_indexer.storage.models import (
    CampaignModel,
    CampaignSummaryModel,
    CurveTradeModel,
    IndexerCursorModel,
    TokenCandleModel,
    VoteModel,
)
from launchpad_indexer.units import multiply, to_decimal

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

STATUS_CONFIRMED = "confirmed"
STATUS_ORPHANED = "orphaned"

SECONDS_PER_DAY = 86_400

EventKey = tuple[str, int]


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-native INSERT supporting ``on_conflict_do_update``."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


async def _upsert(
    session: AsyncSession,
    model: type[Any],
    values: dict[str, Any],
    *,
    index_elements: Sequence[str],
) -> None:
    stmt = _insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={name: stmt.excluded[name] for name in values if name not in index_elements},
    )
    await session.execute(stmt)


# ============================================================================
# Cursors
# ============================================================================


class CursorRepository:
    """Repository for per-(chain, family) scan cursors."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, chain_id: int, family: str) -> int | None:
        result = await self.session.execute(
            select(IndexerCursorModel.last_scanned_block).where(
                (IndexerCursorModel.chain_id == chain_id) & (IndexerCursorModel.family == family)
            )
        )
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None

    async def set(self, chain_id: int, family: str, last_scanned_block: int) -> None:
        if last_scanned_block < -1:
            raise ValueError("last_scanned_block must be >= -1")
        await _upsert(
            self.session,
            IndexerCursorModel,
            {
                "chain_id": chain_id,
                "family": family,
                "last_scanned_block": last_scanned_block,
                "updated_at": datetime.now(UTC),
            },
            index_elements=["chain_id", "family"],
        )
        await self.session.flush()


# ============================================================================
# Campaigns
# ============================================================================


@dataclass
class CampaignDTO:
    """Data transfer object for registered campaigns."""

    chain_id: int
    campaign_address: str
    token_address: str
    creator_address: str
    name: str
    symbol: str
    created_block: int
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CampaignModel) -> CampaignDTO:
        return cls(
            chain_id=model.chain_id,
            campaign_address=model.campaign_address,
            token_address=model.token_address,
            creator_address=model.creator_address,
            name=model.name,
            symbol=model.symbol,
            created_block=model.created_block,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class CampaignRepository:
    """Repository for factory-registered campaigns."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, chain_id: int, campaign_address: str) -> CampaignDTO | None:
        result = await self.session.execute(
            select(CampaignModel)
            .where(
                (CampaignModel.chain_id == chain_id)
                & (CampaignModel.campaign_address == campaign_address.lower())
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return CampaignDTO.from_model(model) if model else None

    async def upsert(self, dto: CampaignDTO) -> bool:
        """Upsert a registration; returns True when the campaign is new.

        ``created_block`` keeps the lowest non-zero block seen, so a replayed
        registration never moves it forward.
        """
        existing = await self.get(dto.chain_id, dto.campaign_address)
        created_block = dto.created_block
        if existing is not None and existing.created_block > 0:
            if created_block <= 0 or existing.created_block < created_block:
                created_block = existing.created_block

        now = datetime.now(UTC)
        await _upsert(
            self.session,
            CampaignModel,
            {
                "chain_id": dto.chain_id,
                "campaign_address": dto.campaign_address.lower(),
                "token_address": dto.token_address.lower(),
                "creator_address": dto.creator_address.lower(),
                "name": dto.name,
                "symbol": dto.symbol,
                "created_block": created_block,
                "is_active": dto.is_active,
                "updated_at": now,
            },
            index_elements=["chain_id", "campaign_address"],
        )
        await self.session.flush()
        return existing is None

    async def list_active_addresses(self, chain_id: int) -> list[str]:
        result = await self.session.execute(
            select(CampaignModel.campaign_address)
            .where((CampaignModel.chain_id == chain_id) & (CampaignModel.is_active.is_(True)))
            .order_by(CampaignModel.created_block.asc(), CampaignModel.campaign_address.asc())
        )
        return [row[0] for row in result.all()]


# ============================================================================
# Trades
# ============================================================================


@dataclass
class TradeDTO:
    """Data transfer object for curve trades."""

    chain_id: int
    tx_hash: str
    log_index: int
    campaign_address: str
    block_number: int
    block_hash: str
    block_timestamp: int
    side: str
    wallet_address: str
    token_amount_raw: str
    native_amount_raw: str
    token_amount: Decimal
    native_amount: Decimal
    price_native: Decimal | None
    status: str = STATUS_CONFIRMED
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> EventKey:
        return (self.tx_hash, self.log_index)

    @classmethod
    def from_model(cls, model: CurveTradeModel) -> TradeDTO:
        return cls(
            chain_id=model.chain_id,
            tx_hash=model.tx_hash,
            log_index=model.log_index,
            campaign_address=model.campaign_address,
            block_number=model.block_number,
            block_hash=model.block_hash,
            block_timestamp=model.block_timestamp,
            side=model.side,
            wallet_address=model.wallet_address,
            token_amount_raw=model.token_amount_raw,
            native_amount_raw=model.native_amount_raw,
            token_amount=to_decimal(model.token_amount),
            native_amount=to_decimal(model.native_amount),
            price_native=to_decimal(model.price_native) if model.price_native is not None else None,
            status=model.status,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class TradeRepository:
    """Repository for persisted curve trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, chain_id: int, tx_hash: str, log_index: int) -> TradeDTO | None:
        result = await self.session.execute(
            select(CurveTradeModel)
            .where(
                (CurveTradeModel.chain_id == chain_id)
                & (CurveTradeModel.tx_hash == tx_hash.lower())
                & (CurveTradeModel.log_index == log_index)
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return TradeDTO.from_model(model) if model else None

    async def get_many(self, chain_id: int, keys: Sequence[EventKey]) -> dict[EventKey, TradeDTO]:
        """Load stored trades for a set of natural keys."""
        if not keys:
            return {}
        wanted = set(keys)
        result = await self.session.execute(
            select(CurveTradeModel)
            .where(
                (CurveTradeModel.chain_id == chain_id)
                & (CurveTradeModel.tx_hash.in_(sorted({tx for tx, _ in wanted})))
            )
            .execution_options(populate_existing=True)
        )
        found: dict[EventKey, TradeDTO] = {}
        for model in result.scalars().all():
            key = (model.tx_hash, model.log_index)
            if key in wanted:
                found[key] = TradeDTO.from_model(model)
        return found

    async def upsert(self, dto: TradeDTO) -> None:
        """Upsert trade by natural key (idempotent ingestion)."""
        await _upsert(
            self.session,
            CurveTradeModel,
            {
                "chain_id": dto.chain_id,
                "tx_hash": dto.tx_hash.lower(),
                "log_index": dto.log_index,
                "campaign_address": dto.campaign_address.lower(),
                "block_number": dto.block_number,
                "block_hash": dto.block_hash.lower(),
                "block_timestamp": dto.block_timestamp,
                "side": dto.side,
                "wallet_address": dto.wallet_address.lower(),
                "token_amount_raw": dto.token_amount_raw,
                "native_amount_raw": dto.native_amount_raw,
                "token_amount": dto.token_amount,
                "native_amount": dto.native_amount,
                "price_native": dto.price_native,
                "status": dto.status,
                "updated_at": datetime.now(UTC),
            },
            index_elements=["chain_id", "tx_hash", "log_index"],
        )
        await self.session.flush()

    async def set_status(self, chain_id: int, keys: Sequence[EventKey], status: str) -> int:
        updated = 0
        now = datetime.now(UTC)
        for tx_hash, log_index in keys:
            result = await self.session.execute(
                update(CurveTradeModel)
                .where(
                    (CurveTradeModel.chain_id == chain_id)
                    & (CurveTradeModel.tx_hash == tx_hash)
                    & (CurveTradeModel.log_index == log_index)
                )
                .values(status=status, updated_at=now)
            )
            updated += result.rowcount or 0
        await self.session.flush()
        return updated

    async def list_confirmed_in_block_range(
        self,
        chain_id: int,
        *,
        from_block: int,
        to_block: int,
        campaign_addresses: Sequence[str] | None = None,
    ) -> list[TradeDTO]:
        query = select(CurveTradeModel).where(
            (CurveTradeModel.chain_id == chain_id)
            & (CurveTradeModel.status == STATUS_CONFIRMED)
            & (CurveTradeModel.block_number >= from_block)
            & (CurveTradeModel.block_number <= to_block)
        )
        if campaign_addresses is not None:
            query = query.where(
                CurveTradeModel.campaign_address.in_([a.lower() for a in campaign_addresses])
            )
        result = await self.session.execute(
            query.order_by(CurveTradeModel.block_number.asc(), CurveTradeModel.log_index.asc())
            .execution_options(populate_existing=True)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]

    async def list_confirmed_in_time_range(
        self,
        chain_id: int,
        campaign_address: str,
        *,
        start_ts: int,
        end_ts: int,
    ) -> list[TradeDTO]:
        """Confirmed trades with ``start_ts <= block_timestamp < end_ts`` in chain order."""
        result = await self.session.execute(
            select(CurveTradeModel)
            .where(
                (CurveTradeModel.chain_id == chain_id)
                & (CurveTradeModel.campaign_address == campaign_address.lower())
                & (CurveTradeModel.status == STATUS_CONFIRMED)
                & (CurveTradeModel.block_timestamp >= start_ts)
                & (CurveTradeModel.block_timestamp < end_ts)
            )
            .order_by(CurveTradeModel.block_number.asc(), CurveTradeModel.log_index.asc())
            .execution_options(populate_existing=True)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]

    async def list_recent(self, chain_id: int, campaign_address: str, *, limit: int) -> list[TradeDTO]:
        """Most recent confirmed trades, newest first."""
        result = await self.session.execute(
            select(CurveTradeModel)
            .where(
                (CurveTradeModel.chain_id == chain_id)
                & (CurveTradeModel.campaign_address == campaign_address.lower())
                & (CurveTradeModel.status == STATUS_CONFIRMED)
            )
            .order_by(CurveTradeModel.block_number.desc(), CurveTradeModel.log_index.desc())
            .limit(limit)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Votes
# ============================================================================


@dataclass
class VoteDTO:
    """Data transfer object for treasury votes."""

    chain_id: int
    tx_hash: str
    log_index: int
    campaign_address: str
    voter_address: str
    asset_address: str
    amount_raw: str
    block_number: int
    block_hash: str
    block_timestamp: int
    meta: str
    status: str = STATUS_CONFIRMED
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> EventKey:
        return (self.tx_hash, self.log_index)

    @classmethod
    def from_model(cls, model: VoteModel) -> VoteDTO:
        return cls(
            chain_id=model.chain_id,
            tx_hash=model.tx_hash,
            log_index=model.log_index,
            campaign_address=model.campaign_address,
            voter_address=model.voter_address,
            asset_address=model.asset_address,
            amount_raw=model.amount_raw,
            block_number=model.block_number,
            block_hash=model.block_hash,
            block_timestamp=model.block_timestamp,
            meta=model.meta,
            status=model.status,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class VoteRepository:
    """Repository for persisted votes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_many(self, chain_id: int, keys: Sequence[EventKey]) -> dict[EventKey, VoteDTO]:
        if not keys:
            return {}
        wanted = set(keys)
        result = await self.session.execute(
            select(VoteModel)
            .where((VoteModel.chain_id == chain_id) & (VoteModel.tx_hash.in_(sorted({tx for tx, _ in wanted}))))
            .execution_options(populate_existing=True)
        )
        found: dict[EventKey, VoteDTO] = {}
        for model in result.scalars().all():
            key = (model.tx_hash, model.log_index)
            if key in wanted:
                found[key] = VoteDTO.from_model(model)
        return found

    async def upsert(self, dto: VoteDTO) -> None:
        """Upsert vote by natural key (idempotent ingestion)."""
        await _upsert(
            self.session,
            VoteModel,
            {
                "chain_id": dto.chain_id,
                "tx_hash": dto.tx_hash.lower(),
                "log_index": dto.log_index,
                "campaign_address": dto.campaign_address.lower(),
                "voter_address": dto.voter_address.lower(),
                "asset_address": dto.asset_address.lower(),
                "amount_raw": dto.amount_raw,
                "block_number": dto.block_number,
                "block_hash": dto.block_hash.lower(),
                "block_timestamp": dto.block_timestamp,
                "meta": dto.meta,
                "status": dto.status,
                "updated_at": datetime.now(UTC),
            },
            index_elements=["chain_id", "tx_hash", "log_index"],
        )
        await self.session.flush()

    async def set_status(self, chain_id: int, keys: Sequence[EventKey], status: str) -> int:
        updated = 0
        now = datetime.now(UTC)
        for tx_hash, log_index in keys:
            result = await self.session.execute(
                update(VoteModel)
                .where(
                    (VoteModel.chain_id == chain_id)
                    & (VoteModel.tx_hash == tx_hash)
                    & (VoteModel.log_index == log_index)
                )
                .values(status=status, updated_at=now)
            )
            updated += result.rowcount or 0
        await self.session.flush()
        return updated

    async def list_confirmed_in_block_range(
        self, chain_id: int, *, from_block: int, to_block: int
    ) -> list[VoteDTO]:
        result = await self.session.execute(
            select(VoteModel)
            .where(
                (VoteModel.chain_id == chain_id)
                & (VoteModel.status == STATUS_CONFIRMED)
                & (VoteModel.block_number >= from_block)
                & (VoteModel.block_number <= to_block)
            )
            .order_by(VoteModel.block_number.asc(), VoteModel.log_index.asc())
            .execution_options(populate_existing=True)
        )
        return [VoteDTO.from_model(m) for m in result.scalars().all()]

    async def list_recent(
        self,
        chain_id: int,
        campaign_address: str,
        *,
        limit: int,
        voter_address: str | None = None,
    ) -> list[VoteDTO]:
        """Most recent confirmed votes for a campaign, newest first."""
        query = select(VoteModel).where(
            (VoteModel.chain_id == chain_id)
            & (VoteModel.campaign_address == campaign_address.lower())
            & (VoteModel.status == STATUS_CONFIRMED)
        )
        if voter_address is not None:
            query = query.where(VoteModel.voter_address == voter_address.lower())
        result = await self.session.execute(
            query.order_by(VoteModel.block_number.desc(), VoteModel.log_index.desc()).limit(limit)
        )
        return [VoteDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Candles
# ============================================================================


@dataclass
class CandleDTO:
    """Data transfer object for OHLCV candles."""

    chain_id: int
    campaign_address: str
    timeframe: str
    bucket_start: int
    open_price: Decimal
    high_price: Decimal
    low_price: Decimal
    close_price: Decimal
    volume_native: Decimal
    trade_count: int
    first_block_number: int
    first_log_index: int
    last_block_number: int
    last_log_index: int
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenCandleModel) -> CandleDTO:
        return cls(
            chain_id=model.chain_id,
            campaign_address=model.campaign_address,
            timeframe=model.timeframe,
            bucket_start=model.bucket_start,
            open_price=to_decimal(model.open_price),
            high_price=to_decimal(model.high_price),
            low_price=to_decimal(model.low_price),
            close_price=to_decimal(model.close_price),
            volume_native=to_decimal(model.volume_native),
            trade_count=model.trade_count,
            first_block_number=model.first_block_number,
            first_log_index=model.first_log_index,
            last_block_number=model.last_block_number,
            last_log_index=model.last_log_index,
            updated_at=model.updated_at,
        )


class CandleRepository:
    """Repository for derived candles."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(
        self, chain_id: int, campaign_address: str, timeframe: str, bucket_start: int
    ) -> CandleDTO | None:
        result = await self.session.execute(
            select(TokenCandleModel)
            .where(
                (TokenCandleModel.chain_id == chain_id)
                & (TokenCandleModel.campaign_address == campaign_address.lower())
                & (TokenCandleModel.timeframe == timeframe)
                & (TokenCandleModel.bucket_start == bucket_start)
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return CandleDTO.from_model(model) if model else None

    async def upsert(self, dto: CandleDTO) -> None:
        await _upsert(
            self.session,
            TokenCandleModel,
            {
                "chain_id": dto.chain_id,
                "campaign_address": dto.campaign_address.lower(),
                "timeframe": dto.timeframe,
                "bucket_start": dto.bucket_start,
                "open_price": dto.open_price,
                "high_price": dto.high_price,
                "low_price": dto.low_price,
                "close_price": dto.close_price,
                "volume_native": dto.volume_native,
                "trade_count": dto.trade_count,
                "first_block_number": dto.first_block_number,
                "first_log_index": dto.first_log_index,
                "last_block_number": dto.last_block_number,
                "last_log_index": dto.last_log_index,
                "updated_at": datetime.now(UTC),
            },
            index_elements=["chain_id", "campaign_address", "timeframe", "bucket_start"],
        )
        await self.session.flush()

    async def delete_range(
        self,
        chain_id: int,
        campaign_address: str,
        timeframe: str,
        *,
        start_bucket: int,
        end_bucket: int,
    ) -> int:
        """Delete buckets with ``start_bucket <= bucket_start < end_bucket``."""
        result = await self.session.execute(
            delete(TokenCandleModel).where(
                (TokenCandleModel.chain_id == chain_id)
                & (TokenCandleModel.campaign_address == campaign_address.lower())
                & (TokenCandleModel.timeframe == timeframe)
                & (TokenCandleModel.bucket_start >= start_bucket)
                & (TokenCandleModel.bucket_start < end_bucket)
            )
        )
        await self.session.flush()
        return result.rowcount or 0

    async def list_recent(
        self, chain_id: int, campaign_address: str, timeframe: str, *, limit: int
    ) -> list[CandleDTO]:
        """Most recent ``limit`` buckets in chronological order."""
        result = await self.session.execute(
            select(TokenCandleModel)
            .where(
                (TokenCandleModel.chain_id == chain_id)
                & (TokenCandleModel.campaign_address == campaign_address.lower())
                & (TokenCandleModel.timeframe == timeframe)
            )
            .order_by(TokenCandleModel.bucket_start.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        models = list(result.scalars().all())
        models.reverse()
        return [CandleDTO.from_model(m) for m in models]


# ============================================================================
# Campaign summaries
# ============================================================================


@dataclass
class CampaignSummaryDTO:
    """Data transfer object for per-campaign summary stats."""

    chain_id: int
    campaign_address: str
    last_price_native: Decimal | None
    sold_tokens: Decimal
    marketcap_native: Decimal | None
    volume_24h_native: Decimal
    volume_total_native: Decimal
    trades_count: int
    buys_count: int
    sells_count: int
    votes_count: int
    last_trade_block: int | None
    last_trade_at: int | None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CampaignSummaryModel) -> CampaignSummaryDTO:
        return cls(
            chain_id=model.chain_id,
            campaign_address=model.campaign_address,
            last_price_native=to_decimal(model.last_price_native)
            if model.last_price_native is not None
            else None,
            sold_tokens=to_decimal(model.sold_tokens),
            marketcap_native=to_decimal(model.marketcap_native)
            if model.marketcap_native is not None
            else None,
            volume_24h_native=to_decimal(model.volume_24h_native),
            volume_total_native=to_decimal(model.volume_total_native),
            trades_count=model.trades_count,
            buys_count=model.buys_count,
            sells_count=model.sells_count,
            votes_count=model.votes_count,
            last_trade_block=model.last_trade_block,
            last_trade_at=model.last_trade_at,
            updated_at=model.updated_at,
        )


class CampaignSummaryRepository:
    """Repository for derived campaign summaries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, chain_id: int, campaign_address: str) -> CampaignSummaryDTO | None:
        result = await self.session.execute(
            select(CampaignSummaryModel)
            .where(
                (CampaignSummaryModel.chain_id == chain_id)
                & (CampaignSummaryModel.campaign_address == campaign_address.lower())
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return CampaignSummaryDTO.from_model(model) if model else None

    async def refresh(self, chain_id: int, campaign_address: str, *, now_ts: int) -> CampaignSummaryDTO:
        """Rebuild the summary from confirmed trades and votes.

        ``sold_tokens`` is bought minus sold token amount; the market cap is
        ``last_price * sold_tokens``; the 24h volume counts trades with a
        block time within one day of ``now_ts``.
        """
        campaign = campaign_address.lower()
        confirmed = (
            (CurveTradeModel.chain_id == chain_id)
            & (CurveTradeModel.campaign_address == campaign)
            & (CurveTradeModel.status == STATUS_CONFIRMED)
        )
        is_buy = CurveTradeModel.side == "buy"
        since = now_ts - SECONDS_PER_DAY

        totals = (
            await self.session.execute(
                select(
                    sa.func.count(),
                    sa.func.coalesce(sa.func.sum(sa.case((is_buy, 1), else_=0)), 0),
                    sa.func.coalesce(
                        sa.func.sum(sa.case((is_buy, CurveTradeModel.token_amount), else_=0)), 0
                    ),
                    sa.func.coalesce(
                        sa.func.sum(sa.case((is_buy, 0), else_=CurveTradeModel.token_amount)), 0
                    ),
                    sa.func.coalesce(sa.func.sum(CurveTradeModel.native_amount), 0),
                    sa.func.coalesce(
                        sa.func.sum(
                            sa.case(
                                (CurveTradeModel.block_timestamp >= since, CurveTradeModel.native_amount),
                                else_=0,
                            )
                        ),
                        0,
                    ),
                )
                .select_from(CurveTradeModel)
                .where(confirmed)
            )
        ).one()
        trades_count = int(totals[0] or 0)
        buys_count = int(totals[1] or 0)
        sold_tokens = to_decimal(totals[2]) - to_decimal(totals[3])
        volume_total = to_decimal(totals[4])
        volume_24h = to_decimal(totals[5])

        last = (
            await self.session.execute(
                select(
                    CurveTradeModel.price_native,
                    CurveTradeModel.block_number,
                    CurveTradeModel.block_timestamp,
                )
                .where(confirmed & CurveTradeModel.price_native.is_not(None))
                .order_by(CurveTradeModel.block_number.desc(), CurveTradeModel.log_index.desc())
                .limit(1)
            )
        ).first()
        last_price = to_decimal(last[0]) if last is not None else None

        votes_count = (
            await self.session.execute(
                select(sa.func.count())
                .select_from(VoteModel)
                .where(
                    (VoteModel.chain_id == chain_id)
                    & (VoteModel.campaign_address == campaign)
                    & (VoteModel.status == STATUS_CONFIRMED)
                )
            )
        ).scalar_one()

        dto = CampaignSummaryDTO(
            chain_id=chain_id,
            campaign_address=campaign,
            last_price_native=last_price,
            sold_tokens=sold_tokens,
            marketcap_native=multiply(last_price, sold_tokens) if last_price is not None else None,
            volume_24h_native=volume_24h,
            volume_total_native=volume_total,
            trades_count=trades_count,
            buys_count=buys_count,
            sells_count=trades_count - buys_count,
            votes_count=int(votes_count or 0),
            last_trade_block=int(last[1]) if last is not None else None,
            last_trade_at=int(last[2]) if last is not None else None,
            updated_at=datetime.now(UTC),
        )
        await _upsert(
            self.session,
            CampaignSummaryModel,
            {
                "chain_id": dto.chain_id,
                "campaign_address": dto.campaign_address,
                "last_price_native": dto.last_price_native,
                "sold_tokens": dto.sold_tokens,
                "marketcap_native": dto.marketcap_native,
                "volume_24h_native": dto.volume_24h_native,
                "volume_total_native": dto.volume_total_native,
                "trades_count": dto.trades_count,
                "buys_count": dto.buys_count,
                "sells_count": dto.sells_count,
                "votes_count": dto.votes_count,
                "last_trade_block": dto.last_trade_block,
                "last_trade_at": dto.last_trade_at,
                "updated_at": dto.updated_at,
            },
            index_elements=["chain_id", "campaign_address"],
        )
        await self.session.flush()
        return dto
