"""Tests for the transactional event store."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from launchpad_indexer.indexer.candles import CandleAggregator, parse_timeframes
from launchpad_indexer.indexer.models import (
    CampaignRegistration,
    CursorFamily,
    ScanBatch,
    TradeEvent,
    TradeSide,
    VoteEvent,
)
from launchpad_indexer.indexer.store import EventStore
from launchpad_indexer.storage.models import CurveTradeModel
from launchpad_indexer.storage.repos import (
    STATUS_CONFIRMED,
    STATUS_ORPHANED,
    CandleRepository,
    TradeRepository,
)

CHAIN_ID = 97
CAMPAIGN = "0x" + "a1" * 20
TREASURY = "0x" + "7e" * 20
WALLET = "0x" + "d1" * 20
WAD = 10**18
NOW = 1_000_000


def trade(block: int, log_index: int, timestamp: int, *, tokens: int = 2 * WAD, native: int = WAD) -> TradeEvent:
    return TradeEvent(
        chain_id=CHAIN_ID,
        campaign_address=CAMPAIGN,
        tx_hash="0x" + f"{block:032x}{log_index:032x}",
        log_index=log_index,
        block_number=block,
        block_hash="0x" + f"{block:064x}",
        block_timestamp=timestamp,
        side=TradeSide.BUY,
        wallet=WALLET,
        token_amount_raw=tokens,
        native_amount_raw=native,
    )


def vote(block: int, log_index: int) -> VoteEvent:
    return VoteEvent(
        chain_id=CHAIN_ID,
        campaign_address=CAMPAIGN,
        voter_address=WALLET,
        asset_address="0x" + "e1" * 20,
        amount_raw=WAD,
        tx_hash="0x" + f"{block:032x}{log_index:032x}",
        log_index=log_index,
        block_number=block,
        block_hash="0x" + f"{block:064x}",
        block_timestamp=NOW - 100 + block,
        meta="0x" + "00" * 32,
    )


def registration(block: int) -> CampaignRegistration:
    return CampaignRegistration(
        chain_id=CHAIN_ID,
        campaign_address=CAMPAIGN,
        token_address="0x" + "b1" * 20,
        creator_address="0x" + "c1" * 20,
        name="Moon Token",
        symbol="MOON",
        block_number=block,
        tx_hash="0x" + "aa" * 32,
        log_index=0,
    )


def campaigns_batch(from_block: int, to_block: int, trades: list[TradeEvent], *, repair: bool = False) -> ScanBatch:
    return ScanBatch(
        chain_id=CHAIN_ID,
        family=CursorFamily.CAMPAIGNS,
        from_block=from_block,
        to_block=to_block,
        addresses=[CAMPAIGN],
        trades=trades,
        repair=repair,
    )


@pytest.fixture
def store(db) -> EventStore:
    return EventStore(db, CandleAggregator(parse_timeframes(["1m", "1h"])), clock=lambda: NOW)


async def trade_rows(db) -> int:
    async with db.get_async_session() as session:
        return (await session.execute(select(func.count()).select_from(CurveTradeModel))).scalar_one()


async def candles_for(db, timeframe: str = "1m"):
    async with db.get_async_session() as session:
        return await CandleRepository(session).list_recent(CHAIN_ID, CAMPAIGN, timeframe, limit=100)


class TestEventStore:
    @pytest.mark.asyncio
    async def test_registrations_are_reported_once(self, store: EventStore) -> None:
        batch = ScanBatch(
            chain_id=CHAIN_ID,
            family=CursorFamily.FACTORY,
            from_block=0,
            to_block=10,
            addresses=["0x" + "f1" * 20],
            registrations=[registration(5)],
        )

        first = await store.commit_batch(batch)
        second = await store.commit_batch(batch)

        assert first.new_campaigns == [registration(5)]
        assert second.new_campaigns == []
        assert await store.list_active_campaigns(CHAIN_ID) == [CAMPAIGN]
        assert await store.get_cursor(CHAIN_ID, CursorFamily.FACTORY) == 10

    @pytest.mark.asyncio
    async def test_commit_trades_builds_candles_and_summary(self, store: EventStore, db) -> None:
        trades = [trade(2, 0, 65, tokens=2 * WAD, native=WAD), trade(1, 0, 61, tokens=4 * WAD, native=WAD)]

        result = await store.commit_batch(campaigns_batch(0, 5, trades))

        assert [t.position for t in result.trades] == [(1, 0), (2, 0)]
        assert {(c.timeframe, c.bucket_start) for c in result.candles} == {("1m", 60), ("1h", 0)}
        candle = (await candles_for(db))[0]
        assert candle.open_price == Decimal("0.25")
        assert candle.close_price == Decimal("0.5")
        assert candle.trade_count == 2
        assert len(result.summaries) == 1
        summary = result.summaries[0]
        assert summary.trades_count == 2
        assert summary.sold_tokens == Decimal("6")
        assert summary.last_price_native == Decimal("0.5")
        assert summary.marketcap_native == Decimal("3")
        assert await store.get_cursor(CHAIN_ID, CursorFamily.CAMPAIGNS) == 5

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, store: EventStore, db) -> None:
        batch = campaigns_batch(0, 5, [trade(1, 0, 61), trade(2, 0, 65)])
        await store.commit_batch(batch)

        replayed = await store.commit_batch(batch)

        assert not replayed.has_changes
        assert replayed.candles == []
        assert replayed.summaries == []
        assert await trade_rows(db) == 2
        candle = (await candles_for(db))[0]
        assert candle.trade_count == 2

    @pytest.mark.asyncio
    async def test_changed_trade_moves_candles(self, store: EventStore, db) -> None:
        original = trade(3, 0, 61)
        await store.commit_batch(campaigns_batch(0, 5, [original, trade(4, 0, 62)]))

        moved = replace(original, block_number=7, block_hash="0x" + "77" * 32, block_timestamp=125)
        result = await store.commit_batch(campaigns_batch(6, 10, [moved]))

        assert result.trades == [moved]
        assert await trade_rows(db) == 2
        buckets = [(c.bucket_start, c.trade_count) for c in await candles_for(db)]
        assert buckets == [(60, 1), (120, 1)]
        async with db.get_async_session() as session:
            stored = await TradeRepository(session).get(CHAIN_ID, original.tx_hash, 0)
        assert stored.block_number == 7
        assert stored.block_hash == "0x" + "77" * 32

    @pytest.mark.asyncio
    async def test_repair_orphans_missing_trades(self, store: EventStore, db) -> None:
        kept = trade(2, 0, 61, tokens=2 * WAD, native=WAD)
        lost = trade(3, 0, 62, tokens=WAD, native=WAD)
        await store.commit_batch(campaigns_batch(0, 5, [kept, lost]))

        result = await store.commit_batch(campaigns_batch(0, 5, [kept], repair=True))

        assert result.orphaned_trades == [lost]
        assert result.trades == []
        async with db.get_async_session() as session:
            stored = await TradeRepository(session).get(CHAIN_ID, lost.tx_hash, 0)
        assert stored.status == STATUS_ORPHANED
        candle = (await candles_for(db))[0]
        assert candle.trade_count == 1
        assert candle.close_price == Decimal("0.5")
        assert result.summaries[0].trades_count == 1
        assert result.summaries[0].sold_tokens == Decimal("2")

    @pytest.mark.asyncio
    async def test_repair_restores_orphaned_trade(self, store: EventStore, db) -> None:
        returning = trade(3, 0, 62)
        await store.commit_batch(campaigns_batch(0, 5, [returning]))
        await store.commit_batch(campaigns_batch(0, 5, [], repair=True))

        result = await store.commit_batch(campaigns_batch(0, 5, [returning], repair=True))

        assert result.trades == [returning]
        async with db.get_async_session() as session:
            stored = await TradeRepository(session).get(CHAIN_ID, returning.tx_hash, 0)
        assert stored.status == STATUS_CONFIRMED
        assert [c.trade_count for c in await candles_for(db)] == [1]

    @pytest.mark.asyncio
    async def test_repair_outside_window_keeps_rows(self, store: EventStore) -> None:
        await store.commit_batch(campaigns_batch(0, 5, [trade(2, 0, 61)]))

        result = await store.commit_batch(campaigns_batch(6, 10, [], repair=True))

        assert result.orphaned_trades == []

    @pytest.mark.asyncio
    async def test_repair_orphans_missing_votes(self, store: EventStore) -> None:
        batch = ScanBatch(
            chain_id=CHAIN_ID,
            family=CursorFamily.VOTE_TREASURY,
            from_block=0,
            to_block=10,
            addresses=[TREASURY],
            votes=[vote(1, 0), vote(2, 0)],
        )
        first = await store.commit_batch(batch)
        assert first.summaries[0].votes_count == 2

        result = await store.commit_batch(replace(batch, votes=[vote(1, 0)], repair=True))

        assert result.orphaned_votes == [vote(2, 0)]
        assert result.summaries[0].votes_count == 1

    @pytest.mark.asyncio
    async def test_failed_commit_rolls_back(self, db) -> None:
        aggregator = CandleAggregator(parse_timeframes(["1m"]))
        aggregator.apply_trades = AsyncMock(side_effect=RuntimeError("candle failure"))
        store = EventStore(db, aggregator, clock=lambda: NOW)

        with pytest.raises(RuntimeError):
            await store.commit_batch(campaigns_batch(0, 5, [trade(1, 0, 61)]))

        assert await trade_rows(db) == 0
        assert await store.get_cursor(CHAIN_ID, CursorFamily.CAMPAIGNS) is None

    @pytest.mark.asyncio
    async def test_set_cursor(self, store: EventStore) -> None:
        await store.set_cursor(CHAIN_ID, CursorFamily.VOTE_TREASURY, 41)
        assert await store.get_cursor(CHAIN_ID, CursorFamily.VOTE_TREASURY) == 41
