"""Tests for OHLCV candle aggregation."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from launchpad_indexer.indexer.candles import (
    CandleAggregator,
    Coverage,
    Timeframe,
    apply_trade,
    build_candles,
    parse_timeframes,
)
from launchpad_indexer.indexer.models import TradeEvent, TradeSide
from launchpad_indexer.storage.repos import CandleRepository, TradeRepository

CHAIN_ID = 97
CAMPAIGN = "0x" + "a1" * 20
WALLET = "0x" + "d1" * 20
WAD = 10**18


def trade(
    block: int,
    log_index: int,
    timestamp: int,
    *,
    tokens: int = WAD,
    native: int = WAD,
    side: TradeSide = TradeSide.BUY,
) -> TradeEvent:
    return TradeEvent(
        chain_id=CHAIN_ID,
        campaign_address=CAMPAIGN,
        tx_hash="0x" + f"{block:032x}{log_index:032x}",
        log_index=log_index,
        block_number=block,
        block_hash="0x" + f"{block:064x}",
        block_timestamp=timestamp,
        side=side,
        wallet=WALLET,
        token_amount_raw=tokens,
        native_amount_raw=native,
    )


class TestTimeframe:
    @pytest.mark.parametrize(
        ("label", "seconds"),
        [("5s", 5), ("1m", 60), ("15m", 900), ("4h", 14_400), ("1d", 86_400)],
    )
    def test_parse(self, label: str, seconds: int) -> None:
        assert Timeframe.parse(label).seconds == seconds

    @pytest.mark.parametrize("label", ["", "1w", "m1", "0s", "1.5m"])
    def test_parse_invalid(self, label: str) -> None:
        with pytest.raises(ValueError):
            Timeframe.parse(label)

    def test_bucket_start(self) -> None:
        tf = Timeframe.parse("1m")
        assert tf.bucket_start(0) == 0
        assert tf.bucket_start(59) == 0
        assert tf.bucket_start(60) == 60
        assert tf.bucket_start(1_700_000_123) == 1_700_000_100

    def test_parse_timeframes(self) -> None:
        assert [tf.label for tf in parse_timeframes(["1m", "1h"])] == ["1m", "1h"]


class TestApplyTrade:
    def test_ohlcv(self) -> None:
        tf = Timeframe("100s", 100)
        prices = [
            trade(1, 0, 100, tokens=2 * WAD, native=WAD),  # 0.5
            trade(1, 1, 101, tokens=WAD, native=3 * WAD // 2),  # 1.5
            trade(2, 0, 102, tokens=4 * WAD, native=WAD),  # 0.25
            trade(3, 0, 150, tokens=WAD, native=WAD, side=TradeSide.SELL),  # 1
        ]
        candle = None
        for t in prices:
            candle = apply_trade(candle, t, tf)

        assert candle is not None
        assert candle.bucket_start == 100
        assert candle.open == Decimal("0.5")
        assert candle.high == Decimal("1.5")
        assert candle.low == Decimal("0.25")
        assert candle.close == Decimal("1")
        assert candle.volume_native == Decimal("4.5")
        assert candle.trade_count == 4
        assert candle.first_position == (1, 0)
        assert candle.last_position == (3, 0)

    def test_zero_token_trade_is_ignored(self) -> None:
        tf = Timeframe("100s", 100)
        assert apply_trade(None, trade(1, 0, 100, tokens=0), tf) is None

    def test_out_of_order_raises(self) -> None:
        tf = Timeframe("100s", 100)
        candle = apply_trade(None, trade(2, 0, 100), tf)
        with pytest.raises(ValueError):
            apply_trade(candle, trade(1, 5, 100), tf)
        with pytest.raises(ValueError):
            apply_trade(candle, trade(2, 0, 100), tf)

    def test_wrong_bucket_raises(self) -> None:
        tf = Timeframe("100s", 100)
        candle = apply_trade(None, trade(1, 0, 100), tf)
        with pytest.raises(ValueError):
            apply_trade(candle, trade(2, 0, 200), tf)


class TestBuildCandles:
    def test_buckets(self) -> None:
        tf = Timeframe("100s", 100)
        trades = [trade(1, 0, 100), trade(1, 1, 101), trade(2, 0, 102), trade(5, 0, 250)]

        candles = build_candles(reversed(trades), tf)

        assert [c.bucket_start for c in candles] == [100, 200]
        assert [c.trade_count for c in candles] == [3, 1]

    def test_matches_incremental(self) -> None:
        tf = Timeframe("1m", 60)
        trades = [
            trade(b, i, 1_000 + b * 7, tokens=(b + 1) * WAD, native=WAD)
            for b in range(1, 30)
            for i in range(2)
        ]
        incremental: dict[int, object] = {}
        for t in trades:
            bucket = tf.bucket_start(t.block_timestamp)
            incremental[bucket] = apply_trade(incremental.get(bucket), t, tf)

        assert build_candles(trades, tf) == [incremental[b] for b in sorted(incremental)]


class TestCandleAggregator:
    def test_requires_timeframes(self) -> None:
        with pytest.raises(ValueError):
            CandleAggregator([])

    def test_labels_and_lookup(self) -> None:
        aggregator = CandleAggregator(parse_timeframes(["1m", "1h"]))
        assert aggregator.labels == ["1m", "1h"]
        assert aggregator.get("1h").seconds == 3_600
        assert aggregator.get("5m") is None

    @pytest.mark.asyncio
    async def test_apply_trades_incrementally(self, async_session: AsyncSession) -> None:
        aggregator = CandleAggregator(parse_timeframes(["1m"]))
        trades_repo = TradeRepository(async_session)
        candles_repo = CandleRepository(async_session)
        first = [trade(1, 0, 60, tokens=2 * WAD, native=WAD)]
        second = [trade(2, 0, 70, tokens=WAD, native=WAD), trade(3, 0, 130, tokens=4 * WAD, native=WAD)]

        for batch in (first, second):
            for t in batch:
                await trades_repo.upsert(t.to_dto())
            await aggregator.apply_trades(candles_repo, trades_repo, batch, Coverage())

        stored = await candles_repo.list_recent(CHAIN_ID, CAMPAIGN, "1m", limit=10)
        assert [c.bucket_start for c in stored] == [60, 120]
        assert stored[0].open_price == Decimal("0.5")
        assert stored[0].close_price == Decimal("1")
        assert stored[0].trade_count == 2
        assert stored[1].close_price == Decimal("0.25")

    @pytest.mark.asyncio
    async def test_out_of_order_trade_rebuilds_bucket(self, async_session: AsyncSession) -> None:
        aggregator = CandleAggregator(parse_timeframes(["1m"]))
        trades_repo = TradeRepository(async_session)
        candles_repo = CandleRepository(async_session)
        late = trade(5, 0, 70, tokens=WAD, native=WAD)
        early = trade(4, 0, 65, tokens=2 * WAD, native=WAD)

        await trades_repo.upsert(late.to_dto())
        await aggregator.apply_trades(candles_repo, trades_repo, [late], Coverage())
        await trades_repo.upsert(early.to_dto())
        await aggregator.apply_trades(candles_repo, trades_repo, [early], Coverage())

        stored = await candles_repo.get(CHAIN_ID, CAMPAIGN, "1m", 60)
        assert stored is not None
        assert stored.trade_count == 2
        assert stored.open_price == Decimal("0.5")
        assert stored.close_price == Decimal("1")
        assert (stored.first_block_number, stored.last_block_number) == (4, 5)

    @pytest.mark.asyncio
    async def test_recompute_span_drops_empty_buckets(self, async_session: AsyncSession) -> None:
        aggregator = CandleAggregator(parse_timeframes(["1m", "5m"]))
        trades_repo = TradeRepository(async_session)
        candles_repo = CandleRepository(async_session)
        kept = trade(1, 0, 60, tokens=2 * WAD, native=WAD)
        dropped = trade(2, 0, 130, tokens=WAD, native=WAD)
        for t in (kept, dropped):
            await trades_repo.upsert(t.to_dto())
        await aggregator.apply_trades(candles_repo, trades_repo, [kept, dropped], Coverage())
        assert len(await candles_repo.list_recent(CHAIN_ID, CAMPAIGN, "1m", limit=10)) == 2

        await trades_repo.set_status(CHAIN_ID, [dropped.key], "orphaned")
        coverage = Coverage()
        rebuilt = await aggregator.recompute_span(
            candles_repo, trades_repo, CHAIN_ID, CAMPAIGN, 130, 130, coverage
        )

        one_minute = await candles_repo.list_recent(CHAIN_ID, CAMPAIGN, "1m", limit=10)
        assert [c.bucket_start for c in one_minute] == [60]
        five_minute = await candles_repo.list_recent(CHAIN_ID, CAMPAIGN, "5m", limit=10)
        assert [(c.bucket_start, c.trade_count) for c in five_minute] == [(0, 1)]
        assert [(c.timeframe, c.bucket_start) for c in rebuilt] == [("5m", 0)]
        assert coverage.covers(CAMPAIGN, "1m", 120)
        assert not coverage.covers(CAMPAIGN, "1m", 60)
        assert coverage.covers(CAMPAIGN, "5m", 0)
