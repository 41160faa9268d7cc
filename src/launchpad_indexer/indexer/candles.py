"""OHLCV candle aggregation over bonding-curve trades.

Candles are a materialized view of confirmed trades. New trades arriving
in chain order are folded in incrementally; anything else (a corrected or
orphaned trade, a trade landing before a bucket's last applied trade, or a
repair window) invalidates a bucket range, which is then rebuilt from the
stored trades.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from launchpad_indexer.indexer.models import Candle, TradeEvent
from launchpad_indexer.storage.repos import CandleRepository, TradeRepository

logger = logging.getLogger(__name__)

_TIMEFRAME_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3_600, "d": 86_400}


@dataclass(frozen=True)
class Timeframe:
    label: str
    seconds: int

    @classmethod
    def parse(cls, label: str) -> Timeframe:
        """Parse labels like ``5s``, ``15m``, ``4h`` or ``1d``."""
        match = _TIMEFRAME_RE.match(label.strip().lower())
        if not match:
            raise ValueError(f"Invalid timeframe label: {label!r}")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        if seconds <= 0:
            raise ValueError(f"Timeframe must be positive: {label!r}")
        return cls(label=label.strip().lower(), seconds=seconds)

    def bucket_start(self, timestamp: int) -> int:
        return timestamp // self.seconds * self.seconds


def parse_timeframes(labels: Iterable[str]) -> list[Timeframe]:
    return [Timeframe.parse(label) for label in labels]


def apply_trade(candle: Candle | None, trade: TradeEvent, timeframe: Timeframe) -> Candle | None:
    """Fold one trade into its bucket.

    Trades without a price (zero token amount) leave the candle untouched.

    Raises:
        ValueError: The trade is not after the bucket's last applied trade,
            so applying it incrementally would corrupt close.
    """
    price = trade.price_native
    if price is None:
        return candle

    bucket = timeframe.bucket_start(trade.block_timestamp)
    if candle is None:
        return Candle(
            chain_id=trade.chain_id,
            campaign_address=trade.campaign_address,
            timeframe=timeframe.label,
            bucket_start=bucket,
            open=price,
            high=price,
            low=price,
            close=price,
            volume_native=trade.native_amount,
            trade_count=1,
            first_position=trade.position,
            last_position=trade.position,
        )

    if candle.bucket_start != bucket or candle.timeframe != timeframe.label:
        raise ValueError(
            f"Trade at {trade.block_timestamp} does not belong to bucket "
            f"{candle.timeframe}@{candle.bucket_start}"
        )
    if trade.position <= candle.last_position:
        raise ValueError(
            f"Trade {trade.position} is not after last applied {candle.last_position}"
        )
    return replace(
        candle,
        high=max(candle.high, price),
        low=min(candle.low, price),
        close=price,
        volume_native=candle.volume_native + trade.native_amount,
        trade_count=candle.trade_count + 1,
        last_position=trade.position,
    )


def build_candles(trades: Iterable[TradeEvent], timeframe: Timeframe) -> list[Candle]:
    """Build candles from scratch, applying trades in chain order."""
    buckets: dict[int, Candle] = {}
    for trade in sorted(trades, key=lambda t: t.position):
        bucket = timeframe.bucket_start(trade.block_timestamp)
        updated = apply_trade(buckets.get(bucket), trade, timeframe)
        if updated is not None:
            buckets[bucket] = updated
    return [buckets[b] for b in sorted(buckets)]


@dataclass
class Coverage:
    """Bucket ranges already rebuilt within one batch, per (campaign, timeframe)."""

    ranges: dict[tuple[str, str], list[tuple[int, int]]] = field(default_factory=dict)

    def add(self, campaign_address: str, timeframe: str, start: int, end: int) -> None:
        self.ranges.setdefault((campaign_address, timeframe), []).append((start, end))

    def covers(self, campaign_address: str, timeframe: str, bucket_start: int) -> bool:
        return any(
            start <= bucket_start < end
            for start, end in self.ranges.get((campaign_address, timeframe), ())
        )


class CandleAggregator:
    """Maintains stored candles for every configured timeframe.

    Both methods operate inside the caller's session, so candle writes
    commit or roll back with the events that caused them.
    """

    def __init__(self, timeframes: Sequence[Timeframe]) -> None:
        if not timeframes:
            raise ValueError("At least one timeframe is required")
        self.timeframes = list(timeframes)
        self._by_label = {tf.label: tf for tf in self.timeframes}

    @property
    def labels(self) -> list[str]:
        return [tf.label for tf in self.timeframes]

    def get(self, label: str) -> Timeframe | None:
        return self._by_label.get(label)

    async def _rebuild(
        self,
        candle_repo: CandleRepository,
        trades: Sequence[TradeEvent],
        chain_id: int,
        campaign_address: str,
        timeframe: Timeframe,
        start_bucket: int,
        end_bucket: int,
    ) -> list[Candle]:
        in_range = [
            t for t in trades if start_bucket <= t.block_timestamp < end_bucket
        ]
        await candle_repo.delete_range(
            chain_id,
            campaign_address,
            timeframe.label,
            start_bucket=start_bucket,
            end_bucket=end_bucket,
        )
        candles = build_candles(in_range, timeframe)
        for candle in candles:
            await candle_repo.upsert(candle.to_dto())
        return candles

    async def recompute_span(
        self,
        candle_repo: CandleRepository,
        trade_repo: TradeRepository,
        chain_id: int,
        campaign_address: str,
        start_ts: int,
        end_ts: int,
        coverage: Coverage,
    ) -> list[Candle]:
        """Rebuild every bucket intersecting ``[start_ts, end_ts]``.

        Buckets that end up with no confirmed trades are deleted. The
        rebuilt ranges are recorded in ``coverage``.
        """
        campaign_address = campaign_address.lower()
        if end_ts < start_ts:
            start_ts, end_ts = end_ts, start_ts
        spans = {
            tf.label: (tf.bucket_start(start_ts), tf.bucket_start(end_ts) + tf.seconds)
            for tf in self.timeframes
        }
        load_start = min(lo for lo, _ in spans.values())
        load_end = max(hi for _, hi in spans.values())
        stored = await trade_repo.list_confirmed_in_time_range(
            chain_id, campaign_address, start_ts=load_start, end_ts=load_end
        )
        trades = [TradeEvent.from_dto(dto) for dto in stored]

        rebuilt: list[Candle] = []
        for tf in self.timeframes:
            lo, hi = spans[tf.label]
            rebuilt.extend(
                await self._rebuild(candle_repo, trades, chain_id, campaign_address, tf, lo, hi)
            )
            coverage.add(campaign_address, tf.label, lo, hi)

        logger.debug(
            "Rebuilt %d candles for %s over [%d, %d] (%d trades)",
            len(rebuilt),
            campaign_address,
            start_ts,
            end_ts,
            len(trades),
        )
        return rebuilt

    async def apply_trades(
        self,
        candle_repo: CandleRepository,
        trade_repo: TradeRepository,
        trades: Sequence[TradeEvent],
        coverage: Coverage,
    ) -> list[Candle]:
        """Apply new trades incrementally in chain order.

        Buckets already rebuilt in this batch are skipped since the rebuild
        read the stored trades. A trade that lands before its bucket's last
        applied trade triggers a rebuild of just that bucket.
        """
        cache: dict[tuple[str, str, int], Candle | None] = {}
        touched: dict[tuple[str, str, int], Candle] = {}

        for trade in sorted(trades, key=lambda t: t.position):
            if trade.price_native is None:
                continue
            for tf in self.timeframes:
                bucket = tf.bucket_start(trade.block_timestamp)
                key = (trade.campaign_address, tf.label, bucket)
                if coverage.covers(trade.campaign_address, tf.label, bucket):
                    continue

                if key not in cache:
                    dto = await candle_repo.get(
                        trade.chain_id, trade.campaign_address, tf.label, bucket
                    )
                    cache[key] = Candle.from_dto(dto) if dto else None

                try:
                    updated = apply_trade(cache[key], trade, tf)
                except ValueError:
                    logger.info(
                        "Out-of-order trade %s:%d for %s %s@%d; rebuilding bucket",
                        trade.tx_hash,
                        trade.log_index,
                        trade.campaign_address,
                        tf.label,
                        bucket,
                    )
                    stored = await trade_repo.list_confirmed_in_time_range(
                        trade.chain_id,
                        trade.campaign_address,
                        start_ts=bucket,
                        end_ts=bucket + tf.seconds,
                    )
                    rebuilt = await self._rebuild(
                        candle_repo,
                        [TradeEvent.from_dto(dto) for dto in stored],
                        trade.chain_id,
                        trade.campaign_address,
                        tf,
                        bucket,
                        bucket + tf.seconds,
                    )
                    coverage.add(trade.campaign_address, tf.label, bucket, bucket + tf.seconds)
                    cache.pop(key, None)
                    touched.pop(key, None)
                    for candle in rebuilt:
                        touched[candle.key] = candle
                    continue

                if updated is None:
                    continue
                cache[key] = updated
                touched[key] = updated

        for candle in touched.values():
            await candle_repo.upsert(candle.to_dto())
        return list(touched.values())
