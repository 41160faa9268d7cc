"""Idempotent persistence of scan windows.

``EventStore`` is the single writer of indexer state. Each scan window is
committed in one transaction: registrations, trades, votes, candle updates,
summary refreshes, orphan marking and the cursor advance either all land or
none do, so a window replayed after a crash converges to the same rows.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from launchpad_indexer.indexer.candles import CandleAggregator, Coverage
from launchpad_indexer.indexer.models import (
    Candle,
    CommitResult,
    CursorFamily,
    ScanBatch,
    TradeEvent,
    VoteEvent,
)
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.repos import (
    STATUS_CONFIRMED,
    STATUS_ORPHANED,
    CampaignRepository,
    CampaignSummaryRepository,
    CandleRepository,
    CursorRepository,
    TradeRepository,
    VoteRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class _Span:
    start: int
    end: int

    def extend(self, timestamp: int) -> None:
        self.start = min(self.start, timestamp)
        self.end = max(self.end, timestamp)


def _mark_dirty(spans: dict[str, _Span], campaign_address: str, *timestamps: int) -> None:
    for ts in timestamps:
        span = spans.get(campaign_address)
        if span is None:
            spans[campaign_address] = _Span(ts, ts)
        else:
            span.extend(ts)


def _chain_order(events: Iterable[TradeEvent | VoteEvent]) -> list:
    return sorted(events, key=lambda e: e.position)


class EventStore:
    """Transactional writer for decoded scan windows.

    Example:
        ```python
        store = EventStore(db, CandleAggregator(parse_timeframes(["1m", "1h"])))
        result = await store.commit_batch(batch)
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        aggregator: CandleAggregator,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._aggregator = aggregator
        self._clock = clock

    async def get_cursor(self, chain_id: int, family: CursorFamily) -> int | None:
        async with self._db.get_async_session() as session:
            return await CursorRepository(session).get(chain_id, family.value)

    async def set_cursor(self, chain_id: int, family: CursorFamily, block: int) -> None:
        """Persist a cursor outside a batch (controlled rewind)."""
        async with self._db.get_async_session() as session:
            await CursorRepository(session).set(chain_id, family.value, block)

    async def list_active_campaigns(self, chain_id: int) -> list[str]:
        async with self._db.get_async_session() as session:
            return await CampaignRepository(session).list_active_addresses(chain_id)

    async def commit_batch(self, batch: ScanBatch) -> CommitResult:
        """Persist one window and advance its cursor to ``batch.to_block``.

        Events are classified against stored rows by natural key. Unchanged
        events are no-ops; new and changed ones are upserted and reported in
        the result. In repair mode, confirmed rows inside the window that
        were not re-observed are marked orphaned.
        """
        result = CommitResult(
            chain_id=batch.chain_id,
            family=batch.family,
            from_block=batch.from_block,
            to_block=batch.to_block,
        )
        touched_campaigns: set[str] = set()

        async with self._db.get_async_session() as session:
            campaigns = CampaignRepository(session)
            trades = TradeRepository(session)
            votes = VoteRepository(session)
            candles = CandleRepository(session)
            summaries = CampaignSummaryRepository(session)

            for registration in batch.registrations:
                if await campaigns.upsert(registration.to_dto()):
                    result.new_campaigns.append(registration)
                    touched_campaigns.add(registration.campaign_address)

            dirty: dict[str, _Span] = {}
            new_trades: list[TradeEvent] = []

            incoming_trades = {t.key: t for t in batch.trades}
            stored_trades = await trades.get_many(batch.chain_id, list(incoming_trades))
            for key, trade in incoming_trades.items():
                stored = stored_trades.get(key)
                if stored is None:
                    await trades.upsert(trade.to_dto())
                    new_trades.append(trade)
                    result.trades.append(trade)
                    touched_campaigns.add(trade.campaign_address)
                    continue
                previous = TradeEvent.from_dto(stored)
                if previous == trade and stored.status == STATUS_CONFIRMED:
                    continue
                await trades.upsert(trade.to_dto())
                result.trades.append(trade)
                touched_campaigns.update({trade.campaign_address, previous.campaign_address})
                _mark_dirty(dirty, previous.campaign_address, previous.block_timestamp)
                _mark_dirty(dirty, trade.campaign_address, trade.block_timestamp)

            incoming_votes = {v.key: v for v in batch.votes}
            stored_votes = await votes.get_many(batch.chain_id, list(incoming_votes))
            for key, vote in incoming_votes.items():
                stored_vote = stored_votes.get(key)
                if stored_vote is not None:
                    previous_vote = VoteEvent.from_dto(stored_vote)
                    if previous_vote == vote and stored_vote.status == STATUS_CONFIRMED:
                        continue
                    touched_campaigns.add(previous_vote.campaign_address)
                await votes.upsert(vote.to_dto())
                result.votes.append(vote)
                touched_campaigns.add(vote.campaign_address)

            if batch.repair:
                await self._orphan_missing(batch, trades, votes, incoming_trades, incoming_votes, result)
                for orphan in result.orphaned_trades:
                    touched_campaigns.add(orphan.campaign_address)
                    _mark_dirty(dirty, orphan.campaign_address, orphan.block_timestamp)
                for orphan_vote in result.orphaned_votes:
                    touched_campaigns.add(orphan_vote.campaign_address)
                for trade in batch.trades:
                    _mark_dirty(dirty, trade.campaign_address, trade.block_timestamp)

            coverage = Coverage()
            updated_candles: dict[tuple[str, str, int], Candle] = {}
            for campaign, span in sorted(dirty.items()):
                for candle in await self._aggregator.recompute_span(
                    candles, trades, batch.chain_id, campaign, span.start, span.end, coverage
                ):
                    updated_candles[candle.key] = candle
            for candle in await self._aggregator.apply_trades(candles, trades, new_trades, coverage):
                updated_candles[candle.key] = candle
            result.candles = sorted(
                updated_candles.values(), key=lambda c: (c.campaign_address, c.timeframe, c.bucket_start)
            )

            now_ts = int(self._clock())
            for campaign in sorted(touched_campaigns):
                result.summaries.append(await summaries.refresh(batch.chain_id, campaign, now_ts=now_ts))

            await CursorRepository(session).set(batch.chain_id, batch.family.value, batch.to_block)

        result.trades = _chain_order(result.trades)
        result.votes = _chain_order(result.votes)
        if result.has_changes or batch.repair:
            logger.info(
                "Chain %d %s blocks %d-%d committed: %d campaigns, %d trades, %d votes, "
                "%d orphaned trades, %d orphaned votes, %d candles%s",
                batch.chain_id,
                batch.family.value,
                batch.from_block,
                batch.to_block,
                len(result.new_campaigns),
                len(result.trades),
                len(result.votes),
                len(result.orphaned_trades),
                len(result.orphaned_votes),
                len(result.candles),
                " (repair)" if batch.repair else "",
            )
        return result

    async def _orphan_missing(
        self,
        batch: ScanBatch,
        trades: TradeRepository,
        votes: VoteRepository,
        incoming_trades: dict[tuple[str, int], TradeEvent],
        incoming_votes: dict[tuple[str, int], VoteEvent],
        result: CommitResult,
    ) -> None:
        if batch.family is CursorFamily.CAMPAIGNS and batch.addresses:
            stored = await trades.list_confirmed_in_block_range(
                batch.chain_id,
                from_block=batch.from_block,
                to_block=batch.to_block,
                campaign_addresses=batch.addresses,
            )
            missing = [TradeEvent.from_dto(dto) for dto in stored if dto.key not in incoming_trades]
            if missing:
                await trades.set_status(batch.chain_id, [t.key for t in missing], STATUS_ORPHANED)
                result.orphaned_trades = _chain_order(missing)

        if batch.family is CursorFamily.VOTE_TREASURY:
            stored_votes = await votes.list_confirmed_in_block_range(
                batch.chain_id, from_block=batch.from_block, to_block=batch.to_block
            )
            missing_votes = [
                VoteEvent.from_dto(dto) for dto in stored_votes if dto.key not in incoming_votes
            ]
            if missing_votes:
                await votes.set_status(batch.chain_id, [v.key for v in missing_votes], STATUS_ORPHANED)
                result.orphaned_votes = _chain_order(missing_votes)

        for trade in result.orphaned_trades:
            logger.warning(
                "Chain %d: trade %s:%d at block %d no longer on chain; marked orphaned",
                batch.chain_id,
                trade.tx_hash,
                trade.log_index,
                trade.block_number,
            )
        for vote in result.orphaned_votes:
            logger.warning(
                "Chain %d: vote %s:%d at block %d no longer on chain; marked orphaned",
                batch.chain_id,
                vote.tx_hash,
                vote.log_index,
                vote.block_number,
            )
