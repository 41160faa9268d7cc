"""Publishes committed indexer changes to per-campaign realtime channels.

Publishing is best effort: the database is authoritative, so a failed
publish is logged and never propagates into the commit path.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Protocol

from launchpad_indexer.indexer.models import Candle, CommitResult, TradeEvent, VoteEvent
from launchpad_indexer.storage.repos import STATUS_CONFIRMED, STATUS_ORPHANED, CampaignSummaryDTO

logger = logging.getLogger(__name__)


class Hub(Protocol):
    async def publish(self, channel: str, payload: dict[str, Any]) -> int: ...


def channel_name(prefix: str, chain_id: int, campaign_address: str) -> str:
    return f"{prefix}:{chain_id}:{campaign_address.lower()}"


def _decimal(value: Decimal | None) -> str | None:
    return None if value is None else format(value, "f")


def trade_payload(trade: TradeEvent, status: str = STATUS_CONFIRMED) -> dict[str, Any]:
    return {
        "type": "trade",
        "chain_id": trade.chain_id,
        "campaign_address": trade.campaign_address,
        "tx_hash": trade.tx_hash,
        "log_index": trade.log_index,
        "block_number": trade.block_number,
        "block_time": trade.block_timestamp,
        "side": trade.side.value,
        "wallet": trade.wallet,
        "token_amount": _decimal(trade.token_amount),
        "native_amount": _decimal(trade.native_amount),
        "price_native": _decimal(trade.price_native),
        "token_amount_raw": str(trade.token_amount_raw),
        "native_amount_raw": str(trade.native_amount_raw),
        "status": status,
    }


def vote_payload(vote: VoteEvent, status: str = STATUS_CONFIRMED) -> dict[str, Any]:
    return {
        "type": "vote",
        "chain_id": vote.chain_id,
        "campaign_address": vote.campaign_address,
        "voter_address": vote.voter_address,
        "asset_address": vote.asset_address,
        "amount_raw": str(vote.amount_raw),
        "tx_hash": vote.tx_hash,
        "log_index": vote.log_index,
        "block_number": vote.block_number,
        "block_time": vote.block_timestamp,
        "meta": vote.meta,
        "status": status,
    }


def candle_payload(candle: Candle) -> dict[str, Any]:
    return {
        "type": "candle_upsert",
        "chain_id": candle.chain_id,
        "campaign_address": candle.campaign_address,
        "timeframe": candle.timeframe,
        "bucket_start": candle.bucket_start,
        "open": _decimal(candle.open),
        "high": _decimal(candle.high),
        "low": _decimal(candle.low),
        "close": _decimal(candle.close),
        "volume_native": _decimal(candle.volume_native),
        "trade_count": candle.trade_count,
    }


def stats_payload(summary: CampaignSummaryDTO) -> dict[str, Any]:
    return {
        "type": "stats_patch",
        "chain_id": summary.chain_id,
        "campaign_address": summary.campaign_address,
        "last_price_native": _decimal(summary.last_price_native),
        "sold_tokens": _decimal(summary.sold_tokens),
        "marketcap_native": _decimal(summary.marketcap_native),
        "volume_24h_native": _decimal(summary.volume_24h_native),
        "volume_total_native": _decimal(summary.volume_total_native),
        "trades_count": summary.trades_count,
        "buys_count": summary.buys_count,
        "sells_count": summary.sells_count,
        "votes_count": summary.votes_count,
        "last_trade_at": summary.last_trade_at,
    }


class RealtimePublisher:
    """Fans a ``CommitResult`` out to campaign channels.

    Message order per commit: trades, then votes (each in chain order,
    orphan notices included), then candle patches, then stats patches.
    """

    def __init__(self, hub: Hub, *, channel_prefix: str = "token", enabled: bool = True) -> None:
        self._hub = hub
        self._prefix = channel_prefix
        self._enabled = enabled

    def channel(self, chain_id: int, campaign_address: str) -> str:
        return channel_name(self._prefix, chain_id, campaign_address)

    async def _safe_publish(self, channel: str, payload: dict[str, Any]) -> bool:
        try:
            await self._hub.publish(channel, payload)
            return True
        except Exception as e:
            logger.warning("Realtime publish to %s failed (%s): %s", channel, payload.get("type"), e)
            return False

    async def publish_commit(self, result: CommitResult) -> int:
        """Publish everything a commit changed; returns messages delivered."""
        if not self._enabled or not (result.has_changes or result.candles or result.summaries):
            return 0

        messages: list[tuple[str, dict[str, Any]]] = []
        trades = [(t, STATUS_CONFIRMED) for t in result.trades]
        trades += [(t, STATUS_ORPHANED) for t in result.orphaned_trades]
        for trade, status in sorted(trades, key=lambda item: item[0].position):
            messages.append((self.channel(trade.chain_id, trade.campaign_address), trade_payload(trade, status)))

        votes = [(v, STATUS_CONFIRMED) for v in result.votes]
        votes += [(v, STATUS_ORPHANED) for v in result.orphaned_votes]
        for vote, status in sorted(votes, key=lambda item: item[0].position):
            messages.append((self.channel(vote.chain_id, vote.campaign_address), vote_payload(vote, status)))

        for candle in result.candles:
            messages.append((self.channel(candle.chain_id, candle.campaign_address), candle_payload(candle)))
        for summary in result.summaries:
            messages.append(
                (self.channel(summary.chain_id, summary.campaign_address), stats_payload(summary))
            )

        delivered = 0
        for channel, payload in messages:
            if await self._safe_publish(channel, payload):
                delivered += 1
        if delivered < len(messages):
            logger.warning(
                "Chain %d: published %d of %d realtime messages", result.chain_id, delivered, len(messages)
            )
        return delivered
