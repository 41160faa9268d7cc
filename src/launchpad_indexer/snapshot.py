"""Read-only query facade over indexed launchpad data.

Every call opens its own session and reads what the indexer committed;
the facade holds no state of its own.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from launchpad_indexer.realtime.hub import RedisRealtimeHub, SubscribeToken
from launchpad_indexer.realtime.publisher import channel_name
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.repos import (
    CampaignSummaryDTO,
    CampaignSummaryRepository,
    CandleDTO,
    CandleRepository,
    TradeDTO,
    TradeRepository,
    VoteDTO,
    VoteRepository,
)

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

TRADES_DEFAULT_LIMIT = 50
TRADES_MAX_LIMIT = 200
CANDLES_DEFAULT_LIMIT = 200
CANDLES_MAX_LIMIT = 2000
VOTES_DEFAULT_LIMIT = 50
VOTES_MAX_LIMIT = 100


def normalize_address(address: str) -> str:
    """Validate a 0x-prefixed 20-byte hex address and lowercase it."""
    value = (address or "").strip()
    if not _ADDRESS_RE.match(value):
        raise ValueError(f"Invalid address: {address!r}")
    return value.lower()


def clamp_limit(limit: int | None, *, default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


class SnapshotFacade:
    """Current summaries, recent trades, votes and candles per campaign.

    Example:
        ```python
        facade = SnapshotFacade(db, timeframes=["1m", "1h"])
        trades = await facade.list_trades(97, "0xabc...", limit=20)
        candles = await facade.list_candles(97, "0xabc...", "1m")
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        hub: RedisRealtimeHub | None = None,
        channel_prefix: str = "token",
        token_ttl_seconds: int = 3600,
        timeframes: Sequence[str] = (),
    ) -> None:
        self._db = db
        self._hub = hub
        self._channel_prefix = channel_prefix
        self._token_ttl_seconds = token_ttl_seconds
        self._timeframes = frozenset(timeframes)

    async def get_campaign_summary(self, chain_id: int, campaign_address: str) -> CampaignSummaryDTO | None:
        campaign = normalize_address(campaign_address)
        async with self._db.get_async_session() as session:
            return await CampaignSummaryRepository(session).get(chain_id, campaign)

    async def list_trades(
        self, chain_id: int, campaign_address: str, *, limit: int | None = None
    ) -> list[TradeDTO]:
        """Most recent confirmed trades, newest first."""
        campaign = normalize_address(campaign_address)
        limit = clamp_limit(limit, default=TRADES_DEFAULT_LIMIT, maximum=TRADES_MAX_LIMIT)
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).list_recent(chain_id, campaign, limit=limit)

    async def list_candles(
        self,
        chain_id: int,
        campaign_address: str,
        timeframe: str,
        *,
        limit: int | None = None,
    ) -> list[CandleDTO]:
        """Most recent candles in ascending bucket order."""
        campaign = normalize_address(campaign_address)
        if timeframe not in self._timeframes:
            raise ValueError(f"Unknown timeframe: {timeframe!r}")
        limit = clamp_limit(limit, default=CANDLES_DEFAULT_LIMIT, maximum=CANDLES_MAX_LIMIT)
        async with self._db.get_async_session() as session:
            return await CandleRepository(session).list_recent(chain_id, campaign, timeframe, limit=limit)

    async def list_votes(
        self,
        chain_id: int,
        campaign_address: str,
        *,
        limit: int | None = None,
        voter_address: str | None = None,
    ) -> list[VoteDTO]:
        campaign = normalize_address(campaign_address)
        voter = normalize_address(voter_address) if voter_address else None
        limit = clamp_limit(limit, default=VOTES_DEFAULT_LIMIT, maximum=VOTES_MAX_LIMIT)
        async with self._db.get_async_session() as session:
            return await VoteRepository(session).list_recent(
                chain_id, campaign, limit=limit, voter_address=voter
            )

    async def get_realtime_subscribe_credential(
        self, chain_id: int, campaign_address: str
    ) -> SubscribeToken:
        """Issue a token that may only subscribe to this campaign's channel."""
        if self._hub is None:
            raise RuntimeError("Realtime hub is not configured")
        campaign = normalize_address(campaign_address)
        channel = channel_name(self._channel_prefix, chain_id, campaign)
        grant = await self._hub.issue_subscribe_token(channel, self._token_ttl_seconds)
        logger.debug("Issued subscribe token for %s (ttl=%ds)", channel, self._token_ttl_seconds)
        return grant
