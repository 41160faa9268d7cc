"""Application wiring for the launchpad indexer.

This module provides the IndexerApp class that builds every component from
settings and runs the per-chain scan and repair loops on the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from launchpad_indexer.chain.client import ChainClient
from launchpad_indexer.config import ChainSettings, Settings, get_settings
from launchpad_indexer.indexer.candles import CandleAggregator, parse_timeframes
from launchpad_indexer.indexer.decoder import EventDecoder
from launchpad_indexer.indexer.service import ChainIndexer, CursorLocks, CycleReport, HeadSource
from launchpad_indexer.indexer.store import EventStore
from launchpad_indexer.realtime.hub import RedisRealtimeHub
from launchpad_indexer.realtime.publisher import RealtimePublisher
from launchpad_indexer.scheduler import IndexerScheduler
from launchpad_indexer.snapshot import SnapshotFacade
from launchpad_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ChainSettings, Redis | None], HeadSource]


class AppState(str, Enum):
    """Application lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class AppStats:
    """Statistics for the indexer process."""

    started_at: datetime | None = None
    scan_cycles: int = 0
    repair_cycles: int = 0
    trades_indexed: int = 0
    votes_indexed: int = 0
    campaigns_registered: int = 0
    orphaned: int = 0
    errors: int = 0
    last_error: str | None = None


class IndexerApp:
    """Builds and runs the indexer for every configured chain.

    Example:
        ```python
        from launchpad_indexer.app import IndexerApp
        from launchpad_indexer.config import get_settings

        app = IndexerApp(get_settings())
        await app.start()
        # Loops run until stop() is called
        await app.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        redis: Redis | None = None,
        db: DatabaseManager | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize the application.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            redis: Pre-built Redis client; created from settings when omitted.
            db: Pre-built database manager; created from settings when omitted.
            client_factory: Builds the chain client for a chain; defaults to
                a rotating ``ChainClient`` over the chain's RPC URLs.
        """
        self._settings = settings or get_settings()
        self._redis = redis
        self._owns_redis = redis is None
        self._db = db
        self._owns_db = db is None
        self._client_factory = client_factory or self._default_client

        self._state = AppState.STOPPED
        self._stats = AppStats()

        self._clients: dict[int, HeadSource] = {}
        self._indexers: dict[int, ChainIndexer] = {}
        self._store: EventStore | None = None
        self._publisher: RealtimePublisher | None = None
        self._hub: RedisRealtimeHub | None = None
        self._scheduler: IndexerScheduler | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def stats(self) -> AppStats:
        return self._stats

    @property
    def indexers(self) -> dict[int, ChainIndexer]:
        return dict(self._indexers)

    @property
    def snapshot(self) -> SnapshotFacade:
        """Read facade over the same database and hub the indexer writes to."""
        if self._db is None:
            raise RuntimeError("IndexerApp is not initialized")
        return SnapshotFacade(
            self._db,
            hub=self._hub,
            channel_prefix=self._settings.realtime.channel_prefix,
            token_ttl_seconds=self._settings.realtime.token_ttl_seconds,
            timeframes=self._settings.candles.labels,
        )

    def _default_client(self, chain: ChainSettings, redis: Redis | None) -> HeadSource:
        scanner = self._settings.scanner
        return ChainClient(
            chain.chain_id,
            chain.rpc_urls,
            redis=redis,
            request_timeout_seconds=scanner.rpc_timeout_seconds,
            max_requests_per_second=scanner.max_requests_per_second,
            block_cache_ttl_seconds=scanner.block_timestamp_cache_ttl_seconds,
        )

    async def _initialize_components(self) -> None:
        settings = self._settings

        if self._redis is None:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._db is None:
            logger.debug("Initializing database manager...")
            self._db = DatabaseManager(
                settings.database.url,
                pool_size=settings.database.pool_size,
                echo=settings.database.echo,
            )

        aggregator = CandleAggregator(parse_timeframes(settings.candles.labels))
        self._store = EventStore(self._db, aggregator)

        self._hub = RedisRealtimeHub(self._redis, token_key_prefix=settings.realtime.token_key_prefix)
        self._publisher = RealtimePublisher(
            self._hub,
            channel_prefix=settings.realtime.channel_prefix,
            enabled=settings.realtime.enabled,
        )

        locks = CursorLocks()
        decoder = EventDecoder()
        for chain in settings.chains:
            client = self._client_factory(chain, self._redis)
            self._clients[chain.chain_id] = client
            self._indexers[chain.chain_id] = ChainIndexer(
                chain,
                client,
                self._store,
                decoder=decoder,
                publisher=self._publisher,
                scanner_settings=settings.scanner,
                repair_settings=settings.repair,
                locks=locks,
            )
            logger.info(
                "Chain %s (%d): %d RPC endpoint(s), families=%s",
                chain.label,
                chain.chain_id,
                len(chain.rpc_urls),
                ",".join(f.value for f in self._indexers[chain.chain_id].families),
            )

    def _record(self, report: CycleReport) -> None:
        if report.repair:
            self._stats.repair_cycles += 1
        else:
            self._stats.scan_cycles += 1
        self._stats.trades_indexed += report.trades
        self._stats.votes_indexed += report.votes
        self._stats.campaigns_registered += report.new_campaigns
        self._stats.orphaned += report.orphaned

    def _job(self, indexer: ChainIndexer, *, repair: bool) -> Callable[[], Any]:
        async def run() -> None:
            try:
                report = await (indexer.run_repair() if repair else indexer.run_cycle())
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                raise
            self._record(report)

        return run

    async def start(self) -> None:
        """Start the scan and repair loops for every chain.

        Raises:
            RuntimeError: If the app is already running.
        """
        if self._state != AppState.STOPPED:
            raise RuntimeError(f"Cannot start indexer in state {self._state}")

        self._state = AppState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting indexer...")

        try:
            await self._initialize_components()
            self._scheduler = IndexerScheduler()
            for chain_id, indexer in self._indexers.items():
                self._scheduler.add_job(
                    f"scan:{chain_id}",
                    self._job(indexer, repair=False),
                    self._settings.scanner.interval_seconds,
                )
                if self._settings.repair.enabled:
                    self._scheduler.add_job(
                        f"repair:{chain_id}",
                        self._job(indexer, repair=True),
                        self._settings.repair.interval_seconds,
                        run_immediately=False,
                    )
            await self._scheduler.start()
            self._stats.started_at = datetime.now(UTC)
            self._state = AppState.RUNNING
            logger.info("Indexer started for %d chain(s)", len(self._indexers))
        except Exception as e:
            self._state = AppState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start indexer: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the loops and release connections."""
        if self._state == AppState.STOPPED:
            return

        self._state = AppState.STOPPING
        logger.info("Stopping indexer...")
        if self._stop_event:
            self._stop_event.set()
        if self._scheduler:
            await self._scheduler.stop()
            self._scheduler = None
        await self._cleanup()

        self._state = AppState.STOPPED
        logger.info("Indexer stopped")

    def request_stop(self) -> None:
        """Ask ``run()`` to return; safe to call from a signal handler."""
        if self._stop_event:
            self._stop_event.set()

    async def run_once(self, *, repair: bool = False) -> list[CycleReport]:
        """Run a single scan (or repair) cycle for every chain and clean up.

        Chains run concurrently; a failing chain is logged and does not
        prevent the others from completing.
        """
        if self._state != AppState.STOPPED:
            raise RuntimeError(f"Cannot run a one-shot cycle in state {self._state}")
        await self._initialize_components()
        try:
            indexers = list(self._indexers.values())
            outcomes = await asyncio.gather(
                *((i.run_repair() if repair else i.run_cycle()) for i in indexers),
                return_exceptions=True,
            )
            reports: list[CycleReport] = []
            for indexer, outcome in zip(indexers, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    self._stats.errors += 1
                    self._stats.last_error = str(outcome)
                    logger.error("Chain %d cycle failed: %s", indexer.chain_id, outcome)
                    continue
                self._record(outcome)
                reports.append(outcome)
            return reports
        finally:
            await self._cleanup()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        for client in self._clients.values():
            aclose = getattr(client, "aclose", None)
            if callable(aclose):
                await aclose()
        self._clients.clear()
        self._indexers.clear()

        if self._db and self._owns_db:
            await self._db.dispose_async()
            self._db = None

        if self._redis and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the indexer and run until ``request_stop()`` or cancellation."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> IndexerApp:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
