"""Per-chain indexing cycles: live scanning and reorg repair.

``ChainIndexer`` drives the scanner, decoder, store and publisher for one
chain. Each cursor family (factory, campaigns, vote treasury) is processed
under its own lock so the live scan and the repair job never interleave
over the same cursor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from launchpad_indexer.config import ChainSettings, RepairSettings, ScannerSettings
from launchpad_indexer.indexer.decoder import EventDecoder
from launchpad_indexer.indexer.models import CommitResult, CursorFamily, ScanBatch
from launchpad_indexer.indexer.scanner import ChunkedLogScanner, LogSource
from launchpad_indexer.indexer.store import EventStore

logger = logging.getLogger(__name__)


class HeadSource(LogSource, Protocol):
    async def latest_block(self) -> int: ...


class CommitPublisher(Protocol):
    async def publish_commit(self, result: CommitResult) -> int: ...


class CursorLocks:
    """One ``asyncio.Lock`` per (chain, cursor family)."""

    def __init__(self) -> None:
        self._locks: dict[tuple[int, CursorFamily], asyncio.Lock] = {}

    def get(self, chain_id: int, family: CursorFamily) -> asyncio.Lock:
        key = (chain_id, family)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


@dataclass
class CycleReport:
    """What one scan or repair cycle did."""

    chain_id: int
    repair: bool = False
    head: int | None = None
    target: int | None = None
    windows: int = 0
    new_campaigns: int = 0
    trades: int = 0
    votes: int = 0
    orphaned: int = 0
    published: int = 0
    cursors: dict[str, int] = field(default_factory=dict)

    def add(self, result: CommitResult, published: int) -> None:
        self.windows += 1
        self.new_campaigns += len(result.new_campaigns)
        self.trades += len(result.trades)
        self.votes += len(result.votes)
        self.orphaned += len(result.orphaned_trades) + len(result.orphaned_votes)
        self.published += published
        self.cursors[result.family.value] = result.to_block


class ChainIndexer:
    """Scanner -> decoder -> store -> publisher pipeline for one chain.

    Example:
        ```python
        indexer = ChainIndexer(chain, client, store, scanner_settings=settings.scanner)
        report = await indexer.run_cycle()
        report = await indexer.run_repair()
        ```
    """

    def __init__(
        self,
        chain: ChainSettings,
        client: HeadSource,
        store: EventStore,
        *,
        scanner: ChunkedLogScanner | None = None,
        decoder: EventDecoder | None = None,
        publisher: CommitPublisher | None = None,
        scanner_settings: ScannerSettings | None = None,
        repair_settings: RepairSettings | None = None,
        locks: CursorLocks | None = None,
    ) -> None:
        self.chain = chain
        self._client = client
        self._store = store
        self._scanner_settings = scanner_settings or ScannerSettings()
        self._repair_settings = repair_settings or RepairSettings()
        self._scanner = scanner or ChunkedLogScanner.from_settings(client, self._scanner_settings)
        self._decoder = decoder or EventDecoder()
        self._publisher = publisher
        self._locks = locks or CursorLocks()

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    @property
    def families(self) -> list[CursorFamily]:
        """Families in processing order; campaigns always follow the factory."""
        families: list[CursorFamily] = []
        if self.chain.factory_address:
            families.extend([CursorFamily.FACTORY, CursorFamily.CAMPAIGNS])
        if self.chain.vote_treasury_address:
            families.append(CursorFamily.VOTE_TREASURY)
        return families

    def _start_block(self, family: CursorFamily) -> int | None:
        if family is CursorFamily.VOTE_TREASURY:
            return self.chain.vote_treasury_start_block
        return self.chain.factory_start_block

    async def _addresses(self, family: CursorFamily) -> list[str]:
        if family is CursorFamily.FACTORY:
            return [self.chain.factory_address] if self.chain.factory_address else []
        if family is CursorFamily.VOTE_TREASURY:
            return [self.chain.vote_treasury_address] if self.chain.vote_treasury_address else []
        return await self._store.list_active_campaigns(self.chain_id)

    async def _upper_bound(self, family: CursorFamily, target: int) -> int | None:
        """Campaign scans never run ahead of the factory cursor."""
        if family is not CursorFamily.CAMPAIGNS:
            return target
        factory_cursor = await self._store.get_cursor(self.chain_id, CursorFamily.FACTORY)
        if factory_cursor is None:
            return None
        return min(target, factory_cursor)

    async def _confirmed_target(self, report: CycleReport) -> int | None:
        head = await self._client.latest_block()
        target = head - self._scanner_settings.confirmations
        report.head = head
        report.target = target
        if target < 0:
            logger.debug("Chain %d: head %d below confirmation depth", self.chain_id, head)
            return None
        return target

    async def _process_range(
        self,
        family: CursorFamily,
        from_block: int,
        to_block: int,
        report: CycleReport,
        *,
        repair: bool,
    ) -> None:
        addresses = await self._addresses(family)
        if not addresses:
            result = await self._store.commit_batch(
                ScanBatch(
                    chain_id=self.chain_id,
                    family=family,
                    from_block=from_block,
                    to_block=to_block,
                    addresses=[],
                    repair=repair,
                )
            )
            report.cursors[family.value] = result.to_block
            return

        role = family.role
        topics: Sequence[object] = [self._decoder.topics_for(role)]
        async for window in self._scanner.scan(addresses, topics, from_block, to_block):
            decoded = self._decoder.decode_batch(window.logs, role)
            result = await self._store.commit_batch(
                ScanBatch(
                    chain_id=self.chain_id,
                    family=family,
                    from_block=window.from_block,
                    to_block=window.to_block,
                    addresses=addresses,
                    registrations=decoded.registrations,
                    trades=decoded.trades,
                    votes=decoded.votes,
                    repair=repair,
                )
            )
            published = 0
            if self._publisher is not None:
                published = await self._publisher.publish_commit(result)
            report.add(result, published)

    async def _scan_family(self, family: CursorFamily, target: int, report: CycleReport) -> None:
        cursor = await self._store.get_cursor(self.chain_id, family)
        start_block = self._start_block(family)
        if cursor is not None:
            from_block = cursor + 1
        elif start_block is not None:
            from_block = start_block
        else:
            from_block = max(0, target - self._scanner_settings.start_lookback_blocks)

        upper = await self._upper_bound(family, target)
        if upper is None or from_block > upper:
            return
        await self._process_range(family, from_block, upper, report, repair=False)

    async def run_cycle(self) -> CycleReport:
        """Scan every family from its cursor to the confirmed head."""
        report = CycleReport(chain_id=self.chain_id)
        target = await self._confirmed_target(report)
        if target is None:
            return report
        for family in self.families:
            async with self._locks.get(self.chain_id, family):
                await self._scan_family(family, target, report)
        if report.windows:
            logger.info(
                "Chain %d scan cycle to block %d: %d windows, %d campaigns, %d trades, %d votes",
                self.chain_id,
                target,
                report.windows,
                report.new_campaigns,
                report.trades,
                report.votes,
            )
        return report

    async def _repair_family(self, family: CursorFamily, target: int, report: CycleReport) -> None:
        cursor = await self._store.get_cursor(self.chain_id, family)
        if cursor is None:
            return
        window_start = max(0, target - self._repair_settings.lookback_blocks)
        from_block = max(
            window_start,
            self._start_block(family) or 0,
            cursor + 1 - self._repair_settings.rewind_blocks,
        )
        if from_block > cursor + 1:
            # Blocks between the cursor and the window were never scanned;
            # the live scan catches up on them.
            logger.debug(
                "Chain %d: %s cursor %d is behind repair window starting at %d, skipping",
                self.chain_id,
                family.value,
                cursor,
                from_block,
            )
            return
        upper = await self._upper_bound(family, target)
        if upper is None:
            return
        upper = min(upper, cursor)
        if from_block > upper:
            return

        logger.info(
            "Chain %d: repairing %s blocks %d-%d (cursor %d)",
            self.chain_id,
            family.value,
            from_block,
            upper,
            cursor,
        )
        await self._store.set_cursor(self.chain_id, family, from_block - 1)
        await self._process_range(family, from_block, upper, report, repair=True)

    async def run_repair(self) -> CycleReport:
        """Rewind each family a bounded distance and re-scan in repair mode."""
        report = CycleReport(chain_id=self.chain_id, repair=True)
        target = await self._confirmed_target(report)
        if target is None:
            return report
        for family in self.families:
            async with self._locks.get(self.chain_id, family):
                await self._repair_family(family, target, report)
        if report.windows:
            logger.info(
                "Chain %d repair to block %d: %d windows, %d corrected trades, %d votes, %d orphaned",
                self.chain_id,
                target,
                report.windows,
                report.trades,
                report.votes,
                report.orphaned,
            )
        return report
