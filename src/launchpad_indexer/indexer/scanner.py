"""Adaptive chunked log scanner.

Walks an inclusive block range in sub-ranges no wider than the current
chunk size. The chunk shrinks when the provider rejects a range as too
large and grows back after a run of successful windows. Any other chain
client failure is retried with capped exponential backoff and jitter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from launchpad_indexer.chain.client import ChainClientError, RangeTooLargeError
from launchpad_indexer.chain.models import RawLog
from launchpad_indexer.config import ScannerSettings

logger = logging.getLogger(__name__)


class LogSource(Protocol):
    chain_id: int

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        addresses: Sequence[str],
        topics: Sequence[Any] | None = None,
    ) -> list[RawLog]: ...

    async def get_block_timestamp(self, block_number: int, block_hash: str | None = None) -> int: ...


class ScanAbortedError(Exception):
    """Raised when a sub-range keeps failing after all retry attempts."""

    def __init__(self, from_block: int, to_block: int, attempts: int, last_error: BaseException):
        super().__init__(
            f"Scan of blocks {from_block}-{to_block} aborted after {attempts} attempts: {last_error}"
        )
        self.from_block = from_block
        self.to_block = to_block
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class ScanWindow:
    """One successfully fetched sub-range, logs sorted and timestamped."""

    from_block: int
    to_block: int
    logs: list[RawLog] = field(default_factory=list)


class ChunkedLogScanner:
    """Fetches logs for a block range in adaptive chunks.

    The chunk size is kept across calls, so a provider's range limit learnt
    in one cycle carries over to the next.

    Example:
        ```python
        scanner = ChunkedLogScanner.from_settings(client, settings.scanner)
        async for window in scanner.scan(addresses, [topics], 100, 5_000):
            handle(window)
        ```
    """

    def __init__(
        self,
        client: LogSource,
        *,
        chunk_size_ceiling: int = 2_000,
        chunk_size_floor: int = 250,
        shrink_factor: float = 0.5,
        growth_factor: float = 2.0,
        growth_after: int = 3,
        max_attempts: int = 6,
        backoff_base_seconds: float = 0.75,
        backoff_max_seconds: float = 15.0,
        jitter_ratio: float = 0.25,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if chunk_size_floor < 1 or chunk_size_ceiling < chunk_size_floor:
            raise ValueError("Require 1 <= chunk_size_floor <= chunk_size_ceiling")
        if not 0 < shrink_factor < 1:
            raise ValueError("shrink_factor must be in (0, 1)")
        if growth_factor < 1:
            raise ValueError("growth_factor must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self._ceiling = chunk_size_ceiling
        self._floor = chunk_size_floor
        self._shrink = shrink_factor
        self._growth = growth_factor
        self._growth_after = growth_after
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._jitter_ratio = jitter_ratio
        self._sleep = sleep

        self._chunk_size = chunk_size_ceiling
        self._successes = 0

    @classmethod
    def from_settings(cls, client: LogSource, settings: ScannerSettings, **kwargs: Any) -> ChunkedLogScanner:
        return cls(
            client,
            chunk_size_ceiling=settings.chunk_size_ceiling,
            chunk_size_floor=settings.chunk_size_floor,
            shrink_factor=settings.chunk_shrink_factor,
            growth_factor=settings.chunk_growth_factor,
            growth_after=settings.chunk_growth_after,
            max_attempts=settings.max_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            **kwargs,
        )

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = min(self._backoff_max, self._backoff_base * 2 ** (attempt - 1))
        return delay + random.uniform(0, delay * self._jitter_ratio)

    def _shrink_chunk(self) -> None:
        self._chunk_size = max(self._floor, int(self._chunk_size * self._shrink))
        self._successes = 0

    def _record_success(self) -> None:
        self._successes += 1
        if self._successes >= self._growth_after and self._chunk_size < self._ceiling:
            grown = min(self._ceiling, max(self._chunk_size + 1, int(self._chunk_size * self._growth)))
            logger.debug("Chain %d: chunk size %d -> %d", self._client.chain_id, self._chunk_size, grown)
            self._chunk_size = grown
            self._successes = 0

    async def _resolve_timestamps(self, logs: list[RawLog]) -> list[RawLog]:
        """Attach block timestamps, fetching each distinct block once."""
        timestamps: dict[tuple[int, str], int] = {}
        for log in logs:
            if log.block_timestamp is not None:
                timestamps.setdefault((log.block_number, log.block_hash), log.block_timestamp)
        for log in logs:
            key = (log.block_number, log.block_hash)
            if key not in timestamps:
                timestamps[key] = await self._client.get_block_timestamp(
                    log.block_number, log.block_hash or None
                )
        return [
            log
            if log.block_timestamp is not None
            else log.with_timestamp(timestamps[(log.block_number, log.block_hash)])
            for log in logs
        ]

    async def _fetch_window(
        self, addresses: Sequence[str], topics: Sequence[Any] | None, start: int, end: int
    ) -> list[RawLog]:
        logs = await self._client.get_logs(start, end, addresses, topics)
        logs = await self._resolve_timestamps(logs)
        return sorted(logs, key=lambda log: log.position)

    async def scan(
        self,
        addresses: Sequence[str],
        topics: Sequence[Any] | None,
        from_block: int,
        to_block: int,
    ) -> AsyncIterator[ScanWindow]:
        """Yield windows covering ``[from_block, to_block]`` in ascending order.

        Raises:
            ScanAbortedError: A sub-range failed ``max_attempts`` times.
        """
        start = from_block
        while start <= to_block:
            attempts = 0
            while True:
                end = min(to_block, start + self._chunk_size - 1)
                try:
                    logs = await self._fetch_window(addresses, topics, start, end)
                    break
                except RangeTooLargeError as e:
                    if self._chunk_size > self._floor:
                        previous = self._chunk_size
                        self._shrink_chunk()
                        logger.info(
                            "Chain %d: range %d-%d too large, chunk %d -> %d",
                            self._client.chain_id,
                            start,
                            end,
                            previous,
                            self._chunk_size,
                        )
                        continue
                    attempts += 1
                    error: BaseException = e
                except ChainClientError as e:
                    attempts += 1
                    self._successes = 0
                    error = e

                if attempts >= self._max_attempts:
                    raise ScanAbortedError(start, end, attempts, error)
                delay = self.backoff_delay(attempts)
                logger.warning(
                    "Chain %d: fetching %d-%d failed (attempt %d/%d), retrying in %.2fs: %s",
                    self._client.chain_id,
                    start,
                    end,
                    attempts,
                    self._max_attempts,
                    delay,
                    error,
                )
                await self._sleep(delay)

            yield ScanWindow(from_block=start, to_block=end, logs=logs)
            self._record_success()
            start = end + 1
