"""Tests for the adaptive chunked log scanner."""

from __future__ import annotations

import pytest

from launchpad_indexer.chain.client import ChainClientError, RangeTooLargeError, TransientRPCError
from launchpad_indexer.indexer.scanner import ChunkedLogScanner, ScanAbortedError

CAMPAIGN = "0x" + "a1" * 20
WALLET = "0x" + "d1" * 20
WAD = 10**18


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def limit_range(chain, max_blocks: int) -> None:
    """Make the fake provider reject ranges wider than ``max_blocks``."""
    original = chain.get_logs

    async def get_logs(from_block, to_block, addresses, topics=None):
        if to_block - from_block + 1 > max_blocks:
            chain.get_logs_calls.append((from_block, to_block))
            raise RangeTooLargeError(f"block range too large: {from_block}-{to_block}")
        return await original(from_block, to_block, addresses, topics)

    chain.get_logs = get_logs


def fail_first(chain, errors: list[Exception]) -> None:
    """Raise the given errors on the next calls, then behave normally."""
    original = chain.get_logs

    async def get_logs(from_block, to_block, addresses, topics=None):
        if errors:
            chain.get_logs_calls.append((from_block, to_block))
            raise errors.pop(0)
        return await original(from_block, to_block, addresses, topics)

    chain.get_logs = get_logs


async def collect(scanner: ChunkedLogScanner, from_block: int, to_block: int):
    return [w async for w in scanner.scan([CAMPAIGN], None, from_block, to_block)]


class TestChunkedLogScanner:
    def test_rejects_bad_bounds(self, fake_chain) -> None:
        with pytest.raises(ValueError):
            ChunkedLogScanner(fake_chain, chunk_size_ceiling=100, chunk_size_floor=200)
        with pytest.raises(ValueError):
            ChunkedLogScanner(fake_chain, shrink_factor=1.0)
        with pytest.raises(ValueError):
            ChunkedLogScanner(fake_chain, max_attempts=0)

    @pytest.mark.asyncio
    async def test_covers_range_in_ceiling_sized_windows(self, fake_chain) -> None:
        scanner = ChunkedLogScanner(fake_chain, chunk_size_ceiling=100, chunk_size_floor=10)

        windows = await collect(scanner, 0, 249)

        assert [(w.from_block, w.to_block) for w in windows] == [(0, 99), (100, 199), (200, 249)]

    @pytest.mark.asyncio
    async def test_empty_range_yields_nothing(self, fake_chain) -> None:
        scanner = ChunkedLogScanner(fake_chain)
        assert await collect(scanner, 10, 9) == []
        assert fake_chain.get_logs_calls == []

    @pytest.mark.asyncio
    async def test_range_errors_shrink_chunk(self, fake_chain) -> None:
        limit_range(fake_chain, 250)
        sleep = FakeSleep()
        scanner = ChunkedLogScanner(fake_chain, sleep=sleep)

        windows = await collect(scanner, 0, 999)

        assert fake_chain.get_logs_calls[:4] == [(0, 999), (0, 999), (0, 499), (0, 249)]
        assert [(w.from_block, w.to_block) for w in windows] == [
            (0, 249),
            (250, 499),
            (500, 749),
            (750, 999),
        ]
        # Shrinking is not a failed attempt.
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_chunk_shrinks_through_ceiling(self, fake_chain) -> None:
        limit_range(fake_chain, 250)
        scanner = ChunkedLogScanner(fake_chain, sleep=FakeSleep())

        await collect(scanner, 0, 4_999)

        assert fake_chain.get_logs_calls[:4] == [(0, 1999), (0, 999), (0, 499), (0, 249)]

    @pytest.mark.asyncio
    async def test_range_error_at_floor_counts_attempts(self, fake_chain) -> None:
        limit_range(fake_chain, 100)
        sleep = FakeSleep()
        scanner = ChunkedLogScanner(
            fake_chain, chunk_size_ceiling=250, chunk_size_floor=250, max_attempts=3, sleep=sleep
        )

        with pytest.raises(ScanAbortedError) as exc_info:
            await collect(scanner, 0, 999)

        assert exc_info.value.attempts == 3
        assert (exc_info.value.from_block, exc_info.value.to_block) == (0, 249)
        assert isinstance(exc_info.value.last_error, RangeTooLargeError)
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_transient_errors_retry_with_backoff(self, fake_chain, logs) -> None:
        fake_chain.add(logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=5, log_index=0))
        fail_first(fake_chain, [TransientRPCError("503"), TransientRPCError("timeout")])
        sleep = FakeSleep()
        scanner = ChunkedLogScanner(fake_chain, backoff_base_seconds=1.0, jitter_ratio=0.25, sleep=sleep)

        windows = await collect(scanner, 0, 10)

        assert len(windows) == 1
        assert len(windows[0].logs) == 1
        assert len(sleep.delays) == 2
        assert 1.0 <= sleep.delays[0] <= 1.25
        assert 2.0 <= sleep.delays[1] <= 2.5

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_attempts(self, fake_chain) -> None:
        fail_first(fake_chain, [TransientRPCError("503")] * 10)
        scanner = ChunkedLogScanner(fake_chain, max_attempts=4, sleep=FakeSleep())

        with pytest.raises(ScanAbortedError) as exc_info:
            await collect(scanner, 0, 10)
        assert exc_info.value.attempts == 4

    @pytest.mark.asyncio
    async def test_other_client_errors_are_retried(self, fake_chain, logs) -> None:
        fake_chain.add(logs.purchase(CAMPAIGN, WALLET, 2 * WAD, WAD, block=5, log_index=0))
        fail_first(fake_chain, [ChainClientError("internal error")])
        sleep = FakeSleep()
        scanner = ChunkedLogScanner(fake_chain, backoff_base_seconds=1.0, sleep=sleep)

        windows = await collect(scanner, 0, 10)

        assert [(w.from_block, w.to_block) for w in windows] == [(0, 10)]
        assert [log.block_number for log in windows[0].logs] == [5]
        assert len(sleep.delays) == 1
        assert fake_chain.get_logs_calls == [(0, 10), (0, 10)]

    @pytest.mark.asyncio
    async def test_other_client_errors_exhaust_attempts(self, fake_chain) -> None:
        fail_first(fake_chain, [ChainClientError("internal error")] * 5)
        scanner = ChunkedLogScanner(fake_chain, max_attempts=3, sleep=FakeSleep())

        with pytest.raises(ScanAbortedError) as exc_info:
            await collect(scanner, 0, 10)
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ChainClientError)

    @pytest.mark.asyncio
    async def test_non_client_errors_propagate(self, fake_chain) -> None:
        fail_first(fake_chain, [RuntimeError("boom")])
        scanner = ChunkedLogScanner(fake_chain, sleep=FakeSleep())

        with pytest.raises(RuntimeError, match="boom"):
            await collect(scanner, 0, 10)

    @pytest.mark.asyncio
    async def test_chunk_grows_after_successes(self, fake_chain) -> None:
        fail_first(fake_chain, [RangeTooLargeError("too large")])
        scanner = ChunkedLogScanner(
            fake_chain, chunk_size_ceiling=1_000, chunk_size_floor=100, growth_after=3, sleep=FakeSleep()
        )

        windows = await collect(scanner, 0, 2_499)

        assert [(w.from_block, w.to_block) for w in windows] == [
            (0, 499),
            (500, 999),
            (1_000, 1_499),
            (1_500, 2_499),
        ]
        assert scanner.chunk_size == 1_000

    @pytest.mark.asyncio
    async def test_chunk_size_persists_across_scans(self, fake_chain) -> None:
        fail_first(fake_chain, [RangeTooLargeError("too large")])
        scanner = ChunkedLogScanner(fake_chain, chunk_size_ceiling=1_000, chunk_size_floor=100)

        await collect(scanner, 0, 99)
        assert scanner.chunk_size == 500
        windows = await collect(scanner, 100, 1_099)
        assert windows[0].to_block == 599

    @pytest.mark.asyncio
    async def test_logs_sorted_and_timestamped(self, fake_chain, logs) -> None:
        fake_chain.add(
            logs.sale(CAMPAIGN, WALLET, WAD, WAD, block=7, log_index=3),
            logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=7, log_index=1),
            logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=3, log_index=0, timestamp=42),
        )
        lookups: list[int] = []
        original = fake_chain.get_block_timestamp

        async def get_block_timestamp(block_number, block_hash=None):
            lookups.append(block_number)
            return await original(block_number, block_hash)

        fake_chain.get_block_timestamp = get_block_timestamp
        scanner = ChunkedLogScanner(fake_chain)

        windows = await collect(scanner, 0, 10)

        found = windows[0].logs
        assert [log.position for log in found] == [(3, 0), (7, 1), (7, 3)]
        assert [log.block_timestamp for log in found] == [42, fake_chain.block_time(7), fake_chain.block_time(7)]
        assert lookups == [7]

    def test_backoff_delay_is_capped(self, fake_chain) -> None:
        scanner = ChunkedLogScanner(
            fake_chain, backoff_base_seconds=1.0, backoff_max_seconds=4.0, jitter_ratio=0.0
        )
        assert [scanner.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 4.0, 4.0]
