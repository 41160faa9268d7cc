"""EVM JSON-RPC client for log scanning.

This module provides the chain client used by the scanner with:
- Rotation across a list of RPC endpoints
- A per-call timeout
- Rate limiting to respect provider limits
- Redis caching of block timestamps (keyed by block hash)
- Classification of failures into range-too-large vs transient errors

Retrying is the caller's job: the scanner owns backoff and attempt
counting, so every call here is a single attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from launchpad_indexer.chain.models import RawLog, to_int

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_REQUEST_TIMEOUT_SECONDS = 20.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 10.0
DEFAULT_BLOCK_CACHE_TTL_SECONDS = 86_400

# Matched against the lowercased error text. Rate limiting is checked first
# because providers phrase it as "rate limit exceeded".
RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429", "request limit reached")
RANGE_TOO_LARGE_MARKERS = (
    "range too large",
    "range is too large",
    "range is too wide",
    "range too wide",
    "exceed maximum block range",
    "exceeds maximum block range",
    "max block range",
    "is limited to a",
    "too many results",
    "query returned more than",
    "exceeds max results",
    "response size exceeded",
    "response size should not",
    "max is 1k blocks",
    "entity too large",
    "payload too large",
)
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "service unavailable",
    "503",
    "bad gateway",
    "502",
    "gateway timeout",
    "504",
    "handshake failure",
    "eproto",
    "econnreset",
    "connection reset",
    "cannot connect",
    "disconnected",
    "temporarily unavailable",
    "header not found",
    "pruned",
    "missing trie node",
)


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class TransientRPCError(ChainClientError):
    """Raised for retryable failures (timeouts, rate limits, transport errors)."""


class RangeTooLargeError(ChainClientError):
    """Raised when the provider rejects a getLogs range as too wide."""


def classify_rpc_error(error: BaseException) -> type[ChainClientError]:
    """Map a raw provider/transport exception to the client error taxonomy."""
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, OSError)):
        return TransientRPCError
    message = str(error).lower()
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return TransientRPCError
    if any(marker in message for marker in RANGE_TOO_LARGE_MARKERS):
        return RangeTooLargeError
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return TransientRPCError
    return ChainClientError


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainClient:
    """JSON-RPC client for one chain.

    Example:
        ```python
        client = ChainClient(97, ["https://rpc-a", "https://rpc-b"], redis=redis)
        head = await client.latest_block()
        logs = await client.get_logs(head - 100, head, ["0x..."], [[topic0]])
        await client.aclose()
        ```
    """

    def __init__(
        self,
        chain_id: int,
        rpc_urls: Sequence[str],
        *,
        redis: Redis | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        block_cache_ttl_seconds: int = DEFAULT_BLOCK_CACHE_TTL_SECONDS,
    ) -> None:
        """Initialize the chain client.

        Args:
            chain_id: EVM chain id, used for cache keys and log records.
            rpc_urls: One or more HTTP(S) endpoints, tried in rotation.
            redis: Optional Redis client for block timestamp caching.
            request_timeout_seconds: Timeout applied to every call.
            max_requests_per_second: Rate limit across all endpoints.
            block_cache_ttl_seconds: TTL for cached block timestamps.
        """
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")
        self.chain_id = chain_id
        self._rpc_urls = list(rpc_urls)
        self._redis = redis
        self._timeout = request_timeout_seconds
        self._block_cache_ttl = block_cache_ttl_seconds

        self._clients = [self._new_web3_client(url) for url in self._rpc_urls]
        self._active = 0

        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._cache_prefix = f"launchpad:chain:{chain_id}:"

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
        return client

    @property
    def active_rpc_url(self) -> str:
        return self._rpc_urls[self._active]

    def _rotate(self) -> None:
        if len(self._clients) < 2:
            return
        previous = self.active_rpc_url
        self._active = (self._active + 1) % len(self._clients)
        logger.info(
            "Chain %d: rotating RPC endpoint %s -> %s", self.chain_id, previous, self.active_rpc_url
        )

    async def _call(self, func_name: str, *args: Any) -> Any:
        """Execute one RPC call against the active endpoint.

        Raises:
            RangeTooLargeError: Provider refused the requested range.
            TransientRPCError: Timeout, rate limit or transport failure; the
                client rotates to the next endpoint before raising.
            ChainClientError: Any other provider error.
        """
        await self._rate_limiter.acquire()
        rpc_url = self.active_rpc_url
        method = getattr(self._clients[self._active].eth, func_name)
        try:
            return await asyncio.wait_for(method(*args), timeout=self._timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error_cls = classify_rpc_error(e)
            if error_cls is TransientRPCError:
                logger.warning("Chain %d: %s failed on %s: %s", self.chain_id, func_name, rpc_url, e)
                self._rotate()
            raise error_cls(f"{func_name} failed on {rpc_url}: {e}") from e

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def latest_block(self) -> int:
        """Get the current head block number."""
        return int(await self._call("get_block_number"))

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        addresses: Sequence[str],
        topics: Sequence[Any] | None = None,
    ) -> list[RawLog]:
        """Fetch logs via ``eth_getLogs`` for an inclusive block range."""
        if from_block > to_block:
            raise ValueError("from_block must be <= to_block")
        filter_params: dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": [AsyncWeb3.to_checksum_address(a) for a in addresses],
        }
        if topics:
            filter_params["topics"] = list(topics)
        logs = await self._call("get_logs", filter_params)
        return [RawLog.from_rpc(self.chain_id, log) for log in logs]

    async def get_block_timestamp(self, block_number: int, block_hash: str | None = None) -> int:
        """Get a block's unix timestamp.

        When the hash is known the block is fetched by hash, so a reorged
        block never serves its replacement's timestamp.
        """
        identifier: int | str = block_hash or block_number
        cache_key = f"{self._cache_prefix}block_ts:{identifier}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return int(cached)

        block = await self._call("get_block", identifier)
        timestamp = to_int(block["timestamp"])

        # Blocks addressed by hash are immutable; numbered lookups may reorg.
        ttl = self._block_cache_ttl if block_hash else min(self._block_cache_ttl, 60)
        await self._set_cached(cache_key, str(timestamp), ttl)
        return timestamp

    async def health_check(self) -> bool:
        """Check if the active endpoint answers."""
        try:
            await self.latest_block()
            return True
        except ChainClientError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        for client in self._clients:
            disconnect = getattr(client.provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
