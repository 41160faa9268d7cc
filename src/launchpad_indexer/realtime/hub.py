"""Redis-backed realtime hub.

Publishes JSON messages over Redis pub/sub and issues short-lived,
channel-scoped subscribe tokens that a websocket gateway can resolve.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_KEY_PREFIX = "launchpad:realtime:token:"
SUBSCRIBE_CAPABILITY = "subscribe"


class RealtimeError(Exception):
    """Raised when the hub cannot publish or manage tokens."""


@dataclass(frozen=True)
class SubscribeToken:
    """An opaque token granting ``subscribe`` on exactly one channel."""

    token: str
    channel: str
    expires_at: int
    ttl_seconds: int
    capabilities: tuple[str, ...] = field(default=(SUBSCRIBE_CAPABILITY,))

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "channel": self.channel,
            "capabilities": list(self.capabilities),
            "expires_at": self.expires_at,
            "ttl_seconds": self.ttl_seconds,
        }


class RedisRealtimeHub:
    """Realtime hub over Redis pub/sub.

    Example:
        ```python
        hub = RedisRealtimeHub(redis)
        await hub.publish("token:97:0xabc...", {"type": "trade", ...})
        grant = await hub.issue_subscribe_token("token:97:0xabc...", ttl_seconds=3600)
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        token_key_prefix: str = DEFAULT_TOKEN_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._token_key_prefix = token_key_prefix
        self._clock = clock

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """Publish one message; returns the number of receiving subscribers."""
        message = json.dumps(payload, separators=(",", ":"), default=str)
        try:
            receivers = await self._redis.publish(channel, message)
        except Exception as e:
            raise RealtimeError(f"Publish to {channel} failed: {e}") from e
        return int(receivers or 0)

    async def issue_subscribe_token(self, channel: str, ttl_seconds: int) -> SubscribeToken:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        grant = SubscribeToken(
            token=secrets.token_urlsafe(32),
            channel=channel,
            expires_at=int(self._clock()) + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        try:
            await self._redis.set(
                f"{self._token_key_prefix}{grant.token}",
                json.dumps(grant.to_dict()),
                ex=ttl_seconds,
            )
        except Exception as e:
            raise RealtimeError(f"Failed to store subscribe token: {e}") from e
        return grant

    async def resolve_subscribe_token(self, token: str) -> SubscribeToken | None:
        """Look up a token; None when unknown or expired."""
        try:
            raw = await self._redis.get(f"{self._token_key_prefix}{token}")
        except Exception as e:
            raise RealtimeError(f"Failed to resolve subscribe token: {e}") from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        data = json.loads(raw)
        return SubscribeToken(
            token=data["token"],
            channel=data["channel"],
            expires_at=int(data["expires_at"]),
            ttl_seconds=int(data["ttl_seconds"]),
            capabilities=tuple(data.get("capabilities", (SUBSCRIBE_CAPABILITY,))),
        )
