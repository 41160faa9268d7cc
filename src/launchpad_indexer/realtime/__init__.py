"""Realtime layer - Redis pub/sub publishing and subscribe tokens."""

from launchpad_indexer.realtime.hub import RealtimeError, RedisRealtimeHub, SubscribeToken
from launchpad_indexer.realtime.publisher import RealtimePublisher, channel_name

__all__ = [
    "RealtimeError",
    "RealtimePublisher",
    "RedisRealtimeHub",
    "SubscribeToken",
    "channel_name",
]
