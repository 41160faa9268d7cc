"""Chain access layer - JSON-RPC client and raw log records."""

from launchpad_indexer.chain.client import (
    ChainClient,
    ChainClientError,
    RangeTooLargeError,
    TransientRPCError,
)
from launchpad_indexer.chain.models import RawLog

__all__ = [
    "ChainClient",
    "ChainClientError",
    "RangeTooLargeError",
    "RawLog",
    "TransientRPCError",
]
