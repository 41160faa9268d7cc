"""Indexer pipeline - scanning, decoding, persistence and candles."""

from launchpad_indexer.indexer.candles import (
    CandleAggregator,
    Coverage,
    Timeframe,
    apply_trade,
    build_candles,
    parse_timeframes,
)
from launchpad_indexer.indexer.decoder import (
    DEFAULT_EVENT_ABIS,
    DecodeError,
    EventAbi,
    EventDecoder,
    EventInput,
)
from launchpad_indexer.indexer.models import (
    CampaignRegistration,
    Candle,
    CommitResult,
    ContractRole,
    CursorFamily,
    DecodedBatch,
    EventStatus,
    ScanBatch,
    TradeEvent,
    TradeSide,
    VoteEvent,
)
from launchpad_indexer.indexer.scanner import ChunkedLogScanner, ScanAbortedError, ScanWindow
from launchpad_indexer.indexer.service import ChainIndexer, CursorLocks, CycleReport
from launchpad_indexer.indexer.store import EventStore

__all__ = [
    "DEFAULT_EVENT_ABIS",
    "CampaignRegistration",
    "Candle",
    "CandleAggregator",
    "ChainIndexer",
    "ChunkedLogScanner",
    "CommitResult",
    "ContractRole",
    "Coverage",
    "CursorFamily",
    "CursorLocks",
    "CycleReport",
    "DecodeError",
    "DecodedBatch",
    "EventAbi",
    "EventDecoder",
    "EventInput",
    "EventStatus",
    "EventStore",
    "ScanAbortedError",
    "ScanBatch",
    "ScanWindow",
    "Timeframe",
    "TradeEvent",
    "TradeSide",
    "VoteEvent",
    "apply_trade",
    "build_candles",
    "parse_timeframes",
]
