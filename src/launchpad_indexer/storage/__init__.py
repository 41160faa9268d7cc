"""Storage layer - Database schemas and repositories."""

from launchpad_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from launchpad_indexer.storage.models import (
    Base,
    CampaignModel,
    CampaignSummaryModel,
    CurveTradeModel,
    IndexerCursorModel,
    TokenCandleModel,
    VoteModel,
)
from launchpad_indexer.storage.repos import (
    CampaignDTO,
    CampaignRepository,
    CampaignSummaryDTO,
    CampaignSummaryRepository,
    CandleDTO,
    CandleRepository,
    CursorRepository,
    TradeDTO,
    TradeRepository,
    VoteDTO,
    VoteRepository,
)

__all__ = [
    "Base",
    "CampaignDTO",
    "CampaignModel",
    "CampaignRepository",
    "CampaignSummaryDTO",
    "CampaignSummaryModel",
    "CampaignSummaryRepository",
    "CandleDTO",
    "CandleRepository",
    "CurveTradeModel",
    "CursorRepository",
    "DatabaseManager",
    "IndexerCursorModel",
    "TokenCandleModel",
    "TradeDTO",
    "TradeRepository",
    "VoteDTO",
    "VoteModel",
    "VoteRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
