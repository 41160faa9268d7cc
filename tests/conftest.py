"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest
from eth_abi import encode
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from launchpad_indexer.chain.models import RawLog
from launchpad_indexer.indexer.decoder import (
    CAMPAIGN_CREATED,
    TOKENS_PURCHASED,
    TOKENS_SOLD,
    VOTE_CAST,
    EventAbi,
)
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.models import Base

CHAIN_ID = 97
BASE_TIMESTAMP = 1_700_000_000


def block_time(block_number: int) -> int:
    """Deterministic block time used by the fake chain: 3s blocks."""
    return BASE_TIMESTAMP + block_number * 3


class LogBuilder:
    """Builds ABI-encoded raw logs for the launchpad events."""

    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        self.chain_id = chain_id

    def log(
        self,
        address: str,
        abi: EventAbi,
        values: dict[str, Any],
        *,
        block: int,
        log_index: int,
        tx_hash: str | None = None,
        block_hash: str | None = None,
        timestamp: int | None = None,
    ) -> RawLog:
        topics = [abi.topic0]
        plain_types: list[str] = []
        plain_values: list[Any] = []
        for item in abi.inputs:
            if item.indexed:
                topics.append("0x" + encode([item.type], [values[item.name]]).hex())
            else:
                plain_types.append(item.type)
                plain_values.append(values[item.name])
        return RawLog(
            chain_id=self.chain_id,
            address=address.lower(),
            block_number=block,
            block_hash=block_hash or "0x" + f"{block:064x}",
            tx_hash=tx_hash or "0x" + f"{block:032x}{log_index:032x}",
            log_index=log_index,
            topics=tuple(topics),
            data="0x" + encode(plain_types, plain_values).hex(),
            block_timestamp=timestamp,
        )

    def campaign_created(
        self,
        factory: str,
        campaign: str,
        token: str,
        creator: str,
        *,
        campaign_id: int = 1,
        name: str = "Moon Token",
        symbol: str = "MOON",
        **kwargs: Any,
    ) -> RawLog:
        return self.log(
            factory,
            CAMPAIGN_CREATED,
            {
                "id": campaign_id,
                "campaign": campaign,
                "token": token,
                "creator": creator,
                "name": name,
                "symbol": symbol,
            },
            **kwargs,
        )

    def purchase(self, campaign: str, buyer: str, amount_out: int, cost: int, **kwargs: Any) -> RawLog:
        return self.log(
            campaign,
            TOKENS_PURCHASED,
            {"buyer": buyer, "amountOut": amount_out, "cost": cost},
            **kwargs,
        )

    def sale(self, campaign: str, seller: str, amount_in: int, payout: int, **kwargs: Any) -> RawLog:
        return self.log(
            campaign,
            TOKENS_SOLD,
            {"seller": seller, "amountIn": amount_in, "payout": payout},
            **kwargs,
        )

    def vote(
        self,
        treasury: str,
        campaign: str,
        voter: str,
        asset: str,
        amount: int,
        *,
        meta: bytes = b"\x00" * 32,
        **kwargs: Any,
    ) -> RawLog:
        return self.log(
            treasury,
            VOTE_CAST,
            {"campaign": campaign, "voter": voter, "asset": asset, "amount": amount, "meta": meta},
            **kwargs,
        )


class FakeChainClient:
    """In-memory chain: serves stored logs by range, address and topic0."""

    def __init__(self, chain_id: int = CHAIN_ID, head: int = 0) -> None:
        self.chain_id = chain_id
        self.head = head
        self.logs: list[RawLog] = []
        self.get_logs_calls: list[tuple[int, int]] = []
        self.closed = False

    block_time = staticmethod(block_time)

    def add(self, *logs: RawLog) -> None:
        self.logs.extend(logs)

    def remove(self, predicate: Any) -> None:
        self.logs = [log for log in self.logs if not predicate(log)]

    async def latest_block(self) -> int:
        return self.head

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        addresses: Sequence[str],
        topics: Sequence[Any] | None = None,
    ) -> list[RawLog]:
        self.get_logs_calls.append((from_block, to_block))
        wanted = {a.lower() for a in addresses}
        topic0s = set(topics[0]) if topics else None
        return [
            log
            for log in self.logs
            if from_block <= log.block_number <= to_block
            and log.address in wanted
            and (topic0s is None or log.topic0 in topic0s)
        ]

    async def get_block_timestamp(self, block_number: int, block_hash: str | None = None) -> int:
        return block_time(block_number)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def logs() -> LogBuilder:
    """Raw log builder for the default test chain."""
    return LogBuilder()


@pytest.fixture
def fake_chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def db(tmp_path) -> DatabaseManager:
    """File-backed SQLite database manager with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()
