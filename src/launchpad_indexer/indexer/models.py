"""Domain models for decoded launchpad events and derived candles."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from launchpad_indexer.storage.repos import (
    STATUS_CONFIRMED,
    CampaignDTO,
    CampaignSummaryDTO,
    CandleDTO,
    TradeDTO,
    VoteDTO,
)
from launchpad_indexer.units import from_raw, price_from_raw

Position = tuple[int, int]


class ContractRole(str, Enum):
    """Which contract shape a log came from."""

    FACTORY = "factory"
    CAMPAIGN = "campaign"
    VOTE_TREASURY = "vote_treasury"


class CursorFamily(str, Enum):
    """Contract families that share one scan cursor per chain."""

    FACTORY = "factory"
    CAMPAIGNS = "campaigns"
    VOTE_TREASURY = "vote_treasury"

    @property
    def role(self) -> ContractRole:
        return {
            CursorFamily.FACTORY: ContractRole.FACTORY,
            CursorFamily.CAMPAIGNS: ContractRole.CAMPAIGN,
            CursorFamily.VOTE_TREASURY: ContractRole.VOTE_TREASURY,
        }[self]


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    ORPHANED = "orphaned"


@dataclass(frozen=True)
class CampaignRegistration:
    """A campaign announced by the launch factory."""

    chain_id: int
    campaign_address: str
    token_address: str
    creator_address: str
    name: str
    symbol: str
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def position(self) -> Position:
        return (self.block_number, self.log_index)

    def to_dto(self) -> CampaignDTO:
        return CampaignDTO(
            chain_id=self.chain_id,
            campaign_address=self.campaign_address,
            token_address=self.token_address,
            creator_address=self.creator_address,
            name=self.name,
            symbol=self.symbol,
            created_block=self.block_number,
        )


@dataclass(frozen=True)
class TradeEvent:
    """A bonding-curve buy or sell.

    Amounts are kept as raw wei-scaled integers; the 18-decimal values and
    the price are always derived from them, so a trade rebuilt from storage
    compares equal to the one decoded from the chain.
    """

    chain_id: int
    campaign_address: str
    tx_hash: str
    log_index: int
    block_number: int
    block_hash: str
    block_timestamp: int
    side: TradeSide
    wallet: str
    token_amount_raw: int
    native_amount_raw: int

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.log_index)

    @property
    def position(self) -> Position:
        return (self.block_number, self.log_index)

    @property
    def token_amount(self) -> Decimal:
        return from_raw(self.token_amount_raw)

    @property
    def native_amount(self) -> Decimal:
        return from_raw(self.native_amount_raw)

    @property
    def price_native(self) -> Decimal | None:
        return price_from_raw(self.native_amount_raw, self.token_amount_raw)

    def to_dto(self, status: str = STATUS_CONFIRMED) -> TradeDTO:
        return TradeDTO(
            chain_id=self.chain_id,
            tx_hash=self.tx_hash,
            log_index=self.log_index,
            campaign_address=self.campaign_address,
            block_number=self.block_number,
            block_hash=self.block_hash,
            block_timestamp=self.block_timestamp,
            side=self.side.value,
            wallet_address=self.wallet,
            token_amount_raw=str(self.token_amount_raw),
            native_amount_raw=str(self.native_amount_raw),
            token_amount=self.token_amount,
            native_amount=self.native_amount,
            price_native=self.price_native,
            status=status,
        )

    @classmethod
    def from_dto(cls, dto: TradeDTO) -> TradeEvent:
        return cls(
            chain_id=dto.chain_id,
            campaign_address=dto.campaign_address,
            tx_hash=dto.tx_hash,
            log_index=dto.log_index,
            block_number=dto.block_number,
            block_hash=dto.block_hash,
            block_timestamp=dto.block_timestamp,
            side=TradeSide(dto.side),
            wallet=dto.wallet_address,
            token_amount_raw=int(dto.token_amount_raw),
            native_amount_raw=int(dto.native_amount_raw),
        )


@dataclass(frozen=True)
class VoteEvent:
    """A vote cast through the vote treasury."""

    chain_id: int
    campaign_address: str
    voter_address: str
    asset_address: str
    amount_raw: int
    tx_hash: str
    log_index: int
    block_number: int
    block_hash: str
    block_timestamp: int
    meta: str

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.log_index)

    @property
    def position(self) -> Position:
        return (self.block_number, self.log_index)

    def to_dto(self, status: str = STATUS_CONFIRMED) -> VoteDTO:
        return VoteDTO(
            chain_id=self.chain_id,
            tx_hash=self.tx_hash,
            log_index=self.log_index,
            campaign_address=self.campaign_address,
            voter_address=self.voter_address,
            asset_address=self.asset_address,
            amount_raw=str(self.amount_raw),
            block_number=self.block_number,
            block_hash=self.block_hash,
            block_timestamp=self.block_timestamp,
            meta=self.meta,
            status=status,
        )

    @classmethod
    def from_dto(cls, dto: VoteDTO) -> VoteEvent:
        return cls(
            chain_id=dto.chain_id,
            campaign_address=dto.campaign_address,
            voter_address=dto.voter_address,
            asset_address=dto.asset_address,
            amount_raw=int(dto.amount_raw),
            tx_hash=dto.tx_hash,
            log_index=dto.log_index,
            block_number=dto.block_number,
            block_hash=dto.block_hash,
            block_timestamp=dto.block_timestamp,
            meta=dto.meta,
        )


@dataclass(frozen=True)
class Candle:
    """One OHLCV bucket for a (campaign, timeframe)."""

    chain_id: int
    campaign_address: str
    timeframe: str
    bucket_start: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume_native: Decimal
    trade_count: int
    first_position: Position
    last_position: Position

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.campaign_address, self.timeframe, self.bucket_start)

    def to_dto(self) -> CandleDTO:
        return CandleDTO(
            chain_id=self.chain_id,
            campaign_address=self.campaign_address,
            timeframe=self.timeframe,
            bucket_start=self.bucket_start,
            open_price=self.open,
            high_price=self.high,
            low_price=self.low,
            close_price=self.close,
            volume_native=self.volume_native,
            trade_count=self.trade_count,
            first_block_number=self.first_position[0],
            first_log_index=self.first_position[1],
            last_block_number=self.last_position[0],
            last_log_index=self.last_position[1],
        )

    @classmethod
    def from_dto(cls, dto: CandleDTO) -> Candle:
        return cls(
            chain_id=dto.chain_id,
            campaign_address=dto.campaign_address,
            timeframe=dto.timeframe,
            bucket_start=dto.bucket_start,
            open=dto.open_price,
            high=dto.high_price,
            low=dto.low_price,
            close=dto.close_price,
            volume_native=dto.volume_native,
            trade_count=dto.trade_count,
            first_position=(dto.first_block_number, dto.first_log_index),
            last_position=(dto.last_block_number, dto.last_log_index),
        )


@dataclass
class DecodedBatch:
    """Decoder output for one scan window, in chain order."""

    registrations: list[CampaignRegistration] = field(default_factory=list)
    trades: list[TradeEvent] = field(default_factory=list)
    votes: list[VoteEvent] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ScanBatch:
    """Everything one scan window produced for one cursor family."""

    chain_id: int
    family: CursorFamily
    from_block: int
    to_block: int
    addresses: list[str]
    registrations: list[CampaignRegistration] = field(default_factory=list)
    trades: list[TradeEvent] = field(default_factory=list)
    votes: list[VoteEvent] = field(default_factory=list)
    repair: bool = False


@dataclass
class CommitResult:
    """What a committed batch changed; drives realtime publishing."""

    chain_id: int
    family: CursorFamily
    from_block: int
    to_block: int
    new_campaigns: list[CampaignRegistration] = field(default_factory=list)
    trades: list[TradeEvent] = field(default_factory=list)
    votes: list[VoteEvent] = field(default_factory=list)
    orphaned_trades: list[TradeEvent] = field(default_factory=list)
    orphaned_votes: list[VoteEvent] = field(default_factory=list)
    candles: list[Candle] = field(default_factory=list)
    summaries: list[CampaignSummaryDTO] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_campaigns
            or self.trades
            or self.votes
            or self.orphaned_trades
            or self.orphaned_votes
        )
