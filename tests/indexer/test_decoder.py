"""Tests for the launchpad event decoder."""

from __future__ import annotations

from dataclasses import replace

import pytest
from web3 import Web3

from launchpad_indexer.indexer.decoder import (
    CAMPAIGN_CREATED,
    TOKENS_PURCHASED,
    TOKENS_SOLD,
    VOTE_CAST,
    DecodeError,
    EventDecoder,
    decode_event_args,
)
from launchpad_indexer.indexer.models import (
    CampaignRegistration,
    ContractRole,
    TradeEvent,
    TradeSide,
    VoteEvent,
)

FACTORY = "0x" + "f1" * 20
TREASURY = "0x" + "7e" * 20
CAMPAIGN = "0x" + "a1" * 20
TOKEN = "0x" + "b1" * 20
CREATOR = "0x" + "c1" * 20
WALLET = "0x" + "d1" * 20
ASSET = "0x" + "e1" * 20
WAD = 10**18


@pytest.fixture
def decoder() -> EventDecoder:
    return EventDecoder()


class TestEventAbis:
    def test_signatures(self) -> None:
        assert CAMPAIGN_CREATED.signature == "CampaignCreated(uint256,address,address,address,string,string)"
        assert TOKENS_PURCHASED.signature == "TokensPurchased(address,uint256,uint256)"
        assert TOKENS_SOLD.signature == "TokensSold(address,uint256,uint256)"
        assert VOTE_CAST.signature == "VoteCast(address,address,address,uint256,bytes32)"

    def test_topic0_is_keccak_of_signature(self) -> None:
        expected = "0x" + bytes(Web3.keccak(text="TokensSold(address,uint256,uint256)")).hex()
        assert TOKENS_SOLD.topic0 == expected
        assert len(TOKENS_SOLD.topic0) == 66

    def test_topics_for_role(self, decoder: EventDecoder) -> None:
        assert decoder.topics_for(ContractRole.CAMPAIGN) == sorted(
            [TOKENS_PURCHASED.topic0, TOKENS_SOLD.topic0]
        )
        assert decoder.topics_for(ContractRole.FACTORY) == [CAMPAIGN_CREATED.topic0]
        assert decoder.topics_for(ContractRole.VOTE_TREASURY) == [VOTE_CAST.topic0]


class TestEventDecoder:
    def test_campaign_created(self, decoder: EventDecoder, logs) -> None:
        log = logs.campaign_created(FACTORY, CAMPAIGN, TOKEN, CREATOR, campaign_id=7, block=10, log_index=2)

        event = decoder.decode(log, ContractRole.FACTORY)

        assert isinstance(event, CampaignRegistration)
        assert event.campaign_address == CAMPAIGN
        assert event.token_address == TOKEN
        assert event.creator_address == CREATOR
        assert event.name == "Moon Token"
        assert event.symbol == "MOON"
        assert event.block_number == 10
        assert event.log_index == 2

    def test_purchase(self, decoder: EventDecoder, logs) -> None:
        log = logs.purchase(CAMPAIGN, WALLET, 2 * WAD, WAD, block=11, log_index=0, timestamp=1_000)

        event = decoder.decode(log, ContractRole.CAMPAIGN)

        assert isinstance(event, TradeEvent)
        assert event.side is TradeSide.BUY
        assert event.campaign_address == CAMPAIGN
        assert event.wallet == WALLET
        assert event.token_amount_raw == 2 * WAD
        assert event.native_amount_raw == WAD
        assert str(event.price_native.normalize()) == "0.5"
        assert event.block_timestamp == 1_000

    def test_sale(self, decoder: EventDecoder, logs) -> None:
        log = logs.sale(CAMPAIGN, WALLET, WAD, 3 * WAD, block=11, log_index=1, timestamp=1_000)

        event = decoder.decode(log, ContractRole.CAMPAIGN)

        assert isinstance(event, TradeEvent)
        assert event.side is TradeSide.SELL
        assert event.token_amount_raw == WAD
        assert event.native_amount_raw == 3 * WAD

    def test_vote(self, decoder: EventDecoder, logs) -> None:
        meta = bytes.fromhex("ab" * 32)
        log = logs.vote(TREASURY, CAMPAIGN, WALLET, ASSET, 5 * WAD, meta=meta, block=12, log_index=0, timestamp=9)

        event = decoder.decode(log, ContractRole.VOTE_TREASURY)

        assert isinstance(event, VoteEvent)
        assert event.campaign_address == CAMPAIGN
        assert event.voter_address == WALLET
        assert event.asset_address == ASSET
        assert event.amount_raw == 5 * WAD
        assert event.meta == "0x" + "ab" * 32

    def test_uint256_amounts_are_exact(self, decoder: EventDecoder, logs) -> None:
        huge = 2**256 - 1
        log = logs.purchase(CAMPAIGN, WALLET, huge, huge - 1, block=1, log_index=0, timestamp=1)
        event = decoder.decode(log, ContractRole.CAMPAIGN)
        assert event.token_amount_raw == huge
        assert event.native_amount_raw == huge - 1

    def test_unknown_topic_is_ignored(self, decoder: EventDecoder, logs) -> None:
        log = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=1, log_index=0, timestamp=1)
        assert decoder.decode(replace(log, topics=("0x" + "00" * 32, *log.topics[1:])), ContractRole.CAMPAIGN) is None
        assert decoder.decode(replace(log, topics=()), ContractRole.CAMPAIGN) is None

    def test_topic_dispatch_is_per_role(self, decoder: EventDecoder, logs) -> None:
        log = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=1, log_index=0, timestamp=1)
        assert decoder.decode(log, ContractRole.FACTORY) is None

    def test_wrong_topic_count(self, decoder: EventDecoder, logs) -> None:
        log = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=1, log_index=0, timestamp=1)
        with pytest.raises(DecodeError, match="topics"):
            decoder.decode(replace(log, topics=log.topics[:1]), ContractRole.CAMPAIGN)

    def test_truncated_data(self, logs) -> None:
        log = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=1, log_index=0, timestamp=1)
        with pytest.raises(DecodeError):
            decode_event_args(TOKENS_PURCHASED, replace(log, data=log.data[:40]))

    def test_trade_requires_timestamp(self, decoder: EventDecoder, logs) -> None:
        log = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=1, log_index=0)
        with pytest.raises(DecodeError, match="timestamp"):
            decoder.decode(log, ContractRole.CAMPAIGN)

    def test_registration_does_not_need_timestamp(self, decoder: EventDecoder, logs) -> None:
        log = logs.campaign_created(FACTORY, CAMPAIGN, TOKEN, CREATOR, block=1, log_index=0)
        assert isinstance(decoder.decode(log, ContractRole.FACTORY), CampaignRegistration)


class TestDecodeBatch:
    def test_sorts_and_skips_malformed(self, decoder: EventDecoder, logs) -> None:
        good_late = logs.sale(CAMPAIGN, WALLET, WAD, WAD, block=5, log_index=1, timestamp=15)
        good_early = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=5, log_index=0, timestamp=15)
        bad = logs.purchase(CAMPAIGN, WALLET, WAD, WAD, block=4, log_index=0, timestamp=12)
        bad = replace(bad, data="0x1234")
        unknown = replace(good_early, log_index=3, topics=("0x" + "99" * 32,))

        batch = decoder.decode_batch([good_late, bad, unknown, good_early], ContractRole.CAMPAIGN)

        assert [t.position for t in batch.trades] == [(5, 0), (5, 1)]
        assert batch.skipped == 1
        assert batch.registrations == []
        assert batch.votes == []
