"""Event decoder for launchpad contract logs.

Turns raw logs into typed domain events using each contract's event
shapes. Dispatch is by (contract role, topic0); a log whose topic0 is not
known for its role is ignored, and a log with a known topic0 but
malformed payload is logged and skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from launchpad_indexer.chain.models import RawLog, to_hex
from launchpad_indexer.indexer.models import (
    CampaignRegistration,
    ContractRole,
    DecodedBatch,
    TradeEvent,
    TradeSide,
    VoteEvent,
)

logger = logging.getLogger(__name__)

DecodedEvent = CampaignRegistration | TradeEvent | VoteEvent


class DecodeError(Exception):
    """Raised when a recognized log cannot be decoded."""


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventAbi:
    """Solidity event shape, enough to compute topic0 and decode args."""

    name: str
    role: ContractRole
    inputs: tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic0(self) -> str:
        return "0x" + bytes(Web3.keccak(text=self.signature)).hex()


CAMPAIGN_CREATED = EventAbi(
    name="CampaignCreated",
    role=ContractRole.FACTORY,
    inputs=(
        EventInput("id", "uint256", indexed=True),
        EventInput("campaign", "address", indexed=True),
        EventInput("token", "address", indexed=True),
        EventInput("creator", "address"),
        EventInput("name", "string"),
        EventInput("symbol", "string"),
    ),
)

TOKENS_PURCHASED = EventAbi(
    name="TokensPurchased",
    role=ContractRole.CAMPAIGN,
    inputs=(
        EventInput("buyer", "address", indexed=True),
        EventInput("amountOut", "uint256"),
        EventInput("cost", "uint256"),
    ),
)

TOKENS_SOLD = EventAbi(
    name="TokensSold",
    role=ContractRole.CAMPAIGN,
    inputs=(
        EventInput("seller", "address", indexed=True),
        EventInput("amountIn", "uint256"),
        EventInput("payout", "uint256"),
    ),
)

VOTE_CAST = EventAbi(
    name="VoteCast",
    role=ContractRole.VOTE_TREASURY,
    inputs=(
        EventInput("campaign", "address", indexed=True),
        EventInput("voter", "address", indexed=True),
        EventInput("asset", "address", indexed=True),
        EventInput("amount", "uint256"),
        EventInput("meta", "bytes32"),
    ),
)

DEFAULT_EVENT_ABIS: tuple[EventAbi, ...] = (CAMPAIGN_CREATED, TOKENS_PURCHASED, TOKENS_SOLD, VOTE_CAST)


def decode_event_args(abi: EventAbi, log: RawLog) -> dict[str, Any]:
    """Decode indexed args from topics[1:] and the rest from data."""
    indexed = [i for i in abi.inputs if i.indexed]
    plain = [i for i in abi.inputs if not i.indexed]
    if len(log.topics) != 1 + len(indexed):
        raise DecodeError(
            f"{abi.name}: expected {1 + len(indexed)} topics, got {len(log.topics)}"
        )
    try:
        args: dict[str, Any] = {}
        for item, topic in zip(indexed, log.topics[1:], strict=True):
            (args[item.name],) = abi_decode([item.type], bytes.fromhex(topic[2:]))
        data = bytes.fromhex(log.data[2:]) if log.data.startswith("0x") else bytes.fromhex(log.data)
        values = abi_decode([i.type for i in plain], data)
        args.update(zip((i.name for i in plain), values, strict=True))
    except (DecodingError, ValueError, TypeError) as e:
        raise DecodeError(f"{abi.name}: {e}") from e
    return args


class EventDecoder:
    """Maps raw logs to typed events.

    Example:
        ```python
        decoder = EventDecoder()
        topics = decoder.topics_for(ContractRole.CAMPAIGN)
        batch = decoder.decode_batch(logs, ContractRole.CAMPAIGN)
        ```
    """

    def __init__(self, abis: Iterable[EventAbi] = DEFAULT_EVENT_ABIS) -> None:
        self._abis: dict[tuple[ContractRole, str], EventAbi] = {}
        for abi in abis:
            self._abis[(abi.role, abi.topic0)] = abi

    def topics_for(self, role: ContractRole) -> list[str]:
        """topic0 values this decoder recognizes for a contract role."""
        return sorted(topic for (r, topic) in self._abis if r == role)

    def decode(self, log: RawLog, role: ContractRole) -> DecodedEvent | None:
        """Decode one log.

        Returns:
            The typed event, or None when topic0 is not known for ``role``.

        Raises:
            DecodeError: The topic is known but the payload is malformed.
        """
        topic0 = log.topic0
        if topic0 is None:
            return None
        abi = self._abis.get((role, topic0.lower()))
        if abi is None:
            return None

        args = decode_event_args(abi, log)
        if abi is CAMPAIGN_CREATED or abi.name == CAMPAIGN_CREATED.name:
            return CampaignRegistration(
                chain_id=log.chain_id,
                campaign_address=str(args["campaign"]).lower(),
                token_address=str(args["token"]).lower(),
                creator_address=str(args["creator"]).lower(),
                name=str(args["name"]),
                symbol=str(args["symbol"]),
                block_number=log.block_number,
                tx_hash=log.tx_hash,
                log_index=log.log_index,
            )

        if log.block_timestamp is None:
            raise DecodeError(f"{abi.name}: block timestamp not resolved")

        if abi.name in (TOKENS_PURCHASED.name, TOKENS_SOLD.name):
            buy = abi.name == TOKENS_PURCHASED.name
            return TradeEvent(
                chain_id=log.chain_id,
                campaign_address=log.address,
                tx_hash=log.tx_hash,
                log_index=log.log_index,
                block_number=log.block_number,
                block_hash=log.block_hash,
                block_timestamp=log.block_timestamp,
                side=TradeSide.BUY if buy else TradeSide.SELL,
                wallet=str(args["buyer" if buy else "seller"]).lower(),
                token_amount_raw=int(args["amountOut" if buy else "amountIn"]),
                native_amount_raw=int(args["cost" if buy else "payout"]),
            )

        if abi.name == VOTE_CAST.name:
            return VoteEvent(
                chain_id=log.chain_id,
                campaign_address=str(args["campaign"]).lower(),
                voter_address=str(args["voter"]).lower(),
                asset_address=str(args["asset"]).lower(),
                amount_raw=int(args["amount"]),
                tx_hash=log.tx_hash,
                log_index=log.log_index,
                block_number=log.block_number,
                block_hash=log.block_hash,
                block_timestamp=log.block_timestamp,
                meta=to_hex(args["meta"]),
            )

        raise DecodeError(f"No decoder for event {abi.name}")

    def decode_batch(self, logs: Sequence[RawLog], role: ContractRole) -> DecodedBatch:
        """Decode a window of logs in chain order, skipping malformed entries."""
        batch = DecodedBatch()
        for log in sorted(logs, key=lambda entry: entry.position):
            try:
                event = self.decode(log, role)
            except DecodeError as e:
                batch.skipped += 1
                logger.warning(
                    "Skipping undecodable log chain=%d tx=%s index=%d: %s",
                    log.chain_id,
                    log.tx_hash,
                    log.log_index,
                    e,
                )
                continue
            if isinstance(event, CampaignRegistration):
                batch.registrations.append(event)
            elif isinstance(event, TradeEvent):
                batch.trades.append(event)
            elif isinstance(event, VoteEvent):
                batch.votes.append(event)
        return batch
