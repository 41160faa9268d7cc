"""Data models for raw chain logs."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any


def to_hex(value: Any) -> str:
    """Render bytes-like RPC values as 0x-prefixed lowercase hex."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def to_int(value: Any) -> int:
    """Accept ints and 0x-prefixed hex quantities."""
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


@dataclass(frozen=True)
class RawLog:
    """One ``eth_getLogs`` entry, normalized.

    Addresses and hashes are lowercase 0x-hex. ``block_timestamp`` is unix
    seconds and is filled in by the scanner before decoding.
    """

    chain_id: int
    address: str
    block_number: int
    block_hash: str
    tx_hash: str
    log_index: int
    topics: tuple[str, ...]
    data: str
    block_timestamp: int | None = None

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def with_timestamp(self, block_timestamp: int) -> RawLog:
        return dataclasses.replace(self, block_timestamp=block_timestamp)

    @classmethod
    def from_rpc(cls, chain_id: int, log: Any) -> RawLog:
        """Build from a web3 log (AttributeDict) or a plain JSON-RPC dict."""
        timestamp = log.get("blockTimestamp")
        return cls(
            chain_id=chain_id,
            address=str(log["address"]).lower(),
            block_number=to_int(log["blockNumber"]),
            block_hash=to_hex(log["blockHash"]),
            tx_hash=to_hex(log["transactionHash"]),
            log_index=to_int(log["logIndex"]),
            topics=tuple(to_hex(t) for t in log.get("topics", ())),
            data=to_hex(log.get("data", b"")),
            block_timestamp=to_int(timestamp) if timestamp is not None else None,
        )
