"""
Custom Type Definitions
-----------------------

Centralized value types shared by the ingest side and the radar side.

- ChainDescriptor: immutable description of one monitored chain.
- RawLog: one undecoded Transfer log as returned by the indexer.
- Transfer: a decoded, deduplicated token movement. Immutable.
- CursorState: how far ingestion has progressed on one chain.
- FeedSnapshot: read-only view of a chain's feed handed to consumers.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# A chain is addressed by its EVM chain id everywhere (1, 8453, 137, ...).
ChainId = int


@dataclass(frozen=True)
class ChainDescriptor:
    chain_id: ChainId
    key: str
    display_name: str
    color: str
    contract_address: str
    endpoint: str
    block_time_sec: float
    explorer_url: str = ""
    token_decimals: int = 6
    enabled: bool = True

    def tx_url(self, transaction_id: str) -> str:
        return f"{self.explorer_url}{transaction_id}"


@dataclass(frozen=True)
class RawLog:
    transaction_id: str
    block_number: int
    address: str
    topics: Tuple[str, ...]
    data: str = "0x"
    # None when the indexer did not return the block header
    block_timestamp_ms: Optional[int] = None


@dataclass(frozen=True)
class DecodedTransfer:
    sender: str
    recipient: str
    amount_raw: str


@dataclass(frozen=True)
class Transfer:
    transaction_id: str
    block_number: int
    sender: str
    recipient: str
    amount_raw: str
    observed_at_ms: int
    chain_id: ChainId
    block_timestamp_ms: Optional[int] = None

    @property
    def event_time_ms(self) -> int:
        """Block time when known, otherwise the time we ingested it."""
        return self.block_timestamp_ms if self.block_timestamp_ms is not None else self.observed_at_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionHash": self.transaction_id,
            "blockNumber": self.block_number,
            "from": self.sender,
            "to": self.recipient,
            "value": self.amount_raw,
            "observedAt": self.observed_at_ms,
            "blockTimestamp": self.block_timestamp_ms,
            "chainId": self.chain_id,
        }


@dataclass
class CursorState:
    last_queried_block: Optional[int] = None
    last_known_height: Optional[int] = None


@dataclass(frozen=True)
class QueryResult:
    events: List[RawLog]
    next_block: Optional[int]
    archive_height: Optional[int]


@dataclass(frozen=True)
class FeedSnapshot:
    chain_id: ChainId
    recent_transfers: Tuple[Transfer, ...]
    total_observed_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "transactions": [t.to_dict() for t in self.recent_transfers],
            "count": len(self.recent_transfers),
            "totalTransactions": self.total_observed_count,
        }


@dataclass
class IngestResult:
    chain_id: ChainId
    accepted: List[Transfer] = field(default_factory=list)
    duplicates: int = 0
    decode_failures: int = 0
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    cursor_after: Optional[int] = None
    error: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None
