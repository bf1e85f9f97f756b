"""Aggregate feed store: chain -> {recent transfers, all-time distinct count}.

Very small in-memory store. Each chain entry is written only by that chain's
ingest worker and read by the radar animator and the HTTP API through
immutable `FeedSnapshot`s.
"""
from __future__ import annotations
from collections import deque
from decimal import Decimal, InvalidOperation
from typing import Deque, Dict, Iterable, List, Optional, Sequence

from stable_radar.core.custom_types import ChainId, FeedSnapshot, Transfer


class FeedEntry:
    def __init__(self, capacity: int):
        self.recent_transfers: Deque[Transfer] = deque(maxlen=capacity)
        self.total_observed_count = 0
        self.version = 0

    def push(self, transfers: Sequence[Transfer]) -> None:
        if not transfers:
            return
        # deque(maxlen) evicts from the left: oldest first
        self.recent_transfers.extend(transfers)
        self.total_observed_count += len(transfers)
        self.version += 1


class AggregateFeedStore:
    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._entries: Dict[ChainId, FeedEntry] = {}

    def _entry(self, chain_id: ChainId) -> FeedEntry:
        entry = self._entries.get(chain_id)
        if entry is None:
            entry = self._entries[chain_id] = FeedEntry(self.capacity)
        return entry

    def register(self, chain_id: ChainId) -> None:
        self._entry(chain_id)

    def push(self, chain_id: ChainId, transfers: Sequence[Transfer]) -> int:
        """Append newly accepted (already deduplicated) transfers for a chain."""
        entry = self._entry(chain_id)
        entry.push(list(transfers))
        return entry.total_observed_count

    def get_feed(self, chain_id: ChainId) -> FeedSnapshot:
        entry = self._entries.get(chain_id)
        if entry is None:
            return FeedSnapshot(chain_id, (), 0)
        return FeedSnapshot(chain_id, tuple(entry.recent_transfers), entry.total_observed_count)

    def version(self, chain_id: ChainId) -> int:
        """Bumped on every non-empty push; lets readers skip unchanged feeds."""
        entry = self._entries.get(chain_id)
        return entry.version if entry else 0

    def chain_ids(self) -> List[ChainId]:
        return list(self._entries)


def token_amount(amount_raw: str, decimals: int = 6) -> Optional[Decimal]:
    try:
        return Decimal(int(amount_raw)) / (Decimal(10) ** decimals)
    except (TypeError, ValueError, InvalidOperation):
        return None


def filter_by_threshold(transfers: Iterable[Transfer], threshold_usd: float, decimals: int = 6) -> List[Transfer]:
    """Keep transfers whose whole-token amount is at least `threshold_usd`.

    Amounts are truncated to whole units before comparing (a 99.99 USDC
    transfer does not pass a 100 threshold). Unparseable amounts never pass
    a positive threshold.
    """
    if threshold_usd <= 0:
        return list(transfers)
    out = []
    for t in transfers:
        amt = token_amount(t.amount_raw, decimals)
        if amt is not None and int(amt) >= threshold_usd:
            out.append(t)
    return out


__all__ = ['AggregateFeedStore', 'FeedEntry', 'filter_by_threshold', 'token_amount']
