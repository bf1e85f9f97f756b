"""Per-chain mutable state, owned by exactly one chain worker."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from stable_radar.core.bounded import BoundedSeenSet
from stable_radar.core.custom_types import ChainDescriptor, CursorState

# callback(chain_id, new_height)
HeightListener = Callable[[int, int], Any]


@dataclass
class ChainState:
    chain: ChainDescriptor
    seen: BoundedSeenSet
    cursor: CursorState = field(default_factory=CursorState)
    poll_in_flight: bool = False
    fetch_in_flight: bool = False
    # most recent error only; overwritten, cleared by the next good fetch
    last_error: Optional[str] = None
    loading: bool = True
    heavy_queries: int = 0
    last_debug: Dict[str, Any] = field(default_factory=dict)
    height_listeners: List[HeightListener] = field(default_factory=list)

    @classmethod
    def create(cls, chain: ChainDescriptor, seen_ceiling: int = 10_000) -> "ChainState":
        return cls(chain=chain, seen=BoundedSeenSet(seen_ceiling))

    @property
    def busy(self) -> bool:
        return self.poll_in_flight or self.fetch_in_flight

    def snapshot(self) -> Dict[str, Any]:
        return {
            'chain': self.chain.display_name,
            'chainId': self.chain.chain_id,
            'lastQueriedBlock': self.cursor.last_queried_block,
            'lastKnownHeight': self.cursor.last_known_height,
            'seen': len(self.seen),
            'heavyQueries': self.heavy_queries,
            'loading': self.loading,
            'error': self.last_error,
        }


__all__ = ['ChainState', 'HeightListener']
