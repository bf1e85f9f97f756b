"""Insertion-ordered identifier set with a hard size ceiling.

Used for per-chain transaction dedup and for the radar's displayed-id
memory. When an insert pushes the size past the ceiling the set is cut back
to the most recently inserted half, so the size never exceeds the ceiling.
A very old id dropped by a cut may be accepted again if it ever reappears;
that is the price of bounded memory.
"""
from __future__ import annotations
from typing import Dict, Hashable, Iterable, Iterator, List, Optional


class BoundedSeenSet:
    def __init__(self, ceiling: int, keep: Optional[int] = None):
        if ceiling <= 1:
            raise ValueError("ceiling must be > 1")
        self._ceiling = ceiling
        self._keep = keep if keep is not None else ceiling // 2
        if not 0 < self._keep <= ceiling:
            raise ValueError("keep must be in (0, ceiling]")
        # dict preserves insertion order; values unused
        self._items: Dict[Hashable, None] = {}
        self.truncations = 0

    def add(self, item: Hashable) -> bool:
        """Insert an id. Returns False if it was already present."""
        if item in self._items:
            return False
        self._items[item] = None
        if len(self._items) > self._ceiling:
            self.truncate()
        return True

    def update(self, items: Iterable[Hashable]) -> int:
        return sum(1 for i in items if self.add(i))

    def truncate(self) -> int:
        """Drop all but the newest `keep` ids. Returns how many were dropped."""
        excess = len(self._items) - self._keep
        if excess <= 0:
            return 0
        recent: List[Hashable] = list(self._items)[excess:]
        self._items = dict.fromkeys(recent)
        self.truncations += 1
        return excess

    @property
    def ceiling(self) -> int:
        return self._ceiling

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._items)


__all__ = ["BoundedSeenSet"]
