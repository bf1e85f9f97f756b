"""Per-radar transfer volume rate (token units per second) and display formatting."""
from __future__ import annotations
import statistics
from collections import deque
from typing import Deque, Iterable, Optional

from stable_radar.core.custom_types import Transfer


class VolumeRateTracker:
    """Mean of per-batch volume rates over the last `max_samples` batches.

    Each batch of newly displayed transfers yields one sample:
    whole-token volume / max(time span of the batch, block time).
    """

    def __init__(self, block_time_sec: float, max_samples: int = 100, decimals: int = 6, warmup_sec: float = 5.0):
        self.block_time_sec = float(block_time_sec)
        self.decimals = decimals
        self.warmup_sec = float(warmup_sec)
        self.samples: Deque[float] = deque(maxlen=max_samples)
        self.total_volume = 0
        self.total_time = 0.0
        self.started_at: Optional[float] = None

    def start(self, now: float) -> None:
        if self.started_at is None:
            self.started_at = now

    def record(self, transfers: Iterable[Transfer], now: Optional[float] = None) -> Optional[float]:
        if now is not None:
            self.start(now)
        volume = 0
        oldest = newest = None
        count = 0
        for tx in transfers:
            try:
                volume += int(tx.amount_raw) // (10 ** self.decimals)
            except (TypeError, ValueError):
                continue
            ts = tx.event_time_ms
            oldest = ts if oldest is None else min(oldest, ts)
            newest = ts if newest is None else max(newest, ts)
            count += 1
        if count == 0:
            return None
        span = max((newest - oldest) / 1000.0, self.block_time_sec)
        rate = volume / span
        self.samples.append(rate)
        self.total_volume += volume
        self.total_time += span
        return rate

    @property
    def average(self) -> float:
        return statistics.fmean(self.samples) if self.samples else 0.0

    def warming_up(self, now: float) -> bool:
        return self.started_at is None or (now - self.started_at) < self.warmup_sec

    def label(self, now: float) -> Optional[str]:
        """None while warming up (the UI shows a spinner), else a compact rate."""
        if self.warming_up(now):
            return None
        return format_rate(self.average)


def format_rate(value: float) -> str:
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}k"
    if value >= 1:
        return f"{value:.0f}"
    if value > 0:
        return f"{value:.1f}"
    return "0"


def format_usdc(amount_raw: str, decimals: int = 6) -> str:
    try:
        units = int(amount_raw) // (10 ** decimals)
    except (TypeError, ValueError):
        return "Unknown"
    return f"${units:,} USDC"


__all__ = ['VolumeRateTracker', 'format_rate', 'format_usdc']
