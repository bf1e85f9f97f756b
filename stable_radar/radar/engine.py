"""Radar presentation engine: one per chain.

Blip lifecycle: placed (undiscovered) -> discovered (fading) -> removed.

Everything is driven by elapsed wall-clock seconds between ticks, never by a
frame count, so behaviour is identical at 10 or 144 ticks per second. One
sweep revolution and one full fade both take `period` seconds, where
period = max(block_time, min_period).
"""
from __future__ import annotations
import math
import random
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from stable_radar.core.bounded import BoundedSeenSet
from stable_radar.core.custom_types import ChainDescriptor, Transfer
from .stats import VolumeRateTracker, format_usdc

TWO_PI = 2.0 * math.pi
CANVAS_MARGIN = 20


def effective_period(block_time_sec: float, min_period_sec: float = 2.0) -> float:
    return max(float(block_time_sec), float(min_period_sec))


def blip_size(amount_raw: str, decimals: int = 6, min_size: float = 2.0, max_size: float = 15.0,
              log_span: float = 6.0, default: float = 3.0) -> float:
    """Log10 of the whole-token amount mapped linearly onto [min_size, max_size].

    With the defaults $100 -> ~6.3, $10k -> ~10.7, $1M and above -> 15.
    """
    try:
        units = int(amount_raw) // (10 ** decimals)
    except (TypeError, ValueError):
        return default
    log_value = math.log10(max(units, 1))
    size = min_size + (log_value / log_span) * (max_size - min_size)
    return min(max(size, min_size), max_size)


def arc_contains(previous: float, current: float, angle: float, swept: Optional[float] = None) -> bool:
    """True if `angle` lies on the arc swept from `previous` to `current`.

    Both ends inclusive. current < previous means the sweep wrapped past 2pi.
    A step of a full turn or more covers every angle.
    """
    if swept is not None and swept >= TWO_PI:
        return True
    if current >= previous:
        return previous <= angle <= current
    return angle >= previous or angle <= current


@dataclass
class SweepState:
    current_angle: float = 0.0
    previous_angle: float = 0.0

    def advance(self, delta: float) -> None:
        self.previous_angle = self.current_angle
        self.current_angle = (self.current_angle + delta) % TWO_PI


@dataclass
class RadarBlip:
    transfer_id: str
    amount_raw: str
    angle: float
    distance: float
    size: float
    created_at: float
    event_time_ms: Optional[int] = None
    fade_progress: float = 0.0
    discovered: bool = False

    @property
    def opacity(self) -> float:
        return max(0.0, 1.0 - self.fade_progress)


class RadarEngine:
    def __init__(self, chain: ChainDescriptor, cfg=None, rng: Optional[random.Random] = None):
        self.chain = chain
        self.min_size = float(getattr(cfg, 'min_blip_size', 2.0))
        self.max_size = float(getattr(cfg, 'max_blip_size', 15.0))
        self.default_size = float(getattr(cfg, 'default_blip_size', 3.0))
        self.size_log_span = float(getattr(cfg, 'size_log_span', 6.0))
        self.radial_min = float(getattr(cfg, 'radial_min', 0.3))
        self.radial_max = float(getattr(cfg, 'radial_max', 0.9))
        self.period = effective_period(chain.block_time_sec, getattr(cfg, 'min_period_sec', 2.0))
        self.rng = rng or random.Random(getattr(cfg, 'seed', None))
        self.sweep = SweepState()
        self.blips: List[RadarBlip] = []
        self.displayed = BoundedSeenSet(int(getattr(cfg, 'displayed_ceiling', 1_000)))
        self.hovered_id: Optional[str] = None
        self.rate = VolumeRateTracker(
            chain.block_time_sec,
            max_samples=int(getattr(cfg, 'rate_samples', 100)),
            decimals=chain.token_decimals,
            warmup_sec=float(getattr(cfg, 'warmup_sec', 5.0)),
        )
        self.discovered_total = 0
        self.removed_total = 0
        self._last_tick: Optional[float] = None

    @property
    def rotation_speed(self) -> float:
        """Radians per second."""
        return TWO_PI / self.period

    @property
    def fade_speed(self) -> float:
        """Fade progress per second."""
        return 1.0 / self.period

    @property
    def clock(self) -> float:
        return self._last_tick if self._last_tick is not None else 0.0

    def size_for(self, amount_raw: str) -> float:
        return blip_size(amount_raw, self.chain.token_decimals, self.min_size, self.max_size,
                         self.size_log_span, self.default_size)

    # ingestion --------------------------------------------------------
    def ingest(self, transfers: Iterable[Transfer], now: Optional[float] = None) -> List[RadarBlip]:
        """Place a blip for every transfer not displayed before."""
        created_at = self.clock if now is None else now
        fresh: List[Transfer] = []
        new_blips: List[RadarBlip] = []
        for tx in transfers:
            if tx.transaction_id in self.displayed:
                continue
            self.displayed.add(tx.transaction_id)
            blip = RadarBlip(
                transfer_id=tx.transaction_id,
                amount_raw=tx.amount_raw,
                angle=self.rng.random() * TWO_PI,
                distance=self.radial_min + self.rng.random() * (self.radial_max - self.radial_min),
                size=self.size_for(tx.amount_raw),
                created_at=created_at,
                event_time_ms=tx.event_time_ms,
            )
            self.blips.append(blip)
            new_blips.append(blip)
            fresh.append(tx)
        if fresh:
            self.rate.record(fresh, now=created_at)
            logger.trace("[{}] radar placed {} blips", self.chain.display_name, len(fresh))
        return new_blips

    # animation --------------------------------------------------------
    def tick(self, now: float) -> List[RadarBlip]:
        """Advance to timestamp `now` (seconds). Returns blips discovered this tick."""
        if self._last_tick is None:
            self._last_tick = now
            self.rate.start(now)
            return []
        dt = max(0.0, now - self._last_tick)
        self._last_tick = now
        return self.step(dt)

    def step(self, dt: float) -> List[RadarBlip]:
        swept = self.rotation_speed * dt
        self.sweep.advance(swept)
        prev, cur = self.sweep.previous_angle, self.sweep.current_angle

        discovered: List[RadarBlip] = []
        for blip in self.blips:
            if not blip.discovered and arc_contains(prev, cur, blip.angle, swept):
                blip.discovered = True
                discovered.append(blip)
        self.discovered_total += len(discovered)

        fade = self.fade_speed * dt
        kept: List[RadarBlip] = []
        for blip in self.blips:
            if blip.transfer_id != self.hovered_id:
                blip.fade_progress = min(1.0, blip.fade_progress + fade)
            if blip.fade_progress < 1.0:
                kept.append(blip)
        self.removed_total += len(self.blips) - len(kept)
        self.blips = kept
        return discovered

    # interaction ------------------------------------------------------
    def geometry(self, canvas_size: int) -> Tuple[float, float, float]:
        """(center_x, center_y, radius) for a square canvas."""
        center = canvas_size / 2.0
        return center, center, canvas_size / 2.0 - CANVAS_MARGIN

    def blip_xy(self, blip: RadarBlip, canvas_size: int) -> Tuple[float, float]:
        cx, cy, radius = self.geometry(canvas_size)
        return (cx + math.cos(blip.angle) * blip.distance * radius,
                cy + math.sin(blip.angle) * blip.distance * radius)

    def hit_test(self, x: float, y: float, canvas_size: int) -> Optional[RadarBlip]:
        """First discovered blip whose glow (2x radius) contains the point."""
        for blip in self.blips:
            if not blip.discovered:
                continue
            bx, by = self.blip_xy(blip, canvas_size)
            if math.hypot(x - bx, y - by) <= blip.size * 2:
                return blip
        return None

    def hover(self, x: Optional[float], y: Optional[float], canvas_size: int) -> Optional[RadarBlip]:
        """Pointer moved (or left, with x/y None). A hovered blip stops fading."""
        blip = None if x is None or y is None else self.hit_test(x, y, canvas_size)
        self.hovered_id = blip.transfer_id if blip else None
        return blip

    def set_hover(self, transfer_id: Optional[str]) -> None:
        self.hovered_id = transfer_id

    def click(self, x: float, y: float, canvas_size: int) -> Optional[str]:
        """Explorer URL of the blip under the pointer, if any."""
        blip = self.hit_test(x, y, canvas_size)
        if blip is None or not self.chain.explorer_url:
            return None
        return self.chain.tx_url(blip.transfer_id)

    def tooltip(self, blip: RadarBlip) -> Dict[str, Any]:
        return {
            'amount': format_usdc(blip.amount_raw, self.chain.token_decimals),
            'transactionHash': blip.transfer_id,
            'url': self.chain.tx_url(blip.transfer_id) if self.chain.explorer_url else None,
        }

    def visible(self) -> List[RadarBlip]:
        return [b for b in self.blips if b.discovered]

    def snapshot(self):
        return {
            'chain': self.chain.display_name,
            'period_sec': self.period,
            'sweep_angle': self.sweep.current_angle,
            'blips': len(self.blips),
            'visible': sum(1 for b in self.blips if b.discovered),
            'displayed_ids': len(self.displayed),
            'discovered_total': self.discovered_total,
            'removed_total': self.removed_total,
            'rate': self.rate.label(self.clock),
        }


__all__ = ['RadarEngine', 'RadarBlip', 'SweepState', 'arc_contains', 'blip_size', 'effective_period', 'TWO_PI']
