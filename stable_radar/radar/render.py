"""Radar frame contract and PNG rendering.

`build_frame` turns engine state into a backend-neutral draw list:
 - only discovered blips are drawn
 - blip opacity = 1 - fade_progress
 - each blip carries a glow at twice the radius and half the opacity

`render_png` draws a frame with matplotlib (grid rings, radial lines, sweep
line + trailing cone, blips, labels). Import of matplotlib is lazy so the
animation loop stays light when snapshots are disabled.
"""
from __future__ import annotations
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .engine import RadarEngine

BACKGROUND = '#000a00'
RING_COUNT = 4
SPOKE_COUNT = 12
CONE_DEG = 30.0


@dataclass(frozen=True)
class BlipSprite:
    transfer_id: str
    x: float
    y: float
    radius: float
    alpha: float
    glow_radius: float
    glow_alpha: float


@dataclass
class RadarFrame:
    chain_id: int
    title: str
    color: str
    canvas_size: int
    center: float
    radius: float
    sweep_angle: float
    block_time_sec: float
    total_count: int = 0
    rate_label: Optional[str] = None
    sprites: List[BlipSprite] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_frame(engine: RadarEngine, canvas_size: int = 400, total_count: int = 0) -> RadarFrame:
    cx, _, radius = engine.geometry(canvas_size)
    sprites = []
    for blip in engine.blips:
        if not blip.discovered:
            continue
        x, y = engine.blip_xy(blip, canvas_size)
        alpha = blip.opacity
        sprites.append(BlipSprite(
            transfer_id=blip.transfer_id,
            x=x,
            y=y,
            radius=blip.size,
            alpha=alpha,
            glow_radius=blip.size * 2,
            glow_alpha=alpha * 0.5,
        ))
    return RadarFrame(
        chain_id=engine.chain.chain_id,
        title=engine.chain.display_name,
        color=engine.chain.color,
        canvas_size=canvas_size,
        center=cx,
        radius=radius,
        sweep_angle=engine.sweep.current_angle,
        block_time_sec=engine.chain.block_time_sec,
        total_count=total_count,
        rate_label=engine.rate.label(engine.clock),
        sprites=sprites,
    )


def render_png(frame: RadarFrame, path, dpi: int = 100) -> Path:
    from matplotlib.figure import Figure
    from matplotlib.patches import Circle, Wedge

    size = frame.canvas_size
    c, r = frame.center, frame.radius
    fig = Figure(figsize=(size / dpi, size / dpi), dpi=dpi)
    fig.patch.set_facecolor(BACKGROUND)
    ax = fig.add_axes([0, 0, 1, 1])
    ax.set_facecolor(BACKGROUND)
    ax.set_xlim(0, size)
    # canvas coordinates: y grows downwards
    ax.set_ylim(size, 0)
    ax.set_aspect('equal')
    ax.axis('off')

    for i in range(1, RING_COUNT + 1):
        ax.add_patch(Circle((c, c), r / RING_COUNT * i, fill=False, edgecolor=frame.color, alpha=0.3, linewidth=1))
    for i in range(SPOKE_COUNT):
        a = i * math.pi / (SPOKE_COUNT / 2)
        ax.plot([c, c + math.cos(a) * r], [c, c + math.sin(a) * r], color=frame.color, alpha=0.3, linewidth=1)

    for s in frame.sprites:
        ax.add_patch(Circle((s.x, s.y), s.radius, color=frame.color, alpha=s.alpha, linewidth=0))
        ax.add_patch(Circle((s.x, s.y), s.glow_radius, color=frame.color, alpha=s.glow_alpha, linewidth=0))

    deg = math.degrees(frame.sweep_angle)
    ax.add_patch(Wedge((c, c), r, deg - CONE_DEG, deg, color=frame.color, alpha=0.12, linewidth=0))
    ax.plot([c, c + math.cos(frame.sweep_angle) * r], [c, c + math.sin(frame.sweep_angle) * r],
            color=frame.color, linewidth=2)

    ax.text(16, 22, frame.title, color=frame.color, fontsize=9, fontweight='bold', family='monospace')
    ax.text(size - 16, 22, f"{frame.block_time_sec:g}s/block", color=frame.color, fontsize=7,
            ha='right', alpha=0.7, family='monospace')
    ax.text(16, size - 14, f"{frame.total_count} tx", color=frame.color, fontsize=7, family='monospace')
    rate = frame.rate_label if frame.rate_label is not None else '...'
    ax.text(size - 16, size - 14, f"{rate} USDC/s", color=frame.color, fontsize=9,
            ha='right', fontweight='bold', family='monospace')

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out, facecolor=BACKGROUND)
    return out


__all__ = ['BlipSprite', 'RadarFrame', 'build_frame', 'render_png']
