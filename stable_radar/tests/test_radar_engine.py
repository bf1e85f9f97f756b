import math
import random

import pytest

from stable_radar.core.config import RadarSettings
from stable_radar.radar.engine import TWO_PI, RadarEngine, arc_contains, blip_size, effective_period


def _engine(chain, **cfg):
    return RadarEngine(chain, RadarSettings(**cfg), rng=random.Random(42))


@pytest.mark.parametrize('prev, cur, angle, expected', [
    (0.1, 0.5, 0.3, True),
    (0.1, 0.5, 0.1, True),
    (0.1, 0.5, 0.5, True),
    (0.1, 0.5, 0.6, False),
    # wrapped past 2pi
    (6.0, 0.2, 6.2, True),
    (6.0, 0.2, 0.1, True),
    (6.0, 0.2, 3.0, False),
    (0.9, 1.1, 1.0, True),
    (6.2, 0.1, 0.05, True),
])
def test_arc_contains(prev, cur, angle, expected):
    assert arc_contains(prev, cur, angle) is expected


def test_full_turn_covers_everything():
    assert arc_contains(1.0, 1.0, 4.0, swept=TWO_PI)
    assert not arc_contains(1.0, 1.0, 4.0, swept=0.0)


def test_effective_period():
    assert effective_period(0.25) == 2.0
    assert effective_period(12) == 12.0
    assert effective_period(1, min_period_sec=3) == 3.0


def test_blip_size_bounds_and_monotonic():
    amounts = [0, 1, 100, 10_000, 1_000_000, 10 ** 9]
    sizes = [blip_size(str(a * 10 ** 6)) for a in amounts]
    assert sizes == sorted(sizes)
    assert all(2.0 <= s <= 15.0 for s in sizes)
    assert sizes[0] == 2.0
    assert sizes[-1] == 15.0
    assert blip_size(str(100 * 10 ** 6)) == pytest.approx(2 + 13 / 3)
    assert blip_size('garbage') == 3.0


def test_period_follows_block_time(base_chain):
    from dataclasses import replace
    fast = RadarEngine(replace(base_chain, block_time_sec=0.25))
    slow = RadarEngine(replace(base_chain, block_time_sec=12))
    assert fast.period == 2.0 and slow.period == 12.0
    assert slow.rotation_speed == pytest.approx(TWO_PI / 12)


def test_ingest_places_blips_once(base_chain, make_transfer):
    engine = _engine(base_chain)
    txs = [make_transfer(f'0x{i}') for i in range(5)]
    assert len(engine.ingest(txs, now=0.0)) == 5
    assert engine.ingest(txs, now=0.1) == []
    assert len(engine.blips) == 5
    for b in engine.blips:
        assert 0.3 <= b.distance <= 0.9
        assert 0.0 <= b.angle < TWO_PI
        assert not b.discovered and b.fade_progress == 0.0


def test_displayed_ids_bounded(base_chain, make_transfer):
    engine = _engine(base_chain, displayed_ceiling=10)
    for i in range(25):
        engine.ingest([make_transfer(f'0x{i}')], now=0.0)
        assert len(engine.displayed) <= 10


def test_sweep_discovers_in_angle_order(base_chain, make_transfer):
    engine = _engine(base_chain)  # period 2s -> pi rad/s
    engine.ingest([make_transfer(f'0x{i}') for i in range(3)], now=0.0)
    for blip, angle in zip(engine.blips, (0.5, 3.0, 6.0)):
        blip.angle = angle

    assert [b.transfer_id for b in engine.step(0.25)] == ['0x0']
    assert [b.transfer_id for b in engine.step(0.75)] == ['0x1']
    assert engine.step(0.9) == []
    assert [b.transfer_id for b in engine.step(0.05)] == ['0x2']
    assert all(b.discovered for b in engine.blips)
    # 1.95s of the 2s fade elapsed
    assert engine.blips[0].fade_progress == pytest.approx(0.975)
    engine.step(0.1)
    assert engine.blips == []
    assert engine.removed_total == 3


def test_discovery_across_wraparound(base_chain, make_transfer):
    engine = _engine(base_chain)
    engine.ingest([make_transfer('0xw')], now=0.0)
    engine.blips[0].angle = 0.1
    engine.sweep.current_angle = 6.0
    found = engine.step(0.5 / math.pi)  # sweeps 0.5 rad: 6.0 -> ~0.217
    assert [b.transfer_id for b in found] == ['0xw']


def test_discovered_only_reported_once(base_chain, make_transfer):
    engine = _engine(base_chain)
    engine.ingest([make_transfer('0xh')], now=0.0)
    engine.set_hover('0xh')
    assert len(engine.step(2.5)) == 1
    assert engine.step(2.5) == []
    assert engine.discovered_total == 1


def test_hovered_blip_does_not_fade(base_chain, make_transfer):
    engine = _engine(base_chain)
    engine.ingest([make_transfer('0xa'), make_transfer('0xb')], now=0.0)
    engine.set_hover('0xa')
    engine.step(1.0)
    a, b = engine.blips
    assert a.fade_progress == 0.0
    assert b.fade_progress == pytest.approx(0.5)
    engine.set_hover(None)
    engine.step(2.0)
    assert engine.blips == []


def test_fade_terminates(base_chain, make_transfer):
    engine = _engine(base_chain)
    engine.ingest([make_transfer(f'0x{i}') for i in range(20)], now=0.0)
    engine.tick(0.0)
    t = 0.0
    for _ in range(70):
        t += 1 / 30
        engine.tick(t)
    assert engine.blips == []


def test_tick_is_frame_rate_independent(base_chain, make_transfer):
    txs = [make_transfer(f'0x{i}') for i in range(30)]
    coarse, fine = _engine(base_chain), _engine(base_chain)
    coarse.ingest(txs, now=0.0)
    fine.ingest(txs, now=0.0)
    coarse.tick(0.0)
    fine.tick(0.0)
    for i in range(1, 11):
        coarse.tick(i * 0.1)
    for i in range(1, 101):
        fine.tick(i * 0.01)
    assert coarse.sweep.current_angle == pytest.approx(fine.sweep.current_angle)
    assert {b.transfer_id for b in coarse.visible()} == {b.transfer_id for b in fine.visible()}
    for cb, fb in zip(coarse.blips, fine.blips):
        assert cb.fade_progress == pytest.approx(fb.fade_progress)


def test_first_tick_only_initialises(base_chain, make_transfer):
    engine = _engine(base_chain)
    engine.ingest([make_transfer('0xa')], now=0.0)
    assert engine.tick(10.0) == []
    assert engine.sweep.current_angle == 0.0
    # clock going backwards never rewinds the animation
    engine.tick(5.0)
    assert engine.sweep.current_angle == 0.0


def test_hover_and_click_hit_discovered_blips_only(base_chain, make_transfer):
    engine = _engine(base_chain)
    engine.ingest([make_transfer('0xabc')], now=0.0)
    blip = engine.blips[0]
    x, y = engine.blip_xy(blip, 400)
    assert engine.hover(x, y, 400) is None
    blip.discovered = True
    assert engine.hover(x + blip.size, y, 400) is blip
    assert engine.hovered_id == '0xabc'
    assert engine.click(x, y, 400) == 'https://basescan.org/tx/0xabc'
    assert engine.click(0, 0, 400) is None
    tip = engine.tooltip(blip)
    assert tip['amount'] == '$1 USDC'
    assert tip['url'] == 'https://basescan.org/tx/0xabc'
    engine.hover(None, None, 400)
    assert engine.hovered_id is None


def test_snapshot(base_chain):
    snap = _engine(base_chain).snapshot()
    assert snap['chain'] == 'BASE' and snap['period_sec'] == 2.0 and snap['blips'] == 0
