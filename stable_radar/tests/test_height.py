import asyncio

import pytest

from stable_radar.live.metrics import Metrics
from stable_radar.onchain.height import HeightTracker
from stable_radar.onchain.hypersync_client import HeightCheckFailed
from stable_radar.onchain.state import ChainState


@pytest.mark.asyncio
async def test_first_poll_then_only_new_blocks(base_chain, fake_client_cls):
    tracker = HeightTracker(fake_client_cls(heights=[100, 100, 100, 101]))
    state = ChainState.create(base_chain)
    signals = [await tracker.poll(state) for _ in range(4)]
    assert signals == [True, False, False, True]
    assert state.cursor.last_known_height == 101


@pytest.mark.asyncio
async def test_steady_state_sequence_signals_once(base_chain, fake_client_cls):
    tracker = HeightTracker(fake_client_cls(heights=[100, 100, 100, 101]))
    state = ChainState.create(base_chain)
    state.cursor.last_known_height = 100
    signals = [await tracker.poll(state) for _ in range(4)]
    assert signals.count(True) == 1 and signals[-1] is True


@pytest.mark.asyncio
async def test_failure_and_lower_height_do_not_signal(base_chain, fake_client_cls):
    metrics = Metrics()
    client = fake_client_cls(heights=[HeightCheckFailed('down', 8453), 90, 200])
    tracker = HeightTracker(client, metrics=metrics)
    state = ChainState.create(base_chain)
    state.cursor.last_known_height = 100
    assert await tracker.poll(state) is False
    assert await tracker.poll(state) is False
    assert state.cursor.last_known_height == 100
    assert await tracker.poll(state) is True
    assert metrics.counters['height_errors'] == 1
    assert metrics.counters['height_polls'] == 3
    assert metrics.latency_height.snapshot()['count'] == 3


@pytest.mark.asyncio
async def test_listeners_sync_async_and_failing(base_chain, fake_client_cls):
    tracker = HeightTracker(fake_client_cls(heights=[5]))
    state = ChainState.create(base_chain)
    got = []

    def bad(chain_id, height):
        raise RuntimeError('listener bug')

    async def async_cb(chain_id, height):
        got.append(('async', chain_id, height))

    state.height_listeners.extend([bad, lambda c, h: got.append(('sync', c, h)), async_cb])
    assert await tracker.poll(state) is True
    await asyncio.sleep(0.01)
    assert got == [('sync', 8453, 5), ('async', 8453, 5)]


@pytest.mark.asyncio
async def test_slow_async_listener_does_not_hold_poll(base_chain, fake_client_cls):
    tracker = HeightTracker(fake_client_cls(heights=[5, 6]))
    state = ChainState.create(base_chain)
    release = asyncio.Event()
    got = []

    async def slow(chain_id, height):
        await release.wait()
        got.append(height)

    async def failing(chain_id, height):
        raise RuntimeError('listener bug')

    state.height_listeners.extend([slow, failing])
    assert await tracker.poll(state) is True
    assert got == []
    assert tracker.pending_listeners == 2
    await asyncio.sleep(0.01)
    assert tracker.pending_listeners == 1
    release.set()
    await asyncio.sleep(0.01)
    assert got == [5]
    assert tracker.pending_listeners == 0

    # shutdown cancels whatever is still waiting
    release.clear()
    assert await tracker.poll(state) is True
    await tracker.aclose()
    assert tracker.pending_listeners == 0
    assert got == [5]
