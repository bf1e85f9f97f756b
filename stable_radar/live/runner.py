"""High level radar runner coordinating height polls -> ingest -> radar."""
from __future__ import annotations
import asyncio
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from stable_radar.core.custom_types import ChainId, FeedSnapshot, IngestResult
from stable_radar.onchain.feed_store import AggregateFeedStore, filter_by_threshold
from stable_radar.onchain.height import HeightTracker
from stable_radar.onchain.hypersync_client import HypersyncClient
from stable_radar.onchain.ingest import TransferIngestEngine
from stable_radar.onchain.registry import ChainRegistry
from stable_radar.onchain.state import ChainState, HeightListener
from stable_radar.radar.engine import RadarEngine
from stable_radar.radar.render import build_frame, render_png
from .metrics import Metrics


class ChainWorker:
    """Owns one chain's state; the only writer of its cursor, seen set and feed entry.

    A timer fires every `interval_sec`. A tick that arrives while the previous
    height poll or fetch is still running is skipped, not queued.
    """

    def __init__(self, state: ChainState, tracker: HeightTracker, ingest: TransferIngestEngine,
                 interval_sec: float = 0.5, metrics: Optional[Metrics] = None):
        self.state = state
        self.tracker = tracker
        self.ingest = ingest
        self.interval_sec = interval_sec
        self.metrics = metrics
        self._running = False
        self._pending: Set[asyncio.Task] = set()

    async def tick(self) -> Optional[IngestResult]:
        state = self.state
        if state.busy:
            if self.metrics:
                self.metrics.inc('ticks_skipped_busy')
            logger.trace("[{}] tick skipped, previous poll/fetch still running", state.chain.display_name)
            return None
        state.poll_in_flight = True
        try:
            signalled = await self.tracker.poll(state)
        finally:
            state.poll_in_flight = False
        if not signalled:
            return None
        state.fetch_in_flight = True
        try:
            return await self.ingest.fetch_new_transfers(state)
        finally:
            state.fetch_in_flight = False

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.state.last_error = f"Chain {self.state.chain.chain_id}: {e}"
            logger.exception("[{}] worker tick failed", self.state.chain.display_name)

    async def run(self) -> None:
        self._running = True
        logger.info("[{}] height polling every {:.0f}ms", self.state.chain.display_name, self.interval_sec * 1000)
        try:
            while self._running:
                task = asyncio.create_task(self._safe_tick(), name=f"tick-{self.state.chain.chain_id}")
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
                await asyncio.sleep(self.interval_sec)
        finally:
            await self.stop()

    async def stop(self) -> None:
        self._running = False
        pending = list(self._pending)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


class RadarAnimator:
    """Continuous animation clock feeding every chain's radar from the feed store."""

    def __init__(self, engines: Dict[ChainId, RadarEngine], feed_store: AggregateFeedStore, radar_cfg=None,
                 threshold_usd: float = 0.0, metrics: Optional[Metrics] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.engines = engines
        self.feed_store = feed_store
        self.metrics = metrics
        self.clock = clock
        self.threshold_usd = float(threshold_usd)
        self.frame_interval_sec = int(getattr(radar_cfg, 'frame_interval_ms', 33)) / 1000.0
        self.canvas_size = int(getattr(radar_cfg, 'canvas_size', 400))
        snap_dir = getattr(radar_cfg, 'snapshot_dir', None)
        self.snapshot_dir: Optional[Path] = Path(snap_dir) if snap_dir else None
        self.snapshot_every_sec = float(getattr(radar_cfg, 'snapshot_every_sec', 5.0))
        self._seen_versions: Dict[ChainId, int] = {}
        self._last_snapshot: Optional[float] = None
        self._running = False

    def set_threshold(self, threshold_usd: float) -> None:
        self.threshold_usd = float(threshold_usd)
        # re-read every feed under the new filter
        self._seen_versions.clear()

    def frame(self, now: Optional[float] = None) -> Dict[ChainId, int]:
        """One animation step for every chain. Returns blips discovered per chain."""
        now = self.clock() if now is None else now
        discovered: Dict[ChainId, int] = {}
        for chain_id, engine in self.engines.items():
            version = self.feed_store.version(chain_id)
            if self._seen_versions.get(chain_id) != version:
                self._seen_versions[chain_id] = version
                feed = self.feed_store.get_feed(chain_id)
                visible = filter_by_threshold(feed.recent_transfers, self.threshold_usd, engine.chain.token_decimals)
                engine.ingest(visible, now=now)
            found = engine.tick(now)
            discovered[chain_id] = len(found)
            if found and self.metrics:
                self.metrics.inc('blips_discovered', len(found))
            if self.metrics:
                self.metrics.set_gauge(f"radar_blips_{engine.chain.key}", len(engine.blips))
        return discovered

    def snapshot_due(self, now: float) -> bool:
        if self.snapshot_dir is None:
            return False
        return self._last_snapshot is None or now - self._last_snapshot >= self.snapshot_every_sec

    async def write_snapshots(self, now: float) -> List[Path]:
        self._last_snapshot = now
        written = []
        for chain_id, engine in self.engines.items():
            feed = self.feed_store.get_feed(chain_id)
            frame = build_frame(engine, self.canvas_size, total_count=feed.total_observed_count)
            path = self.snapshot_dir / f"{engine.chain.key}.png"
            try:
                written.append(await asyncio.to_thread(render_png, frame, path))
            except Exception as e:
                logger.error("[{}] snapshot render failed: {}", engine.chain.display_name, e)
        if self.metrics:
            self.metrics.inc('snapshots_written', len(written))
        return written

    async def run(self) -> None:
        self._running = True
        while self._running:
            started = time.perf_counter()
            now = self.clock()
            self.frame(now)
            if self.metrics:
                self.metrics.frame_time.observe((time.perf_counter() - started) * 1000.0)
            if self.snapshot_due(now):
                await self.write_snapshots(now)
            await asyncio.sleep(self.frame_interval_sec)

    def stop(self) -> None:
        self._running = False


class RadarRunner:
    def __init__(self, settings, client=None):
        self.settings = settings
        self.registry = ChainRegistry.from_settings(settings)
        self.chains = self.registry.select(settings.runtime.networks)
        if not self.chains:
            raise ValueError("No chains selected; enable a chain or pass --networks")
        self.metrics = Metrics()
        self.client = client if client is not None else HypersyncClient(settings.hypersync)
        self.feed_store = AggregateFeedStore(settings.ingest.feed_capacity)
        self.tracker = HeightTracker(self.client, metrics=self.metrics)
        self.ingest = TransferIngestEngine.from_settings(self.client, self.feed_store, settings.ingest, metrics=self.metrics)
        interval = settings.ingest.height_poll_interval_ms / 1000.0
        self.states: Dict[ChainId, ChainState] = {}
        self.workers: Dict[ChainId, ChainWorker] = {}
        self.engines: Dict[ChainId, RadarEngine] = {}
        for chain in self.chains:
            state = ChainState.create(chain, settings.ingest.seen_ceiling)
            self.states[chain.chain_id] = state
            self.workers[chain.chain_id] = ChainWorker(state, self.tracker, self.ingest, interval, self.metrics)
            self.engines[chain.chain_id] = RadarEngine(chain, settings.radar)
            self.feed_store.register(chain.chain_id)
        self.animator = RadarAnimator(self.engines, self.feed_store, settings.radar,
                                      threshold_usd=settings.runtime.threshold_usd, metrics=self.metrics)
        self._tasks: List[asyncio.Task] = []
        self._http_runner = None

    # consumer surface ---------------------------------------------------
    def get_feed(self, chain_id: ChainId) -> FeedSnapshot:
        return self.feed_store.get_feed(chain_id)

    def subscribe_height_events(self, chain_id: ChainId, callback: HeightListener) -> Callable[[], None]:
        """Call `callback(chain_id, height)` on every new block; returns an unsubscribe function."""
        state = self.states[int(chain_id)]
        state.height_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in state.height_listeners:
                state.height_listeners.remove(callback)
        return _unsubscribe

    def last_error(self, chain_id: ChainId) -> Optional[str]:
        return self.states[int(chain_id)].last_error

    @property
    def is_loading(self) -> bool:
        return any(s.loading for s in self.states.values())

    def status(self) -> Dict:
        return {
            'loading': self.is_loading,
            'chains': {cid: s.snapshot() for cid, s in self.states.items()},
            'radar': {cid: e.snapshot() for cid, e in self.engines.items()},
        }

    # lifecycle -----------------------------------------------------------
    async def start(self) -> None:
        logger.info("[RadarRunner] Starting {} chain(s): {}", len(self.chains),
                    ", ".join(c.display_name for c in self.chains))
        for chain_id, worker in self.workers.items():
            self._tasks.append(asyncio.create_task(worker.run(), name=f"worker-{chain_id}"))
        self._tasks.append(asyncio.create_task(self.animator.run(), name="animator"))
        http_cfg = self.settings.http
        if http_cfg.enabled:
            from .http_api import start_http
            try:
                self._http_runner = await start_http(self, http_cfg.host, http_cfg.port)
            except OSError as e:
                logger.error(f"[RadarRunner] http api failed {e}")

    async def stop(self) -> None:
        self.animator.stop()
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.tracker.aclose()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
            self._http_runner = None
        close = getattr(self.client, 'close', None)
        if close is not None:
            await close()
        logger.info("[RadarRunner] stopped")


__all__ = ["ChainWorker", "RadarAnimator", "RadarRunner"]
