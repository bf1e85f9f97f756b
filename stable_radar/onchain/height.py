"""Height tracker: the cheap per-tick check that gates heavy log queries.

A heavy query is only signalled on the first successful height read and on
every strictly greater height afterwards, so the number of queries is
bounded by the number of new blocks seen rather than by the poll rate.

Height listeners are notified before `poll` returns. Plain callables run
inline; coroutine listeners are scheduled as tasks so a slow subscriber never
holds up the fetch for its chain.
"""
from __future__ import annotations
import asyncio
import inspect
import time
from typing import Awaitable, Set

from loguru import logger

from .hypersync_client import HeightCheckFailed
from .state import ChainState


class HeightTracker:
    def __init__(self, client, metrics=None):
        self.client = client
        self.metrics = metrics
        self._listener_tasks: Set[asyncio.Task] = set()

    async def poll(self, state: ChainState) -> bool:
        """Returns True when the ingest engine should fetch for this chain."""
        chain = state.chain
        started = time.perf_counter()
        if self.metrics:
            self.metrics.inc('height_polls')
        try:
            height = await self.client.get_height(chain)
        except HeightCheckFailed as e:
            # retried on the next tick; never fatal
            if self.metrics:
                self.metrics.inc('height_errors')
            logger.warning("[{}] Height check failed: {}", chain.display_name, e)
            return False
        finally:
            if self.metrics:
                self.metrics.latency_height.observe((time.perf_counter() - started) * 1000.0)

        last = state.cursor.last_known_height
        if last is not None and height <= last:
            return False
        logger.debug("[{}] New block detected: {} -> {}", chain.display_name, last, height)
        state.cursor.last_known_height = height
        self._notify(state, height)
        return True

    def _notify(self, state: ChainState, height: int) -> None:
        for cb in list(state.height_listeners):
            try:
                res = cb(state.chain.chain_id, height)
            except Exception:
                logger.exception("[{}] height listener failed", state.chain.display_name)
                continue
            if inspect.isawaitable(res):
                task = asyncio.create_task(self._run_listener(state, res))
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_tasks.discard)

    @staticmethod
    async def _run_listener(state: ChainState, pending: Awaitable) -> None:
        try:
            await pending
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[{}] height listener failed", state.chain.display_name)

    @property
    def pending_listeners(self) -> int:
        return len(self._listener_tasks)

    async def aclose(self) -> None:
        """Cancel listener tasks still running."""
        pending = list(self._listener_tasks)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


__all__ = ['HeightTracker']
