"""Transfer ingest engine: incremental query -> decode -> dedup -> feed.

Notes:
 - First run starts `start_margin_blocks` below the known height; afterwards
   every query continues from the indexer's `next_block`, so each range is
   queried once under normal operation.
 - Ranges are capped at `range_limit` blocks; the indexer reports how far it
   actually got through `next_block`.
 - A bad log is skipped on its own; it never aborts the batch.
 - Nothing in ChainState changes until the whole response is processed. A
   failed query leaves the cursor where it was, and a retry is safe because
   acceptance is gated by the seen set, not the cursor.
"""
from __future__ import annotations
import time
from typing import Callable, List, Optional, Set

from loguru import logger

from stable_radar.core.custom_types import IngestResult, Transfer
from .decoder import DecodeError, decode
from .feed_store import AggregateFeedStore
from .hypersync_client import HypersyncError
from .state import ChainState


def _now_ms() -> int:
    return int(time.time() * 1000)


class TransferIngestEngine:
    def __init__(self, client, feed_store: AggregateFeedStore, range_limit: int = 10_000,
                 start_margin_blocks: int = 10, metrics=None, clock: Callable[[], int] = _now_ms):
        self.client = client
        self.feed_store = feed_store
        self.range_limit = int(range_limit)
        self.start_margin_blocks = int(start_margin_blocks)
        self.metrics = metrics
        self.clock = clock

    @classmethod
    def from_settings(cls, client, feed_store: AggregateFeedStore, ingest_cfg, metrics=None) -> "TransferIngestEngine":
        return cls(client, feed_store,
                   range_limit=ingest_cfg.range_limit,
                   start_margin_blocks=ingest_cfg.start_margin_blocks,
                   metrics=metrics)

    def _inc(self, key: str, value: int = 1) -> None:
        if self.metrics:
            self.metrics.inc(key, value)

    async def _start_block(self, state: ChainState) -> int:
        cursor = state.cursor
        if cursor.last_queried_block is not None:
            return cursor.last_queried_block
        height = cursor.last_known_height
        if height is None:
            height = await self.client.get_height(state.chain)
            cursor.last_known_height = height
        start = max(0, height - self.start_margin_blocks)
        logger.info("[{}] Starting from block {} (height: {})", state.chain.display_name, start, height)
        return start

    async def fetch_new_transfers(self, state: ChainState) -> IngestResult:
        chain = state.chain
        result = IngestResult(chain_id=chain.chain_id)
        result.debug = {
            'chain': chain.display_name,
            'chainId': chain.chain_id,
            'contractAddress': chain.contract_address,
            'endpoint': chain.endpoint,
            'hasApiKey': bool(getattr(self.client, 'has_api_key', False)),
        }
        state.heavy_queries += 1
        self._inc('queries')
        started = time.perf_counter()
        try:
            from_block = await self._start_block(state)
            to_block = from_block + self.range_limit
            result.from_block, result.to_block = from_block, to_block
            result.debug.update(fromBlock=from_block, toBlock=to_block)
            logger.debug("[{}] Querying from block {}...", chain.display_name, from_block)
            response = await self.client.query_logs(chain, from_block, to_block)
        except HypersyncError as e:
            self._inc('query_errors')
            result.error = f"Chain {chain.chain_id}: {e}"
            result.debug['error'] = str(e)
            state.last_error = result.error
            state.last_debug = result.debug
            logger.error("[{}] Hypersync error: {}", chain.display_name, e)
            return result
        finally:
            if self.metrics:
                self.metrics.latency_query.observe((time.perf_counter() - started) * 1000.0)

        result.debug.update(
            archiveHeight=response.archive_height,
            nextBlock=response.next_block,
            totalLogs=len(response.events),
        )

        now_ms = self.clock()
        accepted: List[Transfer] = []
        batch_ids: Set[str] = set()
        for raw in response.events:
            tx = raw.transaction_id
            if not tx:
                result.decode_failures += 1
                logger.warning("[{}] Skipping log without transaction hash in block {}", chain.display_name, raw.block_number)
                continue
            if tx in state.seen or tx in batch_ids:
                result.duplicates += 1
                continue
            try:
                decoded = decode(raw)
            except DecodeError as e:
                result.decode_failures += 1
                logger.warning("[{}] Error decoding log {}: {}", chain.display_name, tx, e)
                continue
            batch_ids.add(tx)
            accepted.append(Transfer(
                transaction_id=tx,
                block_number=raw.block_number,
                sender=decoded.sender,
                recipient=decoded.recipient,
                amount_raw=decoded.amount_raw,
                observed_at_ms=now_ms,
                chain_id=chain.chain_id,
                block_timestamp_ms=raw.block_timestamp_ms,
            ))

        # commit: seen set, cursor, feed
        for t in accepted:
            state.seen.add(t.transaction_id)
        state.cursor.last_queried_block = self._next_cursor(from_block, response.next_block)
        self.feed_store.push(chain.chain_id, accepted)
        state.last_error = None
        state.loading = False

        result.accepted = accepted
        result.cursor_after = state.cursor.last_queried_block
        result.debug.update(accepted=len(accepted), duplicates=result.duplicates,
                            decodeFailures=result.decode_failures, totalSeen=len(state.seen))
        state.last_debug = result.debug
        if self.metrics:
            self.metrics.set_gauge(f"seen_ids_{chain.key}", len(state.seen))
        self._inc('transfers_accepted', len(accepted))
        self._inc('transfers_duplicate', result.duplicates)
        self._inc('decode_errors', result.decode_failures)
        logger.debug("[{}] Processed {} new transactions, total seen: {}", chain.display_name, len(accepted), len(state.seen))
        return result

    @staticmethod
    def _next_cursor(from_block: int, next_block: Optional[int]) -> int:
        # never regress: a stale or missing next_block keeps the current start
        if next_block is None:
            return from_block
        return max(from_block, next_block)


__all__ = ['TransferIngestEngine']
