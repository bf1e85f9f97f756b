"""HyperSync HTTP client (height + Transfer log queries).

Notes:
 - `GET {endpoint}/height` is the cheap call polled every tick.
 - `POST {endpoint}/query` is the heavy call; it returns the logs found in
   [from_block, to_block) plus `next_block`, the cursor the indexer actually
   reached, and `archive_height`.
 - Only the monitored contract and topics[0]==ERC20_TRANSFER_SIG are requested.
 - An API token (bearer) is read from settings or the HYPERSYNC_API_KEY env var.
"""
from __future__ import annotations
import asyncio
import os
import time
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from stable_radar.core.custom_types import ChainDescriptor, QueryResult, RawLog
from .decoder import ERC20_TRANSFER_SIG


class HypersyncError(Exception):
    """Base class for indexer failures; always scoped to one chain."""

    def __init__(self, message: str, chain_id: Optional[int] = None):
        super().__init__(message)
        self.chain_id = chain_id


class HeightCheckFailed(HypersyncError):
    """The height endpoint was unavailable or answered garbage."""


class QueryFailed(HypersyncError):
    """The log query answered with a non-success status."""

    def __init__(self, message: str, chain_id: Optional[int] = None, status: Optional[int] = None, body: str = ""):
        super().__init__(message, chain_id)
        self.status = status
        self.body = body


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith('0x') else int(value)
        except ValueError:
            return None
    if isinstance(value, float):
        return int(value)
    return None


def build_query(chain: ChainDescriptor, from_block: int, to_block: int) -> Dict[str, Any]:
    return {
        'from_block': from_block,
        'to_block': to_block,
        'logs': [
            {
                'address': [chain.contract_address.lower()],
                'topics': [[ERC20_TRANSFER_SIG]],
            },
        ],
        'field_selection': {
            'block': ['number', 'timestamp'],
            'log': ['address', 'topic0', 'topic1', 'topic2', 'topic3', 'transaction_hash', 'block_number', 'data'],
        },
    }


def _as_str(value: Any, default: str = '') -> str:
    return value if isinstance(value, str) else default


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def parse_query_response(payload: Dict[str, Any]) -> QueryResult:
    """Flatten the indexer's `data` items into RawLogs with block timestamps.

    Items, blocks or logs that are not JSON objects are skipped. Field values
    inside a log are passed through for the decoder to reject one by one.
    Raises ValueError when `data` itself is neither a list nor an object.
    """
    data = payload.get('data') or []
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"'data' must be a list, got {type(data).__name__}")
    events: List[RawLog] = []
    skipped = 0
    for item in data:
        if not isinstance(item, dict):
            skipped += 1
            continue
        block_ts: Dict[int, int] = {}
        for blk in _as_list(item.get('blocks')):
            if not isinstance(blk, dict):
                skipped += 1
                continue
            number = _as_int(blk.get('number'))
            ts = _as_int(blk.get('timestamp'))
            if number is not None and ts is not None:
                block_ts[number] = ts * 1000
        for lg in _as_list(item.get('logs')):
            if not isinstance(lg, dict):
                skipped += 1
                continue
            topics = lg.get('topics')
            if topics is None:
                topics = [lg.get(f'topic{i}') for i in range(4)]
            block_number = _as_int(lg.get('block_number'))
            events.append(RawLog(
                transaction_id=_as_str(lg.get('transaction_hash')),
                block_number=block_number if block_number is not None else -1,
                address=_as_str(lg.get('address')).lower(),
                topics=tuple(t for t in topics if t) if isinstance(topics, (list, tuple)) else topics,
                data=lg.get('data') or '0x',
                block_timestamp_ms=block_ts.get(block_number) if block_number is not None else None,
            ))
    if skipped:
        logger.warning("Skipped {} malformed entries in query response", skipped)
    return QueryResult(
        events=events,
        next_block=_as_int(payload.get('next_block')),
        archive_height=_as_int(payload.get('archive_height')),
    )


class HypersyncClient:
    def __init__(self, cfg=None, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        api_key = getattr(cfg, 'api_key', None) if cfg is not None else None
        key_env = getattr(cfg, 'api_key_env', 'HYPERSYNC_API_KEY') if cfg is not None else 'HYPERSYNC_API_KEY'
        self.api_key = api_key or os.environ.get(key_env)
        self.height_path = getattr(cfg, 'height_path', '/height') if cfg is not None else '/height'
        self.query_path = getattr(cfg, 'query_path', '/query') if cfg is not None else '/query'
        self.timeout = aiohttp.ClientTimeout(total=float(getattr(cfg, 'request_timeout_sec', 10.0) if cfg is not None else 10.0))
        self._session = session
        self._owns_session = session is None
        self._warned_no_key = False

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        elif not self._warned_no_key:
            self._warned_no_key = True
            logger.warning("No HyperSync API key configured; requests may be rejected or rate limited")
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def get_height(self, chain: ChainDescriptor) -> int:
        url = f"{chain.endpoint}{self.height_path}"
        s = self._get_session()
        try:
            async with s.get(url, headers=self._headers(), timeout=self.timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise HeightCheckFailed(f"Height check failed: {resp.status} {text[:200]}", chain.chain_id)
                j = await resp.json(content_type=None)
        except HeightCheckFailed:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise HeightCheckFailed(f"Height request error: {e!r}", chain.chain_id) from e
        height = _as_int((j or {}).get('height')) if isinstance(j, dict) else None
        if height is None:
            raise HeightCheckFailed(f"Height missing in response: {j!r}", chain.chain_id)
        return height

    async def query_logs(self, chain: ChainDescriptor, from_block: int, to_block: int) -> QueryResult:
        url = f"{chain.endpoint}{self.query_path}"
        payload = build_query(chain, from_block, to_block)
        s = self._get_session()
        started = time.perf_counter()
        try:
            async with s.post(url, json=payload, headers=self._headers(), timeout=self.timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise QueryFailed(f"Hypersync query failed: {resp.status} - {text[:500]}", chain.chain_id, resp.status, text)
                j = await resp.json(content_type=None)
        except QueryFailed:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise QueryFailed(f"Hypersync query error: {e!r}", chain.chain_id) from e
        if not isinstance(j, dict):
            raise QueryFailed(f"Hypersync query returned non-object: {type(j).__name__}", chain.chain_id, 200)
        try:
            result = parse_query_response(j)
        except ValueError as e:
            raise QueryFailed(f"Hypersync query returned malformed data: {e}", chain.chain_id, 200) from e
        logger.debug("[{}] query {}..{} -> {} logs next_block={} in {:.1f}ms",
                     chain.display_name, from_block, to_block, len(result.events),
                     result.next_block, (time.perf_counter() - started) * 1000)
        return result


__all__ = ['HypersyncClient', 'HypersyncError', 'HeightCheckFailed', 'QueryFailed', 'build_query', 'parse_query_response']
