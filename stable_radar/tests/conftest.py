"""
Pytest Fixtures for the Stable Radar Test Suite

Shared fixtures: a chain descriptor, factories for raw logs and decoded
transfers, and a scripted stand-in for the HyperSync client so ingest and
runner tests never touch the network.
"""
from typing import List, Optional

import pytest

from stable_radar.core.config import Settings
from stable_radar.core.custom_types import ChainDescriptor, QueryResult, RawLog, Transfer
from stable_radar.onchain.decoder import ERC20_TRANSFER_SIG
from stable_radar.onchain.hypersync_client import HeightCheckFailed

USDC_BASE = '0x833589fcd6edb6e08f4c7c32d4f71b54bda02913'


def _topic(address_hex40: str) -> str:
    return '0x' + '0' * 24 + address_hex40


class FakeHypersyncClient:
    """Scripted client: heights are consumed in order (the last one repeats),
    responses are consumed in order (then empty results). An Exception
    instance in either script is raised instead of returned."""

    has_api_key = False

    def __init__(self, heights: Optional[List] = None, responses: Optional[List] = None):
        self.heights = list(heights or [])
        self.responses = list(responses or [])
        self.height_calls = 0
        self.queries = []
        self.closed = False

    async def get_height(self, chain):
        self.height_calls += 1
        if not self.heights:
            raise HeightCheckFailed("no height scripted", chain.chain_id)
        h = self.heights.pop(0) if len(self.heights) > 1 else self.heights[0]
        if isinstance(h, Exception):
            raise h
        return h

    async def query_logs(self, chain, from_block, to_block):
        self.queries.append((from_block, to_block))
        r = self.responses.pop(0) if self.responses else QueryResult([], from_block, None)
        if isinstance(r, Exception):
            raise r
        return r

    async def close(self):
        self.closed = True


@pytest.fixture
def base_chain() -> ChainDescriptor:
    return ChainDescriptor(
        chain_id=8453,
        key='base',
        display_name='BASE',
        color='#0052ff',
        contract_address=USDC_BASE,
        endpoint='https://8453.hypersync.xyz',
        block_time_sec=2,
        explorer_url='https://basescan.org/tx/',
    )


@pytest.fixture
def make_log():
    def _make(tx: str, amount: int = 1_000_000, block: int = 100, sender: str = 'a' * 40,
              recipient: str = 'b' * 40, ts_ms: Optional[int] = None) -> RawLog:
        return RawLog(
            transaction_id=tx,
            block_number=block,
            address=USDC_BASE,
            topics=(ERC20_TRANSFER_SIG, _topic(sender), _topic(recipient)),
            data='0x' + format(amount, '064x'),
            block_timestamp_ms=ts_ms,
        )
    return _make


@pytest.fixture
def make_transfer():
    def _make(tx: str, amount_raw: str = '1000000', ts_ms: Optional[int] = None,
              observed_at_ms: int = 0, chain_id: int = 8453) -> Transfer:
        return Transfer(
            transaction_id=tx,
            block_number=100,
            sender='0x' + 'a' * 40,
            recipient='0x' + 'b' * 40,
            amount_raw=amount_raw,
            observed_at_ms=observed_at_ms,
            chain_id=chain_id,
            block_timestamp_ms=ts_ms,
        )
    return _make


@pytest.fixture
def fake_client_cls():
    return FakeHypersyncClient


@pytest.fixture
def settings_fixture() -> Settings:
    """Built-in chain table, Base only, fast timers, no HTTP, no snapshots."""
    return Settings.model_validate({
        'ingest': {'height_poll_interval_ms': 20},
        'radar': {'frame_interval_ms': 10, 'seed': 7},
        'runtime': {'networks': [8453]},
    })
