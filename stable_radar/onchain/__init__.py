"""Ingest side of the radar: chain table, height tracking, log ingestion.

Modules:
 - registry: static table of monitored chains
 - hypersync_client: aiohttp client for the height and log-query endpoints
 - decoder: ERC-20 Transfer log decoding
 - height: cheap height poll gating the heavy query
 - ingest: incremental query + dedup + bounded retention
 - feed_store: per-chain recent transfers and all-time counts
"""

__all__ = [
    'registry',
    'hypersync_client',
    'decoder',
    'state',
    'height',
    'ingest',
    'feed_store',
]
