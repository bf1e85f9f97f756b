"""Live radar runtime.

Per-chain workers poll the indexer height and run incremental log queries;
one animator advances every chain's radar and optionally writes PNG
snapshots. The HTTP API (`stable_radar.live.http_api`) is only started when
`http.enabled` is set or `--http-port` is passed to the CLI.
"""

__all__ = [
    "runner",
    "metrics",
    "http_api",
]
