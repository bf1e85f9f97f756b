"""CLI entrypoint for the multi-chain stablecoin transfer radar."""
from __future__ import annotations
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from stable_radar.core.config import ConfigError, default_settings, load_settings
from stable_radar.live.runner import RadarRunner


def _networks(value: str) -> List[int]:
    try:
        return [int(v) for v in value.split(',') if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma separated chain ids, got {value!r}")


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Stable Radar: live USDC transfer radar")
    p.add_argument("--config", default="settings.yaml")
    p.add_argument("--networks", type=_networks, default=None, help="Comma separated chain ids, e.g. 1,8453")
    p.add_argument("--threshold", type=float, default=None, help="Only display transfers of at least this many USD")
    p.add_argument("--http-port", type=int, default=None, help="Serve the HTTP api on this port")
    p.add_argument("--snapshot-dir", default=None, help="Write a PNG per radar into this directory")
    p.add_argument("--duration", type=float, default=0, help="Stop after N seconds (0 = until Ctrl+C)")
    p.add_argument("--log-level", default=None, help="Override logging.level")
    return p.parse_args(argv)


def build_settings(args):
    if Path(args.config).is_file():
        settings = load_settings(args.config)
    else:
        logger.info(f"No config at '{args.config}', using built-in defaults")
        settings = default_settings()
    if args.networks:
        settings.runtime.networks = args.networks
    if args.threshold is not None:
        settings.runtime.threshold_usd = max(0.0, args.threshold)
    if args.http_port:
        settings.http.enabled = True
        settings.http.port = args.http_port
    if args.snapshot_dir:
        settings.radar.snapshot_dir = args.snapshot_dir
    if args.log_level:
        settings.logging.level = args.log_level.upper()
    return settings


def _configure_logging(level: str, json_log: bool = False) -> None:
    logger.remove()
    if json_log:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(lambda m: print(m, end=""), level=level)


async def _amain(args) -> None:
    settings = build_settings(args)
    _configure_logging(settings.logging.level, settings.logging.json_log)
    runner = RadarRunner(settings)
    try:
        await runner.start()
        if args.duration and args.duration > 0:
            await asyncio.sleep(args.duration)
        else:
            # Keep process running until Ctrl+C
            while True:
                await asyncio.sleep(3600)
    finally:
        await runner.stop()
        logger.info(f"[RadarRunner] metrics={runner.metrics.snapshot()['counters']}")


def run(argv: Optional[List[str]] = None):
    load_dotenv()  # Load .env file if it exists
    logger.remove()
    logger.add(lambda m: print(m, end=""), level="INFO")
    args = parse_args(argv)
    try:
        asyncio.run(_amain(args))
    except KeyboardInterrupt:
        logger.warning("Ctrl+C received; shutting down")
    except (ConfigError, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(2)


if __name__ == "__main__":  # pragma: no cover
    run()
