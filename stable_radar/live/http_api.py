"""aiohttp web surface for the running radar.

Routes:
 - GET /api/hypersync?chainId=1[&debug=true]  recent feed of one chain
 - GET /api/hypersync/height?chainId=1        latest block height
 - GET /api/status                            per-chain ingest + radar state
 - GET /metrics                               Prometheus text
 - GET /healthz                               liveness
"""
from __future__ import annotations
from typing import Optional, Tuple

from aiohttp import web
from loguru import logger

from stable_radar.onchain.hypersync_client import HypersyncError

RUNNER_KEY = web.AppKey("radar_runner", object)


def _truthy(value: Optional[str]) -> bool:
    return (value or '').lower() in ('1', 'true', 'yes')


def _chain_param(request: web.Request) -> Tuple[Optional[int], Optional[web.Response]]:
    runner = request.app[RUNNER_KEY]
    raw = request.query.get('chainId')
    if raw is None or raw == '':
        return None, web.json_response({'error': 'chainId query parameter is required'}, status=400)
    try:
        chain_id = int(raw)
    except ValueError:
        return None, web.json_response({'error': f'Invalid chainId: {raw}'}, status=400)
    if chain_id not in runner.states:
        return None, web.json_response({'error': f'Unsupported chain: {chain_id}'}, status=400)
    return chain_id, None


async def feed_handler(request: web.Request) -> web.Response:
    chain_id, bad = _chain_param(request)
    if bad is not None:
        return bad
    runner = request.app[RUNNER_KEY]
    state = runner.states[chain_id]
    body = runner.get_feed(chain_id).to_dict()
    body['loading'] = state.loading
    body['error'] = state.last_error
    if _truthy(request.query.get('debug')):
        body['debug'] = dict(state.last_debug)
    return web.json_response(body)


async def height_handler(request: web.Request) -> web.Response:
    chain_id, bad = _chain_param(request)
    if bad is not None:
        return bad
    runner = request.app[RUNNER_KEY]
    state = runner.states[chain_id]
    height = state.cursor.last_known_height
    if height is None:
        try:
            height = await runner.client.get_height(state.chain)
        except HypersyncError as e:
            logger.warning("[{}] height proxy failed: {}", state.chain.display_name, e)
            return web.json_response({'error': str(e)}, status=502)
    return web.json_response({'chainId': chain_id, 'height': height})


async def status_handler(request: web.Request) -> web.Response:
    runner = request.app[RUNNER_KEY]
    status = runner.status()
    # json object keys must be strings
    status['chains'] = {str(k): v for k, v in status['chains'].items()}
    status['radar'] = {str(k): v for k, v in status['radar'].items()}
    return web.json_response(status)


async def metrics_handler(request: web.Request) -> web.Response:
    return web.Response(text=request.app[RUNNER_KEY].metrics.to_prometheus(), content_type="text/plain")


async def health_handler(request: web.Request) -> web.Response:
    runner = request.app[RUNNER_KEY]
    return web.json_response({'ok': True, 'loading': runner.is_loading})


def build_app(runner) -> web.Application:
    app = web.Application()
    app[RUNNER_KEY] = runner
    app.router.add_get('/api/hypersync', feed_handler)
    app.router.add_get('/api/hypersync/height', height_handler)
    app.router.add_get('/api/status', status_handler)
    app.router.add_get('/metrics', metrics_handler)
    app.router.add_get('/healthz', health_handler)
    return app


async def start_http(runner, host: str = '127.0.0.1', port: int = 8765) -> web.AppRunner:  # pragma: no cover (integration)
    app_runner = web.AppRunner(build_app(runner))
    await app_runner.setup()
    site = web.TCPSite(app_runner, host, port)
    await site.start()
    logger.info(f"[RadarRunner] HTTP api listening on {host}:{port}")
    return app_runner


__all__ = ['build_app', 'start_http']
