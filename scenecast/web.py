"""
SceneCast HTTP API (aiohttp)

Endpoints:
    POST /api/describe   scene descriptor JSON -> {"description": "..."}
    GET  /api/stats      queue and rate-limiter counters
    GET  /api/health     liveness

Usage:
    from scenecast.web import run_server
    run_server(settings)
"""

import logging
from typing import Optional

from aiohttp import web

from . import __version__
from .config import Settings
from .description_queue import DescriptionQueue, build_queue
from .exceptions import ValidationError
from .scene import SceneModel, parse_scene

logger = logging.getLogger(__name__)

QUEUE_KEY = web.AppKey("queue", DescriptionQueue)

# Base64 frames dominate the payload
MAX_BODY_BYTES = 16 * 1024 * 1024


# ============================================================================
# Handlers
# ============================================================================

def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def handle_describe(request: web.Request) -> web.Response:
    try:
        payload = await request.json()
    except ValueError:
        return _error(400, "request body must be JSON")

    try:
        scene = parse_scene(payload)
    except ValidationError as e:
        return _error(400, str(e))

    queue = request.app[QUEUE_KEY]
    description = await queue.enqueue(scene)
    return web.json_response({"description": description})


async def handle_stats(request: web.Request) -> web.Response:
    return web.json_response(request.app[QUEUE_KEY].to_dict())


async def handle_health(request: web.Request) -> web.Response:
    queue = request.app[QUEUE_KEY]
    return web.json_response({
        "status": "ok",
        "version": __version__,
        "provider": queue.provider is not None,
        "pending": queue.pending,
    })


def create_app(queue: DescriptionQueue) -> web.Application:
    app = web.Application(client_max_size=MAX_BODY_BYTES)
    app[QUEUE_KEY] = queue

    app.router.add_post("/api/describe", handle_describe)
    app.router.add_get("/api/stats", handle_stats)
    app.router.add_get("/api/health", handle_health)

    async def close_queue(app):
        await app[QUEUE_KEY].close()

    app.on_cleanup.append(close_queue)
    return app


def run_server(settings: Optional[Settings] = None, host: Optional[str] = None, port: Optional[int] = None):
    """Serve the API until interrupted."""
    settings = settings or Settings.from_env()
    host = host or settings.web_host
    port = port or settings.web_port

    async def make_app():
        return create_app(build_queue(settings))

    logger.info(f"SceneCast API listening on http://{host}:{port}")
    web.run_app(make_app(), host=host, port=port, print=None)


__all__ = ["create_app", "parse_scene", "run_server", "SceneModel"]
