"""HTTP and WebSocket surface (aiohttp.web)."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any

import aiohttp
from aiohttp import web

from dubswitch import __version__
from dubswitch.engine import RoutingEngine
from dubswitch.exceptions import InvalidMatrixError, NoDeviceError, PersistenceError

_logger = logging.getLogger(__name__)

ENGINE_KEY = web.AppKey("engine", RoutingEngine)
STOP_EVENT_KEY = web.AppKey("stop_event", asyncio.Event)
WEBSOCKETS_KEY = web.AppKey("websockets", weakref.WeakSet)


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(
            text='{"ok":false,"error":"invalid JSON body"}',
            content_type="application/json",
        ) from exc


# ------------------------------------------------------------------
# Handlers
# ------------------------------------------------------------------


async def autodiscover(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    address = await engine.discover()
    return web.json_response({"ip": address})


async def enumerate_sources(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    try:
        sources = await engine.enumerate_sources()
    except NoDeviceError as exc:
        return _error(503, str(exc))
    patches = {channel: source.to_wire() for channel, source in sources.items()}
    return web.json_response({"ok": True, "userPatches": patches})


async def set_channel_matrix(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    body = await _read_json(request)
    try:
        result = engine.save_matrix(body)
    except InvalidMatrixError as exc:
        return _error(400, str(exc))
    except PersistenceError as exc:
        _logger.error("Matrix save failed: %s", exc)
        return _error(500, str(exc))
    payload: dict[str, Any] = {"ok": True, "matrix": result.matrix}
    if result.warning:
        payload["warning"] = result.warning
    return web.json_response(payload)


async def get_matrix(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    return web.json_response({"ok": True, "matrix": engine.matrix_store.document})


async def set_port(request: web.Request) -> web.Response:
    """Persist the preferred port, then stop so a supervisor restarts us."""
    engine = request.app[ENGINE_KEY]
    body = await _read_json(request)
    port = body.get("port") if isinstance(body, dict) else None
    try:
        saved = engine.save_port(port)
    except ValueError as exc:
        return _error(400, str(exc))
    except PersistenceError as exc:
        _logger.error("Port save failed: %s", exc)
        return _error(500, str(exc))

    stop_event = request.app[STOP_EVENT_KEY]
    _logger.info("Preferred port changed to %d; stopping in %.1fs", saved, engine.config.restart_delay)
    asyncio.get_running_loop().call_later(engine.config.restart_delay, stop_event.set)
    return web.json_response({"ok": True, "port": saved})


async def status(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    return web.json_response(engine.status().to_wire())


async def version(request: web.Request) -> web.Response:
    return web.Response(text=__version__)


async def websocket(request: web.Request) -> web.WebSocketResponse:
    """One UI session: snapshot on connect, then a stream of commands."""
    engine = request.app[ENGINE_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    request.app[WEBSOCKETS_KEY].add(ws)
    engine.attach_session(ws)
    try:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                engine.handle_session_text(ws, msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                engine.handle_session_text(ws, msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                _logger.warning("Session closed with error: %s", ws.exception())
    finally:
        engine.detach_session(ws)
        request.app[WEBSOCKETS_KEY].discard(ws)
    return ws


async def _close_websockets(app: web.Application) -> None:
    for ws in list(app[WEBSOCKETS_KEY]):
        await ws.close(code=aiohttp.WSCloseCode.GOING_AWAY, message=b"Server shutdown")


def create_app(engine: RoutingEngine, *, stop_event: asyncio.Event | None = None) -> web.Application:
    """Build the application around an already-constructed engine.

    The engine's lifecycle stays with the caller; the app only closes open
    WebSocket sessions on shutdown.
    """
    app = web.Application()
    app[ENGINE_KEY] = engine
    app[STOP_EVENT_KEY] = stop_event if stop_event is not None else asyncio.Event()
    app[WEBSOCKETS_KEY] = weakref.WeakSet()
    app.on_shutdown.append(_close_websockets)
    app.add_routes(
        [
            web.get("/ws", websocket),
            web.get("/autodiscover-x32", autodiscover),
            web.get("/enumerate-sources", enumerate_sources),
            web.post("/set-channel-matrix", set_channel_matrix),
            web.get("/get-matrix", get_matrix),
            web.post("/set-port", set_port),
            web.get("/status", status),
            web.get("/version", version),
        ]
    )
    return app
