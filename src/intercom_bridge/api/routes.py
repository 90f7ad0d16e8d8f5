"""HTTP query surface: register bridge routes on the existing aiohttp app.

Read-only JSON views of:
  - bridge health, network summary and capability descriptor
  - live peers and local-client sessions
  - channels, agents and the message archive
  - activity counters and the agent/channel graph

plus ``/ws``, the WebSocket endpoint local clients connect to.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from aiohttp import WSMsgType, web
from pydantic import ValidationError

from intercom_bridge.errors import NotFoundError
from intercom_bridge.protocol.messages import MessageQuery

if TYPE_CHECKING:
    from intercom_bridge.bridge import Bridge

logger = logging.getLogger(__name__)

WS_HEARTBEAT = 30.0


def _json_default(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _dumps(obj):
    return json.dumps(obj, default=_json_default)


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def setup_routes(app: web.Application, bridge: Bridge) -> None:
    """Register query routes and the local-client endpoint on *app*."""
    app["_bridge"] = bridge
    app.router.add_get("/", _health)
    app.router.add_get("/health", _health)
    app.router.add_get("/peers", _peers)
    app.router.add_get("/channels", _channels)
    app.router.add_get("/topics", _channels)
    app.router.add_get("/channels/{key}", _channel)
    app.router.add_get("/agents", _agents)
    app.router.add_get("/agents/{agent_id}", _agent)
    app.router.add_get("/messages", _messages)
    app.router.add_get("/activity", _activity)
    app.router.add_get("/network", _network)
    app.router.add_get("/graph", _graph)
    app.router.add_get("/sessions", _sessions)
    app.router.add_get("/info", _info)
    app.router.add_get("/ws", _websocket)
    logger.info("HTTP query routes registered")


# ── Bridge ───────────────────────────────────────────────────

async def _health(request: web.Request) -> web.Response:
    return _json(request.app["_bridge"].health())


async def _network(request: web.Request) -> web.Response:
    return _json(request.app["_bridge"].network())


async def _info(request: web.Request) -> web.Response:
    return _json(request.app["_bridge"].info())


# ── Peers & sessions ─────────────────────────────────────────

async def _peers(request: web.Request) -> web.Response:
    peers = request.app["_bridge"].peers_view()
    return _json({"count": len(peers), "peers": peers})


async def _sessions(request: web.Request) -> web.Response:
    sessions = request.app["_bridge"].sessions_view()
    return _json({"count": len(sessions), "sessions": sessions})


# ── Channels & agents ────────────────────────────────────────

async def _channels(request: web.Request) -> web.Response:
    channels = request.app["_bridge"].channels_view()
    # "topics" kept for dashboards written against the older endpoint
    return _json({"count": len(channels), "channels": channels, "topics": channels})


async def _channel(request: web.Request) -> web.Response:
    try:
        channel = request.app["_bridge"].get_channel(request.match_info["key"])
    except NotFoundError:
        return _json({"error": "Not found"}, status=404)
    return _json(channel)


async def _agents(request: web.Request) -> web.Response:
    agents = request.app["_bridge"].agents_view()
    return _json({"count": len(agents), "agents": agents})


async def _agent(request: web.Request) -> web.Response:
    try:
        agent = request.app["_bridge"].get_agent(request.match_info["agent_id"])
    except NotFoundError:
        return _json({"error": "Not found"}, status=404)
    return _json(agent)


# ── Messages & activity ──────────────────────────────────────

async def _messages(request: web.Request) -> web.Response:
    try:
        query = MessageQuery.model_validate(dict(request.query))
    except ValidationError as e:
        details = e.errors(include_url=False, include_context=False)
        return _json({"error": "Invalid query", "details": details}, status=400)
    return _json(request.app["_bridge"].query_messages(query))


async def _activity(request: web.Request) -> web.Response:
    return _json(request.app["_bridge"].activity_view())


async def _graph(request: web.Request) -> web.Response:
    return _json(request.app["_bridge"].graph())


# ── Local clients ────────────────────────────────────────────

async def _websocket(request: web.Request) -> web.WebSocketResponse:
    bridge = request.app["_bridge"]
    ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT)
    await ws.prepare(request)

    session = bridge.open_session()
    writer = asyncio.create_task(session.pump(ws.send_str))
    try:
        async for msg in ws:
            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                bridge.handle_session_message(session, msg.data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Client %s error: %s", session.session_id, ws.exception())
                break
    finally:
        bridge.close_session(session)
        await writer
    return ws
