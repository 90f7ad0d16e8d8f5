"""Transport layer: the aiohttp server and client session the bridge runs on.

One aiohttp application serves the HTTP query surface, the local-client
WebSocket endpoint and the peer WebSocket endpoint. The same process keeps a
single client session for outbound peer dials.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from aiohttp import ClientSession, ClientTimeout, web

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = ClientTimeout(total=None, connect=10)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer preflight requests and stamp CORS headers on JSON responses."""
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPNotFound:
        response = web.json_response({"error": "Not found"}, status=404)
    if not isinstance(response, web.WebSocketResponse):
        response.headers.update(CORS_HEADERS)
    return response


class Transport:
    """HTTP/WebSocket host for the bridge.

    Owns the aiohttp application (routes are registered on it by the
    bridge) plus the client session used for outbound peer connections.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self.host = host
        self.port = port
        self._app = web.Application(middlewares=[cors_middleware])
        self._runner: web.AppRunner | None = None
        self._session: ClientSession | None = None

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def session(self) -> ClientSession | None:
        """Client session for outbound connections (None until started)."""
        return self._session

    def add_get(self, path: str, handler: Handler, **kwargs: Any) -> None:
        self._app.router.add_get(path, handler, **kwargs)

    async def start(self) -> None:
        """Start the HTTP server and client session."""
        self._session = ClientSession(timeout=DEFAULT_TIMEOUT)
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Transport listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Gracefully shut down transport."""
        if self._session:
            await self._session.close()
            self._session = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Transport stopped")
