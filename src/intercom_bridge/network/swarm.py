"""Peer-to-peer substrate: the narrow interface the bridge consumes.

The bridge only ever asks the substrate to ``join(topic_key)`` and reacts to
connect / data / topics / close callbacks. ``WebSocketSwarm`` is a small
implementation on top of aiohttp: peers dial each other's ``/swarm``
endpoint, exchange a hello frame with their public key and topic keys, and
afterwards exchange opaque text frames.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

import aiohttp
from aiohttp import WSMsgType, web

from intercom_bridge.network.transport import Transport

logger = logging.getLogger(__name__)

HELLO = "swarm-hello"
TOPICS = "swarm-topics"
HELLO_TIMEOUT = 10.0
DIAL_INTERVAL = 30.0
HEARTBEAT = 30.0


class TopicSubscription:
    """Handle for a joined topic; ``destroy()`` releases it."""

    def __init__(
        self,
        key: bytes,
        announce: bool = True,
        discover: bool = True,
        on_destroy: Callable[[TopicSubscription], None] | None = None,
    ) -> None:
        self.key = key
        self.announce = announce
        self.discover = discover
        self.destroyed = False
        self._on_destroy = on_destroy

    @property
    def key_hex(self) -> str:
        return self.key.hex()

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        if self._on_destroy:
            self._on_destroy(self)


class PeerConnection(ABC):
    """A live connection to one remote peer."""

    remote_public_key: str
    is_initiator: bool

    @property
    @abstractmethod
    def destroyed(self) -> bool:
        """True once the connection can no longer carry data."""

    @abstractmethod
    def write(self, data: str) -> bool:
        """Queue *data* for the peer; never blocks. False if destroyed."""

    @abstractmethod
    def close(self) -> None:
        """Tear the connection down."""


class SwarmHandler(ABC):
    """Receiver of substrate events (implemented by the bridge)."""

    @abstractmethod
    def peer_connected(self, conn: PeerConnection) -> None: ...

    @abstractmethod
    def peer_topics(self, conn: PeerConnection, topic_keys: set[str]) -> None: ...

    @abstractmethod
    def peer_data(self, conn: PeerConnection, data: str | bytes) -> None: ...

    @abstractmethod
    def peer_closed(self, conn: PeerConnection) -> None: ...


class Swarm(ABC):
    """Rendezvous transport: join topics, get peer connections."""

    public_key: str

    def __init__(self) -> None:
        self._handler: SwarmHandler | None = None

    def set_handler(self, handler: SwarmHandler) -> None:
        self._handler = handler

    @abstractmethod
    def join(
        self, key: bytes, *, announce: bool = True, discover: bool = True,
    ) -> TopicSubscription:
        """Subscribe to a topic key."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def _dispatch(self, event: str, *args: Any) -> None:
        """Invoke a handler callback; substrate loops never see its errors."""
        if self._handler is None:
            return
        try:
            getattr(self._handler, event)(*args)
        except Exception:
            logger.exception("Swarm handler error in %s", event)


# ── WebSocket implementation ─────────────────────────────────────────

class WebSocketPeer(PeerConnection):
    """A peer connection over an aiohttp WebSocket (either direction)."""

    def __init__(self, ws: Any, remote_public_key: str, is_initiator: bool) -> None:
        self._ws = ws
        self.remote_public_key = remote_public_key
        self.is_initiator = is_initiator
        self.remote_topics: set[str] = set()
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def destroyed(self) -> bool:
        return self._closed or self._ws.closed

    def write(self, data: str) -> bool:
        if self.destroyed:
            return False
        self._outbox.put_nowait(data)
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._outbox.put_nowait(None)

    async def pump(self) -> None:
        """Drain the outbox onto the socket in order."""
        while True:
            data = await self._outbox.get()
            if data is None:
                break
            try:
                await self._ws.send_str(data)
            except (ConnectionError, RuntimeError):
                logger.debug("Write to %s failed", self.remote_public_key[:12])
                break
        self._closed = True
        await self._ws.close()


class WebSocketSwarm(Swarm):
    """Swarm over aiohttp WebSockets.

    Inbound peers connect to ``GET /swarm`` on our transport; outbound
    connections go to the configured bootstrap endpoints (``host:port``)
    whenever at least one joined topic has discovery enabled.
    """

    def __init__(
        self,
        transport: Transport,
        public_key: str,
        bootstrap_peers: list[str] | None = None,
        dial_interval: float = DIAL_INTERVAL,
    ) -> None:
        super().__init__()
        self.transport = transport
        self.public_key = public_key
        self.dial_interval = dial_interval
        self._bootstrap = bootstrap_peers or []
        self._subscriptions: dict[str, TopicSubscription] = {}
        self._connections: set[WebSocketPeer] = set()
        self._dialing: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._dial_task: asyncio.Task | None = None
        self._wake = asyncio.Event()
        self._running = False

        transport.add_get("/swarm", self._handle_inbound)

    @property
    def topic_keys(self) -> set[str]:
        return set(self._subscriptions)

    def join(
        self, key: bytes, *, announce: bool = True, discover: bool = True,
    ) -> TopicSubscription:
        sub = TopicSubscription(key, announce, discover, on_destroy=self._release)
        self._subscriptions[sub.key_hex] = sub
        self._announce_topics()
        if discover:
            self._wake.set()
        return sub

    def _release(self, sub: TopicSubscription) -> None:
        if self._subscriptions.get(sub.key_hex) is sub:
            del self._subscriptions[sub.key_hex]
            self._announce_topics()

    def _announce_topics(self) -> None:
        frame = json.dumps({"type": TOPICS, "topics": sorted(self._subscriptions)})
        for conn in list(self._connections):
            conn.write(frame)

    def _shared_topics(self, conn: WebSocketPeer) -> set[str]:
        return conn.remote_topics & set(self._subscriptions)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        self._dial_task = asyncio.create_task(self._dial_loop())
        logger.info(
            "WebSocket swarm started: key=%s bootstrap=%d",
            self.public_key[:16], len(self._bootstrap),
        )

    async def stop(self) -> None:
        self._running = False
        if self._dial_task:
            self._dial_task.cancel()
        for conn in list(self._connections):
            conn.close()
        for task in list(self._tasks):
            task.cancel()
        logger.info("WebSocket swarm stopped")

    # ── Connections ──────────────────────────────────────────────

    async def _handle_inbound(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=HEARTBEAT)
        await ws.prepare(request)
        await self._run_connection(ws, is_initiator=False)
        return ws

    async def _dial(self, endpoint: str) -> None:
        session = self.transport.session
        if session is None:
            return
        try:
            async with session.ws_connect(
                f"http://{endpoint}/swarm", heartbeat=HEARTBEAT,
            ) as ws:
                await self._run_connection(ws, is_initiator=True)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug("Dial %s failed: %s", endpoint, e)
        finally:
            self._dialing.discard(endpoint)

    async def _dial_loop(self) -> None:
        while self._running:
            if any(s.discover for s in self._subscriptions.values()):
                for endpoint in self._bootstrap:
                    if endpoint in self._dialing:
                        continue
                    self._dialing.add(endpoint)
                    task = asyncio.create_task(self._dial(endpoint))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), self.dial_interval)
            except asyncio.TimeoutError:
                pass

    async def _handshake(self, ws: Any) -> dict[str, Any] | None:
        """Exchange hello frames; returns the remote hello if acceptable."""
        await ws.send_json({
            "type": HELLO,
            "publicKey": self.public_key,
            "topics": sorted(self._subscriptions),
        })
        msg = await ws.receive(timeout=HELLO_TIMEOUT)
        if msg.type != WSMsgType.TEXT:
            return None
        hello = _control_frame(msg.data)
        if hello is None or hello.get("type") != HELLO:
            return None
        remote = hello.get("publicKey")
        if not isinstance(remote, str) or not remote or remote == self.public_key:
            return None
        return hello

    async def _run_connection(self, ws: Any, is_initiator: bool) -> None:
        try:
            hello = await self._handshake(ws)
        except asyncio.TimeoutError:
            hello = None
        if hello is None:
            logger.debug("Swarm handshake failed")
            await ws.close()
            return

        conn = WebSocketPeer(ws, hello["publicKey"], is_initiator)
        conn.remote_topics = _topic_set(hello)
        self._connections.add(conn)
        pump = asyncio.create_task(conn.pump())
        self._dispatch("peer_connected", conn)
        self._dispatch("peer_topics", conn, self._shared_topics(conn))
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._on_text(conn, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    self._dispatch("peer_data", conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            # Runs even when aiohttp cancels the handler on remote close
            self._connections.discard(conn)
            conn.close()
            self._dispatch("peer_closed", conn)
            with contextlib.suppress(asyncio.CancelledError):
                await pump

    def _on_text(self, conn: WebSocketPeer, data: str) -> None:
        frame = _control_frame(data)
        if frame is not None and frame.get("type") == TOPICS:
            conn.remote_topics = _topic_set(frame)
            self._dispatch("peer_topics", conn, self._shared_topics(conn))
            return
        self._dispatch("peer_data", conn, data)


def _control_frame(data: str) -> dict[str, Any] | None:
    try:
        frame = json.loads(data)
    except json.JSONDecodeError:
        return None
    return frame if isinstance(frame, dict) else None


def _topic_set(frame: dict[str, Any]) -> set[str]:
    topics = frame.get("topics")
    if not isinstance(topics, list):
        return set()
    return {t for t in topics if isinstance(t, str)}
