"""Intercom bridge: one process joining local clients and the peer network.

Two transports meet here:
  - local clients: short-lived WebSocket sessions on ``/ws`` that speak
    either the command protocol (dashboards) or the relay protocol (agents);
  - network peers: long-lived swarm connections on shared channels.

The bridge keeps queryable state about both sides (peers, channels, agents,
a bounded message window and activity stats) and lets only allow-listed
channels cross between them.

Every mutation happens synchronously on the event loop; socket writes go
through per-connection outboxes, so nothing here ever awaits a peer or a
client while holding state.
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from intercom_bridge import __version__
from intercom_bridge.api.routes import setup_routes
from intercom_bridge.errors import (
    BridgeError,
    InvalidRequestError,
    NotFoundError,
    UnauthorizedError,
)
from intercom_bridge.fanout import EventFanout
from intercom_bridge.network.peer import Peer, PeerTable
from intercom_bridge.network.swarm import PeerConnection, Swarm, SwarmHandler, WebSocketSwarm
from intercom_bridge.network.topics import Channel, TopicTable
from intercom_bridge.network.transport import Transport
from intercom_bridge.protocol.messages import (
    AgentAnnouncement,
    EventEnvelope,
    EventType,
    MessageQuery,
    now_ms,
)
from intercom_bridge.registry.agents import Agent, AgentRegistry
from intercom_bridge.registry.archive import DEFAULT_CAPACITY, MessageArchive, MessageRecord
from intercom_bridge.relay.handlers import CommandProtocolHandler, RelayProtocolHandler
from intercom_bridge.relay.policy import DEFAULT_PUBLIC_CHANNELS, RelayPolicy
from intercom_bridge.relay.relay import CrossTransportRelay
from intercom_bridge.relay.sessions import LocalSession, SessionKind, SessionTable
from intercom_bridge.stats.activity import ActivityKind, ActivityTracker

logger = logging.getLogger(__name__)

MODE = "unified"

DEFAULT_AUTO_JOIN = [
    "sc-bridge-discovery",
    "agent-marketplace",
    "agent-announce",
    "intercom-global",
    "agent-network",
    "0000intercom",
    "agents-services",
]


# ── Configuration ────────────────────────────────────────────────────

@dataclass
class BridgeConfig:
    """Full configuration for a bridge process."""

    host: str = "0.0.0.0"
    port: int = 8080
    public_key: str = ""  # Generated if empty
    bootstrap_peers: list[str] = field(default_factory=list)

    # Message window
    archive_capacity: int = DEFAULT_CAPACITY

    # Relay security (None disables the auth gate)
    auth_token: str | None = None
    public_channels: list[str] = field(
        default_factory=lambda: sorted(DEFAULT_PUBLIC_CHANNELS)
    )

    # Channels joined shortly after startup
    auto_join_channels: list[str] = field(
        default_factory=lambda: list(DEFAULT_AUTO_JOIN)
    )
    auto_join_delay: float = 1.0

    # Expiry hooks (None = keep forever)
    agent_ttl: float | None = None
    stats_retention_hours: int | None = None
    maintenance_interval: float = 60.0

    def __post_init__(self) -> None:
        if not self.auth_token:
            self.auth_token = None


class Bridge(SwarmHandler):
    """Orchestrates the tables, the relay and both client protocols."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        swarm: Swarm | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.transport = transport or Transport(self.config.host, self.config.port)
        if swarm is None:
            swarm = WebSocketSwarm(
                self.transport,
                self.config.public_key or secrets.token_hex(32),
                bootstrap_peers=self.config.bootstrap_peers,
            )
        self.swarm = swarm
        self.public_key = swarm.public_key
        self.swarm.set_handler(self)

        self.sessions = SessionTable()
        self.fanout = EventFanout(self.sessions)
        self.activity = ActivityTracker()
        self.peers = PeerTable()
        self.topics = TopicTable(self.swarm, self._on_channel_event)
        self.agents = AgentRegistry()
        self.archive = MessageArchive(self.config.archive_capacity, self.topics)
        self.policy = RelayPolicy(self.config.public_channels)
        self.relay = CrossTransportRelay(
            self.policy,
            self.peers,
            self.fanout,
            self.activity,
            self.record_message,
            self.public_key,
        )
        self.relay_handler = RelayProtocolHandler(self)
        self.command_handler = CommandProtocolHandler(self)

        self._running = False
        self._background_tasks: list[asyncio.Task] = []

        setup_routes(self.transport.app, self)

    # ================================================================
    # Lifecycle
    # ================================================================

    async def start(self) -> None:
        """Start serving, connect to the swarm and join default channels."""
        self._running = True
        await self.transport.start()
        await self.swarm.start()

        self._background_tasks.append(asyncio.create_task(self._auto_join()))
        if self.config.agent_ttl or self.config.stats_retention_hours:
            self._background_tasks.append(
                asyncio.create_task(self._maintenance_loop())
            )

        logger.info(
            "Bridge started: key=%s port=%d auth=%s public_channels=%d",
            self.public_key[:16],
            self.config.port,
            "enabled" if self.config.auth_token is not None else "disabled",
            len(self.policy.public_channels),
        )

    async def stop(self) -> None:
        """Stop the bridge."""
        self._running = False
        for t in self._background_tasks:
            t.cancel()
        self._background_tasks.clear()
        for session in self.sessions:
            self.close_session(session)
        for name in self.topics.names():
            self.topics.leave(name)
        await self.swarm.stop()
        await self.transport.stop()
        logger.info("Bridge stopped")

    async def _auto_join(self) -> None:
        await asyncio.sleep(self.config.auto_join_delay)
        for name in self.config.auto_join_channels:
            self.topics.join(name)
        logger.info("Auto-joined %d channels", len(self.config.auto_join_channels))

    async def _maintenance_loop(self) -> None:
        """Periodic expiry of stale agents and old hour buckets."""
        while self._running:
            await asyncio.sleep(self.config.maintenance_interval)
            self.run_maintenance()

    def run_maintenance(self) -> dict[str, int]:
        """Run the configured expiry hooks once."""
        result = {"agentsEvicted": 0, "bucketsPruned": 0}
        if self.config.agent_ttl:
            result["agentsEvicted"] = self.agents.evict_older_than(
                self.config.agent_ttl, keep=self._connected_ids(),
            )
        if self.config.stats_retention_hours:
            result["bucketsPruned"] = self.activity.prune_buckets(
                self.config.stats_retention_hours,
            )
        return result

    # ================================================================
    # Swarm callbacks
    # ================================================================

    def peer_connected(self, conn: PeerConnection) -> None:
        key = conn.remote_public_key
        self.peers.add(conn)
        logger.info(
            "Peer connected: %s... (%s)",
            key[:16], "initiator" if conn.is_initiator else "responder",
        )

        self.fanout.publish(EventType.AGENT_JOIN, {"agentId": key, "publicKey": key})
        if key in self.agents:
            self.agents.touch(key)
        else:
            self.register_agent(key, public_key=key, agent_type="swarm-peer")

    def peer_topics(self, conn: PeerConnection, topic_keys: set[str]) -> None:
        key = conn.remote_public_key
        peer = self.peers.get(key)
        if peer is None or peer.connection is not conn:
            return

        shared = {k for k in topic_keys if k in self.topics}
        for k in peer.topics - shared:
            self.topics.record_peer_leave(k, key)
        for k in shared - peer.topics:
            self.topics.record_peer_join(k, key)
        peer.topics = shared

        if shared:
            self.agents.register(key, public_key=key, topics=shared)
        logger.debug("Peer %s shares %d channels", key[:12], len(shared))

    def peer_data(self, conn: PeerConnection, data: str | bytes) -> None:
        key = conn.remote_public_key
        peer = self.peers.get(key)
        if peer is not None:
            peer.mark_seen()
        self.agents.touch(key)

        message = _parse_peer_message(data, key)
        if message.get("type") == "agent-announce" and isinstance(message.get("payload"), dict):
            self._handle_announce(key, message["payload"])

        channel = self._resolve_channel(peer, message)
        self.record_message(MessageRecord(
            sender=key,
            content=message,
            channel=channel,
            kind=str(message.get("type") or "message"),
        ))
        # Channel traffic reaches local clients only through the allow-list
        if self.policy.allows(channel):
            self.fanout.publish(
                EventType.MESSAGE,
                {"source": key, "channel": channel, "message": message},
            )
        self.relay.relay_inbound(channel, message, key)

    def peer_closed(self, conn: PeerConnection) -> None:
        key = conn.remote_public_key
        peer = self.peers.remove(key, conn)
        if peer is None:
            logger.debug("Stale close for %s ignored", key[:12])
            return

        for topic_key in peer.topics:
            self.topics.record_peer_leave(topic_key, key)
        # Agents announced over this peer outlive it
        for agent in self.agents.by_public_key(key):
            self.agents.touch(agent.id)
        logger.info("Peer disconnected: %s...", key[:16])
        self.fanout.publish(EventType.AGENT_LEAVE, {"agentId": key})

    def _handle_announce(self, public_key: str, payload: dict[str, Any]) -> None:
        try:
            announcement = AgentAnnouncement.model_validate(payload)
        except ValidationError as e:
            logger.warning("Bad agent-announce from %s: %s", public_key[:12], e)
            return
        self.register_agent(
            announcement.agent_id or public_key,
            public_key=public_key,
            name=announcement.name,
            agent_type=announcement.agent_type,
            capabilities=announcement.capabilities,
            metadata=announcement.merged_metadata(),
        )

    def _resolve_channel(self, peer: Peer | None, message: dict[str, Any]) -> str | None:
        """Find the channel a peer message belongs to, if it can be known."""
        payload = message.get("payload")
        for candidate in (
            message.get("channel"),
            payload.get("channel") if isinstance(payload, dict) else None,
        ):
            if isinstance(candidate, str):
                return candidate

        # Unambiguous only when the peer shares a single channel with us
        if peer is not None and len(peer.topics) == 1:
            channel = self.topics.get(next(iter(peer.topics)))
            if channel is not None:
                return channel.name
        return None

    # ================================================================
    # Shared state updates
    # ================================================================

    def record_message(self, record: MessageRecord, received: bool = True) -> None:
        """Archive a message; inbound traffic also counts as received."""
        self.archive.archive(record)
        if not received:
            return
        self.activity.record(
            ActivityKind.MESSAGE_RECEIVED,
            timestamp=record.timestamp,
            agent_id=record.sender,
            channel=record.channel,
        )

    def register_agent(self, agent_id: str | None = None, **kwargs: Any) -> Agent:
        """Insert or merge an agent; announces it when it is new."""
        agent, created = self.agents.register(agent_id, **kwargs)
        if created:
            self.activity.record(ActivityKind.AGENT_DISCOVERED, agent_id=agent.id)
            self.fanout.publish(EventType.AGENT_DISCOVERED, agent.to_dict())
        return agent

    def _on_channel_event(self, event: str, channel: Channel) -> None:
        if event == "joined":
            self.activity.record(ActivityKind.CHANNEL_DISCOVERED, channel=channel.name)
            self.fanout.publish(EventType.CHANNEL_JOINED, channel.to_dict())
        elif event == "left":
            for peer in self.peers:
                peer.topics.discard(channel.key)
            self.fanout.publish(
                EventType.CHANNEL_LEFT, {"name": channel.name, "key": channel.key},
            )

    # ================================================================
    # Local-client sessions
    # ================================================================

    def open_session(self) -> LocalSession:
        """Register a new local client and greet it."""
        session = LocalSession(authenticated=self.config.auth_token is None)
        self.sessions.add(session)
        session.deliver({
            "type": "welcome",
            "bridge": self.public_key,
            "mode": MODE,
            "timestamp": now_ms(),
        })
        logger.info("Client connected: %s (total %d)", session.session_id, len(self.sessions))
        return session

    def close_session(self, session: LocalSession) -> None:
        session.close()
        self.sessions.remove(session)
        logger.info("Client disconnected: %s", session.session_id)

    def handle_session_message(self, session: LocalSession, raw: str | bytes) -> None:
        """Parse, authenticate and dispatch one message from a local client.

        Malformed input is logged and ignored. Client mistakes come back as
        an error envelope; the session always stays open.
        """
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Invalid JSON from %s", session.session_id)
            return
        if not isinstance(message, dict):
            logger.warning("Non-object message from %s ignored", session.session_id)
            return

        kind = session.bind(SessionKind.detect(message))
        handler = self.relay_handler if kind is SessionKind.RELAY else self.command_handler
        try:
            self._authenticate(session, message)
            handler.handle(session, message)
        except ValidationError as e:
            self._send_error(session, InvalidRequestError(_describe_validation(e)))
        except BridgeError as e:
            self._send_error(session, e)

    def _authenticate(self, session: LocalSession, message: dict[str, Any]) -> None:
        if session.authenticated:
            return
        token = message.get("token")
        payload = message.get("payload")
        if token is None and isinstance(payload, dict):
            token = payload.get("token")
        expected = self.config.auth_token or ""
        if isinstance(token, str) and hmac.compare_digest(token.encode(), expected.encode()):
            session.authenticated = True
            logger.info("Client authenticated: %s", session.session_id)
            return
        raise UnauthorizedError("Authentication required")

    @staticmethod
    def _send_error(session: LocalSession, error: BridgeError) -> None:
        logger.debug("Error for %s: %s (%s)", session.session_id, error, error.code)
        session.deliver({
            **error.details,
            "type": "error",
            "error": str(error),
            "code": error.code,
            "timestamp": now_ms(),
        })

    # ================================================================
    # Views (HTTP and command protocol)
    # ================================================================

    def _live_counts(self) -> dict[str, int]:
        return {
            "peers": len(self.peers),
            "agents": len(self.agents),
            "channels": len(self.topics),
            "sessions": len(self.sessions),
        }

    def _connected_ids(self) -> set[str]:
        connected = {p.public_key for p in self.peers}
        connected.update(s.agent_id for s in self.sessions if s.agent_id)
        return connected

    def _relay_session_count(self) -> int:
        return sum(1 for s in self.sessions if s.kind is SessionKind.RELAY)

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "mode": MODE,
            "publicKey": self.public_key,
            "sessions": len(self.sessions),
            "relaySessions": self._relay_session_count(),
            "peers": len(self.peers),
            "channels": len(self.topics),
            "agents": len(self.agents),
            "messages": len(self.archive),
            "uptime": self.stats()["uptime"],
        }

    def peers_view(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self.peers]

    def channels_view(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.topics.list()]

    def get_channel(self, key: str) -> dict[str, Any]:
        channel = self.topics.get(key)
        if channel is None:
            raise NotFoundError("Channel not found", key=key)
        return channel.to_dict()

    def agents_view(self) -> list[dict[str, Any]]:
        return [a.to_dict() for a in self.agents]

    def get_agent(self, agent_id: str) -> dict[str, Any]:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found", id=agent_id)
        return agent.to_dict()

    def query_messages(self, query: MessageQuery) -> dict[str, Any]:
        result = self.archive.query(
            channel=query.channel,
            sender=query.sender,
            limit=query.limit,
            offset=query.offset,
        )
        return result.to_dict()

    def stats(self) -> dict[str, Any]:
        return self.activity.snapshot(self._live_counts())

    def activity_view(self) -> dict[str, Any]:
        return {**self.stats(), "hourly": self.activity.hourly()}

    def sessions_view(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.sessions]

    def network(self) -> dict[str, Any]:
        return {
            "bridge": {
                "publicKey": self.public_key,
                "mode": MODE,
                "uptime": self.stats()["uptime"],
            },
            **self._live_counts(),
            "relaySessions": self._relay_session_count(),
            "messages": len(self.archive),
        }

    def graph(self) -> dict[str, Any]:
        """Agents, channels and this bridge as a node/edge graph."""
        connected = self._connected_ids()
        nodes: list[dict[str, Any]] = [
            {"id": self.public_key, "kind": "self", "label": "bridge"},
        ]
        edges: list[dict[str, Any]] = []

        for agent in self.agents:
            nodes.append({
                "id": agent.id,
                "kind": "agent",
                "label": agent.name,
                "type": agent.type,
            })
            if agent.id in connected or agent.public_key in connected:
                edges.append({"source": agent.id, "target": self.public_key, "kind": "connection"})
            for key in sorted(agent.topics):
                if key in self.topics:
                    edges.append({"source": agent.id, "target": key, "kind": "subscription"})

        for channel in self.topics.list():
            nodes.append({"id": channel.key, "kind": "channel", "label": channel.name})
            edges.append({"source": channel.key, "target": self.public_key, "kind": "hosted"})

        return {"nodes": nodes, "edges": edges}

    def info(self) -> dict[str, Any]:
        return {
            "name": "Intercom Bridge",
            "version": __version__,
            "mode": MODE,
            "publicKey": self.public_key,
            "protocols": ["swarm", "websocket-relay"],
            "features": [
                "agent-discovery",
                "message-archival",
                "cross-protocol-relay",
                "topic-management",
                "activity-tracking",
            ],
            "endpoints": [
                "/health", "/peers", "/channels", "/topics", "/agents", "/messages",
                "/activity", "/network", "/graph", "/sessions", "/info",
            ],
            "websocketCommands": self.command_handler.commands,
            "relayActions": self.relay_handler.actions,
            "security": {
                "relayAuth": "enabled" if self.config.auth_token is not None else "disabled",
                "publicChannels": sorted(self.policy.public_channels),
            },
        }


def _parse_peer_message(data: str | bytes, source: str) -> dict[str, Any]:
    """Decode a peer frame; anything that is not a JSON object gets wrapped."""
    raw = data if isinstance(data, bytes) else data.encode("utf-8")
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        message = None
    if isinstance(message, dict):
        return message
    envelope = EventEnvelope(
        type="message",
        payload={"source": source, "raw": raw.hex()[:64]},
    )
    return envelope.model_dump()


def _describe_validation(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]
