"""Handlers for the two local-client protocols.

Relay sessions speak the ``action``-based protocol (auth / join / leave /
send / publish). Command sessions speak the ``type``-based protocol used by
dashboards (ping, list_*, join_topic, get_* ...). Both raise ``BridgeError``
subclasses for client mistakes; the bridge turns those into error envelopes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from intercom_bridge.errors import (
    MissingFieldError,
    NotFoundError,
    NotJoinedError,
    PolicyViolationError,
    UnknownCommandError,
)
from intercom_bridge.network.topics import topic_key_hex
from intercom_bridge.protocol.messages import (
    AgentLookup,
    ChannelLookup,
    CommandRequest,
    DiscoveryMessage,
    JoinChannelRequest,
    LeaveChannelRequest,
    MessageQuery,
    RelayRequest,
    now_ms,
)
from intercom_bridge.registry.archive import MessageRecord
from intercom_bridge.relay.relay import relay_envelope
from intercom_bridge.relay.sessions import LocalSession

if TYPE_CHECKING:
    from intercom_bridge.bridge import Bridge

logger = logging.getLogger(__name__)


class RelayProtocolHandler:
    """``action``-based protocol of relay sessions."""

    def __init__(self, bridge: Bridge) -> None:
        self.bridge = bridge
        self._actions: dict[str, Callable[[LocalSession, RelayRequest], None]] = {
            "auth": self._auth,
            "join": self._join,
            "leave": self._leave,
            "send": self._send,
            "publish": self._send,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._actions)

    def handle(self, session: LocalSession, message: dict[str, Any]) -> None:
        request = RelayRequest.model_validate(message)
        action = self._actions.get(request.action)
        if action is None:
            raise UnknownCommandError("Unknown action", action=request.action)
        action(session, request)

    def _auth(self, session: LocalSession, request: RelayRequest) -> None:
        session.deliver({"type": "authenticated", "timestamp": now_ms()})

    def _join(self, session: LocalSession, request: RelayRequest) -> None:
        channel = _require_channel(request)
        self.bridge.sessions.join_channel(session, channel)
        if request.agent_id:
            session.agent_id = request.agent_id
        logger.info("%s joined channel %s", session.session_id, channel)

        # Public channels are mirrored onto the network
        if self.bridge.policy.allows(channel):
            self.bridge.topics.join(channel)

        session.deliver({"type": "joined", "channel": channel, "timestamp": now_ms()})

    def _leave(self, session: LocalSession, request: RelayRequest) -> None:
        channel = _require_channel(request)
        self.bridge.sessions.leave_channel(session, channel)
        logger.info("%s left channel %s", session.session_id, channel)
        session.deliver({"type": "left", "channel": channel, "timestamp": now_ms()})

    def _send(self, session: LocalSession, request: RelayRequest) -> None:
        channel = _require_channel(request)
        if channel not in session.channels:
            raise NotJoinedError(channel)

        origin = session.display_id
        message = request.message
        logger.info("Message on %s from %s", channel, origin)

        if isinstance(message, dict) and message.get("type") == "discovery":
            self._register_discovery(channel, DiscoveryMessage.model_validate(message), origin)

        self.bridge.fanout.send_to_channel(
            channel, relay_envelope(channel, message, origin), exclude=session,
        )

        try:
            self.bridge.relay.relay_outbound(channel, message, origin)
        except PolicyViolationError:
            # Delivered locally only; still part of the archive
            self.bridge.record_message(MessageRecord(
                sender=origin,
                content=message,
                channel=channel,
                kind="relay-message",
            ))
            raise

    def _register_discovery(self, channel: str, message: DiscoveryMessage, origin: str) -> None:
        self.bridge.register_agent(
            message.agent_id or origin,
            name=message.name,
            agent_type="relay-agent",
            capabilities=message.capabilities,
            topics=[topic_key_hex(channel)],
            metadata=message.model_dump(by_alias=True, exclude_none=True),
        )


def _require_channel(request: RelayRequest) -> str:
    if not request.channel:
        raise MissingFieldError("channel")
    return request.channel


class CommandProtocolHandler:
    """``type``-based protocol of command sessions."""

    def __init__(self, bridge: Bridge) -> None:
        self.bridge = bridge
        self._commands: dict[str, Callable[[LocalSession, dict[str, Any]], None]] = {
            "ping": self._ping,
            "auth": self._auth,
            "list_peers": self._list_peers,
            "list_topics": self._list_topics,
            "list_channels": self._list_topics,
            "get_channel": self._get_channel,
            "list_agents": self._list_agents,
            "get_agent": self._get_agent,
            "list_messages": self._list_messages,
            "join_topic": self._join_topic,
            "join_channel": self._join_topic,
            "leave_topic": self._leave_topic,
            "leave_channel": self._leave_topic,
            "get_stats": self._get_stats,
            "get_activity": self._get_activity,
            "get_graph": self._get_graph,
            "get_info": self._get_info,
        }

    @property
    def commands(self) -> list[str]:
        return sorted(self._commands)

    def handle(self, session: LocalSession, message: dict[str, Any]) -> None:
        request = CommandRequest.model_validate(message)
        command = self._commands.get(request.type or "")
        if command is None:
            raise UnknownCommandError("Unknown command", command=request.type)
        command(session, request.payload or {})

    def _ping(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "pong", "timestamp": now_ms()})

    def _auth(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "authenticated", "timestamp": now_ms()})

    def _list_peers(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "peer-list", "peers": self.bridge.peers_view()})

    def _list_topics(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "topic-list", "topics": self.bridge.channels_view()})

    def _get_channel(self, session: LocalSession, payload: dict[str, Any]) -> None:
        lookup = ChannelLookup.model_validate(payload)
        key = lookup.key or (topic_key_hex(lookup.name) if lookup.name else None)
        if not key:
            raise MissingFieldError("key")
        try:
            channel = self.bridge.get_channel(key)
        except NotFoundError:
            session.deliver({"type": "not-found", "kind": "channel", "key": key})
            return
        session.deliver({"type": "channel", "channel": channel})

    def _list_agents(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "agent-list", "agents": self.bridge.agents_view()})

    def _get_agent(self, session: LocalSession, payload: dict[str, Any]) -> None:
        agent_id = AgentLookup.model_validate(payload).id
        if not agent_id:
            raise MissingFieldError("id")
        try:
            agent = self.bridge.get_agent(agent_id)
        except NotFoundError:
            session.deliver({"type": "not-found", "kind": "agent", "id": agent_id})
            return
        session.deliver({"type": "agent", "agent": agent})

    def _list_messages(self, session: LocalSession, payload: dict[str, Any]) -> None:
        result = self.bridge.query_messages(MessageQuery.model_validate(payload))
        session.deliver({"type": "message-list", **result})

    def _join_topic(self, session: LocalSession, payload: dict[str, Any]) -> None:
        if not payload.get("name"):
            raise MissingFieldError("name")
        request = JoinChannelRequest.model_validate(payload)
        key = self.bridge.topics.join(
            request.name, announce=request.announce, discover=request.discover,
        )
        session.deliver({"type": "topic-joined", "topic": request.name, "key": key})

    def _leave_topic(self, session: LocalSession, payload: dict[str, Any]) -> None:
        if not payload.get("name"):
            raise MissingFieldError("name")
        name = LeaveChannelRequest.model_validate(payload).name
        left = self.bridge.topics.leave(name)
        session.deliver({"type": "topic-left", "topic": name, "left": left})

    def _get_stats(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "stats", **self.bridge.stats()})

    def _get_activity(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "activity", **self.bridge.activity_view()})

    def _get_graph(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "graph", **self.bridge.graph()})

    def _get_info(self, session: LocalSession, payload: dict[str, Any]) -> None:
        session.deliver({"type": "info", **self.bridge.info()})
