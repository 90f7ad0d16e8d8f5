"""Wire models for both local-client protocols and the event surface."""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ts: float) -> str:
    """Render an epoch timestamp as ISO-8601 UTC."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def new_event_id() -> str:
    return f"evt-{secrets.token_hex(8)}"


class EventType(str, Enum):
    """Unsolicited notifications pushed to every local client."""

    AGENT_JOIN = "agent-join"
    AGENT_LEAVE = "agent-leave"
    AGENT_DISCOVERED = "agent-discovered"
    CHANNEL_JOINED = "channel-joined"
    CHANNEL_LEFT = "channel-left"
    MESSAGE = "message"


class EventEnvelope(BaseModel):
    """The ``{type, id, timestamp, payload}`` envelope for every event."""

    type: str
    id: str = Field(default_factory=new_event_id)
    timestamp: str = Field(default_factory=now_iso)
    payload: Any = Field(default_factory=dict)


class RelayRequest(BaseModel):
    """An ``action``-based message from a relay session."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    action: str
    channel: str | None = None
    message: Any = None
    agent_id: str | None = Field(default=None, alias="agentId")
    token: str | None = None


class CommandRequest(BaseModel):
    """A ``type``-based message from a command session."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    payload: dict[str, Any] | None = None
    token: str | None = None


class JoinChannelRequest(BaseModel):
    """Payload of ``join_topic``; accepts the legacy server/client flag names."""

    name: str
    announce: bool = Field(
        default=True, validation_alias=AliasChoices("announce", "server"),
    )
    discover: bool = Field(
        default=True, validation_alias=AliasChoices("discover", "client"),
    )


class LeaveChannelRequest(BaseModel):
    name: str


class ChannelLookup(BaseModel):
    """Payload of ``get_channel``: a channel key or a channel name."""

    key: str | None = None
    name: str | None = None


class AgentLookup(BaseModel):
    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "agentId"))


class DiscoveryMessage(BaseModel):
    """A ``discovery`` message a relay agent posts to announce itself."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    agent_id: str | None = Field(default=None, alias="agentId")
    name: str | None = None
    capabilities: list[str] | None = None


class MessageQuery(BaseModel):
    """Archive filter and pagination parameters."""

    channel: str | None = None
    sender: str | None = None
    limit: int = Field(default=100, ge=0)
    offset: int = Field(default=0, ge=0)


class AgentAnnouncement(BaseModel):
    """Payload of an ``agent-announce`` peer message."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    agent_id: str | None = Field(default=None, alias="agentId")
    name: str | None = None
    agent_type: str | None = Field(default=None, alias="type")
    capabilities: list[str] | None = None
    metadata: dict[str, Any] | None = None

    def merged_metadata(self) -> dict[str, Any]:
        """Explicit metadata, or whatever extra fields the announcer sent."""
        if self.metadata is not None:
            return self.metadata
        return dict(self.model_extra or {})
