"""Local-client sessions and their channel memberships."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator

from intercom_bridge.protocol.messages import to_iso

logger = logging.getLogger(__name__)


class SessionKind(str, Enum):
    """Protocol a session speaks, fixed by its first parsed message."""

    COMMAND = "command"
    RELAY = "relay"

    @classmethod
    def detect(cls, message: dict[str, Any]) -> SessionKind:
        return cls.RELAY if "action" in message else cls.COMMAND


def new_session_id() -> str:
    return f"ws-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class LocalSession:
    """One local-client connection.

    Outgoing data goes through an in-memory outbox drained by ``pump``;
    ``deliver`` never blocks and never raises.
    """

    def __init__(self, session_id: str | None = None, authenticated: bool = True) -> None:
        self.session_id = session_id or new_session_id()
        self.kind: SessionKind | None = None
        self.authenticated = authenticated
        self.channels: set[str] = set()
        self.agent_id: str | None = None
        self.connected_at = time.time()
        self.closed = False
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()

    @property
    def display_id(self) -> str:
        return self.agent_id or self.session_id

    def bind(self, kind: SessionKind) -> SessionKind:
        """Fix the protocol on first call; later calls return the bound kind."""
        if self.kind is None:
            self.kind = kind
            logger.info("Session %s speaks %s protocol", self.session_id, kind.value)
        return self.kind

    def deliver(self, data: str | dict[str, Any]) -> bool:
        if self.closed:
            return False
        if not isinstance(data, str):
            data = json.dumps(data, default=str)
        self._outbox.put_nowait(data)
        return True

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._outbox.put_nowait(None)

    async def pump(self, send: Callable[[str], Awaitable[Any]]) -> None:
        """Write queued data with *send* until closed or a write fails."""
        while True:
            data = await self._outbox.get()
            if data is None:
                break
            try:
                await send(data)
            except (ConnectionError, RuntimeError):
                logger.debug("Write to session %s failed", self.session_id)
                break
        self.closed = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "protocol": self.kind.value if self.kind else None,
            "authenticated": self.authenticated,
            "channels": sorted(self.channels),
            "agentId": self.agent_id,
            "connectedAt": to_iso(self.connected_at),
        }


class SessionTable:
    """Open sessions plus a channel-name → members index for relay sessions."""

    def __init__(self) -> None:
        self._sessions: dict[str, LocalSession] = {}
        self._channels: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[LocalSession]:
        return iter(list(self._sessions.values()))

    def add(self, session: LocalSession) -> None:
        self._sessions[session.session_id] = session

    def remove(self, session: LocalSession) -> None:
        """Drop the session and its membership in every channel."""
        for name in list(session.channels):
            self.leave_channel(session, name)
        self._sessions.pop(session.session_id, None)

    def join_channel(self, session: LocalSession, name: str) -> None:
        session.channels.add(name)
        self._channels.setdefault(name, set()).add(session.session_id)

    def leave_channel(self, session: LocalSession, name: str) -> None:
        session.channels.discard(name)
        members = self._channels.get(name)
        if members is not None:
            members.discard(session.session_id)
            if not members:
                del self._channels[name]

    def members(self, name: str) -> list[LocalSession]:
        return [
            self._sessions[sid]
            for sid in self._channels.get(name, ())
            if sid in self._sessions
        ]
