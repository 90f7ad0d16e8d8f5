"""Agent registry: logical identities that outlive their connections.

Agents are keyed by an explicit announced id, or by the originating public
key when none was announced. A second sighting merges into the existing
record: provided scalars overwrite, sets are unioned, metadata is shallow
merged, and ``last_seen`` always moves forward.

Records are never dropped implicitly. ``evict_older_than`` is the explicit
expiry hook; the bridge only calls it when an agent TTL is configured.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from intercom_bridge.protocol.messages import to_iso

logger = logging.getLogger(__name__)


@dataclass
class Agent:
    """A logical agent identity."""

    id: str
    name: str = "Unknown Agent"
    type: str = "unknown"
    public_key: str = ""
    capabilities: set[str] = field(default_factory=set)
    topics: set[str] = field(default_factory=set)
    metadata: dict[str, Any] = field(default_factory=dict)
    first_seen: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)

    def touch(self) -> None:
        # last_seen is strictly monotonic even when the clock is coarse
        now = time.time()
        self.last_seen = now if now > self.last_seen else self.last_seen + 1e-6

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "capabilities": sorted(self.capabilities),
            "publicKey": self.public_key,
            "topics": sorted(self.topics),
            "firstSeen": to_iso(self.first_seen),
            "lastSeen": to_iso(self.last_seen),
            "metadata": self.metadata,
        }


class AgentRegistry:
    """Insert-or-merge store of every agent seen by this bridge."""

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self._agents.values()))

    def register(
        self,
        agent_id: str | None = None,
        *,
        public_key: str | None = None,
        name: str | None = None,
        agent_type: str | None = None,
        capabilities: Iterable[str] | None = None,
        topics: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Agent, bool]:
        """Register or merge an agent.

        Returns:
            ``(agent, created)``.

        Raises:
            ValueError: If neither an id nor a public key is given.
        """
        resolved = agent_id or public_key
        if not resolved:
            raise ValueError("cannot register agent without id or public key")

        existing = self._agents.get(resolved)
        if existing is not None:
            existing.touch()
            if name:
                existing.name = name
            if agent_type:
                existing.type = agent_type
            if public_key:
                existing.public_key = public_key
            if capabilities:
                existing.capabilities.update(capabilities)
            if topics:
                existing.topics.update(topics)
            if metadata:
                existing.metadata = {**existing.metadata, **metadata}
            logger.debug("Agent updated: %s (%s)", resolved[:16], existing.name)
            return existing, False

        agent = Agent(
            id=resolved,
            name=name or "Unknown Agent",
            type=agent_type or "unknown",
            public_key=public_key or resolved,
            capabilities=set(capabilities or ()),
            topics=set(topics or ()),
            metadata=dict(metadata or {}),
        )
        self._agents[resolved] = agent
        logger.info("Agent registered: %s (%s)", resolved[:16], agent.name)
        return agent, True

    def touch(self, agent_id: str) -> Agent | None:
        """Bump ``last_seen`` without changing anything else."""
        agent = self._agents.get(agent_id)
        if agent is not None:
            agent.touch()
        return agent

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def list(self) -> list[Agent]:
        return list(self._agents.values())

    def by_public_key(self, public_key: str) -> list[Agent]:
        return [a for a in self._agents.values() if a.public_key == public_key]

    def evict_older_than(self, max_age_seconds: float, keep: set[str] | None = None) -> int:
        """Remove agents not seen for *max_age_seconds*.

        Args:
            max_age_seconds: Age threshold against ``last_seen``.
            keep: Agent ids never to evict (e.g. currently connected).

        Returns:
            Number of agents removed.
        """
        cutoff = time.time() - max_age_seconds
        keep = keep or set()
        stale = [
            aid for aid, a in self._agents.items()
            if a.last_seen < cutoff and aid not in keep
        ]
        for aid in stale:
            del self._agents[aid]
        if stale:
            logger.info("Evicted %d stale agents", len(stale))
        return len(stale)
