"""Registries: agents and the message archive."""

from intercom_bridge.registry.agents import Agent, AgentRegistry
from intercom_bridge.registry.archive import MessageArchive, MessageRecord

__all__ = ["Agent", "AgentRegistry", "MessageArchive", "MessageRecord"]
