"""Wire protocol models."""

from intercom_bridge.protocol.messages import EventEnvelope, EventType

__all__ = ["EventEnvelope", "EventType"]
