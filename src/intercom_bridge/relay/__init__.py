"""Local-client sessions and the cross-transport relay policy."""

from intercom_bridge.relay.policy import DEFAULT_PUBLIC_CHANNELS, RelayPolicy
from intercom_bridge.relay.sessions import LocalSession, SessionKind, SessionTable

__all__ = [
    "DEFAULT_PUBLIC_CHANNELS",
    "LocalSession",
    "RelayPolicy",
    "SessionKind",
    "SessionTable",
]
