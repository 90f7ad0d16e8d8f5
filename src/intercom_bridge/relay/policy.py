"""Channel isolation policy for cross-transport forwarding.

Only channels on the allow-list may cross between the local-client
transport and the peer-to-peer network, in either direction. Everything
else stays on the transport it arrived on.
"""

from __future__ import annotations

from typing import Iterable

DEFAULT_PUBLIC_CHANNELS = frozenset({
    "0000intercom",
    "agent-marketplace",
    "agent-announce",
    "intercom-global",
    "agent-network",
    "sc-bridge-discovery",
})


class RelayPolicy:
    """Static allow-list of public channel names."""

    def __init__(self, public_channels: Iterable[str] | None = None) -> None:
        self.public_channels = frozenset(
            DEFAULT_PUBLIC_CHANNELS if public_channels is None else public_channels
        )

    def allows(self, channel: str | None) -> bool:
        return channel is not None and channel in self.public_channels
