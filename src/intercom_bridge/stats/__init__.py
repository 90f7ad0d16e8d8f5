"""Activity statistics."""

from intercom_bridge.stats.activity import ActivityKind, ActivityTracker

__all__ = ["ActivityKind", "ActivityTracker"]
