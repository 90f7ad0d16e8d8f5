"""HTTP and WebSocket surface of the bridge."""

from intercom_bridge.api.routes import setup_routes

__all__ = ["setup_routes"]
