"""Intercom bridge: relay and registry between local clients and a peer swarm."""

__version__ = "2.0.0"
