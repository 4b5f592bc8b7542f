"""Replicate Pi-hole v6 configuration from a main instance to secondaries."""

__version__ = "0.4.0"
