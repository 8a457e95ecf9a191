"""Harmony - multi-tenant IoT activity and rewards backend."""

__version__ = "0.1.0"
