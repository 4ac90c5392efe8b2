"""Routers package."""

from . import cloud_init, health, registered_clients

__all__ = ["cloud_init", "health", "registered_clients"]
