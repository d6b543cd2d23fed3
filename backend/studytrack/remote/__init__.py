"""Clients for the authoritative remote store."""

from .client import RemoteStore, RemoteStoreClient

__all__ = ["RemoteStore", "RemoteStoreClient"]
