"""Device-local caches used by the synchronizer."""

from .local_store import LocalCacheStore

__all__ = ["LocalCacheStore"]
