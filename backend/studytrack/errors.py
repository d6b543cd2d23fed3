"""Error hierarchy for store access and sync retry classification.

Transient failures (``TransientStoreError``) are retried by the synchronizer
with exponential backoff; everything else is either benign (``NotFound``) or
surfaced to the caller without retry.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all persistence errors."""


class NotFound(StoreError):
    """The addressed key has no stored envelope."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No stored envelope for key '{key}'.")
        self.key = key


class TransientStoreError(StoreError):
    """Temporary failure that may succeed on retry."""


class NetworkError(TransientStoreError):
    """The remote store could not be reached (timeouts, refused connections)."""


class ServerError(TransientStoreError):
    """The remote store answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StaleWriteError(StoreError):
    """The remote store already holds a newer envelope for the key.

    Retrying cannot help: the write has been superseded.
    """


class UnknownVersionError(StoreError):
    """No migration path exists from the stored schema version."""

    def __init__(self, kind: str, version: int) -> None:
        super().__init__(f"No migration path for '{kind}' envelopes at schema version {version}.")
        self.kind = kind
        self.version = version


class RecordValidationError(StoreError, ValueError):
    """Malformed key or payload, rejected before any persistence attempt."""


__all__ = [
    "NetworkError",
    "NotFound",
    "RecordValidationError",
    "ServerError",
    "StaleWriteError",
    "StoreError",
    "TransientStoreError",
    "UnknownVersionError",
]
