"""Device-local envelope cache backed by a JSON file or a process-local dict."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..records import StoredEnvelope

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 5 * 1024 * 1024


def _normalize_key(key: str) -> str:
    normalized = key.strip()
    if not normalized:
        raise ValueError("Store key cannot be empty.")
    return normalized


class LocalCacheStore:
    """Synchronous key-value store for envelopes scoped to one device.

    ``get`` returns ``None`` for absent or unreadable entries; ``set`` and
    ``delete`` return ``False`` when the blob cannot be serialized, would
    exceed the storage quota, or the backing file cannot be read.
    """

    def __init__(self, path: Optional[Path] = None, *, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._path = path
        self._max_bytes = max_bytes
        self._memory: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _quarantine_unlocked(self) -> bool:
        assert self._path is not None
        target = self._path.with_suffix(self._path.suffix + ".corrupt")
        try:
            self._path.replace(target)
        except OSError:
            logger.exception("Failed to move unreadable local store %s aside", self._path)
            return False
        logger.error("Moved unreadable local store %s to %s", self._path, target)
        return True

    def _load_unlocked(self) -> Optional[Dict[str, Dict[str, Any]]]:
        """Return every stored entry, or ``None`` when the file cannot be read.

        A file holding something other than a JSON object is moved aside to
        ``<name>.corrupt`` so later writes start clean without destroying it.
        """
        if self._path is None:
            return dict(self._memory)
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except json.JSONDecodeError:
            logger.exception("Local store at %s is not valid JSON", self._path)
            return {} if self._quarantine_unlocked() else None
        except OSError:
            logger.exception("Failed to read local store at %s", self._path)
            return None
        if not isinstance(raw, dict):
            logger.warning("Local store at %s does not hold a JSON object", self._path)
            return {} if self._quarantine_unlocked() else None
        return raw

    def _write_unlocked(self, entries: Dict[str, Dict[str, Any]]) -> bool:
        try:
            encoded = json.dumps(entries, indent=2)
        except (TypeError, ValueError):
            logger.exception("Failed to serialize local store entries")
            return False
        if len(encoded.encode("utf-8")) > self._max_bytes:
            logger.warning("Local store quota of %d bytes exceeded; write rejected", self._max_bytes)
            return False
        if self._path is None:
            self._memory = json.loads(encoded)
            return True
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(encoded, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            logger.exception("Failed to write local store at %s", self._path)
            return False
        return True

    def get(self, key: str) -> Optional[StoredEnvelope]:
        normalized = _normalize_key(key)
        with self._lock:
            entries = self._load_unlocked()
            entry = entries.get(normalized) if entries is not None else None
        if entry is None:
            return None
        try:
            return StoredEnvelope.model_validate(entry)
        except ValidationError:
            logger.exception("Discarding unreadable local envelope for %s", normalized)
            return None

    def set(self, key: str, envelope: StoredEnvelope) -> bool:
        normalized = _normalize_key(key)
        with self._lock:
            entries = self._load_unlocked()
            if entries is None:
                return False
            entries[normalized] = envelope.model_dump(mode="json")
            return self._write_unlocked(entries)

    def delete(self, key: str) -> bool:
        normalized = _normalize_key(key)
        with self._lock:
            entries = self._load_unlocked()
            if entries is None:
                return False
            if entries.pop(normalized, None) is None:
                return True
            return self._write_unlocked(entries)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            if self._path is not None and self._path.exists():
                self._path.unlink()


__all__ = ["LocalCacheStore"]
