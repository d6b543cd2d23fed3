from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

os.environ.setdefault("STUDYTRACK_DATABASE_URL", "sqlite://")

from studytrack.cache import LocalCacheStore  # noqa: E402
from studytrack.config import get_settings  # noqa: E402
from studytrack.errors import NetworkError, NotFound, StaleWriteError  # noqa: E402
from studytrack.records import StoredEnvelope  # noqa: E402
from studytrack.telemetry import clear_listeners  # noqa: E402


class FakeRemote:
    """In-memory remote store with switchable network failures."""

    def __init__(self) -> None:
        self.entries: Dict[str, StoredEnvelope] = {}
        self.puts: List[StoredEnvelope] = []
        self.failing = False
        self.fail_next = 0
        self.fetches = 0

    def _maybe_fail(self) -> None:
        if self.failing:
            raise NetworkError("remote unreachable")
        if self.fail_next > 0:
            self.fail_next -= 1
            raise NetworkError("remote unreachable")

    async def fetch(self, key: str) -> StoredEnvelope:
        self.fetches += 1
        self._maybe_fail()
        if key not in self.entries:
            raise NotFound(key)
        return self.entries[key]

    async def put(self, key: str, envelope: StoredEnvelope) -> StoredEnvelope:
        self._maybe_fail()
        existing = self.entries.get(key)
        if existing is not None and existing.last_modified > envelope.last_modified:
            raise StaleWriteError(key)
        self.entries[key] = envelope
        self.puts.append(envelope)
        return envelope

    async def delete(self, key: str) -> None:
        self._maybe_fail()
        if self.entries.pop(key, None) is None:
            raise NotFound(key)


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and optionally blocks on a gate."""

    def __init__(self, gated: bool = False) -> None:
        self.delays: List[float] = []
        self.gate: Optional[asyncio.Event] = None
        self._gated = gated

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._gated:
            if self.gate is None:
                self.gate = asyncio.Event()
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

    def release(self) -> None:
        if self.gate is not None:
            self.gate.set()


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_listeners():
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture()
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture()
def local() -> LocalCacheStore:
    return LocalCacheStore()


@pytest.fixture()
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
