"""Hybrid local/remote synchronizer for envelope-backed records.

Reads go remote-first and fall back to the device cache (or the canonical
default record) whenever the remote store is unavailable, and keep a cached
copy that is newer than the remote one, pushing it back. Writes land in the
device cache immediately and are pushed to the remote store by a background
task that retries transient failures with exponential backoff. The remote
store is authoritative: ``reconcile`` replaces the cached copy whenever the
remote copy differs, unless the cached copy is a newer write that has not been
synced yet, in which case it is pushed instead.

Every ``save`` receives a sequence number. A newer save cancels the retry task
of an older one and results that arrive for a superseded sequence are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Tuple

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from .cache import LocalCacheStore
from .errors import (
    NotFound,
    RecordValidationError,
    StaleWriteError,
    StoreError,
    TransientStoreError,
)
from .migrations import MigrationEngine, migrations
from .records import RecordCodec, RecordT, StoredEnvelope
from .remote import RemoteStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"


class ReconcileOutcome(str, Enum):
    UNCHANGED = "unchanged"
    OVERWRITTEN = "overwritten"
    PUSHED = "pushed"
    DEFERRED = "deferred"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SaveResult:
    sequence: int
    local_saved: bool
    envelope: StoredEnvelope


class HybridSynchronizer(Generic[RecordT]):
    """Owns one record (one store key) for one user session."""

    def __init__(
        self,
        key: str,
        codec: RecordCodec[RecordT],
        local: LocalCacheStore,
        remote: RemoteStore,
        *,
        engine: MigrationEngine = migrations,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self._key = key
        self._codec = codec
        self._local = local
        self._remote = remote
        self._engine = engine
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep
        self._sequence = 0
        self._synced_sequence = 0
        self._status = SyncStatus.SYNCED
        self._sync_task: Optional[asyncio.Task[None]] = None
        self._last_modified: Optional[datetime] = None
        self._current: Optional[RecordT] = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def has_unsynced_changes(self) -> bool:
        return self._synced_sequence < self._sequence and self._status != SyncStatus.SYNCED

    @property
    def loaded(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> RecordT:
        """Last record loaded or saved through this synchronizer."""
        if self._current is None:
            return self._codec.default()
        return self._current

    # Loading -----------------------------------------------------------------

    def _decode(self, envelope: StoredEnvelope) -> Tuple[StoredEnvelope, RecordT]:
        if envelope.kind != self._codec.kind:
            raise RecordValidationError(
                f"Envelope for '{self._key}' has kind '{envelope.kind}', expected '{self._codec.kind}'."
            )
        migrated = self._engine.migrate(envelope)
        return migrated, self._codec.from_payload(migrated.payload)

    def _remember(self, envelope: StoredEnvelope, record: RecordT) -> None:
        self._current = record
        if self._last_modified is None or envelope.last_modified > self._last_modified:
            self._last_modified = envelope.last_modified

    def _load_local(self) -> Optional[RecordT]:
        envelope = self._local.get(self._key)
        if envelope is None:
            return None
        try:
            migrated, record = self._decode(envelope)
        except RecordValidationError as exc:
            logger.warning("Ignoring unreadable cached envelope for %s: %s", self._key, exc)
            return None
        if migrated.schema_version != envelope.schema_version:
            self._local.set(self._key, migrated)
        self._remember(migrated, record)
        return record

    async def load(self) -> RecordT:
        """Return the freshest available record; only ``UnknownVersionError`` escapes."""
        if self.has_unsynced_changes:
            cached = self._load_local()
            if cached is not None:
                return cached

        sequence = self._sequence
        remote_envelope: Optional[StoredEnvelope] = None
        remote_missing = False
        try:
            remote_envelope = await self._remote.fetch(self._key)
        except NotFound:
            remote_missing = True
            logger.info("No remote record for %s yet; using local cache", self._key)
        except (TransientStoreError, RecordValidationError) as exc:
            logger.warning("Remote load failed for %s; falling back to local cache: %s", self._key, exc)

        if sequence != self._sequence:
            remote_envelope = None
            remote_missing = False

        local_envelope = self._local.get(self._key)
        if remote_envelope is not None and (
            local_envelope is None or local_envelope.last_modified <= remote_envelope.last_modified
        ):
            try:
                migrated, record = self._decode(remote_envelope)
            except RecordValidationError as exc:
                logger.warning("Remote envelope for %s is malformed; using local cache: %s", self._key, exc)
            else:
                if not self._local.set(self._key, migrated):
                    logger.warning("Failed to refresh local cache for %s", self._key)
                self._remember(migrated, record)
                return record
            remote_envelope = None

        cached = self._load_local()
        if cached is not None:
            if remote_envelope is not None or remote_missing:
                # Cached copy is a write the remote store never received.
                self._push_cached()
            return cached
        record = self._codec.default()
        self._current = record
        return record

    def _push_cached(self) -> None:
        envelope = self._local.get(self._key)
        if envelope is None:
            return
        self._sequence += 1
        sequence = self._sequence
        previous = self._sync_task
        if previous is not None and not previous.done():
            previous.cancel()
        self._status = SyncStatus.PENDING
        logger.info("Cached %s is newer than the remote copy; pushing it", self._key)
        emit_event("load_kept_local", key=self._key, last_modified=envelope.last_modified)
        self._sync_task = asyncio.get_running_loop().create_task(
            self._sync_with_retry(sequence, envelope),
            name=f"sync:{self._key}:{sequence}",
        )

    # Saving ------------------------------------------------------------------

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        floor = self._last_modified
        cached = self._local.get(self._key)
        if cached is not None and (floor is None or cached.last_modified > floor):
            floor = cached.last_modified
        if floor is not None and now <= floor:
            now = floor + timedelta(microseconds=1)
        self._last_modified = now
        return now

    async def save(self, record: RecordT) -> SaveResult:
        """Write locally now and sync remotely in the background.

        Nothing between validation and the local write awaits, so local writes
        of consecutive saves never interleave.
        """
        payload = self._codec.to_payload(record)
        stored_record = self._codec.from_payload(payload)
        envelope = StoredEnvelope(
            kind=self._codec.kind,
            schema_version=self._engine.current_version(self._codec.kind),
            last_modified=self._next_timestamp(),
            payload=payload,
        )
        self._sequence += 1
        sequence = self._sequence
        local_saved = self._local.set(self._key, envelope)
        if not local_saved:
            logger.warning("Local write failed for %s (sequence %d); relying on remote sync", self._key, sequence)
        self._current = stored_record

        previous = self._sync_task
        if previous is not None and not previous.done():
            previous.cancel()
        self._status = SyncStatus.PENDING
        self._sync_task = asyncio.get_running_loop().create_task(
            self._sync_with_retry(sequence, envelope),
            name=f"sync:{self._key}:{sequence}",
        )
        return SaveResult(sequence=sequence, local_saved=local_saved, envelope=envelope)

    def _is_superseded(self, sequence: int, envelope: StoredEnvelope) -> bool:
        if sequence != self._sequence:
            return True
        cached = self._local.get(self._key)
        return cached is not None and cached.last_modified > envelope.last_modified

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Remote sync for %s failed on attempt %d/%d: %s; retrying in %.2fs",
            self._key,
            retry_state.attempt_number,
            self._max_attempts,
            error,
            delay,
        )

    def _mark_synced(self, sequence: int) -> None:
        if sequence == self._sequence:
            self._synced_sequence = sequence
            self._status = SyncStatus.SYNCED

    async def _sync_with_retry(self, sequence: int, envelope: StoredEnvelope) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._base_delay, exp_base=2, min=0),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if self._is_superseded(sequence, envelope):
                        emit_event("sync_superseded", key=self._key, sequence=sequence)
                        return
                    await self._remote.put(self._key, envelope)
        except asyncio.CancelledError:
            logger.debug("Remote sync for %s sequence %d cancelled by a newer save", self._key, sequence)
            raise
        except StaleWriteError:
            logger.warning("Remote store already holds a newer %s; leaving reconciliation to resolve it", self._key)
            emit_event("sync_superseded", key=self._key, sequence=sequence)
            self._mark_synced(sequence)
            return
        except TransientStoreError as exc:
            if sequence == self._sequence:
                self._status = SyncStatus.FAILED
                emit_event(
                    "sync_pending",
                    key=self._key,
                    sequence=sequence,
                    attempts=self._max_attempts,
                    error=str(exc),
                )
            logger.error(
                "Giving up remote sync for %s after %d attempts; local copy stays authoritative",
                self._key,
                self._max_attempts,
            )
            return
        except RecordValidationError as exc:
            if sequence == self._sequence:
                self._status = SyncStatus.FAILED
            logger.error("Remote store rejected %s: %s", self._key, exc)
            return
        except StoreError as exc:
            if sequence == self._sequence:
                self._status = SyncStatus.FAILED
            logger.error("Remote sync for %s failed permanently: %s", self._key, exc)
            return

        if sequence != self._sequence:
            emit_event("sync_superseded", key=self._key, sequence=sequence)
            return
        self._mark_synced(sequence)
        emit_event("sync_completed", key=self._key, sequence=sequence)

    async def wait_for_sync(self) -> SyncStatus:
        """Wait until no background sync is running and return the resulting status."""
        while self._sync_task is not None and not self._sync_task.done():
            await asyncio.gather(self._sync_task, return_exceptions=True)
        return self._status

    # Reconciliation ------------------------------------------------------------

    async def _push(self, envelope: StoredEnvelope) -> ReconcileOutcome:
        sequence = self._sequence
        try:
            await self._remote.put(self._key, envelope)
        except StaleWriteError:
            logger.info("Remote copy of %s changed during reconciliation; deferring", self._key)
            return ReconcileOutcome.DEFERRED
        except (TransientStoreError, RecordValidationError) as exc:
            logger.warning("Reconciliation push for %s failed: %s", self._key, exc)
            if sequence == self._sequence and self._status != SyncStatus.SYNCED:
                self._status = SyncStatus.FAILED
            return ReconcileOutcome.UNAVAILABLE
        self._mark_synced(sequence)
        emit_event("reconcile_pushed", key=self._key, sequence=sequence)
        return ReconcileOutcome.PUSHED

    async def reconcile(self) -> ReconcileOutcome:
        """Bring the device cache in line with the authoritative remote copy."""
        sequence = self._sequence
        try:
            remote_envelope: Optional[StoredEnvelope] = await self._remote.fetch(self._key)
        except NotFound:
            remote_envelope = None
        except (TransientStoreError, RecordValidationError) as exc:
            logger.warning("Reconciliation fetch for %s failed: %s", self._key, exc)
            return ReconcileOutcome.UNAVAILABLE

        if sequence != self._sequence:
            return ReconcileOutcome.DEFERRED

        local_envelope = self._local.get(self._key)
        if remote_envelope is None:
            if local_envelope is None:
                return ReconcileOutcome.UNCHANGED
            return await self._push(local_envelope)

        if local_envelope is not None and local_envelope.last_modified > remote_envelope.last_modified:
            return await self._push(local_envelope)

        if (
            local_envelope is not None
            and local_envelope.last_modified == remote_envelope.last_modified
            and local_envelope.same_content(remote_envelope)
        ):
            self._mark_synced(sequence)
            return ReconcileOutcome.UNCHANGED

        try:
            migrated, record = self._decode(remote_envelope)
        except RecordValidationError as exc:
            logger.warning("Remote envelope for %s is malformed; keeping local copy: %s", self._key, exc)
            return ReconcileOutcome.UNAVAILABLE
        if not self._local.set(self._key, migrated):
            logger.warning("Failed to overwrite local cache for %s during reconciliation", self._key)
            return ReconcileOutcome.UNAVAILABLE
        self._remember(migrated, record)
        self._mark_synced(sequence)
        emit_event("reconcile_overwrite", key=self._key, last_modified=migrated.last_modified)
        return ReconcileOutcome.OVERWRITTEN

    async def run_reconcile_loop(self, interval_seconds: float) -> None:
        """Reconcile on a fixed interval until cancelled."""
        while True:
            await self._sleep(interval_seconds)
            try:
                await self.reconcile()
            except StoreError:
                logger.exception("Periodic reconciliation of %s failed", self._key)

    async def aclose(self) -> None:
        await self.wait_for_sync()


__all__ = [
    "HybridSynchronizer",
    "ReconcileOutcome",
    "SaveResult",
    "SyncStatus",
]
