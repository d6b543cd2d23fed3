"""Debounced buffer that coalesces field-level edits into single saves."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Generic, Optional

from .records import RecordCodec, RecordT
from .sync import HybridSynchronizer, SaveResult

logger = logging.getLogger(__name__)


class MutationBuffer(Generic[RecordT]):
    """Collect staged edits and flush them after ``idle_seconds`` of quiet.

    Each ``stage`` restarts the idle timer instead of scheduling another
    flush, so a burst of edits produces exactly one ``save``.
    """

    def __init__(
        self,
        synchronizer: HybridSynchronizer[RecordT],
        codec: RecordCodec[RecordT],
        *,
        idle_seconds: float = 1.0,
    ) -> None:
        self._synchronizer = synchronizer
        self._codec = codec
        self._idle_seconds = idle_seconds
        self._pending: Dict[str, Any] = {}
        self._timer: Optional[asyncio.Task[None]] = None
        self._flush_lock = asyncio.Lock()
        self._closed = False

    @property
    def pending(self) -> Dict[str, Any]:
        return dict(self._pending)

    def stage(self, key: str, value: Any) -> None:
        """Record the latest value for ``key`` and restart the idle timer."""
        if self._closed:
            raise RuntimeError("Cannot stage changes on a closed mutation buffer.")
        normalized_key, normalized_value = self._codec.validate_change(key, value)
        self._pending[normalized_key] = normalized_value
        self._restart_timer()

    def _restart_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._flush_after_idle())

    async def _flush_after_idle(self) -> None:
        await asyncio.sleep(self._idle_seconds)
        self._timer = None
        try:
            await self.flush()
        except Exception:  # noqa: BLE001
            logger.exception("Debounced flush of %s failed", self._synchronizer.key)

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def flush(self) -> Optional[SaveResult]:
        """Merge every pending edit into the current record and save it once."""
        self._cancel_timer()
        async with self._flush_lock:
            if not self._pending:
                return None
            changes, self._pending = self._pending, {}
            try:
                if not self._synchronizer.loaded:
                    # Merge onto the stored record, not the empty default.
                    await self._synchronizer.load()
                merged = self._codec.apply_changes(self._synchronizer.current, changes)
                result = await self._synchronizer.save(merged)
            except Exception:
                # Keep edits staged after the failed attempt; newer values win.
                changes.update(self._pending)
                self._pending = changes
                raise
            logger.debug("Flushed %d staged change(s) for %s", len(changes), self._synchronizer.key)
            return result

    async def aclose(self) -> None:
        """Flush outstanding edits and wait for their local write before teardown."""
        self._closed = True
        await self.flush()


__all__ = ["MutationBuffer"]
