"""Weekly report trigger evaluated on every application activation.

The scheduler has two observable states per ISO week: Idle and Fired. An
activation inside the configured firing window moves Idle -> Fired, and the
new ``TriggerState`` is persisted *before* the report is compiled and sent so
that a crash or delivery failure can never cause a second send in the same
week. Fired returns to Idle only when the week identifier rolls over.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError

from .delivery import DeliveryResult
from .errors import RecordValidationError
from .migrations import TRIGGER_KIND
from .records import RecordCodec
from .sync import HybridSynchronizer
from .telemetry import emit_event

logger = logging.getLogger(__name__)

ReportAction = Callable[[datetime], Awaitable[DeliveryResult]]


def week_identifier(moment: datetime) -> str:
    """ISO week-and-year, e.g. ``2026-W42``."""
    iso = moment.isocalendar()
    return f"{iso[0]:04d}-W{iso[1]:02d}"


class TriggerState(BaseModel):
    last_fired_week: Optional[str] = None
    last_fired_at: Optional[datetime] = None


class TriggerStateCodec(RecordCodec[TriggerState]):
    kind = TRIGGER_KIND

    def default(self) -> TriggerState:
        return TriggerState()

    def to_payload(self, record: TriggerState) -> Dict[str, Any]:
        return record.model_dump(mode="json")

    def from_payload(self, payload: Mapping[str, Any]) -> TriggerState:
        try:
            return TriggerState.model_validate(payload)
        except ValidationError as exc:
            raise RecordValidationError(str(exc)) from exc


trigger_state_codec = TriggerStateCodec()


@dataclass(frozen=True)
class FiringWindow:
    """Weekday (0 = Monday) plus a ``[start_hour, end_hour)`` range in ``tz``."""

    weekday: int
    start_hour: int
    end_hour: int
    tz: ZoneInfo

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValueError("weekday must be between 0 (Monday) and 6 (Sunday).")
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError("Firing window hours must satisfy 0 <= start < end <= 24.")

    @classmethod
    def build(cls, weekday: int, start_hour: int, end_hour: int, tz_name: str) -> "FiringWindow":
        try:
            zone = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown report timezone: {tz_name}") from exc
        return cls(weekday=weekday, start_hour=start_hour, end_hour=end_hour, tz=zone)

    def localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)

    def contains(self, moment: datetime) -> bool:
        local = self.localize(moment)
        return local.weekday() == self.weekday and self.start_hour <= local.hour < self.end_hour


class TriggerDecision(str, Enum):
    OUTSIDE_WINDOW = "outside_window"
    ALREADY_FIRED = "already_fired"
    NOT_PERSISTED = "not_persisted"
    FIRED = "fired"


@dataclass(frozen=True)
class TriggerOutcome:
    decision: TriggerDecision
    week: str
    delivery: Optional[DeliveryResult] = None

    @property
    def fired(self) -> bool:
        return self.decision == TriggerDecision.FIRED


class WeeklyTriggerScheduler:
    def __init__(
        self,
        state_sync: HybridSynchronizer[TriggerState],
        window: FiringWindow,
        action: ReportAction,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._state_sync = state_sync
        self._window = window
        self._action = action
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def state_sync(self) -> HybridSynchronizer[TriggerState]:
        return self._state_sync

    @property
    def window(self) -> FiringWindow:
        return self._window

    async def check(self, now: Optional[datetime] = None) -> TriggerOutcome:
        """Fire the weekly report if it is due; safe to call on every activation."""
        async with self._lock:
            moment = self._window.localize(now or self._clock())
            week = week_identifier(moment)
            if not self._window.contains(moment):
                return TriggerOutcome(decision=TriggerDecision.OUTSIDE_WINDOW, week=week)

            state = await self._state_sync.load()
            if state.last_fired_week == week:
                logger.debug("Weekly report for %s already fired at %s", week, state.last_fired_at)
                return TriggerOutcome(decision=TriggerDecision.ALREADY_FIRED, week=week)

            fired_state = TriggerState(last_fired_week=week, last_fired_at=moment.astimezone(timezone.utc))
            saved = await self._state_sync.save(fired_state)
            if not saved.local_saved:
                logger.error("Could not persist trigger state for %s; skipping report to avoid duplicates", week)
                return TriggerOutcome(decision=TriggerDecision.NOT_PERSISTED, week=week)
            emit_event("weekly_report_fired", week=week, fired_at=fired_state.last_fired_at)

            try:
                delivery = await self._action(moment)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Weekly report for %s could not be produced", week)
                delivery = DeliveryResult(success=False, error_kind="report", detail=str(exc))

            if delivery.success:
                emit_event("weekly_report_delivered", week=week)
            else:
                logger.warning(
                    "Weekly report delivery for %s failed (%s); not retrying this week",
                    week,
                    delivery.error_kind,
                )
                emit_event(
                    "weekly_report_delivery_failed",
                    week=week,
                    error_kind=delivery.error_kind,
                    detail=delivery.detail,
                )
            return TriggerOutcome(decision=TriggerDecision.FIRED, week=week, delivery=delivery)


__all__ = [
    "FiringWindow",
    "TriggerDecision",
    "TriggerOutcome",
    "TriggerState",
    "TriggerStateCodec",
    "WeeklyTriggerScheduler",
    "trigger_state_codec",
    "week_identifier",
]
