"""Per-session facade wiring stores, synchronizers, buffers and the weekly trigger."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .cache import LocalCacheStore
from .config import Settings
from .debounce import MutationBuffer
from .delivery import DeliveryResult, OutgoingEmail, EmailSender, ReportRenderer, SmtpEmailSender, render_report_pdf
from .records import (
    PROGRESS_KIND,
    SCHEDULE_KIND,
    ProgressRecord,
    ScheduleRecord,
    SubjectProgress,
    progress_codec,
    schedule_codec,
    slot_key,
)
from .remote import RemoteStore, RemoteStoreClient
from .report import ReportCompiler
from .sync import HybridSynchronizer, ReconcileOutcome, SaveResult, SleepFn, SyncStatus
from .trigger import FiringWindow, TriggerOutcome, TriggerState, WeeklyTriggerScheduler, trigger_state_codec

logger = logging.getLogger(__name__)


def _normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip().lower()
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


def store_key(user_id: str, kind: str) -> str:
    return f"{_normalize_user_id(user_id)}:{kind}"


class WeeklyReportJob:
    """Compile, render and email the weekly report for one student."""

    def __init__(
        self,
        *,
        student_name: str,
        recipient: Optional[str],
        subject_template: str,
        progress_sync: HybridSynchronizer[ProgressRecord],
        schedule_sync: HybridSynchronizer[ScheduleRecord],
        sender: EmailSender,
        renderer: ReportRenderer = render_report_pdf,
        compiler: Optional[ReportCompiler] = None,
    ) -> None:
        self._student_name = student_name
        self._recipient = recipient
        self._subject_template = subject_template
        self._progress_sync = progress_sync
        self._schedule_sync = schedule_sync
        self._sender = sender
        self._renderer = renderer
        self._compiler = compiler or ReportCompiler()

    async def __call__(self, moment: datetime) -> DeliveryResult:
        if not self._recipient:
            return DeliveryResult(success=False, error_kind="config", detail="No report recipient configured.")
        progress = await self._progress_sync.load()
        schedule = await self._schedule_sync.load()
        report = self._compiler.compile(
            self._student_name,
            progress,
            report_date=moment.date(),
            schedule=schedule,
        )
        document = await asyncio.to_thread(self._renderer, report)
        message = OutgoingEmail(
            recipient_address=self._recipient,
            subject_template=self._subject_template,
            body_variables=self._compiler.email_variables(report),
            attachment=document,
            attachment_filename=f"progress-{report.report_date.isoformat()}.pdf",
        )
        return await asyncio.to_thread(self._sender.send, message)


class StudyTracker:
    """Everything one user session needs, passed explicitly to its consumers."""

    def __init__(
        self,
        settings: Settings,
        *,
        local: Optional[LocalCacheStore] = None,
        remote: Optional[RemoteStore] = None,
        sender: Optional[EmailSender] = None,
        renderer: ReportRenderer = render_report_pdf,
        sleep: SleepFn = asyncio.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings
        if local is None:
            path = Path(settings.local_store_path) if settings.local_store_path else None
            local = LocalCacheStore(path, max_bytes=settings.local_store_max_bytes)
        self._local = local
        self._owned_remote: Optional[RemoteStoreClient] = None
        if remote is None:
            self._owned_remote = RemoteStoreClient(
                settings.remote_url,
                timeout_seconds=settings.remote_timeout_seconds,
            )
            remote = self._owned_remote
        self._remote = remote

        sync_options = {
            "max_attempts": settings.sync_max_attempts,
            "base_delay": settings.sync_base_delay_seconds,
            "sleep": sleep,
        }
        self.schedule: HybridSynchronizer[ScheduleRecord] = HybridSynchronizer(
            store_key(settings.user_id, SCHEDULE_KIND), schedule_codec, local, remote, **sync_options
        )
        self.progress: HybridSynchronizer[ProgressRecord] = HybridSynchronizer(
            store_key(settings.user_id, PROGRESS_KIND), progress_codec, local, remote, **sync_options
        )
        self.trigger_state: HybridSynchronizer[TriggerState] = HybridSynchronizer(
            store_key(settings.user_id, trigger_state_codec.kind), trigger_state_codec, local, remote, **sync_options
        )
        self.schedule_buffer = MutationBuffer(self.schedule, schedule_codec, idle_seconds=settings.debounce_idle_seconds)
        self.progress_buffer = MutationBuffer(self.progress, progress_codec, idle_seconds=settings.debounce_idle_seconds)

        if sender is None:
            sender = SmtpEmailSender(
                settings.smtp_host,
                settings.smtp_port,
                username=settings.smtp_user,
                password=settings.smtp_password,
                sender=settings.smtp_sender,
            )
        job = WeeklyReportJob(
            student_name=settings.student_name,
            recipient=settings.report_recipient,
            subject_template=settings.email_subject_template,
            progress_sync=self.progress,
            schedule_sync=self.schedule,
            sender=sender,
            renderer=renderer,
        )
        window = FiringWindow.build(
            settings.report_weekday,
            settings.report_start_hour,
            settings.report_end_hour,
            settings.report_timezone,
        )
        scheduler_options = {"clock": clock} if clock is not None else {}
        self.scheduler = WeeklyTriggerScheduler(self.trigger_state, window, job, **scheduler_options)
        self._reconcile_tasks: List[asyncio.Task[None]] = []

    @property
    def synchronizers(self) -> List[HybridSynchronizer]:
        return [self.schedule, self.progress, self.trigger_state]

    def sync_status(self) -> Dict[str, SyncStatus]:
        return {sync.key: sync.status for sync in self.synchronizers}

    async def load_schedule(self) -> ScheduleRecord:
        return await self.schedule.load()

    def stage_slot(self, subject: str, day: str, value: Optional[str]) -> None:
        self.schedule_buffer.stage(slot_key(subject, day), value)

    async def load_progress(self) -> ProgressRecord:
        return await self.progress.load()

    def stage_progress(self, subject: str, progress: SubjectProgress) -> None:
        self.progress_buffer.stage(subject, progress)

    async def save_progress(self, record: ProgressRecord) -> SaveResult:
        return await self.progress.save(record)

    async def flush(self) -> None:
        await self.schedule_buffer.flush()
        await self.progress_buffer.flush()

    async def on_activation(self, now: Optional[datetime] = None) -> TriggerOutcome:
        return await self.scheduler.check(now)

    async def reconcile(self) -> Dict[str, ReconcileOutcome]:
        return {sync.key: await sync.reconcile() for sync in self.synchronizers}

    def start_background_reconcile(self) -> None:
        if self._reconcile_tasks:
            return
        interval = self._settings.reconcile_interval_seconds
        loop = asyncio.get_running_loop()
        self._reconcile_tasks = [
            loop.create_task(sync.run_reconcile_loop(interval), name=f"reconcile:{sync.key}")
            for sync in self.synchronizers
        ]

    async def aclose(self) -> None:
        """Flush staged edits, let pending syncs settle, then release resources."""
        for task in self._reconcile_tasks:
            task.cancel()
        if self._reconcile_tasks:
            await asyncio.gather(*self._reconcile_tasks, return_exceptions=True)
        self._reconcile_tasks = []
        await self.schedule_buffer.aclose()
        await self.progress_buffer.aclose()
        for sync in self.synchronizers:
            await sync.aclose()
        if self._owned_remote is not None:
            await self._owned_remote.aclose()


__all__ = ["StudyTracker", "WeeklyReportJob", "store_key"]
