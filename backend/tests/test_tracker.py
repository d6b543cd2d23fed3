from __future__ import annotations

import asyncio
from typing import List

from conftest import FakeRemote, RecordingSleep, utc
from scripts import run_weekly_check
from studytrack.cache import LocalCacheStore
from studytrack.config import Settings
from studytrack.delivery import DeliveryResult, OutgoingEmail
from studytrack.records import SubjectProgress
from studytrack.sync import ReconcileOutcome, SyncStatus
from studytrack.tracker import StudyTracker, store_key
from studytrack.trigger import TriggerDecision

FRIDAY_EVENING = utc(2026, 10, 16, 17, 30)


class FakeSender:
    def __init__(self, result: DeliveryResult = DeliveryResult(success=True)) -> None:
        self.messages: List[OutgoingEmail] = []
        self._result = result

    def send(self, message: OutgoingEmail) -> DeliveryResult:
        self.messages.append(message)
        return self._result


def _settings(**overrides) -> Settings:
    values = {
        "user_id": " Sara ",
        "student_name": "Sara",
        "report_recipient": "parent@example.com",
        "debounce_idle_seconds": 0.01,
        "sync_base_delay_seconds": 0.1,
    }
    values.update(overrides)
    return Settings(**values)


def _tracker(remote: FakeRemote, sender: FakeSender, local: LocalCacheStore | None = None, **overrides) -> StudyTracker:
    return StudyTracker(
        _settings(**overrides),
        local=local or LocalCacheStore(),
        remote=remote,
        sender=sender,
        renderer=lambda report: b"%PDF-1.4 " + report.student_name.encode(),
        sleep=RecordingSleep(),
    )


def test_store_keys_are_scoped_per_user() -> None:
    assert store_key(" Sara ", "schedule") == "sara:schedule"

    tracker = _tracker(FakeRemote(), FakeSender())
    assert sorted(tracker.sync_status()) == ["sara:progress", "sara:schedule", "sara:trigger_state"]


def test_staged_edits_reach_the_remote_store(remote: FakeRemote) -> None:
    async def scenario() -> None:
        tracker = _tracker(remote, FakeSender())
        await tracker.load_schedule()
        tracker.stage_slot("math", "mon", "9:00")
        tracker.stage_slot("science", "wed", "17:00 online")
        tracker.stage_progress("math", SubjectProgress(chapters_completed=2, total_chapters=10))
        await tracker.flush()
        await tracker.aclose()

        assert all(status == SyncStatus.SYNCED for status in tracker.sync_status().values())

    asyncio.run(scenario())

    slots = remote.entries["sara:schedule"].payload["slots"]
    assert slots["math-mon"] == "9:00"
    assert slots["science-wed"] == "17:00 online"
    assert remote.entries["sara:progress"].payload["subjects"]["math"]["chapters_completed"] == 2


def test_activation_sends_weekly_report_once(remote: FakeRemote) -> None:
    sender = FakeSender()

    async def scenario():
        tracker = _tracker(remote, sender)
        await tracker.save_progress(
            (await tracker.load_progress()).with_changes(
                {"english": SubjectProgress(chapters_completed=5, total_chapters=10)}
            )
        )
        first = await tracker.on_activation(FRIDAY_EVENING)
        second = await tracker.on_activation(utc(2026, 10, 16, 19, 0))
        await tracker.aclose()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.fired and first.delivery.success
    assert second.decision == TriggerDecision.ALREADY_FIRED
    assert len(sender.messages) == 1
    message = sender.messages[0]
    assert message.recipient_address == "parent@example.com"
    assert message.render_subject() == "Weekly progress report for Sara"
    assert message.body_variables["overall_readiness"] == "50.0%"
    assert message.attachment == b"%PDF-1.4 Sara"
    assert message.attachment_filename == "progress-2026-10-16.pdf"
    assert remote.entries["sara:trigger_state"].payload["last_fired_week"] == "2026-W42"


def test_missing_recipient_is_reported_not_retried(remote: FakeRemote) -> None:
    sender = FakeSender()

    async def scenario():
        tracker = _tracker(remote, sender, report_recipient=None)
        outcome = await tracker.on_activation(FRIDAY_EVENING)
        await tracker.aclose()
        return outcome

    outcome = asyncio.run(scenario())

    assert outcome.fired
    assert outcome.delivery.error_kind == "config"
    assert sender.messages == []


def test_reconcile_reports_per_key(remote: FakeRemote) -> None:
    async def scenario():
        tracker = _tracker(remote, FakeSender())
        outcomes = await tracker.reconcile()
        await tracker.aclose()
        return outcomes

    assert set(asyncio.run(scenario()).values()) == {ReconcileOutcome.UNCHANGED}


def test_background_reconcile_stops_on_close(remote: FakeRemote) -> None:
    async def scenario() -> None:
        tracker = _tracker(remote, FakeSender())
        tracker.start_background_reconcile()
        for _ in range(5):
            await asyncio.sleep(0)
        await tracker.aclose()

    asyncio.run(scenario())
    assert remote.fetches >= 3


def test_weekly_check_script_reports_success(remote: FakeRemote) -> None:
    tracker = _tracker(remote, FakeSender())
    assert asyncio.run(run_weekly_check.run_check(tracker, FRIDAY_EVENING)) is True

    failing = _tracker(FakeRemote(), FakeSender(DeliveryResult(success=False, error_kind="auth")))
    assert asyncio.run(run_weekly_check.run_check(failing, FRIDAY_EVENING)) is False

    idle = _tracker(FakeRemote(), FakeSender())
    assert asyncio.run(run_weekly_check.run_check(idle, utc(2026, 10, 14, 9, 0))) is True
