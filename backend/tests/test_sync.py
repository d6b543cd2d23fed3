from __future__ import annotations

import asyncio

import pytest

from conftest import FakeRemote, RecordingSleep, utc
from studytrack.cache import LocalCacheStore
from studytrack.errors import NotFound, UnknownVersionError
from studytrack.records import EMPTY_SLOT, ScheduleRecord, StoredEnvelope, schedule_codec
from studytrack.sync import HybridSynchronizer, ReconcileOutcome, SyncStatus
from studytrack.telemetry import capture_events

KEY = "sara:schedule"


def _sync(local, remote, sleep=None, **options) -> HybridSynchronizer[ScheduleRecord]:
    return HybridSynchronizer(KEY, schedule_codec, local, remote, sleep=sleep or RecordingSleep(), **options)


def test_save_then_load_round_trips_through_remote(remote: FakeRemote) -> None:
    async def scenario() -> None:
        writer = _sync(LocalCacheStore(), remote)
        result = await writer.save(ScheduleRecord.from_slots({"math-mon": "9:00"}))
        assert result.local_saved
        assert writer.status == SyncStatus.PENDING
        assert await writer.wait_for_sync() == SyncStatus.SYNCED

        reader = _sync(LocalCacheStore(), remote)
        loaded = await reader.load()
        assert loaded.get("math", "mon") == "9:00"

    asyncio.run(scenario())


def test_local_clear_still_yields_complete_schedule(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> None:
        sync = _sync(local, remote)
        await sync.save(ScheduleRecord.from_slots({"arabic-mon": "9:00", "english-tue": "-"}))
        await sync.wait_for_sync()

        local.clear()
        loaded = await _sync(local, remote).load()

        assert len(loaded.slots) == 35
        assert loaded.get("arabic", "mon") == "9:00"
        assert loaded.get("english", "tue") == EMPTY_SLOT
        assert all(value == EMPTY_SLOT for key, value in loaded.slots.items() if key != "arabic-mon")

    asyncio.run(scenario())


def test_load_falls_back_to_local_when_remote_is_down(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> None:
        remote.failing = True
        sleep = RecordingSleep()
        sync = _sync(local, remote, sleep=sleep, max_attempts=3, base_delay=0.5)
        await sync.save(ScheduleRecord.from_slots({"science-thu": "18:00 online"}))
        assert await sync.wait_for_sync() == SyncStatus.FAILED

        loaded = await _sync(local, remote).load()
        assert loaded.get("science", "thu") == "18:00 online"

    asyncio.run(scenario())


def test_load_without_any_copy_returns_default(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> ScheduleRecord:
        remote.failing = True
        return await _sync(local, remote).load()

    loaded = asyncio.run(scenario())
    assert loaded == ScheduleRecord.empty()


def test_retry_backoff_doubles_and_reports_pending(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario(sleep: RecordingSleep) -> SyncStatus:
        remote.failing = True
        sync = _sync(local, remote, sleep=sleep, max_attempts=5, base_delay=0.5)
        await sync.save(ScheduleRecord.from_slots({"math-mon": "9:00"}))
        return await sync.wait_for_sync()

    sleep = RecordingSleep()
    with capture_events("sync_pending") as events:
        status = asyncio.run(scenario(sleep))

    assert status == SyncStatus.FAILED
    assert sleep.delays == pytest.approx([0.5, 1.0, 2.0, 4.0])
    assert len(events) == 1
    assert events[0].get("key") == KEY
    assert events[0].get("attempts") == 5
    assert local.get(KEY).payload["slots"]["math-mon"] == "9:00"


def test_transient_failure_recovers_on_retry(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> SyncStatus:
        remote.fail_next = 2
        sync = _sync(local, remote, base_delay=0.1)
        await sync.save(ScheduleRecord.from_slots({"history-sat": "10:00"}))
        return await sync.wait_for_sync()

    with capture_events("sync_completed") as events:
        assert asyncio.run(scenario()) == SyncStatus.SYNCED
    assert len(events) == 1
    assert remote.entries[KEY].payload["slots"]["history-sat"] == "10:00"


def test_newer_save_supersedes_retrying_one(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> None:
        sleep = RecordingSleep(gated=True)
        sync = _sync(local, remote, sleep=sleep, base_delay=1.0)
        remote.fail_next = 1

        first = await sync.save(ScheduleRecord.from_slots({"math-mon": "9:00"}))
        while not sleep.delays:
            await asyncio.sleep(0)

        second = await sync.save(ScheduleRecord.from_slots({"math-mon": "10:00"}))
        assert second.sequence == first.sequence + 1
        sleep.release()
        assert await sync.wait_for_sync() == SyncStatus.SYNCED

        assert [envelope.payload["slots"]["math-mon"] for envelope in remote.puts] == ["10:00"]
        assert local.get(KEY).payload["slots"]["math-mon"] == "10:00"
        assert await sync.reconcile() == ReconcileOutcome.UNCHANGED

        loaded = await _sync(LocalCacheStore(), remote).load()
        assert loaded.get("math", "mon") == "10:00"

    asyncio.run(scenario())


def test_stale_put_defers_to_remote_and_reconcile_overwrites(remote: FakeRemote, local: LocalCacheStore) -> None:
    remote.entries[KEY] = StoredEnvelope(
        kind="schedule",
        schema_version=3,
        last_modified=utc(2099, 1, 1),
        payload=schedule_codec.to_payload(ScheduleRecord.from_slots({"english-fri": "16:00"})),
    )

    async def scenario() -> ReconcileOutcome:
        sync = _sync(local, remote)
        await sync.save(ScheduleRecord.from_slots({"english-fri": "8:00"}))
        assert await sync.wait_for_sync() == SyncStatus.SYNCED
        outcome = await sync.reconcile()
        assert sync.current.get("english", "fri") == "16:00"
        return outcome

    with capture_events("sync_superseded", "reconcile_overwrite") as events:
        assert asyncio.run(scenario()) == ReconcileOutcome.OVERWRITTEN

    assert [event.name for event in events] == ["sync_superseded", "reconcile_overwrite"]
    assert local.get(KEY).payload["slots"]["english-fri"] == "16:00"


def test_reconcile_pushes_offline_edits(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> None:
        remote.failing = True
        sync = _sync(local, remote, max_attempts=2, base_delay=0.1)
        await sync.save(ScheduleRecord.from_slots({"arabic-sun": "11:00"}))
        assert await sync.wait_for_sync() == SyncStatus.FAILED
        assert sync.has_unsynced_changes
        assert await sync.reconcile() == ReconcileOutcome.UNAVAILABLE

        remote.failing = False
        assert await sync.reconcile() == ReconcileOutcome.PUSHED
        assert sync.status == SyncStatus.SYNCED
        assert remote.entries[KEY].payload["slots"]["arabic-sun"] == "11:00"

    asyncio.run(scenario())


def test_load_prefers_unsynced_local_copy_over_remote(remote: FakeRemote, local: LocalCacheStore) -> None:
    remote.entries[KEY] = StoredEnvelope(
        kind="schedule",
        schema_version=3,
        last_modified=utc(2020, 1, 1),
        payload=schedule_codec.to_payload(ScheduleRecord.from_slots({"math-tue": "7:00"})),
    )

    async def scenario() -> ScheduleRecord:
        sync = _sync(local, remote, max_attempts=1)
        remote.failing = True
        await sync.save(ScheduleRecord.from_slots({"math-tue": "19:00"}))
        await sync.wait_for_sync()
        remote.failing = False
        return await sync.load()

    assert asyncio.run(scenario()).get("math", "tue") == "19:00"


def test_load_migrates_remote_copy_and_writes_it_through(remote: FakeRemote, local: LocalCacheStore) -> None:
    remote.entries[KEY] = StoredEnvelope(
        kind="schedule",
        schema_version=1,
        last_modified=utc(2026, 9, 1),
        payload={"math-monday": "9:00", "science-tuesday": ""},
    )

    loaded = asyncio.run(_sync(local, remote).load())

    assert loaded.get("math", "mon") == "9:00"
    cached = local.get(KEY)
    assert cached.schema_version == 3
    assert cached.last_modified == utc(2026, 9, 1)


def test_load_raises_for_unknown_future_version(remote: FakeRemote, local: LocalCacheStore) -> None:
    remote.entries[KEY] = StoredEnvelope(kind="schedule", schema_version=7, payload={"slots": {}})

    with pytest.raises(UnknownVersionError):
        asyncio.run(_sync(local, remote).load())


def test_local_write_failure_still_syncs_remotely(remote: FakeRemote) -> None:
    async def scenario() -> None:
        tiny = LocalCacheStore(max_bytes=10)
        sync = _sync(tiny, remote)
        result = await sync.save(ScheduleRecord.from_slots({"math-wed": "12:00"}))
        assert result.local_saved is False
        assert await sync.wait_for_sync() == SyncStatus.SYNCED
        assert remote.entries[KEY].payload["slots"]["math-wed"] == "12:00"

    asyncio.run(scenario())


def test_save_timestamps_are_strictly_increasing(remote: FakeRemote, local: LocalCacheStore) -> None:
    async def scenario() -> None:
        sync = _sync(local, remote)
        first = await sync.save(ScheduleRecord.empty())
        second = await sync.save(ScheduleRecord.empty())
        third = await sync.save(ScheduleRecord.empty())
        assert first.envelope.last_modified < second.envelope.last_modified < third.envelope.last_modified
        assert [first.sequence, second.sequence, third.sequence] == [1, 2, 3]
        await sync.wait_for_sync()

    asyncio.run(scenario())


def test_reopened_session_keeps_and_pushes_offline_edit(remote: FakeRemote, tmp_path) -> None:
    path = tmp_path / "store.json"

    async def scenario() -> None:
        sync = _sync(LocalCacheStore(path), remote, max_attempts=2, base_delay=0.1)
        await sync.save(ScheduleRecord.from_slots({"arabic-mon": "9:00"}))
        assert await sync.wait_for_sync() == SyncStatus.SYNCED

        remote.failing = True
        await sync.save(ScheduleRecord.from_slots({"arabic-mon": "10:00"}))
        assert await sync.wait_for_sync() == SyncStatus.FAILED

        remote.failing = False
        reopened = _sync(LocalCacheStore(path), remote)
        loaded = await reopened.load()
        assert loaded.get("arabic", "mon") == "10:00"
        assert await reopened.wait_for_sync() == SyncStatus.SYNCED

    with capture_events("load_kept_local") as events:
        asyncio.run(scenario())

    assert len(events) == 1
    assert remote.entries[KEY].payload["slots"]["arabic-mon"] == "10:00"
    assert LocalCacheStore(path).get(KEY).payload["slots"]["arabic-mon"] == "10:00"


def test_load_pushes_local_copy_missing_from_remote(remote: FakeRemote, local: LocalCacheStore) -> None:
    local.set(
        KEY,
        StoredEnvelope(
            kind="schedule",
            schema_version=3,
            last_modified=utc(2026, 10, 1),
            payload=schedule_codec.to_payload(ScheduleRecord.from_slots({"history-wed": "14:00"})),
        ),
    )

    async def scenario() -> ScheduleRecord:
        sync = _sync(local, remote)
        loaded = await sync.load()
        await sync.wait_for_sync()
        return loaded

    assert asyncio.run(scenario()).get("history", "wed") == "14:00"
    assert remote.entries[KEY].last_modified == utc(2026, 10, 1)


@pytest.mark.parametrize(
    "payload",
    [{"slots": ["x"]}, {"slots": {"math-mon": ["9:00"]}}, {"rows": []}],
)
def test_malformed_remote_payload_falls_back_to_local(
    remote: FakeRemote, local: LocalCacheStore, payload
) -> None:
    local.set(
        KEY,
        StoredEnvelope(
            kind="schedule",
            schema_version=3,
            last_modified=utc(2026, 1, 1),
            payload=schedule_codec.to_payload(ScheduleRecord.from_slots({"math-thu": "13:00"})),
        ),
    )
    remote.entries[KEY] = StoredEnvelope(kind="schedule", schema_version=2, payload=payload)

    loaded = asyncio.run(_sync(local, remote).load())

    assert loaded.get("math", "thu") == "13:00"
    assert remote.puts == []


def test_malformed_remote_payload_without_local_copy_yields_default(remote: FakeRemote, local: LocalCacheStore) -> None:
    remote.entries[KEY] = StoredEnvelope(kind="schedule", schema_version=2, payload={"slots": ["x"]})

    assert asyncio.run(_sync(local, remote).load()) == ScheduleRecord.empty()


class _MissingOnPut(FakeRemote):
    async def put(self, key: str, envelope: StoredEnvelope) -> StoredEnvelope:
        raise NotFound(key)


def test_permanent_put_error_marks_sync_failed(local: LocalCacheStore) -> None:
    async def scenario() -> SyncStatus:
        sync = _sync(local, _MissingOnPut())
        await sync.save(ScheduleRecord.from_slots({"science-sat": "9:00"}))
        return await sync.wait_for_sync()

    assert asyncio.run(scenario()) == SyncStatus.FAILED
