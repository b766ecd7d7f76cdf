"""Tests for relaybot.core.cron — schedules, persistence, scheduler."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeRunner

from relaybot.agent.queue import JobQueue
from relaybot.agent.types import EnqueuedJob, ExecutionResult
from relaybot.core.cron import CronJob, CronScheduler, CronStore, build_trigger, validate_schedule
from relaybot.core.cron.scheduler import format_cron_output
from relaybot.core.cron.types import _translate_dow
from relaybot.errors import CronStoreError, InvalidScheduleError


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ════════════════════════════════════════════════════════════
# SCHEDULE PARSING
# ════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "schedule",
    ["0 9 * * *", "*/5 * * * *", "0 9 * * 1-5", "30 0 9 * * mon", "0 0 1 1 *", "0 12 * * 0,6"],
)
def test_valid_schedules(schedule):
    assert validate_schedule(schedule)


@pytest.mark.parametrize(
    "schedule",
    ["", "* * *", "1 2 3 4 5 6 7", "61 * * * *", "0 25 * * *", "not a cron at all", "0 9 * * 8"],
)
def test_invalid_schedules(schedule):
    assert not validate_schedule(schedule)
    with pytest.raises(InvalidScheduleError):
        build_trigger(schedule)


def test_invalid_schedule_error_is_value_error():
    with pytest.raises(ValueError, match="Invalid cron schedule"):
        build_trigger("nope")


def test_five_field_fires_on_the_minute():
    trigger = build_trigger("0 9 * * *", "UTC")
    fire = trigger.get_next_fire_time(None, _utc(2026, 10, 19, 8, 0))
    assert fire == _utc(2026, 10, 19, 9, 0, 0)


def test_six_field_has_seconds():
    trigger = build_trigger("30 0 9 * * *", "UTC")
    fire = trigger.get_next_fire_time(None, _utc(2026, 10, 19, 8, 0))
    assert fire == _utc(2026, 10, 19, 9, 0, 30)


def test_day_zero_is_sunday():
    # 2026-10-19 is a Monday
    trigger = build_trigger("0 9 * * 0", "UTC")
    fire = trigger.get_next_fire_time(None, _utc(2026, 10, 19, 8, 0))
    assert fire == _utc(2026, 10, 25, 9, 0)


def test_star_step_counts_from_sunday():
    trigger = build_trigger("0 9 * * */2", "UTC")
    monday_morning = _utc(2026, 10, 19, 10, 0)
    assert trigger.get_next_fire_time(None, monday_morning) == _utc(2026, 10, 20, 9, 0)


def test_weekday_range():
    trigger = build_trigger("0 9 * * 1-5", "UTC")
    friday_evening = _utc(2026, 10, 23, 18, 0)
    assert trigger.get_next_fire_time(None, friday_evening) == _utc(2026, 10, 26, 9, 0)


@pytest.mark.parametrize(
    "field,expected",
    [
        ("0", "sun"),
        ("7", "sun"),
        ("0,7", "sun"),
        ("1-5", "mon,tue,wed,thu,fri"),
        ("5-7", "fri,sat,sun"),
        ("1/2", "mon,wed,fri,sun"),
        ("mon-fri", "mon-fri"),
        ("*", "*"),
        ("*/2", "sun,tue,thu,sat"),
        ("*/3", "sun,wed,sat"),
    ],
)
def test_translate_day_of_week(field, expected):
    assert _translate_dow("s", field) == expected


@pytest.mark.parametrize("field", ["8", "1-9", "1/0", "1/x"])
def test_translate_day_of_week_rejects(field):
    with pytest.raises(InvalidScheduleError):
        _translate_dow("s", field)


# ════════════════════════════════════════════════════════════
# CRON JOB MODEL + STORE
# ════════════════════════════════════════════════════════════


def _job(**kw) -> CronJob:
    data = {
        "id": "1a2b3c4d-0000-0000-0000-000000000000",
        "schedule": "0 9 * * *",
        "prompt": "daily report",
        "channel_type": "slack",
        "chat_id": "C1",
    }
    data.update(kw)
    return CronJob(**data)


def test_cron_job_defaults():
    job = _job()
    assert job.enabled is True
    assert job.created_at > 1_600_000_000_000  # epoch ms
    assert job.short_id == "1a2b3c4d"
    assert str(job.destination) == "slack:C1"


def test_cron_job_prefix_matching():
    job = _job()
    assert job.matches(job.id)
    assert job.matches("1a2b")
    assert not job.matches("")
    assert not job.matches("ffff")


def test_cron_job_serializes_camel_case():
    dumped = _job().model_dump(by_alias=True)
    assert {"channelType", "chatId", "createdAt"} <= dumped.keys()


def test_store_missing_file(tmp_path):
    assert CronStore(tmp_path / "crons.json").load() == []


def test_store_roundtrip(tmp_path):
    store = CronStore(tmp_path / "nested" / "crons.json")
    store.save([_job(), _job(id="ffff0000", enabled=False)])

    loaded = store.load()
    assert [j.id for j in loaded] == ["1a2b3c4d-0000-0000-0000-000000000000", "ffff0000"]
    assert loaded[1].enabled is False

    raw = json.loads(store.path.read_text())
    assert raw[0]["chatId"] == "C1"
    assert not list(store.path.parent.glob(".crons-*"))  # no temp files left


def test_store_reads_existing_camel_case_file(tmp_path):
    path = tmp_path / "crons.json"
    path.write_text(json.dumps([{
        "id": "abc", "schedule": "0 9 * * *", "prompt": "p",
        "channelType": "discord", "chatId": "42", "enabled": True, "createdAt": 1700000000000,
    }]))
    [job] = CronStore(path).load()
    assert job.channel_type == "discord"
    assert job.created_at == 1700000000000


@pytest.mark.parametrize("content", ["{not json", '{"a": 1}', '[{"id": "x"}]'])
def test_store_corrupt_file(tmp_path, content):
    path = tmp_path / "crons.json"
    path.write_text(content)
    with pytest.raises(CronStoreError):
        CronStore(path).load()


# ════════════════════════════════════════════════════════════
# SCHEDULER
# ════════════════════════════════════════════════════════════


@pytest.fixture
def store(tmp_path):
    return CronStore(tmp_path / "crons.json")


def _scheduler(store, queue=None, **kw):
    return CronScheduler(store, queue if queue is not None else MagicMock(), timezone="UTC", **kw)


def test_add_persists_and_schedules(store):
    sched = _scheduler(store)
    job = sched.add_job("0 9 * * *", "daily report", "slack", "C1")

    assert [j.id for j in store.load()] == [job.id]
    assert sched.is_scheduled(job.id)
    assert job.destination.chat_id == "C1"


def test_add_invalid_persists_nothing(store):
    sched = _scheduler(store)
    with pytest.raises(InvalidScheduleError):
        sched.add_job("bad schedule", "x", "slack", "C1")
    assert store.load() == []
    assert not store.path.exists()


def test_remove_by_prefix(store):
    sched = _scheduler(store)
    job = sched.add_job("0 9 * * *", "daily report", "slack", "C1")

    removed = sched.remove_job(job.short_id)
    assert removed.id == job.id
    assert store.load() == []
    assert not sched.is_scheduled(job.id)
    assert sched.remove_job(job.short_id) is None


def test_remove_empty_prefix_matches_nothing(store):
    sched = _scheduler(store)
    sched.add_job("0 9 * * *", "p", "slack", "C1")
    assert sched.remove_job("") is None
    assert len(store.load()) == 1


def test_toggle(store):
    sched = _scheduler(store)
    job = sched.add_job("0 9 * * *", "p", "slack", "C1")

    off = sched.toggle_job(job.id)
    assert off.enabled is False
    assert store.load()[0].enabled is False
    assert not sched.is_scheduled(job.id)

    on = sched.toggle_job(job.id[:4])
    assert on.enabled is True
    assert sched.is_scheduled(job.id)

    assert sched.toggle_job("zzzz") is None


def test_list_jobs_by_chat(store):
    sched = _scheduler(store)
    sched.add_job("0 9 * * *", "a", "slack", "C1")
    sched.add_job("0 10 * * *", "b", "slack", "C2")
    assert [j.prompt for j in sched.list_jobs("C1")] == ["a"]
    assert len(sched.list_jobs()) == 2


@pytest.mark.asyncio
async def test_start_registers_enabled_jobs_only(store):
    store.save([
        _job(id="on-1"),
        _job(id="off-1", enabled=False),
        _job(id="broken", schedule="61 * * * *"),
    ])
    sched = _scheduler(store)
    await sched.start()
    try:
        assert sched.is_scheduled("on-1")
        assert not sched.is_scheduled("off-1")
        assert not sched.is_scheduled("broken")
    finally:
        await sched.stop()


@pytest.mark.asyncio
async def test_restart_restores_triggers(store):
    first = _scheduler(store)
    await first.start()
    job = first.add_job("0 9 * * *", "daily report", "slack", "C1")
    await first.stop()

    second = _scheduler(store)
    await second.start()
    try:
        assert second.is_scheduled(job.id)
    finally:
        await second.stop()


def test_format_cron_output():
    assert format_cron_output(ExecutionResult(output="hi")) == "[Cron] hi"
    assert format_cron_output(ExecutionResult(error="Timed out", timed_out=True)) == (
        "[Cron] Error: Timed out"
    )


def _preset_handle(result: ExecutionResult) -> EnqueuedJob:
    future = asyncio.get_running_loop().create_future()
    future.set_result(result)
    return EnqueuedJob(id="j1", position=1, future=future)


@pytest.mark.asyncio
async def test_fire_delivers_result(store):
    queue = MagicMock()
    queue.enqueue.return_value = _preset_handle(ExecutionResult(output="report ready"))
    send = AsyncMock()
    sched = _scheduler(store, queue, prompt_builder=lambda text, chat: f"<ctx>{text}")
    sched.set_send_callback(send)

    await sched._fire(_job())
    await asyncio.gather(*sched._deliveries)

    prompt, destination = queue.enqueue.call_args.args
    assert prompt == "<ctx>daily report"
    assert str(destination) == "slack:C1"
    send.assert_awaited_once_with("slack", "C1", "[Cron] report ready")


@pytest.mark.asyncio
async def test_fire_delivers_error(store):
    queue = MagicMock()
    queue.enqueue.return_value = _preset_handle(ExecutionResult(error="auth_error"))
    send = AsyncMock()
    sched = _scheduler(store, queue)
    sched.set_send_callback(send)

    await sched._fire(_job())
    await asyncio.gather(*sched._deliveries)
    send.assert_awaited_once_with("slack", "C1", "[Cron] Error: auth_error")


@pytest.mark.asyncio
async def test_fire_without_callback_drops(store):
    queue = MagicMock()
    queue.enqueue.return_value = _preset_handle(ExecutionResult(output="x"))
    sched = _scheduler(store, queue)

    await sched._fire(_job())
    await asyncio.gather(*sched._deliveries)
    queue.enqueue.assert_called_once()


@pytest.mark.asyncio
async def test_fire_send_failure_is_contained(store):
    queue = MagicMock()
    queue.enqueue.return_value = _preset_handle(ExecutionResult(output="x"))
    sched = _scheduler(store, queue)
    sched.set_send_callback(AsyncMock(side_effect=ConnectionError("down")))

    await sched._fire(_job())
    results = await asyncio.gather(*sched._deliveries, return_exceptions=True)
    assert all(r is None for r in results)


@pytest.mark.asyncio
async def test_fire_enqueue_failure_is_contained(store):
    queue = MagicMock()
    queue.enqueue.side_effect = RuntimeError("closed")
    sched = _scheduler(store, queue)

    await sched._fire(_job())
    assert not sched._deliveries


@pytest.mark.asyncio
async def test_fire_goes_through_real_queue(store):
    runner = FakeRunner()
    send = AsyncMock()
    sched = _scheduler(store, JobQueue(runner))
    sched.set_send_callback(send)

    await sched._fire(_job())
    await asyncio.gather(*sched._deliveries)

    assert runner.started == ["daily report"]
    send.assert_awaited_once_with("slack", "C1", "[Cron] done: daily report")


@pytest.mark.asyncio
async def test_trigger_fires_on_schedule(store):
    runner = FakeRunner()
    delivered = asyncio.Event()
    messages = []

    async def send(kind, chat_id, text):
        messages.append((kind, chat_id, text))
        delivered.set()

    sched = _scheduler(store, JobQueue(runner))
    sched.set_send_callback(send)
    await sched.start()
    try:
        sched.add_job("* * * * * *", "tick", "console", "local")  # every second
        await asyncio.wait_for(delivered.wait(), timeout=5)
    finally:
        await sched.stop()

    assert messages[0] == ("console", "local", "[Cron] done: tick")
