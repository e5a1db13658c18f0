from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from calendar_bot.core.broadcast_scheduler import INITIAL_JOB_ID, JOB_ID, BroadcastScheduler
from calendar_bot.core.event_store import EventStore
from calendar_bot.infra.broadcast_metadata import BroadcastMetadataStore
from calendar_bot.infra.config import BroadcastConfig

NOW = datetime(2026, 3, 1, 8, 56, tzinfo=timezone.utc)


class DummyScheduler:
    """Stand-in for APScheduler: records jobs, never starts a thread."""

    def __init__(self) -> None:
        self.running = False
        self.jobs: dict[str, SimpleNamespace] = {}
        self.shutdown_calls = 0

    def add_job(self, func, trigger=None, id=None, **kwargs):
        job = SimpleNamespace(id=id, func=func, trigger=trigger, kwargs=kwargs, next_run_time=NOW + timedelta(minutes=5))
        self.jobs[id] = job
        return job

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def start(self) -> None:
        self.running = True

    def shutdown(self, wait: bool = True) -> None:
        self.running = False
        self.shutdown_calls += 1


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _config(**overrides) -> BroadcastConfig:
    values = {"enabled": True, "check_interval": 5, "lead_time": 5, "target_destinations": ("-100", "-200")}
    values.update(overrides)
    return BroadcastConfig(**values)


def _build(tmp_path, memory_adapter, sender, *, config=None, clock=None, scheduler=None):
    store = EventStore(memory_adapter)
    metadata = BroadcastMetadataStore(tmp_path / "meta.json")
    broadcaster = BroadcastScheduler(
        store,
        sender,
        config or _config(),
        metadata,
        now_provider=clock or Clock(NOW),
        scheduler=scheduler or DummyScheduler(),
    )
    return store, metadata, broadcaster


def _add(store: EventStore, title: str, start: datetime) -> str:
    created = store.create(
        {
            "title": title,
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=1)).isoformat(),
        }
    )
    return created.id


def test_event_inside_window_is_sent_to_every_destination(tmp_path, memory_adapter, sender) -> None:
    store, metadata, broadcaster = _build(tmp_path, memory_adapter, sender)
    event_id = _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))

    sent = broadcaster.check_and_broadcast()

    assert sent == 1
    assert [chat_id for chat_id, _ in sender.calls] == ["-100", "-200"]
    assert "Event Reminder" in sender.calls[0][1]
    assert "*Standup*" in sender.calls[0][1]
    assert metadata.state(event_id).reminded_at == int(NOW.timestamp())


def test_reminder_is_sent_once_per_window(tmp_path, memory_adapter, sender) -> None:
    clock = Clock(NOW)
    store, _, broadcaster = _build(tmp_path, memory_adapter, sender, clock=clock)
    _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))

    broadcaster.check_and_broadcast()
    clock.now = NOW + timedelta(minutes=2)
    second = broadcaster.check_and_broadcast()

    assert second == 0
    assert len(sender.calls) == 2


def test_event_outside_window_is_not_sent(tmp_path, memory_adapter, sender) -> None:
    store, metadata, broadcaster = _build(tmp_path, memory_adapter, sender)
    _add(store, "Later", datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
    _add(store, "Past", datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))

    assert broadcaster.check_and_broadcast() == 0
    assert sender.calls == []
    assert metadata.size() == 0


def test_event_starting_exactly_now_is_skipped(tmp_path, memory_adapter, sender) -> None:
    store, _, broadcaster = _build(tmp_path, memory_adapter, sender)
    _add(store, "Now", NOW)

    assert broadcaster.check_and_broadcast() == 0


def test_rescheduled_event_gets_new_reminder(tmp_path, memory_adapter, sender) -> None:
    clock = Clock(NOW)
    store, _, broadcaster = _build(tmp_path, memory_adapter, sender, clock=clock)
    event_id = _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
    broadcaster.check_and_broadcast()

    later = datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc)
    store.update(event_id, {"title": "Standup", "start_time": later.isoformat(), "end_time": later.isoformat()})
    clock.now = later - timedelta(minutes=3)

    assert broadcaster.check_and_broadcast() == 1
    assert len(sender.calls) == 4


def test_failing_destination_does_not_block_others(tmp_path, memory_adapter, make_sender, caplog) -> None:
    sender = make_sender(failing={"-100"})
    store, metadata, broadcaster = _build(tmp_path, memory_adapter, sender)
    event_id = _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
    caplog.set_level(logging.ERROR)

    sent = broadcaster.check_and_broadcast()

    assert sent == 1
    assert [chat_id for chat_id, _ in sender.calls] == ["-100", "-200"]
    assert metadata.state(event_id).reminded_at is not None
    assert any("Failed to send reminder" in record.message for record in caplog.records)


def test_metadata_flushed_after_scan(tmp_path, memory_adapter, sender) -> None:
    store, metadata, broadcaster = _build(tmp_path, memory_adapter, sender)
    event_id = _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))

    broadcaster.check_and_broadcast()

    payload = json.loads((tmp_path / "meta.json").read_text(encoding="utf-8"))
    assert payload == {event_id: {"last_broadcast": int(NOW.timestamp())}}
    assert not metadata.is_dirty()


def test_restart_does_not_resend_reminder(tmp_path, memory_adapter, make_sender) -> None:
    first_sender = make_sender()
    store, _, first = _build(tmp_path, memory_adapter, first_sender)
    _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
    assert first.check_and_broadcast() == 1
    first.stop()

    second_sender = make_sender()
    restarted = BroadcastScheduler(
        EventStore(memory_adapter),
        second_sender,
        _config(),
        BroadcastMetadataStore(tmp_path / "meta.json"),
        now_provider=Clock(NOW + timedelta(minutes=1)),
        scheduler=DummyScheduler(),
    )

    assert restarted.check_and_broadcast() == 0
    assert second_sender.calls == []


def test_scan_without_sends_writes_nothing(tmp_path, memory_adapter, sender) -> None:
    _, _, broadcaster = _build(tmp_path, memory_adapter, sender)

    broadcaster.check_and_broadcast()

    assert not (tmp_path / "meta.json").exists()


def test_store_failure_is_logged_not_raised(tmp_path, memory_adapter, sender, caplog) -> None:
    _, _, broadcaster = _build(tmp_path, memory_adapter, sender)

    def _boom():
        raise RuntimeError("storage offline")

    broadcaster._store.list_events = _boom
    caplog.set_level(logging.ERROR)

    assert broadcaster.check_and_broadcast() == 0
    assert any("Error during broadcast check" in record.message for record in caplog.records)


def test_disabled_config_never_sends_or_starts(tmp_path, memory_adapter, sender) -> None:
    scheduler = DummyScheduler()
    store, metadata, broadcaster = _build(
        tmp_path, memory_adapter, sender, config=_config(enabled=False), scheduler=scheduler
    )
    _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))

    assert broadcaster.start() is False
    assert broadcaster.check_and_broadcast() == 0
    assert sender.calls == []
    assert metadata.size() == 0
    assert scheduler.jobs == {}


def test_enabled_without_destinations_is_disabled(tmp_path, memory_adapter, sender) -> None:
    _, _, broadcaster = _build(tmp_path, memory_adapter, sender, config=_config(target_destinations=()))

    assert broadcaster.config.enabled is False
    assert broadcaster.start() is False


def test_config_floors_are_applied(tmp_path, memory_adapter, sender) -> None:
    _, _, broadcaster = _build(tmp_path, memory_adapter, sender, config=_config(check_interval=1, lead_time=0))

    assert broadcaster.config.check_interval == 5
    assert broadcaster.config.lead_time == 1


def test_start_registers_interval_and_initial_jobs(tmp_path, memory_adapter, sender) -> None:
    scheduler = DummyScheduler()
    _, _, broadcaster = _build(tmp_path, memory_adapter, sender, scheduler=scheduler)

    assert broadcaster.start() is True

    assert scheduler.running
    assert set(scheduler.jobs) == {JOB_ID, INITIAL_JOB_ID}
    assert scheduler.jobs[JOB_ID].kwargs["max_instances"] == 1
    assert scheduler.jobs[JOB_ID].trigger.interval == timedelta(minutes=5)
    assert scheduler.jobs[INITIAL_JOB_ID].trigger.run_date == NOW + timedelta(seconds=30)


def test_start_twice_is_noop(tmp_path, memory_adapter, sender) -> None:
    scheduler = DummyScheduler()
    _, _, broadcaster = _build(tmp_path, memory_adapter, sender, scheduler=scheduler)
    broadcaster.start()
    scheduler.jobs.clear()

    assert broadcaster.start() is True
    assert scheduler.jobs == {}


def test_stop_shuts_down_and_flushes(tmp_path, memory_adapter, sender) -> None:
    scheduler = DummyScheduler()
    _, metadata, broadcaster = _build(tmp_path, memory_adapter, sender, scheduler=scheduler)
    broadcaster.start()
    metadata.mark_reminded("evt-1", NOW.timestamp())

    broadcaster.stop()

    assert scheduler.shutdown_calls == 1
    assert not scheduler.running
    assert (tmp_path / "meta.json").exists()


def test_status_reports_config_and_next_run(tmp_path, memory_adapter, sender) -> None:
    scheduler = DummyScheduler()
    store, _, broadcaster = _build(tmp_path, memory_adapter, sender, scheduler=scheduler)
    _add(store, "Standup", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))

    before = broadcaster.status()
    broadcaster.start()
    broadcaster.force_check()
    after = broadcaster.status()

    assert before.running is False
    assert before.next_run is None
    assert after.running is True
    assert after.enabled is True
    assert after.check_interval == 5
    assert after.lead_time == 5
    assert after.target_destinations == ("-100", "-200")
    assert after.next_run == NOW + timedelta(minutes=5)
    assert after.metadata_count == 1
