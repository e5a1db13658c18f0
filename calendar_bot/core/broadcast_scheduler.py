"""Periodic reminder broadcasts for upcoming events.

A BackgroundScheduler runs check_and_broadcast() every check_interval
minutes (plus one initial scan shortly after start). Each scan reads the
event list once and sends at most one reminder per event and reminder
window; send state lives in BroadcastMetadataStore.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from calendar_bot.core.event_store import EventStore
from calendar_bot.core.formatting import render_reminder
from calendar_bot.core.models import Event
from calendar_bot.infra.broadcast_metadata import BroadcastMetadataStore
from calendar_bot.infra.config import BroadcastConfig

LOGGER = logging.getLogger(__name__)

JOB_ID = "broadcast_check"
INITIAL_JOB_ID = "broadcast_initial_check"
DEFAULT_INITIAL_DELAY_SECONDS = 30

Sender = Callable[[str, str], None]


@dataclass(frozen=True)
class BroadcastStatus:
    enabled: bool
    running: bool
    check_interval: int
    lead_time: int
    target_destinations: tuple[str, ...]
    next_run: datetime | None
    metadata_count: int


class BroadcastScheduler:
    def __init__(
        self,
        event_store: EventStore,
        sender: Sender,
        config: BroadcastConfig,
        metadata: BroadcastMetadataStore,
        *,
        now_provider: Callable[[], datetime] | None = None,
        initial_delay_seconds: int = DEFAULT_INITIAL_DELAY_SECONDS,
        timezone_name: str | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._store = event_store
        self._sender = sender
        self._config = config.normalized(LOGGER)
        self._metadata = metadata
        self._now_provider = now_provider or (lambda: datetime.now(timezone.utc))
        self._initial_delay = max(0, initial_delay_seconds)
        self._timezone_name = timezone_name
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self._scan_lock = threading.Lock()

    @property
    def config(self) -> BroadcastConfig:
        return self._config

    def start(self) -> bool:
        if not self._config.enabled:
            LOGGER.info("Broadcast scheduler disabled, not starting")
            return False
        if self._scheduler.running:
            LOGGER.info("Broadcast scheduler already started, skipping")
            return True
        LOGGER.info(
            "Starting broadcast scheduler: check_interval=%s lead_time=%s targets=%s",
            self._config.check_interval,
            self._config.lead_time,
            ",".join(self._config.target_destinations),
        )
        try:
            self._scheduler.add_job(
                self.check_and_broadcast,
                trigger=IntervalTrigger(minutes=self._config.check_interval),
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self._scheduler.add_job(
                self.check_and_broadcast,
                trigger=DateTrigger(run_date=self._now_provider() + timedelta(seconds=self._initial_delay)),
                id=INITIAL_JOB_ID,
                replace_existing=True,
            )
            self._scheduler.start()
        except Exception:
            LOGGER.exception("Failed to start broadcast scheduler")
            return False
        LOGGER.info("Broadcast scheduler started")
        return True

    def stop(self) -> None:
        if self._scheduler.running:
            # wait=True lets an in-flight scan finish.
            self._scheduler.shutdown(wait=True)
        self._metadata.flush()
        LOGGER.info("Broadcast scheduler stopped")

    def check_and_broadcast(self) -> int:
        """Run one scan; returns the number of events reminded."""
        if not self._config.enabled:
            LOGGER.debug("Broadcast check skipped: broadcasting disabled")
            return 0
        with self._scan_lock:
            LOGGER.debug("Running broadcast check")
            sent = 0
            try:
                events = self._store.list_events()
                now = self._now_provider()
                for event in events:
                    if self._process_event(event, now):
                        sent += 1
            except Exception:
                LOGGER.exception("Error during broadcast check")
            if self._metadata.is_dirty():
                self._metadata.flush()
            return sent

    def force_check(self) -> int:
        LOGGER.info("Manual broadcast check requested")
        return self.check_and_broadcast()

    def status(self) -> BroadcastStatus:
        job = self._scheduler.get_job(JOB_ID) if self._scheduler.running else None
        return BroadcastStatus(
            enabled=self._config.enabled,
            running=bool(self._scheduler.running),
            check_interval=self._config.check_interval,
            lead_time=self._config.lead_time,
            target_destinations=self._config.target_destinations,
            next_run=getattr(job, "next_run_time", None),
            metadata_count=self._metadata.size(),
        )

    def _process_event(self, event: Event, now: datetime) -> bool:
        start = event.start_at
        if start is None or not event.id:
            return False
        if start <= now:
            return False
        reminder_time = start - timedelta(minutes=self._config.lead_time)
        if now < reminder_time:
            return False
        state = self._metadata.state(event.id)
        if not state.predates(reminder_time.timestamp()):
            return False
        self._send_reminder(event, reminder_time, now)
        self._metadata.mark_reminded(event.id, now.timestamp())
        return True

    def _send_reminder(self, event: Event, reminder_time: datetime, now: datetime) -> None:
        LOGGER.info("Sending broadcast reminder: event_id=%s title=%s", event.id, event.title)
        text = render_reminder(event, reminder_time, now, self._timezone_name)
        for destination in self._config.target_destinations:
            try:
                self._sender(destination, text)
            except Exception:
                LOGGER.exception(
                    "Failed to send reminder: event_id=%s chat_id=%s",
                    event.id,
                    destination,
                )
                continue
            LOGGER.debug("Reminder sent: event_id=%s chat_id=%s", event.id, destination)
