"""Per-event reminder send state, persisted as {event_id: {"last_broadcast": unix_ts}}."""

from __future__ import annotations

import enum
import json
import logging
import math
import os
import threading
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class ReminderStatus(enum.Enum):
    UNSCHEDULED = "unscheduled"
    REMINDED = "reminded"


@dataclass(frozen=True)
class ReminderState:
    status: ReminderStatus
    reminded_at: int | None = None

    @classmethod
    def unscheduled(cls) -> "ReminderState":
        return cls(status=ReminderStatus.UNSCHEDULED)

    @classmethod
    def reminded(cls, at: int) -> "ReminderState":
        return cls(status=ReminderStatus.REMINDED, reminded_at=at)

    def predates(self, moment: float) -> bool:
        """True when no reminder was recorded at or after `moment` (unix seconds)."""
        if self.status is ReminderStatus.UNSCHEDULED or self.reminded_at is None:
            return True
        return self.reminded_at < math.floor(moment)


class BroadcastMetadataStore:
    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._entries: dict[str, int] = {}
        self._dirty = False
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def state(self, event_id: str) -> ReminderState:
        with self._lock:
            value = self._entries.get(event_id)
        if value is None:
            return ReminderState.unscheduled()
        return ReminderState.reminded(value)

    def mark_reminded(self, event_id: str, at: float) -> ReminderState:
        """Record a send; a REMINDED entry is refreshed, never removed."""
        timestamp = int(at)
        with self._lock:
            self._entries[event_id] = timestamp
            self._dirty = True
        return ReminderState.reminded(timestamp)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {event_id: {"last_broadcast": value} for event_id, value in self._entries.items()}

    def is_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def flush(self, *, force: bool = False) -> bool:
        """Write the map atomically when it changed; failures are logged, not raised."""
        with self._lock:
            if not self._dirty and not force:
                return False
            payload = {event_id: {"last_broadcast": value} for event_id, value in self._entries.items()}
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with tmp_path.open("w", encoding="utf-8") as handle:
                    json.dump(payload, handle, ensure_ascii=False, indent=2)
                os.replace(tmp_path, self._path)
            except OSError:
                LOGGER.exception("Failed to save broadcast metadata: path=%s", self._path)
                return False
            self._dirty = False
        LOGGER.debug("Saved broadcast metadata: entries=%s", len(payload))
        return True

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError):
            LOGGER.exception("Failed to load broadcast metadata: path=%s", self._path)
            return
        if not isinstance(raw, dict):
            LOGGER.error("Broadcast metadata is not an object: path=%s", self._path)
            return
        for event_id, entry in raw.items():
            if not isinstance(event_id, str) or not isinstance(entry, dict):
                continue
            value = entry.get("last_broadcast")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                self._entries[event_id] = int(value)
        LOGGER.debug("Loaded broadcast metadata: entries=%s", len(self._entries))
