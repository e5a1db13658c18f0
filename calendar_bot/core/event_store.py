"""Thread-safe event collection on top of a whole-collection storage adapter.

Every public call takes the store lock for its full duration and re-reads
the collection from the adapter; mutations rewrite the entire collection.
Events are deduplicated on (title, start_time).
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Iterable, Mapping

from calendar_bot.core.models import (
    Event,
    EventValidationError,
    InvalidTimeFormatError,
    MergeResult,
    MissingFieldsError,
    parse_timestamp,
)
from calendar_bot.infra.storage import StorageAdapter

LOGGER = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "start_time", "end_time")


def validate_event_data(data: Mapping[str, Any]) -> None:
    if not isinstance(data, Mapping):
        raise MissingFieldsError(list(REQUIRED_FIELDS))
    missing = [field for field in REQUIRED_FIELDS if _is_blank(data.get(field))]
    if missing:
        raise MissingFieldsError(missing)
    for field in ("start_time", "end_time"):
        value = data.get(field)
        if parse_timestamp(value) is None:
            raise InvalidTimeFormatError(value)


def _is_blank(value: object) -> bool:
    return value is None or str(value) == ""


def _generate_id() -> str:
    return str(uuid.uuid4())


def _matches(record: Mapping[str, Any], title: object, start_time: object) -> bool:
    return record.get("title") == title and record.get("start_time") == start_time


def _build_record(data: Mapping[str, Any], *, event_id: str, previous: Mapping[str, Any] | None = None) -> dict[str, Any]:
    fallback = previous or {}
    return {
        "id": event_id,
        "title": data["title"],
        "description": data.get("description"),
        "start_time": data["start_time"],
        "end_time": data["end_time"],
        "custom": bool(data["custom"]) if "custom" in data else bool(fallback.get("custom", False)),
        "imported_from_url": data["imported_from_url"]
        if "imported_from_url" in data
        else fallback.get("imported_from_url"),
    }


class EventStore:
    def __init__(self, adapter: StorageAdapter) -> None:
        self._adapter = adapter
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return self._adapter.describe()

    def list_events(self) -> list[Event]:
        with self._lock:
            return [Event.from_dict(record) for record in self._read()]

    def get(self, event_id: str) -> Event | None:
        with self._lock:
            record = next((item for item in self._read() if item.get("id") == event_id), None)
        return Event.from_dict(record) if record is not None else None

    def find_by_short_id(self, prefix: str) -> list[Event]:
        needle = prefix.strip().lower()
        if not needle:
            return []
        with self._lock:
            records = self._read()
        return [
            Event.from_dict(item)
            for item in records
            if isinstance(item.get("id"), str) and item["id"].lower().startswith(needle)
        ]

    def find_duplicates(self, data: Mapping[str, Any]) -> list[Event]:
        title = data.get("title")
        start_time = data.get("start_time")
        with self._lock:
            records = self._read()
        return [Event.from_dict(item) for item in records if _matches(item, title, start_time)]

    def create(self, data: Mapping[str, Any]) -> Event | None:
        """Store a new event; returns None when (title, start_time) already exists."""
        validate_event_data(data)
        with self._lock:
            records = self._read()
            duplicates = [item for item in records if _matches(item, data["title"], data["start_time"])]
            if duplicates:
                LOGGER.debug("Duplicate event skipped: title=%s count=%s", data["title"], len(duplicates))
                return None
            supplied_id = data.get("id")
            event_id = supplied_id if isinstance(supplied_id, str) and supplied_id else _generate_id()
            record = _build_record(data, event_id=event_id)
            records.append(record)
            self._adapter.write(records)
        LOGGER.info("Event created: event_id=%s title=%s", event_id, record["title"])
        return Event.from_dict(record)

    def update(self, event_id: str, data: Mapping[str, Any]) -> Event | None:
        """Replace an event's fields, keeping its id; returns None for an unknown id."""
        with self._lock:
            records = self._read()
            index = next((i for i, item in enumerate(records) if item.get("id") == event_id), None)
            if index is None:
                LOGGER.warning("Event not found for update: event_id=%s", event_id)
                return None
            validate_event_data(data)
            record = _build_record(data, event_id=event_id, previous=records[index])
            records[index] = record
            self._adapter.write(records)
        LOGGER.info("Event updated: event_id=%s title=%s", event_id, record["title"])
        return Event.from_dict(record)

    def delete(self, event_id: str) -> bool:
        with self._lock:
            records = self._read()
            remaining = [item for item in records if item.get("id") != event_id]
            if len(remaining) == len(records):
                LOGGER.warning("Event not found for deletion: event_id=%s", event_id)
                return False
            self._adapter.write(remaining)
        LOGGER.info("Event deleted: event_id=%s", event_id)
        return True

    def merge_events(self, candidates: Iterable[Mapping[str, Any]]) -> MergeResult:
        """Upsert a batch on (title, start_time); invalid candidates are counted, not raised.

        Candidates are applied in order to one working copy, so a later
        candidate with the same key overwrites the slot of an earlier one.
        The collection is written once at the end.
        """
        result = MergeResult()
        with self._lock:
            records = self._read()
            for candidate in candidates:
                try:
                    validate_event_data(candidate)
                except EventValidationError as exc:
                    title = candidate.get("title") if isinstance(candidate, Mapping) else None
                    LOGGER.error("Failed to merge event: title=%s error=%s", title, exc)
                    result.errors += 1
                    continue
                index = next(
                    (
                        i
                        for i, item in enumerate(records)
                        if _matches(item, candidate["title"], candidate["start_time"])
                    ),
                    None,
                )
                if index is not None:
                    previous = records[index]
                    records[index] = _build_record(candidate, event_id=str(previous.get("id")), previous=previous)
                    result.updated += 1
                    continue
                supplied_id = candidate.get("id")
                event_id = supplied_id if isinstance(supplied_id, str) and supplied_id else _generate_id()
                records.append(_build_record(candidate, event_id=event_id))
                result.created += 1
            self._adapter.write(records)
        LOGGER.info(
            "Events merged: created=%s updated=%s duplicates=%s errors=%s",
            result.created,
            result.updated,
            result.duplicates,
            result.errors,
        )
        return result

    def clear(self) -> None:
        with self._lock:
            self._adapter.write([])
        LOGGER.info("Cleared all events")

    def count(self) -> int:
        with self._lock:
            return len(self._read())

    def _read(self) -> list[dict[str, Any]]:
        return list(self._adapter.read())
