from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
from icalendar import Calendar

from calendar_bot.core.event_store import EventStore
from calendar_bot.core.models import MergeResult
from calendar_bot.infra.storage import StorageWriteError

LOGGER = logging.getLogger(__name__)

USER_AGENT = "CalendarBot/1.0 (ICS Importer)"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_DURATION = timedelta(hours=1)


class IcsImportError(RuntimeError):
    """Fetching or parsing an ICS feed failed."""


@dataclass(frozen=True)
class ImportResult:
    success: bool
    source: str
    events_processed: int = 0
    merge_result: MergeResult | None = None
    error: str | None = None
    message: str | None = None


def _to_utc(value: object) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        # All-day events start at UTC midnight.
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return None


def _format_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _property_dt(component: Any, name: str) -> object:
    prop = component.get(name)
    if prop is None:
        return None
    return getattr(prop, "dt", None)


def normalize_component(component: Any, source: str) -> dict[str, Any] | None:
    title = str(component.get("SUMMARY") or "").strip()
    if not title:
        LOGGER.debug("Skipping ICS event without title")
        return None
    start = _to_utc(_property_dt(component, "DTSTART"))
    if start is None:
        LOGGER.debug("Skipping ICS event with invalid start: title=%s", title)
        return None
    end = _to_utc(_property_dt(component, "DTEND"))
    if end is None:
        duration = _property_dt(component, "DURATION")
        end = start + (duration if isinstance(duration, timedelta) else DEFAULT_DURATION)
    candidate: dict[str, Any] = {
        "title": title,
        "start_time": _format_utc(start),
        "end_time": _format_utc(end),
        "custom": False,
        "imported_from_url": source,
    }
    description = str(component.get("DESCRIPTION") or "").strip()
    if description:
        candidate["description"] = description
    return candidate


def parse_ics_content(content: str | bytes, source: str) -> list[dict[str, Any]]:
    """Turn ICS text into normalized event candidates ready for EventStore.merge_events."""
    try:
        calendars = Calendar.from_ical(content, multiple=True)
    except ValueError as exc:
        raise IcsImportError(f"Failed to parse ICS content: {exc}") from exc
    if not calendars:
        LOGGER.warning("No calendars found in ICS content: source=%s", source)
        return []
    events: list[dict[str, Any]] = []
    for calendar in calendars:
        for component in calendar.walk("VEVENT"):
            try:
                candidate = normalize_component(component, source)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Failed to normalize ICS event: source=%s error=%s", source, exc)
                continue
            if candidate is not None:
                events.append(candidate)
    LOGGER.debug("Parsed ICS events: source=%s count=%s", source, len(events))
    return events


class IcsImporter:
    def __init__(
        self,
        event_store: EventStore,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self._store = event_store
        self._timeout = timeout
        self._client = client

    def import_from_url(self, url: str) -> ImportResult:
        if not url or not url.strip():
            raise ValueError("URL is required")
        source = url.strip()
        LOGGER.info("Starting ICS import: url=%s", source)
        try:
            content = self._fetch(source)
            return self._merge(content, source)
        except (IcsImportError, StorageWriteError) as exc:
            LOGGER.error("Failed to import ICS: url=%s error=%s", source, exc)
            return ImportResult(success=False, source=source, error=str(exc))

    def import_from_file(self, file_path: str | Path) -> ImportResult:
        path_text = str(file_path).strip()
        if not path_text:
            raise ValueError("File path is required")
        source = f"file://{path_text}"
        LOGGER.info("Starting ICS import from file: path=%s", path_text)
        try:
            content = Path(path_text).read_bytes()
            return self._merge(content, source)
        except (OSError, IcsImportError, StorageWriteError) as exc:
            LOGGER.error("Failed to import ICS file: path=%s error=%s", path_text, exc)
            return ImportResult(success=False, source=source, error=str(exc))

    def _merge(self, content: str | bytes, source: str) -> ImportResult:
        candidates = parse_ics_content(content, source)
        if not candidates:
            LOGGER.warning("No events found in ICS content: source=%s", source)
            return ImportResult(success=False, source=source, message="No events found")
        result = self._store.merge_events(candidates)
        LOGGER.info(
            "ICS import completed: source=%s created=%s updated=%s duplicates=%s errors=%s",
            source,
            result.created,
            result.updated,
            result.duplicates,
            result.errors,
        )
        return ImportResult(
            success=True,
            source=source,
            events_processed=len(candidates),
            merge_result=result,
        )

    def _fetch(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise IcsImportError("URL must use HTTP or HTTPS scheme")
        LOGGER.debug("Fetching ICS content: url=%s", url)
        headers = {"User-Agent": USER_AGENT}
        try:
            if self._client is not None:
                response = self._client.get(url, headers=headers, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    response = client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise IcsImportError(f"Connection timeout after {self._timeout} seconds") from exc
        except httpx.HTTPStatusError as exc:
            raise IcsImportError(
                f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}"
            ) from exc
        except httpx.HTTPError as exc:
            raise IcsImportError(f"Failed to fetch ICS content: {exc}") from exc
        return response.content
