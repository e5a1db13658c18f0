from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

SHORT_ID_LENGTH = 8


class EventValidationError(ValueError):
    """Event data rejected before it reaches storage."""


class MissingFieldsError(EventValidationError):
    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class InvalidTimeFormatError(EventValidationError):
    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Invalid time format: {value}")


def parse_timestamp(value: object) -> datetime | None:
    """Parse ISO-8601 text into an aware datetime; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Event:
    id: str
    title: str
    start_time: str
    end_time: str
    description: str | None = None
    custom: bool = False
    imported_from_url: str | None = None

    @property
    def start_at(self) -> datetime | None:
        return parse_timestamp(self.start_time)

    @property
    def end_at(self) -> datetime | None:
        return parse_timestamp(self.end_time)

    @property
    def short_id(self) -> str:
        return self.id[:SHORT_ID_LENGTH]

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.title, self.start_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "custom": self.custom,
            "imported_from_url": self.imported_from_url,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Event":
        description = payload.get("description")
        imported_from_url = payload.get("imported_from_url")
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title") or ""),
            start_time=str(payload.get("start_time") or ""),
            end_time=str(payload.get("end_time") or ""),
            description=description if isinstance(description, str) else None,
            custom=bool(payload.get("custom", False)),
            imported_from_url=imported_from_url if isinstance(imported_from_url, str) else None,
        )


@dataclass
class MergeResult:
    created: int = 0
    updated: int = 0
    # Reserved: updates are counted under `updated`, this stays 0.
    duplicates: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }
