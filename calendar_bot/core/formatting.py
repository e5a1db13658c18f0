"""Text rendering for events: Telegram MarkdownV2 escaping, time ranges, lists."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calendar_bot.core.models import Event, MergeResult, parse_timestamp

# https://core.telegram.org/bots/api#markdownv2-style
MARKDOWN_SPECIAL_CHARS = "\\_*[]()~`>#+-=|{}.!"

UPCOMING_DAYS = 7
UPCOMING_LIMIT = 10
DESCRIPTION_LIMIT = 150


def escape_markdown(text: object) -> str:
    if text is None:
        return ""
    value = str(text)
    return "".join(f"\\{char}" if char in MARKDOWN_SPECIAL_CHARS else char for char in value)


def resolve_timezone(name: str | None) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def _zone_label(value: datetime) -> str:
    return value.tzname() or "UTC"


def format_timestamp(raw: str, timezone_name: str | None = None) -> str:
    parsed = parse_timestamp(raw)
    if parsed is None:
        return raw
    local = parsed.astimezone(resolve_timezone(timezone_name))
    return f"{local.strftime('%b %d, %Y at %I:%M %p')} {_zone_label(local)}"


def format_time_range(start_raw: str, end_raw: str, timezone_name: str | None = None) -> str:
    start = parse_timestamp(start_raw)
    end = parse_timestamp(end_raw)
    if start is None or end is None:
        return f"{start_raw} - {end_raw}"
    tz = resolve_timezone(timezone_name)
    start = start.astimezone(tz)
    end = end.astimezone(tz)
    if start.date() == end.date():
        return (
            f"{start.strftime('%b %d, %Y')} • {start.strftime('%I:%M %p')} - "
            f"{end.strftime('%I:%M %p')} {_zone_label(end)}"
        )
    return f"{start.strftime('%b %d at %I:%M %p')} - {end.strftime('%b %d at %I:%M %p')} {_zone_label(end)}"


def format_time_ago(moment: datetime, now: datetime) -> str:
    seconds = int((now - moment).total_seconds())
    if seconds < 60:
        return f"{seconds} seconds ago"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    return f"{seconds // 3600} hours ago"


def format_event(event: Event, index: int, timezone_name: str | None = None) -> str:
    lines = [f"*{index}\\. {escape_markdown(event.title)}*"]
    time_range = format_time_range(event.start_time, event.end_time, timezone_name)
    lines.append(f"🕒 {escape_markdown(time_range)}")
    if event.description and event.description.strip():
        description = event.description.strip()
        if len(description) > DESCRIPTION_LIMIT:
            description = description[:DESCRIPTION_LIMIT] + "..."
        lines.append(f"📝 {escape_markdown(description)}")
    if event.custom:
        lines.append("🏷️ Custom event")
    elif event.imported_from_url:
        lines.append("🔗 Imported from calendar")
    else:
        lines.append("🏷️ Event")
    lines.append(f"🆔 `{event.short_id}`")
    return "\n".join(lines)


def sort_by_start(events: Iterable[Event]) -> list[Event]:
    dated = [event for event in events if event.start_at is not None]
    return sorted(dated, key=lambda event: event.start_at)


def upcoming_events(events: Iterable[Event], now: datetime, *, days: int = UPCOMING_DAYS) -> list[Event]:
    horizon = now + timedelta(days=days)
    selected = []
    for event in events:
        start = event.start_at
        if start is not None and now <= start <= horizon:
            selected.append(event)
    return sort_by_start(selected)


def render_event_list(
    events: list[Event],
    *,
    header: str,
    empty_text: str,
    limit: int = UPCOMING_LIMIT,
    timezone_name: str | None = None,
) -> str:
    if not events:
        return f"{header}\n\n{empty_text}"
    parts = [header]
    for index, event in enumerate(events[:limit], start=1):
        parts.append("")
        parts.append(format_event(event, index, timezone_name))
    remaining = len(events) - limit
    if remaining > 0:
        parts.append("")
        parts.append(f"\\.\\.\\. and {remaining} more event{'' if remaining == 1 else 's'}")
    return "\n".join(parts)


def render_upcoming(events: list[Event], timezone_name: str | None = None) -> str:
    return render_event_list(
        events,
        header="📅 *Upcoming Events* \\(next 7 days\\)",
        empty_text="No events scheduled for the next 7 days\\.\n\nUse /import to add events from an ICS calendar\\.",
        timezone_name=timezone_name,
    )


def render_merge_summary(result: MergeResult, *, processed: int, source: str) -> str:
    return "\n".join(
        [
            "✅ *Import complete*",
            "",
            f"Source: {escape_markdown(source)}",
            f"Events processed: {processed}",
            f"Created: {result.created}",
            f"Updated: {result.updated}",
            f"Errors: {result.errors}",
        ]
    )


def render_reminder(event: Event, reminder_time: datetime, now: datetime, timezone_name: str | None = None) -> str:
    lines = [
        "🔔 Event Reminder",
        "",
        f"*{escape_markdown(event.title)}*",
        "",
        f"🕒 {escape_markdown(format_timestamp(event.start_time, timezone_name))}",
        f"   to {escape_markdown(format_timestamp(event.end_time, timezone_name))}",
        "",
        f"⏰ Reminder sent {escape_markdown(format_time_ago(reminder_time, now))}",
    ]
    return "\n".join(lines)
