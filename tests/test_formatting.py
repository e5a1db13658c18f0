from __future__ import annotations

from datetime import datetime, timedelta, timezone

from calendar_bot.core.formatting import (
    escape_markdown,
    format_time_ago,
    format_time_range,
    format_timestamp,
    render_event_list,
    render_merge_summary,
    render_reminder,
    render_upcoming,
    upcoming_events,
)
from calendar_bot.core.models import Event, MergeResult

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _event(title: str, start: datetime, **extra) -> Event:
    return Event(
        id=extra.pop("id", f"{title.lower()}-0000-id"),
        title=title,
        start_time=start.isoformat(),
        end_time=(start + timedelta(hours=1)).isoformat(),
        **extra,
    )


def test_escape_markdown_escapes_reserved_characters() -> None:
    assert escape_markdown("a_b*c (d).") == "a\\_b\\*c \\(d\\)\\."
    assert escape_markdown(None) == ""


def test_format_timestamp_utc_and_zone() -> None:
    assert format_timestamp("2026-03-01T18:30:00Z") == "Mar 01, 2026 at 06:30 PM UTC"
    assert format_timestamp("2026-03-01T18:30:00Z", "Europe/Moscow") == "Mar 01, 2026 at 09:30 PM MSK"
    assert format_timestamp("garbage") == "garbage"


def test_format_time_range_same_day_and_multi_day() -> None:
    same_day = format_time_range("2026-03-01T09:00:00Z", "2026-03-01T10:00:00Z")
    multi_day = format_time_range("2026-03-01T09:00:00Z", "2026-03-02T10:00:00Z")

    assert same_day == "Mar 01, 2026 • 09:00 AM - 10:00 AM UTC"
    assert multi_day == "Mar 01 at 09:00 AM - Mar 02 at 10:00 AM UTC"


def test_format_time_ago() -> None:
    assert format_time_ago(NOW - timedelta(seconds=30), NOW) == "30 seconds ago"
    assert format_time_ago(NOW - timedelta(minutes=4), NOW) == "4 minutes ago"
    assert format_time_ago(NOW - timedelta(hours=2), NOW) == "2 hours ago"


def test_upcoming_events_window_and_order() -> None:
    events = [
        _event("Later", NOW + timedelta(days=3)),
        _event("Past", NOW - timedelta(hours=1)),
        _event("Soon", NOW + timedelta(hours=1)),
        _event("Far", NOW + timedelta(days=8)),
    ]

    selected = upcoming_events(events, NOW)

    assert [event.title for event in selected] == ["Soon", "Later"]


def test_render_upcoming_empty_mentions_import() -> None:
    text = render_upcoming([])

    assert "Upcoming Events" in text
    assert "/import" in text


def test_render_event_list_truncates_and_tags() -> None:
    events = [_event(f"Event{index}", NOW + timedelta(hours=index)) for index in range(12)]
    events[0] = _event("Custom", NOW, custom=True, description="x" * 200)
    events[1] = _event("Imported", NOW + timedelta(hours=1), imported_from_url="https://example.com/a.ics")

    text = render_event_list(events, header="📋 *All Events*", empty_text="none", limit=10)

    assert "*1\\. Custom*" in text
    assert "🏷️ Custom event" in text
    assert "🔗 Imported from calendar" in text
    assert "x" * 150 + "\\.\\.\\." in text
    assert "x" * 151 not in text
    assert "\\.\\.\\. and 2 more events" in text
    assert "🆔 `custom-0`" in text


def test_render_merge_summary() -> None:
    text = render_merge_summary(MergeResult(created=2, updated=1, errors=1), processed=4, source="https://a.b/c.ics")

    assert "Created: 2" in text
    assert "Updated: 1" in text
    assert "Errors: 1" in text
    assert "https://a\\.b/c\\.ics" in text


def test_render_reminder_contains_title_and_lag() -> None:
    event = _event("Board meeting (Q1)", NOW + timedelta(minutes=10))

    text = render_reminder(event, NOW - timedelta(minutes=2), NOW)

    assert text.startswith("🔔 Event Reminder")
    assert "*Board meeting \\(Q1\\)*" in text
    assert "2 minutes ago" in text
