from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from telegram import Update
from telegram.ext import ContextTypes

from calendar_bot.core.broadcast_scheduler import BroadcastScheduler
from calendar_bot.core.event_store import EventStore
from calendar_bot.core.formatting import (
    render_event_list,
    render_merge_summary,
    render_upcoming,
    sort_by_start,
    upcoming_events,
)
from calendar_bot.core.ics_importer import IcsImporter
from calendar_bot.core.models import InvalidTimeFormatError, MissingFieldsError
from calendar_bot.infra.messaging import safe_send_text
from calendar_bot.infra.storage import StorageWriteError

LOGGER = logging.getLogger(__name__)

ALL_EVENTS_LIMIT = 20

START_TEXT = (
    "Welcome to Calendar Bot! 📅\n\n"
    "Use /calendar to see what's coming up, or /help for all commands."
)

HELP_TEXT = (
    "Available commands:\n"
    "/calendar - Show upcoming events (next 7 days)\n"
    "/events - List all events\n"
    "/import <URL> - Import ICS calendar from URL\n"
    "/add <start> | <end> | <title> [| description] - Add an event\n"
    "/delete <id> - Delete an event by id (first characters are enough)\n"
    "/broadcast_status - Show reminder broadcast settings\n"
    "/broadcast_check - Run a reminder check now\n"
    "/help - Show this help message\n\n"
    "Times use ISO-8601, e.g. 2026-01-15T18:00:00+00:00.\n"
    "The /calendar command shows events in the next 7 days, limited to 10 entries."
)


def _get_event_store(context: ContextTypes.DEFAULT_TYPE) -> EventStore:
    return context.application.bot_data["event_store"]


def _get_importer(context: ContextTypes.DEFAULT_TYPE) -> IcsImporter:
    return context.application.bot_data["ics_importer"]


def _get_broadcast_scheduler(context: ContextTypes.DEFAULT_TYPE) -> BroadcastScheduler | None:
    return context.application.bot_data.get("broadcast_scheduler")


def _get_admin_user_ids(context: ContextTypes.DEFAULT_TYPE) -> set[int]:
    return context.application.bot_data.get("admin_user_ids") or set()


def _get_timezone_name(context: ContextTypes.DEFAULT_TYPE) -> str | None:
    settings = context.application.bot_data.get("settings")
    return getattr(settings, "display_timezone", None)


def _command_text(context: ContextTypes.DEFAULT_TYPE) -> str:
    return " ".join(context.args or []).strip()


async def _require_admin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    admin_ids = _get_admin_user_ids(context)
    if not admin_ids:
        return True
    user_id = update.effective_user.id if update.effective_user else 0
    if user_id in admin_ids:
        return True
    LOGGER.warning("Admin command refused: user_id=%s", user_id)
    await safe_send_text(update, "⛔ This command is available to administrators only.")
    return False


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_send_text(update, START_TEXT)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_send_text(update, HELP_TEXT)


async def calendar(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    store = _get_event_store(context)
    try:
        events = await asyncio.to_thread(store.list_events)
    except Exception:
        LOGGER.exception("Calendar command failed")
        await safe_send_text(update, "❌ Error retrieving calendar events. Please try again later.")
        return
    upcoming = upcoming_events(events, datetime.now(timezone.utc))
    await safe_send_text(update, render_upcoming(upcoming, _get_timezone_name(context)), markdown=True)


async def events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    store = _get_event_store(context)
    try:
        items = await asyncio.to_thread(store.list_events)
    except Exception:
        LOGGER.exception("Events command failed")
        await safe_send_text(update, "❌ Error retrieving events. Please try again later.")
        return
    text = render_event_list(
        sort_by_start(items),
        header="📋 *All Events*",
        empty_text="No events stored yet\\.",
        limit=ALL_EVENTS_LIMIT,
        timezone_name=_get_timezone_name(context),
    )
    await safe_send_text(update, text, markdown=True)


async def import_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _require_admin(update, context):
        return
    url = _command_text(context)
    if not url:
        await safe_send_text(update, "Usage: /import <URL>\nExample: /import https://example.com/calendar.ics")
        return
    importer = _get_importer(context)
    await safe_send_text(update, "⏳ Importing calendar...")
    result = await asyncio.to_thread(importer.import_from_url, url)
    if not result.success or result.merge_result is None:
        reason = result.error or result.message or "unknown error"
        await safe_send_text(update, f"❌ Import failed: {reason}")
        return
    text = render_merge_summary(result.merge_result, processed=result.events_processed, source=result.source)
    await safe_send_text(update, text, markdown=True)


def parse_add_arguments(text: str) -> dict[str, object]:
    """`<start> | <end> | <title> [| description]` into event data; blank parts are left out."""
    parts = [part.strip() for part in text.split("|")]
    keys = ("start_time", "end_time", "title", "description")
    data: dict[str, object] = {"custom": True}
    for key, value in zip(keys, parts):
        if value:
            data[key] = value
    return data


async def add_event(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _require_admin(update, context):
        return
    text = _command_text(context)
    if not text:
        await safe_send_text(
            update,
            "Usage: /add <start> | <end> | <title> [| description]\n"
            "Example: /add 2026-01-15T18:00:00+00:00 | 2026-01-15T19:00:00+00:00 | Team sync",
        )
        return
    store = _get_event_store(context)
    data = parse_add_arguments(text)
    try:
        created = await asyncio.to_thread(store.create, data)
    except MissingFieldsError as exc:
        await safe_send_text(update, f"❌ Missing required fields: {', '.join(exc.fields)}")
        return
    except InvalidTimeFormatError as exc:
        await safe_send_text(update, f"❌ Invalid time format: {exc.value}\nUse ISO-8601, e.g. 2026-01-15T18:00:00+00:00")
        return
    except StorageWriteError:
        LOGGER.exception("Add command failed to persist event")
        await safe_send_text(update, "❌ Could not save the event. Please try again later.")
        return
    if created is None:
        await safe_send_text(update, "⚠️ An event with this title and start time already exists.")
        return
    await safe_send_text(update, f"✅ Event created: {created.title} (id {created.short_id})")


async def delete_event(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _require_admin(update, context):
        return
    prefix = _command_text(context)
    if not prefix:
        await safe_send_text(update, "Usage: /delete <id>")
        return
    store = _get_event_store(context)
    matches = await asyncio.to_thread(store.find_by_short_id, prefix)
    if not matches:
        await safe_send_text(update, f"❌ No event found with id {prefix}")
        return
    if len(matches) > 1:
        await safe_send_text(update, f"⚠️ {len(matches)} events match {prefix}; please give more of the id.")
        return
    target = matches[0]
    try:
        removed = await asyncio.to_thread(store.delete, target.id)
    except StorageWriteError:
        LOGGER.exception("Delete command failed to persist: event_id=%s", target.id)
        await safe_send_text(update, "❌ Could not delete the event. Please try again later.")
        return
    if not removed:
        await safe_send_text(update, f"❌ No event found with id {prefix}")
        return
    await safe_send_text(update, f"🗑 Deleted: {target.title}")


async def broadcast_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _require_admin(update, context):
        return
    scheduler = _get_broadcast_scheduler(context)
    if scheduler is None:
        await safe_send_text(update, "Broadcast scheduler is not running.")
        return
    status = scheduler.status()
    next_run = status.next_run.isoformat() if status.next_run else "-"
    lines = [
        "📣 Broadcast status",
        f"Enabled: {'yes' if status.enabled else 'no'}",
        f"Running: {'yes' if status.running else 'no'}",
        f"Check interval: {status.check_interval} min",
        f"Lead time: {status.lead_time} min",
        f"Targets: {', '.join(status.target_destinations) or '-'}",
        f"Next check: {next_run}",
        f"Reminded events: {status.metadata_count}",
    ]
    await safe_send_text(update, "\n".join(lines))


async def broadcast_check(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _require_admin(update, context):
        return
    scheduler = _get_broadcast_scheduler(context)
    if scheduler is None:
        await safe_send_text(update, "Broadcast scheduler is not running.")
        return
    sent = await asyncio.to_thread(scheduler.force_check)
    await safe_send_text(update, f"✅ Broadcast check complete: {sent} reminder(s) sent.")


async def unknown_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await safe_send_text(update, "Unknown command. Use /help to see available commands.")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    LOGGER.error("Unhandled error while processing update", exc_info=context.error)
