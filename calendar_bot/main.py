from __future__ import annotations

import asyncio
import logging

from telegram.ext import Application, CommandHandler, MessageHandler, filters

from calendar_bot.bot import handlers
from calendar_bot.core.broadcast_scheduler import BroadcastScheduler
from calendar_bot.core.event_store import EventStore
from calendar_bot.core.ics_importer import IcsImporter
from calendar_bot.infra.broadcast_metadata import BroadcastMetadataStore
from calendar_bot.infra.config import Settings, load_settings
from calendar_bot.infra.logging_config import configure_logging
from calendar_bot.infra.messaging import TelegramSender
from calendar_bot.infra.storage import build_storage_adapter

LOGGER = logging.getLogger(__name__)


def _register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", handlers.start))
    application.add_handler(CommandHandler("help", handlers.help_command))
    application.add_handler(CommandHandler("calendar", handlers.calendar))
    application.add_handler(CommandHandler("events", handlers.events))
    application.add_handler(CommandHandler("import", handlers.import_command))
    application.add_handler(CommandHandler("add", handlers.add_event))
    application.add_handler(CommandHandler("delete", handlers.delete_event))
    application.add_handler(CommandHandler("broadcast_status", handlers.broadcast_status))
    application.add_handler(CommandHandler("broadcast_check", handlers.broadcast_check))
    application.add_handler(MessageHandler(filters.COMMAND, handlers.unknown_command))


def build_application(settings: Settings, event_store: EventStore, metadata: BroadcastMetadataStore) -> Application:
    application = Application.builder().token(settings.bot_token).build()
    application.bot_data["settings"] = settings
    application.bot_data["event_store"] = event_store
    application.bot_data["ics_importer"] = IcsImporter(event_store, timeout=settings.import_timeout_seconds)
    application.bot_data["admin_user_ids"] = settings.admin_user_ids

    async def _post_init(app: Application) -> None:
        sender = TelegramSender(app.bot, asyncio.get_running_loop())
        scheduler = BroadcastScheduler(
            event_store,
            sender,
            settings.broadcast,
            metadata,
            timezone_name=settings.display_timezone,
        )
        app.bot_data["broadcast_scheduler"] = scheduler
        scheduler.start()

    async def _post_stop(app: Application) -> None:
        # The bot is still initialized here, so an in-flight scan can finish sending.
        scheduler = app.bot_data.pop("broadcast_scheduler", None)
        if scheduler is not None:
            await asyncio.to_thread(scheduler.stop)

    application.post_init = _post_init
    application.post_stop = _post_stop
    _register_handlers(application)
    application.add_error_handler(handlers.error_handler)
    return application


def main() -> None:
    configure_logging()
    try:
        settings = load_settings()
    except RuntimeError as exc:
        LOGGER.exception("Startup failed: %s", exc)
        raise SystemExit(str(exc)) from exc

    adapter = build_storage_adapter(settings)
    event_store = EventStore(adapter)
    metadata = BroadcastMetadataStore(settings.broadcast_metadata_path)
    LOGGER.info(
        "Startup: storage=%s events=%s metadata_path=%s broadcast_enabled=%s",
        event_store.backend,
        event_store.count(),
        settings.broadcast_metadata_path,
        settings.broadcast.enabled,
    )
    if settings.dry_run:
        LOGGER.info("DRY_RUN set; startup checks passed, not polling Telegram")
        return

    application = build_application(settings, event_store, metadata)
    LOGGER.info("Bot started")
    application.run_polling()


if __name__ == "__main__":
    main()
