from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

DEFAULT_EVENTS_STORAGE_PATH = Path("./events.json")
DEFAULT_METADATA_FILENAME = "broadcast_metadata.json"
DEFAULT_IMPORT_TIMEOUT_SECONDS = 30.0

MIN_CHECK_INTERVAL_MINUTES = 5
MIN_LEAD_TIME_MINUTES = 1


@dataclass(frozen=True)
class BroadcastConfig:
    enabled: bool = False
    check_interval: int = 30
    lead_time: int = 300
    target_destinations: tuple[str, ...] = ()

    def normalized(self, logger: logging.Logger | None = None) -> "BroadcastConfig":
        """Apply the floors and the no-destination rule, warning about each adjustment."""
        log = logger or LOGGER
        config = self
        if config.check_interval < MIN_CHECK_INTERVAL_MINUTES:
            log.warning(
                "Broadcast check interval too low (%s), setting to %s minutes",
                config.check_interval,
                MIN_CHECK_INTERVAL_MINUTES,
            )
            config = replace(config, check_interval=MIN_CHECK_INTERVAL_MINUTES)
        if config.lead_time < MIN_LEAD_TIME_MINUTES:
            log.warning(
                "Broadcast lead time too low (%s), setting to %s minute",
                config.lead_time,
                MIN_LEAD_TIME_MINUTES,
            )
            config = replace(config, lead_time=MIN_LEAD_TIME_MINUTES)
        if config.enabled and not config.target_destinations:
            log.warning("Broadcast enabled but no target groups configured; disabling")
            config = replace(config, enabled=False)
        return config


@dataclass(frozen=True)
class Settings:
    bot_token: str
    events_storage_path: Path
    redis_url: str | None
    use_redis: bool
    admin_user_ids: set[int]
    import_timeout_seconds: float
    display_timezone: str | None
    broadcast: BroadcastConfig
    broadcast_metadata_path: Path
    dry_run: bool = False


def load_broadcast_config(raw_env: dict[str, str] | None = None) -> BroadcastConfig:
    env = raw_env if raw_env is not None else os.environ
    enabled = _parse_optional_bool(env.get("BROADCAST_ENABLED"))
    config = BroadcastConfig(
        enabled=bool(enabled),
        check_interval=_parse_int_with_default(env.get("BROADCAST_CHECK_INTERVAL"), 30),
        lead_time=_parse_int_with_default(env.get("BROADCAST_LEAD_TIME"), 300),
        target_destinations=_parse_str_tuple(env.get("BROADCAST_TARGET_GROUPS")),
    )
    return config.normalized(LOGGER)


def default_metadata_path(events_storage_path: Path) -> Path:
    return events_storage_path.parent / DEFAULT_METADATA_FILENAME


def load_settings(raw_env: dict[str, str] | None = None) -> Settings:
    if raw_env is None:
        load_dotenv()
    env = raw_env if raw_env is not None else os.environ
    dry_run = _parse_optional_bool(env.get("DRY_RUN")) is True

    token = (env.get("TELEGRAM_BOT_TOKEN") or "").strip()
    if not token:
        if dry_run:
            token = "000000:DRY_RUN_TOKEN"
        else:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")

    events_storage_path = Path(env.get("EVENTS_STORAGE_PATH") or DEFAULT_EVENTS_STORAGE_PATH)
    redis_url = (env.get("REDIS_URL") or "").strip() or None
    use_redis = redis_url is not None or _parse_optional_bool(env.get("USE_REDIS")) is True
    metadata_raw = (env.get("BROADCAST_METADATA_PATH") or "").strip()
    metadata_path = Path(metadata_raw) if metadata_raw else default_metadata_path(events_storage_path)
    display_timezone = (env.get("DISPLAY_TIMEZONE") or "").strip() or None
    return Settings(
        bot_token=token,
        events_storage_path=events_storage_path,
        redis_url=redis_url,
        use_redis=use_redis,
        admin_user_ids=_parse_int_set(env.get("ADMIN_USER_IDS")),
        import_timeout_seconds=_parse_optional_float(env.get("ICS_IMPORT_TIMEOUT"), DEFAULT_IMPORT_TIMEOUT_SECONDS),
        display_timezone=display_timezone,
        broadcast=load_broadcast_config(env),
        broadcast_metadata_path=metadata_path,
        dry_run=dry_run,
    )


def _parse_int_set(value: str | None) -> set[int]:
    if value is None:
        return set()
    raw = [item.strip() for item in value.split(",") if item.strip()]
    return {int(item) for item in raw}


def _parse_str_tuple(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_optional_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return float(trimmed)


def _parse_optional_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    trimmed = value.strip().lower()
    if not trimmed:
        return None
    return trimmed in {"1", "true", "yes", "on"}


def _parse_int_with_default(value: str | None, default: int) -> int:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    try:
        return int(trimmed)
    except ValueError:
        LOGGER.warning("Invalid integer value %r, using default %s", value, default)
        return default
