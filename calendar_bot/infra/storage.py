from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import redis

LOGGER = logging.getLogger(__name__)

REDIS_KEY = "calendar_bot:events"
REDIS_CONNECT_TIMEOUT_SECONDS = 5.0


class StorageWriteError(RuntimeError):
    """The backend refused or failed to persist the event collection."""


class StorageAdapter(ABC):
    """Whole-collection persistence: read everything, replace everything."""

    @abstractmethod
    def read(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def write(self, events: list[dict[str, Any]]) -> None:
        ...

    @abstractmethod
    def available(self) -> bool:
        ...

    @abstractmethod
    def describe(self) -> str:
        ...


def _decode_collection(raw: str, *, source: str) -> list[dict[str, Any]]:
    if not raw or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Invalid JSON in events storage: source=%s error=%s", source, exc)
        return []
    if not isinstance(data, list):
        LOGGER.warning("Unexpected events payload: source=%s type=%s", source, type(data).__name__)
        return []
    return [item for item in data if isinstance(item, dict)]


class FileStorageAdapter(StorageAdapter):
    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._ensure_storage()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_storage(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._path.write_text("[]", encoding="utf-8")

    def read(self) -> list[dict[str, Any]]:
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError:
            LOGGER.exception("Failed to read events file: path=%s", self._path)
            return []
        return _decode_collection(content, source=str(self._path))

    def write(self, events: list[dict[str, Any]]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(events, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            LOGGER.error("Failed to write events: path=%s error=%s", self._path, exc)
            raise StorageWriteError(f"Failed to write events to {self._path}: {exc}") from exc

    def available(self) -> bool:
        return True

    def describe(self) -> str:
        return f"file:{self._path}"


class RedisStorageAdapter(StorageAdapter):
    def __init__(self, client: redis.Redis, *, key: str = REDIS_KEY) -> None:
        self._client = client
        self._key = key

    @classmethod
    def from_url(cls, url: str) -> "RedisStorageAdapter":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=REDIS_CONNECT_TIMEOUT_SECONDS,
            socket_timeout=REDIS_CONNECT_TIMEOUT_SECONDS,
        )
        return cls(client)

    def read(self) -> list[dict[str, Any]]:
        try:
            data = self._client.get(self._key)
        except redis.RedisError as exc:
            LOGGER.error("Failed to read from Redis: key=%s error=%s", self._key, exc)
            return []
        if data is None:
            return []
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return _decode_collection(data, source=f"redis:{self._key}")

    def write(self, events: list[dict[str, Any]]) -> None:
        payload = json.dumps(events, ensure_ascii=False)
        try:
            self._client.set(self._key, payload)
        except redis.RedisError as exc:
            LOGGER.error("Failed to write to Redis: key=%s error=%s", self._key, exc)
            raise StorageWriteError(f"Failed to write events to Redis: {exc}") from exc

    def available(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            LOGGER.error("Redis not available: %s", exc)
            return False

    def describe(self) -> str:
        return f"redis:{self._key}"


def build_storage_adapter(settings: Any) -> StorageAdapter:
    """Pick the backend once at startup; Redis falls back to the file adapter when unreachable."""
    if settings.use_redis:
        redis_url = settings.redis_url or "redis://localhost:6379/0"
        LOGGER.info("Connecting to Redis: url=%s", _mask_url(redis_url))
        try:
            adapter = RedisStorageAdapter.from_url(redis_url)
        except ValueError as exc:
            LOGGER.error("Invalid REDIS_URL: url=%s error=%s", _mask_url(redis_url), exc)
            adapter = None
        if adapter is not None and adapter.available():
            LOGGER.info("Using Redis storage")
            return adapter
        LOGGER.warning("Redis unavailable, falling back to file storage: path=%s", settings.events_storage_path)
    LOGGER.info("Using file-based storage: path=%s", settings.events_storage_path)
    return FileStorageAdapter(settings.events_storage_path)


def _mask_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
