import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from calendar_bot.infra.storage import StorageAdapter, StorageWriteError  # noqa: E402


class MemoryStorageAdapter(StorageAdapter):
    """In-memory adapter for tests: keeps a JSON-like copy and counts writes."""

    def __init__(self, events=None) -> None:
        self.events = [dict(item) for item in (events or [])]
        self.writes = 0
        self.fail_writes = False

    def read(self):
        return [dict(item) for item in self.events]

    def write(self, events) -> None:
        if self.fail_writes:
            raise StorageWriteError("disk full")
        self.events = [dict(item) for item in events]
        self.writes += 1

    def available(self) -> bool:
        return True

    def describe(self) -> str:
        return "memory"


class RecordingSender:
    """Records (chat_id, text) pairs; raises for chat ids listed in `failing`."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failing = failing or set()

    def __call__(self, chat_id: str, text: str) -> None:
        self.calls.append((chat_id, text))
        if chat_id in self.failing:
            raise RuntimeError(f"chat {chat_id} unreachable")


@pytest.fixture
def memory_adapter() -> MemoryStorageAdapter:
    return MemoryStorageAdapter()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def make_sender():
    return RecordingSender
