from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from telegram import Update
from telegram.constants import ParseMode
from telegram.error import BadRequest

LOGGER = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 3500
FALLBACK_CHUNK_SIZE = 2000
EMPTY_MESSAGE_PLACEHOLDER = "(empty response)"
DEFAULT_SEND_TIMEOUT_SECONDS = 30.0


def chunk_text(text: str, max_len: int = MAX_CHUNK_SIZE) -> list[str]:
    chunks: list[str] = []
    remaining = text or ""
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_len + 1)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, max_len + 1)
        if split_at <= 0:
            split_at = max_len
        chunk = remaining[:split_at].rstrip()
        if not chunk:
            chunk = remaining[:max_len]
            split_at = max_len
        chunks.append(chunk)
        remaining = remaining[split_at:].lstrip("\n ")
    return chunks


def chunk_markdown(text: str, max_len: int = MAX_CHUNK_SIZE) -> list[str]:
    """Split MarkdownV2 text only between blank-line separated blocks.

    A block is never cut, so bold spans and escapes stay intact; a single
    block longer than `max_len` falls back to line splitting.
    """
    chunks: list[str] = []
    current = ""
    for block in (text or "").split("\n\n"):
        candidate = f"{current}\n\n{block}" if current else block
        if len(candidate) <= max_len:
            current = candidate
            continue
        if current:
            chunks.append(current)
        if len(block) <= max_len:
            current = block
        else:
            chunks.extend(chunk_text(block, max_len=max_len))
            current = ""
    if current:
        chunks.append(current)
    return chunks


def _split(text: str, max_len: int, parse_mode: str | None) -> list[str]:
    if parse_mode == ParseMode.MARKDOWN_V2:
        return chunk_markdown(text, max_len=max_len)
    return chunk_text(text, max_len=max_len)


async def _send_chunks(message, chunks: Iterable[str], parse_mode: str | None = None) -> None:
    for chunk in chunks:
        try:
            await message.reply_text(chunk, parse_mode=parse_mode)
        except BadRequest as exc:
            if "Message is too long" in str(exc):
                LOGGER.warning("Telegram rejected message chunk as too long; splitting further.")
                for subchunk in _split(chunk, FALLBACK_CHUNK_SIZE, parse_mode):
                    await message.reply_text(subchunk, parse_mode=parse_mode)
                continue
            LOGGER.exception("Failed to send message chunk: %s", exc)
            break


async def safe_send_text(update: Update | None, text: str | None, *, markdown: bool = False) -> int:
    message = update.effective_message if update else None
    if not message:
        return 0
    payload = text if text and text.strip() else EMPTY_MESSAGE_PLACEHOLDER
    parse_mode = ParseMode.MARKDOWN_V2 if markdown else None
    await _send_chunks(message, _split(payload, MAX_CHUNK_SIZE, parse_mode), parse_mode=parse_mode)
    return len(payload)


async def send_bot_text(bot, chat_id: int | str, text: str, *, markdown: bool = True) -> int:
    """Send to a chat by id; errors propagate so callers can account per destination."""
    parse_mode = ParseMode.MARKDOWN_V2 if markdown else None
    sent = 0
    for chunk in _split(text, MAX_CHUNK_SIZE, parse_mode):
        await bot.send_message(chat_id=chat_id, text=chunk, parse_mode=parse_mode)
        sent += len(chunk)
    return sent


class TelegramSender:
    """Blocking `(chat_id, text)` sender for worker threads, delivered on the bot's event loop."""

    def __init__(
        self,
        bot,
        loop: asyncio.AbstractEventLoop,
        *,
        timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._bot = bot
        self._loop = loop
        self._timeout = timeout_seconds

    def __call__(self, chat_id: str, text: str) -> None:
        future = asyncio.run_coroutine_threadsafe(send_bot_text(self._bot, chat_id, text), self._loop)
        future.result(timeout=self._timeout)
