from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass

from voice_note_relay.core.clock import Clock
from voice_note_relay.core.relay.surface import MessageSurface
from voice_note_relay.domain.errors import RelayError

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "🎧 "
DONE_PREFIX = "✅ "
ERROR_TEXT = "❌ Error processing transcription."
EMPTY_TRANSCRIPT = "(no speech detected)"
ELLIPSIS = "…"


@dataclass(slots=True)
class UpdateRelay:
    """Throttled, de-duplicated edits of one display message.

    In-progress edits go out only when more than `min_interval_s` has passed
    since the previous attempt and the displayed text changed. Exactly one
    terminal update (`complete` or `fail`) is sent per job, unthrottled.
    Surface failures are logged and never raised.
    """

    surface: MessageSurface
    clock: Clock
    chat_id: str
    message_id: int
    min_interval_s: float = 2.0
    max_chars: int = 4096

    _last_emit_at: float = 0.0
    _last_text: str = ""
    _updates_sent: int = 0
    _terminal_sent: bool = False

    def __post_init__(self) -> None:
        if self.min_interval_s <= 0:
            raise ValueError("min_interval_s must be > 0")
        if self.max_chars <= len(DONE_PREFIX) + len(ELLIPSIS):
            raise ValueError("max_chars is too small")
        self._last_emit_at = self.clock.now()

    @property
    def last_emitted_text(self) -> str:
        return self._last_text

    @property
    def updates_sent(self) -> int:
        return self._updates_sent

    async def on_update(self, displayed_text: str) -> bool:
        """Offer the current displayed text; return True if an edit went out."""
        if self._terminal_sent:
            return False

        now = self.clock.now()
        if now - self._last_emit_at <= self.min_interval_s:
            return False
        if displayed_text == self._last_text:
            return False

        self._last_emit_at = now
        body = self._fit_progress(displayed_text)
        if not await self._edit(PROGRESS_PREFIX + body):
            return False

        self._last_text = displayed_text
        self._updates_sent += 1
        return True

    async def complete(self, transcript: str) -> None:
        if self._terminal_sent:
            logger.warning("[Relay] Terminal update already sent; ignoring completion")
            return
        self._terminal_sent = True

        text = transcript.strip() or EMPTY_TRANSCRIPT
        parts = self._split(text, width=self.max_chars - len(DONE_PREFIX))
        if await self._edit(DONE_PREFIX + parts[0]):
            self._last_text = transcript
            self._updates_sent += 1

        for part in parts[1:]:
            try:
                await self.surface.send(self.chat_id, part)
            except RelayError as exc:
                logger.warning(f"[Relay] Follow-up message failed: {exc}")
                return

    async def fail(self) -> None:
        if self._terminal_sent:
            logger.warning("[Relay] Terminal update already sent; ignoring error marker")
            return
        self._terminal_sent = True
        if await self._edit(ERROR_TEXT):
            self._updates_sent += 1

    async def _edit(self, text: str) -> bool:
        try:
            await self.surface.edit(self.chat_id, self.message_id, text)
        except RelayError as exc:
            logger.warning(f"[Relay] Edit failed: {exc}")
            return False
        return True

    def _fit_progress(self, text: str) -> str:
        room = self.max_chars - len(PROGRESS_PREFIX)
        if len(text) <= room:
            return text
        return ELLIPSIS + text[-(room - len(ELLIPSIS)) :]

    @staticmethod
    def _split(text: str, *, width: int) -> list[str]:
        if len(text) <= width:
            return [text]
        return textwrap.wrap(
            text,
            width=width,
            break_long_words=True,
            break_on_hyphens=False,
            replace_whitespace=False,
        )
