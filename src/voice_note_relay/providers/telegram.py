"""Telegram Bot API message surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from voice_note_relay.core.relay.surface import MessageSurface
from voice_note_relay.domain.errors import RelayError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
NOT_MODIFIED = "message is not modified"


@dataclass(slots=True)
class TelegramMessageSurface(MessageSurface):
    token: str
    client: httpx.AsyncClient
    api_base: str = DEFAULT_API_BASE

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("token must be non-empty")
        if not self.api_base:
            raise ValueError("api_base must be non-empty")

    async def send(self, chat_id: str, text: str) -> int:
        result = await self._call("sendMessage", {"chat_id": chat_id, "text": text})
        try:
            return int(result["message_id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise RelayError("sendMessage returned no message_id", exc) from exc

    async def edit(self, chat_id: str, message_id: int, text: str) -> None:
        try:
            await self._call(
                "editMessageText",
                {"chat_id": chat_id, "message_id": message_id, "text": text},
            )
        except RelayError as exc:
            if NOT_MODIFIED in str(exc):
                logger.debug("[Telegram] Edit skipped: message not modified")
                return
            raise

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        url = f"{self.api_base.rstrip('/')}/bot{self.token}/{method}"
        try:
            resp = await self.client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise RelayError(f"Telegram {method} request failed", exc) from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise RelayError(f"Telegram {method} returned HTTP {resp.status_code}", exc) from exc
        if not isinstance(data, dict):
            raise RelayError(f"Telegram {method} returned HTTP {resp.status_code}: unexpected body")

        if not data.get("ok"):
            description = data.get("description") or f"HTTP {resp.status_code}"
            raise RelayError(f"Telegram {method} failed: {description}")
        return data.get("result")
