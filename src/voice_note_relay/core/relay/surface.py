from __future__ import annotations

from typing import Protocol


class MessageSurface(Protocol):
    async def send(self, chat_id: str, text: str) -> int:
        """Post a new message and return its id. Raises RelayError."""

    async def edit(self, chat_id: str, message_id: int, text: str) -> None:
        """Replace a message's text. Raises RelayError."""
