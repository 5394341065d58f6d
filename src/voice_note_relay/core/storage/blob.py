from __future__ import annotations

from typing import AsyncIterator, Protocol

from voice_note_relay.domain.models import BlobLocation


class BlobStore(Protocol):
    def get(self, location: BlobLocation) -> AsyncIterator[bytes]:
        """Stream the object's bytes. Raises SourceUnavailable."""

    async def read_all(self, location: BlobLocation) -> bytes:
        """Read a small object fully. Raises SourceUnavailable."""

    async def delete(self, location: BlobLocation) -> None:
        """Delete the object. Raises CleanupError."""
