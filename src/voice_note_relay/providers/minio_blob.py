"""Blob store backed by an S3-compatible object store through the MinIO client.

The MinIO client is blocking, so reads run in a worker thread and are bridged
to asyncio through a bounded janus queue.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator

import janus
from minio import Minio

from voice_note_relay.core.storage.blob import BlobStore
from voice_note_relay.domain.errors import CleanupError, SourceUnavailable
from voice_note_relay.domain.models import BlobLocation

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MinioBlobStore(BlobStore):
    client: Minio
    chunk_size: int = 32 * 1024
    max_queue_chunks: int = 16

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if self.max_queue_chunks <= 0:
            raise ValueError("max_queue_chunks must be > 0")

    async def get(self, location: BlobLocation) -> AsyncIterator[bytes]:
        logger.info(f"[Blob] Fetching {location}")
        try:
            response = await asyncio.to_thread(
                self.client.get_object, location.bucket, location.key
            )
        except Exception as exc:
            raise SourceUnavailable(location, exc) from exc

        q: janus.Queue[bytes | BaseException | None] = janus.Queue(maxsize=self.max_queue_chunks)
        stop = threading.Event()

        def _put(item: bytes | BaseException | None) -> bool:
            while not stop.is_set():
                try:
                    q.sync_q.put(item, timeout=0.1)
                    return True
                except queue.Full:
                    continue
            return False

        def _pump() -> None:  # worker thread
            try:
                for data in response.stream(self.chunk_size):
                    if not _put(data):
                        return
                _put(None)
            except Exception as exc:
                _put(exc)
            finally:
                response.close()
                response.release_conn()

        pump = asyncio.create_task(asyncio.to_thread(_pump))
        total = 0
        try:
            while True:
                item = await q.async_q.get()
                if item is None:
                    break
                if isinstance(item, BaseException):
                    raise SourceUnavailable(location, item) from item
                total += len(item)
                yield item
            logger.info(f"[Blob] Read {total} bytes from {location}")
        finally:
            stop.set()
            await asyncio.gather(pump, return_exceptions=True)
            q.close()
            with contextlib.suppress(Exception):
                await q.wait_closed()

    async def read_all(self, location: BlobLocation) -> bytes:
        chunks: list[bytes] = []
        async for data in self.get(location):
            chunks.append(data)
        return b"".join(chunks)

    async def delete(self, location: BlobLocation) -> None:
        try:
            await asyncio.to_thread(self.client.remove_object, location.bucket, location.key)
        except Exception as exc:
            raise CleanupError(f"Failed to delete '{location}'", exc) from exc


def create_minio_client(
    endpoint: str, *, access_key: str, secret_key: str, secure: bool, region: str | None = None
) -> Minio:
    kwargs: dict[str, Any] = {
        "access_key": access_key,
        "secret_key": secret_key,
        "secure": secure,
    }
    if region:
        kwargs["region"] = region
    return Minio(endpoint, **kwargs)
