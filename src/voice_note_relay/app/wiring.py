from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from voice_note_relay.app.batch_job import BatchCompletionRunner
from voice_note_relay.app.stream_job import StreamingJobRunner
from voice_note_relay.config.settings import AppSettings
from voice_note_relay.core.audio.decoder import FfmpegFrameSource
from voice_note_relay.core.stt.backend import RecognitionConfig
from voice_note_relay.core.usage.recorder import UsageRecorder

logger = logging.getLogger(__name__)

TELEGRAM_TOKEN_ENV = "TELEGRAM_TOKEN"
SONIOX_API_KEY_ENV = "SONIOX_API_KEY"
MINIO_ACCESS_KEY_ENV = "MINIO_ACCESS_KEY"
MINIO_SECRET_KEY_ENV = "MINIO_SECRET_KEY"

HTTP_TIMEOUT_S = 15.0


def require_secret(env_var: str, *, environ: dict[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    value = env.get(env_var)
    if value:
        return value
    raise ValueError(f"Missing secret: set env var {env_var}")


@dataclass(slots=True)
class Clients:
    """Process-wide clients, created on first use and reused across jobs."""

    settings: AppSettings
    environ: dict[str, str] | None = None
    _http: httpx.AsyncClient | None = field(init=False, default=None, repr=False)
    _minio: Any = field(init=False, default=None, repr=False)
    _redis: Any = field(init=False, default=None, repr=False)
    _backend: Any = field(init=False, default=None, repr=False)

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=HTTP_TIMEOUT_S)
        return self._http

    @property
    def minio(self) -> Any:
        if self._minio is None:
            from voice_note_relay.providers.minio_blob import create_minio_client

            self._minio = create_minio_client(
                self.settings.storage.endpoint,
                access_key=require_secret(MINIO_ACCESS_KEY_ENV, environ=self.environ),
                secret_key=require_secret(MINIO_SECRET_KEY_ENV, environ=self.environ),
                secure=self.settings.storage.secure,
            )
        return self._minio

    @property
    def redis(self) -> Any:
        if not self.settings.usage.enabled:
            return None
        if self._redis is None:
            import redis.asyncio as redis

            self._redis = redis.from_url(self.settings.usage.redis_url)
        return self._redis

    @property
    def backend(self) -> Any:
        if self._backend is None:
            from voice_note_relay.providers.stt.soniox import SonioxRecognitionBackend

            rec = self.settings.recognition
            self._backend = SonioxRecognitionBackend(
                api_key=require_secret(SONIOX_API_KEY_ENV, environ=self.environ),
                model=rec.model,
                endpoint=rec.endpoint,
                queue_size=rec.queue_size,
            )
        return self._backend

    async def aclose(self) -> None:
        if self._http is not None:
            with contextlib.suppress(Exception):
                await self._http.aclose()
            self._http = None
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.aclose()
            self._redis = None
        self._minio = None
        self._backend = None


_clients: Clients | None = None


def get_clients(settings: AppSettings) -> Clients:
    global _clients
    if _clients is None:
        _clients = Clients(settings=settings)
    return _clients


async def close_clients() -> None:
    global _clients
    if _clients is not None:
        await _clients.aclose()
        _clients = None


def create_blob_store(clients: Clients):
    from voice_note_relay.providers.minio_blob import MinioBlobStore

    return MinioBlobStore(client=clients.minio)


def create_surface(clients: Clients):
    from voice_note_relay.providers.telegram import TelegramMessageSurface

    return TelegramMessageSurface(
        token=require_secret(TELEGRAM_TOKEN_ENV, environ=clients.environ),
        client=clients.http,
        api_base=clients.settings.relay.api_base,
    )


def create_usage_recorder(clients: Clients) -> UsageRecorder | None:
    if clients.redis is None:
        logger.info("[Usage] redis_url not configured; usage recording disabled")
        return None
    from voice_note_relay.providers.redis_counters import RedisCounterStore

    store = RedisCounterStore(client=clients.redis, key_prefix=clients.settings.usage.key_prefix)
    return UsageRecorder(store=store)


def create_recognition_config(settings: AppSettings) -> RecognitionConfig:
    return RecognitionConfig(
        language_candidates=tuple(settings.recognition.language_candidates),
        sample_rate_hz=settings.audio.sample_rate_hz,
    )


def create_stream_runner(settings: AppSettings, clients: Clients) -> StreamingJobRunner:
    return StreamingJobRunner(
        blobs=create_blob_store(clients),
        surface=create_surface(clients),
        backend=clients.backend,
        recognition=create_recognition_config(settings),
        decoder=FfmpegFrameSource(
            ffmpeg_path=settings.audio.ffmpeg_path,
            sample_rate_hz=settings.audio.sample_rate_hz,
            channels=settings.audio.channels,
        ),
        usage=create_usage_recorder(clients),
        max_frame_bytes=settings.audio.max_frame_bytes,
        min_interval_s=settings.relay.min_interval_s,
        max_chars=settings.relay.max_chars,
    )


def create_batch_runner(settings: AppSettings, clients: Clients) -> BatchCompletionRunner:
    return BatchCompletionRunner(
        blobs=create_blob_store(clients),
        surface=create_surface(clients),
        usage=create_usage_recorder(clients),
        max_chars=settings.relay.max_chars,
    )
