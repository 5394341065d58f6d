from __future__ import annotations

import asyncio

import pytest

from voice_note_relay.app import wiring
from voice_note_relay.config.settings import AppSettings


def test_require_secret_reads_environment():
    assert wiring.require_secret("TELEGRAM_TOKEN", environ={"TELEGRAM_TOKEN": "t"}) == "t"
    with pytest.raises(ValueError, match="SONIOX_API_KEY"):
        wiring.require_secret("SONIOX_API_KEY", environ={})


def test_clients_are_created_once_and_reused():
    async def run():
        settings = AppSettings()
        clients = wiring.get_clients(settings)
        try:
            assert wiring.get_clients(settings) is clients
            assert clients.http is clients.http
        finally:
            await wiring.close_clients()
        assert wiring.get_clients(settings) is not clients
        await wiring.close_clients()

    asyncio.run(run())


def test_usage_recorder_is_disabled_without_redis_url():
    clients = wiring.Clients(settings=AppSettings())
    assert wiring.create_usage_recorder(clients) is None


def test_stream_runner_uses_configured_relay_and_audio_settings():
    async def run():
        settings = AppSettings()
        settings.relay.min_interval_s = 1.5
        settings.audio.max_frame_bytes = 2048
        settings.audio.ffmpeg_path = "/opt/ffmpeg"
        settings.usage.redis_url = "redis://localhost:6379/0"
        env = {
            "TELEGRAM_TOKEN": "123:abc",
            "SONIOX_API_KEY": "k",
            "MINIO_ACCESS_KEY": "a",
            "MINIO_SECRET_KEY": "s",
        }
        clients = wiring.Clients(settings=settings, environ=env)
        try:
            runner = wiring.create_stream_runner(settings, clients)
            assert runner.min_interval_s == 1.5
            assert runner.max_frame_bytes == 2048
            assert runner.decoder.build_command()[0] == "/opt/ffmpeg"
            assert runner.recognition.language_candidates == ("en", "he")
            assert runner.usage is not None
        finally:
            await clients.aclose()

    asyncio.run(run())


def test_missing_secret_fails_runner_creation():
    clients = wiring.Clients(settings=AppSettings(), environ={})
    with pytest.raises(ValueError, match="MINIO_ACCESS_KEY"):
        wiring.create_batch_runner(AppSettings(), clients)
