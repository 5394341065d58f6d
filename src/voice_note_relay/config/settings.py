from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from voice_note_relay.providers.stt.soniox import DEFAULT_ENDPOINT as SONIOX_ENDPOINT
from voice_note_relay.providers.telegram import DEFAULT_API_BASE as TELEGRAM_API_BASE

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class AudioSettings:
    sample_rate_hz: int = 16000
    channels: int = 1
    max_frame_bytes: int = 4096
    ffmpeg_path: str = "ffmpeg"

    def validate(self) -> None:
        if self.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")
        if self.channels != 1:
            raise ValueError("channels must be 1 (mono)")
        if self.max_frame_bytes <= 0:
            raise ValueError("max_frame_bytes must be > 0")
        if not self.ffmpeg_path:
            raise ValueError("ffmpeg_path must be non-empty")


@dataclass(slots=True)
class RecognitionSettings:
    language_candidates: list[str] = field(default_factory=lambda: ["en", "he"])
    model: str = "stt-rt-v3"
    endpoint: str = SONIOX_ENDPOINT
    queue_size: int = 64

    def validate(self) -> None:
        if not self.language_candidates:
            raise ValueError("language_candidates must be non-empty")
        if any(not code for code in self.language_candidates):
            raise ValueError("language_candidates must not contain empty codes")
        if len(set(self.language_candidates)) != len(self.language_candidates):
            raise ValueError("language_candidates must not contain duplicates")
        if not self.model:
            raise ValueError("model must be non-empty")
        if not self.endpoint:
            raise ValueError("endpoint must be non-empty")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")


@dataclass(slots=True)
class RelaySettings:
    min_interval_s: float = 2.0
    max_chars: int = 4096
    api_base: str = TELEGRAM_API_BASE

    def validate(self) -> None:
        if self.min_interval_s <= 0:
            raise ValueError("min_interval_s must be > 0")
        if self.max_chars <= 0:
            raise ValueError("max_chars must be > 0")
        if not self.api_base:
            raise ValueError("api_base must be non-empty")


@dataclass(slots=True)
class StorageSettings:
    endpoint: str = "localhost:9000"
    secure: bool = False
    bucket: str = "voice-notes"

    def validate(self) -> None:
        if not self.endpoint:
            raise ValueError("endpoint must be non-empty")
        if not self.bucket:
            raise ValueError("bucket must be non-empty")


@dataclass(slots=True)
class UsageSettings:
    redis_url: str = ""  # empty disables usage recording
    key_prefix: str = "usage:"

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)

    def validate(self) -> None:
        if self.redis_url and not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must start with redis://, rediss:// or unix://")
        if not self.key_prefix:
            raise ValueError("key_prefix must be non-empty")


@dataclass(slots=True)
class LoggingSettings:
    level: str = "INFO"
    file: str = ""
    max_bytes: int = 1_048_576
    backup_count: int = 3

    def validate(self) -> None:
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}")
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if self.backup_count < 0:
            raise ValueError("backup_count must be >= 0")


@dataclass(slots=True)
class AppSettings:
    audio: AudioSettings = field(default_factory=AudioSettings)
    recognition: RecognitionSettings = field(default_factory=RecognitionSettings)
    relay: RelaySettings = field(default_factory=RelaySettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    usage: UsageSettings = field(default_factory=UsageSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> None:
        self.audio.validate()
        self.recognition.validate()
        self.relay.validate()
        self.storage.validate()
        self.usage.validate()
        self.logging.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "audio": {
            "sample_rate_hz": settings.audio.sample_rate_hz,
            "channels": settings.audio.channels,
            "max_frame_bytes": settings.audio.max_frame_bytes,
            "ffmpeg_path": settings.audio.ffmpeg_path,
        },
        "recognition": {
            "language_candidates": list(settings.recognition.language_candidates),
            "model": settings.recognition.model,
            "endpoint": settings.recognition.endpoint,
            "queue_size": settings.recognition.queue_size,
        },
        "relay": {
            "min_interval_s": settings.relay.min_interval_s,
            "max_chars": settings.relay.max_chars,
            "api_base": settings.relay.api_base,
        },
        "storage": {
            "endpoint": settings.storage.endpoint,
            "secure": settings.storage.secure,
            "bucket": settings.storage.bucket,
        },
        "usage": {
            "redis_url": settings.usage.redis_url,
            "key_prefix": settings.usage.key_prefix,
        },
        "logging": {
            "level": settings.logging.level,
            "file": settings.logging.file,
            "max_bytes": settings.logging.max_bytes,
            "backup_count": settings.logging.backup_count,
        },
    }


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"settings section '{name}' must be an object")
    return value


def from_dict(data: dict[str, Any]) -> AppSettings:
    audio = _section(data, "audio")
    recognition = _section(data, "recognition")
    relay = _section(data, "relay")
    storage = _section(data, "storage")
    usage = _section(data, "usage")
    log = _section(data, "logging")

    candidates_raw = recognition.get("language_candidates", ["en", "he"])
    if isinstance(candidates_raw, str):
        candidates_raw = [c.strip() for c in candidates_raw.split(",") if c.strip()]

    settings = AppSettings(
        audio=AudioSettings(
            sample_rate_hz=int(audio.get("sample_rate_hz", 16000)),
            channels=int(audio.get("channels", 1)),
            max_frame_bytes=int(audio.get("max_frame_bytes", 4096)),
            ffmpeg_path=str(audio.get("ffmpeg_path", "ffmpeg")),
        ),
        recognition=RecognitionSettings(
            language_candidates=[str(c) for c in candidates_raw],
            model=str(recognition.get("model", "stt-rt-v3")),
            endpoint=str(recognition.get("endpoint", SONIOX_ENDPOINT)),
            queue_size=int(recognition.get("queue_size", 64)),
        ),
        relay=RelaySettings(
            min_interval_s=float(relay.get("min_interval_s", 2.0)),
            max_chars=int(relay.get("max_chars", 4096)),
            api_base=str(relay.get("api_base", TELEGRAM_API_BASE)),
        ),
        storage=StorageSettings(
            endpoint=str(storage.get("endpoint", "localhost:9000")),
            secure=bool(storage.get("secure", False)),
            bucket=str(storage.get("bucket", "voice-notes")),
        ),
        usage=UsageSettings(
            redis_url=str(usage.get("redis_url", "") or ""),
            key_prefix=str(usage.get("key_prefix", "usage:")),
        ),
        logging=LoggingSettings(
            level=str(log.get("level", "INFO")).upper(),
            file=str(log.get("file", "") or ""),
            max_bytes=int(log.get("max_bytes", 1_048_576)),
            backup_count=int(log.get("backup_count", 3)),
        ),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
