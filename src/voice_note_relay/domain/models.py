from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

GLOBAL_SCOPE_KEY = "GLOBAL"
USER_SCOPE_PREFIX = "USER:"
UNKNOWN_LANGUAGE = "unknown"


@dataclass(frozen=True, slots=True)
class BlobLocation:
    bucket: str
    key: str

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("bucket must be non-empty")
        if not self.key:
            raise ValueError("key must be non-empty")

    def __str__(self) -> str:
        return f"{self.bucket}/{self.key}"


@dataclass(frozen=True, slots=True)
class JobId:
    """Structured job identity; never parsed back out of object names."""

    user_id: str
    artifact_id: str

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id must be non-empty")
        if not self.artifact_id:
            raise ValueError("artifact_id must be non-empty")

    def __str__(self) -> str:
        return f"{self.user_id}/{self.artifact_id}"


@dataclass(frozen=True, slots=True)
class AudioJob:
    source: BlobLocation
    job_id: JobId
    display_message_id: int
    chat_id: str
    started_at: float  # wall-clock epoch seconds

    @property
    def user_id(self) -> str:
        return self.job_id.user_id

    @classmethod
    def from_event(cls, event: dict[str, Any]) -> "AudioJob":
        """Build a job from a dispatch event.

        Required keys: ``bucket``, ``key``, ``chatId``, ``messageId``.
        ``userId`` defaults to the chat id (private chats) and ``artifactId``
        to the object key.
        """
        missing = [k for k in ("bucket", "key", "chatId", "messageId") if not event.get(k)]
        if missing:
            raise ValueError(f"event is missing required keys: {', '.join(missing)}")

        chat_id = str(event["chatId"])
        key = str(event["key"])
        started_at = event.get("startTime")
        return cls(
            source=BlobLocation(bucket=str(event["bucket"]), key=key),
            job_id=JobId(
                user_id=str(event.get("userId") or chat_id),
                artifact_id=str(event.get("artifactId") or key),
            ),
            display_message_id=int(event["messageId"]),
            chat_id=chat_id,
            started_at=float(started_at) if started_at is not None else time.time(),
        )


@dataclass(frozen=True, slots=True)
class Scope:
    """Aggregation key for usage counters: ``GLOBAL`` or ``USER:<id>``."""

    key: str

    @classmethod
    def global_scope(cls) -> "Scope":
        return cls(GLOBAL_SCOPE_KEY)

    @classmethod
    def for_user(cls, user_id: str) -> "Scope":
        if not user_id:
            raise ValueError("user_id must be non-empty")
        return cls(f"{USER_SCOPE_PREFIX}{user_id}")

    @property
    def is_global(self) -> bool:
        return self.key == GLOBAL_SCOPE_KEY

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class UsageDelta:
    """Per-job contribution to a usage counter row."""

    language: str
    seconds: float
    kilobytes: float
    count: int = 1

    def __post_init__(self) -> None:
        if not self.language:
            raise ValueError("language must be non-empty")
        if self.seconds < 0:
            raise ValueError("seconds must be >= 0")
        if self.kilobytes < 0:
            raise ValueError("kilobytes must be >= 0")
        if self.count < 0:
            raise ValueError("count must be >= 0")


@dataclass(slots=True)
class UsageCounter:
    total_seconds: float = 0.0
    total_kilobytes: float = 0.0
    total_count: int = 0
    seconds_by_language: dict[str, float] = field(default_factory=dict)
    count_by_language: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_seconds": self.total_seconds,
            "total_kbytes": self.total_kilobytes,
            "total_transcriptions": self.total_count,
            "seconds_by_language": dict(self.seconds_by_language),
            "transcriptions_by_language": dict(self.count_by_language),
        }


@dataclass(frozen=True, slots=True)
class JobReport:
    job_id: JobId
    succeeded: bool
    transcript: str
    language: str
    duration_s: float
    size_kb: float
    error: str | None = None
