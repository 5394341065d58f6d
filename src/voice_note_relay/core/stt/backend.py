from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from voice_note_relay.core.audio.format import PCM_ENCODING, SAMPLE_RATE_HZ


@dataclass(frozen=True, slots=True)
class Hypothesis:
    text: str
    is_partial: bool
    end_time_s: float | None = None
    language_code: str | None = None


@dataclass(frozen=True, slots=True)
class RecognitionConfig:
    language_candidates: tuple[str, ...]
    encoding: str = PCM_ENCODING
    sample_rate_hz: int = SAMPLE_RATE_HZ
    auto_identify_language: bool = True

    def __post_init__(self) -> None:
        if not self.language_candidates:
            raise ValueError("language_candidates must contain at least one language")
        if len(set(self.language_candidates)) != len(self.language_candidates):
            raise ValueError("language_candidates must not contain duplicates")
        if self.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")
        if not self.encoding:
            raise ValueError("encoding must be non-empty")


class RecognitionSession(Protocol):
    async def send_audio(self, pcm16le: bytes) -> None: ...

    async def finish(self) -> None:
        """Close the send side; hypotheses keep arriving until the backend closes."""

    async def abort(self) -> None:
        """Tear the session down now; `hypotheses()` must end promptly."""

    async def close(self) -> None: ...

    def hypotheses(self) -> AsyncIterator[Hypothesis]: ...


class RecognitionBackend(Protocol):
    async def open_session(self, config: RecognitionConfig) -> RecognitionSession: ...
