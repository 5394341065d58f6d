"""Completion path for non-streaming transcription jobs.

A batch recognizer writes a transcript JSON document to the blob store; this
runner delivers its text to the chat, removes both objects and records usage
through the same `UsageRecorder` as the streaming path.
"""

from __future__ import annotations

import json
import logging
import textwrap
from dataclasses import dataclass
from typing import Any

from voice_note_relay.core.relay.surface import MessageSurface
from voice_note_relay.core.storage.blob import BlobStore
from voice_note_relay.core.usage.recorder import UsageRecorder
from voice_note_relay.domain.errors import CleanupError, RelayError, SourceUnavailable
from voice_note_relay.domain.models import UNKNOWN_LANGUAGE, BlobLocation, JobId, JobReport

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Could not extract text."


@dataclass(frozen=True, slots=True)
class BatchTranscript:
    text: str
    language: str = UNKNOWN_LANGUAGE
    duration_s: float = 0.0


def parse_transcript_document(raw: bytes | str) -> BatchTranscript:
    """Extract text, language and duration from a batch transcript document.

    Expected shape::

        {"results": {"transcripts": [{"transcript": "..."}],
                     "language_code": "en-US",
                     "items": [{"end_time": "1.23", ...}, ...]}}

    Anything missing falls back to the placeholder text, ``"unknown"`` and 0.
    """
    try:
        data: Any = json.loads(raw)
    except (TypeError, ValueError, UnicodeDecodeError):
        logger.warning("[Batch] Transcript document is not valid JSON")
        return BatchTranscript(text=PLACEHOLDER_TEXT)

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, dict):
        return BatchTranscript(text=PLACEHOLDER_TEXT)

    text = PLACEHOLDER_TEXT
    transcripts = results.get("transcripts") or []
    if isinstance(transcripts, list) and transcripts and isinstance(transcripts[0], dict):
        text = str(transcripts[0].get("transcript", "") or "") or PLACEHOLDER_TEXT

    language = str(results.get("language_code") or UNKNOWN_LANGUAGE)

    duration_s = 0.0
    for item in results.get("items") or []:
        if not isinstance(item, dict):
            continue
        try:
            duration_s = max(duration_s, float(item.get("end_time")))
        except (TypeError, ValueError):
            continue

    return BatchTranscript(text=text, language=language, duration_s=duration_s)


@dataclass(slots=True)
class BatchCompletionRunner:
    blobs: BlobStore
    surface: MessageSurface
    usage: UsageRecorder | None = None
    max_chars: int = 4096

    async def run(
        self,
        *,
        job_id: JobId,
        chat_id: str,
        transcript_location: BlobLocation,
        source_location: BlobLocation | None = None,
    ) -> JobReport:
        logger.info(f"[Batch] Completing job {job_id} from {transcript_location}")
        try:
            raw = await self.blobs.read_all(transcript_location)
        except SourceUnavailable as exc:
            logger.error(f"[Batch] Transcript document unavailable: {exc}")
            return JobReport(
                job_id=job_id,
                succeeded=False,
                transcript="",
                language=UNKNOWN_LANGUAGE,
                duration_s=0.0,
                size_kb=0.0,
                error=str(exc),
            )

        transcript = parse_transcript_document(raw)
        logger.info(f"[Batch] Extracted {len(transcript.text)} chars ({transcript.language})")

        for part in self._split(transcript.text):
            try:
                await self.surface.send(chat_id, part)
            except RelayError as exc:
                logger.error(f"[Batch] Failed to deliver transcript: {exc}")
                break

        for location in (transcript_location, source_location):
            if location is None:
                continue
            try:
                await self.blobs.delete(location)
                logger.info(f"[Batch] Deleted {location}")
            except CleanupError as exc:
                logger.error(f"[Batch] Failed to delete {location}: {exc}")

        # The source size is not known on this path.
        if self.usage is not None:
            await self.usage.record(
                user_id=job_id.user_id,
                language=transcript.language,
                duration_s=transcript.duration_s,
                size_kb=0.0,
            )

        return JobReport(
            job_id=job_id,
            succeeded=True,
            transcript=transcript.text,
            language=transcript.language,
            duration_s=transcript.duration_s,
            size_kb=0.0,
        )

    def _split(self, text: str) -> list[str]:
        if len(text) <= self.max_chars:
            return [text]
        return textwrap.wrap(text, width=self.max_chars, break_long_words=True)
