"""End-of-job sequencing.

Order: salvage the trailing partial, send the terminal relay update, delete the
source object, record usage, deliver a stats summary. The job counts as complete
once the terminal update has been attempted; every later step is best-effort.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from voice_note_relay.core.relay.surface import MessageSurface
from voice_note_relay.core.relay.update_relay import UpdateRelay
from voice_note_relay.core.storage.blob import BlobStore
from voice_note_relay.core.transcript.reconciler import TranscriptReconciler
from voice_note_relay.core.usage.recorder import UsageRecorder
from voice_note_relay.domain.errors import CleanupError, RelayError
from voice_note_relay.domain.models import AudioJob, JobReport

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """``Nm Ss`` when there is at least a minute, else ``Ss`` (both floored)."""
    seconds = max(0.0, float(seconds))
    minutes = int(seconds // 60)
    secs = int(math.floor(seconds % 60))
    return f"{minutes}m {secs}s" if minutes > 0 else f"{secs}s"


def format_stats_summary(duration_s: float, language: str, lifetime_s: float) -> str:
    return f"⏱️ {format_duration(duration_s)} ({language}) | 📈 Total: {format_duration(lifetime_s)}"


@dataclass(slots=True)
class JobFinalizer:
    relay: UpdateRelay
    blobs: BlobStore
    surface: MessageSurface
    usage: UsageRecorder | None = None

    async def finalize(
        self,
        job: AudioJob,
        reconciler: TranscriptReconciler,
        *,
        size_kb: float,
        error: BaseException | None = None,
    ) -> JobReport:
        transcript = reconciler.salvage()

        if error is None:
            logger.info(
                f"[Job] Transcription complete for {job.job_id}. "
                f'First word: "{reconciler.first_word}..." (redacted)'
            )
            await self.relay.complete(transcript)
        else:
            logger.error(f"[Job] Transcription failed for {job.job_id}: {error}")
            await self.relay.fail()

        await self._cleanup(job)

        if error is None:
            logger.info(
                f"[Job] Stats - Language: {reconciler.detected_language}, "
                f"Duration: {reconciler.duration_s:.2f}s, Size: {size_kb:.1f}KB"
            )
            await self._record_usage(job, reconciler, size_kb=size_kb)

        return JobReport(
            job_id=job.job_id,
            succeeded=error is None,
            transcript=transcript,
            language=reconciler.detected_language,
            duration_s=reconciler.duration_s,
            size_kb=size_kb,
            error=str(error) if error is not None else None,
        )

    async def _cleanup(self, job: AudioJob) -> None:
        try:
            await self.blobs.delete(job.source)
            logger.info(f"[Job] Deleted input object {job.source}")
        except CleanupError as exc:
            logger.error(f"[Job] Failed to delete input object: {exc}")
        except Exception as exc:
            logger.exception(f"[Job] Unexpected cleanup error: {exc}")

    async def _record_usage(
        self, job: AudioJob, reconciler: TranscriptReconciler, *, size_kb: float
    ) -> None:
        if self.usage is None:
            return

        await self.usage.record(
            user_id=job.user_id,
            language=reconciler.detected_language,
            duration_s=reconciler.duration_s,
            size_kb=size_kb,
        )

        try:
            lifetime = await self.usage.lifetime(job.user_id)
            summary = format_stats_summary(
                reconciler.duration_s, reconciler.detected_language, lifetime.total_seconds
            )
            await self.surface.send(job.chat_id, summary)
            logger.info("[Job] Stats message sent")
        except RelayError as exc:
            logger.error(f"[Job] Failed to send stats: {exc}")
        except Exception as exc:
            logger.exception(f"[Job] Failed to fetch/send stats: {exc}")
