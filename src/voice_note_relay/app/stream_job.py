from __future__ import annotations

import logging
from dataclasses import dataclass, field

from voice_note_relay.core.audio.chunker import chunk
from voice_note_relay.core.audio.decoder import DecodedStream, FfmpegFrameSource
from voice_note_relay.core.audio.format import MAX_FRAME_BYTES, bytes_to_kilobytes, pcm16_duration_s
from voice_note_relay.core.clock import Clock, SystemClock
from voice_note_relay.core.finalizer import JobFinalizer
from voice_note_relay.core.relay.surface import MessageSurface
from voice_note_relay.core.relay.update_relay import UpdateRelay
from voice_note_relay.core.storage.blob import BlobStore
from voice_note_relay.core.stt.backend import RecognitionBackend, RecognitionConfig
from voice_note_relay.core.stt.session import recognize
from voice_note_relay.core.transcript.reconciler import TranscriptReconciler
from voice_note_relay.core.usage.recorder import UsageRecorder
from voice_note_relay.domain.errors import FATAL_ERRORS
from voice_note_relay.domain.models import AudioJob, JobReport

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StreamingJobRunner:
    """One streaming pipeline run per job.

    blob → decoder → chunker → recognition (send half); recognition (receive
    half) → reconciler → relay; then the finalizer once the stream has ended
    or failed.
    """

    blobs: BlobStore
    surface: MessageSurface
    backend: RecognitionBackend
    recognition: RecognitionConfig
    decoder: FfmpegFrameSource
    usage: UsageRecorder | None = None
    clock: Clock = field(default_factory=SystemClock)
    max_frame_bytes: int = MAX_FRAME_BYTES
    min_interval_s: float = 2.0
    max_chars: int = 4096

    def __post_init__(self) -> None:
        if self.max_frame_bytes <= 0:
            raise ValueError("max_frame_bytes must be > 0")

    async def run(self, job: AudioJob) -> JobReport:
        logger.info(f"[Job] Starting streaming job {job.job_id} from {job.source}")
        relay = UpdateRelay(
            surface=self.surface,
            clock=self.clock,
            chat_id=job.chat_id,
            message_id=job.display_message_id,
            min_interval_s=self.min_interval_s,
            max_chars=self.max_chars,
        )
        reconciler = TranscriptReconciler()
        finalizer = JobFinalizer(
            relay=relay, blobs=self.blobs, surface=self.surface, usage=self.usage
        )

        decoded: DecodedStream | None = None
        error: BaseException | None = None
        hypotheses = 0
        try:
            async with self.decoder.open(self.blobs.get(job.source)) as decoded:
                frames = chunk(decoded.pcm(), self.max_frame_bytes)
                async for hypothesis in recognize(self.backend, self.recognition, frames):
                    hypotheses += 1
                    displayed = reconciler.apply(hypothesis)
                    await relay.on_update(displayed)
        except FATAL_ERRORS as exc:
            logger.error(f"[Job] Pipeline aborted after {hypotheses} hypotheses: {exc!r}")
            error = exc
        except Exception as exc:
            logger.exception("[Job] Unexpected pipeline error")
            error = exc

        input_bytes = decoded.input_bytes if decoded is not None else 0
        output_bytes = decoded.output_bytes if decoded is not None else 0
        audio_s = pcm16_duration_s(output_bytes, sample_rate_hz=self.recognition.sample_rate_hz)
        report = await finalizer.finalize(
            job,
            reconciler,
            size_kb=bytes_to_kilobytes(input_bytes),
            error=error,
        )
        logger.info(
            f"[Job] Finished {job.job_id} (succeeded={report.succeeded}, "
            f"hypotheses={hypotheses}, relay_updates={relay.updates_sent}, "
            f"decoded={audio_s:.1f}s, "
            f"elapsed={self.clock.wall() - job.started_at:.1f}s)"
        )
        return report
