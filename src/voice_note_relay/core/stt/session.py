from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterable, AsyncIterator

from voice_note_relay.core.audio.chunker import Frame
from voice_note_relay.core.stt.backend import (
    Hypothesis,
    RecognitionBackend,
    RecognitionConfig,
    RecognitionSession,
)
from voice_note_relay.domain.errors import StreamError

logger = logging.getLogger(__name__)


async def recognize(
    backend: RecognitionBackend,
    config: RecognitionConfig,
    frames: AsyncIterable[Frame],
    *,
    send_drain_timeout_s: float = 5.0,
) -> AsyncIterator[Hypothesis]:
    """Stream ``frames`` to one recognition session and yield its hypotheses.

    The send half runs as its own task so a slow frame producer never delays
    receipt of hypotheses. If the send half fails (decoder or source error) the
    session is aborted and that error is raised once the receive half has
    ended. A sender still blocked ``send_drain_timeout_s`` after the receive
    half ended is cancelled and reported as a StreamError. A single attempt is
    made per job; there is no session retry.
    """
    try:
        session = await backend.open_session(config)
    except StreamError:
        raise
    except Exception as exc:
        raise StreamError("Failed to open recognition session", exc) from exc

    logger.info(f"[STT] Session opened (languages={','.join(config.language_candidates)})")
    sender = asyncio.create_task(_send_frames(session, frames))
    try:
        try:
            async for hypothesis in session.hypotheses():
                yield hypothesis
        except StreamError:
            raise
        except Exception as exc:
            raise StreamError("Recognition session closed abnormally", exc) from exc

        # Receive side ended: surface a send-side failure, if any.
        done, _ = await asyncio.wait({sender}, timeout=send_drain_timeout_s)
        if not done:
            logger.warning("[STT] Session ended while audio was still being sent, cancelling sender")
            sender.cancel()
            raise StreamError("Recognition session ended before the audio was sent")
        await sender
    finally:
        if not sender.done():
            sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        with contextlib.suppress(Exception):
            await session.close()
        logger.info("[STT] Session closed")


async def _send_frames(session: RecognitionSession, frames: AsyncIterable[Frame]) -> None:
    sent = 0
    sent_bytes = 0
    try:
        async for frame in frames:
            try:
                await session.send_audio(frame.data)
            except Exception as exc:
                raise StreamError("Failed to send audio frame", exc) from exc
            sent += 1
            sent_bytes += len(frame.data)
            if sent == 1:
                logger.info(f"[STT] First audio frame sent ({len(frame.data)} bytes)")
            elif sent % 100 == 0:
                logger.debug(f"[STT] Frames sent: {sent}")
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.warning(f"[STT] Send side failed after {sent} frames, aborting session")
        with contextlib.suppress(Exception):
            await session.abort()
        raise

    logger.info(f"[STT] Audio exhausted ({sent} frames, {sent_bytes} bytes), closing send side")
    try:
        await session.finish()
    except Exception as exc:
        raise StreamError("Failed to close the send side", exc) from exc
