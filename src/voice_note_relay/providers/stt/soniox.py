"""Soniox real-time recognition backend over the WebSocket API.

Token responses are folded into Hypothesis values: final tokens accumulate into
the current segment, an ``<end>`` endpoint token (or the server's ``finished``
flag) turns that segment into a final hypothesis, and every other response
yields a partial hypothesis of ``finals + non-final tail``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from voice_note_relay.core.stt.backend import (
    Hypothesis,
    RecognitionBackend,
    RecognitionConfig,
    RecognitionSession,
)
from voice_note_relay.domain.errors import StreamError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "wss://stt-rt.soniox.com/transcribe-websocket"
ENDPOINT_TOKENS = ("<end>", "<fin>")

_STOP = object()


@dataclass(slots=True)
class SonioxRecognitionBackend(RecognitionBackend):
    api_key: str
    model: str = "stt-rt-v3"
    endpoint: str = DEFAULT_ENDPOINT
    queue_size: int = 64
    open_timeout_s: float = 10.0

    async def open_session(self, config: RecognitionConfig) -> RecognitionSession:
        if not self.api_key:
            raise ValueError("api_key must be non-empty")
        if not self.endpoint:
            raise ValueError("endpoint must be non-empty")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        if config.encoding != "pcm_s16le":
            raise ValueError(f"unsupported encoding: {config.encoding}")

        session = SonioxSession(
            start_message=build_start_message(self.api_key, self.model, config),
            endpoint=self.endpoint,
            queue_size=self.queue_size,
            open_timeout_s=self.open_timeout_s,
        )
        try:
            await session.start()
        except Exception as exc:
            await session.close()
            raise StreamError(f"Cannot connect to {self.endpoint}", exc) from exc
        return session


def build_start_message(api_key: str, model: str, config: RecognitionConfig) -> dict[str, Any]:
    return {
        "api_key": api_key,
        "model": model,
        "audio_format": config.encoding,
        "sample_rate": config.sample_rate_hz,
        "num_channels": 1,
        "language_hints": list(config.language_candidates),
        "enable_language_identification": config.auto_identify_language,
        "enable_endpoint_detection": True,
    }


@dataclass(slots=True)
class TokenFolder:
    """Turns Soniox token responses into hypotheses."""

    _final_tokens: list[str] = field(default_factory=list)
    _last_final_end_ms: int | None = None
    _end_ms: int | None = None
    _language: str | None = None

    def feed(self, data: dict[str, Any]) -> list[Hypothesis]:
        out: list[Hypothesis] = []
        tail: list[str] = []
        changed = False

        for token in data.get("tokens") or []:
            if not isinstance(token, dict):
                continue
            text = str(token.get("text", "") or "")
            language = token.get("language")
            if isinstance(language, str) and language:
                self._language = language

            if not token.get("is_final"):
                tail.append(text)
                self._track_end(token)
                continue

            if text in ENDPOINT_TOKENS:
                final = self._flush_final()
                if final is not None:
                    out.append(final)
                changed = False
                continue

            end_ms = token.get("end_ms")
            if isinstance(end_ms, (int, float)):
                end_ms = int(end_ms)
                if self._last_final_end_ms is not None and end_ms <= self._last_final_end_ms:
                    continue
                self._last_final_end_ms = end_ms
            self._track_end(token)
            self._final_tokens.append(text)
            changed = True

        if data.get("finished"):
            final = self._flush_final()
            if final is not None:
                out.append(final)
            return out

        if changed or tail:
            text = ("".join(self._final_tokens) + "".join(tail)).strip()
            if text:
                out.append(self._hypothesis(text, is_partial=True))
        return out

    def _track_end(self, token: dict[str, Any]) -> None:
        end_ms = token.get("end_ms")
        if isinstance(end_ms, (int, float)):
            self._end_ms = max(self._end_ms or 0, int(end_ms))

    def _flush_final(self) -> Hypothesis | None:
        text = "".join(self._final_tokens).strip()
        self._final_tokens.clear()
        if not text:
            return None
        return self._hypothesis(text, is_partial=False)

    def _hypothesis(self, text: str, *, is_partial: bool) -> Hypothesis:
        return Hypothesis(
            text=text,
            is_partial=is_partial,
            end_time_s=self._end_ms / 1000.0 if self._end_ms is not None else None,
            language_code=self._language,
        )


@dataclass(slots=True)
class SonioxSession(RecognitionSession):
    start_message: dict[str, Any]
    endpoint: str
    queue_size: int = 64
    open_timeout_s: float = 10.0

    _events: asyncio.Queue[Hypothesis | BaseException | None] = field(init=False, repr=False)
    _audio_q: asyncio.Queue[bytes | object] = field(init=False, repr=False)
    _folder: TokenFolder = field(init=False, default_factory=TokenFolder, repr=False)
    _ws: Any = field(init=False, default=None, repr=False)
    _send_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _recv_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _finished: bool = field(init=False, default=False)
    _terminal_queued: bool = field(init=False, default=False)
    _aborted: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._events = asyncio.Queue(maxsize=self.queue_size)
        self._audio_q = asyncio.Queue(maxsize=self.queue_size)

    async def start(self) -> None:
        import websockets

        self._ws = await websockets.connect(
            self.endpoint, ping_interval=None, open_timeout=self.open_timeout_s
        )
        await self._ws.send(json.dumps(self.start_message))
        self._send_task = asyncio.create_task(self._send_loop())
        self._recv_task = asyncio.create_task(self._recv_loop())

    async def _send_loop(self) -> None:
        try:
            while True:
                data = await self._audio_q.get()
                if data is _STOP:
                    # An empty frame tells the server the audio is complete.
                    await self._ws.send(b"")
                    return
                await self._ws.send(data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Soniox send loop error")
            await self._put_terminal(StreamError("Soniox send failed", exc))
        finally:
            self._release_audio_producers()

    async def _recv_loop(self) -> None:
        from websockets.exceptions import ConnectionClosedOK

        terminal: BaseException | None = None
        try:
            async for message in self._ws:
                for event in self._handle_message(message):
                    await self._events.put(event)
        except asyncio.CancelledError:
            self._put_terminal_nowait(None)
            raise
        except ConnectionClosedOK:
            pass
        except StreamError as exc:
            terminal = exc
        except Exception as exc:
            logger.exception("Soniox recv loop error")
            terminal = StreamError("Soniox connection closed abnormally", exc)
        await self._put_terminal(terminal)

    def _handle_message(self, message: str | bytes) -> list[Hypothesis]:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="ignore")
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.debug("Soniox message parse error")
            return []
        if not isinstance(data, dict):
            return []

        if "error_code" in data or "error_message" in data:
            code = data.get("error_code")
            msg = data.get("error_message") or "Unknown error"
            raise StreamError(f"Soniox error {code}: {msg}")

        return self._folder.feed(data)

    async def _put_terminal(self, item: BaseException | None) -> None:
        self._finished = True
        self._release_audio_producers()
        if self._terminal_queued:
            return
        await self._events.put(item)
        self._terminal_queued = True

    def _put_terminal_nowait(self, item: BaseException | None) -> None:
        self._finished = True
        self._release_audio_producers()
        if self._terminal_queued:
            return
        if self._events.full():
            # Aborting: nobody needs the oldest pending hypothesis any more.
            with contextlib.suppress(asyncio.QueueEmpty):
                self._events.get_nowait()
        self._events.put_nowait(item)
        self._terminal_queued = True

    def _release_audio_producers(self) -> None:
        # Nothing sends queued audio once the session is over; wake a producer
        # blocked on the full queue so it sees the finished flag.
        while True:
            try:
                self._audio_q.get_nowait()
            except asyncio.QueueEmpty:
                return

    async def send_audio(self, pcm16le: bytes) -> None:
        if self._finished or self._aborted:
            return
        await self._audio_q.put(pcm16le)

    async def finish(self) -> None:
        if self._finished or self._aborted:
            return
        await self._audio_q.put(_STOP)

    async def abort(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        tasks = [t for t in (self._send_task, self._recv_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._put_terminal_nowait(None)

    async def close(self) -> None:
        await self.abort()
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None

    async def hypotheses(self) -> AsyncIterator[Hypothesis]:
        while True:
            item = await self._events.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item
