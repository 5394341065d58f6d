"""FrameSource: decode compressed audio to raw PCM through an ffmpeg child process.

The child process is owned exclusively by one `DecodedStream`. Its stdin is fed
from the compressed byte stream by a background task while the caller pulls raw
samples from its stdout. `FfmpegFrameSource.open` is an async context manager so
the pipes are closed and the process reaped on every exit path.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Sequence

from voice_note_relay.core.audio.format import CHANNELS, FFMPEG_FORMAT, SAMPLE_RATE_HZ
from voice_note_relay.domain.errors import DecodeFailure, SourceUnavailable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FfmpegFrameSource:
    ffmpeg_path: str = "ffmpeg"
    sample_rate_hz: int = SAMPLE_RATE_HZ
    channels: int = CHANNELS
    read_size: int = 4096
    stderr_tail_lines: int = 20
    command: Sequence[str] | None = None  # full argv override

    def __post_init__(self) -> None:
        if self.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")
        if self.channels != 1:
            raise ValueError("channels must be 1 (mono)")
        if self.read_size <= 0:
            raise ValueError("read_size must be > 0")
        if self.command is not None and not self.command:
            raise ValueError("command must be non-empty when given")

    def build_command(self) -> list[str]:
        if self.command is not None:
            return list(self.command)
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-i", "pipe:0",
            "-f", FFMPEG_FORMAT,
            "-ac", str(self.channels),
            "-ar", str(self.sample_rate_hz),
            "pipe:1",
        ]

    @contextlib.asynccontextmanager
    async def open(self, source: AsyncIterable[bytes]) -> AsyncIterator["DecodedStream"]:
        argv = self.build_command()
        logger.info(f"[Decoder] Spawning {argv[0]}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DecodeFailure(f"Cannot start decoder '{argv[0]}'", cause=exc) from exc

        stream = DecodedStream(
            process=process,
            read_size=self.read_size,
            _stderr_tail=deque(maxlen=self.stderr_tail_lines),
        )
        stream.start(source)
        try:
            yield stream
        finally:
            await stream.aclose()


@dataclass(slots=True)
class DecodedStream:
    process: asyncio.subprocess.Process
    read_size: int
    input_bytes: int = 0
    output_bytes: int = 0

    _stderr_tail: deque[str] = field(default_factory=deque, repr=False)
    _feeder: asyncio.Task[None] | None = field(default=None, repr=False)
    _stderr_task: asyncio.Task[None] | None = field(default=None, repr=False)

    def start(self, source: AsyncIterable[bytes]) -> None:
        self._feeder = asyncio.create_task(self._feed(source))
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def pcm(self) -> AsyncIterator[bytes]:
        """Yield raw samples until the decoder closes its output.

        Raises SourceUnavailable if the input could not be read to the end and
        DecodeFailure if the decoder exits non-zero.
        """
        stdout = self.process.stdout
        assert stdout is not None
        while True:
            data = await stdout.read(self.read_size)
            if not data:
                break
            self.output_bytes += len(data)
            yield data

        if self._feeder is not None:
            await self._feeder

        returncode = await self.process.wait()
        if self._stderr_task is not None:
            await asyncio.gather(self._stderr_task, return_exceptions=True)
        logger.info(
            f"[Decoder] Exited with code {returncode} "
            f"(in={self.input_bytes}B, out={self.output_bytes}B)"
        )
        if returncode != 0:
            tail = self.stderr_tail
            raise DecodeFailure(
                f"Decoder exited with code {returncode}"
                + (f": {tail.splitlines()[-1]}" if tail else ""),
                returncode=returncode,
                stderr_tail=tail,
            )

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def aclose(self) -> None:
        tasks = [t for t in (self._feeder, self._stderr_task) if t is not None]
        if self.process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.process.wait()
        logger.debug("[Decoder] Process reaped")

    async def _feed(self, source: AsyncIterable[bytes]) -> None:
        stdin = self.process.stdin
        assert stdin is not None
        try:
            async for data in source:
                if not data:
                    continue
                self.input_bytes += len(data)
                try:
                    stdin.write(data)
                    await stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    # Decoder stopped reading; its exit status decides the outcome.
                    logger.warning(
                        f"[Decoder] Input closed early after {self.input_bytes} bytes"
                    )
                    return
        except SourceUnavailable:
            raise
        except Exception as exc:
            raise SourceUnavailable("input stream", exc) from exc
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()
            with contextlib.suppress(Exception):
                stdin.close()
                await stdin.wait_closed()

    async def _drain_stderr(self) -> None:
        stderr = self.process.stderr
        if stderr is None:
            return
        while True:
            line = await stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug(f"[Decoder] {text}")
