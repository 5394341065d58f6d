from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator

from voice_note_relay.core.audio.format import MAX_FRAME_BYTES


@dataclass(frozen=True, slots=True)
class Frame:
    seq: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


async def chunk(
    byte_stream: AsyncIterable[bytes], max_frame_size: int = MAX_FRAME_BYTES
) -> AsyncIterator[Frame]:
    """Re-slice a live byte stream into frames of at most ``max_frame_size``.

    Input is coalesced so every frame except the last is exactly
    ``max_frame_size`` bytes; the buffered tail is flushed when the input ends.
    Single pass, not restartable.
    """
    if max_frame_size <= 0:
        raise ValueError("max_frame_size must be > 0")

    pending = bytearray()
    seq = 0
    async for data in byte_stream:
        if not data:
            continue
        pending.extend(data)
        while len(pending) >= max_frame_size:
            yield Frame(seq=seq, data=bytes(pending[:max_frame_size]))
            del pending[:max_frame_size]
            seq += 1

    if pending:
        yield Frame(seq=seq, data=bytes(pending))
