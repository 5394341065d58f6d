"""Fixed raw-sample format shared by the decoder and the recognition backend."""

from __future__ import annotations

SAMPLE_RATE_HZ = 16000
CHANNELS = 1
SAMPLE_WIDTH_BYTES = 2  # signed 16-bit little-endian
PCM_ENCODING = "pcm_s16le"
FFMPEG_FORMAT = "s16le"

MAX_FRAME_BYTES = 4096


def pcm16_duration_s(
    num_bytes: int, *, sample_rate_hz: int = SAMPLE_RATE_HZ, channels: int = CHANNELS
) -> float:
    if num_bytes < 0:
        raise ValueError("num_bytes must be >= 0")
    if sample_rate_hz <= 0:
        raise ValueError("sample_rate_hz must be > 0")
    if channels <= 0:
        raise ValueError("channels must be > 0")
    return num_bytes / float(SAMPLE_WIDTH_BYTES * channels * sample_rate_hz)


def bytes_to_kilobytes(num_bytes: int) -> float:
    return num_bytes / 1024.0
