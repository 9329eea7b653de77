"""
Audio conversion utilities for the capture and playback paths.

- Browser microphone frames arrive as float32 samples in [-1.0, 1.0]
- Streaming STT expects signed 16-bit little-endian PCM (linear16)
- Audio for the browser is sent in chunks over the session socket
"""

import base64
from typing import Generator

import numpy as np

TTS_PCM_SAMPLE_RATE = 24000
PCM16_MAX = 0x7FFF
PCM16_MIN = -0x8000


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """
    Convert float32 samples to signed 16-bit little-endian PCM.

    Samples are clamped to [-1.0, 1.0]; negative values scale by 0x8000 and
    positive values by 0x7FFF so both ends of the range are representable.
    NaN becomes silence and infinities clamp to full scale.

    Args:
        samples: Float samples (any shape; flattened)

    Returns:
        PCM16 LE bytes
    """
    audio = np.asarray(samples, dtype=np.float32).reshape(-1)
    if audio.size == 0:
        return b""

    audio = np.nan_to_num(audio, nan=0.0, posinf=1.0, neginf=-1.0)
    audio = np.clip(audio, -1.0, 1.0)
    scaled = np.where(audio < 0, audio * -PCM16_MIN, audio * PCM16_MAX)
    return scaled.astype("<i2").tobytes()


def decode_float32_frame(payload_b64: str) -> np.ndarray:
    """Decode a base64 float32 little-endian frame sent by the browser."""
    try:
        raw = base64.b64decode(payload_b64)
    except (ValueError, TypeError):
        return np.zeros(0, dtype=np.float32)
    usable = len(raw) - (len(raw) % 4)
    return np.frombuffer(raw[:usable], dtype="<f4").astype(np.float32)


def chunk_audio(audio_bytes: bytes, chunk_size: int) -> Generator[bytes, None, None]:
    """
    Chunk audio into frames of at most `chunk_size` bytes.

    Unlike fixed-rate telephony frames, the last chunk is not padded; the
    browser decoder handles short tails.

    Args:
        audio_bytes: Raw audio bytes
        chunk_size: Size of each chunk in bytes

    Yields:
        Audio chunks
    """
    for i in range(0, len(audio_bytes), chunk_size):
        yield audio_bytes[i:i + chunk_size]
