"""
Tests for audio conversion utilities.
"""

import base64

import numpy as np

from src.pitchroom.audio import chunk_audio, decode_float32_frame, float32_to_pcm16


class TestPcmConversion:
    """Tests for float32 <-> linear16 conversion."""

    def test_float32_to_pcm16_empty(self):
        """Test conversion of an empty frame."""
        assert float32_to_pcm16(np.zeros(0, dtype=np.float32)) == b""

    def test_float32_to_pcm16_length(self):
        """Output should be 2 bytes per sample."""
        result = float32_to_pcm16(np.zeros(160, dtype=np.float32))
        assert len(result) == 320

    def test_float32_to_pcm16_full_scale(self):
        """Both ends of the range map to the int16 extremes."""
        result = float32_to_pcm16(np.array([-1.0, 0.0, 1.0], dtype=np.float32))
        samples = np.frombuffer(result, dtype="<i2")
        assert samples.tolist() == [-32768, 0, 32767]

    def test_float32_to_pcm16_clamps(self):
        """Out-of-range samples are clamped, not wrapped."""
        result = float32_to_pcm16(np.array([-3.0, 2.5], dtype=np.float32))
        samples = np.frombuffer(result, dtype="<i2")
        assert samples.tolist() == [-32768, 32767]

    def test_float32_to_pcm16_nan_is_silence(self):
        """NaN and infinities never reach the int16 cast."""
        result = float32_to_pcm16(np.array([np.nan, np.inf, -np.inf, 0.5], dtype=np.float32))
        samples = np.frombuffer(result, dtype="<i2")
        assert samples.tolist() == [0, 32767, -32768, 16383]


class TestFrameDecoding:
    """Tests for browser mic frame decoding."""

    def test_decode_float32_frame(self):
        samples = np.array([0.25, -0.5, 1.0], dtype="<f4")
        payload = base64.b64encode(samples.tobytes()).decode()

        decoded = decode_float32_frame(payload)

        assert decoded.dtype == np.float32
        assert decoded.tolist() == [0.25, -0.5, 1.0]

    def test_decode_float32_frame_drops_partial_sample(self):
        raw = np.array([0.5], dtype="<f4").tobytes() + b"\x00\x00"
        decoded = decode_float32_frame(base64.b64encode(raw).decode())
        assert decoded.tolist() == [0.5]

    def test_decode_float32_frame_invalid_base64(self):
        assert decode_float32_frame("not base64!").size == 0


class TestChunking:
    """Tests for audio chunking."""

    def test_chunk_audio_empty(self):
        """Test chunking empty audio."""
        assert list(chunk_audio(b"", 160)) == []

    def test_chunk_audio_exact_multiple(self):
        """Test chunking with exact multiple of chunk size."""
        chunks = list(chunk_audio(b"\x00" * 320, 160))

        assert len(chunks) == 2
        assert all(len(c) == 160 for c in chunks)

    def test_chunk_audio_tail_not_padded(self):
        """The last chunk keeps its natural length."""
        chunks = list(chunk_audio(b"\x01" * 200, 160))

        assert len(chunks) == 2
        assert len(chunks[0]) == 160
        assert chunks[1] == b"\x01" * 40
