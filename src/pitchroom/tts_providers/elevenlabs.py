from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

import httpx
import structlog

from src.pitchroom.config import get_config
from src.pitchroom.tts_providers.base import TTSProvider, TTSProviderError
from src.pitchroom.tts_types import TTSChunk

logger = structlog.get_logger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1/text-to-speech"
ELEVENLABS_OUTPUT_FORMAT = "mp3_44100_128"
STREAM_CHUNK_BYTES = 4096

# Tuned for stock voices: expressive without wobble, speaker boost for presence.
VOICE_SETTINGS = {
    "stability": 0.45,
    "similarity_boost": 0.80,
    "style": 0.55,
    "use_speaker_boost": True,
}


@dataclass
class ElevenLabsTTSMetrics:
    """Metrics for TTS performance."""

    total_requests: int = 0
    total_characters: int = 0
    total_bytes: int = 0
    avg_first_byte_ms: float = 0.0
    avg_total_ms: float = 0.0

    def record_synthesis(
        self,
        *,
        characters: int,
        audio_bytes: int,
        first_byte_ms: float,
        total_ms: float,
    ) -> None:
        self.total_requests += 1
        self.total_characters += characters
        self.total_bytes += audio_bytes

        # Running averages
        n = self.total_requests
        self.avg_first_byte_ms = (self.avg_first_byte_ms * (n - 1) + first_byte_ms) / n
        self.avg_total_ms = (self.avg_total_ms * (n - 1) + total_ms) / n

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "total_characters": self.total_characters,
            "total_bytes": self.total_bytes,
            "avg_first_byte_ms": round(self.avg_first_byte_ms, 2),
            "avg_total_ms": round(self.avg_total_ms, 2),
        }


class ElevenLabsTTS(TTSProvider):
    """
    ElevenLabs streaming TTS over chunked HTTP.

    Yields audio/mpeg chunks as they arrive so playback can begin before the
    full payload is downloaded. Failures raise TTSProviderError.
    """

    name = "elevenlabs"
    content_type = "audio/mpeg"
    streaming = True

    def __init__(
        self,
        config: Optional[Any] = None,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[ElevenLabsTTSMetrics] = None,
    ):
        self.config = config or get_config()
        self._client = client
        # Shared across providers when the server aggregates them.
        self._metrics = metrics if metrics is not None else ElevenLabsTTSMetrics()
        self._is_cancelled = False

    @property
    def metrics(self) -> ElevenLabsTTSMetrics:
        return self._metrics

    def cancel(self) -> None:
        self._is_cancelled = True
        logger.debug("ElevenLabs TTS cancelled")

    def _url(self, voice_id: str) -> str:
        return (
            f"{ELEVENLABS_BASE_URL}/{voice_id}/stream"
            f"?output_format={ELEVENLABS_OUTPUT_FORMAT}&optimize_streaming_latency=3"
        )

    async def synthesize_streaming(
        self,
        text: str,
        *,
        voice_id: Optional[str] = None,
    ) -> AsyncGenerator[TTSChunk, None]:
        if not text or not text.strip():
            return
        if not self.config.elevenlabs_api_key:
            raise TTSProviderError("ElevenLabs API key not configured")

        self._is_cancelled = False
        voice_id = voice_id or self.config.elevenlabs_voice_id
        payload = {
            "text": text,
            "model_id": self.config.elevenlabs_model_id,
            "voice_settings": VOICE_SETTINGS,
        }
        headers = {
            "xi-api-key": self.config.elevenlabs_api_key,
            "Content-Type": "application/json",
        }

        start_time = time.time()
        first_byte_time: Optional[float] = None
        total_bytes = 0

        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0))
        owns_client = self._client is None
        try:
            async with client.stream("POST", self._url(voice_id), json=payload, headers=headers) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "ElevenLabs TTS failed",
                        status_code=resp.status_code,
                        response=body[:200],
                    )
                    raise TTSProviderError(
                        f"ElevenLabs returned {resp.status_code}",
                        status_code=resp.status_code,
                    )

                async for data in resp.aiter_bytes(STREAM_CHUNK_BYTES):
                    if self._is_cancelled:
                        break
                    if not data:
                        continue
                    if first_byte_time is None:
                        first_byte_time = time.time()
                    total_bytes += len(data)
                    yield TTSChunk(audio_bytes=data, is_final=False)

        except httpx.HTTPError as e:
            raise TTSProviderError(f"ElevenLabs request failed: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        if not self._is_cancelled:
            yield TTSChunk(audio_bytes=b"", is_final=True)

        end_time = time.time()
        if first_byte_time is None:
            first_byte_time = end_time
        self._metrics.record_synthesis(
            characters=len(text),
            audio_bytes=total_bytes,
            first_byte_ms=(first_byte_time - start_time) * 1000,
            total_ms=(end_time - start_time) * 1000,
        )
