from __future__ import annotations

import base64
import json
from typing import Any, AsyncGenerator, Optional

import structlog
import websockets

from src.pitchroom.audio import TTS_PCM_SAMPLE_RATE
from src.pitchroom.config import get_config
from src.pitchroom.tts_providers.base import TTSProvider, TTSProviderError
from src.pitchroom.tts_types import TTSChunk

logger = structlog.get_logger(__name__)

SMALLEST_TTS_MODEL = "lightning-v2"


class SmallestTTS(TTSProvider):
    """
    Smallest AI (Waves) streaming TTS over WebSocket.

    Produces 16-bit PCM at 24kHz, base64-framed as JSON messages:
    {"audio": "<b64>"} ... {"done": true}.
    """

    name = "smallest"
    content_type = f"audio/pcm;rate={TTS_PCM_SAMPLE_RATE}"
    streaming = True

    def __init__(self, config: Optional[Any] = None):
        self.config = config or get_config()
        self._is_cancelled = False

    def cancel(self) -> None:
        self._is_cancelled = True
        logger.debug("Smallest TTS cancelled")

    async def synthesize_streaming(
        self,
        text: str,
        *,
        voice_id: Optional[str] = None,
    ) -> AsyncGenerator[TTSChunk, None]:
        if not text or not text.strip():
            return
        if not self.config.smallest_api_key:
            raise TTSProviderError("Smallest AI API key not configured")

        self._is_cancelled = False
        request = {
            "token": self.config.smallest_api_key,
            "text": text,
            "voice_id": voice_id or self.config.smallest_voice_id,
            "model": SMALLEST_TTS_MODEL,
            "sample_rate": TTS_PCM_SAMPLE_RATE,
        }

        done = False
        try:
            async with websockets.connect(
                self.config.smallest_tts_url,
                open_timeout=self.config.connect_timeout_seconds,
            ) as ws:
                await ws.send(json.dumps(request))

                async for message in ws:
                    if self._is_cancelled:
                        break

                    try:
                        data = json.loads(message)
                    except (json.JSONDecodeError, TypeError):
                        continue
                    if not isinstance(data, dict):
                        continue

                    if data.get("error"):
                        raise TTSProviderError(f"Smallest TTS error: {data.get('error')}")

                    audio_b64 = data.get("audio")
                    if audio_b64:
                        yield TTSChunk(audio_bytes=base64.b64decode(audio_b64), is_final=False)

                    if data.get("done"):
                        done = True
                        break

        except TTSProviderError:
            raise
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TTSProviderError(f"Smallest TTS connection failed: {e}") from e

        if not done and not self._is_cancelled:
            logger.warning("Smallest TTS stream closed before done")

        if not self._is_cancelled:
            yield TTSChunk(audio_bytes=b"", is_final=True)
