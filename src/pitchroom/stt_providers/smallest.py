"""
Smallest AI (Pulse) streaming Speech-to-Text client.

- Microphone frames are float32; they are converted to linear16 before sending
- The socket is authenticated with a JSON handshake right after it opens
- Results arrive as JSON: {"transcript": "...", "is_final": bool}
"""

import asyncio
import json
from typing import Any, Optional

import structlog
import websockets

from src.pitchroom.audio import float32_to_pcm16
from src.pitchroom.config import get_config
from src.pitchroom.stt_providers.base import (
    AudioSource,
    CaptureProvider,
    CaptureUnavailable,
    ErrorCallback,
    ResultCallback,
    TranscriptionResult,
)

logger = structlog.get_logger(__name__)


class SmallestSTT(CaptureProvider):
    """
    Streaming STT over a raw WebSocket.

    `start()` acquires the microphone, opens the socket and only returns once
    audio is flowing. Any exception leaves partial resources for `stop()` to
    release.
    """

    name = "smallest"

    def __init__(self, audio_source: AudioSource, config: Optional[Any] = None):
        self.config = config or get_config()
        self._source = audio_source
        self._ws = None
        self._source_open = False
        self._send_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._on_result: Optional[ResultCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._closing = False

    async def start(
        self,
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        api_key = self.config.smallest_api_key
        if not api_key:
            raise CaptureUnavailable("Smallest AI API key not configured")

        self._closing = False
        self._on_result = on_result
        self._on_error = on_error

        await self._source.open(self.config.stt_sample_rate)
        self._source_open = True

        logger.info("Connecting to Smallest STT", url=self.config.smallest_stt_url)
        self._ws = await websockets.connect(
            self.config.smallest_stt_url,
            open_timeout=self.config.connect_timeout_seconds,
        )
        await self._ws.send(
            json.dumps(
                {
                    "token": api_key,
                    "sample_rate": self.config.stt_sample_rate,
                    "language": self.config.smallest_language,
                }
            )
        )

        self._send_task = asyncio.create_task(self._send_loop())
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("Smallest STT connected")

    async def stop(self) -> None:
        self._closing = True

        tasks = [t for t in (self._send_task, self._receive_task) if t]
        self._send_task = None
        self._receive_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning("Error closing Smallest STT connection", error=str(e))
            self._ws = None

        if self._source_open:
            self._source_open = False
            await self._source.close()

    async def _send_loop(self) -> None:
        """Pump microphone frames into the socket as linear16."""
        try:
            while not self._closing and self._ws is not None:
                frame = await self._source.read()
                pcm = float32_to_pcm16(frame)
                if pcm:
                    await self._ws.send(pcm)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Smallest STT send loop error", error=str(e))
            await self._report_error(f"audio stream failed: {e}")

    async def _receive_loop(self) -> None:
        """Receive and process messages from the recognizer."""
        try:
            async for message in self._ws:
                if self._closing:
                    break

                try:
                    data = json.loads(message)
                except (json.JSONDecodeError, TypeError):
                    continue

                await self._handle_message(data)

        except websockets.exceptions.ConnectionClosed:
            logger.info("Smallest STT connection closed")
            await self._report_error("connection closed")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Smallest STT receive loop error", error=str(e))
            await self._report_error(str(e))

    async def _handle_message(self, data: dict) -> None:
        if not isinstance(data, dict):
            return

        transcript = data.get("transcript")
        if not transcript or not isinstance(transcript, str):
            return

        result = TranscriptionResult(text=transcript, is_final=bool(data.get("is_final")))
        logger.debug(
            "STT transcript",
            text=transcript[:50] if len(transcript) > 50 else transcript,
            is_final=result.is_final,
        )
        if self._on_result:
            await self._on_result(result)

    async def _report_error(self, reason: str) -> None:
        if self._closing or not self._on_error:
            return
        await self._on_error(reason)
