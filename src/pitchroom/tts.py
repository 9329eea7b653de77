"""
Speech rendering adapter.

Speaks text through an ordered provider chain (network synthesis first) and
falls back to the playback device's own synthesizer. Each `speak()` call
re-attempts the first provider; `has_fallen_back` is sticky for the session.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, List, Optional, Sequence

import structlog

from src.pitchroom.config import VoiceOptions
from src.pitchroom.playback import (
    DEFAULT_QUEUE_CHUNKS,
    AudioSink,
    play_buffered,
    play_streamed,
)
from src.pitchroom.speech_text import prepare_for_speech
from src.pitchroom.tts_providers.base import TTSProvider
from src.pitchroom.tts_providers.elevenlabs import ElevenLabsTTS, ElevenLabsTTSMetrics
from src.pitchroom.tts_providers.smallest import SmallestTTS

logger = structlog.get_logger(__name__)


class SpeechCancelled(Exception):
    """Raised by `speak()` when playback was interrupted by `stop()`."""


class RenderStatus(str, Enum):
    IDLE = "idle"
    SYNTHESIZING = "synthesizing"
    PLAYING = "playing"
    ERROR = "error"


class SpeechRenderer:
    """
    Per-session speech output.

    - `speak(text)` resolves once playback completes, raises SpeechCancelled
      when interrupted by `stop()`
    - provider failures never escape; the adapter aborts partial playback
      (no double speech) and retries the same text on the next path
    - if even local speech fails, status becomes `error` and `speak()` returns
    """

    def __init__(
        self,
        providers: Sequence[TTSProvider],
        sink: AudioSink,
        *,
        queue_chunks: int = DEFAULT_QUEUE_CHUNKS,
    ):
        self._providers: List[TTSProvider] = list(providers)
        self._sink = sink
        self._queue_chunks = queue_chunks

        self._status = RenderStatus.IDLE
        self._has_fallen_back = False
        self._active_provider = self._providers[0].name if self._providers else "local"
        self._error: Optional[str] = None

        self._inflight: Optional[asyncio.Task] = None
        self._current: Optional[TTSProvider] = None
        self._stop_requested = False

    @property
    def status(self) -> RenderStatus:
        return self._status

    @property
    def has_fallen_back(self) -> bool:
        return self._has_fallen_back

    @property
    def active_provider(self) -> str:
        return self._active_provider

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_speaking(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def speak(self, text: str) -> None:
        prepared = prepare_for_speech(text)
        if not prepared:
            return

        if self.is_speaking:
            await self.stop()

        self._stop_requested = False
        task = asyncio.create_task(self._render(prepared))
        self._inflight = task
        try:
            await task
        except asyncio.CancelledError:
            if self._stop_requested and task.cancelled():
                raise SpeechCancelled("Speech interrupted")
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

    async def stop(self) -> None:
        """Cancel in-flight synthesis and halt playback. Idempotent."""
        self._stop_requested = True

        current = self._current
        if current is not None:
            current.cancel()

        task = self._inflight
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        try:
            await self._sink.abort()
        except Exception as e:
            logger.warning("Audio sink abort failed", error=str(e))

        if self._status != RenderStatus.ERROR:
            self._status = RenderStatus.IDLE

    async def close(self) -> None:
        await self.stop()
        for provider in self._providers:
            try:
                await provider.close()
            except Exception as e:
                logger.warning("TTS provider close failed", provider=provider.name, error=str(e))

    async def _render(self, text: str) -> None:
        self._error = None

        for provider in self._providers:
            self._current = provider
            self._status = RenderStatus.SYNTHESIZING
            try:
                played = await self._play_with(provider, text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "TTS provider failed, falling back",
                    provider=provider.name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self._abort_sink()
                self._mark_fallback(provider.name)
                continue
            finally:
                self._current = None

            if played == 0:
                logger.warning("TTS provider produced no audio, falling back", provider=provider.name)
                self._mark_fallback(provider.name)
                continue

            self._active_provider = provider.name
            logger.debug("TTS spoke", provider=provider.name, bytes=played)
            self._status = RenderStatus.IDLE
            return

        await self._speak_local(text)

    async def _play_with(self, provider: TTSProvider, text: str) -> int:
        chunks = provider.synthesize_streaming(text)

        def on_first_audio() -> None:
            self._status = RenderStatus.PLAYING

        if provider.streaming and self._sink.supports_streaming:
            return await play_streamed(
                chunks,
                self._sink,
                provider.content_type,
                max_buffered=self._queue_chunks,
                on_first_audio=on_first_audio,
            )
        try:
            return await play_buffered(
                chunks,
                self._sink,
                provider.content_type,
                on_first_audio=on_first_audio,
            )
        finally:
            await chunks.aclose()

    async def _speak_local(self, text: str) -> None:
        self._active_provider = "local"
        self._status = RenderStatus.PLAYING
        try:
            await self._sink.speak_local(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._status = RenderStatus.ERROR
            self._error = str(e) or type(e).__name__
            logger.error("Local speech failed", error=self._error)
            return
        self._status = RenderStatus.IDLE

    async def _abort_sink(self) -> None:
        try:
            await self._sink.abort()
        except Exception as e:
            logger.warning("Audio sink abort failed", error=str(e))

    def _mark_fallback(self, failed: str) -> None:
        if not self._has_fallen_back:
            logger.info("Speech rendering fell back", failed=failed)
        self._has_fallen_back = True


def build_renderer(
    options: VoiceOptions,
    sink: AudioSink,
    config: Optional[Any] = None,
    *,
    queue_chunks: int = DEFAULT_QUEUE_CHUNKS,
    tts_metrics: Optional[ElevenLabsTTSMetrics] = None,
) -> SpeechRenderer:
    """Assemble the provider chain selected by the session's voice options."""
    providers: List[TTSProvider] = []
    if options.render_provider == "primary":
        providers.append(ElevenLabsTTS(config, metrics=tts_metrics))
    elif options.render_provider == "secondary":
        providers.append(SmallestTTS(config))
    return SpeechRenderer(providers, sink, queue_chunks=queue_chunks)
