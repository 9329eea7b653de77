"""
Audio playback: the sink abstraction and the streamed/buffered play paths.

Streamed path is a producer/consumer pipeline: a network-chunk producer task
feeds a bounded queue (backpressure), a playback consumer drains it into the
sink. Playback starts as soon as the first chunk is buffered.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Optional

import structlog

from src.pitchroom.tts_types import TTSChunk

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_CHUNKS = 16

_END = object()


class LocalSpeechUnavailable(Exception):
    """Raised when the playback device cannot synthesize speech locally."""


class AudioSink(ABC):
    """
    The audio output device, owned by one renderer at a time.

    `finish()` resolves when everything written has been heard; `abort()`
    halts playback immediately and must be safe to call at any time.
    """

    # True when the device can append media to a live stream.
    supports_streaming: bool = True

    @abstractmethod
    async def begin(self, content_type: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def write(self, audio: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    async def finish(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def abort(self) -> None:
        raise NotImplementedError

    async def speak_local(self, text: str) -> None:
        """Speak `text` with the device's own synthesizer and wait until done."""
        raise LocalSpeechUnavailable("Local speech synthesis not supported")


async def play_streamed(
    chunks: AsyncIterator[TTSChunk],
    sink: AudioSink,
    content_type: str,
    *,
    max_buffered: int = DEFAULT_QUEUE_CHUNKS,
    on_first_audio: Optional[Callable[[], None]] = None,
) -> int:
    """
    Play chunks as they arrive. Returns the number of audio bytes played.

    Errors from either side cancel the other side and propagate.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, max_buffered))
    played = 0

    async def produce() -> None:
        try:
            async for chunk in chunks:
                if chunk.audio_bytes:
                    await queue.put(chunk.audio_bytes)
                if chunk.is_final:
                    break
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug("Chunk stream close failed", error=str(e))
        await queue.put(_END)

    async def consume() -> None:
        nonlocal played
        started = False
        while True:
            item = await queue.get()
            if item is _END:
                break
            if not started:
                started = True
                await sink.begin(content_type)
                if on_first_audio:
                    on_first_audio()
            await sink.write(item)
            played += len(item)
        if started:
            await sink.finish()

    producer = asyncio.create_task(produce())
    consumer = asyncio.create_task(consume())
    tasks = {producer, consumer}
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            exc = task.exception()
            if exc is not None:
                raise exc
        # Producer finished cleanly; wait for the consumer to drain and finish.
        await consumer
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    return played


async def play_buffered(
    chunks: AsyncIterator[TTSChunk],
    sink: AudioSink,
    content_type: str,
    *,
    on_first_audio: Optional[Callable[[], None]] = None,
) -> int:
    """Collect the complete payload, then play it in one piece."""
    buf = bytearray()
    async for chunk in chunks:
        buf.extend(chunk.audio_bytes)
        if chunk.is_final:
            break

    if not buf:
        return 0

    await sink.begin(content_type)
    if on_first_audio:
        on_first_audio()
    await sink.write(bytes(buf))
    await sink.finish()
    return len(buf)
