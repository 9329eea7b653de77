"""
Browser session WebSocket protocol.

The browser owns the physical microphone, the speaker and (optionally) the
on-device recognizer and synthesizer; this module makes those look like the
AudioSource, RecognitionBridge and AudioSink the adapters expect.

Inbound events (browser -> server):
- hello: device capabilities
- audio: one float32 mic frame, base64
- recognition / recognition_error: on-device recognizer output
- playback_done: playback mark acknowledgment
- start_pitch / submit_turn / end_session / reset: session controls

Outbound events (server -> browser):
- state: session snapshot
- mic_start / mic_stop, recognition_start / recognition_stop
- audio_begin / audio / audio_end(mark): streamed speech
- clear: drop buffered audio (playback aborted)
- speak_local(mark): speak text with the on-device synthesizer
- scorecard: evaluation result
"""

import asyncio
import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import msgspec
import numpy as np
import structlog

from src.pitchroom.audio import chunk_audio, decode_float32_frame
from src.pitchroom.playback import AudioSink, LocalSpeechUnavailable
from src.pitchroom.stt_providers.base import (
    AudioSource,
    CaptureUnavailable,
    ErrorCallback,
    RecognitionBridge,
    ResultCallback,
    TranscriptionResult,
)

logger = structlog.get_logger(__name__)

# Create global msgspec encoder/decoder
decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()

AUDIO_MESSAGE_BYTES = 16384
MIC_QUEUE_FRAMES = 64
PLAYBACK_ACK_TIMEOUT_S = 60.0

SendFn = Callable[[str], Awaitable[None]]


class ClientEventType(str, Enum):
    """Browser WebSocket event types."""
    HELLO = "hello"
    AUDIO = "audio"
    RECOGNITION = "recognition"
    RECOGNITION_ERROR = "recognition_error"
    PLAYBACK_DONE = "playback_done"
    START_PITCH = "start_pitch"
    SUBMIT_TURN = "submit_turn"
    END_SESSION = "end_session"
    RESET = "reset"


@dataclass
class ClientHelloEvent:
    """Capabilities of the browser's audio stack."""
    recognition_supported: bool = False
    local_speech_supported: bool = False
    streaming_playback: bool = True

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ClientHelloEvent":
        return cls(
            recognition_supported=bool(message.get("recognition_supported", False)),
            local_speech_supported=bool(message.get("local_speech_supported", False)),
            streaming_playback=bool(message.get("streaming_playback", True)),
        )


@dataclass
class ClientAudioEvent:
    samples: np.ndarray

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ClientAudioEvent":
        return cls(samples=decode_float32_frame(message.get("payload", "")))


@dataclass
class ClientRecognitionEvent:
    text: str
    is_final: bool

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ClientRecognitionEvent":
        return cls(
            text=str(message.get("text", "")),
            is_final=bool(message.get("is_final", False)),
        )


@dataclass
class ClientPlaybackDoneEvent:
    name: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ClientPlaybackDoneEvent":
        return cls(name=str(message.get("name", "")))


def parse_client_message(raw_message: Any) -> Tuple[ClientEventType, Any]:
    """
    Parse a raw browser WebSocket message.

    Raises:
        ValueError: If message cannot be parsed
    """
    try:
        message = decoder.decode(
            raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message
        )
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Message must be a JSON object")

    event_type_str = message.get("event", "")
    try:
        event_type = ClientEventType(event_type_str)
    except ValueError:
        raise ValueError(f"Unknown event type: {event_type_str}")

    if event_type == ClientEventType.HELLO:
        return event_type, ClientHelloEvent.from_message(message)
    if event_type == ClientEventType.AUDIO:
        return event_type, ClientAudioEvent.from_message(message)
    if event_type == ClientEventType.RECOGNITION:
        return event_type, ClientRecognitionEvent.from_message(message)
    if event_type == ClientEventType.PLAYBACK_DONE:
        return event_type, ClientPlaybackDoneEvent.from_message(message)
    if event_type == ClientEventType.RECOGNITION_ERROR:
        return event_type, str(message.get("error", "") or "Recognition error")
    return event_type, message


def create_message(event: str, **fields: Any) -> str:
    return encoder.encode({"event": event, **fields}).decode("utf-8")


def create_audio_message(audio: bytes) -> str:
    return create_message("audio", payload=base64.b64encode(audio).decode("utf-8"))


def parse_mark_generation(mark_name: str) -> Optional[int]:
    """
    Parse a playback generation id from a mark name.

    Expected format: `g{gen}_m{seq}`. Returns None if the format doesn't match.
    """
    if not isinstance(mark_name, str) or not mark_name.startswith("g"):
        return None
    try:
        return int(mark_name.split("_", 1)[0][1:])
    except ValueError:
        return None


@dataclass
class PlaybackState:
    generation_id: int = 0
    mark_sequence: int = 0
    pending_marks: Dict[str, asyncio.Future] = field(default_factory=dict)
    sent_at: Dict[str, float] = field(default_factory=dict)

    def next_mark(self) -> str:
        self.mark_sequence += 1
        return f"g{self.generation_id}_m{self.mark_sequence}"


class ClientConnection(AudioSource, RecognitionBridge, AudioSink):
    """
    One browser connection seen as microphone, recognizer and speaker.

    Playback completion is acknowledged by the browser with `playback_done`
    marks. Aborting playback bumps the generation so late acks from the
    aborted audio are ignored.
    """

    def __init__(self, send: SendFn, *, ack_timeout: float = PLAYBACK_ACK_TIMEOUT_S):
        self._send = send
        self._ack_timeout = ack_timeout
        self._hello = ClientHelloEvent()
        self._closed = False

        self._mic_open = False
        self._mic_queue: asyncio.Queue = asyncio.Queue(maxsize=MIC_QUEUE_FRAMES)

        self._on_result: Optional[ResultCallback] = None
        self._on_error: Optional[ErrorCallback] = None

        self._playback = PlaybackState()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def handle_hello(self, event: ClientHelloEvent) -> None:
        self._hello = event
        self.supports_streaming = event.streaming_playback
        logger.info(
            "Browser connected",
            recognition_supported=event.recognition_supported,
            local_speech_supported=event.local_speech_supported,
            streaming_playback=event.streaming_playback,
        )

    async def send(self, message: str) -> None:
        if self._closed:
            return
        await self._send(message)

    def disconnect(self) -> None:
        """Connection gone: release every waiter."""
        self._closed = True
        self._mic_open = False
        self._release_marks()
        try:
            self._mic_queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    # ------------------------------------------------------------------
    # AudioSource
    # ------------------------------------------------------------------

    async def open(self, sample_rate: int) -> None:
        if self._closed:
            raise CaptureUnavailable("Browser disconnected")
        self._drain_mic_queue()
        self._mic_open = True
        await self.send(create_message("mic_start", sample_rate=sample_rate))

    async def read(self) -> np.ndarray:
        frame = await self._mic_queue.get()
        if frame is None:
            raise CaptureUnavailable("Microphone closed")
        return frame

    async def close(self) -> None:
        if not self._mic_open:
            return
        self._mic_open = False
        self._drain_mic_queue()
        await self.send(create_message("mic_stop"))

    def feed_audio(self, event: ClientAudioEvent) -> None:
        if not self._mic_open or event.samples.size == 0:
            return
        if self._mic_queue.full():
            # Drop the oldest frame rather than block the receive loop.
            self._mic_queue.get_nowait()
        self._mic_queue.put_nowait(event.samples)

    def _drain_mic_queue(self) -> None:
        while not self._mic_queue.empty():
            self._mic_queue.get_nowait()

    # ------------------------------------------------------------------
    # RecognitionBridge
    # ------------------------------------------------------------------

    @property
    def supported(self) -> bool:
        return self._hello.recognition_supported and not self._closed

    async def start_recognition(
        self,
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._on_result = on_result
        self._on_error = on_error
        await self.send(create_message("recognition_start", language="en-US"))

    async def stop_recognition(self) -> None:
        if self._on_result is None:
            return
        self._on_result = None
        self._on_error = None
        await self.send(create_message("recognition_stop"))

    async def handle_recognition(self, event: ClientRecognitionEvent) -> None:
        if self._on_result is None:
            return
        await self._on_result(TranscriptionResult(text=event.text, is_final=event.is_final))

    async def handle_recognition_error(self, error: str) -> None:
        logger.warning("Browser recognition error", error=error)
        if self._on_error is not None:
            await self._on_error(error)

    # ------------------------------------------------------------------
    # AudioSink
    # ------------------------------------------------------------------

    async def begin(self, content_type: str) -> None:
        await self.send(create_message("audio_begin", content_type=content_type))

    async def write(self, audio: bytes) -> None:
        for chunk in chunk_audio(audio, AUDIO_MESSAGE_BYTES):
            await self.send(create_audio_message(chunk))

    async def finish(self) -> None:
        name = self._playback.next_mark()
        await self._await_mark(name, create_message("audio_end", name=name))

    async def abort(self) -> None:
        pending = bool(self._playback.pending_marks)
        self._playback.generation_id += 1
        self._playback.mark_sequence = 0
        self._release_marks()
        if pending:
            logger.info("Playback aborted", generation_id=self._playback.generation_id)
        await self.send(create_message("clear"))

    async def speak_local(self, text: str) -> None:
        if not self._hello.local_speech_supported or self._closed:
            raise LocalSpeechUnavailable("Browser speech synthesis not supported")
        name = self._playback.next_mark()
        await self._await_mark(name, create_message("speak_local", text=text, name=name))

    def handle_playback_done(self, event: ClientPlaybackDoneEvent) -> float:
        """Resolve the matching mark. Returns the round-trip time in ms (0 if stale/unknown)."""
        generation = parse_mark_generation(event.name)
        if generation is not None and generation != self._playback.generation_id:
            logger.debug(
                "Ignoring stale playback mark",
                mark_name=event.name,
                mark_generation=generation,
                current_generation=self._playback.generation_id,
            )
            return 0.0

        future = self._playback.pending_marks.pop(event.name, None)
        sent_at = self._playback.sent_at.pop(event.name, None)
        if future is not None and not future.done():
            future.set_result(None)
        if sent_at is None:
            return 0.0
        return (time.time() - sent_at) * 1000

    async def _await_mark(self, name: str, message: str) -> None:
        if self._closed:
            return
        future = asyncio.get_running_loop().create_future()
        self._playback.pending_marks[name] = future
        self._playback.sent_at[name] = time.time()
        try:
            await self.send(message)
            await asyncio.wait_for(future, timeout=self._ack_timeout)
        except asyncio.TimeoutError:
            logger.warning("Playback mark never acknowledged", mark_name=name)
        finally:
            self._playback.pending_marks.pop(name, None)
            self._playback.sent_at.pop(name, None)

    def _release_marks(self) -> None:
        for future in self._playback.pending_marks.values():
            if not future.done():
                future.set_result(None)
        self._playback.pending_marks.clear()
        self._playback.sent_at.clear()
