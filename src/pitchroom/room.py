"""
Per-connection pitch room: wires one browser connection to one session.

Inbound control events (start_pitch, submit_turn, end_session, reset) run as
background tasks so the receive loop keeps draining audio frames and
playback marks while a turn is in flight.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Set

import structlog

from src.pitchroom.client_protocol import (
    ClientConnection,
    ClientEventType,
    create_message,
    parse_client_message,
)
from src.pitchroom.config import get_config
from src.pitchroom.flags import load_voice_options
from src.pitchroom.investor import InvestorAgent
from src.pitchroom.llm import ChatModel
from src.pitchroom.llm_timeout import TurnTimeoutMonitor
from src.pitchroom.scorecard import ScorecardRequestor
from src.pitchroom.session import DialoguePhase, PitchSession
from src.pitchroom.stt import build_capture
from src.pitchroom.tts import build_renderer
from src.pitchroom.tts_providers.elevenlabs import ElevenLabsTTSMetrics

logger = structlog.get_logger(__name__)


class PitchRoom:
    def __init__(self, connection: ClientConnection, session: PitchSession):
        self.connection = connection
        self.session = session
        self._tasks: Set[asyncio.Task] = set()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._sender: Optional[asyncio.Task] = None
        self._scorecard_requested = False
        self._created_at = time.time()
        self.session.add_listener(self._on_session_change)

    async def start(self) -> None:
        self._sender = asyncio.create_task(self._drain_outbox())
        self._publish_state()

    async def stop(self) -> None:
        self.connection.disconnect()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.session.close()
        if self._sender:
            self._sender.cancel()
            await asyncio.gather(self._sender, return_exceptions=True)
        logger.info(
            "Room closed",
            duration_s=round(time.time() - self._created_at, 1),
            exchanges=self.session.state.exchange_count,
        )

    async def handle_message(self, raw_message: Any) -> None:
        """Handle an incoming WebSocket message from the browser."""
        try:
            event_type, event = parse_client_message(raw_message)
        except ValueError as e:
            logger.warning("Failed to parse client message", error=str(e))
            return

        if event_type == ClientEventType.HELLO:
            self.connection.handle_hello(event)

        elif event_type == ClientEventType.AUDIO:
            self.connection.feed_audio(event)

        elif event_type == ClientEventType.RECOGNITION:
            await self.connection.handle_recognition(event)

        elif event_type == ClientEventType.RECOGNITION_ERROR:
            await self.connection.handle_recognition_error(event)

        elif event_type == ClientEventType.PLAYBACK_DONE:
            rtt_ms = self.connection.handle_playback_done(event)
            if rtt_ms:
                logger.debug("Playback ack", mark_name=event.name, rtt_ms=round(rtt_ms, 2))

        elif event_type == ClientEventType.START_PITCH:
            self._scorecard_requested = False
            self._spawn(self.session.start_pitch())

        elif event_type == ClientEventType.SUBMIT_TURN:
            self._spawn(self.session.submit_turn())

        elif event_type == ClientEventType.END_SESSION:
            self._request_scorecard()

        elif event_type == ClientEventType.RESET:
            self._scorecard_requested = False
            self._spawn(self.session.reset())

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Room task failed", error=str(task.exception()))

    def _request_scorecard(self) -> None:
        if self._scorecard_requested:
            return
        self._scorecard_requested = True
        self._spawn(self._end_and_publish())

    async def _end_and_publish(self) -> None:
        scorecard = await self.session.end_session()
        result = self.session.last_scorecard
        if scorecard is not None:
            self._outbox.put_nowait(create_message("scorecard", scorecard=scorecard.to_dict()))
        elif result is not None:
            self._outbox.put_nowait(
                create_message("scorecard", scorecard=None, error=result.error, raw=result.raw)
            )

    def _on_session_change(self, session: PitchSession) -> None:
        self._publish_state()
        # The dialogue reached its end on its own (threshold or fold).
        if session.phase == DialoguePhase.SCORECARD and not session.is_processing:
            if session.last_scorecard is None:
                self._request_scorecard()

    def _publish_state(self) -> None:
        self._outbox.put_nowait(create_message("state", state=self.session.snapshot()))

    async def _drain_outbox(self) -> None:
        while True:
            message = await self._outbox.get()
            await self.connection.send(message)


async def create_room(
    send_message: Callable[[str], Awaitable[None]],
    config: Optional[Any] = None,
    *,
    tts_metrics: Optional[ElevenLabsTTSMetrics] = None,
) -> PitchRoom:
    """
    Build a room for a new browser connection.

    Provider overrides are read once here and stay fixed for the session.
    """
    config = config or get_config()
    options = load_voice_options(config)
    connection = ClientConnection(send_message)

    llm = ChatModel(config)
    session = PitchSession(
        capture=build_capture(options, audio_source=connection, bridge=connection, config=config),
        renderer=build_renderer(
            options,
            connection,
            config,
            queue_chunks=config.playback_queue_chunks,
            tts_metrics=tts_metrics,
        ),
        investor=InvestorAgent(llm, thresholds=options.thresholds),
        requestor=ScorecardRequestor(llm),
        monitor=TurnTimeoutMonitor(options.timeouts),
        options=options,
    )
    logger.info(
        "Room created",
        capture_provider=options.capture_provider,
        render_provider=options.render_provider,
    )

    room = PitchRoom(connection, session)
    await room.start()
    return room
