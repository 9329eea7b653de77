"""
Dialogue session state machine.

Owns the session state (phase, transcript, history, exchange count, elapsed
time, investor confidence) and drives one turn at a time:

    capture -> investor reply -> speech -> capture ...

until an exchange-count threshold or a confidence fold moves the phase to
`scorecard`. Model failures degrade to a spoken fallback line; the session
never stops because a provider failed.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import structlog

from src.pitchroom.config import PhaseThresholds, VoiceOptions
from src.pitchroom.llm_timeout import LLMStatus, TurnTimeoutMonitor
from src.pitchroom.markers import (
    InvestorDecision,
    InvestorReply,
    clamp_confidence,
    reconcile_decision,
)
from src.pitchroom.prompts import FALLBACK_LINE, pick_dismissal
from src.pitchroom.scorecard import Scorecard, ScorecardResult
from src.pitchroom.stt import SpeechCapture
from src.pitchroom.tts import SpeechCancelled, SpeechRenderer

logger = structlog.get_logger(__name__)


class DialoguePhase(str, Enum):
    LANDING = "landing"
    PITCH = "pitch"
    QA = "qa"
    NEGOTIATION = "negotiation"
    SCORECARD = "scorecard"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = list(DialoguePhase)

ACTIVE_PHASES = (DialoguePhase.PITCH, DialoguePhase.QA, DialoguePhase.NEGOTIATION)


class Speaker(str, Enum):
    USER = "user"
    INVESTOR = "investor"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def phase_for_exchange_count(count: int, thresholds: PhaseThresholds) -> DialoguePhase:
    if count >= thresholds.scorecard_at:
        return DialoguePhase.SCORECARD
    if count >= thresholds.negotiation_at:
        return DialoguePhase.NEGOTIATION
    if count >= thresholds.qa_at:
        return DialoguePhase.QA
    return DialoguePhase.PITCH


@dataclass
class TranscriptEntry:
    speaker: Speaker
    text: str
    is_interim: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp,
            "is_interim": self.is_interim,
        }


@dataclass(frozen=True)
class HistoryEntry:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class SessionState:
    """Everything the UI needs to render one session."""

    phase: DialoguePhase = DialoguePhase.LANDING
    transcript: List[TranscriptEntry] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)
    exchange_count: int = 0
    elapsed_seconds: int = 0
    confidence: int = 50
    decision: InvestorDecision = InvestorDecision.LISTENING
    silence_warning: bool = False
    thinking_status: LLMStatus = LLMStatus.IDLE

    def add_transcript_entry(
        self,
        speaker: Speaker,
        text: str,
        is_interim: bool = False,
    ) -> TranscriptEntry:
        """Append an entry; a trailing interim entry from the same speaker is replaced in place."""
        if self.transcript:
            last = self.transcript[-1]
            if last.speaker == speaker and last.is_interim:
                last.text = text
                last.is_interim = is_interim
                last.timestamp = time.time()
                return last

        entry = TranscriptEntry(speaker=speaker, text=text, is_interim=is_interim)
        self.transcript.append(entry)
        return entry

    def drop_interim(self) -> None:
        if self.transcript and self.transcript[-1].is_interim:
            self.transcript.pop()

    def add_history_entry(self, role: Role, content: str) -> None:
        self.history.append(HistoryEntry(role=role, content=content))

    def history_messages(self) -> List[Dict[str, str]]:
        return [entry.to_dict() for entry in self.history]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "transcript": [entry.to_dict() for entry in self.transcript],
            "exchange_count": self.exchange_count,
            "elapsed_seconds": self.elapsed_seconds,
            "confidence": self.confidence,
            "decision": self.decision.value,
            "silence_warning": self.silence_warning,
            "thinking_status": self.thinking_status.value,
        }


class InvestorService(Protocol):
    async def reply(self, user_message: str, history: Sequence[Dict[str, str]]) -> InvestorReply:
        ...


class ScorecardService(Protocol):
    async def request(self, transcript: Sequence[TranscriptEntry]) -> ScorecardResult:
        ...


ChangeListener = Callable[["PitchSession"], None]


class PitchSession:
    """
    One founder, one investor, one mic/speaker pair.

    Turns are strictly sequential: `submit_turn()` returns False while a
    previous turn is still in flight (`is_processing`). `reset()` and
    `end_session()` are safe at any time and cancel whatever is running.
    """

    def __init__(
        self,
        capture: SpeechCapture,
        renderer: SpeechRenderer,
        investor: InvestorService,
        requestor: ScorecardService,
        *,
        monitor: Optional[TurnTimeoutMonitor] = None,
        options: Optional[VoiceOptions] = None,
        speak_stall_lines: bool = True,
    ):
        self._options = options or VoiceOptions()
        self._thresholds = self._options.thresholds
        self._capture = capture
        self._renderer = renderer
        self._investor = investor
        self._requestor = requestor
        self._monitor = monitor or TurnTimeoutMonitor(self._options.timeouts)
        self._speak_stall_lines = speak_stall_lines

        self._state = self._fresh_state()
        self._generation = 0
        self._processing = False
        self._last_scorecard: Optional[ScorecardResult] = None

        self._turn_task: Optional[asyncio.Task] = None
        self._auto_submit_task: Optional[asyncio.Task] = None
        self._stall_task: Optional[asyncio.Task] = None
        self._ticker_task: Optional[asyncio.Task] = None

        self._listeners: List[ChangeListener] = []
        self._unsubscribe = [
            capture.add_result_listener(self._on_capture_result),
            capture.add_silence_listeners(
                on_warning=self._on_silence_warning,
                on_timeout=self._on_silence_timeout,
            ),
            capture.add_error_listener(self._on_capture_error),
            self._monitor.add_listener(self._on_llm_status),
        ]

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> DialoguePhase:
        return self._state.phase

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_active(self) -> bool:
        return self._state.phase in ACTIVE_PHASES

    @property
    def capture(self) -> SpeechCapture:
        return self._capture

    @property
    def renderer(self) -> SpeechRenderer:
        return self._renderer

    @property
    def last_scorecard(self) -> Optional[ScorecardResult]:
        return self._last_scorecard

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def snapshot(self) -> Dict[str, Any]:
        data = self._state.to_dict()
        data["is_processing"] = self._processing
        data["capture"] = {
            "state": self._capture.state.value,
            "provider": self._capture.active_provider,
            "has_fallen_back": self._capture.has_fallen_back,
            "error": self._capture.error,
        }
        data["render"] = {
            "status": self._renderer.status.value,
            "provider": self._renderer.active_provider,
            "has_fallen_back": self._renderer.has_fallen_back,
        }
        return data

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error("Session listener failed", error=str(e))

    def _fresh_state(self) -> SessionState:
        return SessionState(confidence=self._thresholds.baseline_confidence)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_pitch(self) -> bool:
        """Start a new pitch. Returns False when no capture provider could start."""
        await self._halt()
        self._generation += 1
        self._last_scorecard = None
        self._state = self._fresh_state()
        self._state.phase = DialoguePhase.PITCH
        self._start_ticker()
        logger.info("Pitch started", generation=self._generation)
        self._notify()

        started = await self._capture.start()
        if not started:
            logger.error("Capture unavailable at pitch start", error=self._capture.error)
        self._notify()
        return started

    async def submit_turn(self, force: bool = False) -> bool:
        """
        Submit the founder's captured speech as one turn and run it to completion.

        Returns False when nothing was submitted (busy, no text, or not in an
        active phase) or when the turn was cancelled by reset/end.
        """
        task = self._begin_turn(force)
        if task is None:
            return False

        await asyncio.wait({task})
        if task.cancelled():
            return False
        task.result()
        return True

    async def end_session(self) -> Optional[Scorecard]:
        """Stop everything, move to `scorecard`, and request the evaluation."""
        await self._halt()
        generation = self._generation
        self._state.phase = DialoguePhase.SCORECARD
        self._state.silence_warning = False
        self._state.drop_interim()
        self._notify()

        logger.info(
            "Session ended",
            exchanges=self._state.exchange_count,
            elapsed_seconds=self._state.elapsed_seconds,
            confidence=self._state.confidence,
        )

        result = await self._requestor.request(list(self._state.transcript))
        if generation != self._generation:
            return None

        self._last_scorecard = result
        self._notify()
        return result.scorecard

    async def reset(self) -> None:
        """Stop everything and return to a fresh `landing` state."""
        await self._halt()
        self._generation += 1
        self._last_scorecard = None
        self._state = self._fresh_state()
        logger.info("Session reset")
        self._notify()

    async def close(self) -> None:
        await self._halt()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self._listeners.clear()
        await self._renderer.close()

    async def _halt(self) -> None:
        """Cancel the running turn and release capture, speech and timers."""
        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._turn_task, self._auto_submit_task, self._stall_task)
            if t and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._turn_task = None
        self._auto_submit_task = None
        self._stall_task = None
        self._processing = False

        self._stop_ticker()
        self._monitor.clear()
        await self._renderer.stop()
        await self._capture.stop()

    # ------------------------------------------------------------------
    # Turn cycle
    # ------------------------------------------------------------------

    def _begin_turn(self, force: bool) -> Optional[asyncio.Task]:
        if self._processing:
            logger.debug("Turn already in flight, ignoring submit")
            return None
        if not self.is_active:
            return None

        text = self._capture.transcript.strip()
        if not text and force:
            text = self._capture.interim_transcript.strip()
        if not text:
            if force:
                # Nothing heard at all: keep listening with fresh silence timers.
                self._capture.reset()
            return None

        self._processing = True
        task = asyncio.create_task(self._run_turn(text))
        self._turn_task = task
        task.add_done_callback(self._on_turn_done)
        return task

    def _on_turn_done(self, task: asyncio.Task) -> None:
        if self._turn_task is task:
            self._turn_task = None
            self._processing = False
        if not task.cancelled() and task.exception() is not None:
            logger.error("Turn failed", error=str(task.exception()))
        self._notify()

    async def _run_turn(self, text: str) -> None:
        state = self._state

        await self._capture.stop()
        state.silence_warning = False
        self._monitor.clear()

        prior_history = state.history_messages()
        state.add_transcript_entry(Speaker.USER, text)
        state.add_history_entry(Role.USER, text)
        self._capture.reset()
        self._notify()

        logger.info("Turn submitted", exchange=state.exchange_count + 1, text=text[:80])

        try:
            reply = await self._monitor.track(self._investor.reply(text, prior_history))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Investor reply failed, speaking fallback", error=str(e))
            await self._finish_stall_line()
            await self._speak_fallback()
            return

        await self._finish_stall_line()
        dismissal = self._apply_reply(reply)

        if dismissal is not None:
            await self._speak(reply.text)
            await self._speak(dismissal)
            return

        await self._speak(reply.text)
        if state.phase != DialoguePhase.SCORECARD:
            await self._resume_capture()

    def _apply_reply(self, reply: InvestorReply) -> Optional[str]:
        """Record the reply; returns the dismissal line when the investor folds."""
        state = self._state
        state.confidence = clamp_confidence(reply.confidence, state.confidence)
        state.decision = reconcile_decision(state.confidence, reply.decision, self._thresholds)

        state.add_history_entry(Role.ASSISTANT, reply.text)
        state.add_transcript_entry(Speaker.INVESTOR, reply.text)
        state.exchange_count += 1

        next_phase = phase_for_exchange_count(state.exchange_count, self._thresholds)
        if next_phase.rank > state.phase.rank:
            state.phase = next_phase

        dismissal = None
        if state.confidence <= self._thresholds.fold_at:
            dismissal = pick_dismissal()
            state.add_history_entry(Role.ASSISTANT, dismissal)
            state.add_transcript_entry(Speaker.INVESTOR, dismissal)
            state.phase = DialoguePhase.SCORECARD
            logger.info("Investor folded", confidence=state.confidence)

        if state.phase == DialoguePhase.SCORECARD:
            self._stop_ticker()

        logger.info(
            "Exchange recorded",
            exchange_count=state.exchange_count,
            phase=state.phase.value,
            confidence=state.confidence,
            decision=state.decision.value,
        )
        self._notify()
        return dismissal

    async def _speak_fallback(self) -> None:
        state = self._state
        state.add_transcript_entry(Speaker.INVESTOR, FALLBACK_LINE)
        state.add_history_entry(Role.ASSISTANT, FALLBACK_LINE)
        self._notify()

        await self._speak(FALLBACK_LINE)
        if state.phase != DialoguePhase.SCORECARD:
            await self._resume_capture()

    async def _speak(self, text: str) -> None:
        try:
            await self._renderer.speak(text)
        except SpeechCancelled:
            logger.debug("Speech interrupted")
        self._notify()

    async def _resume_capture(self) -> None:
        self._capture.reset()
        started = await self._capture.start()
        if not started:
            logger.error("Capture could not resume", error=self._capture.error)
        self._notify()

    # ------------------------------------------------------------------
    # Capture / monitor signals
    # ------------------------------------------------------------------

    async def _on_capture_result(self, text: str, is_final: bool) -> None:
        if self._processing or not self.is_active:
            return

        live = f"{self._capture.transcript} {self._capture.interim_transcript}".strip()
        if live:
            self._state.add_transcript_entry(Speaker.USER, live, is_interim=True)
        if is_final:
            self._state.silence_warning = False
        self._notify()

    async def _on_silence_warning(self) -> None:
        if self._processing or not self.is_active:
            return
        self._state.silence_warning = True
        self._notify()

    async def _on_silence_timeout(self) -> None:
        if self._processing or not self.is_active:
            return
        logger.info("Silence auto-end, submitting turn")
        self._auto_submit_task = asyncio.create_task(self.submit_turn(force=True))

    async def _on_capture_error(self, reason: str) -> None:
        """Capture gave up mid-turn; surface it so the founder can end or retry."""
        if not self.is_active:
            return
        logger.error("Capture lost", error=reason, phase=self._state.phase.value)
        self._state.silence_warning = False
        self._notify()

    def _on_llm_status(self, status: LLMStatus) -> None:
        self._state.thinking_status = status
        if status == LLMStatus.STALLING and self._speak_stall_lines and self._processing:
            if self._stall_task is None or self._stall_task.done():
                self._stall_task = asyncio.create_task(self._speak(self._monitor.stall_message()))
        self._notify()

    async def _finish_stall_line(self) -> None:
        """Let a placeholder line finish so it never overlaps the reply."""
        task = self._stall_task
        self._stall_task = None
        if task and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Elapsed-time ticker
    # ------------------------------------------------------------------

    def _start_ticker(self) -> None:
        self._stop_ticker()
        self._ticker_task = asyncio.create_task(self._tick())

    def _stop_ticker(self) -> None:
        task = self._ticker_task
        self._ticker_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(1.0)
            if not self.is_active:
                return
            self._state.elapsed_seconds += 1
            self._notify()
