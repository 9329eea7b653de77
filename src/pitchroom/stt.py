"""
Speech capture adapter.

Wraps an ordered list of capture providers (primary: low-latency streaming
socket; secondary: on-device browser recognition) behind one interface:

- start() / stop() / reset()
- accumulated final text and latest interim text, exposed separately
- transparent failover with a sticky `has_fallen_back` flag
- silence warning / auto-end signals delivered to registered listeners
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import structlog

from src.pitchroom.config import Timeouts, VoiceOptions
from src.pitchroom.stt_providers.base import (
    AudioSource,
    CaptureProvider,
    RecognitionBridge,
    TranscriptionResult,
)
from src.pitchroom.stt_providers.browser import BrowserRecognitionSTT
from src.pitchroom.stt_providers.smallest import SmallestSTT

logger = structlog.get_logger(__name__)

ResultListener = Callable[[str, bool], Awaitable[None]]
SignalListener = Callable[[], Awaitable[None]]
ErrorListener = Callable[[str], Awaitable[None]]

# In-place restarts of the last provider after a runtime drop.
DEFAULT_RESTART_ATTEMPTS = 3
DEFAULT_RESTART_BACKOFF_S = 0.5


class CaptureState(str, Enum):
    """Current state of the capture adapter."""
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    ERROR = "error"


class SpeechCapture:
    """
    Capture adapter with provider failover and silence detection.

    Failures never escape `start()`: a failed provider is torn down and the
    next one is tried. When every provider fails, the adapter enters
    `error` with a descriptive reason and `start()` returns False.

    When the last provider drops after it was listening, it is restarted in
    place up to `restart_attempts` times with a growing backoff. Silence
    timers keep running across restarts. If the restarts are exhausted the
    adapter enters `error` and notifies the error listeners.
    """

    def __init__(
        self,
        providers: Sequence[CaptureProvider],
        timeouts: Optional[Timeouts] = None,
        *,
        restart_attempts: int = DEFAULT_RESTART_ATTEMPTS,
        restart_backoff: float = DEFAULT_RESTART_BACKOFF_S,
    ):
        self._providers: List[CaptureProvider] = list(providers)
        self._timeouts = timeouts or Timeouts()
        self._restart_attempts = max(0, restart_attempts)
        self._restart_backoff = max(0.0, restart_backoff)
        self._restart_count = 0
        self._active_index = 0
        self._state = CaptureState.IDLE
        self._error: Optional[str] = None
        self._has_fallen_back = False

        self._transcript = ""
        self._interim = ""

        self._result_listeners: List[ResultListener] = []
        self._warning_listeners: List[SignalListener] = []
        self._timeout_listeners: List[SignalListener] = []
        self._error_listeners: List[ErrorListener] = []

        self._start_task: Optional[asyncio.Task] = None
        self._failover_task: Optional[asyncio.Task] = None
        self._silence_task: Optional[asyncio.Task] = None
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def has_fallen_back(self) -> bool:
        return self._has_fallen_back

    @property
    def active_provider(self) -> str:
        if not self._providers:
            return "none"
        return self._providers[self._active_index].name

    @property
    def transcript(self) -> str:
        """Accumulated final text."""
        return self._transcript

    @property
    def interim_transcript(self) -> str:
        """Latest provisional text."""
        return self._interim

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def add_result_listener(self, listener: ResultListener) -> Callable[[], None]:
        self._result_listeners.append(listener)
        return lambda: self._remove(self._result_listeners, listener)

    def add_silence_listeners(
        self,
        *,
        on_warning: Optional[SignalListener] = None,
        on_timeout: Optional[SignalListener] = None,
    ) -> Callable[[], None]:
        if on_warning:
            self._warning_listeners.append(on_warning)
        if on_timeout:
            self._timeout_listeners.append(on_timeout)

        def remove() -> None:
            if on_warning:
                self._remove(self._warning_listeners, on_warning)
            if on_timeout:
                self._remove(self._timeout_listeners, on_timeout)

        return remove

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Called with the reason when capture gives up after a runtime drop."""
        self._error_listeners.append(listener)
        return lambda: self._remove(self._error_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start capturing. Returns True once some provider is listening."""
        if self._state == CaptureState.LISTENING:
            return True
        if self._start_task and not self._start_task.done():
            return await asyncio.shield(self._start_task)

        self._stop_requested = False
        self._error = None
        self._restart_count = 0
        self._transcript = ""
        self._interim = ""

        task = asyncio.create_task(self._start_chain())
        self._start_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._stop_requested and task.cancelled():
                return False
            raise
        finally:
            if self._start_task is task:
                self._start_task = None

    async def stop(self) -> None:
        """Release the microphone and provider connection. Idempotent."""
        self._stop_requested = True
        self._cancel_silence_timers()

        pending = []
        for task in (self._start_task, self._failover_task):
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                pending.append(task)
        self._failover_task = None
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if self._state in (CaptureState.LISTENING, CaptureState.CONNECTING) and self._providers:
            await self._safe_stop(self._providers[self._active_index])
            logger.debug("Capture stopped", provider=self.active_provider)

        self._state = CaptureState.IDLE

    def reset(self) -> None:
        """Clear accumulated text without stopping capture."""
        self._transcript = ""
        self._interim = ""
        if self._state == CaptureState.LISTENING:
            self._arm_silence_timers()

    async def _start_chain(self) -> bool:
        last_error: Optional[str] = None

        for index in range(self._active_index, len(self._providers)):
            provider = self._providers[index]
            self._active_index = index
            self._state = CaptureState.CONNECTING
            logger.info("Starting capture provider", provider=provider.name)

            try:
                await asyncio.wait_for(
                    provider.start(self._handle_result, self._error_handler(provider)),
                    timeout=self._timeouts.connect,
                )
            except asyncio.CancelledError:
                await self._safe_stop(provider)
                raise
            except Exception as e:
                if isinstance(e, asyncio.TimeoutError):
                    last_error = "Connection timeout"
                else:
                    last_error = str(e) or type(e).__name__
                logger.warning(
                    "Capture provider failed to start",
                    provider=provider.name,
                    error_type=type(e).__name__,
                    error=last_error,
                )
                await self._safe_stop(provider)
                if index + 1 < len(self._providers):
                    self._has_fallen_back = True
                    logger.info(
                        "Falling back to next capture provider",
                        failed=provider.name,
                        next=self._providers[index + 1].name,
                    )
                continue

            self._state = CaptureState.LISTENING
            self._arm_silence_timers()
            logger.info(
                "Capture listening",
                provider=provider.name,
                has_fallen_back=self._has_fallen_back,
            )
            return True

        self._state = CaptureState.ERROR
        self._error = last_error or "No capture provider configured"
        logger.error("Capture unavailable", error=self._error)
        return False

    def _error_handler(self, provider: CaptureProvider) -> Callable[[str], Awaitable[None]]:
        async def on_error(reason: str) -> None:
            await self._on_provider_error(provider, reason)

        return on_error

    async def _on_provider_error(self, provider: CaptureProvider, reason: str) -> None:
        """A provider failed after it was listening: fail over in the background."""
        if self._state != CaptureState.LISTENING:
            return
        if not self._providers or self._providers[self._active_index] is not provider:
            return
        if self._failover_task and not self._failover_task.done():
            return

        logger.warning("Capture provider dropped", provider=provider.name, error=reason)
        self._failover_task = asyncio.create_task(self._fail_over(provider, reason))

    async def _fail_over(self, provider: CaptureProvider, reason: str) -> None:
        await self._safe_stop(provider)

        if self._active_index + 1 < len(self._providers):
            self._cancel_silence_timers()
            self._has_fallen_back = True
            self._active_index += 1
            if await self._start_chain():
                return
        elif await self._restart(provider):
            return
        else:
            self._cancel_silence_timers()
            self._state = CaptureState.ERROR
            self._error = reason
            logger.error(
                "Capture unavailable after restarts",
                provider=provider.name,
                restarts=self._restart_count,
                error=reason,
            )

        await self._emit_error(self._error or reason)

    async def _restart(self, provider: CaptureProvider) -> bool:
        """Restart the last provider in place. Returns True once it is listening again."""
        while self._restart_count < self._restart_attempts:
            self._restart_count += 1
            self._state = CaptureState.CONNECTING
            logger.info(
                "Restarting capture provider",
                provider=provider.name,
                attempt=self._restart_count,
                max_attempts=self._restart_attempts,
            )
            await asyncio.sleep(self._restart_backoff * self._restart_count)

            try:
                await asyncio.wait_for(
                    provider.start(self._handle_result, self._error_handler(provider)),
                    timeout=self._timeouts.connect,
                )
            except asyncio.CancelledError:
                await self._safe_stop(provider)
                raise
            except Exception as e:
                logger.warning(
                    "Capture provider restart failed",
                    provider=provider.name,
                    attempt=self._restart_count,
                    error=str(e) or type(e).__name__,
                )
                await self._safe_stop(provider)
                continue

            self._state = CaptureState.LISTENING
            if self._silence_task is None or self._silence_task.done():
                self._arm_silence_timers()
            logger.info("Capture listening again", provider=provider.name)
            return True

        return False

    async def _emit_error(self, reason: str) -> None:
        for listener in list(self._error_listeners):
            try:
                await listener(reason)
            except Exception as e:
                logger.error("Capture error listener failed", error=str(e))

    async def _safe_stop(self, provider: CaptureProvider) -> None:
        try:
            await provider.stop()
        except Exception as e:
            logger.warning("Capture provider teardown failed", provider=provider.name, error=str(e))

    # ------------------------------------------------------------------
    # Results + silence detection
    # ------------------------------------------------------------------

    async def _handle_result(self, result: TranscriptionResult) -> None:
        if self._state not in (CaptureState.CONNECTING, CaptureState.LISTENING):
            return

        text = (result.text or "").strip()
        if not text:
            return

        if result.is_final:
            self._transcript = f"{self._transcript} {text}".strip()
            self._interim = ""
            self._restart_count = 0
            self._arm_silence_timers()
        else:
            self._interim = text

        for listener in list(self._result_listeners):
            try:
                await listener(text, result.is_final)
            except Exception as e:
                logger.error("Capture result listener failed", error=str(e))

    def _arm_silence_timers(self) -> None:
        self._cancel_silence_timers()
        self._silence_task = asyncio.create_task(self._silence_watch())

    def _cancel_silence_timers(self) -> None:
        task = self._silence_task
        self._silence_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _silence_watch(self) -> None:
        warning_s = self._timeouts.silence_warning
        auto_end_s = max(self._timeouts.silence_auto_end - warning_s, 0.0)
        try:
            await asyncio.sleep(warning_s)
            logger.debug("Silence warning", after_s=warning_s)
            await self._emit(self._warning_listeners)

            await asyncio.sleep(auto_end_s)
            logger.info("Silence auto-end", after_s=self._timeouts.silence_auto_end)
            await self._emit(self._timeout_listeners)
        except asyncio.CancelledError:
            pass

    async def _emit(self, listeners: List[SignalListener]) -> None:
        for listener in list(listeners):
            try:
                await listener()
            except Exception as e:
                logger.error("Silence listener failed", error=str(e))


def build_capture(
    options: VoiceOptions,
    *,
    audio_source: AudioSource,
    bridge: RecognitionBridge,
    config: Optional[Any] = None,
) -> SpeechCapture:
    """Assemble the provider chain selected by the session's voice options."""
    providers: List[CaptureProvider] = []
    if options.capture_provider == "primary":
        providers.append(SmallestSTT(audio_source, config=config))
    providers.append(BrowserRecognitionSTT(bridge))
    return SpeechCapture(providers, timeouts=options.timeouts)
