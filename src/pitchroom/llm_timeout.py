"""
Turn timeout monitor.

Purely observational: while a language-model call is outstanding it moves
`idle -> thinking -> stalling` on two delayed timers so the UI can show
feedback. It never cancels or retries the call it watches.
"""

import asyncio
import random
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

import structlog

from src.pitchroom.config import Timeouts

logger = structlog.get_logger(__name__)

T = TypeVar("T")

STALL_MESSAGES = (
    "That's a deep question. Give me a second.",
    "I want to give you a thoughtful response. One moment.",
    "Interesting angle. Let me think about that.",
    "Hold on, I'm weighing a few things here.",
)


class LLMStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    STALLING = "stalling"


StatusListener = Callable[[LLMStatus], None]


def pick_stall_message(rng: Optional[random.Random] = None) -> str:
    """Pick a natural-sounding placeholder line."""
    return (rng or random).choice(STALL_MESSAGES)


class TurnTimeoutMonitor:
    def __init__(self, timeouts: Optional[Timeouts] = None):
        self._timeouts = timeouts or Timeouts()
        self._status = LLMStatus.IDLE
        self._timers: List[asyncio.Task] = []
        self._listeners: List[StatusListener] = []

    @property
    def status(self) -> LLMStatus:
        return self._status

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def start(self) -> None:
        """Schedule the thinking and stalling transitions for a new call."""
        self.clear()
        self._timers = [
            asyncio.create_task(self._after(self._timeouts.llm_thinking, LLMStatus.THINKING)),
            asyncio.create_task(self._after(self._timeouts.llm_stalling, LLMStatus.STALLING)),
        ]

    def clear(self) -> None:
        """Cancel pending transitions and go back to idle."""
        timers, self._timers = self._timers, []
        for timer in timers:
            if not timer.done():
                timer.cancel()
        self._set_status(LLMStatus.IDLE)

    async def track(self, call: Awaitable[T]) -> T:
        """Await `call` with the monitor running; always cleared afterwards."""
        self.start()
        try:
            return await call
        finally:
            self.clear()

    async def _after(self, delay: float, status: LLMStatus) -> None:
        await asyncio.sleep(delay)
        logger.info("LLM call slow", status=status.value, after_s=delay)
        self._set_status(status)

    def _set_status(self, status: LLMStatus) -> None:
        if status == self._status:
            return
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error("Timeout status listener failed", error=str(e))

    def stall_message(self) -> str:
        return pick_stall_message()
