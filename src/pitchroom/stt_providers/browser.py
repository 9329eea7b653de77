from __future__ import annotations

from typing import Optional

import structlog

from src.pitchroom.stt_providers.base import (
    CaptureProvider,
    CaptureUnavailable,
    ErrorCallback,
    RecognitionBridge,
    ResultCallback,
)

logger = structlog.get_logger(__name__)


class BrowserRecognitionSTT(CaptureProvider):
    """
    General-purpose recognition running on the user's device.

    The device does the recognition and streams results back through the
    bridge; nothing leaves the server except start/stop requests.
    """

    name = "browser"

    def __init__(self, bridge: RecognitionBridge):
        self._bridge = bridge
        self._running = False

    async def start(
        self,
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        if not self._bridge.supported:
            raise CaptureUnavailable("Speech recognition not supported in this browser")

        await self._bridge.start_recognition(on_result, on_error)
        self._running = True
        logger.info("Browser recognition started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await self._bridge.stop_recognition()
        logger.debug("Browser recognition stopped")
