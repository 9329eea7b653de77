from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncGenerator, Optional

from src.pitchroom.tts_types import TTSChunk


class TTSProviderError(Exception):
    """Raised when a synthesis provider fails (network error, upstream status, bad stream)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TTSProvider(ABC):
    name: str = "provider"
    content_type: str = "audio/mpeg"
    # True when chunks can be played as they arrive.
    streaming: bool = True

    @abstractmethod
    async def synthesize_streaming(
        self,
        text: str,
        *,
        voice_id: Optional[str] = None,
    ) -> AsyncGenerator[TTSChunk, None]:
        raise NotImplementedError

    def cancel(self) -> None:
        return None

    async def close(self) -> None:
        return None
