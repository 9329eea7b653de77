from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import numpy as np


class CaptureUnavailable(Exception):
    """Raised when no audio device or recognition backend can be acquired."""


@dataclass
class TranscriptionResult:
    """Result from a capture provider."""

    text: str
    is_final: bool
    timestamp: float = field(default_factory=time.time)


ResultCallback = Callable[[TranscriptionResult], Awaitable[None]]
ErrorCallback = Callable[[str], Awaitable[None]]


class AudioSource(ABC):
    """
    A microphone owned by exactly one capture provider at a time.

    `open()` acquires the device (raising CaptureUnavailable when there is
    none), `read()` returns the next float32 frame, `close()` releases it.
    """

    @abstractmethod
    async def open(self, sample_rate: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def read(self) -> np.ndarray:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class RecognitionBridge(ABC):
    """Speech recognition performed on the user's device (e.g. the browser)."""

    @property
    @abstractmethod
    def supported(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def start_recognition(
        self,
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop_recognition(self) -> None:
        raise NotImplementedError


class CaptureProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def start(
        self,
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """Begin emitting results. Raise on any failure to start."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """Release every resource acquired by `start()`. Must be idempotent."""
        raise NotImplementedError
