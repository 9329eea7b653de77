from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class TTSChunk:
    """
    A chunk of synthesized audio.

    `audio_bytes` is in the provider's `content_type` (audio/mpeg for the
    primary provider, 16-bit PCM for the secondary one).
    """

    audio_bytes: bytes
    is_final: bool = False
    timestamp: float = field(default_factory=time.time)

    # Optional: structured metadata for debugging/metrics.
    meta: Optional[dict[str, Any]] = None
