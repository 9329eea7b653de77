"""
Runtime provider overrides.

A tiny JSON key/value file that overrides the STT_PROVIDER / TTS_PROVIDER
defaults. Overrides are read once per session start and never hot-swapped
mid-turn.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog

from src.pitchroom.config import (
    CAPTURE_PROVIDERS,
    RENDER_PROVIDERS,
    Config,
    VoiceOptions,
    get_config,
)

logger = structlog.get_logger(__name__)

STT_FLAG = "ff_stt_provider"
TTS_FLAG = "ff_tts_provider"

_ALLOWED = {
    STT_FLAG: CAPTURE_PROVIDERS,
    TTS_FLAG: RENDER_PROVIDERS,
}


def _flags_file(config: Config) -> Path:
    return Path(config.flags_path)


def read_flags(config: Optional[Config] = None) -> dict[str, str]:
    """Read persisted overrides; a missing or unreadable file means no overrides."""
    config = config or get_config()
    path = _flags_file(config)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning("Provider flags unreadable", path=str(path), error=str(e))
        return {}

    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if k in _ALLOWED and v in _ALLOWED[k]}


def set_provider_override(
    key: str,
    value: Optional[str],
    config: Optional[Config] = None,
) -> dict[str, str]:
    """
    Persist (or clear, with value=None) a provider override.

    Raises ValueError for unknown keys or values.
    """
    config = config or get_config()
    if key not in _ALLOWED:
        raise ValueError(f"Unknown provider flag: {key}")
    if value is not None and value not in _ALLOWED[key]:
        raise ValueError(f"Invalid value for {key}: {value!r}. Expected one of {_ALLOWED[key]}.")

    flags = read_flags(config)
    if value is None:
        flags.pop(key, None)
    else:
        flags[key] = value

    path = _flags_file(config)
    path.write_text(json.dumps(flags, indent=2), encoding="utf-8")
    logger.info("Provider override updated", flag=key, value=value or "default")
    return flags


def get_capture_provider(config: Optional[Config] = None) -> str:
    config = config or get_config()
    return read_flags(config).get(STT_FLAG, config.stt_provider)


def get_render_provider(config: Optional[Config] = None) -> str:
    config = config or get_config()
    return read_flags(config).get(TTS_FLAG, config.tts_provider)


def load_voice_options(config: Optional[Config] = None) -> VoiceOptions:
    """Resolve env defaults plus persisted overrides into a VoiceOptions object."""
    config = config or get_config()
    flags = read_flags(config)
    return config.voice_options(
        capture_provider=flags.get(STT_FLAG),
        render_provider=flags.get(TTS_FLAG),
    )
