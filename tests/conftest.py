"""
Pytest configuration and fixtures.
"""

import os
from unittest.mock import patch

import pytest

from src.pitchroom.config import PhaseThresholds, Timeouts, VoiceOptions
from src.pitchroom.stt_providers.base import CaptureUnavailable
from tests.fakes import FAST_TIMEOUTS, FakeSink


@pytest.fixture(autouse=True)
def mock_env_vars(tmp_path):
    """Mock environment variables for tests."""
    env_vars = {
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "GROQ_API_KEY": "test_groq_key",
        "GROQ_MODEL": "llama-3.3-70b-versatile",
        "LLM_PROVIDER": "groq",
        "SMALLEST_API_KEY": "test_smallest_key",
        "ELEVENLABS_API_KEY": "test_elevenlabs_key",
        "STT_PROVIDER": "primary",
        "TTS_PROVIDER": "primary",
        "FLAGS_PATH": str(tmp_path / "flags.json"),
        "VALIDATE_LLM_MODEL": "false",  # No network at startup
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.pitchroom.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@pytest.fixture
def fast_timeouts() -> Timeouts:
    return FAST_TIMEOUTS


@pytest.fixture
def voice_options() -> VoiceOptions:
    return VoiceOptions(timeouts=FAST_TIMEOUTS, thresholds=PhaseThresholds())


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def capture_unavailable() -> Exception:
    return CaptureUnavailable("no microphone")
