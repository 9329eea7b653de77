"""
Configuration management for the Pitch Room voice service.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)

CAPTURE_PROVIDERS = ("primary", "secondary")
RENDER_PROVIDERS = ("primary", "secondary", "local")


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Timeouts:
    """Timer settings shared by the adapters and the timeout monitor (seconds)."""

    connect: float = 5.0
    silence_warning: float = 5.0
    silence_auto_end: float = 15.0
    llm_thinking: float = 8.0
    llm_stalling: float = 15.0


@dataclass(frozen=True)
class PhaseThresholds:
    """
    Exchange counts at which the dialogue moves to the next phase.

    The short variant (negotiation at 2, scorecard at 3) is available through
    PHASE_NEGOTIATION_AT / PHASE_SCORECARD_AT.
    """

    qa_at: int = 1
    negotiation_at: int = 5
    scorecard_at: int = 7
    fold_at: int = 20
    invest_at: int = 80
    baseline_confidence: int = 50


@dataclass(frozen=True)
class VoiceOptions:
    """
    Per-session provider selection, read once at session start.

    capture_provider: "primary" (streaming socket) | "secondary" (browser recognition)
    render_provider: "primary" | "secondary" | "local"
    """

    capture_provider: str = "primary"
    render_provider: str = "primary"
    timeouts: Timeouts = field(default_factory=Timeouts)
    thresholds: PhaseThresholds = field(default_factory=PhaseThresholds)


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    port: int = 7860
    log_level: str = "INFO"

    # Groq (LLM)
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"

    # LLM Provider (Groq/OpenAI)
    # - Set LLM_PROVIDER=openai + OPENAI_API_KEY/OPENAI_MODEL to use ChatGPT.
    llm_provider: str = "groq"  # "groq" | "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 400
    llm_temperature: float = 0.7

    # Smallest AI (streaming STT + secondary TTS)
    smallest_api_key: str = ""
    smallest_stt_url: str = "wss://waves-api.smallest.ai/api/v1/pulse/get_text"
    smallest_tts_url: str = "wss://waves-api.smallest.ai/api/v1/lightning-v2/get_speech/stream"
    smallest_language: str = "en"
    smallest_voice_id: str = "emily"
    stt_sample_rate: int = 16000

    # ElevenLabs (primary TTS)
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"
    elevenlabs_model_id: str = "eleven_turbo_v2_5"

    # Provider selection (defaults; overridable per browser via flags)
    stt_provider: str = "primary"
    tts_provider: str = "primary"
    flags_path: str = ".pitchroom_flags.json"

    # Timers
    connect_timeout_seconds: float = 5.0
    silence_warning_seconds: float = 5.0
    silence_auto_end_seconds: float = 15.0
    llm_thinking_seconds: float = 8.0
    llm_stalling_seconds: float = 15.0

    # Dialogue policy
    phase_negotiation_at: int = 5
    phase_scorecard_at: int = 7
    fold_confidence: int = 20
    invest_confidence: int = 80
    playback_queue_chunks: int = 16

    # Startup
    validate_llm_model: bool = True

    @property
    def timeouts(self) -> Timeouts:
        return Timeouts(
            connect=self.connect_timeout_seconds,
            silence_warning=self.silence_warning_seconds,
            silence_auto_end=self.silence_auto_end_seconds,
            llm_thinking=self.llm_thinking_seconds,
            llm_stalling=self.llm_stalling_seconds,
        )

    @property
    def thresholds(self) -> PhaseThresholds:
        return PhaseThresholds(
            negotiation_at=self.phase_negotiation_at,
            scorecard_at=self.phase_scorecard_at,
            fold_at=self.fold_confidence,
            invest_at=self.invest_confidence,
        )

    def voice_options(
        self,
        capture_provider: Optional[str] = None,
        render_provider: Optional[str] = None,
    ) -> VoiceOptions:
        """Build the explicit options object handed to a new session."""
        return VoiceOptions(
            capture_provider=capture_provider or self.stt_provider,
            render_provider=render_provider or self.tts_provider,
            timeouts=self.timeouts,
            thresholds=self.thresholds,
        )

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        provider = (self.llm_provider or "groq").strip().lower()
        if provider not in ("groq", "openai"):
            raise ConfigError(
                f"Invalid LLM_PROVIDER '{self.llm_provider}'. Expected 'groq' or 'openai'."
            )

        if provider == "groq":
            if not self.groq_api_key:
                missing.append("GROQ_API_KEY")
            if not self.groq_model:
                missing.append("GROQ_MODEL")

        if provider == "openai":
            if not self.openai_api_key:
                missing.append("OPENAI_API_KEY")
            if not self.openai_model:
                missing.append("OPENAI_MODEL")

        if self.stt_provider not in CAPTURE_PROVIDERS:
            raise ConfigError(
                f"Invalid STT_PROVIDER '{self.stt_provider}'. Expected one of {CAPTURE_PROVIDERS}."
            )
        if self.tts_provider not in RENDER_PROVIDERS:
            raise ConfigError(
                f"Invalid TTS_PROVIDER '{self.tts_provider}'. Expected one of {RENDER_PROVIDERS}."
            )

        if not 0 < self.phase_negotiation_at < self.phase_scorecard_at:
            raise ConfigError(
                "PHASE_NEGOTIATION_AT must be positive and lower than PHASE_SCORECARD_AT."
            )
        if self.silence_auto_end_seconds <= self.silence_warning_seconds:
            raise ConfigError("SILENCE_AUTO_END_SECONDS must exceed SILENCE_WARNING_SECONDS.")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            port=self.port,
            log_level=self.log_level,
            llm_provider=self.llm_provider,
            llm_model=self.openai_model if self.llm_provider == "openai" else self.groq_model,
            stt_provider=self.stt_provider,
            tts_provider=self.tts_provider,
            phase_negotiation_at=self.phase_negotiation_at,
            phase_scorecard_at=self.phase_scorecard_at,
            fold_confidence=self.fold_confidence,
            smallest_key_set=bool(self.smallest_api_key),
            elevenlabs_key_set=bool(self.elevenlabs_api_key),
            groq_key_set=bool(self.groq_api_key),
            openai_key_set=bool(self.openai_api_key),
        )


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    config = Config(
        # Server
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Groq
        groq_api_key=os.getenv("GROQ_API_KEY", ""),
        groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),

        # LLM Provider
        llm_provider=os.getenv("LLM_PROVIDER", "groq").strip().lower(),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        llm_max_tokens=_get_int("LLM_MAX_TOKENS", 400),
        llm_temperature=_get_float("LLM_TEMPERATURE", 0.7),

        # Smallest AI
        smallest_api_key=os.getenv("SMALLEST_API_KEY", ""),
        smallest_stt_url=os.getenv(
            "SMALLEST_STT_URL", "wss://waves-api.smallest.ai/api/v1/pulse/get_text"
        ),
        smallest_tts_url=os.getenv(
            "SMALLEST_TTS_URL",
            "wss://waves-api.smallest.ai/api/v1/lightning-v2/get_speech/stream",
        ),
        smallest_language=os.getenv("SMALLEST_LANGUAGE", "en"),
        smallest_voice_id=os.getenv("SMALLEST_VOICE_ID", "emily"),
        stt_sample_rate=_get_int("STT_SAMPLE_RATE", 16000),

        # ElevenLabs
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", "pNInz6obpgDQGcFmaJgB"),
        elevenlabs_model_id=os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5"),

        # Provider selection
        stt_provider=os.getenv("STT_PROVIDER", "primary").strip().lower(),
        tts_provider=os.getenv("TTS_PROVIDER", "primary").strip().lower(),
        flags_path=os.getenv("FLAGS_PATH", ".pitchroom_flags.json"),

        # Timers
        connect_timeout_seconds=_get_float("CONNECT_TIMEOUT_SECONDS", 5.0),
        silence_warning_seconds=_get_float("SILENCE_WARNING_SECONDS", 5.0),
        silence_auto_end_seconds=_get_float("SILENCE_AUTO_END_SECONDS", 15.0),
        llm_thinking_seconds=_get_float("LLM_THINKING_SECONDS", 8.0),
        llm_stalling_seconds=_get_float("LLM_STALLING_SECONDS", 15.0),

        # Dialogue policy
        phase_negotiation_at=_get_int("PHASE_NEGOTIATION_AT", 5),
        phase_scorecard_at=_get_int("PHASE_SCORECARD_AT", 7),
        fold_confidence=_get_int("FOLD_CONFIDENCE", 20),
        invest_confidence=_get_int("INVEST_CONFIDENCE", 80),
        playback_queue_chunks=_get_int("PLAYBACK_QUEUE_CHUNKS", 16),

        # Startup
        validate_llm_model=_get_bool("VALIDATE_LLM_MODEL", True),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
