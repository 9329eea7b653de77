"""
Tests for configuration loading and provider overrides.
"""

import os
from unittest.mock import patch

import pytest

from src.pitchroom.config import ConfigError, get_config
from src.pitchroom.flags import (
    STT_FLAG,
    TTS_FLAG,
    get_capture_provider,
    get_render_provider,
    load_voice_options,
    read_flags,
    set_provider_override,
)


class TestConfig:
    def test_loads_from_env(self):
        config = get_config()

        assert config.groq_api_key == "test_groq_key"
        assert config.validate_llm_model is False
        assert config.thresholds.negotiation_at == 5
        assert config.thresholds.scorecard_at == 7
        assert config.timeouts.silence_auto_end == 15.0
        config.validate()

    def test_short_phase_table(self):
        with patch.dict(os.environ, {"PHASE_NEGOTIATION_AT": "2", "PHASE_SCORECARD_AT": "3"}):
            get_config.cache_clear()
            thresholds = get_config().thresholds

        assert (thresholds.qa_at, thresholds.negotiation_at, thresholds.scorecard_at) == (1, 2, 3)

    def test_bad_numbers_fall_back_to_defaults(self):
        with patch.dict(os.environ, {"SILENCE_WARNING_SECONDS": "soon", "FOLD_CONFIDENCE": "x"}):
            get_config.cache_clear()
            config = get_config()

        assert config.silence_warning_seconds == 5.0
        assert config.fold_confidence == 20

    @pytest.mark.parametrize(
        "env, message",
        [
            ({"GROQ_API_KEY": ""}, "GROQ_API_KEY"),
            ({"LLM_PROVIDER": "claude"}, "Invalid LLM_PROVIDER"),
            ({"STT_PROVIDER": "tertiary"}, "Invalid STT_PROVIDER"),
            ({"TTS_PROVIDER": "robot"}, "Invalid TTS_PROVIDER"),
            ({"PHASE_NEGOTIATION_AT": "7"}, "PHASE_NEGOTIATION_AT"),
            ({"SILENCE_AUTO_END_SECONDS": "3"}, "SILENCE_AUTO_END_SECONDS"),
        ],
    )
    def test_validate_rejects(self, env, message):
        with patch.dict(os.environ, env):
            get_config.cache_clear()
            with pytest.raises(ConfigError, match=message):
                get_config().validate()

    def test_openai_provider_requires_its_key(self):
        with patch.dict(os.environ, {"LLM_PROVIDER": "openai", "OPENAI_API_KEY": ""}):
            get_config.cache_clear()
            with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
                get_config().validate()


class TestFlags:
    def test_no_file_means_env_defaults(self):
        assert read_flags() == {}
        assert get_capture_provider() == "primary"
        assert get_render_provider() == "primary"

    def test_override_round_trip(self):
        set_provider_override(STT_FLAG, "secondary")
        set_provider_override(TTS_FLAG, "local")

        options = load_voice_options()

        assert options.capture_provider == "secondary"
        assert options.render_provider == "local"
        assert options.thresholds == get_config().thresholds

        set_provider_override(TTS_FLAG, None)
        assert read_flags() == {STT_FLAG: "secondary"}
        assert get_render_provider() == "primary"

    def test_rejects_unknown_values(self):
        with pytest.raises(ValueError):
            set_provider_override(STT_FLAG, "local")
        with pytest.raises(ValueError):
            set_provider_override("ff_llm_provider", "groq")

    def test_corrupt_file_is_ignored(self):
        with open(get_config().flags_path, "w", encoding="utf-8") as f:
            f.write("{not json")

        assert read_flags() == {}
        assert load_voice_options().render_provider == "primary"

    def test_invalid_stored_values_are_dropped(self):
        with open(get_config().flags_path, "w", encoding="utf-8") as f:
            f.write('{"ff_stt_provider": "secondary", "ff_tts_provider": "robot", "other": 1}')

        assert read_flags() == {STT_FLAG: "secondary"}
