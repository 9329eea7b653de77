"""
Tests for the scorecard requestor and its JSON extraction.
"""

import json
from unittest.mock import AsyncMock

import pytest

from src.pitchroom.llm import LLMResponse
from src.pitchroom.prompts import EVALUATOR_SYSTEM_PROMPT
from src.pitchroom.scorecard import (
    SCORE_DIMENSIONS,
    Scorecard,
    ScorecardParseError,
    ScorecardRequestor,
    extract_json_block,
    format_transcript,
    parse_scorecard,
)
from src.pitchroom.session import Speaker, TranscriptEntry


SAMPLE = {
    "one_sentence": "Payments for dental clinics.",
    "scores": {name: 6 for name in SCORE_DIMENSIONS},
    "top_strengths": ["Clear pain", "Early revenue"],
    "top_risks": [
        {"risk": "Small market", "evidence_quote": "about 200 clinics", "fix": "Size the TAM"}
    ],
    "yc_style_feedback": {
        "what_i_believe_you_are_building": "Faster payouts for dentists",
        "what_i_need_to_believe_next": ["Retention holds"],
        "next_7_days": ["Talk to 10 clinics"],
    },
}


def _requestor(text=None, error=None):
    llm = AsyncMock()
    if error is not None:
        llm.complete.side_effect = error
    else:
        llm.complete.return_value = LLMResponse(text=text)
    return ScorecardRequestor(llm=llm), llm


class TestFormatTranscript:
    def test_entries_and_dicts(self):
        entries = [
            TranscriptEntry(speaker=Speaker.USER, text="We help dentists."),
            {"speaker": "investor", "text": "Who pays?"},
            {"speaker": "user", "text": "half a", "isInterim": True},
            TranscriptEntry(speaker=Speaker.USER, text="still talk", is_interim=True),
        ]

        assert format_transcript(entries) == "user: We help dentists.\ninvestor: Who pays?"


class TestExtractJsonBlock:
    def test_block_surrounded_by_prose(self):
        text = "Sure! Here it is:\n" + json.dumps(SAMPLE) + "\nHope that helps."
        assert extract_json_block(text) == SAMPLE

    def test_braces_inside_strings(self):
        text = 'noise {"one_sentence": "uses {curly} braces"} trailing }'
        assert extract_json_block(text) == {"one_sentence": "uses {curly} braces"}

    def test_skips_unparseable_block(self):
        text = "{not json} then {\"ok\": 1}"
        assert extract_json_block(text) == {"ok": 1}

    def test_no_block(self):
        assert extract_json_block("no json here") is None
        assert extract_json_block("{ unterminated") is None


class TestParseScorecard:
    def test_valid(self):
        scorecard = parse_scorecard(json.dumps(SAMPLE))

        assert scorecard.one_sentence == "Payments for dental clinics."
        assert scorecard.top_risks[0].fix == "Size the TAM"
        assert scorecard.average_score == 6.0

    def test_scores_clamped_and_defaulted(self):
        scorecard = parse_scorecard(json.dumps({"scores": {"clarity": 14, "proof": -2}}))

        assert scorecard.scores.clarity == 10
        assert scorecard.scores.proof == 0
        assert scorecard.scores.retention == 0
        assert scorecard.top_strengths == []

    def test_to_dict_includes_average(self):
        data = Scorecard.model_validate(SAMPLE).to_dict()
        assert data["average_score"] == 6.0
        assert data["scores"]["clarity"] == 6

    def test_non_json_keeps_raw(self):
        with pytest.raises(ScorecardParseError) as exc_info:
            parse_scorecard("I can't score this.")
        assert exc_info.value.raw == "I can't score this."

    def test_wrong_shape(self):
        with pytest.raises(ScorecardParseError):
            parse_scorecard('{"scores": "great"}')


class TestScorecardRequestor:
    @pytest.mark.asyncio
    async def test_request_success(self):
        requestor, llm = _requestor("```json\n" + json.dumps(SAMPLE) + "\n```")
        transcript = [
            TranscriptEntry(speaker=Speaker.USER, text="We help dentists."),
            TranscriptEntry(speaker=Speaker.INVESTOR, text="Who pays?"),
        ]

        result = await requestor.request(transcript)

        assert result.success
        assert result.scorecard.scores.clarity == 6
        messages = llm.complete.call_args.args[0]
        assert messages[0]["content"].endswith("user: We help dentists.\ninvestor: Who pays?")
        assert llm.complete.call_args.kwargs["system_prompt"] == EVALUATOR_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_request_parse_failure_returns_raw(self):
        requestor, _ = _requestor("Great pitch, 8/10!")

        result = await requestor.request([])

        assert result.success is False
        assert result.error == "Failed to parse scorecard"
        assert result.raw == "Great pitch, 8/10!"

    @pytest.mark.asyncio
    async def test_request_model_failure(self):
        requestor, _ = _requestor(error=RuntimeError("timeout"))

        result = await requestor.request([])

        assert result.success is False
        assert result.error == "Failed to generate scorecard"
        assert result.raw is None

    @pytest.mark.asyncio
    async def test_generate_raises(self):
        requestor, _ = _requestor("nope")

        with pytest.raises(ScorecardParseError):
            await requestor.generate([])
