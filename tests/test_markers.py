"""
Tests for the confidence/decision marker parser.
"""

import pytest

from src.pitchroom.config import PhaseThresholds
from src.pitchroom.markers import (
    DEFAULT_CONFIDENCE,
    EMPTY_REPLY_TEXT,
    InvestorDecision,
    clamp_confidence,
    parse_decision,
    parse_investor_reply,
    reconcile_decision,
    strip_markers,
)


class TestParseInvestorReply:
    def test_marker_on_its_own_line(self):
        reply = parse_investor_reply(
            "Interesting traction. Who pays today?\n[CONFIDENCE:75][DECISION:LISTENING]"
        )

        assert reply.text == "Interesting traction. Who pays today?"
        assert reply.confidence == 75
        assert reply.decision == InvestorDecision.LISTENING

    def test_missing_marker_defaults(self):
        reply = parse_investor_reply("Walk me through your churn.")

        assert reply.text == "Walk me through your churn."
        assert reply.confidence == DEFAULT_CONFIDENCE
        assert reply.decision == InvestorDecision.LISTENING

    def test_confidence_clamped(self):
        reply = parse_investor_reply("Wow.\n[CONFIDENCE:150][DECISION:INVEST]")
        assert reply.confidence == 100
        assert reply.decision == InvestorDecision.INVEST

    def test_unknown_decision_falls_back_to_listening(self):
        reply = parse_investor_reply("Okay.\n[CONFIDENCE:55][DECISION:MAYBE]")
        assert reply.decision == InvestorDecision.LISTENING
        assert "[DECISION" not in reply.text

    def test_malformed_confidence_is_stripped_and_defaulted(self):
        reply = parse_investor_reply("Go on.\n[CONFIDENCE:high][DECISION:LEANING_IN]")
        assert reply.text == "Go on."
        assert reply.confidence == DEFAULT_CONFIDENCE
        assert reply.decision == InvestorDecision.LEANING_IN

    def test_marker_only_reply_gets_placeholder_text(self):
        reply = parse_investor_reply("[CONFIDENCE:40][DECISION:LISTENING]")
        assert reply.text == EMPTY_REPLY_TEXT
        assert reply.confidence == 40

    def test_low_confidence_forces_pass(self):
        reply = parse_investor_reply("Not for us.\n[CONFIDENCE:15][DECISION:LISTENING]")
        assert reply.decision == InvestorDecision.PASS

    def test_high_confidence_lifts_listening(self):
        reply = parse_investor_reply("Love it.\n[CONFIDENCE:85][DECISION:LISTENING]")
        assert reply.decision == InvestorDecision.LEANING_IN


class TestReconcileDecision:
    @pytest.mark.parametrize(
        "confidence, decision, expected",
        [
            (20, InvestorDecision.INVEST, InvestorDecision.PASS),
            (21, InvestorDecision.LISTENING, InvestorDecision.LISTENING),
            (80, InvestorDecision.PASS, InvestorDecision.LEANING_IN),
            (80, InvestorDecision.INVEST, InvestorDecision.INVEST),
            (79, InvestorDecision.LISTENING, InvestorDecision.LISTENING),
        ],
    )
    def test_table(self, confidence, decision, expected):
        assert reconcile_decision(confidence, decision) == expected

    def test_custom_thresholds(self):
        thresholds = PhaseThresholds(fold_at=30, invest_at=70)
        assert reconcile_decision(30, InvestorDecision.LISTENING, thresholds) == InvestorDecision.PASS
        assert reconcile_decision(70, InvestorDecision.LISTENING, thresholds) == InvestorDecision.LEANING_IN


def test_clamp_confidence():
    assert clamp_confidence(-5) == 0
    assert clamp_confidence("88") == 88
    assert clamp_confidence(None) == DEFAULT_CONFIDENCE
    assert clamp_confidence("abc", default=33) == 33


def test_parse_decision():
    assert parse_decision("invest") == InvestorDecision.INVEST
    assert parse_decision("") is None
    assert parse_decision("NOPE") is None


def test_strip_markers_keeps_surrounding_text():
    assert strip_markers("Sure. [CONFIDENCE:60] Next? [DECISION:LISTENING]") == "Sure. Next?"
