"""
Parser for the in-band confidence/decision marker in investor replies.

Grammar (on its own line, anywhere in the reply):

    [CONFIDENCE:NN][DECISION:TAG]

NN is an integer 0-100, TAG one of LISTENING, LEANING_IN, INVEST, PASS.
An absent or malformed marker yields confidence 50 and LISTENING. The marker
is always stripped from the text that gets spoken or shown.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.pitchroom.config import PhaseThresholds

DEFAULT_CONFIDENCE = 50
EMPTY_REPLY_TEXT = "Hmm... give me a sec on that."

_CONFIDENCE_RE = re.compile(r"\[CONFIDENCE:(\d+)\]")
_DECISION_RE = re.compile(r"\[DECISION:(\w+)\]")
_STRIP_CONFIDENCE_RE = re.compile(r"\s*\[CONFIDENCE:[^\]]*\]\s*")
_STRIP_DECISION_RE = re.compile(r"\s*\[DECISION:[^\]]*\]\s*")


class InvestorDecision(str, Enum):
    LISTENING = "LISTENING"
    LEANING_IN = "LEANING_IN"
    INVEST = "INVEST"
    PASS = "PASS"


@dataclass(frozen=True)
class InvestorReply:
    text: str
    confidence: int
    decision: InvestorDecision


def clamp_confidence(value: object, default: int = DEFAULT_CONFIDENCE) -> int:
    """Coerce any reported confidence into [0, 100]; unusable values give `default`."""
    try:
        number = int(round(float(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return default
    return max(0, min(100, number))


def parse_decision(tag: Optional[str]) -> Optional[InvestorDecision]:
    if not tag:
        return None
    try:
        return InvestorDecision(tag.strip().upper())
    except ValueError:
        return None


def reconcile_decision(
    confidence: int,
    decision: InvestorDecision,
    thresholds: Optional[PhaseThresholds] = None,
) -> InvestorDecision:
    """
    Make the decision tag agree with the confidence number for this turn.

    High confidence lifts LISTENING/PASS to at least LEANING_IN; low
    confidence forces PASS. No state carries across turns.
    """
    thresholds = thresholds or PhaseThresholds()
    if confidence <= thresholds.fold_at:
        return InvestorDecision.PASS
    if confidence >= thresholds.invest_at and decision in (
        InvestorDecision.LISTENING,
        InvestorDecision.PASS,
    ):
        return InvestorDecision.LEANING_IN
    return decision


def strip_markers(raw: str) -> str:
    text = _STRIP_CONFIDENCE_RE.sub(" ", raw or "")
    text = _STRIP_DECISION_RE.sub(" ", text)
    return re.sub(r"[ \t]{2,}", " ", text).strip()


def parse_investor_reply(
    raw: str,
    thresholds: Optional[PhaseThresholds] = None,
) -> InvestorReply:
    """Split a raw model reply into spoken text, clamped confidence and reconciled decision."""
    raw = raw or ""

    confidence = DEFAULT_CONFIDENCE
    decision = InvestorDecision.LISTENING

    conf_match = _CONFIDENCE_RE.search(raw)
    if conf_match:
        confidence = clamp_confidence(conf_match.group(1))

    dec_match = _DECISION_RE.search(raw)
    if dec_match:
        decision = parse_decision(dec_match.group(1)) or InvestorDecision.LISTENING

    text = strip_markers(raw) or EMPTY_REPLY_TEXT

    return InvestorReply(
        text=text,
        confidence=confidence,
        decision=reconcile_decision(confidence, decision, thresholds),
    )
