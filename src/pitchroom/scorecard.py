"""
Scorecard requestor.

Formats the finished transcript as a speaker-prefixed log, asks the evaluator
agent for a scorecard, and parses the first top-level JSON object out of its
raw reply. Parse failures keep the raw text for diagnostics.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.pitchroom.llm import ChatModel
from src.pitchroom.prompts import EVALUATOR_SYSTEM_PROMPT, SCORECARD_REQUEST_TEMPLATE

logger = structlog.get_logger(__name__)

SCORE_DIMENSIONS = (
    "clarity",
    "customer_pain",
    "solution_fit",
    "proof",
    "growth_wedge",
    "retention",
    "pricing_unit_econ",
    "competition_moat",
    "founder_strength",
    "speed_of_iteration",
)


class ScorecardParseError(Exception):
    """The evaluator's reply did not contain a usable scorecard object."""

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


class ScorecardScores(BaseModel):
    """Per-dimension scores, 0-10. Out-of-range values are clamped."""

    clarity: float = 0
    customer_pain: float = 0
    solution_fit: float = 0
    proof: float = 0
    growth_wedge: float = 0
    retention: float = 0
    pricing_unit_econ: float = 0
    competition_moat: float = 0
    founder_strength: float = 0
    speed_of_iteration: float = 0

    @field_validator(*SCORE_DIMENSIONS, mode="after")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return max(0.0, min(10.0, value))

    def average(self) -> float:
        values = [getattr(self, name) for name in SCORE_DIMENSIONS]
        return round(sum(values) / len(values), 1)


class ScorecardRisk(BaseModel):
    risk: str = ""
    evidence_quote: str = ""
    fix: str = ""


class YCFeedback(BaseModel):
    what_i_believe_you_are_building: str = ""
    what_i_need_to_believe_next: List[str] = Field(default_factory=list)
    next_7_days: List[str] = Field(default_factory=list)


class Scorecard(BaseModel):
    """Structured evaluation of one pitch conversation."""

    one_sentence: str = ""
    scores: ScorecardScores = Field(default_factory=ScorecardScores)
    top_strengths: List[str] = Field(default_factory=list)
    top_risks: List[ScorecardRisk] = Field(default_factory=list)
    yc_style_feedback: YCFeedback = Field(default_factory=YCFeedback)

    @property
    def average_score(self) -> float:
        return self.scores.average()

    def to_dict(self) -> dict:
        data = self.model_dump()
        data["average_score"] = self.average_score
        return data


@dataclass
class ScorecardResult:
    """Outcome of a scorecard request; exactly one of scorecard/error is set."""

    scorecard: Optional[Scorecard] = None
    error: Optional[str] = None
    raw: Optional[str] = None
    latency_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @property
    def success(self) -> bool:
        return self.scorecard is not None


def _entry_field(entry: Any, name: str, default: Any = None) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name, default)
    return getattr(entry, name, default)


def format_transcript(entries: Iterable[Any]) -> str:
    """`speaker: text` lines for every finalized entry, in order."""
    lines = []
    for entry in entries:
        if _entry_field(entry, "is_interim", False) or _entry_field(entry, "isInterim", False):
            continue
        speaker = _entry_field(entry, "speaker", "user")
        speaker = getattr(speaker, "value", speaker)
        text = (_entry_field(entry, "text", "") or "").strip()
        if text:
            lines.append(f"{speaker}: {text}")
    return "\n".join(lines)


def _balanced_end(text: str, start: int) -> int:
    """Index just past the `}` closing the `{` at `start`, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def extract_json_block(text: str) -> Optional[dict]:
    """Return the first top-level `{...}` block in `text` that parses as a JSON object."""
    pos = 0
    while True:
        start = text.find("{", pos)
        if start < 0:
            return None
        end = _balanced_end(text, start)
        if end < 0:
            return None
        try:
            data = json.loads(text[start:end])
        except ValueError:
            pos = start + 1
            continue
        if isinstance(data, dict):
            return data
        pos = end


def parse_scorecard(raw: str) -> Scorecard:
    """Raises ScorecardParseError (carrying `raw`) when no scorecard can be read."""
    raw = raw or ""
    data = extract_json_block(raw)
    if data is None:
        raise ScorecardParseError("No JSON object found in evaluator response", raw)
    try:
        return Scorecard.model_validate(data)
    except ValidationError as e:
        raise ScorecardParseError(f"Scorecard has unexpected shape: {e.error_count()} errors", raw) from e


class ScorecardRequestor:
    def __init__(self, llm: Optional[ChatModel] = None, config: Optional[Any] = None):
        self._llm = llm or ChatModel(config)

    async def generate(self, transcript: Iterable[Any]) -> Scorecard:
        """Evaluate the transcript; raises ScorecardParseError or the model's error."""
        formatted = format_transcript(transcript)
        response = await self._llm.complete(
            [{"role": "user", "content": SCORECARD_REQUEST_TEMPLATE.format(transcript=formatted)}],
            system_prompt=EVALUATOR_SYSTEM_PROMPT,
        )
        return parse_scorecard(response.text)

    async def request(self, transcript: Iterable[Any]) -> ScorecardResult:
        """Like generate(), but failures come back as a result instead of raising."""
        start_time = time.time()
        try:
            scorecard = await self.generate(transcript)
        except ScorecardParseError as e:
            logger.error("Failed to parse scorecard", error=str(e), raw=e.raw[:200])
            return ScorecardResult(
                error="Failed to parse scorecard",
                raw=e.raw,
                latency_ms=(time.time() - start_time) * 1000,
            )
        except Exception as e:
            logger.error("Scorecard request failed", error_type=type(e).__name__, error=str(e))
            return ScorecardResult(
                error="Failed to generate scorecard",
                latency_ms=(time.time() - start_time) * 1000,
            )

        latency_ms = (time.time() - start_time) * 1000
        logger.info(
            "Scorecard generated",
            average_score=scorecard.average_score,
            latency_ms=round(latency_ms, 1),
        )
        return ScorecardResult(scorecard=scorecard, latency_ms=latency_ms)
