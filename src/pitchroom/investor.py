"""
The investor agent: one chat turn in, one parsed reply out.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from src.pitchroom.config import PhaseThresholds
from src.pitchroom.llm import ChatModel
from src.pitchroom.markers import InvestorReply, parse_investor_reply
from src.pitchroom.prompts import CONFIDENCE_INSTRUCTION, INVESTOR_SYSTEM_PROMPT

logger = structlog.get_logger(__name__)


class InvestorReplyError(Exception):
    """Raised when the language-model call for an investor reply fails."""


def build_messages(user_message: str, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    """History plus the new user turn, with the marker instruction on that last turn."""
    messages = [{"role": m["role"], "content": m["content"]} for m in history]
    messages.append({"role": "user", "content": user_message + CONFIDENCE_INSTRUCTION})
    return messages


class InvestorAgent:
    def __init__(
        self,
        llm: Optional[ChatModel] = None,
        thresholds: Optional[PhaseThresholds] = None,
        config: Optional[Any] = None,
    ):
        self._llm = llm or ChatModel(config)
        self._thresholds = thresholds or PhaseThresholds()

    async def reply(self, user_message: str, history: Sequence[Dict[str, str]]) -> InvestorReply:
        """
        Ask the investor for its next line.

        `history` holds the turns before `user_message`. Raises
        InvestorReplyError on any model failure.
        """
        messages = build_messages(user_message, history)
        try:
            response = await self._llm.complete(messages, system_prompt=INVESTOR_SYSTEM_PROMPT)
        except Exception as e:
            logger.error("Investor reply failed", error_type=type(e).__name__, error=str(e))
            raise InvestorReplyError(str(e) or type(e).__name__) from e

        reply = parse_investor_reply(response.text, self._thresholds)
        logger.info(
            "Investor replied",
            confidence=reply.confidence,
            decision=reply.decision.value,
            text=reply.text[:80],
            total_ms=round(response.total_ms, 1),
        )
        return reply
