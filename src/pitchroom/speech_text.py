"""
Text clean-up applied before synthesis so TTS engines produce natural prosody.
"""

from __future__ import annotations

import re

# "$15000" / "$15,000" / "$1500000" / "$1,500,000"
_CURRENCY_RE = re.compile(r"\$(\d{1,3}(?:,\d{3}){1,2}|\d{4,7})(?![\d,]*\d)")
_ELLIPSIS_RE = re.compile(r"(?:\.{3}|…)")
_EM_DASH_RE = re.compile(r"\s*—\s*")
_SPACES_RE = re.compile(r"\s{2,}")
_TERMINAL_RE = re.compile(r"[.!?]$")


def _expand_currency(match: re.Match[str]) -> str:
    amount = int(match.group(1).replace(",", ""))
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.1f}M"
    if amount >= 1000:
        return f"${(amount + 500) // 1000}K"
    return f"${amount}"


def prepare_for_speech(text: str) -> str:
    """
    Make text sound human when spoken.

    - "$15000" -> "$15K", "$1500000" -> "$1.5M"
    - ellipses get breathing room for the pause
    - em dashes get a micro-pause
    - repeated whitespace collapsed
    - always ends with terminal punctuation
    """
    t = text or ""

    t = _CURRENCY_RE.sub(_expand_currency, t)
    t = _ELLIPSIS_RE.sub("... ", t)
    t = _EM_DASH_RE.sub(" — ", t)
    t = _SPACES_RE.sub(" ", t)

    t = t.strip()
    if t and not _TERMINAL_RE.search(t):
        t += "."

    return t
