"""Deterministic token estimation.

A character-count proxy, not a real tokenizer: roughly four characters per
token for Latin text and 1.5 characters per token for CJK, plus a fixed
per-message overhead.
"""

import json
import re
from typing import Any, Dict, Iterable

__all__ = ["estimate_tokens", "estimate_message_tokens", "estimate_messages_tokens"]

MESSAGE_OVERHEAD = 4

_CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")


def estimate_tokens(text: str) -> int:
    """Estimate token count for text."""
    if not text:
        return 0
    return _heuristic_estimate(text)


def _heuristic_estimate(text: str) -> int:
    """Heuristic token estimation for mixed CJK/English text."""
    cjk_chars = len(_CJK_RE.findall(text))
    non_cjk = len(text) - cjk_chars

    # English: ~4 chars per token
    # CJK: ~1.5 chars per token
    return max(1, int(non_cjk / 4 + cjk_chars / 1.5))


def estimate_message_tokens(msg: Dict[str, Any]) -> int:
    """Estimate tokens for one chat-completions message dict."""
    tokens = MESSAGE_OVERHEAD

    content = msg.get("content", "") or ""
    tokens += estimate_tokens(content)

    if msg.get("tool_calls"):
        try:
            tokens += estimate_tokens(json.dumps(msg["tool_calls"], ensure_ascii=False))
        except (TypeError, ValueError):
            tokens += 100  # fallback estimate

    return tokens


def estimate_messages_tokens(messages: Iterable[Dict[str, Any]]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)
