"""Token-overlap and context-overlap similarity measures."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_NON_WORD = re.compile(r"[^\w\s]", flags=re.UNICODE)

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "from", "up", "about", "into", "through", "during", "before",
        "after", "above", "below", "between", "among", "can", "could", "should",
        "would", "will", "shall", "may", "might", "must", "how", "what", "when",
        "where", "why", "who", "which", "this", "that", "these", "those",
    }
)


def tokenize(text: str) -> set[str]:
    """Lower-case content words longer than two characters."""
    cleaned = _NON_WORD.sub(" ", text.lower())
    return {
        token
        for token in cleaned.split()
        if len(token) > 2 and token not in STOP_WORDS
    }


def question_similarity(a: str, b: str) -> float:
    """Dice coefficient over content-word sets; 0.0 when either side is empty."""
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    score = (2 * len(tokens_a & tokens_b)) / (len(tokens_a) + len(tokens_b))
    return max(0.0, min(score, 1.0))


def context_similarity(a: Mapping[str, Any] | None, b: Mapping[str, Any] | None) -> float:
    """Share of keys carrying equal values, over the larger key set."""
    a = a or {}
    b = b or {}
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    matching = sum(1 for key, value in a.items() if key in b and b[key] == value)
    return matching / max(len(a), len(b))
