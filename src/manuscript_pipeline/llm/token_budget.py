# src/manuscript_pipeline/llm/token_budget.py — v1
"""Token estimation, prompt excerpting and request ids.

Input tokens are estimated at 1.3 tokens per word; the output side is
bounded by the stage's max_tokens. The estimate feeds the analyzer's
budget preflight.
"""

from __future__ import annotations

import hashlib
import math

TOKENS_PER_WORD = 1.3

OMITTED_MIDDLE_MARKER = "\n\n[... middle section omitted for analysis ...]\n\n"
OMITTED_END_MARKER = "\n\n[... content omitted ...]\n\n"


def count_words(text: str) -> int:
    return len(text.split())


def estimate_tokens(text: str) -> int:
    """Estimated token count of a text (1.3 tokens per word, rounded up)."""
    return math.ceil(count_words(text) * TOKENS_PER_WORD)


def estimate_call_tokens(prompt: str, system: str | None, max_output_tokens: int) -> tuple[int, int]:
    """Return (estimated input tokens, output bound) for one call."""
    input_tokens = estimate_tokens(prompt) + (estimate_tokens(system) if system else 0)
    return input_tokens, max_output_tokens


def request_id(report_id: str, stage_id: str, attempt: int, section: int | None = None) -> str:
    """Deterministic idempotency key for one stage attempt (or one of its sections)."""
    identity = f"{report_id}:{stage_id}:{attempt}"
    if section is not None:
        identity += f":s{section}"
    digest = hashlib.sha256(identity.encode("utf-8"))
    return digest.hexdigest()[:32]


def balanced_excerpt(text: str, max_chars: int = 100_000) -> str:
    """Shorten a long text to about max_chars keeping its shape.

    Keeps the first 40%, a centered 20% slice and the last 40% of the
    allowance. Texts within the allowance are returned unchanged.
    """
    if len(text) <= max_chars:
        return text

    first = int(max_chars * 0.4)
    middle = int(max_chars * 0.2)
    last = int(max_chars * 0.4)
    center = len(text) // 2
    start = center - middle // 2

    return (
        text[:first]
        + OMITTED_MIDDLE_MARKER
        + text[start:start + middle]
        + OMITTED_END_MARKER
        + text[len(text) - last:]
    )


def head_excerpt(text: str, max_chars: int = 5_000) -> str:
    """Opening of the manuscript, used as context by asset stages."""
    return text[:max_chars]
