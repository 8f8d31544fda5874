"""Output sanitization for raw model text.

Models served through OpenAI-compatible endpoints (llama.cpp, LM Studio,
vLLM, ...) regularly leak chat-template tokens, wrap the answer in quotes or
prefix it with a lead-in like "Here is the translation:". ``sanitize`` removes
those artifacts in three ordered steps:

1. chat-template / special-token removal and whitespace collapsing
2. one layer of wrapping quotes, only when the inner text does not use them
3. lead-in boilerplate

The steps are repeated until the text stops changing, so the function is
idempotent. Every step only ever shortens the text, which bounds the loop.
"""

from __future__ import annotations

import re
from typing import List, Tuple

_CHAT_TEMPLATE_PATTERNS: List[re.Pattern[str]] = [
    # ChatML
    re.compile(r"<\|im_start\|>(?:system|user|assistant)?", re.IGNORECASE),
    re.compile(r"<\|im_end\|>", re.IGNORECASE),
    # Llama 2 / Mistral
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"\[/INST\]", re.IGNORECASE),
    re.compile(r"<</?SYS>>", re.IGNORECASE),
    re.compile(r"</?s>", re.IGNORECASE),
    # Llama 3 and generic special tokens
    re.compile(r"<\|endoftext\|>", re.IGNORECASE),
    re.compile(r"<\|end\|>", re.IGNORECASE),
    re.compile(r"<\|eot_id\|>", re.IGNORECASE),
    re.compile(
        r"<\|start_header_id\|>(?:system|user|assistant)?<\|end_header_id\|>",
        re.IGNORECASE,
    ),
    re.compile(r"<\|begin_of_text\|>", re.IGNORECASE),
    re.compile(r"<\|end_of_text\|>", re.IGNORECASE),
    re.compile(r"<\|(?:system|user|assistant|human|bot)\|>", re.IGNORECASE),
    # Any remaining <|...|> token, e.g. <|plamo:op|>
    re.compile(r"<\|[a-z0-9_:.\-]+\|>", re.IGNORECASE),
]

# Half-arrived tokens at the very end of the output.
_INCOMPLETE_TAIL_PATTERNS: List[re.Pattern[str]] = [
    re.compile(r"<\|im_start$", re.IGNORECASE),
    re.compile(r"<\|im_$", re.IGNORECASE),
    re.compile(r"<\|$"),
    re.compile(r"\[INST$", re.IGNORECASE),
    re.compile(r"<<SYS$", re.IGNORECASE),
]

# Only complete, unambiguous tokens are removed from single streaming chunks.
_CHUNK_SAFE_PATTERNS: List[re.Pattern[str]] = [
    re.compile(r"<\|im_start\|>(?:system|user|assistant)", re.IGNORECASE),
    re.compile(r"<\|im_end\|>", re.IGNORECASE),
    re.compile(r"<\|endoftext\|>", re.IGNORECASE),
    re.compile(r"<\|eot_id\|>", re.IGNORECASE),
]

_WRAPPING_QUOTES: List[Tuple[str, str]] = [
    ('"', '"'),
    ("'", "'"),
    ("「", "」"),
    ("『", "』"),
    ("“", "”"),
    ("‘", "’"),
]

_LEAD_IN_PATTERNS: List[re.Pattern[str]] = [
    re.compile(
        r"^Here(?:'s|\s+is)\s+(?:the\s+)?translation(?:\s+(?:in|into)\s+[A-Za-z]+)?\s*[:：]?\s*",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:The\s+)?translation(?:\s+is)?\s*[:：]\s*", re.IGNORECASE),
    re.compile(r"^Translated\s+text\s*[:：]\s*", re.IGNORECASE),
    re.compile(r"^翻訳(?:結果)?(?:は)?[:：]\s*"),
    re.compile(r"^以下(?:が|は)翻訳(?:結果)?(?:です)?[:：。]?\s*"),
]

_MULTI_NEWLINE = re.compile(r"\n{3,}")
_MULTI_SPACE = re.compile(r" {2,}")


def remove_chat_template_tokens(text: str) -> str:
    result = text
    while True:
        previous = result
        for pattern in _CHAT_TEMPLATE_PATTERNS:
            result = pattern.sub("", result)
        for pattern in _INCOMPLETE_TAIL_PATTERNS:
            result = pattern.sub("", result)
        # removing one token can splice the halves of another together
        if result == previous:
            break
    result = _MULTI_NEWLINE.sub("\n\n", result)
    result = _MULTI_SPACE.sub(" ", result)
    return result.strip()


def contains_chat_template_tokens(text: str) -> bool:
    return any(pattern.search(text) for pattern in _CHAT_TEMPLATE_PATTERNS)


def remove_wrapping_quotes(text: str) -> str:
    trimmed = text.strip()
    if len(trimmed) < 2:
        return text
    for open_quote, close_quote in _WRAPPING_QUOTES:
        if trimmed.startswith(open_quote) and trimmed.endswith(close_quote):
            inner = trimmed[1:-1]
            if open_quote not in inner and close_quote not in inner:
                return inner
            return text
    return text


def remove_lead_ins(text: str) -> str:
    result = text
    for pattern in _LEAD_IN_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


def _sanitize_once(text: str) -> str:
    result = remove_chat_template_tokens(text)
    result = remove_wrapping_quotes(result)
    return remove_lead_ins(result)


def sanitize(text: str) -> str:
    """Return ``text`` with template artifacts, wrapping quotes and lead-ins removed."""
    if not text:
        return ""
    result = _sanitize_once(text)
    while True:
        cleaned = _sanitize_once(result)
        if cleaned == result:
            return result
        result = cleaned


def sanitize_chunk(chunk: str) -> str:
    """Light cleanup for one streaming chunk.

    Partial tokens are left alone; ``sanitize`` runs on the accumulated text
    once the stream ends.
    """
    result = chunk
    for pattern in _CHUNK_SAFE_PATTERNS:
        result = pattern.sub("", result)
    return result
