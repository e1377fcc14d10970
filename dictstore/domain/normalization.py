from __future__ import annotations

import re

from dictstore.constants import CONTEXT_KEY_SNIPPET_LENGTH

_WHITESPACE_RE = re.compile(r"\s+")
_LEMMA_EDGE_RE = re.compile(r"^[\s.,;:!?()]+|[\s.,;:!?()]+$")

LIKE_ESCAPE = "!"


def normalize_headword(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_term(text: str | None) -> str:
    if not text:
        return ""
    return normalize_headword(text)


def escape_like(text: str) -> str:
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def prefix_pattern(text: str) -> str:
    return f"{escape_like(text)}%"


def suffix_pattern(text: str) -> str:
    return f"%{escape_like(text)}"


def contains_pattern(text: str) -> str:
    return f"%{escape_like(text)}%"


def contextual_cache_key(word: str, context_sentence: str | None) -> str:
    context = (context_sentence or "").strip()
    if not context:
        return word
    return f"{word}|{context[:CONTEXT_KEY_SNIPPET_LENGTH]}"


def clean_lemma(raw: str | None, fallback: str) -> str:
    text = (raw or "").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        text = text[1:-1]
    text = _LEMMA_EDGE_RE.sub("", text).strip()
    return text or fallback
