from __future__ import annotations

import json
from collections.abc import Iterable

from dictstore.domain.models import PartOfSpeech

UNKNOWN_PART_OF_SPEECH = "unknown"


def serialize_part_of_speech(value: PartOfSpeech | list[str] | None) -> str:
    if value is None:
        return UNKNOWN_PART_OF_SPEECH
    if isinstance(value, str):
        return value.strip() or UNKNOWN_PART_OF_SPEECH
    items = [str(item).strip() for item in value if str(item).strip()]
    return json.dumps(items, ensure_ascii=False)


def parse_part_of_speech(raw: str | None) -> PartOfSpeech:
    if not raw:
        return UNKNOWN_PART_OF_SPEECH
    text = raw.strip()
    if not text.startswith("["):
        return text
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    if not isinstance(parsed, list):
        return text
    return tuple(str(item) for item in parsed)


def expand_part_of_speech(raw: str | None) -> tuple[str, ...]:
    parsed = parse_part_of_speech(raw)
    if isinstance(parsed, tuple):
        return parsed
    return (parsed,)


def count_parts_of_speech(rows: Iterable[tuple[str | None, int]]) -> dict[str, int]:
    """Histogram over stored values, counting every member of multi-value fields."""
    breakdown: dict[str, int] = {}
    for raw, count in rows:
        for item in expand_part_of_speech(raw):
            breakdown[item] = breakdown.get(item, 0) + int(count)
    return breakdown
