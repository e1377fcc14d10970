from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from dictstore.domain.models import Entry, Example, Meaning
from dictstore.domain.normalization import normalize_headword
from dictstore.domain.part_of_speech import UNKNOWN_PART_OF_SPEECH


class InvalidEntryError(ValueError):
    """Raised when an entry payload does not have the expected structure."""


def validate_entry(entry: Entry) -> None:
    if not isinstance(entry.headword, str) or not entry.headword.strip():
        raise InvalidEntryError("Entry headword is required")
    if not isinstance(entry.meanings, (tuple, list)):
        raise InvalidEntryError("Entry meanings must be a list")
    for language in (entry.source_language, entry.target_language, entry.definition_language):
        if not isinstance(language, str) or not language.strip():
            raise InvalidEntryError("Entry languages are required")
    for meaning in entry.meanings:
        if not isinstance(meaning, Meaning):
            raise InvalidEntryError("Entry meanings must contain Meaning items")
        if not isinstance(meaning.examples, (tuple, list)):
            raise InvalidEntryError("Meaning examples must be a list")
        for example in meaning.examples:
            if not isinstance(example, Example):
                raise InvalidEntryError("Meaning examples must contain Example items")
            if not isinstance(example.sentence, str) or not example.sentence.strip():
                raise InvalidEntryError("Example sentence is required")


def parse_entry_payload(payload: Mapping[str, Any]) -> Entry:
    """Build an Entry from the JSON shape produced by the generation service."""
    if not isinstance(payload, Mapping):
        raise InvalidEntryError("Invalid entry payload: expected an object")

    headword = normalize_headword(str(payload.get("headword") or ""))
    if not headword:
        raise InvalidEntryError("Invalid entry payload: missing headword")

    meanings_raw = payload.get("meanings", [])
    if not isinstance(meanings_raw, list):
        raise InvalidEntryError("Invalid entry payload: meanings must be a list")

    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise InvalidEntryError("Invalid entry payload: metadata must be an object")

    context_sentence = _safe_optional_text(metadata.get("context_sentence"))
    entry = Entry(
        headword=headword,
        part_of_speech=_parse_part_of_speech_value(payload.get("part_of_speech")),
        source_language=str(metadata.get("source_language") or "").strip(),
        target_language=str(metadata.get("target_language") or "").strip(),
        definition_language=str(metadata.get("definition_language") or "").strip(),
        meanings=tuple(_parse_meaning(item) for item in meanings_raw),
        has_context=bool(metadata.get("has_context")) or context_sentence is not None,
        context_sentence=context_sentence,
    )
    validate_entry(entry)
    return entry


def entry_to_payload(entry: Entry) -> dict[str, Any]:
    part_of_speech: str | list[str]
    if isinstance(entry.part_of_speech, tuple):
        part_of_speech = list(entry.part_of_speech)
    else:
        part_of_speech = entry.part_of_speech
    return {
        "headword": entry.headword,
        "part_of_speech": part_of_speech,
        "metadata": {
            "source_language": entry.source_language,
            "target_language": entry.target_language,
            "definition_language": entry.definition_language,
            "has_context": entry.has_context,
            "context_sentence": entry.context_sentence,
        },
        "meanings": [
            {
                "definition": meaning.definition,
                "grammar": {
                    "noun_type": meaning.noun_type,
                    "verb_type": meaning.verb_type,
                    "comparison": meaning.comparison,
                },
                "examples": [
                    {
                        "sentence": example.sentence,
                        "translation": example.translation,
                        "is_context_sentence": example.is_context_sentence,
                    }
                    for example in meaning.examples
                ],
            }
            for meaning in entry.meanings
        ],
    }


def _parse_meaning(item: object) -> Meaning:
    if not isinstance(item, Mapping):
        raise InvalidEntryError("Invalid entry payload: malformed meaning")
    definition = str(item.get("definition") or "").strip()
    if not definition:
        raise InvalidEntryError("Invalid entry payload: meaning without definition")

    examples_raw = item.get("examples", [])
    if not isinstance(examples_raw, list):
        raise InvalidEntryError("Invalid entry payload: examples must be a list")

    grammar = item.get("grammar") or {}
    if not isinstance(grammar, Mapping):
        grammar = {}

    examples: list[Example] = []
    for example in examples_raw:
        if not isinstance(example, Mapping):
            raise InvalidEntryError("Invalid entry payload: malformed example")
        sentence = str(example.get("sentence") or "").strip()
        if not sentence:
            continue
        examples.append(
            Example(
                sentence=sentence,
                translation=_safe_optional_text(example.get("translation")),
                is_context_sentence=bool(example.get("is_context_sentence")),
            )
        )

    return Meaning(
        definition=definition,
        examples=tuple(examples),
        noun_type=_safe_optional_text(grammar.get("noun_type")),
        verb_type=_safe_optional_text(grammar.get("verb_type")),
        comparison=_safe_optional_text(grammar.get("comparison")),
    )


def _parse_part_of_speech_value(value: object) -> str | tuple[str, ...]:
    if isinstance(value, list):
        items = tuple(str(item).strip() for item in value if str(item).strip())
        return items or UNKNOWN_PART_OF_SPEECH
    return _safe_optional_text(value) or UNKNOWN_PART_OF_SPEECH


def _safe_optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
