from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

PartOfSpeech = str | tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Example:
    sentence: str
    translation: str | None = None
    is_context_sentence: bool = False


@dataclass(frozen=True, slots=True)
class Meaning:
    definition: str
    examples: tuple[Example, ...] = ()
    noun_type: str | None = None
    verb_type: str | None = None
    comparison: str | None = None


@dataclass(frozen=True, slots=True)
class Entry:
    headword: str
    part_of_speech: PartOfSpeech
    source_language: str
    target_language: str
    definition_language: str
    meanings: tuple[Meaning, ...] = ()
    has_context: bool = False
    context_sentence: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def context_key(self) -> str:
        return self.context_sentence or ""


@dataclass(frozen=True, slots=True)
class LemmaCacheItem:
    word: str
    lemma: str
    target_language: str


@dataclass(frozen=True, slots=True)
class LanguageSet:
    source_languages: tuple[str, ...] = ()
    target_languages: tuple[str, ...] = ()
    definition_languages: tuple[str, ...] = ()
