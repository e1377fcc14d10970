from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from dictstore.config import Settings
from dictstore.domain.models import Entry, Example, Meaning
from dictstore.services.dictionary_store import DictionaryStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 2, 19, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(database_path=tmp_path / "data" / "dictionary.db")


@pytest.fixture
def make_store(settings: Settings, clock: FakeClock) -> Callable[[], DictionaryStore]:
    def factory() -> DictionaryStore:
        return DictionaryStore.from_settings(settings, clock=clock)

    return factory


@pytest.fixture
def make_entry() -> Callable[..., Entry]:
    def factory(
        headword: str,
        *,
        source_language: str = "en",
        target_language: str = "de",
        part_of_speech: str | tuple[str, ...] = "noun",
        definitions: tuple[str, ...] = ("a definition",),
        examples: tuple[Example, ...] = (),
        context_sentence: str | None = None,
    ) -> Entry:
        meanings = tuple(
            Meaning(definition=definition, examples=examples if index == 0 else ())
            for index, definition in enumerate(definitions)
        )
        return Entry(
            headword=headword,
            part_of_speech=part_of_speech,
            source_language=source_language,
            target_language=target_language,
            definition_language="en",
            meanings=meanings,
            has_context=context_sentence is not None,
            context_sentence=context_sentence,
        )

    return factory
