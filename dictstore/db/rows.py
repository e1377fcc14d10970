from __future__ import annotations

from collections.abc import Hashable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from dictstore.db.backends import Backend, Row
from dictstore.db.schema import Statements
from dictstore.domain.models import Entry, Example, Meaning
from dictstore.domain.part_of_speech import parse_part_of_speech

# Keeps IN (...) lists below the embedded engine's bound-variable limit.
ENTRY_BATCH_SIZE = 500


def coerce_timestamp(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def page_window(page: int, page_size: int) -> tuple[int, int, int]:
    """Clamp a 1-based page request and return ``(page, page_size, offset)``."""
    page = max(1, int(page))
    page_size = max(1, int(page_size))
    return page, page_size, (page - 1) * page_size


def group_ordered(rows: Iterable[Row], key: str) -> dict[Hashable, list[Row]]:
    """Group rows by ``key`` keeping first-seen order; rows where it is NULL are dropped."""
    groups: dict[Hashable, list[Row]] = {}
    for row in rows:
        value = row.get(key)
        if value is None:
            continue
        groups.setdefault(value, []).append(row)
    return groups


def fold_entries(rows: Iterable[Row]) -> list[Entry]:
    return [_fold_entry(entry_rows) for entry_rows in group_ordered(rows, "id").values()]


def _fold_entry(rows: list[Row]) -> Entry:
    head = rows[0]
    meanings: list[Meaning] = []
    for meaning_id, meaning_rows in group_ordered(rows, "meaning_id").items():
        first = meaning_rows[0]
        meanings.append(
            Meaning(
                definition=first["definition"],
                examples=_fold_examples(meaning_id, meaning_rows),
                noun_type=first.get("noun_type"),
                verb_type=first.get("verb_type"),
                comparison=first.get("comparison"),
            )
        )
    return Entry(
        id=int(head["id"]),
        headword=head["headword"],
        part_of_speech=parse_part_of_speech(head.get("part_of_speech")),
        source_language=head["source_language"],
        target_language=head["target_language"],
        definition_language=head["definition_language"],
        meanings=tuple(meanings),
        has_context=bool(head.get("has_context")),
        context_sentence=head.get("context_sentence"),
        created_at=coerce_timestamp(head.get("created_at")),
        updated_at=coerce_timestamp(head.get("updated_at")),
    )


def _fold_examples(meaning_id: Hashable, rows: list[Row]) -> tuple[Example, ...]:
    seen: set[tuple[Hashable, str]] = set()
    examples: list[Example] = []
    for row in rows:
        sentence = row.get("sentence")
        if row.get("example_id") is None or not sentence:
            continue
        if (meaning_id, sentence) in seen:
            continue
        seen.add((meaning_id, sentence))
        examples.append(
            Example(
                sentence=sentence,
                translation=row.get("translation"),
                is_context_sentence=bool(row.get("is_context_sentence")),
            )
        )
    return tuple(examples)


async def load_entry_trees(
    backend: Backend, statements: Statements, entry_ids: Sequence[int]
) -> list[Entry]:
    """Fetch full entries for ``entry_ids`` with batched joins, preserving the given order."""
    ids = list(dict.fromkeys(int(entry_id) for entry_id in entry_ids))
    if not ids:
        return []
    rows: list[Row] = []
    for start in range(0, len(ids), ENTRY_BATCH_SIZE):
        chunk = ids[start : start + ENTRY_BATCH_SIZE]
        if len(chunk) == 1:
            statement = statements.entry_tree
        else:
            statement = backend.prepare(statements.entry_tree_query(len(chunk)))
        rows.extend(await backend.fetchall(statement, chunk))
    by_id = {entry.id: entry for entry in fold_entries(rows)}
    return [by_id[entry_id] for entry_id in ids if entry_id in by_id]


def scalar(value: Any, default: int = 0) -> int:
    return int(value) if value is not None else default
