from datetime import UTC, datetime

from dictstore.db.rows import coerce_timestamp, fold_entries, group_ordered, page_window


def _row(entry_id, meaning_id=None, definition=None, example_id=None, sentence=None, **extra):
    row = {
        "id": entry_id,
        "headword": f"word{entry_id}",
        "part_of_speech": '["noun", "verb"]',
        "source_language": "en",
        "target_language": "de",
        "definition_language": "en",
        "has_context": 0,
        "context_sentence": None,
        "created_at": "2026-02-19 12:00:00",
        "updated_at": None,
        "meaning_id": meaning_id,
        "definition": definition,
        "noun_type": None,
        "verb_type": None,
        "comparison": None,
        "example_id": example_id,
        "sentence": sentence,
        "translation": None,
        "is_context_sentence": 0,
    }
    row.update(extra)
    return row


def test_fold_groups_meanings_and_examples_in_row_order() -> None:
    rows = [
        _row(1, 10, "first", 100, "one"),
        _row(1, 10, "first", 101, "two"),
        _row(1, 11, "second"),
        _row(2),
    ]

    entries = fold_entries(rows)

    assert [entry.id for entry in entries] == [1, 2]
    first = entries[0]
    assert first.part_of_speech == ("noun", "verb")
    assert [meaning.definition for meaning in first.meanings] == ["first", "second"]
    assert [example.sentence for example in first.meanings[0].examples] == ["one", "two"]
    assert first.meanings[1].examples == ()
    assert entries[1].meanings == ()
    assert first.created_at == datetime(2026, 2, 19, 12, 0, tzinfo=UTC)


def test_fold_drops_duplicate_example_sentences_within_a_meaning() -> None:
    rows = [
        _row(1, 10, "first", 100, "same"),
        _row(1, 10, "first", 101, "same"),
        _row(1, 11, "second", 102, "same"),
    ]

    entry = fold_entries(rows)[0]

    assert len(entry.meanings[0].examples) == 1
    assert len(entry.meanings[1].examples) == 1


def test_group_ordered_skips_null_keys() -> None:
    groups = group_ordered([{"k": None}, {"k": 2}, {"k": 1}, {"k": 2}], "k")
    assert list(groups) == [2, 1]
    assert len(groups[2]) == 2


def test_coerce_timestamp_accepts_text_and_aware_values() -> None:
    aware = datetime(2026, 1, 1, tzinfo=UTC)
    assert coerce_timestamp(aware) is aware
    assert coerce_timestamp("2026-01-01 00:00:00") == aware
    assert coerce_timestamp("not a date") is None
    assert coerce_timestamp(None) is None


def test_page_window_clamps_invalid_requests() -> None:
    assert page_window(0, 0) == (1, 1, 0)
    assert page_window(3, 20) == (3, 20, 40)
