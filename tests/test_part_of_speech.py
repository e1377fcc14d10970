from dictstore.domain.part_of_speech import (
    count_parts_of_speech,
    parse_part_of_speech,
    serialize_part_of_speech,
)


def test_single_value_is_stored_as_plain_text() -> None:
    assert serialize_part_of_speech(" noun ") == "noun"
    assert parse_part_of_speech("noun") == "noun"


def test_multiple_values_round_trip_through_json() -> None:
    stored = serialize_part_of_speech(("noun", "verb"))
    assert stored == '["noun", "verb"]'
    assert parse_part_of_speech(stored) == ("noun", "verb")


def test_missing_or_malformed_values() -> None:
    assert serialize_part_of_speech(None) == "unknown"
    assert parse_part_of_speech(None) == "unknown"
    assert parse_part_of_speech("[not json") == "[not json"


def test_breakdown_counts_each_member_of_multi_value_fields() -> None:
    breakdown = count_parts_of_speech([("noun", 2), ('["noun", "verb"]', 1), ("adjective", 1)])
    assert breakdown == {"noun": 3, "verb": 1, "adjective": 1}
