from sitesync.data.json_repair import (
    MODE_EMPTY,
    MODE_NOT_ARRAY,
    MODE_REPAIRED,
    MODE_SALVAGED,
    MODE_STRICT,
    decode_json_array,
    extract_complete_objects,
    reclose_array,
)


def test_strict_array_is_returned_as_is():
    items, mode = decode_json_array('[{"a": 1}, {"a": 2}]')
    assert items == [{"a": 1}, {"a": 2}]
    assert mode == MODE_STRICT


def test_trailing_comma_is_repaired():
    items, mode = decode_json_array('[{"a":1},{"a":2},')
    assert items == [{"a": 1}, {"a": 2}]
    assert mode == MODE_REPAIRED


def test_missing_closing_bracket_is_repaired():
    items, mode = decode_json_array('[{"a":1},{"a":2}\n')
    assert items == [{"a": 1}, {"a": 2}]
    assert mode == MODE_REPAIRED


def test_incomplete_trailing_object_is_dropped():
    body = '[{"id": 1, "name": "Berlin"},\n {"id": 2, "name": "Bonn"},\n {"id": 3, "na'
    items, mode = decode_json_array(body)
    assert [i["id"] for i in items] == [1, 2]
    assert mode == MODE_SALVAGED


def test_malformed_middle_object_is_discarded():
    body = '[{"a": 1}, {"a": oops}, {"a": 3}]'
    items, mode = decode_json_array(body)
    assert items == [{"a": 1}, {"a": 3}]
    assert mode == MODE_SALVAGED


def test_nested_objects_and_braces_in_strings_survive_salvage():
    body = '[{"a": {"b": 2}, "s": "x}{y"}, {"c": "quote \\" }"}, {"d": '
    items, _mode = decode_json_array(body)
    assert items == [{"a": {"b": 2}, "s": "x}{y"}, {"c": 'quote " }'}]


def test_empty_and_blank_bodies():
    assert decode_json_array("") == ([], MODE_EMPTY)
    assert decode_json_array(None) == ([], MODE_EMPTY)
    assert decode_json_array("   \n") == ([], MODE_EMPTY)
    assert decode_json_array("[]") == ([], MODE_STRICT)


def test_non_object_items_are_ignored():
    assert decode_json_array('[1, "x", {"a": 1}, null]')[0] == [{"a": 1}]


def test_unparseable_text_yields_empty_list():
    assert decode_json_array("<html>Bad Gateway</html>")[0] == []


def test_reclose_array():
    assert reclose_array('[{"a":1},  ') == '[{"a":1}]'
    assert reclose_array('[{"a":1}, ') == '[{"a":1}]'
    assert reclose_array('[{"a":1}]') == '[{"a":1}]'


def test_extract_complete_objects_ignores_stray_closing_braces():
    assert extract_complete_objects('} {"a": 1} }') == [{"a": 1}]


def test_error_envelope_is_not_read_as_records():
    assert decode_json_array('{"error": "unauthorized", "status": 401}') == ([], MODE_NOT_ARRAY)
    assert decode_json_array('"maintenance"') == ([], MODE_NOT_ARRAY)
