"""Tests for locating and extracting values in JSON and JSONC documents."""

from pathlib import Path

import pytest

from config_link.core.jsonc import JsonAdapter
from config_link.core.paths import parse_path
from config_link.models import Status, ValueKind


def _locate(source: str, path: str, adapter: JsonAdapter | None = None):
    adapter = adapter or JsonAdapter()
    parsed = adapter.parse(source)
    assert parsed.ok, parsed.error
    return adapter.locate_by_path(parsed.document, parse_path(path))


class TestObjectRoot:
    def test_first_segment_is_a_root_key(self, json_file: Path) -> None:
        source = json_file.read_text(encoding="utf-8")
        node = _locate(source, "server.port").node
        assert (node.kind, node.value, node.raw_text) == (ValueKind.NUMBER, 8080, "8080")

    def test_string_value_raw_text_keeps_quotes(self, json_file: Path) -> None:
        node = _locate(json_file.read_text(encoding="utf-8"), "server.host").node
        assert node.value == "localhost"
        assert node.raw_text == '"localhost"'

    def test_indices_are_zero_based(self, json_file: Path) -> None:
        source = json_file.read_text(encoding="utf-8")
        assert _locate(source, "features[0]").node.value == "chat"
        assert _locate(source, "items[1].name").node.value == "Bow"
        assert _locate(source, "features[2]").status is Status.KEY_NOT_FOUND

    def test_container_values(self, json_file: Path) -> None:
        node = _locate(json_file.read_text(encoding="utf-8"), "server").node
        assert node.kind is ValueKind.TABLE
        assert node.value == {"port": 8080, "host": "localhost"}

    def test_location(self, json_file: Path) -> None:
        location = _locate(json_file.read_text(encoding="utf-8"), "server.port").node.location
        assert location.start_line == 3
        assert location.start_column == 24

    def test_escaped_keys_and_values(self) -> None:
        node = _locate('{"x": {"a\\"b": "line\\nbreak"}}', 'x["a\\"b"]').node
        assert node.value == "line\nbreak"

    def test_literals(self) -> None:
        source = '{"on": true, "off": false, "none": null, "ratio": -1.5e2}'
        assert _locate(source, "on").node.kind is ValueKind.BOOLEAN
        assert _locate(source, "off").node.value is False
        none = _locate(source, "none").node
        assert (none.kind, none.value) == (ValueKind.NIL, None)
        assert _locate(source, "ratio").node.value == -150.0

    def test_missing_key(self) -> None:
        result = _locate('{"a": 1}', "b")
        assert result.status is Status.KEY_NOT_FOUND
        assert "'b'" in result.error

    def test_index_into_object_is_not_found(self) -> None:
        assert _locate('{"a": {"b": 1}}', "a[0]").status is Status.KEY_NOT_FOUND

    def test_key_into_array_is_not_found(self) -> None:
        assert _locate('{"a": [1]}', "a.b").status is Status.KEY_NOT_FOUND

    def test_duplicate_key_last_wins(self) -> None:
        source = '{"a": 1, "a": 2}'
        node = _locate(source, "a").node
        assert node.value == 2
        assert node.source_range.start == source.rindex("2")


class TestNonObjectRoot:
    def test_first_segment_names_the_document(self) -> None:
        source = '[{"name": "Sword"}, {"name": "Axe"}]'
        node = _locate(source, "Items[1].name").node
        assert node.value == "Axe"

    def test_any_root_name_is_accepted(self) -> None:
        assert _locate("[10, 20]", "Whatever[0]").node.value == 10

    def test_scalar_root(self) -> None:
        assert _locate("42", "Answer").node.value == 42


class TestJsonc:
    def test_comments_and_trailing_commas(self, json_file: Path) -> None:
        parsed = JsonAdapter().parse(json_file.read_text(encoding="utf-8"))
        assert parsed.ok

    def test_block_comment_between_tokens(self) -> None:
        assert _locate('{"a": /* one */ 1 /* two */}', "a").node.raw_text == "1"

    def test_leading_bom(self) -> None:
        assert _locate("\ufeff" + '{"a": 1}', "a").node.value == 1

    @pytest.mark.parametrize("source", ['{"a": }', '{"a" 1}', "{'a': 1}", '{"a": 1', "", '{"a": 01}'])
    def test_invalid_documents(self, source: str) -> None:
        parsed = JsonAdapter().parse(source)
        assert not parsed.ok
        assert parsed.error

    def test_nesting_limit(self) -> None:
        result = _locate('{"a": [[[[1]]]]}', "a", JsonAdapter(max_depth=2))
        assert result.status is Status.PARSE_ERROR


class TestExtractArrayRows:
    def test_rows_from_array_of_objects(self, json_file: Path) -> None:
        adapter = JsonAdapter()
        source = json_file.read_text(encoding="utf-8")
        node = _locate(source, "items", adapter).node
        rows = adapter.extract_array_rows(node)
        assert [row.data for row in rows] == [{"id": 1, "name": "Sword"}, {"id": 2, "name": "Bow"}]
        name_range = rows[1].ranges["name"]
        assert source[name_range.start : name_range.end] == '"Bow"'
        assert rows[0].location.start_line == 6

    def test_array_of_scalars_is_not_a_table(self, json_file: Path) -> None:
        adapter = JsonAdapter()
        node = _locate(json_file.read_text(encoding="utf-8"), "features", adapter).node
        assert adapter.extract_array_rows(node) is None

    def test_object_is_not_a_table(self) -> None:
        adapter = JsonAdapter()
        assert adapter.extract_array_rows(_locate('{"a": {"b": 1}}', "a", adapter).node) is None

    def test_empty_array(self) -> None:
        adapter = JsonAdapter()
        assert adapter.extract_array_rows(_locate('{"a": []}', "a", adapter).node) == []
