"""Tests for argument name mapping and value coercion."""

import pytest

from toolwire.compiler import DEFAULT_TOOL_SPECS, ToolSpec
from toolwire.compiler.parameters import coerce_value, map_parameters


class TestNames:
    def test_exact_names_untouched(self):
        mapping = map_parameters({"path": "a.py"}, DEFAULT_TOOL_SPECS["read_file"])
        assert mapping.arguments == {"path": "a.py"}
        assert not mapping.changed

    @pytest.mark.parametrize("key", ["file", "file_path", "filePath", "FILENAME", "target-file"])
    def test_path_aliases(self, key):
        mapping = map_parameters({key: "a.py"}, DEFAULT_TOOL_SPECS["read_file"])
        assert mapping.arguments == {"path": "a.py"}
        assert mapping.renamed == [(key, "path")]

    def test_case_insensitive_name(self):
        mapping = map_parameters({"Path": "src"}, DEFAULT_TOOL_SPECS["list_directory"])
        assert mapping.arguments == {"path": "src"}

    def test_directory_alias(self):
        mapping = map_parameters({"directory": "src"}, DEFAULT_TOOL_SPECS["list_directory"])
        assert mapping.arguments == {"path": "src"}

    def test_write_file_content_alias(self):
        mapping = map_parameters({"file": "a.txt", "text": "hi"},
                                 DEFAULT_TOOL_SPECS["write_file"])
        assert mapping.arguments == {"path": "a.txt", "content": "hi"}

    def test_alias_ignored_when_target_supplied(self):
        mapping = map_parameters({"path": "a.py", "file": "b.py"},
                                 DEFAULT_TOOL_SPECS["read_file"])
        assert mapping.arguments == {"path": "a.py", "file": "b.py"}
        assert mapping.renamed == []

    def test_alias_needs_declared_target(self):
        mapping = map_parameters({"cmd": "ls"}, DEFAULT_TOOL_SPECS["read_file"])
        assert mapping.arguments == {"cmd": "ls"}

    def test_unknown_tool_passes_through(self):
        assert map_parameters({"File": 1}, None).arguments == {"File": 1}
        assert map_parameters(None, ToolSpec()).arguments == {}

    def test_optional_names_resolved(self):
        spec = ToolSpec(("path",), {}, ("encoding",))
        mapping = map_parameters({"path": "a", "Encoding": "utf-8"}, spec)
        assert mapping.arguments == {"path": "a", "encoding": "utf-8"}


class TestCoercion:
    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("False", False), ("yes", True), ("0", False), (1, True),
    ])
    def test_bool(self, raw, expected):
        assert coerce_value(raw, bool) is expected

    def test_bool_unrecognised_word_kept(self):
        assert coerce_value("maybe", bool) == "maybe"

    @pytest.mark.parametrize("raw, expected", [("3", 3), (" 42 ", 42), ("7.0", 7), (5.0, 5)])
    def test_int(self, raw, expected):
        value = coerce_value(raw, int)
        assert value == expected
        assert type(value) is int

    def test_int_keeps_fractions_and_bools(self):
        assert coerce_value("2.5", int) == "2.5"
        assert coerce_value(True, int) is True

    def test_str_from_number(self):
        assert coerce_value(12, str) == "12"

    def test_list_from_json_or_commas(self):
        assert coerce_value('["a", "b"]', list) == ["a", "b"]
        assert coerce_value("a, b", list) == ["a", "b"]

    def test_dict_from_json(self):
        assert coerce_value('{"k": 1}', dict) == {"k": 1}
        assert coerce_value("not json", dict) == "not json"

    def test_mapping_reports_coercion(self):
        mapping = map_parameters({"path": ".", "recursive": "true"},
                                 DEFAULT_TOOL_SPECS["list_directory"])
        assert mapping.arguments == {"path": ".", "recursive": True}
        assert mapping.coerced == ["recursive"]
        assert mapping.describe() == "recursive coerced"
