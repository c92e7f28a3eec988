"""Tests for accumulation of vendor-native streamed tool calls."""

from types import SimpleNamespace

from toolwire.decoding import NativeToolCallAccumulator
from toolwire.models import CallOrigin


def _delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=call_id,
                           function=SimpleNamespace(name=name, arguments=arguments))


class TestNativeToolCallAccumulator:
    def test_fragments_assembled(self):
        acc = NativeToolCallAccumulator()
        acc.add_delta([_delta(0, "call_1", "read_file", '{"pa')])
        acc.add_delta([_delta(0, arguments='th": "a.py"}')])
        calls = acc.completed_calls()
        assert len(calls) == 1
        assert calls[0].call_id == "call_1"
        assert calls[0].tool_id == "read_file"
        assert calls[0].parameters == {"path": "a.py"}
        assert calls[0].origin == CallOrigin.STREAMING

    def test_parallel_calls_in_index_order(self):
        acc = NativeToolCallAccumulator(origin=CallOrigin.COMPILED)
        acc.add_chunk(1, call_id="b", name="list_directory", arguments='{"path": "."}')
        acc.add_chunk(0, call_id="a", name="read_file", arguments='{"path": "x"}')
        calls = acc.completed_calls()
        assert [c.call_id for c in calls] == ["a", "b"]
        assert all(c.origin == CallOrigin.COMPILED for c in calls)

    def test_truncated_arguments_repaired(self):
        acc = NativeToolCallAccumulator()
        acc.add_chunk(0, name="search_files", arguments='{"pattern": "TODO", "path": "src')
        assert acc.completed_calls()[0].parameters == {"pattern": "TODO", "path": "src"}

    def test_unrepairable_arguments_kept_raw(self):
        acc = NativeToolCallAccumulator()
        acc.add_chunk(0, name="bash_command", arguments="ls -la")
        assert acc.completed_calls()[0].parameters == {"_raw": "ls -la"}

    def test_empty_arguments(self):
        acc = NativeToolCallAccumulator()
        acc.add_chunk(0, name="list_directory")
        assert acc.completed_calls()[0].parameters == {}

    def test_missing_name_skipped(self):
        acc = NativeToolCallAccumulator()
        acc.add_chunk(0, arguments='{"path": "."}')
        assert acc.completed_calls() == []
        assert len(acc) == 1

    def test_generated_call_id(self):
        acc = NativeToolCallAccumulator()
        acc.add_chunk(0, name="read_file", arguments="{}")
        assert acc.completed_calls()[0].call_id.startswith("call_")

    def test_stats_and_clear(self):
        acc = NativeToolCallAccumulator()
        acc.add_chunk(0, name="read_file", arguments='{"path": "a"}')
        acc.add_chunk(1, arguments="{}")
        stats = acc.get_stats()
        assert stats == {"calls": 2, "argument_chars": 15, "named": 1}
        acc.clear()
        assert len(acc) == 0
        assert acc.completed_calls() == []
