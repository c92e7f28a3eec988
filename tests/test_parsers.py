"""Tests for vendor response parsers and response-text cleaning."""

import pytest

from toolwire.decoding import QwenParser, ResponseParser, clean_response_text, get_parser

CLEAN_CORPUS = [
    'I will read it.\n{"tool": "read_file", "parameters": {"path": "a.py"}}\n',
    '```json\n{"tool": "list_directory", "parameters": {"path": "."}}\n```\nDone.',
    'Before\n}\n]\n"path": "src/a.py",\nAfter',
    '<tool_call>{"name": "read_file", "arguments": {"path": "x"}}</tool_call>\nOk.',
    'Here is code:\n\n```python\nx = {"a": 1}\n```\n\n\n\nEnd.',
    '<think>secret plan</think>Visible answer.',
    "\u200bZero\u200b width\ufeff",
    "",
    "   \n\n  ",
]


def _stream(parser, text, size):
    calls, visible = [], []
    for i in range(0, len(text), size):
        c, v = parser.feed(text[i:i + size])
        calls.extend(c)
        visible.append(v)
    c, v = parser.finish()
    calls.extend(c)
    visible.append(v)
    return calls, "".join(visible)


class TestCleanResponseText:
    @pytest.mark.parametrize("text", CLEAN_CORPUS)
    def test_idempotent(self, text):
        parser = QwenParser()
        once = parser.clean_response_text(text)
        assert parser.clean_response_text(once) == once

    @pytest.mark.parametrize("text", [
        '{"tool": "read_file", "parameters": {"path": "a"}}',
        '```json\n{"tool": "read_file", "parameters": {"path": "a"}}\n```',
        '<tool_call>{"name": "read_file", "arguments": {}}</tool_call>',
        '{\n}\n',
        '```json\n```',
    ])
    def test_pure_scaffolding_is_empty(self, text):
        assert clean_response_text(text) == ""

    def test_prose_and_code_kept(self):
        text = 'Here is the plan.\n\n```python\nx = {"a": 1}\n```'
        assert clean_response_text(text) == text

    def test_parameter_dump_lines_removed(self):
        assert clean_response_text(CLEAN_CORPUS[2]) == "Before\nAfter"

    def test_blank_runs_collapsed(self):
        cleaned = clean_response_text(CLEAN_CORPUS[4])
        assert "\n\n\n" not in cleaned
        assert cleaned.endswith("End.")

    def test_zero_width_removed(self):
        assert clean_response_text(CLEAN_CORPUS[6]) == "Zero width"

    def test_non_tool_json_kept(self):
        text = 'The config is {"debug": true}.'
        assert clean_response_text(text) == text


class TestStreamingParser:
    def test_parse_splits_calls_from_text(self):
        calls, cleaned = ResponseParser().parse(CLEAN_CORPUS[0])
        assert [c.tool_id for c in calls] == ["read_file"]
        assert calls[0].parameters == {"path": "a.py"}
        assert cleaned == "I will read it."

    def test_json_fence_around_call_is_hidden(self):
        calls, visible = _stream(ResponseParser(), CLEAN_CORPUS[1], 4)
        assert [c.tool_id for c in calls] == ["list_directory"]
        assert visible == "Done."

    def test_text_released_line_by_line(self):
        parser = ResponseParser()
        _, visible = parser.feed("partial line")
        assert visible == ""
        _, visible = parser.feed(" done\nnext")
        assert visible == "partial line done\n"
        _, visible = parser.finish()
        assert visible == "next"

    def test_stray_brace_lines_dropped(self):
        _, visible = _stream(ResponseParser(), "Text\n}\nMore\n", 3)
        assert visible == "Text\nMore\n"

    def test_fenced_code_untouched(self):
        text = "```python\n}\n\"key\": 1,\n```\n"
        _, visible = _stream(ResponseParser(), text, 2)
        assert visible == text

    @pytest.mark.parametrize("size", [1, 3, 7, 64])
    def test_chunk_size_does_not_change_output(self, size):
        text = "".join(CLEAN_CORPUS[:5])
        expected = _stream(ResponseParser(), text, len(text))
        result = _stream(ResponseParser(), text, size)
        assert [(c.tool_id, c.parameters) for c in result[0]] == \
            [(c.tool_id, c.parameters) for c in expected[0]]
        assert result[1] == expected[1]

    def test_reset(self):
        parser = ResponseParser()
        parser.feed('half a line {"tool": "read_file"')
        parser.reset()
        calls, visible = parser.finish()
        assert calls == [] and visible == ""


class TestQwenParser:
    def test_get_parser_selects_vendor(self):
        assert isinstance(get_parser("openai/Qwen3-32B"), QwenParser)
        assert isinstance(get_parser("qwq-32b"), QwenParser)
        assert type(get_parser("deepseek/deepseek-chat")) is ResponseParser
        assert type(get_parser(None)) is ResponseParser

    def test_think_block_goes_to_reasoning(self):
        parser = QwenParser()
        calls, cleaned = parser.parse("<think>plan steps</think>Answer here.\n")
        assert calls == []
        assert cleaned == "Answer here."
        assert parser.drain_reasoning() == "plan steps"
        assert parser.drain_reasoning() == ""

    def test_think_block_split_across_deltas(self):
        parser = QwenParser()
        _, visible = _stream(parser, "<think>step one\nstep two</think>Result\n", 3)
        assert visible == "Result\n"
        assert parser.drain_reasoning() == "step one\nstep two"

    def test_bare_recursive_flag_fixed(self):
        text = '{"tool": "list_directory", "parameters": {"path": ".", false}}'
        calls, _ = QwenParser().parse(text)
        assert calls[0].parameters == {"path": ".", "recursive": False}

    def test_strip_vendor_artifacts(self):
        parser = QwenParser()
        assert parser.strip_vendor_artifacts("<think>x</think>Hi") == "Hi"
        assert parser.strip_vendor_artifacts("leftover</think>Hi") == "Hi"
