"""Tests for the response compiler."""

import json
import random
import time

import pytest

from toolwire.compiler import (
    COMPILER_FAULT,
    HALLUCINATION_DETECTED,
    AstRenderer,
    CodeNode,
    ErrorNode,
    ResponseCompiler,
    Severity,
    TextNode,
    ToolCallNode,
    select_match,
    segment,
    to_text,
)
from toolwire.compiler.matchers import (
    BARE_JSON,
    FENCED_JSON,
    SHELL_COMMAND,
    TAGGED_JSON,
    Match,
    classify_shell_block,
)
from toolwire.models import CallOrigin


def _kinds(result):
    return [type(n).__name__ for n in result.ast]


def _calls(result):
    return [n for n in result.ast if isinstance(n, ToolCallNode)]


def _codes(result):
    return [d.code for d in result.diagnostics]


@pytest.fixture
def compiler():
    return ResponseCompiler()


class TestExamples:
    def test_python_fence_is_code(self, compiler):
        result = compiler.compile("```python\nprint(1)\n```")
        assert result.success
        assert result.ast == [CodeNode("python", "print(1)")]
        assert result.tool_calls() == []

    def test_fabricated_tool_results(self, compiler):
        raw = ('[Tool Results]\n{"tool":"read_file",...}\n\n'
               "Here's an example:\n```javascript\nconsole.log(1)\n```")
        result = compiler.compile(raw)
        assert result.success
        errors = [n for n in result.ast if isinstance(n, ErrorNode)]
        code = [n for n in result.ast if isinstance(n, CodeNode)]
        assert [e.error_code for e in errors] == [HALLUCINATION_DETECTED]
        assert [c.language for c in code] == ["javascript"]
        assert result.has_hallucinations
        rendered = to_text(AstRenderer().render(result.ast))
        assert "[Tool Results]" not in rendered
        assert "read_file" not in rendered
        assert "Here's an example:" in rendered


class TestConventions:
    def test_bare_json_between_prose(self, compiler):
        result = compiler.compile(
            'Let me check.\n{"tool": "read_file", "parameters": {"path": "a.py"}}\nThen done.')
        assert result.ast == [
            TextNode("Let me check."),
            ToolCallNode("read_file", {"path": "a.py"}),
            TextNode("Then done."),
        ]
        assert result.ast[1].convention == BARE_JSON

    def test_tagged_json(self, compiler):
        result = compiler.compile(
            '<tool_call>{"name": "read_file", "arguments": {"path": "b"}}</tool_call>')
        [call] = _calls(result)
        assert call.convention == TAGGED_JSON
        assert call.arguments == {"path": "b"}
        assert "tool_call" not in to_text(AstRenderer().render(result.ast))

    def test_fenced_json(self, compiler):
        result = compiler.compile(
            '```json\n{"tool": "list_directory", "parameters": {"path": ".", "recursive": true}}\n```')
        [call] = _calls(result)
        assert call.convention == FENCED_JSON
        assert call.arguments == {"path": ".", "recursive": True}

    def test_plain_json_fence_stays_code(self, compiler):
        result = compiler.compile('```json\n{"debug": true}\n```')
        assert result.ast == [CodeNode("json", '{"debug": true}')]

    def test_shell_prompt_line_in_prose(self, compiler):
        result = compiler.compile('Running:\n$ read_file {"path": "setup.py"}\n')
        [call] = _calls(result)
        assert call.convention == SHELL_COMMAND
        assert call.tool_name == "read_file"
        assert call.arguments == {"path": "setup.py"}

    def test_openai_function_shape(self, compiler):
        raw = '{"function": {"name": "read_file", "arguments": "{\\"path\\": \\"c.py\\"}"}}'
        [call] = _calls(compiler.compile(raw))
        assert call.arguments == {"path": "c.py"}

    def test_malformed_call_repaired(self, compiler):
        result = compiler.compile('{"tool": "read_file", "parameters": {"path": "a.py",}')
        [call] = _calls(result)
        assert call.arguments == {"path": "a.py"}

    def test_tool_calls_are_compiled_requests(self, compiler):
        result = compiler.compile('{"tool": "read_file", "parameters": {"path": "a"}}')
        first = result.tool_calls()
        second = result.tool_calls()
        assert first[0].origin == CallOrigin.COMPILED
        assert [c.call_id for c in first] == [c.call_id for c in second]


class TestMatchSelection:
    def test_earliest_start_wins(self):
        late = lambda text, pos: Match(5, 9, "late")
        early = lambda text, pos: Match(2, 4, "early")
        assert select_match([late, early], "x" * 20, 0).tool_id == "early"

    def test_tie_broken_by_longest_span(self):
        short = lambda text, pos: Match(3, 6, "short")
        long_ = lambda text, pos: Match(3, 12, "long")
        assert select_match([short, long_], "x" * 20, 0).tool_id == "long"
        assert select_match([long_, short], "x" * 20, 0).tool_id == "long"

    def test_no_match(self):
        assert select_match([lambda t, p: None], "text", 0) is None


class TestShellBlocks:
    def test_unexplained_block_is_command(self, compiler):
        [call] = _calls(compiler.compile("```bash\nls -la src\n```"))
        assert call.tool_name == "bash_command"
        assert call.arguments == {"command": "ls -la src"}

    def test_prompt_markers_stripped(self, compiler):
        [call] = _calls(compiler.compile("```sh\n$ git status\n```"))
        assert call.arguments == {"command": "git status"}

    def test_illustrative_block_stays_code(self, compiler):
        result = compiler.compile("For example, you can install it with:\n"
                                  "```bash\npip install toolwire\n```")
        assert _calls(result) == []
        assert result.ast[-1] == CodeNode("bash", "pip install toolwire")

    def test_disabled(self):
        result = ResponseCompiler(shell_blocks_as_tools=False).compile("```bash\nls\n```")
        assert result.ast == [CodeNode("bash", "ls")]

    def test_known_tool_in_shell_block(self, compiler):
        result = compiler.compile('You can use:\n```bash\nread_file {"path": "a.py"}\n```')
        [call] = _calls(result)
        assert call.tool_name == "read_file"

    def test_custom_shell_tool(self):
        compiler = ResponseCompiler(shell_tool_name="execute_command")
        [call] = _calls(compiler.compile("```shell\nmake test\n```"))
        assert call.tool_name == "execute_command"

    def test_unterminated_block_stays_code(self, compiler):
        result = compiler.compile("```bash\nrm -rf build")
        assert _calls(result) == []
        assert "UNTERMINATED_FENCE" in _codes(result)

    def test_classify_empty_body(self):
        assert classify_shell_block("$ ", "", (), "bash_command") is None


class TestHallucinations:
    @pytest.mark.parametrize("raw", [
        "Sure.\n<<<\nfile contents\n>>>\nDone.",
        "Sure.\n<tool_result>{\"ok\": true}</tool_result>\nDone.",
        'Sure.\n{"success": true, "data": "a.py b.py"}\nDone.',
        "Sure.\n```tool_result\nfiles: 3\n```\nDone.",
    ])
    def test_fabricated_output_removed(self, compiler, raw):
        result = compiler.compile(raw)
        assert result.has_hallucinations
        assert HALLUCINATION_DETECTED in _codes(result)
        text = to_text(AstRenderer().render(result.ast))
        assert text.startswith("Sure.")
        assert text.endswith("Done.")

    def test_calls_inside_fabricated_block_dropped(self, compiler):
        raw = ('[Tool Output]\n{"tool": "read_file", "parameters": {"path": "a"}}\n\n'
               "Next I will summarize.")
        result = compiler.compile(raw)
        assert result.tool_calls() == []
        assert result.has_hallucinations

    def test_code_fence_not_scanned(self, compiler):
        result = compiler.compile('```python\nprint("[Output]")\n```')
        assert not result.has_hallucinations


class TestDiagnostics:
    def test_missing_parameter(self, compiler):
        result = compiler.compile('{"tool": "read_file", "parameters": {}}')
        assert [d.code for d in result.errors] == ["MISSING_PARAMETER"]
        assert len(_calls(result)) == 1

    def test_invalid_parameter_type(self, compiler):
        result = compiler.compile(
            '{"tool": "list_directory", "parameters": {"path": ".", "recursive": "maybe"}}')
        assert "INVALID_PARAMETER_TYPE" in [d.code for d in result.warnings]

    def test_duplicate_calls_collapsed(self, compiler):
        call = '{"tool": "read_file", "parameters": {"path": "a"}}'
        result = compiler.compile(f"{call}\n{call}")
        assert len(_calls(result)) == 1
        assert "DUPLICATE_TOOL_CALL" in _codes(result)

    def test_unknown_tool_warning(self):
        compiler = ResponseCompiler(known_tools=["read_file"])
        result = compiler.compile('{"tool": "delete_all", "parameters": {}}')
        assert "UNKNOWN_TOOL" in [d.code for d in result.warnings]
        assert len(_calls(result)) == 1

    def test_strict_tools_keep_text(self):
        compiler = ResponseCompiler(known_tools=["read_file"], strict_tools=True)
        raw = '{"tool": "delete_all", "parameters": {}}'
        result = compiler.compile(raw)
        assert _calls(result) == []
        assert result.ast == [TextNode(raw)]

    def test_incomplete_code(self, compiler):
        result = compiler.compile("```python\ndef f(\n```")
        codes = _codes(result)
        assert "UNBALANCED_DELIMITERS" in codes
        assert "INCOMPLETE_CODE" in codes

    def test_fence_markers_inside_code_removed(self, compiler):
        result = compiler.compile("````markdown\n```\ninner\n```\n````")
        assert result.ast == [CodeNode("markdown", "inner")]
        assert "FENCE_IN_CODE" in _codes(result)

    def test_diagnostic_str(self, compiler):
        result = compiler.compile('{"tool": "read_file", "parameters": {}}')
        assert str(result.errors[0]).startswith("[error] MISSING_PARAMETER")

    def test_aliased_arguments_mapped(self, compiler):
        result = compiler.compile(
            '{"tool": "list_directory", "parameters": {"directory": "src", "Recursive": "true"}}')
        assert _calls(result)[0].arguments == {"path": "src", "recursive": True}
        assert "PARAMETERS_MAPPED" in _codes(result)
        assert result.errors == []
        assert "INVALID_PARAMETER_TYPE" not in _codes(result)

    def test_map_arguments_matches_compiled_calls(self, compiler):
        assert compiler.map_arguments("read_file", {"file_path": "a.py"}) == {"path": "a.py"}
        assert compiler.map_arguments("unknown", {"File": 1}) == {"File": 1}


class TestTotality:
    def test_internal_fault_degrades(self):
        def broken(text, pos):
            raise RuntimeError("matcher exploded")

        raw = "some text {with} braces"
        result = ResponseCompiler(matchers=[broken]).compile(raw)
        assert result.success
        assert result.degraded
        assert result.ast[0] == TextNode(raw)
        assert result.ast[1].error_code == COMPILER_FAULT
        assert result.diagnostics[0].severity == Severity.ERROR

    @pytest.mark.parametrize("raw", ["", "   ", "```", "{", "<tool_call>", "[Result]"])
    def test_edge_inputs(self, compiler, raw):
        assert compiler.compile(raw).success

    @pytest.mark.parametrize("raw", [
        "{" * 20000,
        ("note {" * 4000) + '"' + ("[{" * 4000),
    ])
    def test_unbalanced_braces_compile_quickly(self, compiler, raw):
        started = time.perf_counter()
        result = compiler.compile(raw)
        assert result.success
        assert time.perf_counter() - started < 5.0

    def test_fuzzed_inputs(self, compiler):
        rng = random.Random(2024)
        alphabet = ['{', '}', '[', ']', '"', ':', ',', '\n', '```', '~~~', 'bash', 'json',
                    'tool', 'read_file', 'parameters', '<tool_call>', '</tool_call>',
                    '[Tool Results]', '<<<', '>>>', ' ', 'x', '$ ', 'path']
        for _ in range(300):
            raw = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 40)))
            result = compiler.compile(raw)
            assert result.success
            assert not result.degraded, raw
            for call in result.tool_calls():
                assert isinstance(call.parameters, dict)
                json.dumps(call.parameters)


class TestSegmenter:
    def test_segments_cover_input(self):
        raw = "intro\n```py\ncode\n```\noutro"
        segs = segment(raw)
        assert [s.kind for s in segs] == ["text", "code", "text"]
        assert segs[1].language == "py"
        assert segs[1].content == "code"
        assert segs[0].start == 0 and segs[-1].end == len(raw)

    def test_longer_fence_needed_to_close(self):
        segs = segment("````\n```\n````")
        assert len(segs) == 1
        assert segs[0].content == "```"

    def test_inline_backticks_not_a_fence(self):
        segs = segment("```foo`bar```\ntext")
        assert [s.kind for s in segs] == ["text"]
