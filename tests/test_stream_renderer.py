"""Tests for stream_renderer: event handling and the think/answer blank-line fix."""

import io
from dataclasses import dataclass
from typing import Optional, List

import pytest

from rich.console import Console

from toolwire.models import ToolCallRequest
from toolwire.stream_renderer import StreamView, brief_line, render_stream


@dataclass
class MockLLMResponse:
    content: str = ""
    reasoning_content: Optional[str] = None
    tool_calls: Optional[List] = None
    usage: Optional[dict] = None

    def has_tool_calls(self):
        return bool(self.tool_calls)


def _make_events(reasoning_chunks=None, text_chunks=None, extra=None):
    """Build a (event_type, data) list simulating LLM streaming."""
    events = []
    if reasoning_chunks:
        for chunk in reasoning_chunks:
            events.append(("reasoning", chunk))
    if text_chunks:
        for chunk in text_chunks:
            events.append(("text", chunk))
    events.extend(extra or [])
    response = MockLLMResponse(
        content="".join(text_chunks or []),
        reasoning_content="".join(reasoning_chunks or []) if reasoning_chunks else None,
    )
    events.append(("done", response))
    return events


def _console():
    buf = io.StringIO()
    return Console(file=buf, force_terminal=False, width=120), buf


def _render(events, **kwargs):
    console, buf = _console()
    kwargs.setdefault("reasoning_display", "summary")
    response = render_stream(console, iter(events), **kwargs)
    return response, buf.getvalue()


class TestStreamRendererBlankLineFix:
    """The first text chunk after reasoning should not start with blank lines."""

    def test_no_leading_newlines_after_reasoning(self):
        _, output = _render(_make_events(
            reasoning_chunks=["Let me think...\n", "Step 1: analyze\n"],
            text_chunks=["\n\nHere is the answer."],
        ))
        assert "Here is the answer." in output
        assert "\n\n\n\n" not in output

    def test_text_only_no_stripping(self):
        response, output = _render(_make_events(text_chunks=["Hello world."]))
        assert "Hello world." in output
        assert response.content == "Hello world."

    def test_reasoning_only_chunks_stripped(self):
        _, output = _render(_make_events(
            reasoning_chunks=["Thinking..."],
            text_chunks=["\n\n", "Real content here."],
        ))
        assert "Real content here." in output

    def test_reasoning_footer(self):
        _, output = _render(_make_events(
            reasoning_chunks=["a" * 40 + "\n"],
            text_chunks=["Answer.\n"],
        ))
        assert "Reasoning: 10 tokens" in output

    def test_reasoning_off_has_no_footer(self):
        _, output = _render(_make_events(
            reasoning_chunks=["plan\n"],
            text_chunks=["Answer.\n"],
        ), reasoning_display="off")
        assert "Reasoning:" not in output


class TestStreamEvents:
    def test_markdown_stripped_from_text(self):
        _, output = _render(_make_events(text_chunks=["**bold** and `code`\n"]))
        assert "bold and code" in output
        assert "**" not in output

    def test_tool_call_event_rendered(self):
        call = ToolCallRequest("read_file", {"path": "src/app.py"})
        _, output = _render(_make_events(text_chunks=["Reading.\n"],
                                         extra=[("tool_call", call)]))
        assert "read_file" in output
        assert "src/app.py" in output

    def test_tool_call_event_hidden(self):
        call = ToolCallRequest("read_file", {"path": "src/app.py"})
        _, output = _render(_make_events(extra=[("tool_call", call)]), show_tool_calls=False)
        assert "src/app.py" not in output

    def test_done_response_returned(self):
        response, _ = _render(_make_events(text_chunks=["one ", "two"]))
        assert response.content == "one two"


class TestStreamFailures:
    def test_interrupt_shows_partial_then_reraises(self):
        def events():
            yield ("reasoning", "hmm\n")
            yield ("text", "partial answer")
            raise KeyboardInterrupt

        console, buf = _console()
        with pytest.raises(KeyboardInterrupt):
            render_stream(console, events())
        output = buf.getvalue()
        assert "partial answer" in output
        assert "interrupted" in output

    def test_interrupt_before_text(self):
        def events():
            raise KeyboardInterrupt
            yield  # pragma: no cover

        console, buf = _console()
        with pytest.raises(KeyboardInterrupt):
            render_stream(console, events())
        assert "interrupted" in buf.getvalue()

    def test_error_becomes_connection_error(self):
        def events():
            yield ("text", "start")
            raise ValueError("bad chunk")

        with pytest.raises(ConnectionError, match="Streaming error: ValueError"):
            _render(events())

    def test_connection_error_passes_through(self):
        def events():
            raise ConnectionError("socket closed")
            yield  # pragma: no cover

        with pytest.raises(ConnectionError, match="socket closed"):
            _render(events())

    def test_missing_done_event(self):
        with pytest.raises(ConnectionError, match="without completion"):
            _render([("text", "no end\n")])


class TestStreamView:
    def test_brief_line(self):
        assert brief_line("  step   one \t done ") == "step one done"
        long = brief_line("x" * 200)
        assert len(long) == 96
        assert long.endswith("...")

    def test_partial_line_held_until_newline(self):
        console, buf = _console()
        view = StreamView(console)
        view.feed("text", "half a ")
        assert "half a" not in buf.getvalue()
        view.feed("text", "line\nnext")
        assert "half a line\n" in buf.getvalue()
        view.close()
        assert "next" in buf.getvalue()

    def test_reasoning_after_answer_not_shown(self):
        console, _ = _console()
        view = StreamView(console)
        view.feed("text", "Answer.\n")
        view.feed("reasoning", "late thought\n")
        assert view.reasoning == "late thought\n"
        assert view._shown_chars == 0
        view.close()
