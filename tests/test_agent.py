"""Tests for the agent turn loop and tool dispatch."""

import io

import pytest

from rich.console import Console

from toolwire.agent import Agent
from toolwire.decoding import get_parser
from toolwire.errors import TransportError
from toolwire.llm import LLMResponse
from toolwire.models import AssistantMessage, ToolCallRequest, ToolMessage, UserMessage
from toolwire.tools import ToolRegistry


class ScriptedLLM:
    """Returns canned responses in order; records the messages it was sent."""

    model = "test-model"

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def new_parser(self):
        return get_parser(self.model)

    def chat(self, messages, tools=None):
        self.requests.append(messages)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def chat_stream(self, messages, tools=None):
        response = self.chat(messages, tools)
        if response.content:
            yield ("text", response.content + "\n")
        for call in response.decoded_calls:
            yield ("tool_call", call)
        yield ("done", response)


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.executed = []

    @reg.tool("Read file contents")
    def read_file(path: str) -> str:
        reg.executed.append(path)
        return f"contents of {path}"

    return reg


def _agent(llm, registry, **kwargs):
    kwargs.setdefault("stream", False)
    console = Console(file=io.StringIO(), force_terminal=False, width=120)
    return Agent(llm, registry=registry, console=console, **kwargs)


def _output(agent):
    return agent.console.file.getvalue()


class TestDispatch:
    def test_native_calls(self, registry):
        call = ToolCallRequest("read_file", {"path": "a.py"}, call_id="native_1")
        llm = ScriptedLLM([
            LLMResponse(content="Reading.", tool_calls=[call]),
            LLMResponse(content="It prints 1.", usage={"total_tokens": 42}),
        ])
        agent = _agent(llm, registry)
        assert agent.chat("what is in a.py?") == "It prints 1."

        assert registry.executed == ["a.py"]
        messages = agent.context.messages
        assert [m.role for m in messages] == ["user", "assistant", "tool", "assistant"]
        assert messages[1] == AssistantMessage("Reading.", (call,))
        assert messages[2] == ToolMessage("native_1", "contents of a.py", "read_file")
        assert llm.requests[1][-1]["role"] == "tool"
        assert agent.total_tokens == 42

    def test_compiled_call_not_doubled_by_decoded_call(self, registry):
        raw = 'Let me look.\n{"tool": "read_file", "parameters": {"path": "a.py"}}'
        decoded = ToolCallRequest("read_file", {"path": "a.py"})
        llm = ScriptedLLM([
            LLMResponse(content="Let me look.", raw_content=raw, decoded_calls=[decoded]),
            LLMResponse(content="Done."),
        ])
        agent = _agent(llm, registry)
        assert agent.chat("look") == "Done."
        assert registry.executed == ["a.py"]
        assert agent.context.messages[1].text == "Let me look."

    def test_aliased_decoded_call_matches_compiled_call(self, registry):
        raw = 'Let me look.\n{"tool": "read_file", "parameters": {"file": "a.py"}}'
        decoded = ToolCallRequest("read_file", {"filePath": "a.py"})
        llm = ScriptedLLM([
            LLMResponse(content="Let me look.", raw_content=raw, decoded_calls=[decoded]),
            LLMResponse(content="Done."),
        ])
        agent = _agent(llm, registry)
        assert agent.chat("look") == "Done."
        assert registry.executed == ["a.py"]
        assert agent.context.messages[1].tool_calls[0].parameters == {"path": "a.py"}

    def test_new_decoded_call_added(self, registry):
        decoded = ToolCallRequest("read_file", {"path": "b.py"})
        llm = ScriptedLLM([
            LLMResponse(content="Checking b.", decoded_calls=[decoded]),
            LLMResponse(content="Done."),
        ])
        agent = _agent(llm, registry)
        agent.chat("check b")
        assert registry.executed == ["b.py"]

    def test_hallucinated_turn_ignores_decoded_calls(self, registry):
        raw = 'Checking.\n<tool_result>{"ok": true}</tool_result>\nAll files look fine.'
        decoded = ToolCallRequest("read_file", {"path": "secret.txt"})
        llm = ScriptedLLM([LLMResponse(content=raw, raw_content=raw, decoded_calls=[decoded])])
        agent = _agent(llm, registry)
        reply = agent.chat("check")

        assert registry.executed == []
        assert reply == "Checking.\n\nAll files look fine."
        assert agent.hallucinated_turns == 1
        assert "tool_result" not in agent.context.messages[-1].text

    def test_empty_response_retried(self, registry):
        llm = ScriptedLLM([LLMResponse(content=None), LLMResponse(content="ok")])
        agent = _agent(llm, registry)
        assert agent.chat("hi") == "ok"
        assert "empty response" in _output(agent)

    def test_max_iterations(self, registry):
        llm = ScriptedLLM([
            LLMResponse(tool_calls=[ToolCallRequest("read_file", {"path": f"{i}.py"})])
            for i in range(3)
        ])
        agent = _agent(llm, registry, max_iterations=3)
        reply = agent.chat("loop forever")
        assert "Reached max iterations (3)" in reply
        assert registry.executed == ["0.py", "1.py", "2.py"]

    def test_unknown_tool_reported_to_model(self, registry):
        call = ToolCallRequest("delete_everything", {}, call_id="x1")
        llm = ScriptedLLM([LLMResponse(tool_calls=[call]), LLMResponse(content="Sorry.")])
        agent = _agent(llm, registry)
        agent.chat("go")
        tool_msg = agent.context.messages[2]
        assert tool_msg.result == "Error: Unknown tool: delete_everything"


class TestStreaming:
    def test_streamed_turn(self, registry):
        raw = 'Reading.\n{"tool": "read_file", "parameters": {"path": "a.py"}}'
        decoded = ToolCallRequest("read_file", {"path": "a.py"})
        llm = ScriptedLLM([
            LLMResponse(content="Reading.", raw_content=raw, decoded_calls=[decoded]),
            LLMResponse(content="All good."),
        ])
        agent = _agent(llm, registry, stream=True)
        assert agent.chat("read a.py") == "All good."
        assert registry.executed == ["a.py"]
        output = _output(agent)
        assert "Reading." in output
        assert "All good." in output


class TestFailures:
    def test_transport_error_rolls_back_turn(self, registry):
        llm = ScriptedLLM([LLMResponse(content="Hello."), TransportError("endpoint down")])
        agent = _agent(llm, registry)
        agent.chat("hi")
        before = agent.context.messages

        reply = agent.chat("again")
        assert reply == "endpoint down"
        assert agent.context.messages == before
        assert "endpoint down" in _output(agent)

    def test_interrupt_rolls_back_and_propagates(self, registry):
        llm = ScriptedLLM([KeyboardInterrupt()])
        agent = _agent(llm, registry)
        with pytest.raises(KeyboardInterrupt):
            agent.chat("hi")
        assert agent.context.messages == ()

    def test_interrupt_mid_stream_rolls_back(self, registry):
        class CutOffLLM(ScriptedLLM):
            def chat_stream(self, messages, tools=None):
                call = ToolCallRequest("read_file", {"path": "a.py"})
                yield ("text", "Reading.\n")
                yield ("tool_call", call)
                raise KeyboardInterrupt

        agent = _agent(CutOffLLM([]), registry, stream=True)
        with pytest.raises(KeyboardInterrupt):
            agent.chat("hi")
        assert agent.context.messages == ()
        assert registry.executed == []
        assert "interrupted" in _output(agent)



class TestSession:
    def test_system_prompt_lists_tools(self, registry):
        agent = _agent(ScriptedLLM([]), registry, project_instructions="Use tabs.")
        assert "read_file" in agent.context.system_prompt
        assert "Use tabs." in agent.context.system_prompt

    def test_stats_and_reset(self, registry):
        llm = ScriptedLLM([LLMResponse(content="Hello.", usage={"total_tokens": 7})])
        agent = _agent(llm, registry)
        agent.chat("hi")
        stats = agent.get_stats()
        assert stats["messages"] == 2
        assert stats["model"] == "test-model"
        assert stats["total_tokens"] == 7
        assert stats["context_used"].startswith("~")

        agent.reset()
        assert agent.get_stats()["messages"] == 0
        assert agent.total_tokens == 0
        assert agent.context.messages == ()

    def test_compact_conversation(self, registry):
        llm = ScriptedLLM([LLMResponse(content=f"answer {i}") for i in range(8)])
        agent = _agent(llm, registry)
        agent.context.recent_messages = 2
        for i in range(8):
            agent.chat(f"question {i}")
        assert agent.compact_conversation() == 14
        assert agent.context.messages[0] == UserMessage("question 7")
