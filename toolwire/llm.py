"""LLM adapter via litellm.

Both entry points run the model's text through a vendor ``ResponseParser``,
so tool calls written into the text channel come back as
``ToolCallRequest`` objects next to the vendor-native ones, and the visible
content is free of tool-call scaffolding.
"""

from typing import List, Dict, Any, Optional, Generator, Tuple
from dataclasses import dataclass, field

import litellm

from .decoding import NativeToolCallAccumulator, ResponseParser, get_parser
from .errors import TransportError
from .logger import get_logger
from .models import CallOrigin, ToolCallRequest

litellm.suppress_debug_info = True

log = get_logger(__name__)


@dataclass
class LLMResponse:
    content: Optional[str] = None
    raw_content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = field(default_factory=list)      # vendor-native
    decoded_calls: List[ToolCallRequest] = field(default_factory=list)   # from the text channel
    usage: Optional[Dict] = None
    reasoning_content: Optional[str] = None

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls or self.decoded_calls)

    def all_tool_calls(self) -> List[ToolCallRequest]:
        return list(self.tool_calls) + list(self.decoded_calls)


BASE_SYSTEM_PROMPT = """\
You are toolwire, an AI coding assistant running inside the user's project directory.
You help users understand, modify, and manage their codebase through natural conversation.

## Tools:
- Call a tool with the native tool-calling interface when it is available.
- Otherwise write exactly one JSON object per call on its own lines:
  {"tool": "<name>", "parameters": {...}}
- Never write tool results yourself. Results arrive in the next message.

## Rules:
- All paths are relative to the project root.
- Explore first (list_directory, read_file) before making changes.
- Briefly explain your intent before making changes.
- Respond in the same language the user uses.
"""


def build_system_prompt(tool_names: Optional[List[str]] = None,
                        project_instructions: Optional[str] = None) -> str:
    prompt = BASE_SYSTEM_PROMPT
    if tool_names:
        prompt += "\n## Available tools:\n" + ", ".join(tool_names) + "\n"
    if project_instructions:
        prompt += f"\n## Project instructions:\n{project_instructions}\n"
    return prompt


def _usage_dict(usage) -> Optional[Dict]:
    if not usage:
        return None
    return {"prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens}


class LLMAdapter:
    """Unified LLM interface. Passes api_key/api_base directly to litellm,
    avoiding env-var pollution when switching between providers."""

    def __init__(self, model: str, temperature: float = 0.0,
                 max_tokens: int = 4096, api_base: Optional[str] = None,
                 api_key: Optional[str] = None):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_base = api_base
        self.api_key = api_key

    @property
    def is_thinking_model(self) -> bool:
        m = self.model.lower()
        return "reasoner" in m or "thinking" in m

    def new_parser(self) -> ResponseParser:
        return get_parser(self.model)

    def _kwargs(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict]],
                stream: bool) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model, "messages": messages,
            "temperature": self.temperature, "max_tokens": self.max_tokens,
        }
        if stream:
            kwargs["stream"] = True
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        return kwargs

    def _completion(self, kwargs: Dict[str, Any]):
        try:
            return litellm.completion(**kwargs)
        except litellm.exceptions.AuthenticationError as e:
            raise TransportError(f"Auth failed. Check API key.\n{e}") from e
        except litellm.exceptions.APIConnectionError as e:
            raise TransportError(
                f"Cannot connect: model={self.model}, base={self.api_base or 'default'}\n{e}") from e
        except Exception as e:
            raise TransportError(f"LLM error: {type(e).__name__}: {e}") from e

    def chat(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict]] = None) -> LLMResponse:
        response = self._completion(self._kwargs(messages, tools, stream=False))

        msg = response.choices[0].message
        native = NativeToolCallAccumulator(origin=CallOrigin.COMPILED)
        for idx, tc in enumerate(getattr(msg, "tool_calls", None) or []):
            fn = getattr(tc, "function", None)
            native.add_chunk(idx, call_id=getattr(tc, "id", None),
                             name=getattr(fn, "name", None),
                             arguments=getattr(fn, "arguments", None))

        raw = msg.content or ""
        parser = self.new_parser()
        decoded, content = parser.parse(raw)
        reasoning = getattr(msg, "reasoning_content", None) or parser.drain_reasoning() or None
        if reasoning is None and self.is_thinking_model:
            reasoning = ""  # Thinking models always need this field, even if empty

        return LLMResponse(content=content or None, raw_content=raw or None,
                           tool_calls=native.completed_calls(), decoded_calls=decoded,
                           usage=_usage_dict(getattr(response, "usage", None)),
                           reasoning_content=reasoning)

    def chat_stream(self, messages: List[Dict[str, Any]],
                    tools: Optional[List[Dict]] = None
                    ) -> Generator[Tuple[str, Any], None, None]:
        """Streaming chat. Yields (event_type, data) tuples.

        Event types:
          "text"       str, visible text released line by line
          "reasoning"  str, reasoner fields and <think> blocks
          "tool_call"  ToolCallRequest, a text-channel call as soon as it closes
          "done"       LLMResponse, the final complete response

        Falls back to non-streaming when the stream cannot be opened.
        """
        try:
            response_stream = self._completion(self._kwargs(messages, tools, stream=True))
        except TransportError as e:
            log.info("streaming unavailable, falling back: %s", e)
            response = self.chat(messages, tools)
            if response.reasoning_content:
                yield ("reasoning", response.reasoning_content)
            if response.content:
                yield ("text", response.content)
            for call in response.decoded_calls:
                yield ("tool_call", call)
            yield ("done", response)
            return

        parser = self.new_parser()
        native = NativeToolCallAccumulator()
        raw_parts: List[str] = []
        visible_parts: List[str] = []
        reasoning_parts: List[str] = []
        decoded: List[ToolCallRequest] = []
        usage = None

        def drain(calls: List[ToolCallRequest], visible: str):
            thought = parser.drain_reasoning()
            if thought:
                reasoning_parts.append(thought)
                yield ("reasoning", thought)
            if visible:
                visible_parts.append(visible)
                yield ("text", visible)
            for call in calls:
                decoded.append(call)
                yield ("tool_call", call)

        try:
            for chunk in response_stream:
                if getattr(chunk, "usage", None):
                    usage = _usage_dict(chunk.usage)
                # Usage-only final chunk (some providers)
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta

                rc = getattr(delta, "reasoning_content", None)
                if rc:
                    reasoning_parts.append(rc)
                    yield ("reasoning", rc)

                text = getattr(delta, "content", None)
                if text:
                    raw_parts.append(text)
                    yield from drain(*parser.feed(text))

                if getattr(delta, "tool_calls", None):
                    native.add_delta(delta.tool_calls)
        except Exception as e:
            raise TransportError(f"Stream interrupted: {type(e).__name__}: {e}") from e

        yield from drain(*parser.finish())

        content = parser.clean_response_text("".join(visible_parts))
        reasoning = "".join(reasoning_parts) or None
        if reasoning is None and self.is_thinking_model:
            reasoning = ""

        yield ("done", LLMResponse(
            content=content or None,
            raw_content="".join(raw_parts) or None,
            tool_calls=native.completed_calls(),
            decoded_calls=decoded,
            usage=usage,
            reasoning_content=reasoning,
        ))
