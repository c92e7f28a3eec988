"""Data model shared by the decoder, the compiler and the context manager."""

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

__all__ = [
    "CallOrigin",
    "ToolCallRequest",
    "ToolResult",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "ConversationMessage",
    "ConversationContext",
    "Budget",
    "ContextStats",
    "new_call_id",
]


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class CallOrigin(str, Enum):
    STREAMING = "streaming"
    COMPILED = "compiled"


@dataclass(frozen=True)
class ToolCallRequest:
    """A structurally complete tool call. Never mutated after emission."""
    tool_id: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    origin: CallOrigin = CallOrigin.COMPILED
    call_id: str = field(default_factory=new_call_id)

    def arguments_json(self) -> str:
        return json.dumps(self.parameters, ensure_ascii=False)

    def to_wire(self) -> Dict[str, Any]:
        """OpenAI-compatible ``tool_calls[]`` entry."""
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.tool_id, "arguments": self.arguments_json()},
        }

    def signature(self) -> Tuple[str, str]:
        """Identity used to spot duplicate calls."""
        return self.tool_id, json.dumps(self.parameters, sort_keys=True, default=str)


@dataclass
class ToolResult:
    is_successful: bool
    data: Any = None
    message: str = ""

    def as_text(self) -> str:
        """The string replayed to the model as the tool message content."""
        if self.data is None:
            body = ""
        elif isinstance(self.data, str):
            body = self.data
        else:
            try:
                body = json.dumps(self.data, ensure_ascii=False, default=str)
            except (TypeError, ValueError):
                body = str(self.data)
        if self.is_successful:
            return body or self.message or "OK"
        prefix = f"Error: {self.message}" if self.message else "Error"
        return f"{prefix}\n{body}" if body else prefix


# ── Conversation messages ──


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: ClassVar[str] = "system"

    def to_wire(self) -> Dict[str, Any]:
        return {"role": "system", "content": self.content}


@dataclass(frozen=True)
class UserMessage:
    text: str
    role: ClassVar[str] = "user"

    def to_wire(self) -> Dict[str, Any]:
        return {"role": "user", "content": self.text}


@dataclass(frozen=True)
class AssistantMessage:
    text: str = ""
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    role: ClassVar[str] = "assistant"

    def __post_init__(self):
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def call_ids(self) -> List[str]:
        return [tc.call_id for tc in self.tool_calls]

    def has_call(self, call_id: str) -> bool:
        return any(tc.call_id == call_id for tc in self.tool_calls)

    def to_wire(self, answered: Optional[set] = None) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"role": "assistant", "content": self.text or None}
        calls = [tc for tc in self.tool_calls
                 if answered is None or tc.call_id in answered]
        if calls:
            msg["tool_calls"] = [tc.to_wire() for tc in calls]
        elif not self.text:
            msg["content"] = ""
        return msg


@dataclass(frozen=True)
class ToolMessage:
    tool_call_id: str
    result: str
    tool_name: str = ""
    role: ClassVar[str] = "tool"

    def to_wire(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.result}


ConversationMessage = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


@dataclass(frozen=True)
class ConversationContext:
    """Read-only view of the history handed to the transport once per turn."""
    system_prompt: str = ""
    summary: str = ""
    messages: Tuple[ConversationMessage, ...] = ()

    def to_wire(self) -> List[Dict[str, Any]]:
        """Chat-completions message list. Calls without an adjacent result are left out."""
        wire: List[Dict[str, Any]] = []
        if self.system_prompt:
            wire.append({"role": "system", "content": self.system_prompt})
        if self.summary:
            wire.append({"role": "system", "content": self.summary})

        for idx, msg in enumerate(self.messages):
            if isinstance(msg, AssistantMessage):
                answered = set()
                for follow in self.messages[idx + 1:]:
                    if not isinstance(follow, ToolMessage):
                        break
                    answered.add(follow.tool_call_id)
                wire.append(msg.to_wire(answered))
            else:
                wire.append(msg.to_wire())
        return wire

    def tool_names(self) -> List[str]:
        names: List[str] = []
        for msg in self.messages:
            if isinstance(msg, AssistantMessage):
                for tc in msg.tool_calls:
                    if tc.tool_id not in names:
                        names.append(tc.tool_id)
        return names


@dataclass(frozen=True)
class Budget:
    max_tokens: int = 12000
    compression_threshold: int = 10000


@dataclass(frozen=True)
class ContextStats:
    message_count: int
    tool_call_count: int
    estimated_tokens: int
    summarized_tool_calls: int = 0
    compactions: int = 0
    ordering_repairs: int = 0
