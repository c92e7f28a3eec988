"""toolwire: protocol core for a terminal AI coding assistant."""

__version__ = "0.3.0"

from .json_repair import repair, safe_parse, Fixed, Fails
from .models import (
    CallOrigin,
    ToolCallRequest,
    ToolResult,
    SystemMessage,
    UserMessage,
    AssistantMessage,
    ToolMessage,
    ConversationContext,
    Budget,
    ContextStats,
)
from .compiler import ResponseCompiler, CompileResult, AstRenderer
from .decoding import StreamingToolCallAccumulator, get_parser
from .context_manager import ContextManager

__all__ = [
    "__version__",
    "repair",
    "safe_parse",
    "Fixed",
    "Fails",
    "CallOrigin",
    "ToolCallRequest",
    "ToolResult",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "ConversationContext",
    "Budget",
    "ContextStats",
    "ResponseCompiler",
    "CompileResult",
    "AstRenderer",
    "StreamingToolCallAccumulator",
    "get_parser",
    "ContextManager",
]
