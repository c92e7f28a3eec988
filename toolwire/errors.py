"""Structured error types and the fault taxonomy of the protocol core."""

from enum import Enum


class FaultKind(str, Enum):
    """Faults the core handles locally. None of them aborts a turn."""

    RECOVERABLE_MALFORMATION = "recoverable_malformation"  # fixed by JSON repair
    UNREPAIRABLE_FRAGMENT = "unrepairable_fragment"        # released as plain text
    HALLUCINATED_CONTENT = "hallucinated_content"          # annotated and stripped
    ORDERING_VIOLATION = "ordering_violation"              # history repaired
    CAPACITY_EXCEEDED = "capacity_exceeded"                # truncated with a marker


class ToolwireError(Exception):
    """Base error for everything outside the protocol core."""
    pass


class ToolError(ToolwireError):
    """Error raised during tool execution."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"{tool_name} error: {message}")


class TransportError(ToolwireError, ConnectionError):
    """The LLM endpoint could not be reached or the stream broke."""
    pass


class ConfigError(ToolwireError):
    """Raised when a configuration value is rejected."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"{key}: {reason}")
