"""AST produced by the response compiler."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

__all__ = [
    "TextNode",
    "CodeNode",
    "ToolCallNode",
    "ErrorNode",
    "Node",
    "Severity",
    "Phase",
    "Diagnostic",
    "HALLUCINATION_DETECTED",
    "COMPILER_FAULT",
]

HALLUCINATION_DETECTED = "HALLUCINATION_DETECTED"
COMPILER_FAULT = "COMPILER_FAULT"

Span = Tuple[int, int]


@dataclass
class TextNode:
    content: str
    span: Span = field(default=(0, 0), compare=False, repr=False)
    kind = "text"


@dataclass
class CodeNode:
    language: str
    code: str
    span: Span = field(default=(0, 0), compare=False, repr=False)
    kind = "code"


@dataclass
class ToolCallNode:
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    convention: str = field(default="", compare=False)
    span: Span = field(default=(0, 0), compare=False, repr=False)
    kind = "tool_call"


@dataclass
class ErrorNode:
    error_code: str
    message: str
    span: Span = field(default=(0, 0), compare=False, repr=False)
    kind = "error"


Node = Union[TextNode, CodeNode, ToolCallNode, ErrorNode]


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Phase(str, Enum):
    LEX = "lex"
    PARSE = "parse"
    HALLUCINATION = "hallucination"
    SEMANTIC = "semantic"
    OPTIMIZE = "optimize"
    VALIDATE = "validate"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    code: str
    message: str
    phase: Phase
    span: Optional[Span] = None

    def __str__(self) -> str:
        where = f" @{self.span[0]}" if self.span else ""
        return f"[{self.severity.value}] {self.code}{where}: {self.message}"


def count_kinds(ast: List[Node]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for node in ast:
        counts[node.kind] = counts.get(node.kind, 0) + 1
    return counts
