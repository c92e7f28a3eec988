"""Serialize a compiled AST into renderer-agnostic content blocks."""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from .nodes import CodeNode, ErrorNode, Node, TextNode, ToolCallNode

__all__ = [
    "TextBlock",
    "CodeBlock",
    "ToolCallBlock",
    "ErrorBlock",
    "ContentBlock",
    "AstRenderer",
    "sanitize_text",
    "to_text",
]

_ZERO_WIDTH_RE = re.compile("[\u200b-\u200f\u2060\ufeff]")
_BLANK_RUN_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


@dataclass
class TextBlock:
    content: str
    kind = "text"


@dataclass
class CodeBlock:
    language: str
    code: str
    kind = "code"


@dataclass
class ToolCallBlock:
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    kind = "tool_call"

    def summary(self, max_len: int = 80) -> str:
        args = json.dumps(self.arguments, ensure_ascii=False, default=str)
        if len(args) > max_len:
            args = args[:max_len - 3] + "..."
        return f"{self.tool_name}({args})"


@dataclass
class ErrorBlock:
    code: str
    message: str
    kind = "error"


ContentBlock = Union[TextBlock, CodeBlock, ToolCallBlock, ErrorBlock]


def sanitize_text(text: str) -> str:
    """Drop zero-width characters and collapse runs of blank lines."""
    text = _ZERO_WIDTH_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", text)


class AstRenderer:
    def __init__(self, show_tool_calls: bool = True, show_errors: bool = True):
        self.show_tool_calls = show_tool_calls
        self.show_errors = show_errors

    def render(self, ast: List[Node]) -> List[ContentBlock]:
        blocks: List[ContentBlock] = []
        for node in ast:
            if isinstance(node, TextNode):
                content = sanitize_text(node.content)
                if content.strip():
                    blocks.append(TextBlock(content))
            elif isinstance(node, CodeNode):
                blocks.append(CodeBlock(node.language, node.code))
            elif isinstance(node, ToolCallNode):
                if self.show_tool_calls:
                    blocks.append(ToolCallBlock(node.tool_name, dict(node.arguments)))
            elif isinstance(node, ErrorNode):
                if self.show_errors:
                    blocks.append(ErrorBlock(node.error_code, node.message))
        return blocks


def to_text(blocks: List[ContentBlock]) -> str:
    """Plain text of the visible blocks, code re-fenced.

    Tool-call and error blocks carry no assistant prose and are skipped.
    """
    parts: List[str] = []
    for block in blocks:
        if isinstance(block, TextBlock):
            parts.append(block.content.strip("\n"))
        elif isinstance(block, CodeBlock):
            fence = "````" if "```" in block.code else "```"
            parts.append(f"{fence}{block.language}\n{block.code}\n{fence}")
    return "\n\n".join(p for p in parts if p)
