"""Semantic checks over a compiled AST."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .matchers import canonical_arguments
from .nodes import CodeNode, Diagnostic, Node, Phase, Severity, ToolCallNode

__all__ = ["ToolSpec", "DEFAULT_TOOL_SPECS", "SemanticAnalyzer"]


@dataclass(frozen=True)
class ToolSpec:
    required: Tuple[str, ...] = ()
    types: Dict[str, type] = field(default_factory=dict)
    # Accepted names that are neither required nor typed.
    optional: Tuple[str, ...] = ()


DEFAULT_TOOL_SPECS: Dict[str, ToolSpec] = {
    "read_file": ToolSpec(("path",), {"path": str}),
    "write_file": ToolSpec(("path", "content"), {"path": str, "content": str}),
    "list_directory": ToolSpec(("path",), {"path": str, "recursive": bool}),
    "search_files": ToolSpec(("pattern",), {"pattern": str, "path": str}),
    "bash_command": ToolSpec(("command",), {"command": str}),
    "execute_command": ToolSpec(("command",), {"command": str}),
}

_PAIRS = {")": "(", "]": "[", "}": "{"}
_DANGLING_ENDINGS = ("...", ",", "(", "[", "{", "\\", "=", "+", "&&", "||", "|")


def _type_ok(value, expected: type) -> bool:
    if expected is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


def _balance(code: str) -> int:
    """Net count of unclosed delimiters, ignoring quoted text on each line."""
    stack: List[str] = []
    mismatched = 0
    for line in code.splitlines():
        quote = ""
        for ch in line:
            if quote:
                if ch == quote:
                    quote = ""
                continue
            if ch in "\"'`":
                quote = ch
            elif ch in "([{":
                stack.append(ch)
            elif ch in _PAIRS:
                if stack and stack[-1] == _PAIRS[ch]:
                    stack.pop()
                else:
                    mismatched += 1
    return len(stack) + mismatched


class SemanticAnalyzer:
    def __init__(self, tool_specs: Optional[Dict[str, ToolSpec]] = None,
                 known_tools: Optional[Iterable[str]] = None):
        self.tool_specs = dict(DEFAULT_TOOL_SPECS if tool_specs is None else tool_specs)
        self.known_tools = set(known_tools) if known_tools is not None else None

    def analyze(self, ast: List[Node]) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        seen = set()
        for node in ast:
            if isinstance(node, ToolCallNode):
                key = (node.tool_name, canonical_arguments(node.arguments))
                if key in seen:
                    diagnostics.append(self._diag(
                        Severity.WARNING, "DUPLICATE_TOOL_CALL",
                        f"{node.tool_name} requested more than once with the same arguments",
                        node))
                seen.add(key)
                diagnostics.extend(self._check_call(node))
            elif isinstance(node, CodeNode):
                diagnostics.extend(self._check_code(node))
        return diagnostics

    def _check_call(self, node: ToolCallNode) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        if self.known_tools is not None and node.tool_name not in self.known_tools:
            out.append(self._diag(Severity.WARNING, "UNKNOWN_TOOL",
                                  f"{node.tool_name} is not a registered tool", node))
        spec = self.tool_specs.get(node.tool_name)
        if spec is None:
            return out
        for name in spec.required:
            if name not in node.arguments:
                out.append(self._diag(Severity.ERROR, "MISSING_PARAMETER",
                                      f"{node.tool_name} requires '{name}'", node))
        for name, expected in spec.types.items():
            if name in node.arguments and not _type_ok(node.arguments[name], expected):
                out.append(self._diag(
                    Severity.WARNING, "INVALID_PARAMETER_TYPE",
                    f"{node.tool_name}.{name} should be {expected.__name__}", node))
        return out

    def _check_code(self, node: CodeNode) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        code = node.code.rstrip()
        if not code:
            return out
        if _balance(code):
            out.append(self._diag(Severity.INFO, "UNBALANCED_DELIMITERS",
                                  f"{node.language or 'code'} block has unbalanced delimiters",
                                  node))
        if code.endswith(_DANGLING_ENDINGS):
            out.append(self._diag(Severity.WARNING, "INCOMPLETE_CODE",
                                  f"{node.language or 'code'} block appears incomplete", node))
        return out

    @staticmethod
    def _diag(severity: Severity, code: str, message: str, node: Node) -> Diagnostic:
        return Diagnostic(severity, code, message, Phase.SEMANTIC, node.span)
