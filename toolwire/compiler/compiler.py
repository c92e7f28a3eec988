"""Response compiler: raw model turn -> AST + diagnostics.

Phases run in order: lex (fence segmentation), parse (tool-call matchers
over prose, fence classification), hallucination, semantic, optimize and
validate. ``ResponseCompiler.compile`` never raises; an internal fault
degrades the result to the raw text plus a ``COMPILER_FAULT`` error node.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import FaultKind
from ..logger import resolve_logger
from ..models import CallOrigin, ToolCallRequest
from .hallucination import RESULT_FENCE_LANGUAGES, HallucinationDetector, HallucinationRegion
from .matchers import (
    FENCED_JSON,
    SHELL_COMMAND,
    SHELL_LANGUAGES,
    Matcher,
    canonical_arguments,
    classify_shell_block,
    default_matchers,
    parse_json_tool_call,
    select_match,
)
from .nodes import (
    COMPILER_FAULT,
    HALLUCINATION_DETECTED,
    CodeNode,
    Diagnostic,
    ErrorNode,
    Node,
    Phase,
    Severity,
    TextNode,
    ToolCallNode,
)
from .parameters import map_parameters
from .segmenter import Segment, segment
from .semantic import DEFAULT_TOOL_SPECS, SemanticAnalyzer, ToolSpec

__all__ = ["CompileResult", "ResponseCompiler"]

JSON_FENCE_LANGUAGES = {"", "json", "jsonc", "tool_call"}

_LEADING_BLANK_RE = re.compile(r"\A(?:[ \t]*\n)+")
_TRAILING_BLANK_RE = re.compile(r"(?:\n[ \t]*)+\Z")
_FENCE_LINE_RE = re.compile(r"^ {0,3}(?:`{3,}|~{3,})")


@dataclass
class CompileResult:
    success: bool
    ast: List[Node]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    degraded: bool = False
    _calls: Optional[List[ToolCallRequest]] = field(default=None, init=False, repr=False,
                                                    compare=False)

    def tool_calls(self) -> List[ToolCallRequest]:
        """Requests for every tool-call node, in source order.

        Call ids are assigned on first access and stay stable afterwards.
        """
        if self._calls is None:
            self._calls = [
                ToolCallRequest(node.tool_name, dict(node.arguments), CallOrigin.COMPILED)
                for node in self.ast if isinstance(node, ToolCallNode)
            ]
        return list(self._calls)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def has_hallucinations(self) -> bool:
        return any(isinstance(n, ErrorNode) and n.error_code == HALLUCINATION_DETECTED
                   for n in self.ast)


class ResponseCompiler:
    """Compile complete (non-streaming) model turns.

    Args:
        tool_specs: Required/typed parameters per tool for semantic checks.
        known_tools: Registered tool names. Enables ``UNKNOWN_TOOL`` warnings
            and the ``$ tool {json}`` convention for these names.
        shell_tool_name: Tool that runs a shell-fenced command.
        shell_blocks_as_tools: Treat unexplained shell fences as commands.
        strict_tools: Keep calls to unregistered tools as plain text.
        matchers: Replaces the default prose matchers.
    """

    def __init__(self, tool_specs: Optional[Dict[str, ToolSpec]] = None,
                 known_tools: Optional[Iterable[str]] = None,
                 shell_tool_name: str = "bash_command",
                 shell_blocks_as_tools: bool = True,
                 strict_tools: bool = False,
                 matchers: Optional[Sequence[Matcher]] = None,
                 logger: Optional[logging.Logger] = None):
        self.tool_specs = dict(DEFAULT_TOOL_SPECS if tool_specs is None else tool_specs)
        self.known_tools = set(known_tools) if known_tools is not None else None
        self.shell_tool_name = shell_tool_name
        self.shell_blocks_as_tools = shell_blocks_as_tools
        self.strict_tools = strict_tools and self.known_tools is not None
        self._command_tools = set(self.known_tools or ()) | set(self.tool_specs)
        self.matchers = list(matchers) if matchers is not None else default_matchers(
            self._command_tools)
        self._log = resolve_logger(logger, __name__)
        self._detector = HallucinationDetector(self._log)
        self._semantic = SemanticAnalyzer(self.tool_specs, self.known_tools)

    def compile(self, raw_text: str) -> CompileResult:
        raw_text = raw_text or ""
        try:
            return self._compile(raw_text)
        except Exception as e:
            self._log.error("compiler fault, falling back to plain text: %s", e, exc_info=True)
            diag = Diagnostic(Severity.ERROR, COMPILER_FAULT,
                              f"{type(e).__name__}: {e}", Phase.VALIDATE)
            ast: List[Node] = []
            if raw_text:
                ast.append(TextNode(raw_text, (0, len(raw_text))))
            ast.append(ErrorNode(COMPILER_FAULT, "The response could not be analysed; "
                                 "showing it unchanged.", (0, len(raw_text))))
            return CompileResult(True, ast, [diag], degraded=True)

    # ── phases ──

    def _compile(self, raw: str) -> CompileResult:
        diagnostics: List[Diagnostic] = []

        segments = segment(raw)
        for seg in segments:
            if seg.kind == "code" and not seg.terminated:
                diagnostics.append(Diagnostic(
                    Severity.WARNING, "UNTERMINATED_FENCE",
                    f"{seg.language or 'code'} fence is never closed", Phase.LEX,
                    (seg.start, seg.end)))

        nodes, fence_regions = self._parse(raw, segments, diagnostics)

        regions = sorted(self._detector.scan(segments) + fence_regions, key=lambda r: r.start)
        for region in regions:
            diagnostics.append(Diagnostic(Severity.WARNING, HALLUCINATION_DETECTED,
                                          region.message, Phase.HALLUCINATION,
                                          (region.start, region.end)))
        nodes = self._detector.apply(raw, nodes, regions)

        diagnostics.extend(self._semantic.analyze(nodes))
        nodes = self._optimize(nodes)
        nodes = self._validate(nodes, diagnostics)

        self._log.debug("compiled %d chars into %d nodes (%d diagnostics)",
                        len(raw), len(nodes), len(diagnostics))
        return CompileResult(True, nodes, diagnostics)

    def _parse(self, raw: str, segments: List[Segment], diagnostics: List[Diagnostic]):
        nodes: List[Node] = []
        fence_regions: List[HallucinationRegion] = []
        prose = ""
        for seg in segments:
            if seg.kind == "text":
                nodes.extend(self._parse_text(raw, seg, diagnostics))
                prose = seg.content
                continue
            span = (seg.start, seg.end)
            if seg.language.lower() in RESULT_FENCE_LANGUAGES:
                fence_regions.append(HallucinationRegion(seg.start, seg.end, "fence"))
                nodes.append(CodeNode(seg.language, seg.content, span))
            else:
                nodes.append(self._parse_code(raw, seg, prose, diagnostics))
            prose = ""
        return nodes, fence_regions

    def _parse_text(self, raw: str, seg: Segment,
                    diagnostics: List[Diagnostic]) -> List[Node]:
        text = seg.content
        base = seg.start
        out: List[Node] = []
        pos = 0
        while pos < len(text):
            match = select_match(self.matchers, text, pos)
            if match is None or match.end <= pos:
                break
            if match.start > pos:
                out.append(TextNode(text[pos:match.start], (base + pos, base + match.start)))
            span = (base + match.start, base + match.end)
            out.append(self._call_or_text(raw, match.tool_id, match.parameters,
                                          match.convention, span, diagnostics))
            pos = match.end
        if pos < len(text):
            out.append(TextNode(text[pos:], (base + pos, base + len(text))))
        return out

    def _parse_code(self, raw: str, seg: Segment, prose: str,
                    diagnostics: List[Diagnostic]) -> Node:
        span = (seg.start, seg.end)
        language = seg.language.lower()
        shape = None
        convention = ""
        if language in JSON_FENCE_LANGUAGES:
            shape = parse_json_tool_call(seg.content)
            convention = FENCED_JSON
        elif language in SHELL_LANGUAGES and seg.terminated:
            shape = classify_shell_block(seg.content, prose, self._command_tools,
                                         self.shell_tool_name, self.shell_blocks_as_tools)
            convention = SHELL_COMMAND
        if shape is None:
            return CodeNode(seg.language, seg.content, span)
        return self._call_or_text(raw, shape[0], shape[1], convention, span, diagnostics)

    def _call_or_text(self, raw: str, name: str, arguments: dict, convention: str,
                      span, diagnostics: List[Diagnostic]) -> Node:
        if self.strict_tools and name not in self.known_tools:
            diagnostics.append(Diagnostic(Severity.INFO, "UNKNOWN_TOOL",
                                          f"{name} is not registered; kept as text",
                                          Phase.PARSE, span))
            return TextNode(raw[span[0]:span[1]], span)
        mapping = map_parameters(arguments, self.tool_specs.get(name))
        if mapping.changed:
            self._log.debug("%s: %s arguments mapped (%s)",
                            FaultKind.RECOVERABLE_MALFORMATION.value, name, mapping.describe())
            diagnostics.append(Diagnostic(Severity.INFO, "PARAMETERS_MAPPED",
                                          f"{name}: {mapping.describe()}", Phase.PARSE, span))
        return ToolCallNode(name, mapping.arguments, convention, span)

    def map_arguments(self, name: str, arguments: dict) -> dict:
        """Arguments renamed and coerced the way compiled calls are."""
        return map_parameters(arguments, self.tool_specs.get(name)).arguments

    def _optimize(self, nodes: List[Node]) -> List[Node]:
        seen = set()
        deduped: List[Node] = []
        for node in nodes:
            if isinstance(node, ToolCallNode):
                key = (node.tool_name, canonical_arguments(node.arguments))
                if key in seen:
                    continue
                seen.add(key)
            deduped.append(node)

        merged: List[Node] = []
        for node in deduped:
            if isinstance(node, TextNode) and merged and isinstance(merged[-1], TextNode):
                prev = merged[-1]
                merged[-1] = TextNode(prev.content + node.content, (prev.span[0], node.span[1]))
            else:
                merged.append(node)

        out: List[Node] = []
        for node in merged:
            if isinstance(node, TextNode):
                content = _TRAILING_BLANK_RE.sub("", _LEADING_BLANK_RE.sub("", node.content))
                if not content.strip():
                    continue
                node = TextNode(content, node.span)
            out.append(node)
        return out

    def _validate(self, nodes: List[Node], diagnostics: List[Diagnostic]) -> List[Node]:
        out: List[Node] = []
        for node in nodes:
            if isinstance(node, ToolCallNode):
                if not node.tool_name or not isinstance(node.arguments, dict):
                    diagnostics.append(Diagnostic(Severity.ERROR, "INVALID_TOOL_CALL",
                                                  "tool call without a name or arguments",
                                                  Phase.VALIDATE, node.span))
                    continue
            elif isinstance(node, CodeNode):
                lines = node.code.split("\n")
                if lines and (_FENCE_LINE_RE.match(lines[0]) or _FENCE_LINE_RE.match(lines[-1])):
                    while lines and _FENCE_LINE_RE.match(lines[0]):
                        lines.pop(0)
                    while lines and _FENCE_LINE_RE.match(lines[-1]):
                        lines.pop()
                    diagnostics.append(Diagnostic(Severity.WARNING, "FENCE_IN_CODE",
                                                  "removed fence markers from a code block",
                                                  Phase.VALIDATE, node.span))
                    node = CodeNode(node.language, "\n".join(lines), node.span)
            out.append(node)
        return out
