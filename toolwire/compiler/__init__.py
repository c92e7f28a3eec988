"""Response compiler: segmenter, matchers, hallucination pass and renderer."""

from .compiler import CompileResult, ResponseCompiler
from .hallucination import HallucinationDetector, HallucinationRegion
from .matchers import Match, default_matchers, select_match
from .nodes import (
    COMPILER_FAULT,
    HALLUCINATION_DETECTED,
    CodeNode,
    Diagnostic,
    ErrorNode,
    Phase,
    Severity,
    TextNode,
    ToolCallNode,
    count_kinds,
)
from .parameters import ParameterMapping, map_parameters
from .renderer import (
    AstRenderer,
    CodeBlock,
    ErrorBlock,
    TextBlock,
    ToolCallBlock,
    sanitize_text,
    to_text,
)
from .segmenter import Segment, segment
from .semantic import DEFAULT_TOOL_SPECS, SemanticAnalyzer, ToolSpec

__all__ = [
    "CompileResult",
    "ResponseCompiler",
    "HallucinationDetector",
    "HallucinationRegion",
    "Match",
    "default_matchers",
    "select_match",
    "ParameterMapping",
    "map_parameters",
    "COMPILER_FAULT",
    "HALLUCINATION_DETECTED",
    "CodeNode",
    "Diagnostic",
    "ErrorNode",
    "Phase",
    "Severity",
    "TextNode",
    "ToolCallNode",
    "count_kinds",
    "AstRenderer",
    "CodeBlock",
    "ErrorBlock",
    "TextBlock",
    "ToolCallBlock",
    "sanitize_text",
    "to_text",
    "Segment",
    "segment",
    "DEFAULT_TOOL_SPECS",
    "SemanticAnalyzer",
    "ToolSpec",
]
