"""Detection of tool results the model fabricated inside its own turn.

A model never receives tool output in the middle of its own response, so any
result envelope found in assistant prose is invented. Regions are searched in
text segments only; fenced code is left alone.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..errors import FaultKind
from ..json_repair import bracket_index, safe_parse
from ..logger import resolve_logger
from ..tool_json import looks_like_tool_result
from .nodes import HALLUCINATION_DETECTED, ErrorNode, Node, TextNode
from .segmenter import Segment

__all__ = ["HallucinationRegion", "HallucinationDetector", "RESULT_FENCE_LANGUAGES"]

RESULT_FENCE_LANGUAGES = {"tool_result", "tool_response", "tool_output"}

_MARKER_RE = re.compile(
    r"\[(?:Tool\s+Results?|Tool\s+Execution|Tool\s+Output|Output|Result)\]", re.IGNORECASE)
# A marker's envelope runs until a blank line followed by ordinary prose.
_ENVELOPE_END_RE = re.compile(r"\n[ \t]*\n(?=[ \t]*[A-Za-z])")
_CHEVRON_RE = re.compile(r"<<<[\s\S]*?>>>")
_RESULT_TAG_RE = re.compile(
    r"<(tool_result|tool_response|tool_output)>[\s\S]*?(?:</\1>|\Z)", re.IGNORECASE)

_MESSAGES = {
    "marker": "Removed a fabricated tool-result block from the response.",
    "chevron": "Removed fabricated tool output from the response.",
    "tag": "Removed a fabricated tool-response tag from the response.",
    "json": "Removed a fabricated tool-response object from the response.",
    "fence": "Removed a fenced block posing as tool output.",
}


@dataclass(frozen=True)
class HallucinationRegion:
    start: int
    end: int
    kind: str

    @property
    def message(self) -> str:
        return _MESSAGES.get(self.kind, _MESSAGES["marker"])


class HallucinationDetector:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self._log = resolve_logger(logger, __name__)

    def find_regions(self, text: str, offset: int = 0) -> List[HallucinationRegion]:
        regions: List[HallucinationRegion] = []
        for m in _MARKER_RE.finditer(text):
            end_m = _ENVELOPE_END_RE.search(text, m.end())
            end = end_m.start() if end_m else len(text)
            regions.append(HallucinationRegion(offset + m.start(), offset + end, "marker"))
        for m in _CHEVRON_RE.finditer(text):
            regions.append(HallucinationRegion(offset + m.start(), offset + m.end(), "chevron"))
        for m in _RESULT_TAG_RE.finditer(text):
            regions.append(HallucinationRegion(offset + m.start(), offset + m.end(), "tag"))
        regions.extend(self._result_objects(text, offset))
        return _merge(regions)

    def _result_objects(self, text: str, offset: int) -> List[HallucinationRegion]:
        found: List[HallucinationRegion] = []
        brackets = bracket_index(text)
        i = text.find("{")
        while i >= 0:
            end = brackets.end(i)
            if end > 0:
                value = safe_parse(text[i:end])
                if looks_like_tool_result(value):
                    found.append(HallucinationRegion(offset + i, offset + end, "json"))
                if value is not None:
                    i = text.find("{", end)
                    continue
            i = text.find("{", i + 1)
        return found

    def scan(self, segments: Sequence[Segment]) -> List[HallucinationRegion]:
        regions: List[HallucinationRegion] = []
        for seg in segments:
            if seg.kind == "text":
                regions.extend(self.find_regions(seg.content, seg.start))
        return regions

    def apply(self, raw: str, nodes: List[Node],
              regions: Sequence[HallucinationRegion]) -> List[Node]:
        """Replace everything inside ``regions`` with one ``ErrorNode`` each."""
        if not regions:
            return list(nodes)
        pending = sorted(regions, key=lambda r: r.start)
        emitted = set()
        out: List[Node] = []

        def emit_error(region: HallucinationRegion):
            if region in emitted:
                return
            emitted.add(region)
            out.append(ErrorNode(HALLUCINATION_DETECTED, region.message,
                                 (region.start, region.end)))
            self._log.info("%s: %s [%d:%d]", FaultKind.HALLUCINATED_CONTENT.value,
                           region.kind, region.start, region.end)

        for node in nodes:
            ns, ne = node.span
            overlapping = [r for r in pending if r.start < ne and r.end > ns]
            if not overlapping:
                out.append(node)
                continue
            if not isinstance(node, TextNode):
                # Calls parsed out of a fabricated block are never dispatched.
                emit_error(overlapping[0])
                continue
            cursor = ns
            for region in overlapping:
                if region.start > cursor:
                    out.append(TextNode(raw[cursor:region.start], (cursor, region.start)))
                emit_error(region)
                cursor = max(cursor, region.end)
            if cursor < ne:
                out.append(TextNode(raw[cursor:ne], (cursor, ne)))
        return out


def _merge(regions: List[HallucinationRegion]) -> List[HallucinationRegion]:
    merged: List[HallucinationRegion] = []
    for region in sorted(regions, key=lambda r: (r.start, -r.end)):
        if merged and region.start < merged[-1].end:
            last = merged[-1]
            if region.end > last.end:
                merged[-1] = HallucinationRegion(last.start, region.end, last.kind)
            continue
        merged.append(region)
    return merged
