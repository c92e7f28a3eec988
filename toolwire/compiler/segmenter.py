"""Split a model turn on fenced-code boundaries.

Fences follow the CommonMark rules that matter in practice: three or more
backticks or tildes at the start of a line (up to three spaces of indent),
closed by a fence of the same character that is at least as long. A backtick
fence whose info string contains a backtick is inline code, not a fence.
"""

import re
from dataclasses import dataclass
from typing import List

__all__ = ["Segment", "segment"]

_FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})[ \t]*([^\s`]*)(.*)$")
_FENCE_CLOSE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})[ \t]*$")


@dataclass
class Segment:
    kind: str          # "text" or "code"
    start: int
    end: int
    content: str       # raw slice for text, fence-free body for code
    language: str = ""
    terminated: bool = True


def segment(text: str) -> List[Segment]:
    segments: List[Segment] = []
    text_start = 0
    offset = 0
    fence = None  # (char, length, language, segment_start, body_start)

    for line in text.splitlines(keepends=True):
        line_start = offset
        offset += len(line)
        bare = line.rstrip("\r\n")

        if fence is None:
            m = _FENCE_OPEN_RE.match(bare)
            if not m:
                continue
            marker, language, rest = m.group(1), m.group(2), m.group(3)
            if marker[0] == "`" and "`" in rest:
                continue
            if line_start > text_start:
                segments.append(Segment("text", text_start, line_start,
                                        text[text_start:line_start]))
            fence = (marker[0], len(marker), language, line_start, offset)
            continue

        m = _FENCE_CLOSE_RE.match(bare)
        if m and m.group(1)[0] == fence[0] and len(m.group(1)) >= fence[1]:
            _, _, language, seg_start, body_start = fence
            end = line_start + len(bare)
            segments.append(Segment("code", seg_start, end,
                                    _body(text[body_start:line_start]), language))
            text_start = end
            fence = None

    if fence is not None:
        _, _, language, seg_start, body_start = fence
        segments.append(Segment("code", seg_start, len(text),
                                _body(text[body_start:]), language, terminated=False))
    elif text_start < len(text):
        segments.append(Segment("text", text_start, len(text), text[text_start:]))
    return segments


def _body(raw: str) -> str:
    if raw.endswith("\r\n"):
        return raw[:-2]
    if raw.endswith("\n"):
        return raw[:-1]
    return raw
