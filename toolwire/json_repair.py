"""Heuristic repair of almost-JSON produced by language models.

The heuristic set is fixed and applied in one left-to-right scan:

1. balance unmatched braces and brackets
2. close an unterminated string at the end of the input
3. strip trailing commas before closers and at the end of the input
4. quote bare identifiers used as values

Anything those four rules cannot fix is reported as a failure. Successful
output is canonical JSON text, so ``repair(repair(x).json) == repair(x)``.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple, Union

__all__ = [
    "FailureKind",
    "Fixed",
    "Fails",
    "RepairResult",
    "repair",
    "repair_text",
    "safe_parse",
    "find_balanced_end",
    "BracketIndex",
    "bracket_index",
    "is_complete_json",
]

_LITERALS = {"true", "false", "null"}
_WORD_CHARS = "_.-/$"


class FailureKind(str, Enum):
    EMPTY = "empty"
    NOT_JSON = "not_json"
    UNPARSEABLE = "unparseable"


@dataclass(frozen=True)
class Fixed:
    """Valid, canonical JSON text."""
    json: str
    repaired: bool = field(default=False, compare=False)
    value: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Fails:
    kind: FailureKind
    detail: str = field(default="", compare=False)


RepairResult = Union[Fixed, Fails]


def repair(text: Optional[str]) -> RepairResult:
    """Normalize an almost-JSON fragment into valid JSON."""
    if text is None or not text.strip():
        return Fails(FailureKind.EMPTY, "no content")

    stripped = text.strip()
    ok, value, error = _loads(stripped)
    if ok:
        return _fixed(value, repaired=False)

    if stripped[0] not in "{[":
        return Fails(FailureKind.NOT_JSON, "input does not start with an object or array")

    healed = _heal(stripped)
    ok, value, error = _loads(healed)
    if ok:
        return _fixed(value, repaired=True)
    return Fails(FailureKind.UNPARSEABLE, error)


def repair_text(text: str) -> str:
    """Return the repaired JSON text, or ``text`` unchanged when it can't be fixed."""
    result = repair(text)
    return result.json if isinstance(result, Fixed) else text


def safe_parse(text: Optional[str]) -> Optional[Any]:
    """Parse ``text`` as JSON, repairing it first if needed. ``None`` on failure."""
    result = repair(text)
    if isinstance(result, Fixed):
        return result.value
    return None


def find_balanced_end(text: str, start: int) -> int:
    """Index just past the bracket closing the one at ``text[start]``, or -1.

    String literals are skipped, so braces inside quoted values don't count.
    """
    if start < 0 or start >= len(text) or text[start] not in "{[":
        return -1
    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return idx + 1
    return -1


class BracketIndex:
    """``find_balanced_end`` for every opener of one text, computed lazily.

    A scan started at an opener also settles every opener it meets outside a
    string literal: a fresh scan from there would see the same characters in
    the same state. A scan that reaches a settled opener jumps past its block,
    or stops when that opener never closes, so querying every ``{`` of a long
    turn stays close to linear instead of one full scan per opener.
    """

    def __init__(self, text: str):
        self.text = text
        self._ends: Dict[int, int] = {}

    def end(self, start: int) -> int:
        text = self.text
        if start < 0 or start >= len(text) or text[start] not in "{[":
            return -1
        known = self._ends.get(start)
        if known is not None:
            return known

        stack: List[int] = []
        in_string = False
        escape = False
        idx = start
        while idx < len(text):
            ch = text[idx]
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch in "{[":
                settled = self._ends.get(idx)
                if settled is None:
                    stack.append(idx)
                elif settled < 0:
                    # Never closes, so nothing opened before it can close.
                    break
                else:
                    idx = settled
                    continue
            elif ch in "}]":
                opener = stack.pop()
                self._ends[opener] = idx + 1
                if not stack:
                    return idx + 1
            idx += 1

        for opener in stack:
            self._ends[opener] = -1
        return -1


@lru_cache(maxsize=16)
def bracket_index(text: str) -> BracketIndex:
    """The shared index for ``text``; the compiler's scanners reuse it per turn."""
    return BracketIndex(text)



def is_complete_json(text: str) -> bool:
    """True when ``text`` is one structurally closed object or array."""
    stripped = (text or "").strip()
    if not stripped or stripped[0] not in "{[":
        return False
    return find_balanced_end(stripped, 0) == len(stripped)


# ── Internals ──


def _fixed(value: Any, repaired: bool) -> RepairResult:
    try:
        canonical = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError, RecursionError) as e:
        return Fails(FailureKind.UNPARSEABLE, str(e))
    return Fixed(canonical, repaired=repaired, value=value)


def _loads(text: str) -> Tuple[bool, Any, str]:
    try:
        return True, json.loads(text, strict=False), ""
    except (ValueError, RecursionError) as e:
        return False, None, str(e)


def _last_significant(out: List[str]) -> str:
    for piece in reversed(out):
        stripped = piece.rstrip()
        if stripped:
            return stripped[-1]
    return ""


def _in_value_position(out: List[str], stack: List[str]) -> bool:
    last = _last_significant(out)
    if last == ":":
        return True
    return bool(stack) and stack[-1] == "]" and last in "[,"


def _strip_trailing_comma(out: List[str]) -> None:
    k = len(out) - 1
    while k >= 0 and out[k].isspace():
        k -= 1
    if k >= 0 and out[k] == ",":
        del out[k]


def _heal(text: str) -> str:
    out: List[str] = []
    stack: List[str] = []  # expected closers
    in_string = False
    escape = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
            out.append(ch)
        elif ch in "}]":
            # A closer that skips open levels closes them too; one with
            # nothing to close is dropped.
            if ch in stack:
                while stack:
                    expected = stack.pop()
                    _strip_trailing_comma(out)
                    out.append(expected)
                    if expected == ch:
                        break
        elif ch.isalpha() or ch == "_":
            j = i
            while j < n and (text[j].isalnum() or text[j] in _WORD_CHARS):
                j += 1
            word = text[i:j]
            if word in _LITERALS or not _in_value_position(out, stack):
                out.append(word)
            else:
                out.append(json.dumps(word, ensure_ascii=False))
            i = j
            continue
        else:
            out.append(ch)
        i += 1

    if in_string:
        if escape:
            out.pop()
        out.append('"')
    _strip_trailing_comma(out)
    while stack:
        out.append(stack.pop())
    return "".join(out)
