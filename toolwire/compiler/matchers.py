"""Tool-call conventions as an ordered list of matchers.

A matcher is ``(text, pos) -> Optional[Match]``: the first embedding of its
convention starting at or after ``pos``. ``select_match`` asks every matcher
and keeps the earliest start, breaking ties by the longest span.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..json_repair import Fixed, bracket_index, repair, safe_parse
from ..tool_json import coerce_tool_call

__all__ = [
    "Match",
    "Matcher",
    "match_bare_json",
    "match_tagged_json",
    "ShellLineMatcher",
    "default_matchers",
    "select_match",
    "parse_json_tool_call",
    "classify_shell_block",
    "SHELL_LANGUAGES",
    "ILLUSTRATIVE_CUES",
    "canonical_arguments",
    "BARE_JSON",
    "TAGGED_JSON",
    "FENCED_JSON",
    "SHELL_COMMAND",
]

BARE_JSON = "bare_json"
TAGGED_JSON = "tagged_json"
FENCED_JSON = "fenced_json"
SHELL_COMMAND = "shell_command"

SHELL_LANGUAGES = {"bash", "sh", "shell", "zsh", "console", "terminal"}
ILLUSTRATIVE_CUES = (
    "example", "e.g", "for instance", "you can", "you could", "you might",
    "to install", "run the following", "usage", "like this", "such as", "manually",
)
PROSE_WINDOW = 240

_TOOL_OPEN_RE = re.compile(
    r'\{\s*"(?:tool|tool_name|name|function|tool_call|function_call)"\s*:')
_TAG_OPEN_RE = re.compile(r"<(tool_call|function_call)>", re.IGNORECASE)
_SHELL_LINE_RE = re.compile(
    r"^[ \t]*[$>%][ \t]*([A-Za-z_][\w.\-]*)[ \t]+(\{.*\})[ \t]*$", re.MULTILINE)
_DISGUISED_RE = re.compile(r"^([A-Za-z_][\w.\-]*)[ \t]+(\{[\s\S]*\})$")
_PROMPT_RE = re.compile(r"^[ \t]*\$[ \t]?", re.MULTILINE)


@dataclass(frozen=True)
class Match:
    start: int
    end: int
    tool_id: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    convention: str = ""

    @property
    def length(self) -> int:
        return self.end - self.start


Matcher = Callable[[str, int], Optional[Match]]


def parse_json_tool_call(text: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    """``(name, arguments)`` when ``text`` is (almost) a tool-call JSON object."""
    stripped = text.strip()
    if not stripped.startswith("{"):
        return None
    return coerce_tool_call(safe_parse(stripped))


def match_bare_json(text: str, pos: int) -> Optional[Match]:
    brackets = bracket_index(text)
    i = text.find("{", pos)
    while i >= 0:
        end = brackets.end(i)
        if end > 0:
            result = repair(text[i:end])
            if isinstance(result, Fixed):
                shape = coerce_tool_call(result.value)
                if shape:
                    return Match(i, end, shape[0], shape[1], BARE_JSON)
                # Valid JSON that is not a call: don't look inside it.
                i = text.find("{", end)
                continue
        elif _TOOL_OPEN_RE.match(text, i):
            # Unclosed at end of text; repair balances it.
            shape = parse_json_tool_call(text[i:])
            if shape:
                return Match(i, len(text), shape[0], shape[1], BARE_JSON)
        i = text.find("{", i + 1)
    return None


def match_tagged_json(text: str, pos: int) -> Optional[Match]:
    lowered = text.lower()
    m = _TAG_OPEN_RE.search(text, pos)
    while m:
        closer = f"</{m.group(1).lower()}>"
        body_start = m.end()
        close = lowered.find(closer, body_start)
        brace = text.find("{", body_start)
        shape = None
        end = -1
        if close >= 0:
            end = close + len(closer)
            if 0 <= brace < close:
                shape = parse_json_tool_call(text[brace:close])
        elif brace >= 0:
            balanced = bracket_index(text).end(brace)
            end = balanced if balanced > 0 else len(text)
            shape = parse_json_tool_call(text[brace:end])
        if shape:
            return Match(m.start(), end, shape[0], shape[1], TAGGED_JSON)
        m = _TAG_OPEN_RE.search(text, m.end())
    return None


class ShellLineMatcher:
    """``$ read_file {"path": "a.py"}``: a tool call written as a shell prompt."""

    def __init__(self, known_tools: Iterable[str]):
        self.known_tools = set(known_tools)

    def __call__(self, text: str, pos: int) -> Optional[Match]:
        for m in _SHELL_LINE_RE.finditer(text, pos):
            name = m.group(1)
            if name not in self.known_tools:
                continue
            args = safe_parse(m.group(2))
            if isinstance(args, dict):
                return Match(m.start(), m.end(), name, args, SHELL_COMMAND)
        return None


def default_matchers(known_tools: Iterable[str] = ()) -> List[Matcher]:
    return [match_bare_json, match_tagged_json, ShellLineMatcher(known_tools)]


def select_match(matchers: Sequence[Matcher], text: str, pos: int) -> Optional[Match]:
    best: Optional[Match] = None
    for matcher in matchers:
        found = matcher(text, pos)
        if found is None:
            continue
        if (best is None or found.start < best.start
                or (found.start == best.start and found.length > best.length)):
            best = found
    return best


def _strip_prompts(body: str) -> str:
    return _PROMPT_RE.sub("", body).strip()


def is_illustrative(preceding_prose: str) -> bool:
    window = preceding_prose[-PROSE_WINDOW:].lower()
    return any(cue in window for cue in ILLUSTRATIVE_CUES)


def classify_shell_block(body: str, preceding_prose: str, known_tools: Iterable[str],
                         shell_tool: str, blocks_as_tools: bool = True
                         ) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Decide whether a shell-tagged fence is a tool call.

    Best-effort: tool JSON in the body, or a ``known_tool {json}`` command,
    always counts. Any other command counts as a call to ``shell_tool``
    unless the prose just before the fence reads as an illustration.
    """
    command = _strip_prompts(body)
    if not command:
        return None
    shape = parse_json_tool_call(command)
    if shape:
        return shape
    disguised = _DISGUISED_RE.match(command)
    if disguised and disguised.group(1) in set(known_tools):
        args = safe_parse(disguised.group(2))
        if isinstance(args, dict):
            return disguised.group(1), args
    if not blocks_as_tools or is_illustrative(preceding_prose):
        return None
    return shell_tool, {"command": command}


def canonical_arguments(arguments: Dict[str, Any]) -> str:
    return json.dumps(arguments, sort_keys=True, ensure_ascii=False, default=str)
