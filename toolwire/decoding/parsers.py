"""Vendor response parsers.

A parser wraps a ``StreamingToolCallAccumulator`` and scrubs the framing
quirks of one model family out of the visible text: stray braces left behind
by half-emitted tool JSON, raw parameter dumps, empty ``json`` fences, and
vendor tags such as Qwen's ``<think>`` blocks.

Streaming output is released a line at a time so each line can be judged
whole. ``clean_response_text`` is the batch version used on complete text.
"""

import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from ..json_repair import find_balanced_end, safe_parse
from ..logger import resolve_logger
from ..models import ToolCallRequest
from ..tool_json import coerce_tool_call
from .accumulator import StreamingToolCallAccumulator

__all__ = ["ResponseParser", "QwenParser", "get_parser", "clean_response_text"]

_ZERO_WIDTH_RE = re.compile("[\u200b-\u200f\u2060\ufeff]")
_FENCE_LINE_RE = re.compile(r"^\s{0,3}(`{3,}|~{3,})\s*([\w+#.\-]*)\s*$")
_TAGGED_CALL_RE = re.compile(
    r"<(tool_call|function_call)>[\s\S]*?(?:</\1>|\Z)", re.IGNORECASE)
_STRAY_LINE_RE = re.compile(r"^\s*[{}\[\]]\s*,?\s*$")
_ORPHAN_TAG_LINE_RE = re.compile(r"^\s*</?(?:tool_call|function_call)>\s*$", re.IGNORECASE)
_PARAM_DUMP_RE = re.compile(
    r'^\s*"[\w\-. ]+"\s*:\s*'
    r'(?:"(?:[^"\\]|\\.)*"|-?\d+(?:\.\d+)?|true|false|null|\[.*\]|\{.*\})'
    r'\s*,?\s*$')
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_JSON_FENCE_LANGS = {"json", "jsonc", "tool_call"}


def _is_scaffolding_line(line: str) -> bool:
    return bool(
        _STRAY_LINE_RE.match(line)
        or _ORPHAN_TAG_LINE_RE.match(line)
        or _PARAM_DUMP_RE.match(line)
    )


def _strip_tool_json(text: str) -> str:
    """Remove balanced JSON objects that are tool calls."""
    out: List[str] = []
    i = 0
    while i < len(text):
        if text[i] == "{":
            end = find_balanced_end(text, i)
            if end > 0 and coerce_tool_call(safe_parse(text[i:end])) is not None:
                i = end
                continue
        out.append(text[i])
        i += 1
    return "".join(out)


def _split_fenced(text: str) -> List[Tuple[Optional[str], str]]:
    """Split into ``(fence_language_or_None, chunk)`` pieces that join back to ``text``."""
    pieces: List[Tuple[Optional[str], str]] = []
    current: List[str] = []
    language: Optional[str] = None
    for line in text.splitlines(keepends=True):
        m = _FENCE_LINE_RE.match(line.rstrip("\n"))
        if language is None and m:
            if current:
                pieces.append((None, "".join(current)))
            current = [line]
            language = m.group(2).lower()
        elif language is not None and m and not m.group(2):
            current.append(line)
            pieces.append((language, "".join(current)))
            current = []
            language = None
        else:
            current.append(line)
    if current:
        pieces.append((language, "".join(current)))
    return pieces


def _fence_body(chunk: str) -> str:
    lines = chunk.splitlines()
    if lines and _FENCE_LINE_RE.match(lines[0]):
        lines = lines[1:]
    if lines and _FENCE_LINE_RE.match(lines[-1]):
        lines = lines[:-1]
    return "\n".join(lines)


class ResponseParser:
    """Generic parser, also the base for vendor variants."""

    name = "generic"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._log = resolve_logger(logger, __name__)
        self.accumulator = StreamingToolCallAccumulator(
            candidate_fixups=self.candidate_fixups(), logger=logger)
        self._reset_stream_state()

    def _reset_stream_state(self):
        self._pending = ""
        self._held: List[str] = []
        self._in_fence = False
        self._reasoning: List[str] = []

    # ── Hooks for vendor variants ──

    def candidate_fixups(self) -> Sequence[Callable[[str], str]]:
        return ()

    def strip_vendor_artifacts(self, text: str) -> str:
        return text

    def _strip_vendor_line(self, line: str) -> str:
        return line

    # ── Streaming ──

    def feed(self, delta: str) -> Tuple[List[ToolCallRequest], str]:
        calls, visible = self.accumulator.feed(delta)
        return calls, self._release(visible, final=False)

    def finish(self) -> Tuple[List[ToolCallRequest], str]:
        calls, visible = self.accumulator.finish()
        text = self._release(visible, final=True)
        self._in_fence = False
        return calls, text

    def reset(self):
        self.accumulator.reset()
        self._reset_stream_state()

    def drain_reasoning(self) -> str:
        text = "".join(self._reasoning)
        self._reasoning = []
        return text

    def parse(self, text: str) -> Tuple[List[ToolCallRequest], str]:
        """Batch form: all tool calls in ``text`` plus its cleaned visible text."""
        calls, visible = self.feed(text)
        tail_calls, tail = self.finish()
        return calls + tail_calls, self.clean_response_text(visible + tail)

    def _release(self, visible: str, final: bool) -> str:
        self._pending += visible
        if final:
            chunk, self._pending = self._pending, ""
        else:
            cut = self._pending.rfind("\n")
            if cut < 0:
                return ""
            chunk, self._pending = self._pending[:cut + 1], self._pending[cut + 1:]

        out: List[str] = []
        for line in chunk.splitlines(keepends=True):
            out.extend(self._scrub_line(line))
        if final and self._held:
            out.extend(self._held)
            self._held = []
        return "".join(out)

    def _scrub_line(self, raw_line: str) -> List[str]:
        line = _ZERO_WIDTH_RE.sub("", self._strip_vendor_line(raw_line))
        if not line:
            return []
        bare = line.strip()
        fence = _FENCE_LINE_RE.match(bare)

        released: List[str] = []
        if self._held:
            if not bare:
                self._held.append(line)
                return []
            if fence and not fence.group(2):
                # Empty json fence: its tool call was already taken out.
                self._held = []
                self._in_fence = False
                return []
            released, self._held = self._held, []

        if fence:
            if not self._in_fence:
                self._in_fence = True
                if fence.group(2).lower() in _JSON_FENCE_LANGS:
                    self._held = [line]
                    return released
            elif not fence.group(2):
                self._in_fence = False
            return released + [line]
        if self._in_fence or not _is_scaffolding_line(line):
            return released + [line]
        return released

    # ── Batch cleaning ──

    def clean_response_text(self, text: str) -> str:
        """Strip tool-call scaffolding. Idempotent; ``""`` for pure scaffolding."""
        if not text:
            return ""
        current = text
        while True:
            cleaned = self._clean_once(current)
            if cleaned == current:
                return cleaned
            current = cleaned

    def _clean_once(self, text: str) -> str:
        text = _ZERO_WIDTH_RE.sub("", self.strip_vendor_artifacts(text))
        pieces: List[str] = []
        for language, chunk in _split_fenced(text):
            if language is None:
                pieces.append(self._clean_prose(chunk))
                continue
            body = _fence_body(chunk).strip()
            if language in _JSON_FENCE_LANGS or language == "":
                if not body or coerce_tool_call(safe_parse(body)) is not None:
                    continue
            pieces.append(chunk)
        text = "".join(pieces)
        text = "\n".join(line.rstrip() for line in text.split("\n"))
        text = _BLANK_RUN_RE.sub("\n\n", text)
        return text.strip()

    def _clean_prose(self, chunk: str) -> str:
        chunk = _TAGGED_CALL_RE.sub("", chunk)
        chunk = _strip_tool_json(chunk)
        kept = [line for line in chunk.splitlines(keepends=True)
                if not _is_scaffolding_line(line)]
        return "".join(kept)


_THINK_BLOCK_RE = re.compile(r"<think>[\s\S]*?(?:</think>|\Z)", re.IGNORECASE)
_THINK_PREFIX_RE = re.compile(r"^[\s\S]*?</think>", re.IGNORECASE)
_GARBAGE_YOU_RE = re.compile("Y[\u200b-\u200f\ufeff]+ou\\b")
_QWEN_BOOL_TAIL_RE = re.compile(r",\s*(true|false)\s*\}")


def _fix_bare_recursive_flag(candidate: str) -> str:
    """Qwen sometimes drops the key in ``{"path": ".", false}``."""
    if "list_directory" not in candidate:
        return candidate
    return _QWEN_BOOL_TAIL_RE.sub(r', "recursive": \1}', candidate)


class QwenParser(ResponseParser):
    """Qwen family: ``<think>`` blocks, ``{"tool_call": ...}`` wrappers."""

    name = "qwen"

    def _reset_stream_state(self):
        super()._reset_stream_state()
        self._in_think = False

    def candidate_fixups(self) -> Sequence[Callable[[str], str]]:
        return (_fix_bare_recursive_flag,)

    def strip_vendor_artifacts(self, text: str) -> str:
        text = _GARBAGE_YOU_RE.sub("", text)
        text = _THINK_BLOCK_RE.sub("", text)
        if "</think>" in text.lower():
            text = _THINK_PREFIX_RE.sub("", text, count=1)
        return text

    def _strip_vendor_line(self, line: str) -> str:
        visible = []
        rest = line
        while rest:
            lowered = rest.lower()
            if self._in_think:
                end = lowered.find("</think>")
                if end < 0:
                    self._reasoning.append(rest)
                    break
                self._reasoning.append(rest[:end])
                rest = rest[end + len("</think>"):]
                self._in_think = False
            else:
                start = lowered.find("<think>")
                if start < 0:
                    visible.append(rest)
                    break
                visible.append(rest[:start])
                rest = rest[start + len("<think>"):]
                self._in_think = True
        return _GARBAGE_YOU_RE.sub("", "".join(visible))


_PARSERS = {
    "qwen": QwenParser,
    "qwq": QwenParser,
}


def get_parser(model: Optional[str], logger: Optional[logging.Logger] = None) -> ResponseParser:
    """Pick the parser for a model id such as ``openai/Qwen3-32B``."""
    lowered = (model or "").lower()
    for marker, cls in _PARSERS.items():
        if marker in lowered:
            return cls(logger=logger)
    return ResponseParser(logger=logger)


def clean_response_text(text: str, model: Optional[str] = None) -> str:
    return get_parser(model).clean_response_text(text)
