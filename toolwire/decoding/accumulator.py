"""Incremental tool-call detection over a stream of text deltas.

Each in-flight candidate walks a small state machine::

    IDLE -> OPENING -> ACCUMULATING -> (REPAIRING) -> CLOSED | DISCARDED

OPENING holds back a ``{`` or ``<`` until it is clear whether a tool-call
marker follows. ACCUMULATING buffers until the braces balance (or the closing
tag arrives). A candidate that cannot be turned into a tool call is released
verbatim as visible text; nothing is ever dropped.
"""

import copy
import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from ..errors import FaultKind
from ..json_repair import Fixed, find_balanced_end, repair
from ..logger import resolve_logger
from ..models import CallOrigin, ToolCallRequest
from ..tool_json import TOOL_NAME_KEYS, WRAPPER_KEYS, coerce_tool_call

__all__ = ["AccumulatorState", "AccumulatorSnapshot", "StreamingToolCallAccumulator"]

OPEN_TAGS = {
    "<tool_call>": "</tool_call>",
    "<function_call>": "</function_call>",
}
MAX_CANDIDATE_CHARS = 65536

_OPENING_KEYS = set(TOOL_NAME_KEYS) | set(WRAPPER_KEYS)
_FIRST_KEY_RE = re.compile(r'^\{\s*"([A-Za-z_]+)"\s*:')
_FIRST_KEY_PREFIX_RE = re.compile(r'^\{\s*(?:"[A-Za-z_]*(?:"\s*)?)?$')
_PENDING_NAME_RE = re.compile(r'"(?:tool|tool_name|name|function)"\s*:\s*"([\w.\-]+)"')
_FENCE_RE = re.compile(r"^(`{3,}|~{3,})\s*([\w+#.\-]*)")
_JSON_FENCE_LANGS = {"", "json", "jsonc", "tool_call"}


class AccumulatorState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    ACCUMULATING = "accumulating"
    REPAIRING = "repairing"
    CLOSED = "closed"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class AccumulatorSnapshot:
    """Consistent view of the accumulator for a rendering thread."""
    state: AccumulatorState
    buffered_chars: int
    pending_tool: Optional[str]
    emitted: int
    last_outcome: Optional[AccumulatorState]


class StreamingToolCallAccumulator:
    """Turns text deltas into ``(completed_tool_calls, visible_text)`` pairs.

    ``candidate_fixups`` are vendor-specific string rewrites applied to a
    closed candidate before JSON repair. All public methods hold one lock, so
    ``snapshot()`` may be called from another thread at any time.
    """

    def __init__(self, candidate_fixups: Sequence[Callable[[str], str]] = (),
                 max_candidate_chars: int = MAX_CANDIDATE_CHARS,
                 logger: Optional[logging.Logger] = None):
        self._lock = threading.Lock()
        self._fixups = tuple(candidate_fixups)
        self.max_candidate_chars = max(64, int(max_candidate_chars))
        self._log = resolve_logger(logger, __name__)
        self._emitted = 0
        self._repaired = 0
        self._discarded = 0
        self._last_outcome: Optional[AccumulatorState] = None
        self._clear_candidate()
        self._line = ""
        self._fence: Optional[Tuple[str, int, str]] = None

    # ── Public API ──

    def feed(self, delta: str) -> Tuple[List[ToolCallRequest], str]:
        if not delta:
            return [], ""
        calls: List[ToolCallRequest] = []
        visible: List[str] = []
        with self._lock:
            for ch in delta:
                self._step(ch, calls, visible)
        return calls, "".join(visible)

    def finish(self) -> Tuple[List[ToolCallRequest], str]:
        """End of turn: settle any open candidate and reset line tracking."""
        calls: List[ToolCallRequest] = []
        visible: List[str] = []
        with self._lock:
            if self._state == AccumulatorState.OPENING:
                self._discard(visible, reason="incomplete opening marker")
            elif self._state == AccumulatorState.ACCUMULATING:
                self._close(calls, visible)
            self._line = ""
            self._fence = None
        return calls, "".join(visible)

    def reset(self):
        """Drop all in-flight state, e.g. when a turn is cancelled."""
        with self._lock:
            self._clear_candidate()
            self._line = ""
            self._fence = None
            self._last_outcome = None

    def snapshot(self) -> AccumulatorSnapshot:
        with self._lock:
            pending = None
            if self._state == AccumulatorState.ACCUMULATING:
                m = _PENDING_NAME_RE.search(self._buffer)
                if m:
                    pending = m.group(1)
            return AccumulatorSnapshot(
                state=self._state,
                buffered_chars=len(self._buffer),
                pending_tool=pending,
                emitted=self._emitted,
                last_outcome=self._last_outcome,
            )

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "emitted": self._emitted,
                "repaired": self._repaired,
                "discarded": self._discarded,
                "buffered_chars": len(self._buffer),
                "state": self._state.value,
            }

    @property
    def state(self) -> AccumulatorState:
        with self._lock:
            return self._state

    # ── State machine ──

    def _clear_candidate(self):
        self._state = AccumulatorState.IDLE
        self._buffer = ""
        self._mode = ""          # "brace" or "tag"
        self._open_tag = ""
        self._closer = ""
        self._depth = 0
        self._in_string = False
        self._escape = False

    def _detecting(self) -> bool:
        return self._fence is None or self._fence[2] in _JSON_FENCE_LANGS

    def _step(self, ch: str, calls: List[ToolCallRequest], visible: List[str]):
        state = self._state
        if state == AccumulatorState.IDLE:
            if ch == "{" and self._detecting():
                self._state = AccumulatorState.OPENING
                self._mode = "brace"
                self._buffer = ch
                self._depth = 1
            elif ch == "<" and self._detecting():
                self._state = AccumulatorState.OPENING
                self._mode = "tag"
                self._buffer = ch
            else:
                self._emit_visible(ch, visible)
            return

        self._buffer += ch

        if state == AccumulatorState.OPENING:
            if self._mode == "tag":
                self._check_tag(calls, visible)
            else:
                self._track_json(ch)
                self._check_brace(calls, visible)
            return

        # ACCUMULATING
        if self._mode == "brace":
            self._track_json(ch)
            if self._depth == 0:
                self._close(calls, visible)
                return
        elif self._buffer[-len(self._closer):].lower() == self._closer:
            self._close(calls, visible)
            return
        if len(self._buffer) > self.max_candidate_chars:
            self._discard(visible, reason="candidate too large")

    def _check_tag(self, calls, visible):
        # Tag names match in any case.
        tag = self._buffer.lower()
        if tag in OPEN_TAGS:
            self._open_tag = tag
            self._closer = OPEN_TAGS[tag]
            self._state = AccumulatorState.ACCUMULATING
        elif not any(known.startswith(tag) for known in OPEN_TAGS):
            self._release(calls, visible)

    def _check_brace(self, calls, visible):
        if self._depth == 0:
            self._release(calls, visible)
            return
        m = _FIRST_KEY_RE.match(self._buffer)
        if m:
            if m.group(1) in _OPENING_KEYS:
                self._state = AccumulatorState.ACCUMULATING
            else:
                self._release(calls, visible)
        elif not _FIRST_KEY_PREFIX_RE.match(self._buffer):
            self._release(calls, visible)

    def _track_json(self, ch: str):
        if self._in_string:
            if self._escape:
                self._escape = False
            elif ch == "\\":
                self._escape = True
            elif ch == '"':
                self._in_string = False
        elif ch == '"':
            self._in_string = True
        elif ch in "{[":
            self._depth += 1
        elif ch in "}]":
            self._depth -= 1

    def _release(self, calls, visible):
        """Not a marker after all: show the first char, re-scan the rest."""
        text = self._buffer
        self._clear_candidate()
        self._emit_visible(text[0], visible)
        for ch in text[1:]:
            self._step(ch, calls, visible)

    def _discard(self, visible: List[str], reason: str):
        text = self._buffer
        self._state = AccumulatorState.DISCARDED
        self._discarded += 1
        self._last_outcome = AccumulatorState.DISCARDED
        self._log.debug("%s: released %d buffered chars as text (%s)",
                        FaultKind.UNREPAIRABLE_FRAGMENT.value, len(text), reason)
        self._clear_candidate()
        for ch in text:
            self._emit_visible(ch, visible)

    def _close(self, calls: List[ToolCallRequest], visible: List[str]):
        body = self._buffer
        if self._mode == "tag":
            body = body[len(self._open_tag):]
            if body[-len(self._closer):].lower() == self._closer:
                body = body[:-len(self._closer)]
            start = body.find("{")
            if start >= 0:
                end = find_balanced_end(body, start)
                body = body[start:end] if end > 0 else body[start:]

        call = self._parse_candidate(body)
        if call is None:
            self._discard(visible, reason="not a valid tool call")
            return
        self._state = AccumulatorState.CLOSED
        self._emitted += 1
        self._last_outcome = AccumulatorState.CLOSED
        calls.append(call)
        self._clear_candidate()

    def _parse_candidate(self, text: str) -> Optional[ToolCallRequest]:
        body = text.strip()
        for fixup in self._fixups:
            body = fixup(body)
        result = repair(body)
        if not isinstance(result, Fixed):
            return None
        if result.repaired:
            self._state = AccumulatorState.REPAIRING
            self._repaired += 1
            self._log.debug("%s: tool-call JSON repaired",
                            FaultKind.RECOVERABLE_MALFORMATION.value)
        shape = coerce_tool_call(result.value)
        if shape is None:
            return None
        name, arguments = shape
        return ToolCallRequest(
            tool_id=name,
            parameters=copy.deepcopy(arguments),
            origin=CallOrigin.STREAMING,
        )

    # ── Visible text and fence tracking ──

    def _emit_visible(self, ch: str, visible: List[str]):
        visible.append(ch)
        if ch == "\n":
            self._end_line()
            self._line = ""
        elif len(self._line) < 64:
            self._line += ch

    def _end_line(self):
        m = _FENCE_RE.match(self._line.strip())
        if not m:
            return
        marker, language = m.group(1), m.group(2).lower()
        if self._fence is None:
            self._fence = (marker[0], len(marker), language)
        elif marker[0] == self._fence[0] and len(marker) >= self._fence[1] and not language:
            self._fence = None
