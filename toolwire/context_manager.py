"""Bounded rolling conversation history.

The history is an ordered list of messages plus a rolling summary of the
turns that were compacted away. Every tool message is kept behind the
assistant message that requested it; ``get_context`` re-checks this on every
call and repairs any violation instead of raising.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .errors import FaultKind
from .logger import resolve_logger
from .models import (
    AssistantMessage,
    Budget,
    ContextStats,
    ConversationContext,
    ConversationMessage,
    ToolCallRequest,
    ToolMessage,
    ToolResult,
    UserMessage,
)
from .tokenizer import estimate_messages_tokens

__all__ = ["ContextManager", "DEFAULT_TOOL_OUTPUT_LIMITS", "truncate_result"]

DEFAULT_TOOL_OUTPUT_LIMITS = {
    "read_file": 1500,
    "list_directory": 800,
    "bash_command": 1000,
}

MIN_RECENT_MESSAGES = 2
SHRUNK_RESULT_CHARS = 400
SUMMARY_DETAIL_LINES = 30
MIN_SUMMARY_DETAIL_LINES = 6
CHAT_EXCERPT_CHARS = 200
TOOL_EXCERPT_CHARS = 120
ARGS_EXCERPT_CHARS = 120

_TRUNCATION_RE = re.compile(
    r"\n\n\.\.\. \(output truncated - showing first \d+ of (\d+) total characters\)$")


def truncate_result(text: str, limit: int) -> str:
    """Cap ``text`` at ``limit`` characters with a visible marker.

    The cut moves back to a line boundary when one is in the last fifth of
    the window. The marker reports the size of the untruncated output, even
    when ``text`` was truncated before.
    """
    previous = _TRUNCATION_RE.search(text)
    if previous:
        total = int(previous.group(1))
        body = text[:previous.start()]
    else:
        total = len(text)
        body = text
    if len(body) <= limit:
        return text
    cut = limit
    newline = body.rfind("\n", 0, limit)
    if newline >= int(limit * 0.8):
        cut = newline
    return (body[:cut]
            + f"\n\n... (output truncated - showing first {cut} of {total} total characters)")


def _one_line(text: str, limit: int) -> str:
    compact = " ".join((text or "").split())
    if len(compact) > limit:
        return compact[:limit - 3] + "..."
    return compact


@dataclass
class _Summary:
    """Structured rolling summary; rendered to text on demand."""
    messages: int = 0
    tool_counts: Dict[str, int] = field(default_factory=dict)
    lines: List[Tuple[str, str]] = field(default_factory=list)  # (kind, text)

    def copy(self) -> "_Summary":
        return _Summary(self.messages, dict(self.tool_counts), list(self.lines))

    def cap(self, max_lines: int):
        # Chat lines go first; tool names survive in the header regardless.
        while len(self.lines) > max_lines:
            for idx, (kind, _) in enumerate(self.lines):
                if kind == "chat":
                    del self.lines[idx]
                    break
            else:
                del self.lines[0]

    def render(self) -> str:
        if not self.messages:
            return ""
        parts = [f"[Conversation summary: {self.messages} earlier messages compacted]"]
        if self.tool_counts:
            used = ", ".join(f"{name} ({count}x)" for name, count in self.tool_counts.items())
            parts.append(f"Tools used: {used}")
        parts.extend(f"- {text}" for _, text in self.lines)
        return "\n".join(parts)


@dataclass
class _Checkpoint:
    messages: List[ConversationMessage]
    summary: _Summary
    calls: Dict[str, ToolCallRequest]
    counters: Tuple[int, int, int]


class ContextManager:
    """Owns the message history sent back to the model every turn.

    Args:
        system_prompt: First system message of every context.
        max_tokens: Hard budget; beyond it compaction keeps only a minimal
            recent window.
        compression_threshold: Estimated size that triggers compaction.
        max_history_before_compaction: Message count that triggers compaction.
        recent_messages: Messages kept verbatim by a normal compaction.
        tool_result_max_chars: Replay cap for tools without their own limit.
        tool_output_limits: Per-tool replay caps.
    """

    def __init__(self, system_prompt: str = "", max_tokens: int = 12000,
                 compression_threshold: int = 10000,
                 max_history_before_compaction: int = 40,
                 recent_messages: int = 10,
                 tool_result_max_chars: int = 3000,
                 tool_output_limits: Optional[Dict[str, int]] = None,
                 logger: Optional[logging.Logger] = None):
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.compression_threshold = compression_threshold
        self.max_history_before_compaction = max_history_before_compaction
        self.recent_messages = max(MIN_RECENT_MESSAGES, recent_messages)
        self.tool_result_max_chars = tool_result_max_chars
        self.tool_output_limits = dict(DEFAULT_TOOL_OUTPUT_LIMITS
                                       if tool_output_limits is None else tool_output_limits)
        self._log = resolve_logger(logger, __name__)

        self._messages: List[ConversationMessage] = []
        self._summary = _Summary()
        self._calls: Dict[str, ToolCallRequest] = {}
        self._summarized_tool_calls = 0
        self._compactions = 0
        self._ordering_repairs = 0
        self._checkpoint: Optional[_Checkpoint] = None

    # ── read side ──

    @property
    def messages(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    @property
    def summary(self) -> str:
        return self._summary.render()

    @property
    def budget(self) -> Budget:
        return Budget(self.max_tokens, self.compression_threshold)

    def get_context(self) -> ConversationContext:
        self._repair_ordering()
        return self._snapshot_context()

    def estimate_tokens(self) -> int:
        return estimate_messages_tokens(self._snapshot_context().to_wire())

    def get_stats(self) -> ContextStats:
        tool_calls = sum(len(m.tool_calls) for m in self._messages
                         if isinstance(m, AssistantMessage))
        return ContextStats(
            message_count=len(self._messages),
            tool_call_count=tool_calls,
            estimated_tokens=self.estimate_tokens(),
            summarized_tool_calls=self._summarized_tool_calls,
            compactions=self._compactions,
            ordering_repairs=self._ordering_repairs,
        )

    def _snapshot_context(self) -> ConversationContext:
        return ConversationContext(self.system_prompt, self._summary.render(),
                                   tuple(self._messages))

    # ── write side ──

    def add_user_message(self, text: str):
        self._messages.append(UserMessage(text))
        self._maybe_compact()

    def add_assistant_message(self, text: str,
                              tool_calls: Optional[Sequence[ToolCallRequest]] = None):
        calls = tuple(tool_calls or ())
        for call in calls:
            self._calls[call.call_id] = call
        self._messages.append(AssistantMessage(text or "", calls))
        self._maybe_compact()

    def add_tool_execution(self, tool_id: str, call_id: str,
                           parameters: Optional[Dict[str, Any]],
                           result: Union[ToolResult, str, None]):
        """Record one executed call and its result.

        The request is reused from a pending assistant message when there is
        one. Only the replayed copy of the result is truncated.
        """
        if not self._attach_to_pending(call_id):
            call = self._calls.get(call_id)
            if call is None or call.tool_id != tool_id:
                call = ToolCallRequest(tool_id, dict(parameters or {}), call_id=call_id)
            self._calls[call_id] = call
            last = self._messages[-1] if self._messages else None
            if isinstance(last, AssistantMessage):
                self._messages[-1] = AssistantMessage(last.text, last.tool_calls + (call,))
            else:
                self._messages.append(AssistantMessage("", (call,)))

        if isinstance(result, ToolResult):
            text = result.as_text()
        else:
            text = "" if result is None else str(result)
        limit = self.tool_output_limits.get(tool_id, self.tool_result_max_chars)
        replayed = truncate_result(text, limit)
        if replayed != text:
            self._log.debug("%s: %s result cut from %d to %d chars",
                            FaultKind.CAPACITY_EXCEEDED.value, tool_id, len(text), len(replayed))
        self._messages.append(ToolMessage(call_id, replayed, tool_id))
        self._maybe_compact()

    def _attach_to_pending(self, call_id: str) -> bool:
        """True if an assistant message since the last user turn awaits ``call_id``."""
        for idx in range(len(self._messages) - 1, -1, -1):
            msg = self._messages[idx]
            if isinstance(msg, UserMessage):
                return False
            if isinstance(msg, AssistantMessage):
                if not msg.has_call(call_id):
                    return False
                answered = any(isinstance(m, ToolMessage) and m.tool_call_id == call_id
                               for m in self._messages[idx + 1:])
                return not answered
        return False

    def update_system_prompt(self, prompt: str):
        self.system_prompt = prompt

    def clear(self):
        self._messages.clear()
        self._summary = _Summary()
        self._calls.clear()
        self._summarized_tool_calls = 0
        self._compactions = 0
        self._ordering_repairs = 0
        self._checkpoint = None

    # ── turn transactions ──

    def begin_turn(self):
        if self._checkpoint is not None:
            self._log.debug("begin_turn while a turn is open; keeping the first checkpoint")
            return
        self._checkpoint = _Checkpoint(
            list(self._messages), self._summary.copy(), dict(self._calls),
            (self._summarized_tool_calls, self._compactions, self._ordering_repairs))

    def commit_turn(self):
        self._checkpoint = None

    def rollback_turn(self):
        cp = self._checkpoint
        if cp is None:
            return
        self._messages = cp.messages
        self._summary = cp.summary
        self._calls = cp.calls
        self._summarized_tool_calls, self._compactions, self._ordering_repairs = cp.counters
        self._checkpoint = None
        self._log.info("turn rolled back to %d messages", len(self._messages))

    @contextmanager
    def turn(self) -> Iterator["ContextManager"]:
        """Commit on normal exit; roll back on any exception, Ctrl-C included."""
        self.begin_turn()
        try:
            yield self
        except BaseException:
            self.rollback_turn()
            raise
        self.commit_turn()

    # ── ordering invariant ──

    def _repair_ordering(self) -> int:
        repaired: List[ConversationMessage] = []
        owner: Optional[int] = None     # index in ``repaired`` of the open assistant
        answered: set = set()
        fixes = 0

        for msg in self._messages:
            if isinstance(msg, AssistantMessage):
                owner = len(repaired)
                answered = set()
                repaired.append(msg)
                continue
            if not isinstance(msg, ToolMessage):
                owner = None
                answered = set()
                repaired.append(msg)
                continue

            call_id = msg.tool_call_id
            if owner is not None and repaired[owner].has_call(call_id) and call_id not in answered:
                answered.add(call_id)
                repaired.append(msg)
                continue

            fixes += 1
            call = self._calls.get(call_id)
            if call is None or call_id in answered:
                self._log.info("%s: dropped tool message %s with no known request",
                               FaultKind.ORDERING_VIOLATION.value, call_id)
                continue
            if owner is not None:
                parent = repaired[owner]
                repaired[owner] = AssistantMessage(parent.text, parent.tool_calls + (call,))
            else:
                owner = len(repaired)
                answered = set()
                repaired.append(AssistantMessage("", (call,)))
            answered.add(call_id)
            repaired.append(msg)
            self._log.info("%s: re-inserted request for %s (%s)",
                           FaultKind.ORDERING_VIOLATION.value, call.tool_id, call_id)

        if fixes:
            self._messages = repaired
            self._ordering_repairs += fixes
        return fixes

    # ── compaction ──

    def _maybe_compact(self):
        if (len(self._messages) > self.max_history_before_compaction
                or self.estimate_tokens() > self.compression_threshold):
            self.compact()

    def compact(self) -> int:
        """Fold older messages into the summary. Returns how many were folded."""
        self._repair_ordering()
        before = self.estimate_tokens()
        folded = self._fold(self.recent_messages)
        shrunk = 0
        if self.estimate_tokens() > self.compression_threshold:
            shrunk = self._shrink_tool_results()
        if self.estimate_tokens() > self.max_tokens:
            folded += self._fold(MIN_RECENT_MESSAGES)
            self._summary.cap(MIN_SUMMARY_DETAIL_LINES)
            shrunk += self._shrink_tool_results(limit=self.max_tokens)

        if folded or shrunk:
            self._compactions += 1
            self._log.info("compacted context: %d messages folded, %d results shrunk, "
                           "~%d -> ~%d tokens", folded, shrunk, before, self.estimate_tokens())
        return folded

    def _split_index(self, keep: int) -> int:
        split = len(self._messages) - keep
        while split > 0 and isinstance(self._messages[split], ToolMessage):
            split -= 1
        return max(split, 0)

    def _fold(self, keep: int) -> int:
        split = self._split_index(keep)
        if split <= 0:
            return 0
        older = self._messages[:split]
        self._messages = self._messages[split:]
        self._summarize(older)
        self._summary.cap(SUMMARY_DETAIL_LINES)
        self._prune_calls()
        return len(older)

    def _prune_calls(self):
        """Forget requests that no kept message refers to."""
        live = set()
        for msg in self._messages:
            if isinstance(msg, AssistantMessage):
                live.update(msg.call_ids)
            elif isinstance(msg, ToolMessage):
                live.add(msg.tool_call_id)
        self._calls = {cid: call for cid, call in self._calls.items() if cid in live}

    def _summarize(self, older: List[ConversationMessage]):
        summary = self._summary
        pending: Dict[str, ToolCallRequest] = {}
        for msg in older:
            if isinstance(msg, UserMessage):
                summary.lines.append(("chat", "User: " + _one_line(msg.text, CHAT_EXCERPT_CHARS)))
            elif isinstance(msg, AssistantMessage):
                if msg.text.strip():
                    summary.lines.append(
                        ("chat", "Assistant: " + _one_line(msg.text, CHAT_EXCERPT_CHARS)))
                for call in msg.tool_calls:
                    pending[call.call_id] = call
            elif isinstance(msg, ToolMessage):
                call = pending.pop(msg.tool_call_id, None) or self._calls.get(msg.tool_call_id)
                name = call.tool_id if call else (msg.tool_name or "tool")
                args = call.arguments_json() if call else "{}"
                self._note_tool(name, args, _one_line(msg.result, TOOL_EXCERPT_CHARS))
        for call in pending.values():
            self._note_tool(call.tool_id, call.arguments_json(), "(no result)")
        summary.messages += len(older)

    def _note_tool(self, name: str, args: str, excerpt: str):
        self._summary.tool_counts[name] = self._summary.tool_counts.get(name, 0) + 1
        self._summary.lines.append(
            ("tool", f"{name}({_one_line(args, ARGS_EXCERPT_CHARS)}) -> {excerpt}"))
        self._summarized_tool_calls += 1

    def _shrink_tool_results(self, limit: Optional[int] = None) -> int:
        """Cut tool results in the kept window, oldest first, until under ``limit``."""
        target = self.compression_threshold if limit is None else limit
        shrunk = 0
        for idx, msg in enumerate(self._messages):
            if self.estimate_tokens() <= target:
                break
            if not isinstance(msg, ToolMessage):
                continue
            cut = truncate_result(msg.result, SHRUNK_RESULT_CHARS)
            if cut != msg.result:
                self._messages[idx] = ToolMessage(msg.tool_call_id, cut, msg.tool_name)
                shrunk += 1
        return shrunk
