"""Terminal view of a streamed turn: plain text lines, a reasoning spinner and
tool calls as they close. No Rich Live panel."""

import time
from typing import Optional, Iterable, Tuple, Any

from rich.console import Console
from rich.status import Status

from .rendering import ACCENT, DIM, SEPARATOR, WARN, get_icon, render_tool_call, strip_markdown

__all__ = ["render_stream", "StreamView"]

REASONING_BRIEF_WIDTH = 96


def brief_line(line: str, width: int = REASONING_BRIEF_WIDTH) -> str:
    """One reasoning line, whitespace-collapsed and cut to ``width``."""
    compact = " ".join(line.split())
    return compact if len(compact) <= width else compact[:width - 3] + "..."


class StreamView:
    """Per-turn rendering state. ``feed`` takes one parser event at a time."""

    def __init__(self, console: Console, reasoning_display: str = "summary",
                 show_tool_calls: bool = True):
        self.console = console
        self.reasoning_display = reasoning_display
        self.show_tool_calls = show_tool_calls
        self.text = ""
        self.reasoning = ""
        self.response: Any = None
        self._pending_line = ""
        self._answer_started = False
        self._spinner: Optional[Status] = None
        self._reasoning_tail = ""
        self._shown_chars = 0
        self._last_brief = ""
        self._thinking_since: Optional[float] = None

    # ── events ──

    def feed(self, kind: str, data: Any):
        if kind == "text":
            self._on_text(data)
        elif kind == "reasoning":
            self.reasoning += data
            if not self.text:
                self._on_reasoning(data)
        elif kind == "tool_call":
            self._stop_spinner()
            self._flush()
            if self.show_tool_calls:
                render_tool_call(self.console, data.tool_id, data.parameters)
        elif kind == "done":
            self.response = data

    def _on_text(self, chunk: str):
        if not self.text and self.reasoning:
            # The answer starts right under the spinner line.
            chunk = chunk.lstrip("\n")
        if not chunk:
            return
        self.text += chunk
        self._stop_spinner()
        if not self._answer_started:
            self.console.print()
            self._answer_started = True
        self._pending_line += chunk
        *complete, self._pending_line = self._pending_line.split("\n")
        for line in complete:
            self._emit(strip_markdown(line) + "\n")

    def _on_reasoning(self, chunk: str):
        if self.reasoning_display == "off" or not chunk:
            return
        if not self._shown_chars:
            self._set_spinner("Thinking...")
        self._shown_chars += len(chunk)
        self._reasoning_tail += chunk
        *complete, self._reasoning_tail = self._reasoning_tail.split("\n")
        for line in complete:
            brief = brief_line(line)
            if not brief:
                continue
            if self.reasoning_display == "full":
                self._set_spinner(line.strip())
            elif brief != self._last_brief:
                self._set_spinner(brief)
            self._last_brief = brief

    # ── output ──

    def _emit(self, chunk: str):
        out = getattr(self.console, "file", None)
        if out is None or not hasattr(out, "write"):
            self.console.print(chunk, end="", markup=False, highlight=False, soft_wrap=True)
            return
        out.write(chunk)
        if hasattr(out, "flush"):
            out.flush()

    def _flush(self):
        if self._pending_line:
            self._emit(strip_markdown(self._pending_line))
            self._pending_line = ""

    def _set_spinner(self, message: str):
        label = f"  [{DIM}]{get_icon('💭')} {message}[/{DIM}]"
        if self._spinner is not None:
            self._spinner.update(label)
            return
        if self._thinking_since is None:
            self._thinking_since = time.perf_counter()
        self._spinner = Status(label, console=self.console, spinner="dots",
                               spinner_style=ACCENT)
        self._spinner.start()

    def _stop_spinner(self):
        if self._spinner is not None:
            self._spinner.stop()
            self._spinner = None

    def interrupted(self):
        """Ctrl-C: close the partial answer. Nothing of it is returned."""
        self._stop_spinner()
        if self._answer_started:
            self._flush()
            self.console.print()
            self._answer_started = False
        self.console.print(f"\n  [{WARN}]⚠ Stream interrupted by user[/{WARN}]")

    def close(self):
        self._stop_spinner()
        if self._answer_started:
            self._flush()
            self.console.print()
        if self.reasoning and self.text and self.reasoning_display != "off":
            self._reasoning_footer()

    def _reasoning_footer(self):
        elapsed = time.perf_counter() - self._thinking_since if self._thinking_since else 0.0
        took = f"{elapsed:.1f}s" if elapsed > 0 else "N/A"
        rule = f"[{SEPARATOR}]{'─' * 20}[/{SEPARATOR}]"
        self.console.print()
        self.console.print(f"  {rule} [{DIM}]{get_icon('💭')} Reasoning: "
                           f"{self._shown_chars // 4} tokens, {took}[/{DIM}] {rule}")


def render_stream(
    console: Console,
    event_iterator: Iterable[Tuple[str, Any]],
    *,
    reasoning_display: str = "summary",
    show_tool_calls: bool = True,
) -> Any:
    """Render parser events and return the final ``LLMResponse``.

    Text events arrive already cleaned and line-buffered by the parser.
    ``KeyboardInterrupt`` is re-raised after the notice so the caller's turn
    rolls back. Any other failure surfaces as ``ConnectionError``.
    """
    console.print()
    view = StreamView(console, reasoning_display, show_tool_calls)
    try:
        for kind, data in event_iterator:
            view.feed(kind, data)
    except KeyboardInterrupt:
        view.interrupted()
        raise
    except ConnectionError:
        raise
    except Exception as e:
        raise ConnectionError(f"Streaming error: {type(e).__name__}: {e}") from e
    finally:
        view.close()

    if view.response is None:
        raise ConnectionError("Stream ended without completion")
    return view.response
