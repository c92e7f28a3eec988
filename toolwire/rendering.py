"""Terminal rendering of content blocks, tool calls and results."""

import json
import re
from typing import Any, Dict, Iterable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .compiler import CodeBlock, Diagnostic, ErrorBlock, Severity, TextBlock, ToolCallBlock
from .models import ContextStats, ToolResult

__all__ = [
    "ACCENT", "DIM", "TEXT", "SEPARATOR", "SUCCESS", "WARN", "ERROR",
    "get_icon", "set_use_unicode", "strip_markdown",
    "render_error", "render_blocks", "render_tool_call", "render_result",
    "render_diagnostics", "render_stats",
]

ACCENT = "#7FA6D9"
DIM = "#6E7681"
TEXT = "#E6EDF3"
SEPARATOR = "#484F58"
SUCCESS = "#57DB9C"
WARN = "#E3B341"
ERROR = "#F85149"

RESULT_PREVIEW_LINES = 12


# ── Icons, with ASCII stand-ins for terminals without Unicode ──

_ASCII_ICONS = {
    "✓": "[OK]", "✗": "[X]", "▸": ">", "≡": "=", "⊙": "@",
    "◆": "[+]", "💭": "[THINK]", "·": ".", "⚠": "!",
}
_icons = {"unicode": True}


def set_use_unicode(enabled: bool):
    _icons["unicode"] = bool(enabled)


def get_icon(symbol: str) -> str:
    return symbol if _icons["unicode"] else _ASCII_ICONS.get(symbol, symbol)


# ── Markdown stripping for streamed plain text ──
# Applied in order; each pattern keeps its first group (or nothing).

_MARKDOWN_RULES = [
    (re.compile(r'\*\*(.+?)\*\*'), r'\1'),                    # bold
    (re.compile(r'(?<!\*)\*([^*\n]+?)\*(?!\*)'), r'\1'),      # italic
    (re.compile(r'`([^`\n]+?)`'), r'\1'),                     # inline code
    (re.compile(r'^#{1,6}\s+', re.MULTILINE), ''),            # headers
    (re.compile(r'^>\s?', re.MULTILINE), ''),                 # quotes
    (re.compile(r'\[([^\]]+)\]\([^)]+\)'), r'\1'),            # links
]


def strip_markdown(text: str) -> str:
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text


def render_error(console: Console, message: str):
    panel = Panel(
        f"[{ERROR}]{message}[/{ERROR}]",
        title=f"[bold {ERROR}]Error[/bold {ERROR}]",
        title_align="left",
        border_style=ERROR,
        padding=(0, 2),
    )
    console.print()
    console.print(panel)


def _call_detail(name: str, args: Dict[str, Any]) -> str:
    if "command" in args:
        return str(args["command"])
    if "path" in args:
        detail = str(args["path"])
        if name == "search_files" and "pattern" in args:
            detail = f"/{args['pattern']}/ in {detail}"
        return detail
    if "pattern" in args:
        return f"/{args['pattern']}/"
    compact = json.dumps(args, ensure_ascii=False, default=str)
    return compact if len(compact) <= 80 else compact[:77] + "..."


def render_tool_call(console: Console, name: str, args: Dict[str, Any],
                     index: Optional[int] = None, total: Optional[int] = None):
    icons = {
        "read_file": get_icon("▸"), "write_file": get_icon("◆"),
        "list_directory": get_icon("≡"), "search_files": get_icon("⊙"),
        "bash_command": "$", "execute_command": "$",
    }
    icon = icons.get(name, get_icon("·"))
    progress = ""
    if total and total > 1:
        progress = f"[{DIM}]{index}/{total}[/{DIM}] "
    detail = _call_detail(name, args or {})
    console.print(f"\n  {progress}[{ACCENT}]{icon}[/{ACCENT}] [bold {TEXT}]{name}[/bold {TEXT}] "
                  f"[{DIM}]{detail}[/{DIM}]", highlight=False)


def render_result(console: Console, name: str, result: ToolResult, elapsed: float = 0):
    time_str = f" [{SEPARATOR}]({elapsed:.1f}s)[/{SEPARATOR}]" if elapsed >= 0.1 else ""
    if not result.is_successful:
        lines = result.as_text().splitlines() or ["Error"]
        preview = "\n     ".join(lines[:5])
        if len(lines) > 5:
            preview += f"\n     ... ({len(lines) - 5} more)"
        console.print(f"     [{ERROR}]{get_icon('✗')} {preview}[/{ERROR}]{time_str}",
                      markup=True, highlight=False)
        return

    lines = result.as_text().splitlines()
    if len(lines) <= 1:
        first = lines[0] if lines else "OK"
        console.print(f"     [{SUCCESS}]{get_icon('✓')}[/{SUCCESS}] [{DIM}]{first}[/{DIM}]{time_str}",
                      highlight=False)
        return
    shown = lines[:RESULT_PREVIEW_LINES]
    output = "\n".join(f"     [{DIM}]{line}[/{DIM}]" for line in shown)
    if len(lines) > RESULT_PREVIEW_LINES:
        output += f"\n     [{DIM}]... ({len(lines) - RESULT_PREVIEW_LINES} more lines)[/{DIM}]"
    console.print(output + time_str, highlight=False)


def render_blocks(console: Console, blocks: Iterable[Any]):
    """Print compiled content blocks: prose, highlighted code, calls, errors."""
    blocks = list(blocks)
    calls = [b for b in blocks if isinstance(b, ToolCallBlock)]
    call_index = 0
    console.print()
    for block in blocks:
        if isinstance(block, TextBlock):
            console.print(strip_markdown(block.content.strip("\n")), markup=False, highlight=False)
        elif isinstance(block, CodeBlock):
            console.print(Syntax(block.code, block.language or "text", theme="monokai",
                                 background_color="default", word_wrap=True))
        elif isinstance(block, ToolCallBlock):
            call_index += 1
            render_tool_call(console, block.tool_name, block.arguments, call_index, len(calls))
        elif isinstance(block, ErrorBlock):
            console.print(f"  [{WARN}]{get_icon('⚠')} {block.message}[/{WARN}] "
                          f"[{DIM}]({block.code})[/{DIM}]", highlight=False)


def render_diagnostics(console: Console, diagnostics: List[Diagnostic]):
    if not diagnostics:
        return
    styles = {Severity.ERROR: ERROR, Severity.WARNING: WARN, Severity.INFO: DIM}
    table = Table(show_header=True, header_style=f"bold {TEXT}", border_style=SEPARATOR)
    table.add_column("Severity", no_wrap=True)
    table.add_column("Code", no_wrap=True)
    table.add_column("Phase", no_wrap=True)
    table.add_column("Message")
    for d in diagnostics:
        style = styles.get(d.severity, TEXT)
        table.add_row(f"[{style}]{d.severity.value}[/{style}]", d.code, d.phase.value, d.message)
    console.print(table)


def render_stats(console: Console, stats: ContextStats, extra: Optional[Dict[str, Any]] = None):
    table = Table(show_header=False, border_style=SEPARATOR, padding=(0, 1))
    table.add_column(style=DIM)
    table.add_column(style=TEXT)
    rows = {
        "Messages": stats.message_count,
        "Tool calls": stats.tool_call_count,
        "Estimated tokens": f"~{stats.estimated_tokens:,}",
        "Summarized tool calls": stats.summarized_tool_calls,
        "Compactions": stats.compactions,
        "Ordering repairs": stats.ordering_repairs,
    }
    rows.update(extra or {})
    for key, value in rows.items():
        table.add_row(key, str(value))
    console.print(table)
