"""Agent orchestrator: conversation loop, tool dispatch, rendering."""

import time
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from rich.console import Console

from .compiler import AstRenderer, CompileResult, ResponseCompiler
from .compiler.renderer import to_text
from .context_manager import ContextManager
from .llm import LLMAdapter, LLMResponse, build_system_prompt
from .logger import get_logger
from .models import ToolCallRequest
from .rendering import DIM, WARN, render_blocks, render_error, render_result, render_tool_call
from .stream_renderer import render_stream
from .tools import ToolRegistry

log = get_logger(__name__)

__all__ = ["Agent"]


class Agent:
    """Drives one conversation against an ``LLMAdapter``.

    Each user turn runs inside a context-manager transaction: a transport
    failure or Ctrl-C leaves the committed history exactly as it was.
    """

    def __init__(self, llm: LLMAdapter, registry: Optional[ToolRegistry] = None,
                 context: Optional[ContextManager] = None,
                 compiler: Optional[ResponseCompiler] = None,
                 console: Optional[Console] = None,
                 max_iterations: int = 30, stream: bool = True,
                 show_tool_calls: bool = True,
                 reasoning_display: str = "summary",
                 project_instructions: Optional[str] = None):
        self.llm = llm
        self.registry = registry if registry is not None else ToolRegistry()
        self.context = context if context is not None else ContextManager()
        self.compiler = compiler if compiler is not None else ResponseCompiler(
            tool_specs=self.registry.tool_specs() or None,
            known_tools=self.registry.names() or None,
        )
        self.console = console if console is not None else Console()
        self.max_iterations = max_iterations
        self.stream = stream
        self.show_tool_calls = show_tool_calls
        self.reasoning_display = reasoning_display
        self.total_tokens = 0
        self.hallucinated_turns = 0
        self.context.update_system_prompt(
            build_system_prompt(self.registry.names(), project_instructions))

    # ── Conversation loop ──

    def chat(self, user_message: str) -> str:
        try:
            with self.context.turn():
                return self._run_turn(user_message)
        except ConnectionError as e:
            log.error("Connection error: %s", e)
            render_error(self.console, str(e))
            return str(e)

    def _run_turn(self, user_message: str) -> str:
        self.context.add_user_message(user_message)

        for _ in range(self.max_iterations):
            messages = self.context.get_context().to_wire()
            response, announced = self._request_response(messages)

            if response.usage:
                self.total_tokens += response.usage.get("total_tokens", 0)

            calls, text, result = self._plan_dispatch(response)
            if calls:
                self.context.add_assistant_message(text, calls)
                if not self.stream and result is not None:
                    self._render_compiled(result)
                self._execute_calls(calls, announced)
                continue

            if text:
                self.context.add_assistant_message(text)
                if not self.stream and result is not None:
                    self._render_compiled(result)
                return text

            self.console.print(f"[{DIM}]  (empty response, retrying...)[/{DIM}]")

        msg = f"⚠ Reached max iterations ({self.max_iterations})."
        self.console.print(f"\n[{WARN}]{msg}[/{WARN}]")
        return msg

    def _request_response(self, messages: List[Dict[str, Any]]
                          ) -> Tuple[LLMResponse, Set[Tuple[str, str]]]:
        """Returns the response and the signatures of calls already shown."""
        tools = self.registry.schemas() or None
        if not self.stream:
            return self.llm.chat(messages, tools=tools), set()

        announced: Set[Tuple[str, str]] = set()

        def events() -> Iterable[Tuple[str, Any]]:
            for event_type, data in self.llm.chat_stream(messages, tools=tools):
                if event_type == "tool_call" and self.show_tool_calls:
                    announced.add(data.signature())
                    announced.add(self._mapped(data).signature())
                yield event_type, data

        response = render_stream(self.console, events(),
                                 reasoning_display=self.reasoning_display,
                                 show_tool_calls=self.show_tool_calls)
        return response, announced

    def _plan_dispatch(self, response: LLMResponse
                       ) -> Tuple[List[ToolCallRequest], str, Optional[CompileResult]]:
        """Decide which calls run for this response and what text is kept.

        Vendor-native calls win outright. Otherwise the compiled turn is the
        source of truth; calls decoded while streaming are only added when
        they are new and the turn has no hallucinated regions.
        """
        if response.tool_calls:
            return list(response.tool_calls), response.content or "", None

        raw = response.raw_content or response.content or ""
        parser = self.llm.new_parser()
        result = self.compiler.compile(parser.strip_vendor_artifacts(raw))
        calls = result.tool_calls()

        if result.has_hallucinations:
            self.hallucinated_turns += 1
            log.info("hallucinated tool output in response; %d streamed calls ignored",
                     len(response.decoded_calls))
        else:
            seen = {c.signature() for c in calls}
            for call in response.decoded_calls:
                call = self._mapped(call)
                if call.signature() not in seen:
                    seen.add(call.signature())
                    calls.append(call)

        for diag in result.errors:
            log.debug("compile %s: %s", diag.code, diag.message)

        text = to_text(AstRenderer(show_tool_calls=False, show_errors=False).render(result.ast))
        return calls, text, result

    def _mapped(self, call: ToolCallRequest) -> ToolCallRequest:
        return replace(call, parameters=self.compiler.map_arguments(call.tool_id, call.parameters))

    def _render_compiled(self, result: CompileResult):
        blocks = AstRenderer(show_tool_calls=False, show_errors=True).render(result.ast)
        if blocks:
            render_blocks(self.console, blocks)

    def _execute_calls(self, calls: List[ToolCallRequest], announced: Set[Tuple[str, str]]):
        total = len(calls)
        for index, call in enumerate(calls, 1):
            if self.show_tool_calls and call.signature() not in announced:
                render_tool_call(self.console, call.tool_id, call.parameters, index, total)
            started = time.perf_counter()
            result = self.registry.execute(call.tool_id, call.parameters)
            elapsed = time.perf_counter() - started
            if self.show_tool_calls:
                render_result(self.console, call.tool_id, result, elapsed)
            if not result.is_successful:
                log.info("tool %s failed: %s", call.tool_id, result.message)
            self.context.add_tool_execution(call.tool_id, call.call_id, call.parameters, result)

    # ── Session helpers ──

    def get_stats(self) -> Dict[str, Any]:
        stats = self.context.get_stats()
        budget = self.context.budget
        pct = int(stats.estimated_tokens / budget.max_tokens * 100) if budget.max_tokens else 0
        return {
            "messages": stats.message_count,
            "tool_calls": stats.tool_call_count,
            "summarized_tool_calls": stats.summarized_tool_calls,
            "compactions": stats.compactions,
            "ordering_repairs": stats.ordering_repairs,
            "hallucinated_turns": self.hallucinated_turns,
            "total_tokens": self.total_tokens,
            "context_used": f"~{stats.estimated_tokens:,} / {budget.max_tokens:,} ({pct}%)",
            "model": self.llm.model,
        }

    def compact_conversation(self) -> int:
        """Fold older messages into the summary now. Returns how many were folded."""
        return self.context.compact()

    def reset(self):
        self.context.clear()
        self.total_tokens = 0
        self.hallucinated_turns = 0
