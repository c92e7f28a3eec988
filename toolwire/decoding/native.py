"""Accumulation of vendor-native streamed tool calls.

OpenAI-compatible streams deliver ``delta.tool_calls`` as fragments keyed by
``index``: the id and name usually arrive once, the arguments arrive as
pieces of a JSON string.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import FaultKind
from ..json_repair import Fixed, repair
from ..logger import resolve_logger
from ..models import CallOrigin, ToolCallRequest, new_call_id
from ..tool_json import is_valid_tool_name

__all__ = ["NativeToolCallAccumulator"]


@dataclass
class _PartialCall:
    call_id: str = ""
    name: str = ""
    arguments: str = ""


class NativeToolCallAccumulator:
    def __init__(self, origin: CallOrigin = CallOrigin.STREAMING,
                 logger: Optional[logging.Logger] = None):
        self._lock = threading.Lock()
        self._calls: Dict[int, _PartialCall] = {}
        self._origin = origin
        self._log = resolve_logger(logger, __name__)

    def add_chunk(self, index: int, call_id: Optional[str] = None,
                  name: Optional[str] = None, arguments: Optional[str] = None):
        with self._lock:
            partial = self._calls.setdefault(int(index or 0), _PartialCall())
            if call_id:
                partial.call_id = call_id
            if name:
                partial.name = name
            if arguments:
                partial.arguments += arguments

    def add_delta(self, tool_call_deltas: Any):
        """Feed a litellm/OpenAI ``delta.tool_calls`` list."""
        for position, tc in enumerate(tool_call_deltas or []):
            index = getattr(tc, "index", None)
            fn = getattr(tc, "function", None)
            self.add_chunk(
                index if index is not None else position,
                call_id=getattr(tc, "id", None),
                name=getattr(fn, "name", None) if fn else None,
                arguments=getattr(fn, "arguments", None) if fn else None,
            )

    def completed_calls(self) -> List[ToolCallRequest]:
        """Requests in index order. Calls without a usable name are skipped."""
        with self._lock:
            items = sorted(self._calls.items())
        calls: List[ToolCallRequest] = []
        for index, partial in items:
            if not is_valid_tool_name(partial.name):
                self._log.debug("%s: native call #%d has no usable name",
                                FaultKind.UNREPAIRABLE_FRAGMENT.value, index)
                continue
            calls.append(ToolCallRequest(
                tool_id=partial.name,
                parameters=self._parse_arguments(partial),
                origin=self._origin,
                call_id=partial.call_id or new_call_id(),
            ))
        return calls

    def _parse_arguments(self, partial: _PartialCall) -> Dict[str, Any]:
        if not partial.arguments.strip():
            return {}
        result = repair(partial.arguments)
        if isinstance(result, Fixed) and isinstance(result.value, dict):
            if result.repaired:
                self._log.debug("%s: arguments of %s repaired",
                                FaultKind.RECOVERABLE_MALFORMATION.value, partial.name)
            return result.value
        self._log.debug("%s: arguments of %s kept raw",
                        FaultKind.UNREPAIRABLE_FRAGMENT.value, partial.name)
        return {"_raw": partial.arguments}

    def clear(self):
        with self._lock:
            self._calls.clear()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "calls": len(self._calls),
                "argument_chars": sum(len(p.arguments) for p in self._calls.values()),
                "named": sum(1 for p in self._calls.values() if p.name),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)
