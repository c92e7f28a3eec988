"""Recognizing tool-call objects (and tool-result impostors) in parsed JSON.

Models embed tool calls in many shapes::

    {"tool": "read_file", "parameters": {"path": "a.py"}}
    {"name": "read_file", "arguments": "{\\"path\\": \\"a.py\\"}"}
    {"function": {"name": "read_file", "arguments": {...}}}
    {"tool_call": {"name": "read_file", "arguments": {...}}}
    {"tool": "read_file", "path": "a.py"}

A bare ``name`` key only counts when an argument key sits beside it.
``coerce_tool_call`` folds all of them into ``(name, arguments)``.
"""

import re
from typing import Any, Dict, Optional, Tuple

from .json_repair import safe_parse

__all__ = [
    "TOOL_NAME_KEYS",
    "ARGUMENT_KEYS",
    "coerce_tool_call",
    "looks_like_tool_result",
    "is_valid_tool_name",
]

TOOL_NAME_KEYS = ("tool", "tool_name", "name", "function")
WRAPPER_KEYS = ("tool_call", "function_call")
ARGUMENT_KEYS = ("parameters", "arguments", "args", "params", "input")

_RESULT_KEYS = {"result", "results", "output", "stdout", "stderr", "tool_result", "tool_response"}
_STATUS_KEYS = {"success", "is_successful", "isSuccessful", "ok", "status"}
_PAYLOAD_KEYS = {"data", "message", "error", "output", "result", "content"}

_TOOL_NAME_RE = re.compile(r"^[A-Za-z_][\w.\-]{0,127}$")
# Keys that may sit next to the name without being arguments.
_META_KEYS = {"id", "type", "call_id", "tool_call_id"}


def is_valid_tool_name(name: Any) -> bool:
    return isinstance(name, str) and bool(_TOOL_NAME_RE.match(name))


def looks_like_tool_result(obj: Any) -> bool:
    """True for objects shaped like a tool's response rather than a request."""
    if not isinstance(obj, dict) or not obj:
        return False
    keys = set(obj)
    if obj.get("role") == "tool" or "tool_call_id" in keys:
        return True
    if keys & set(ARGUMENT_KEYS):
        return False
    if keys & _RESULT_KEYS:
        return True
    return bool(keys & _STATUS_KEYS) and bool(keys & _PAYLOAD_KEYS)


def _coerce_arguments(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        if not value.strip():
            return {}
        parsed = safe_parse(value)
        if isinstance(parsed, dict):
            return parsed
    return None


def coerce_tool_call(obj: Any, _wrapped: bool = False) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Return ``(tool_name, arguments)`` if ``obj`` is a tool-call object."""
    if not isinstance(obj, dict) or looks_like_tool_result(obj):
        return None

    for key in WRAPPER_KEYS:
        inner = obj.get(key)
        if isinstance(inner, dict) and len(obj) == 1:
            return coerce_tool_call(inner, _wrapped=True)

    name = None
    name_key = None
    for key in TOOL_NAME_KEYS:
        value = obj.get(key)
        if isinstance(value, dict) and key == "function":
            # OpenAI shape: {"function": {"name": ..., "arguments": ...}}
            return coerce_tool_call(value, _wrapped=True)
        if isinstance(value, str):
            name, name_key = value.strip(), key
            break
    if not is_valid_tool_name(name):
        return None

    for key in ARGUMENT_KEYS:
        if key in obj:
            args = _coerce_arguments(obj[key])
            if args is None:
                return None
            return name, args

    # A bare "name" is too common in ordinary data to stand alone.
    if name_key == "name" and not _wrapped:
        return None
    # No argument key: the remaining keys are the arguments.
    args = {k: v for k, v in obj.items() if k != name_key and k not in _META_KEYS}
    return name, args
