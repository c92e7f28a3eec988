"""Tool registry: the ``execute(tool_id, parameters) -> ToolResult`` seam.

Concrete tools live outside this package. A plugin module exposes
``register_tools(registry)`` and registers plain functions; schemas are
generated from the function signatures.

    def register_tools(registry):
        @registry.tool("Read file contents")
        def read_file(path: str) -> str:
            ...
"""

import inspect
from typing import Any, Callable, Dict, List, Optional, get_type_hints

from .compiler.parameters import map_parameters
from .compiler.semantic import ToolSpec
from .errors import FaultKind, ToolError
from .logger import get_logger
from .models import ToolResult

log = get_logger(__name__)

# Python type -> JSON Schema type
_TYPE_MAP = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class _ToolEntry:
    """Single tool registration: handler + schema + parameter types."""
    __slots__ = ("handler", "schema", "spec")

    def __init__(self, handler: Callable, schema: dict, spec: ToolSpec):
        self.handler = handler
        self.schema = schema
        self.spec = spec


def _schema(name: str, description: str, properties: dict,
            required: list) -> dict:
    """Build an OpenAI-compatible function schema."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


def _describe(func: Callable, name: str, description: str) -> _ToolEntry:
    """Derive schema and parameter types from the function signature."""
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except (NameError, TypeError):
        hints = {}

    properties: Dict[str, Any] = {}
    required: List[str] = []
    optional: List[str] = []
    types: Dict[str, type] = {}
    for param_name, param in sig.parameters.items():
        if param_name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        hint = hints.get(param_name)
        args = getattr(hint, "__args__", None)
        if args and type(None) in args:
            # Optional[X] -> X
            hint = next((a for a in args if a is not type(None)), None)
        prop: Dict[str, Any] = {"type": _TYPE_MAP.get(hint, "string")}
        if hint in _TYPE_MAP:
            types[param_name] = hint
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
        else:
            optional.append(param_name)
            if param.default is not None:
                prop["default"] = param.default
        properties[param_name] = prop

    schema = _schema(name, description or (func.__doc__ or "").strip(), properties, required)
    return _ToolEntry(func, schema, ToolSpec(tuple(required), types, tuple(optional)))


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, _ToolEntry] = {}

    def register(self, func: Callable, name: Optional[str] = None,
                 description: str = "") -> Callable:
        tool_name = name or func.__name__
        self._tools[tool_name] = _describe(func, tool_name, description)
        log.debug("registered tool %s", tool_name)
        return func

    def tool(self, description: str = "", name: Optional[str] = None):
        """Decorator form of ``register``."""
        def decorator(func: Callable) -> Callable:
            return self.register(func, name=name, description=description)
        return decorator

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def schemas(self) -> List[dict]:
        return [entry.schema for entry in self._tools.values()]

    def tool_specs(self) -> Dict[str, ToolSpec]:
        return {name: entry.spec for name, entry in self._tools.items()}

    def execute(self, tool_id: str, parameters: Dict[str, Any]) -> ToolResult:
        """Run a tool. Never raises: failures come back as failed results.

        Argument names and simple values are first mapped onto the declared
        parameters (``filePath`` to ``path``, ``"3"`` to ``3``).
        """
        entry = self._tools.get(tool_id)
        if entry is None:
            return ToolResult(False, None, f"Unknown tool: {tool_id}")
        mapping = map_parameters(parameters, entry.spec)
        if mapping.changed:
            log.debug("%s: %s arguments mapped (%s)", FaultKind.RECOVERABLE_MALFORMATION.value,
                      tool_id, mapping.describe())
        try:
            data = entry.handler(**mapping.arguments)
        except ToolError as e:
            return ToolResult(False, None, str(e))
        except TypeError as e:
            return ToolResult(False, None, str(ToolError(tool_id, f"bad arguments: {e}")))
        except Exception as e:
            log.debug("tool %s failed", tool_id, exc_info=True)
            return ToolResult(False, None,
                              str(ToolError(tool_id, f"{type(e).__name__}: {e}")))
        if isinstance(data, ToolResult):
            return data
        return ToolResult(True, data, "")
