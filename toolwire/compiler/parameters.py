"""Map model-chosen argument names and values onto a tool's declared parameters.

Models often call ``read_file`` with ``file`` or ``filePath`` instead of
``path``, or send ``"true"`` where a boolean is expected. ``map_parameters``
renames such arguments and coerces simple scalar values, driven only by the
tool's ``ToolSpec``. Arguments it cannot place are passed through unchanged.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from .semantic import ToolSpec

__all__ = ["PARAMETER_ALIASES", "ParameterMapping", "map_parameters", "coerce_value"]

# Declared name -> names models use for it. An alias only applies when the
# tool declares the target and does not declare the alias itself.
PARAMETER_ALIASES: Dict[str, Tuple[str, ...]] = {
    "path": ("file_path", "filepath", "file_name", "filename", "file", "directory",
             "dir", "folder", "location", "target_file"),
    "content": ("contents", "text", "data", "body", "file_content"),
    "command": ("cmd", "shell_command", "script", "bash", "shell"),
    "pattern": ("query", "regex", "search", "search_pattern", "term"),
    "source": ("src", "from", "source_path"),
    "destination": ("dest", "dst", "to", "target", "destination_path"),
    "recursive": ("recurse", "recursively"),
}

TRUE_WORDS = {"true", "yes", "on", "1", "y"}
FALSE_WORDS = {"false", "no", "off", "0", "n"}


def _fold(name: str) -> str:
    return name.lower().replace("_", "").replace("-", "")


class ParameterMapping:
    """Result of ``map_parameters``: the arguments plus what was changed."""

    def __init__(self, arguments: Dict[str, Any]):
        self.arguments = arguments
        self.renamed: List[Tuple[str, str]] = []
        self.coerced: List[str] = []

    @property
    def changed(self) -> bool:
        return bool(self.renamed or self.coerced)

    def describe(self) -> str:
        parts = [f"{old} -> {new}" for old, new in self.renamed]
        parts += [f"{name} coerced" for name in self.coerced]
        return ", ".join(parts)


def _declared(spec: ToolSpec) -> List[str]:
    names: List[str] = []
    for name in list(spec.required) + list(spec.types) + list(spec.optional):
        if name not in names:
            names.append(name)
    return names


def _resolve(key: str, declared: List[str]) -> Optional[str]:
    if key in declared:
        return key
    folded = _fold(key)
    for name in declared:
        if _fold(name) == folded:
            return name
    for name in declared:
        if folded in (_fold(alias) for alias in PARAMETER_ALIASES.get(name, ())):
            return name
    return None


def coerce_value(value: Any, expected: type) -> Any:
    """Convert a stringly or loosely typed value to ``expected`` where safe.

    Returns the value unchanged when no lossless conversion exists.
    """
    if expected is bool:
        if isinstance(value, str):
            word = value.strip().lower()
            if word in TRUE_WORDS:
                return True
            if word in FALSE_WORDS:
                return False
        elif isinstance(value, int) and not isinstance(value, bool) and value in (0, 1):
            return bool(value)
        return value
    if expected is int:
        if isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                try:
                    number = float(value.strip())
                except ValueError:
                    return value
                return int(number) if number.is_integer() else value
        return value
    if expected is float:
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return value
        return value
    if expected is str:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value
    if expected in (list, dict) and isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            if expected is list and value.strip():
                return [part.strip() for part in value.split(",") if part.strip()]
            return value
        return parsed if isinstance(parsed, expected) else value
    return value


def map_parameters(arguments: Optional[Dict[str, Any]],
                   spec: Optional[ToolSpec]) -> ParameterMapping:
    """Rename arguments to declared names, then coerce their values.

    Name resolution order: exact, case and separator insensitive, known
    alias. A declared name supplied directly always beats one reached
    through an alias.
    """
    arguments = dict(arguments or {})
    if spec is None:
        return ParameterMapping(arguments)
    declared = _declared(spec)
    if not declared:
        return ParameterMapping(arguments)

    out: Dict[str, Any] = {}
    renamed: List[Tuple[str, str]] = []
    for key, value in arguments.items():
        if key in declared:
            out[key] = value
    for key, value in arguments.items():
        if key in declared:
            continue
        target = _resolve(key, declared)
        if target is None or target in out:
            out[key] = value
            continue
        out[target] = value
        renamed.append((key, target))

    mapping = ParameterMapping(out)
    mapping.renamed = renamed
    for name, expected in spec.types.items():
        if name in out:
            value = coerce_value(out[name], expected)
            if type(value) is not type(out[name]):
                out[name] = value
                mapping.coerced.append(name)
    return mapping
