"""
Configuration: model presets plus the context and decoding knobs.

Files are looked up in this order and the first one found wins:
  1. <project>/.toolwire.yml
  2. <git root>/.toolwire.yml
  3. ~/.toolwire/config.yml

.env files in ~/.toolwire/ and the project dir are loaded first and never
override variables that are already set. TOOLWIRE_MODEL, TOOLWIRE_API_BASE
and TOOLWIRE_API_KEY then override the active preset.
"""

import dataclasses
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, Callable, Any, Iterator, Tuple

import yaml
from dotenv import load_dotenv

from .context_manager import DEFAULT_TOOL_OUTPUT_LIMITS
from .errors import ConfigError
from .logger import get_logger

log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".toolwire"
CONFIG_FILE = CONFIG_DIR / "config.yml"
PROJECT_CONFIG_NAME = ".toolwire.yml"

REASONING_DISPLAY_MODES = ("off", "summary", "full")
TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
FALSE_WORDS = frozenset({"0", "false", "no", "off"})


# ── Value checks ──
# A check returns the coerced value or raises ValueError with the reason.


class OutOfRange(ValueError):
    """A numeric value outside its bounds; ``clamped`` is the nearest bound."""

    def __init__(self, low: int, high: int, clamped: int):
        super().__init__(f"Must be between {low} and {high}")
        self.clamped = clamped


def int_between(low: int, high: int) -> Callable[[Any], int]:
    def check(value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError("Must be an integer")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValueError("Must be an integer") from None
        if not low <= number <= high:
            raise OutOfRange(low, high, max(low, min(high, number)))
        return number
    return check


def one_of(*choices: str) -> Callable[[Any], str]:
    def check(value: Any) -> str:
        word = str(value).strip().lower()
        if word not in choices:
            raise ValueError(f"Must be one of: {', '.join(sorted(choices))}")
        return word
    return check


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    word = str(value).strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    raise ValueError("Must be true/false, yes/no, on/off, or 1/0")


def tool_name(value: Any) -> str:
    name = str(value or "").strip()
    if not name or not (name[0].isalpha() or name[0] == "_"):
        raise ValueError("Must be a tool name")
    return name


_limit = int_between(100, 200000)


def tool_limits(value: Any) -> Dict[str, int]:
    """A ``tool -> max chars`` mapping."""
    if not isinstance(value, dict):
        raise ValueError("Must be a mapping of tool name to character limit")
    limits = {}
    for tool, raw in value.items():
        try:
            limits[str(tool)] = _limit(raw)
        except ValueError as e:
            raise ValueError(f"{tool}: {e}") from None
    return limits


@dataclass(frozen=True)
class Setting:
    """One top-level YAML key and the ``Config`` attribute it feeds."""
    key: str
    attr: str
    default: Any
    help: str
    check: Callable[[Any], Any] = str

    def initial(self) -> Any:
        return dict(self.default) if isinstance(self.default, dict) else self.default

    def parse(self, value: Any) -> Any:
        return self.check(value)

    def from_file(self, value: Any, source: Any) -> Any:
        """Lenient parse: clamp numbers, fall back to the default otherwise."""
        try:
            return self.check(value)
        except OutOfRange as e:
            log.info("%s in %s clamped to %s", self.key, source, e.clamped)
            return e.clamped
        except ValueError as e:
            log.warning("ignoring %s in %s: %s", self.key, source, e)
            return self.initial()


SETTINGS: Dict[str, Setting] = {s.key: s for s in (
    Setting("active-model", "active_model", "local", "Active model preset"),
    Setting("max-iterations", "max_iterations", 30,
            "Maximum model round-trips per user turn", int_between(1, 100)),
    Setting("max-tokens", "max_tokens", 12000,
            "Hard token budget of the replayed history", int_between(256, 2_000_000)),
    Setting("compression-threshold", "compression_threshold", 10000,
            "Estimated history size that triggers compaction", int_between(64, 2_000_000)),
    Setting("max-history-before-compaction", "max_history_before_compaction", 40,
            "Message count that triggers compaction", int_between(2, 10000)),
    Setting("recent-messages", "recent_messages", 10,
            "Messages kept verbatim when compacting", int_between(2, 200)),
    Setting("tool-result-max-chars", "tool_result_max_chars", 3000,
            "Replay cap for tool results without a per-tool limit", int_between(200, 200000)),
    Setting("shell-tool-name", "shell_tool_name", "bash_command",
            "Tool that runs commands from shell-fenced blocks", tool_name),
    Setting("shell-blocks-as-tools", "shell_blocks_as_tools", True,
            "Run unexplained shell-fenced blocks as commands", as_bool),
    Setting("show-tool-calls", "show_tool_calls", True,
            "Render tool-call blocks in the transcript", as_bool),
    Setting("stream", "stream", True, "Stream responses from the model", as_bool),
    Setting("reasoning-display", "reasoning_display", "summary",
            "How model reasoning is shown", one_of(*REASONING_DISPLAY_MODES)),
    Setting("verbose", "verbose", False, "Verbose debug logging", as_bool),
    Setting("tool-output-limits", "tool_output_limits", dict(DEFAULT_TOOL_OUTPUT_LIMITS),
            "Per-tool replay caps in characters", tool_limits),
)}


def validate_config_value(key: str, value: Any) -> Tuple[bool, Any, str]:
    """
    Check a value for ``key`` without applying it.

    Returns:
        (is_valid, coerced_value, error_message). For an out-of-range number
        the coerced value is the nearest bound.
    """
    setting = SETTINGS.get(key)
    if setting is None:
        return False, value, f"Unknown configuration key: {key}"
    try:
        return True, setting.parse(value), ""
    except OutOfRange as e:
        return False, e.clamped, str(e)
    except ValueError as e:
        return False, setting.initial(), str(e)


# ── Model presets ──

PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

# YAML key -> ModelPreset attribute
PRESET_KEYS = {
    "provider": "provider",
    "model": "model",
    "api-base": "api_base",
    "api-key": "api_key",
    "api-key-env": "api_key_env",
    "temperature": "temperature",
    "max-tokens": "max_tokens",
    "context-window": "context_window",
    "description": "description",
}


@dataclass
class ModelPreset:
    name: str
    provider: str
    model: str
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    temperature: float = 0.0
    max_tokens: int = 4096
    context_window: int = 128000
    description: str = ""

    @classmethod
    def from_yaml(cls, name: str, entry: Optional[dict]) -> "ModelPreset":
        entry = entry or {}
        values = {attr: entry[key] for key, attr in PRESET_KEYS.items()
                  if entry.get(key) is not None}
        values.setdefault("provider", "openai")
        values.setdefault("model", "openai/gpt-4o-mini")
        return cls(name=name, **values)

    def to_yaml(self) -> dict:
        return {key: getattr(self, attr) for key, attr in PRESET_KEYS.items()
                if getattr(self, attr) is not None}

    def resolve_api_key(self) -> Optional[str]:
        """Explicit key, then the named variable, then the provider's usual one."""
        if self.api_key:
            return self.api_key
        env_var = self.api_key_env or PROVIDER_KEY_ENV.get(self.provider)
        return os.environ.get(env_var) if env_var else None

    def get_llm_kwargs(self) -> dict:
        """Keyword arguments for ``LLMAdapter``."""
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "api_base": self.api_base,
            "api_key": self.resolve_api_key(),
        }


def default_presets() -> Dict[str, ModelPreset]:
    presets = (
        ModelPreset("local", "local", "openai/model",
                    api_base="http://localhost:8080/v1", api_key="not-needed",
                    max_tokens=4096, context_window=32000,
                    description="Local model (vLLM / llama.cpp on :8080)"),
        ModelPreset("deepseek-chat", "deepseek", "deepseek/deepseek-chat",
                    api_key_env="DEEPSEEK_API_KEY", description="DeepSeek chat"),
        ModelPreset("qwen-coder", "openai", "openai/Qwen2.5-Coder-32B-Instruct",
                    api_base="http://localhost:8000/v1", api_key="not-needed",
                    context_window=32000,
                    description="Qwen coder served over an OpenAI-compatible API"),
    )
    return {p.name: p for p in presets}


def find_git_root(path: Path) -> Optional[Path]:
    return next((p for p in (path, *path.parents) if (p / ".git").exists()), None)


# ── Config ──


@dataclass
class Config:
    active_model: str = "local"
    models: Dict[str, ModelPreset] = field(default_factory=default_presets)
    max_iterations: int = 30
    max_tokens: int = 12000
    compression_threshold: int = 10000
    max_history_before_compaction: int = 40
    recent_messages: int = 10
    tool_result_max_chars: int = 3000
    shell_tool_name: str = "bash_command"
    shell_blocks_as_tools: bool = True
    show_tool_calls: bool = True
    stream: bool = True
    reasoning_display: str = "summary"
    verbose: bool = False
    tool_output_limits: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_TOOL_OUTPUT_LIMITS))
    project_root: Optional[str] = None
    source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        project_path = Path(project_dir).resolve()
        for env_file in (CONFIG_DIR / ".env", project_path / ".env"):
            if env_file.exists():
                load_dotenv(env_file, override=False)

        config = cls(project_root=str(project_path))
        path = next((p for p in cls._candidates(project_path) if p.exists()), None)
        if path is not None:
            config._read(path)
        config._apply_env()
        return config

    @staticmethod
    def _candidates(project_path: Path) -> Iterator[Path]:
        yield project_path / PROJECT_CONFIG_NAME
        git_root = find_git_root(project_path)
        if git_root is not None and git_root != project_path:
            yield git_root / PROJECT_CONFIG_NAME
        yield CONFIG_FILE

    def _read(self, path: Path):
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            log.warning("could not read %s: %s", path, e)
            return
        if not isinstance(data, dict):
            log.warning("ignoring %s: top level is not a mapping", path)
            return

        self.source = str(path)
        for setting in SETTINGS.values():
            if setting.key in data:
                setattr(self, setting.attr, setting.from_file(data[setting.key], path))
        presets = {str(name): ModelPreset.from_yaml(str(name), entry)
                   for name, entry in (data.get("models") or {}).items()}
        if presets:
            self.models = presets
        log.debug("loaded %s (%d presets)", path, len(self.models))

    def _apply_env(self):
        override = os.environ.get("TOOLWIRE_MODEL")
        if override in self.models:
            self.active_model = override
        elif override:
            # A bare model id replaces the model of the active preset.
            preset = dataclasses.replace(self.get_active_preset(), model=override)
            self.models[preset.name] = preset
            self.active_model = preset.name

        preset = self.get_active_preset()
        preset.api_base = os.environ.get("TOOLWIRE_API_BASE") or preset.api_base
        preset.api_key = os.environ.get("TOOLWIRE_API_KEY") or preset.api_key
        self.models.setdefault(preset.name, preset)

    def save(self, filepath: Optional[str] = None):
        target = Path(filepath or self.source or CONFIG_FILE)
        target.parent.mkdir(parents=True, exist_ok=True)
        data: Dict[str, Any] = {key: getattr(self, s.attr) for key, s in SETTINGS.items()}
        data["models"] = {name: p.to_yaml() for name, p in self.models.items()}
        with open(target, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False,
                           allow_unicode=True)
        self.source = str(target)
        log.debug("saved configuration to %s", target)

    def get_active_preset(self) -> ModelPreset:
        if self.active_model in self.models:
            return self.models[self.active_model]
        if self.models:
            return next(iter(self.models.values()))
        return default_presets()["local"]

    def context_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``ContextManager``."""
        return {
            "max_tokens": self.max_tokens,
            "compression_threshold": self.compression_threshold,
            "max_history_before_compaction": self.max_history_before_compaction,
            "recent_messages": self.recent_messages,
            "tool_result_max_chars": self.tool_result_max_chars,
            "tool_output_limits": dict(self.tool_output_limits),
        }

    def summary(self) -> dict:
        preset = self.get_active_preset()
        return {
            "Active model": f"{self.active_model} → {preset.model}",
            "API base": preset.api_base or "(provider default)",
            "API key": "set" if preset.resolve_api_key() else "not set",
            "Budget": f"{self.compression_threshold:,} / {self.max_tokens:,} tokens",
            "Shell tool": self.shell_tool_name,
            "Streaming": "ON" if self.stream else "OFF",
            "Project": self.project_root,
            "Config": self.source or "(defaults)",
        }

    def get_value(self, key: str) -> Any:
        setting = SETTINGS.get(key)
        return getattr(self, setting.attr) if setting else None

    def set_value(self, key: str, value: Any, persist: bool = False):
        """Set a value by its YAML key. Raises ``ConfigError`` when rejected."""
        if key == "active-model" and value not in self.models:
            raise ConfigError(key, f"model '{value}' not found")
        ok, coerced, reason = validate_config_value(key, value)
        if not ok:
            raise ConfigError(key, reason)
        setattr(self, SETTINGS[key].attr, coerced)
        if persist:
            self.save()

    def reset_value(self, key: str):
        if key not in SETTINGS:
            raise ConfigError(key, "unknown configuration key")
        setattr(self, SETTINGS[key].attr, SETTINGS[key].initial())

    def get_config_diff(self) -> Dict[str, Dict[str, Any]]:
        """Settings split into ``modified`` and ``default`` buckets."""
        diff: Dict[str, Dict[str, Any]] = {"modified": {}, "default": {}}
        for key, setting in SETTINGS.items():
            current = getattr(self, setting.attr)
            bucket = "default" if current == setting.default else "modified"
            diff[bucket][key] = {"current": current, "default": setting.default,
                                 "description": setting.help}
        return diff
