"""Environment-backed application configuration and session overrides."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

DEFAULT_MODEL = "gpt-5.2"
DEFAULT_API_URL = "https://api.openai.com/v1/responses"

DEFAULT_BLACKLIST_PATTERNS = [
    r"\brm\s+-rf\s+/\s*$",
    r"\bmkfs(\.\w+)?\b",
    r"\bdd\s+.*\bof=/dev/",
    r":\(\)\s*\{\s*:\|:&\s*\};:",
]

# Settings read on every step; everything else is fixed once the session starts.
RUNTIME_KEYS = (
    "max_steps",
    "max_capture_lines",
    "max_context_size",
    "squash_keep_recent",
    "wait_interval",
    "marker_timeout",
    "exec_confirm",
    "send_keys_confirm",
    "paste_multiline_confirm",
    "whitelist_patterns",
    "blacklist_patterns",
    "prepare_shell",
)


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    api_key: str | None
    model: str = DEFAULT_MODEL
    api_url: str = DEFAULT_API_URL
    api_type: str = "responses"
    reasoning_effort: str | None = None
    request_timeout: float = 60.0
    log_dir: str = "logs"
    debug: bool = False
    max_steps: int = 20
    max_capture_lines: int = 200
    max_context_size: int = 100_000
    squash_keep_recent: int = 4
    wait_interval: float = 5.0
    marker_timeout: float = 30.0
    exec_confirm: bool = True
    send_keys_confirm: bool = True
    paste_multiline_confirm: bool = True
    whitelist_patterns: list[str] = field(default_factory=list)
    blacklist_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_BLACKLIST_PATTERNS)
    )
    risk_rules: list[dict[str, str]] = field(default_factory=list)
    kb_dir: str = "kb"
    kb_auto_load: list[str] = field(default_factory=list)
    prepare_shell: str = "bash"

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        openai_from_file = file_config.get("openai")
        openai_config = openai_from_file if isinstance(openai_from_file, dict) else {}
        models_from_file = file_config.get("models")
        model_config = models_from_file if isinstance(models_from_file, dict) else {}

        selected_model = os.getenv("AITERM_MODEL") or str(
            file_config.get("default_model", DEFAULT_MODEL)
        )
        selected_model_entry = model_config.get(selected_model)
        selected_model_config = (
            selected_model_entry if isinstance(selected_model_entry, dict) else {}
        )
        api_url = (
            os.getenv("AITERM_API_URL")
            or _to_optional_string(selected_model_config.get("api_url"))
            or _to_optional_string(openai_config.get("api_url"))
            or DEFAULT_API_URL
        )

        return cls(
            api_key=(
                os.getenv("AITERM_API_KEY")
                or os.getenv("OPENAI_API_KEY")
                or _to_optional_string(selected_model_config.get("api_key"))
                or _to_optional_string(openai_config.get("api_key"))
                or _to_optional_string(file_config.get("api_key"))
            ),
            model=selected_model,
            api_url=api_url,
            api_type=_resolve_api_type(
                os.getenv("AITERM_API_TYPE")
                or _to_optional_string(selected_model_config.get("api_type")),
                api_url,
            ),
            reasoning_effort=(
                os.getenv("AITERM_REASONING_EFFORT")
                or _to_optional_string(selected_model_config.get("reasoning_effort"))
                or _default_reasoning_effort(selected_model)
            ),
            request_timeout=_to_positive_float(
                os.getenv("AITERM_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                default=60.0,
            ),
            log_dir=(
                os.getenv("AITERM_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            debug=_to_bool(
                os.getenv("AITERM_DEBUG"),
                default=bool(file_config.get("debug", False)),
            ),
            max_steps=_to_positive_int(
                os.getenv("AITERM_MAX_STEPS") or file_config.get("max_steps"),
                default=20,
            ),
            max_capture_lines=_to_positive_int(
                os.getenv("AITERM_MAX_CAPTURE_LINES") or file_config.get("max_capture_lines"),
                default=200,
            ),
            max_context_size=_to_positive_int(
                os.getenv("AITERM_MAX_CONTEXT_SIZE") or file_config.get("max_context_size"),
                default=100_000,
            ),
            squash_keep_recent=_to_positive_int(
                os.getenv("AITERM_SQUASH_KEEP_RECENT") or file_config.get("squash_keep_recent"),
                default=4,
            ),
            wait_interval=_to_positive_float(
                os.getenv("AITERM_WAIT_INTERVAL") or file_config.get("wait_interval"),
                default=5.0,
            ),
            marker_timeout=_to_positive_float(
                os.getenv("AITERM_MARKER_TIMEOUT") or file_config.get("marker_timeout"),
                default=30.0,
            ),
            exec_confirm=_to_bool(
                os.getenv("AITERM_EXEC_CONFIRM"),
                default=bool(file_config.get("exec_confirm", True)),
            ),
            send_keys_confirm=_to_bool(
                os.getenv("AITERM_SEND_KEYS_CONFIRM"),
                default=bool(file_config.get("send_keys_confirm", True)),
            ),
            paste_multiline_confirm=_to_bool(
                os.getenv("AITERM_PASTE_MULTILINE_CONFIRM"),
                default=bool(file_config.get("paste_multiline_confirm", True)),
            ),
            whitelist_patterns=_to_string_list(file_config.get("whitelist_patterns"), default=[]),
            blacklist_patterns=_to_string_list(
                file_config.get("blacklist_patterns"),
                default=list(DEFAULT_BLACKLIST_PATTERNS),
            ),
            risk_rules=_to_rule_list(file_config.get("risk_rules")),
            kb_dir=(
                os.getenv("AITERM_KB_DIR")
                or _to_optional_string(file_config.get("kb_dir"))
                or "kb"
            ),
            kb_auto_load=_to_string_list(file_config.get("kb_auto_load"), default=[]),
            prepare_shell=(
                os.getenv("AITERM_PREPARE_SHELL")
                or _to_optional_string(file_config.get("prepare_shell"))
                or _default_prepare_shell()
            ),
        )


class SessionOverrides:
    """Session-scoped configuration values consulted ahead of ``AppConfig``."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._values: dict[str, object] = {}

    @staticmethod
    def keys() -> list[str]:
        """Names that ``set`` accepts; the same names ``/config`` lists."""
        return list(RUNTIME_KEYS)

    def get(self, key: str) -> object:
        if key in self._values:
            return self._values[key]
        if key == "api_key" or key not in {item.name for item in fields(AppConfig)}:
            msg = f"Unknown configuration key: {key}"
            raise KeyError(msg)
        return getattr(self._config, key)

    def get_int(self, key: str) -> int:
        value = self.get(key)
        return int(value) if isinstance(value, (int, float, str)) else 0

    def get_float(self, key: str) -> float:
        value = self.get(key)
        return float(value) if isinstance(value, (int, float, str)) else 0.0

    def get_bool(self, key: str) -> bool:
        return bool(self.get(key))

    def get_list(self, key: str) -> list[str]:
        value = self.get(key)
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]

    def set(self, key: str, value: object) -> object:
        """Store a session override, coercing strings to the configured type."""
        if key not in RUNTIME_KEYS:
            self.get(key)  # unknown names raise here
            msg = f"Configuration key {key} is fixed for the session; restart aiterm to change it"
            raise KeyError(msg)
        current = getattr(self._config, key)
        coerced = _coerce_like(current, value)
        self._values[key] = coerced
        return coerced

    def clear(self, key: str | None = None) -> None:
        if key is None:
            self._values.clear()
            return
        self._values.pop(key, None)

    def items(self) -> dict[str, object]:
        return {key: self.get(key) for key in self.keys()}

    @property
    def overridden(self) -> dict[str, object]:
        return dict(self._values)


def _coerce_like(current: object, value: object) -> object:
    if not isinstance(value, str):
        return value
    if isinstance(current, bool):
        normalized = value.strip().lower()
        if normalized not in {"1", "true", "yes", "on", "0", "false", "no", "off"}:
            msg = f"Expected a boolean value, got {value!r}"
            raise ValueError(msg)
        return _to_bool(value)
    if isinstance(current, int):
        return int(value.strip())
    if isinstance(current, float):
        return float(value.strip())
    if isinstance(current, list):
        stripped = value.strip()
        if stripped.startswith("["):
            parsed = json.loads(stripped)
            if not isinstance(parsed, list):
                msg = f"Expected a JSON list, got {value!r}"
                raise ValueError(msg)
            return parsed
        return [part.strip() for part in stripped.split(",") if part.strip()]
    return value


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_string_list(value: object, *, default: list[str]) -> list[str]:
    if not isinstance(value, list):
        return default
    return [item for item in value if isinstance(item, str) and item.strip()]


def _to_rule_list(value: object) -> list[dict[str, str]]:
    if not isinstance(value, list):
        return []
    rules: list[dict[str, str]] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        pattern = item.get("pattern")
        level = item.get("level")
        if not isinstance(pattern, str) or not isinstance(level, str):
            continue
        rationale = item.get("rationale")
        rules.append(
            {
                "pattern": pattern,
                "level": level,
                "rationale": rationale if isinstance(rationale, str) else "",
            }
        )
    return rules


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("AITERM_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("aiterm.config.json")
    local_override = _load_file_config("aiterm.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _default_reasoning_effort(model: str) -> str | None:
    """Provide practical defaults for reasoning-capable model families."""
    normalized = model.strip().lower()
    if normalized.startswith("gpt-5") or normalized.startswith("o"):
        return "low"
    return None


def _resolve_api_type(value: str | None, api_url: str) -> str:
    if value is not None:
        normalized = value.strip().lower()
        if normalized in {"chat", "chat_completions", "completions"}:
            return "chat"
        if normalized == "responses":
            return "responses"
    return "chat" if api_url.rstrip("/").endswith("/chat/completions") else "responses"


def _default_prepare_shell() -> str:
    shell_path = os.getenv("SHELL", "")
    return "zsh" if shell_path.endswith("zsh") else "bash"


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
