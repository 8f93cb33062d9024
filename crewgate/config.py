"""
Configuration: crew runtime settings and model presets.

Loading priority:
  1. Project dir .crew.conf.yml
  2. Global ~/.crewgate/config.yml
  3. Built-in defaults

.env files (global dir, then project dir) are loaded first and never
override variables already set in the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .logger import get_logger

_log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".crewgate"
CONFIG_FILE = CONFIG_DIR / "config.yml"
PROJECT_CONFIG_NAME = ".crew.conf.yml"

TIMEOUT_POLICIES = {"reject", "approve"}
MAX_CONCURRENCY_LIMIT = 64


# ── Validation helpers: (valid, coerced_value, error_msg) ──


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple[bool, int, str]:
    """Validate integer within range."""
    if isinstance(value, bool):
        return False, 0, "Must be an integer"
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return False, 0, "Must be an integer"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val} and {max_val}"
    return True, parsed, ""


def _validate_float_range(value: Any, min_val: float, max_val: float) -> tuple[bool, float, str]:
    if isinstance(value, bool):
        return False, 0.0, "Must be a number"
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return False, 0.0, "Must be a number"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val:g} and {max_val:g}"
    return True, parsed, ""


def _validate_enum(value: Any, valid_values: set) -> tuple[bool, str, str]:
    """Validate value is in allowed set."""
    val_str = str(value).strip().lower()
    if val_str not in valid_values:
        return False, "", f"Must be one of: {', '.join(sorted(valid_values))}"
    return True, val_str, ""


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    """Validate boolean value."""
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, str):
        val_lower = value.strip().lower()
        if val_lower in ("1", "true", "yes", "on"):
            return True, True, ""
        if val_lower in ("0", "false", "no", "off"):
            return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


def _checked(key: str, result: tuple[bool, Any, str]) -> Any:
    valid, value, message = result
    if not valid:
        raise ConfigError(f"Invalid value for '{key}': {message}")
    return value


@dataclass
class ModelPreset:
    """Connection settings for one LLM; handed to the adapter as-is."""

    name: str
    provider: str
    model: str
    api_base: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 2000
    timeout: float = 120.0

    def resolve_api_key(self) -> Optional[str]:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        env_map = {
            "openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY",
            "deepseek": "DEEPSEEK_API_KEY", "gemini": "GEMINI_API_KEY",
            "azure": "AZURE_API_KEY",
        }
        env_var = env_map.get(self.provider)
        return os.environ.get(env_var) if env_var else None

    def get_llm_kwargs(self) -> dict:
        """Return kwargs dict for LLMAdapter constructor; the key is resolved here."""
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "api_base": self.api_base,
            "api_key": self.resolve_api_key(),
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ModelPreset":
        if not isinstance(data, dict):
            raise ConfigError(f"Model preset '{name}' must be a mapping")
        model = data.get("model")
        if not model:
            raise ConfigError(f"Model preset '{name}' is missing 'model'")
        return cls(
            name=name,
            provider=str(data.get("provider", "openai")),
            model=str(model),
            api_base=data.get("api-base"),
            api_key=data.get("api-key"),
            api_key_env=data.get("api-key-env"),
            temperature=_checked(
                f"models.{name}.temperature",
                _validate_float_range(data.get("temperature", 0.1), 0.0, 2.0),
            ),
            max_tokens=_checked(
                f"models.{name}.max-tokens",
                _validate_int_range(data.get("max-tokens", 2000), 1, 1_000_000),
            ),
            timeout=_checked(
                f"models.{name}.timeout",
                _validate_float_range(data.get("timeout", 120.0), 1.0, 3600.0),
            ),
        )


def default_presets() -> Dict[str, ModelPreset]:
    return {
        "local": ModelPreset(
            name="local", provider="local", model="openai/model",
            api_base="http://localhost:8080/v1", api_key="not-needed",
        ),
        "openai": ModelPreset(
            name="openai", provider="openai", model="openai/gpt-4o-mini",
            api_key_env="OPENAI_API_KEY",
        ),
        "deepseek-chat": ModelPreset(
            name="deepseek-chat", provider="deepseek",
            model="deepseek/deepseek-chat",
            api_key_env="DEEPSEEK_API_KEY",
        ),
    }


@dataclass
class CrewConfig:
    """Runtime settings for crew execution.

    Parsed from ``.crew.conf.yml`` and overridable by a crew file's
    ``crew:`` section and by CLI flags.
    """

    max_concurrency: int = 4
    approval_timeout: float = 300.0
    on_timeout: str = "reject"
    auto_approve: bool = False
    verbose: bool = False
    use_unicode: bool = True
    memory: bool = False
    retry_backoff: float = 1.0                  # seconds; the n-th retry waits retry_backoff * 2**n
    log_file: Union[str, bool, None] = None     # None = default path, False = disabled
    models: Dict[str, ModelPreset] = field(default_factory=default_presets)
    default_model: str = "local"
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: Union[str, Path] = ".") -> "CrewConfig":
        project_path = Path(project_dir).resolve()

        for env_path in [CONFIG_DIR / ".env", project_path / ".env"]:
            if env_path.exists():
                load_dotenv(env_path, override=False)

        for candidate in [project_path / PROJECT_CONFIG_NAME, CONFIG_FILE]:
            if candidate.exists():
                config = cls.from_dict(cls._read_yaml(candidate))
                config._config_source = str(candidate)
                _log.debug("Loaded config from %s", candidate)
                return config

        _log.debug("No config file found; using defaults")
        return cls()

    @staticmethod
    def _read_yaml(filepath: Path) -> Dict[str, Any]:
        try:
            with open(filepath, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {filepath}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {filepath} must contain a mapping at the top level")
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CrewConfig":
        """Parse hyphenated YAML keys; unknown keys are ignored."""
        config = cls()
        if not data:
            return config
        return config.merged(data)

    def merged(self, data: Dict[str, Any]) -> "CrewConfig":
        """Return a copy with the settings present in ``data`` applied."""
        if not isinstance(data, dict):
            raise ConfigError("Crew settings must be a mapping")

        values: Dict[str, Any] = {
            "max_concurrency": self.max_concurrency,
            "approval_timeout": self.approval_timeout,
            "on_timeout": self.on_timeout,
            "auto_approve": self.auto_approve,
            "verbose": self.verbose,
            "use_unicode": self.use_unicode,
            "memory": self.memory,
            "retry_backoff": self.retry_backoff,
            "log_file": self.log_file,
            "models": dict(self.models),
            "default_model": self.default_model,
        }
        if "max-concurrency" in data:
            values["max_concurrency"] = _checked("max-concurrency", _validate_int_range(
                data["max-concurrency"], 1, MAX_CONCURRENCY_LIMIT))
        if "approval-timeout" in data:
            values["approval_timeout"] = _checked("approval-timeout", _validate_float_range(
                data["approval-timeout"], 0.0, 86400.0))
        if "on-timeout" in data:
            values["on_timeout"] = _checked("on-timeout", _validate_enum(
                data["on-timeout"], TIMEOUT_POLICIES))
        if "retry-backoff" in data:
            values["retry_backoff"] = _checked("retry-backoff", _validate_float_range(
                data["retry-backoff"], 0.0, 60.0))
        for key in ("auto-approve", "verbose", "use-unicode", "memory"):
            if key in data:
                values[key.replace("-", "_")] = _checked(key, _validate_bool(data[key]))
        if "log-file" in data:
            raw = data["log-file"]
            values["log_file"] = False if raw is False else (str(raw) if raw else None)

        raw_models = data.get("models") or {}
        if not isinstance(raw_models, dict):
            raise ConfigError("'models' must be a mapping of preset name to settings")
        for name, preset in raw_models.items():
            values["models"][str(name)] = ModelPreset.from_dict(str(name), preset)

        if "default-model" in data:
            values["default_model"] = str(data["default-model"])
        if values["default_model"] not in values["models"]:
            raise ConfigError(
                f"default-model '{values['default_model']}' is not a known preset "
                f"(available: {', '.join(sorted(values['models']))})"
            )

        config = CrewConfig(**values)
        config._config_source = self._config_source
        return config

    def get_preset(self, name: Optional[str] = None) -> ModelPreset:
        key = name or self.default_model
        preset = self.models.get(key)
        if preset is None:
            raise ConfigError(
                f"Unknown model preset '{key}' (available: {', '.join(sorted(self.models))})"
            )
        return preset

    def summary(self) -> dict:
        return {
            "max-concurrency": self.max_concurrency,
            "approval-timeout": self.approval_timeout,
            "on-timeout": self.on_timeout,
            "auto-approve": self.auto_approve,
            "verbose": self.verbose,
            "use-unicode": self.use_unicode,
            "memory": self.memory,
            "retry-backoff": self.retry_backoff,
            "default-model": self.default_model,
            "models": sorted(self.models),
            "source": self._config_source or "defaults",
        }
