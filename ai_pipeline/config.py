"""
AI Pipeline - Configuration Management

Settings are layered: built-in defaults, then the optional JSON file at
~/.config/ai-pipeline/config.json, then environment variables, then CLI
overrides applied with PipelineConfig.with_overrides().
"""

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from ai_pipeline.exceptions import ConfigError


# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "ai-pipeline"
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = Path.home() / ".ai-pipeline" / "pipeline.db"

# OpenRouter exposes an OpenAI-compatible API
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_VERIFY_TIMEOUT = 120.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class PipelineConfig:
    """Main configuration container for the pipeline."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    auto_merge: bool = False
    db_path: Path = DEFAULT_DB_PATH
    verify_timeout: float = DEFAULT_VERIFY_TIMEOUT
    lint_command: str | None = None
    test_command: str | None = None

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path).expanduser()
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: If a setting is out of range
        """
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ConfigError(
                "max_attempts must be an integer",
                {"max_attempts": self.max_attempts},
            )
        if self.max_attempts < 1:
            raise ConfigError(
                "max_attempts must be a positive integer",
                {"max_attempts": self.max_attempts},
            )
        if self.verify_timeout <= 0:
            raise ConfigError(
                "verify_timeout must be positive",
                {"verify_timeout": self.verify_timeout},
            )

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError("Unknown configuration keys", {"keys": sorted(unknown)})
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting the API key."""
        return {
            "base_url": self.base_url,
            "model": self.model,
            "max_attempts": self.max_attempts,
            "auto_merge": self.auto_merge,
            "db_path": str(self.db_path),
            "verify_timeout": self.verify_timeout,
            "lint_command": self.lint_command,
            "test_command": self.test_command,
        }


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean", {"value": value})


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer", {"value": value})


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number", {"value": value})


def _load_file(path: Path) -> dict[str, Any]:
    """Read the JSON config file, returning {} if it does not exist."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}", {"error": str(e)})

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a JSON object in {path}")

    known = {f.name for f in fields(PipelineConfig)}
    return {key: value for key, value in data.items() if key in known and key != "api_key"}


def _load_env(environ: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}

    api_key = environ.get("AI_PIPELINE_API_KEY") or environ.get("OPENROUTER_API_KEY")
    if api_key:
        values["api_key"] = api_key
    if base_url := environ.get("AI_PIPELINE_BASE_URL"):
        values["base_url"] = base_url
    if model := environ.get("AI_PIPELINE_MODEL"):
        values["model"] = model
    if max_attempts := environ.get("AI_PIPELINE_MAX_ATTEMPTS"):
        values["max_attempts"] = _parse_int("AI_PIPELINE_MAX_ATTEMPTS", max_attempts)
    if (auto_merge := environ.get("AI_PIPELINE_AUTO_MERGE")) is not None:
        values["auto_merge"] = _parse_bool("AI_PIPELINE_AUTO_MERGE", auto_merge)
    if db_path := environ.get("AI_PIPELINE_DB_PATH"):
        values["db_path"] = Path(db_path)
    if timeout := environ.get("AI_PIPELINE_VERIFY_TIMEOUT"):
        values["verify_timeout"] = _parse_float("AI_PIPELINE_VERIFY_TIMEOUT", timeout)
    if lint_command := environ.get("AI_PIPELINE_LINT_COMMAND"):
        values["lint_command"] = lint_command
    if test_command := environ.get("AI_PIPELINE_TEST_COMMAND"):
        values["test_command"] = test_command

    return values


def load_config(
    config_file: Path | None = None,
    environ: dict[str, str] | None = None,
) -> PipelineConfig:
    """
    Load configuration from file and environment.

    Args:
        config_file: JSON file to read (default: ~/.config/ai-pipeline/config.json)
        environ: Environment mapping (default: os.environ)

    Returns:
        PipelineConfig with all settings loaded

    Raises:
        ConfigError: If configuration is invalid
    """
    values = _load_file(config_file or CONFIG_FILE)
    values.update(_load_env(dict(os.environ) if environ is None else environ))
    try:
        return PipelineConfig(**values)
    except TypeError as e:
        raise ConfigError("Invalid configuration value", {"error": str(e)})


def get_api_key(config: PipelineConfig) -> str:
    """
    Get the model API key.

    Returns:
        API key string

    Raises:
        ConfigError: If key is not set
    """
    if not config.api_key:
        raise ConfigError(
            "No API key configured",
            {"hint": "Export AI_PIPELINE_API_KEY (or OPENROUTER_API_KEY)"},
        )
    return config.api_key
