"""
Logging Configuration for AI Pipeline.

Defines paths, rotation settings and log levels.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class LogConfig:
    """Configuration for the structured logging system."""

    # Paths
    log_dir: Path = field(default_factory=lambda: Path.home() / ".ai-pipeline" / "logs")

    # File settings
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Log levels: DEBUG, INFO, WARNING, ERROR
    agent_level: str = "INFO"
    pipeline_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Load config from environment variables with defaults."""
        config = cls()

        if level := os.environ.get("AI_PIPELINE_LOG_LEVEL"):
            config.agent_level = level
            config.pipeline_level = level

        if log_dir := os.environ.get("AI_PIPELINE_LOG_DIR"):
            config.log_dir = Path(log_dir)

        # Max file size in MB; ignored when not a number
        if max_size := os.environ.get("AI_PIPELINE_LOG_MAX_SIZE_MB"):
            if max_size.isdigit():
                config.max_file_size_bytes = int(max_size) * 1024 * 1024

        return config

    def ensure_log_dir(self) -> None:
        """Create log directory if it doesn't exist."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def agent_log_path(self) -> Path:
        """Path to the model call log."""
        return self.log_dir / "agents.jsonl"

    @property
    def pipeline_log_path(self) -> Path:
        """Path to the pipeline lifecycle log."""
        return self.log_dir / "pipeline.jsonl"


_config: LogConfig | None = None


def get_config() -> LogConfig:
    """Get the global log config, initializing from env if needed."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
        _config.ensure_log_dir()
    return _config


def set_config(config: LogConfig) -> None:
    """Set a custom log config (useful for testing).

    Loggers already created keep writing to their old files until
    reset_loggers() is called.
    """
    global _config
    _config = config
    _config.ensure_log_dir()
