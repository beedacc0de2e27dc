"""
AI Pipeline Logging System.

Provides structured JSONL logging for:
- Model calls (prompts, responses, tokens, timing)
- Pipeline lifecycle events (transitions, attempts, terminal outcomes)

Usage:
    from ai_pipeline.logging import pipeline_logger, PipelineLogEntry, now_iso

    entry = PipelineLogEntry(timestamp=now_iso(), task_id=7, event_type="start")
    pipeline_logger.info(entry.to_json())

Logs are written to ~/.ai-pipeline/logs/:
    - agents.jsonl: model calls
    - pipeline.jsonl: pipeline lifecycle events
"""

import logging
import threading

from .config import LogConfig, get_config, set_config
from .entries import AgentCallEntry, PipelineLogEntry, now_iso
from .handlers import create_jsonl_logger

# Lazy-initialized loggers to avoid creating files before needed
_loggers: dict[str, logging.Logger] = {}
_init_lock = threading.Lock()


def _ensure_loggers() -> None:
    """Initialize loggers on first use."""
    if _loggers:
        return

    with _init_lock:
        # Double-check after acquiring lock
        if _loggers:
            return

        config = get_config()

        _loggers["agent"] = create_jsonl_logger(
            "ai_pipeline.structured.agent",
            config.agent_log_path,
            level=config.agent_level,
            max_bytes=config.max_file_size_bytes,
            backup_count=config.backup_count,
        )
        _loggers["pipeline"] = create_jsonl_logger(
            "ai_pipeline.structured.pipeline",
            config.pipeline_log_path,
            level=config.pipeline_level,
            max_bytes=config.max_file_size_bytes,
            backup_count=config.backup_count,
        )


def reset_loggers() -> None:
    """Drop initialized loggers so the next write picks up the current config."""
    with _init_lock:
        for logger in _loggers.values():
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        _loggers.clear()


class _LazyLogger:
    """Lazy wrapper that initializes the actual logger on first use."""

    def __init__(self, name: str):
        self._name = name

    def _get_logger(self) -> logging.Logger:
        _ensure_loggers()
        return _loggers[self._name]

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._get_logger().debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._get_logger().info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._get_logger().warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._get_logger().error(msg, *args, **kwargs)


# Public logger instances
agent_logger = _LazyLogger("agent")
pipeline_logger = _LazyLogger("pipeline")


__all__ = [
    # Loggers
    "agent_logger",
    "pipeline_logger",
    "reset_loggers",
    # Log entries
    "AgentCallEntry",
    "PipelineLogEntry",
    "now_iso",
    # Config
    "LogConfig",
    "get_config",
    "set_config",
]
