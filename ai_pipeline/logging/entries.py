"""
Log Entry Data Structures for AI Pipeline.

Defines structured log entries for model calls and pipeline lifecycle
events. These go to JSONL files; the per-task agent log lives in the
task store.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


@dataclass
class AgentCallEntry:
    """Log entry for one chat completion call."""

    # Identity
    timestamp: str  # ISO 8601
    request_id: str  # UUID for correlating request/response
    agent: str  # "coder", "reviewer"

    # Request
    model: str = ""
    system_prompt: str = ""
    user_prompt: str = ""
    max_tokens: int = 0

    # Response
    response_content: str = ""
    finish_reason: str = ""

    # Metrics
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0

    # Error (if any)
    error: str | None = None
    error_type: str | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentCallEntry":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class PipelineLogEntry:
    """Log entry for pipeline lifecycle events."""

    timestamp: str  # ISO 8601
    task_id: int
    event_type: str  # "start", "transition", "attempt", "complete", "exhausted", "error"

    from_state: str | None = None
    to_state: str | None = None
    attempt: int = 0
    branch_name: str | None = None
    repo_path: str = ""
    message: str = ""

    error: str | None = None
    error_type: str | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineLogEntry":
        """Create from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def now_iso() -> str:
    """Get current time as ISO 8601 string."""
    return datetime.now().isoformat()
