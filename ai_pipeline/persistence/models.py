"""
AI Pipeline Persistence Models

Dataclasses that map to SQLite tables. Rows are read with column order
matching schema.sql.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ai_pipeline.state import TaskStatus

TITLE_MAX_CHARS = 100
SUMMARY_MAX_CHARS = 1000
TRUNCATION_MARKER = "... [truncated]"


class AgentRole(str, Enum):
    """Which participant produced an agent log entry."""

    CODER = "coder"
    REVIEWER = "reviewer"
    TESTER = "tester"
    PIPELINE = "pipeline"


def now_iso() -> str:
    """Get current datetime as ISO string."""
    return datetime.now().isoformat()


def make_title(description: str) -> str:
    """Derive a task title from the first line-ish of its description."""
    return description.strip()[:TITLE_MAX_CHARS]


def truncate_summary(text: str | None, limit: int = SUMMARY_MAX_CHARS) -> str:
    """Bound a log summary, marking the cut when one is made."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[: limit - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


@dataclass
class Task:
    """
    One requested change driven through the pipeline.

    Maps to: tasks table
    """

    id: int
    title: str
    description: str
    repo_path: str
    status: TaskStatus = TaskStatus.PENDING
    branch_name: str | None = None
    attempt: int = 0
    max_attempts: int = 3
    feedback: str | None = None
    error_message: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Create from database row."""
        return cls(
            id=row[0],
            title=row[1] or "",
            description=row[2] or "",
            status=TaskStatus(row[3]) if row[3] else TaskStatus.PENDING,
            repo_path=row[4] or "",
            branch_name=row[5],
            attempt=row[6] or 0,
            max_attempts=row[7] or 0,
            feedback=row[8],
            error_message=row[9],
            created_at=row[10],
            updated_at=row[11],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "repo_path": self.repo_path,
            "branch_name": self.branch_name,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "feedback": self.feedback,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TaskLog:
    """
    An append-only record of one agent invocation or pipeline step.

    Maps to: task_logs table
    """

    id: int
    task_id: int
    agent: AgentRole
    action: str
    input_summary: str = ""
    output_summary: str = ""
    tokens_used: int = 0
    duration_ms: int = 0
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_row(cls, row: tuple) -> TaskLog:
        """Create from database row."""
        return cls(
            id=row[0],
            task_id=row[1],
            agent=AgentRole(row[2]),
            action=row[3],
            input_summary=row[4] or "",
            output_summary=row[5] or "",
            tokens_used=row[6] or 0,
            duration_ms=row[7] or 0,
            created_at=row[8],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "agent": self.agent.value,
            "action": self.action,
            "input_summary": self.input_summary,
            "output_summary": self.output_summary,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at,
        }
