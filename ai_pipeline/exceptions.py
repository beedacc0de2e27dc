"""
AI Pipeline - Exception Hierarchy

All pipeline-specific exceptions inherit from PipelineError.
Review rejections and failed verification are normal outcomes of an
attempt and are NOT modeled as exceptions.
"""

from typing import Any


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration Errors
class ConfigError(PipelineError):
    """Raised when configuration is invalid or missing."""

    pass


# Agent (LLM) Errors
class AgentError(PipelineError):
    """Base exception for content generator and reviewer failures."""

    pass


class LLMConnectionError(AgentError):
    """Raised when the chat completion endpoint cannot be reached."""

    pass


class LLMRateLimitError(AgentError):
    """Raised when the chat completion endpoint rate limits us."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class AgentResponseError(AgentError):
    """Raised when an agent reply is structurally invalid.

    Covers unparseable JSON, missing fields, an empty change set and a
    review decision other than approve/reject.
    """

    pass


# Workspace (git) Errors
class WorkspaceError(PipelineError):
    """Base exception for working tree and version control failures."""

    pass


class DirtyWorkspaceError(WorkspaceError):
    """Raised when the working tree has uncommitted changes before a run."""

    def __init__(self, message: str, changes: list[str] | None = None):
        super().__init__(message, {"changes": changes or []})
        self.changes = changes or []


class GitCommandError(WorkspaceError):
    """Raised when a git command exits non-zero."""

    def __init__(self, message: str, command: list[str], exit_code: int, stderr: str = ""):
        super().__init__(
            message,
            {"command": " ".join(command), "exit_code": exit_code, "stderr": stderr[:500]},
        )
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class EmptyChangeSetError(WorkspaceError):
    """Raised when applying the generated changes leaves nothing to commit."""

    pass


class MergeConflictError(WorkspaceError):
    """Raised when merging an attempt branch into the base branch fails."""

    def __init__(self, message: str, branch: str, base: str):
        super().__init__(message, {"branch": branch, "base": base})
        self.branch = branch
        self.base = base


# Task Errors
class TaskError(PipelineError):
    """Base exception for task lookup and lifecycle errors."""

    pass


class TaskNotFoundError(TaskError):
    """Raised when a task id does not exist."""

    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} not found", {"task_id": task_id})
        self.task_id = task_id


class InvalidTaskStateError(TaskError):
    """Raised when an operation is not allowed in the task's current status."""

    def __init__(self, message: str, task_id: int, status: str):
        super().__init__(message, {"task_id": task_id, "status": status})
        self.task_id = task_id
        self.status = status


# State Errors
class StateTransitionError(PipelineError):
    """Raised when an invalid status transition is attempted.

    Includes the current state and the attempted target state for debugging.
    """

    def __init__(self, message: str, from_state: str, to_state: str):
        super().__init__(message, {"from_state": from_state, "to_state": to_state})
        self.from_state = from_state
        self.to_state = to_state


# Persistence Errors
class PersistenceError(PipelineError):
    """Raised when the task store cannot be opened or written."""

    pass
