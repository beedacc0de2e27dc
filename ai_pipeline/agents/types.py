"""
Agent result types.

Structured outputs of the content generator (coder) and reviewer after
their JSON replies have been parsed and validated.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from ai_pipeline.orchestrator.workspace import ChangeAction, FileChange

T = TypeVar("T")


class Severity(str, Enum):
    """How serious a review finding is."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    NIT = "nit"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class CoderOutput:
    """Proposed change set from the content generator."""

    files: list[FileChange]
    commit_message: str
    thinking: str = ""

    @property
    def file_paths(self) -> list[str]:
        return [change.path for change in self.files]


@dataclass
class ReviewIssue:
    """One finding from the reviewer."""

    severity: Severity
    file: str
    message: str
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "file": self.file,
            "line": self.line,
            "message": self.message,
        }


@dataclass
class ReviewOutput:
    """The reviewer's verdict on a diff."""

    decision: ReviewDecision
    issues: list[ReviewIssue] = field(default_factory=list)
    summary: str = ""

    @property
    def approved(self) -> bool:
        return self.decision == ReviewDecision.APPROVE

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)


@dataclass
class AgentCallResult(Generic[T]):
    """Parsed output plus what the call cost."""

    output: T
    tokens_used: int = 0
    duration_ms: int = 0


__all__ = [
    "AgentCallResult",
    "ChangeAction",
    "CoderOutput",
    "FileChange",
    "ReviewDecision",
    "ReviewIssue",
    "ReviewOutput",
    "Severity",
]
