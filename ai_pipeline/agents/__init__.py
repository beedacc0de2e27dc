"""Model-backed agents: the coder proposes changes, the reviewer judges diffs."""

from ai_pipeline.agents.client import LLMClient, LLMResponse
from ai_pipeline.agents.coder import CoderAgent
from ai_pipeline.agents.reviewer import ReviewerAgent
from ai_pipeline.agents.types import (
    AgentCallResult,
    CoderOutput,
    ReviewDecision,
    ReviewIssue,
    ReviewOutput,
    Severity,
)

__all__ = [
    "LLMClient",
    "LLMResponse",
    "CoderAgent",
    "ReviewerAgent",
    "AgentCallResult",
    "CoderOutput",
    "ReviewDecision",
    "ReviewIssue",
    "ReviewOutput",
    "Severity",
]
