"""
Reviewer agent - judges a diff without knowing the task.
"""

import logging
import time

from ai_pipeline.agents.base import BaseAgent
from ai_pipeline.agents.parser import parse_review_output
from ai_pipeline.agents.prompts import REVIEWER_SYSTEM_PROMPT, build_reviewer_prompt
from ai_pipeline.agents.types import AgentCallResult, ReviewOutput, Severity

logger = logging.getLogger(__name__)


class ReviewerAgent(BaseAgent):
    """Code reviewer backed by a chat model."""

    role = "reviewer"

    async def review(self, diff: str) -> AgentCallResult[ReviewOutput]:
        """
        Review a diff.

        Args:
            diff: Text diff of the attempt branch against its base

        Returns:
            Approve/reject verdict with findings
        """
        start = time.monotonic()
        data, tokens_used = await self.call_with_retry(
            REVIEWER_SYSTEM_PROMPT, build_reviewer_prompt(diff)
        )
        output = parse_review_output(data)
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.debug(
            f"Reviewer decision: {output.decision.value} "
            f"({len(output.issues)} issues, {output.count(Severity.CRITICAL)} critical)"
        )
        return AgentCallResult(output=output, tokens_used=tokens_used, duration_ms=duration_ms)
