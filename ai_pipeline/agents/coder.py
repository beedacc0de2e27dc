"""
Coder agent - proposes file changes for a task.
"""

import logging
import time

from ai_pipeline.agents.base import BaseAgent
from ai_pipeline.agents.parser import parse_coder_output
from ai_pipeline.agents.prompts import CODER_SYSTEM_PROMPT, build_coder_prompt
from ai_pipeline.agents.types import AgentCallResult, CoderOutput

logger = logging.getLogger(__name__)


class CoderAgent(BaseAgent):
    """Content generator backed by a chat model."""

    role = "coder"

    async def generate(
        self,
        context: str,
        description: str,
        feedback: str | None = None,
    ) -> AgentCallResult[CoderOutput]:
        """
        Generate file changes for a task.

        Args:
            context: Repository context text
            description: What the task asks for
            feedback: Findings from the previous attempt, if any

        Returns:
            Validated change set with token and timing info
        """
        start = time.monotonic()
        data, tokens_used = await self.call_with_retry(
            CODER_SYSTEM_PROMPT, build_coder_prompt(context, description, feedback)
        )
        output = parse_coder_output(data)
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.debug(f"Coder proposed {len(output.files)} file change(s)")
        return AgentCallResult(output=output, tokens_used=tokens_used, duration_ms=duration_ms)
