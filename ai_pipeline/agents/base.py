"""
Base agent - one model call with JSON reply and bounded re-asking.
"""

import logging
from typing import Any

from ai_pipeline.agents.client import LLMClient
from ai_pipeline.agents.parser import extract_json_from_response
from ai_pipeline.exceptions import AgentResponseError

logger = logging.getLogger(__name__)

MAX_PARSE_RETRIES = 2


class BaseAgent:
    """Shared call logic for the coder and reviewer."""

    role = "agent"

    def __init__(self, client: LLMClient, max_retries: int = MAX_PARSE_RETRIES):
        self.client = client
        self.max_retries = max_retries

    async def call_with_retry(self, system_prompt: str, user_prompt: str) -> tuple[dict[str, Any], int]:
        """
        Call the model and parse a JSON object from the reply.

        An unparseable reply is asked again, up to max_retries calls in
        total. A reply cut off by the token limit is not retried since
        asking again would be cut off the same way.

        Returns:
            (parsed JSON object, tokens used across all calls)

        Raises:
            AgentResponseError: If no parseable reply was obtained
        """
        total_tokens = 0

        for attempt in range(1, self.max_retries + 1):
            response = await self.client.chat(system_prompt, user_prompt, agent=self.role)
            total_tokens += response.total_tokens

            try:
                return extract_json_from_response(response.content), total_tokens
            except AgentResponseError as e:
                logger.debug(f"[{self.role}] raw reply: {response.content[:500]}")

                if response.truncated:
                    raise AgentResponseError(
                        f"{self.role} reply was truncated by the token limit",
                        {"tokens_used": total_tokens, **e.details},
                    ) from e

                if attempt < self.max_retries:
                    logger.warning(
                        f"[{self.role}] could not parse reply "
                        f"(attempt {attempt}/{self.max_retries}), asking again"
                    )
                    continue

                raise AgentResponseError(
                    f"{self.role} returned invalid JSON after {self.max_retries} attempts",
                    {"tokens_used": total_tokens, **e.details},
                ) from e

        raise AgentResponseError(f"{self.role} made no calls (max_retries={self.max_retries})")
