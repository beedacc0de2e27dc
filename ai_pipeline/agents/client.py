"""
LLM Client - OpenAI-compatible chat completion wrapper

Provides an async interface to any OpenAI-compatible endpoint. The default
base URL is OpenRouter, so any model it serves can act as coder or reviewer.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from openai import AsyncOpenAI, OpenAIError, RateLimitError

from ai_pipeline.config import DEFAULT_BASE_URL, DEFAULT_MODEL
from ai_pipeline.exceptions import AgentResponseError, LLMConnectionError, LLMRateLimitError
from ai_pipeline.logging import AgentCallEntry, agent_logger, now_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 16384
DEFAULT_TIMEOUT = 300.0  # seconds; whole-file generations are slow


@dataclass
class LLMResponse:
    """Response from a chat completion call."""

    content: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)

    @property
    def truncated(self) -> bool:
        """True when the reply stopped because it hit the token limit."""
        return self.finish_reason == "length"


class LLMClient:
    """
    Client for an OpenAI-compatible chat completion API.

    Tracks token usage across calls and writes one structured log line
    per request.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.2,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize client.

        Args:
            api_key: API key for the endpoint
            model: Model identifier
            base_url: OpenAI-compatible API root
            temperature: Sampling temperature
            max_tokens: Maximum tokens in a reply
            timeout: Per-request timeout in seconds
        """
        self.model = model
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        self._api_key = api_key
        self._headers = {"X-Title": "AI Pipeline"}

        # Created lazily inside the running loop; see _get_client
        self._client: AsyncOpenAI | None = None
        self._client_loop: asyncio.AbstractEventLoop | None = None

        self.total_tokens_used = 0
        self.request_count = 0

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create the AsyncOpenAI client, recreating it if the event loop changed."""
        current_loop = asyncio.get_running_loop()

        # A client bound to a dead loop cannot be closed; just drop it
        if self._client is not None and self._client_loop is not current_loop:
            self._client = None
            self._client_loop = None

        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self.base_url,
                default_headers=self._headers,
                timeout=self.timeout,
            )
            self._client_loop = current_loop

        return self._client

    async def close(self) -> None:
        """Close the client and release resources."""
        if self._client is not None:
            try:
                await self._client.close()
            except OpenAIError as e:
                logger.debug(f"Ignoring error while closing client: {e}")
            self._client = None
            self._client_loop = None

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        agent: str = "agent",
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Send a single-turn chat request.

        Args:
            system_prompt: System prompt
            user_prompt: User message
            agent: Caller name for logging ("coder", "reviewer")
            max_tokens: Override default max tokens

        Returns:
            LLMResponse with content and metadata

        Raises:
            LLMConnectionError: If the request fails
            LLMRateLimitError: If rate limited
            AgentResponseError: If the response has no choices
        """
        start_time = time.monotonic()
        limit = max_tokens or self.max_tokens

        log_entry = AgentCallEntry(
            timestamp=now_iso(),
            request_id=str(uuid.uuid4()),
            agent=agent,
            model=self.model,
            system_prompt=system_prompt[:2000],
            user_prompt=user_prompt[:5000],
            max_tokens=limit,
        )

        try:
            client = await self._get_client()
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                max_tokens=limit,
            )

            self.request_count += 1
            usage = {
                "prompt_tokens": response.usage.prompt_tokens if response.usage else 0,
                "completion_tokens": response.usage.completion_tokens if response.usage else 0,
                "total_tokens": response.usage.total_tokens if response.usage else 0,
            }
            self.total_tokens_used += usage["total_tokens"]

            if not response.choices:
                raise AgentResponseError("Empty response from model", {"model": self.model})

            choice = response.choices[0]
            content = (choice.message.content if choice.message else None) or ""
            finish_reason = choice.finish_reason or ""

            log_entry.response_content = content[:10000]
            log_entry.model = response.model or self.model
            log_entry.finish_reason = finish_reason
            log_entry.prompt_tokens = usage["prompt_tokens"]
            log_entry.completion_tokens = usage["completion_tokens"]
            log_entry.total_tokens = usage["total_tokens"]
            log_entry.latency_ms = int((time.monotonic() - start_time) * 1000)
            agent_logger.info(log_entry.to_json())

            logger.debug(
                f"[{agent}] {usage['prompt_tokens']} in / {usage['completion_tokens']} out "
                f"({finish_reason or 'no finish reason'})"
            )

            return LLMResponse(
                content=content,
                model=response.model or self.model,
                usage=usage,
                finish_reason=finish_reason,
            )

        except RateLimitError as e:
            self._log_failure(log_entry, e, start_time)
            raise LLMRateLimitError(f"Rate limited: {e}")
        except OpenAIError as e:
            self._log_failure(log_entry, e, start_time)
            error_msg = str(e)
            if "authentication" in error_msg.lower() or "api_key" in error_msg.lower():
                raise LLMConnectionError(f"Authentication failed: {error_msg}")
            raise LLMConnectionError(f"API error: {error_msg}")
        except AgentResponseError as e:
            self._log_failure(log_entry, e, start_time)
            raise

    def _log_failure(self, entry: AgentCallEntry, error: Exception, start_time: float) -> None:
        entry.error = str(error)[:500]
        entry.error_type = type(error).__name__
        entry.latency_ms = int((time.monotonic() - start_time) * 1000)
        agent_logger.error(entry.to_json())

    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics."""
        return {
            "model": self.model,
            "request_count": self.request_count,
            "total_tokens": self.total_tokens_used,
        }
