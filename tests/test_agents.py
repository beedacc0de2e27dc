"""Tests for the coder and reviewer agents with a mocked chat client."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from openai import OpenAIError

from ai_pipeline.agents.client import LLMClient, LLMResponse
from ai_pipeline.agents.coder import CoderAgent
from ai_pipeline.agents.prompts import build_coder_prompt, build_reviewer_prompt
from ai_pipeline.agents.reviewer import ReviewerAgent
from ai_pipeline.exceptions import AgentResponseError, LLMConnectionError

CODER_REPLY = json.dumps(
    {
        "thinking": "Add the route",
        "files": [{"path": "server.py", "action": "update", "content": "app = 1\n"}],
        "commitMessage": "Add health route",
    }
)
REVIEW_REPLY = json.dumps({"decision": "approve", "issues": [], "summary": "Looks fine"})


def response(content: str, tokens: int = 100, finish_reason: str = "stop") -> LLMResponse:
    return LLMResponse(
        content=content,
        model="test/model",
        usage={"total_tokens": tokens},
        finish_reason=finish_reason,
    )


@pytest.fixture
def client():
    mock = MagicMock(spec=LLMClient)
    mock.chat = AsyncMock()
    return mock


class TestPrompts:
    """Tests for prompt assembly."""

    def test_coder_prompt_without_feedback(self):
        prompt = build_coder_prompt("CONTEXT", "Add a route")
        assert "CONTEXT" in prompt
        assert "Add a route" in prompt
        assert "Previous Attempt" not in prompt

    def test_coder_prompt_with_feedback(self):
        prompt = build_coder_prompt("CONTEXT", "Add a route", "- [major] a.py: broken")
        assert "Previous Attempt" in prompt
        assert "- [major] a.py: broken" in prompt

    def test_reviewer_prompt_is_diff_only(self):
        prompt = build_reviewer_prompt("+new line")
        assert "+new line" in prompt


class TestCoderAgent:
    """Tests for CoderAgent."""

    @pytest.mark.asyncio
    async def test_generate(self, client):
        client.chat.return_value = response(CODER_REPLY, tokens=250)
        result = await CoderAgent(client).generate("ctx", "Add a health route")

        assert result.output.file_paths == ["server.py"]
        assert result.output.commit_message == "Add health route"
        assert result.tokens_used == 250
        assert result.duration_ms >= 0
        assert client.chat.call_args.kwargs["agent"] == "coder"

    @pytest.mark.asyncio
    async def test_feedback_reaches_prompt(self, client):
        client.chat.return_value = response(CODER_REPLY)
        await CoderAgent(client).generate("ctx", "task", feedback="Review summary: no")
        user_prompt = client.chat.call_args.args[1]
        assert "Review summary: no" in user_prompt

    @pytest.mark.asyncio
    async def test_reasks_after_unparseable_reply(self, client):
        """A garbled reply is asked again and tokens are summed."""
        client.chat.side_effect = [response("sorry, no json", 40), response(CODER_REPLY, 60)]
        result = await CoderAgent(client).generate("ctx", "task")
        assert client.chat.call_count == 2
        assert result.tokens_used == 100

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, client):
        client.chat.return_value = response("still not json")
        with pytest.raises(AgentResponseError):
            await CoderAgent(client, max_retries=2).generate("ctx", "task")
        assert client.chat.call_count == 2

    @pytest.mark.asyncio
    async def test_truncated_reply_is_not_retried(self, client):
        client.chat.return_value = response('{"files": [', finish_reason="length")
        with pytest.raises(AgentResponseError) as exc_info:
            await CoderAgent(client).generate("ctx", "task")
        assert "truncated" in str(exc_info.value)
        assert client.chat.call_count == 1

    @pytest.mark.asyncio
    async def test_structurally_invalid_output(self, client):
        client.chat.return_value = response(json.dumps({"files": "nope", "commitMessage": "x"}))
        with pytest.raises(AgentResponseError):
            await CoderAgent(client).generate("ctx", "task")


class TestReviewerAgent:
    """Tests for ReviewerAgent."""

    @pytest.mark.asyncio
    async def test_review(self, client):
        client.chat.return_value = response(REVIEW_REPLY, tokens=80)
        result = await ReviewerAgent(client).review("diff --git a/x b/x")
        assert result.output.approved
        assert result.tokens_used == 80
        assert "diff --git a/x b/x" in client.chat.call_args.args[1]

    @pytest.mark.asyncio
    async def test_invalid_decision(self, client):
        client.chat.return_value = response(json.dumps({"decision": "maybe"}))
        with pytest.raises(AgentResponseError):
            await ReviewerAgent(client).review("diff")


class TestLLMClient:
    """Tests for the chat client wrapper."""

    @pytest.mark.asyncio
    async def test_chat_maps_response(self, isolated_logs):
        completion = SimpleNamespace(
            model="test/model",
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            choices=[
                SimpleNamespace(message=SimpleNamespace(content="{}"), finish_reason="stop")
            ],
        )
        fake = MagicMock()
        fake.chat.completions.create = AsyncMock(return_value=completion)

        client = LLMClient(api_key="k", model="test/model")
        with patch.object(client, "_get_client", AsyncMock(return_value=fake)):
            result = await client.chat("system", "user", agent="coder")

        assert result.content == "{}"
        assert result.total_tokens == 15
        assert not result.truncated
        assert client.get_usage_stats()["total_tokens"] == 15

        lines = (isolated_logs / "agents.jsonl").read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["agent"] == "coder"
        assert entry["total_tokens"] == 15

    @pytest.mark.asyncio
    async def test_api_error_becomes_connection_error(self):
        fake = MagicMock()
        fake.chat.completions.create = AsyncMock(side_effect=OpenAIError("network down"))

        client = LLMClient(api_key="k")
        with patch.object(client, "_get_client", AsyncMock(return_value=fake)):
            with pytest.raises(LLMConnectionError):
                await client.chat("system", "user")

    @pytest.mark.asyncio
    async def test_empty_choices(self):
        completion = SimpleNamespace(model="m", usage=None, choices=[])
        fake = MagicMock()
        fake.chat.completions.create = AsyncMock(return_value=completion)

        client = LLMClient(api_key="k")
        with patch.object(client, "_get_client", AsyncMock(return_value=fake)):
            with pytest.raises(AgentResponseError):
                await client.chat("system", "user")
