"""
Agent Response Parser

Extracts JSON from model replies and validates it into CoderOutput and
ReviewOutput.
"""

import json
import logging
import re
from typing import Any

from ai_pipeline.agents.types import (
    ChangeAction,
    CoderOutput,
    FileChange,
    ReviewDecision,
    ReviewIssue,
    ReviewOutput,
    Severity,
)
from ai_pipeline.exceptions import AgentResponseError

logger = logging.getLogger(__name__)

_OPENING_FENCE = re.compile(r"^```(?:json)?\s*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\s*$")
_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def strip_code_fences(response: str) -> str:
    """Remove a leading and trailing markdown fence independently.

    A reply cut off by the token limit may have an opening fence only.
    """
    cleaned = response.strip()
    if cleaned.startswith("```"):
        cleaned = _OPENING_FENCE.sub("", cleaned)
    if cleaned.endswith("```"):
        cleaned = _CLOSING_FENCE.sub("", cleaned)
    return cleaned.strip()


def extract_json_from_response(response: str) -> dict[str, Any]:
    """
    Extract a JSON object from a model reply.

    Tries the whole reply (minus fences) first, then fenced blocks inside
    a longer reply, then the outermost brace span.

    Raises:
        AgentResponseError: If no JSON object can be parsed
    """
    candidates = [strip_code_fences(response)]
    candidates.extend(match.strip() for match in _CODE_BLOCK.findall(response))

    start, end = response.find("{"), response.rfind("}")
    if 0 <= start < end:
        candidates.append(response[start : end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise AgentResponseError(
        "Could not extract a JSON object from the model response",
        {"response_preview": response[:200]},
    )


def _require_str(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str):
            return value
    raise AgentResponseError(f"Response missing string field '{keys[0]}'", {"keys": list(data)})


def parse_coder_output(data: dict[str, Any]) -> CoderOutput:
    """
    Validate the content generator's reply.

    Expected shape:
        {"thinking": str, "files": [{"path", "action", "content"}], "commitMessage": str}

    Raises:
        AgentResponseError: If the structure is wrong
    """
    files = data.get("files")
    if not isinstance(files, list):
        raise AgentResponseError("Coder output missing 'files' array", {"keys": list(data)})

    changes = []
    for i, item in enumerate(files):
        if not isinstance(item, dict):
            raise AgentResponseError(f"File change {i} is not an object")

        path = item.get("path")
        if not isinstance(path, str) or not path.strip():
            raise AgentResponseError(f"File change {i} has no path")

        try:
            action = ChangeAction(item.get("action"))
        except ValueError:
            raise AgentResponseError(
                f"File change {i} has invalid action",
                {"path": path, "action": item.get("action")},
            )

        content = item.get("content", "")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise AgentResponseError(f"File change {i} content is not a string", {"path": path})

        changes.append(FileChange(path=path.strip(), action=action, content=content))

    commit_message = _require_str(data, "commitMessage", "commit_message")
    thinking = data.get("thinking")

    return CoderOutput(
        files=changes,
        commit_message=commit_message.strip(),
        thinking=thinking if isinstance(thinking, str) else "",
    )


def _parse_issue(item: Any) -> ReviewIssue | None:
    if not isinstance(item, dict):
        return None

    try:
        severity = Severity(str(item.get("severity", "")).lower())
    except ValueError:
        severity = Severity.MINOR

    line = item.get("line")
    if isinstance(line, bool) or not isinstance(line, int):
        line = None

    return ReviewIssue(
        severity=severity,
        file=str(item.get("file") or ""),
        message=str(item.get("message") or ""),
        line=line,
    )


def parse_review_output(data: dict[str, Any]) -> ReviewOutput:
    """
    Validate the reviewer's reply.

    The decision must be exactly "approve" or "reject". Unknown issue
    severities are treated as minor; malformed issue entries are dropped.

    Raises:
        AgentResponseError: If the decision is missing or invalid
    """
    decision = data.get("decision")
    if decision not in (ReviewDecision.APPROVE.value, ReviewDecision.REJECT.value):
        raise AgentResponseError(
            f"Reviewer returned invalid decision: {decision!r}",
            {"decision": decision},
        )

    raw_issues = data.get("issues") or []
    if not isinstance(raw_issues, list):
        raise AgentResponseError("Reviewer 'issues' is not a list")

    issues = []
    for item in raw_issues:
        issue = _parse_issue(item)
        if issue is None:
            logger.debug(f"Dropping malformed review issue: {item!r}")
            continue
        issues.append(issue)

    summary = data.get("summary")
    return ReviewOutput(
        decision=ReviewDecision(decision),
        issues=issues,
        summary=summary if isinstance(summary, str) else "",
    )
