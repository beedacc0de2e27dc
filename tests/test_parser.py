"""Tests for agent response parsing."""

import json

import pytest

from ai_pipeline.agents.parser import (
    extract_json_from_response,
    parse_coder_output,
    parse_review_output,
    strip_code_fences,
)
from ai_pipeline.agents.types import ChangeAction, ReviewDecision, Severity
from ai_pipeline.exceptions import AgentResponseError


class TestExtractJson:
    """Tests for pulling JSON out of model replies."""

    def test_plain_json(self):
        assert extract_json_from_response('{"decision": "approve"}') == {"decision": "approve"}

    def test_fenced_json(self):
        reply = '```json\n{"a": 1}\n```'
        assert extract_json_from_response(reply) == {"a": 1}

    def test_unclosed_fence(self):
        """A reply cut off after the opening fence still parses if the JSON is whole."""
        assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'

    def test_prose_around_block(self):
        reply = 'Here you go:\n```\n{"a": 2}\n```\nLet me know.'
        assert extract_json_from_response(reply) == {"a": 2}

    def test_brace_span(self):
        reply = 'Sure! {"a": 3} Hope that helps.'
        assert extract_json_from_response(reply) == {"a": 3}

    @pytest.mark.parametrize("reply", ["no json here", "[1, 2, 3]", '{"a": '])
    def test_unparseable(self, reply):
        with pytest.raises(AgentResponseError):
            extract_json_from_response(reply)


class TestParseCoderOutput:
    """Tests for coder output validation."""

    def test_valid(self):
        output = parse_coder_output(
            {
                "thinking": "small change",
                "files": [
                    {"path": "a.py", "action": "create", "content": "x = 1\n"},
                    {"path": "b.py", "action": "delete"},
                ],
                "commitMessage": "  Add a  ",
            }
        )
        assert output.file_paths == ["a.py", "b.py"]
        assert output.files[1].action == ChangeAction.DELETE
        assert output.files[1].content == ""
        assert output.commit_message == "Add a"
        assert output.thinking == "small change"

    def test_snake_case_commit_message(self):
        output = parse_coder_output({"files": [], "commit_message": "msg"})
        assert output.commit_message == "msg"
        assert output.files == []

    @pytest.mark.parametrize(
        "data",
        [
            {"commitMessage": "m"},
            {"files": "a.py", "commitMessage": "m"},
            {"files": ["a.py"], "commitMessage": "m"},
            {"files": [{"action": "create"}], "commitMessage": "m"},
            {"files": [{"path": "a.py", "action": "rename"}], "commitMessage": "m"},
            {"files": [{"path": "a.py", "action": "update", "content": 5}], "commitMessage": "m"},
            {"files": []},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(AgentResponseError):
            parse_coder_output(data)


class TestParseReviewOutput:
    """Tests for reviewer output validation."""

    def test_approve(self):
        output = parse_review_output({"decision": "approve", "issues": [], "summary": "LGTM"})
        assert output.approved
        assert output.summary == "LGTM"

    def test_reject_with_issues(self):
        output = parse_review_output(
            json.loads(
                """{
                    "decision": "reject",
                    "issues": [
                        {"severity": "critical", "file": "a.py", "line": 3, "message": "bug"},
                        {"severity": "BLOCKER", "file": "b.py", "line": "7", "message": "odd"},
                        "not an object"
                    ],
                    "summary": "Needs work"
                }"""
            )
        )
        assert output.decision == ReviewDecision.REJECT
        assert len(output.issues) == 2
        assert output.issues[0].severity == Severity.CRITICAL
        assert output.issues[0].line == 3
        assert output.issues[1].severity == Severity.MINOR
        assert output.issues[1].line is None
        assert output.count(Severity.CRITICAL) == 1

    @pytest.mark.parametrize("decision", [None, "APPROVE", "lgtm", "approved"])
    def test_invalid_decision(self, decision):
        with pytest.raises(AgentResponseError):
            parse_review_output({"decision": decision})

    def test_issues_not_a_list(self):
        with pytest.raises(AgentResponseError):
            parse_review_output({"decision": "reject", "issues": "lots"})
