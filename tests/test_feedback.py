"""Tests for feedback formatting."""

from ai_pipeline.agents.types import ReviewDecision, ReviewIssue, ReviewOutput, Severity
from ai_pipeline.orchestrator.feedback import (
    MAX_FEEDBACK_CHARS,
    TRUNCATION_MARKER,
    bound_feedback,
    format_review_feedback,
    format_verification_feedback,
)
from ai_pipeline.orchestrator.verification import VerificationResult


class TestReviewFeedback:
    """Tests for rejected-review feedback."""

    def test_one_line_per_issue(self):
        review = ReviewOutput(
            decision=ReviewDecision.REJECT,
            issues=[
                ReviewIssue(Severity.CRITICAL, "app.py", "SQL injection", line=12),
                ReviewIssue(Severity.MINOR, "util.py", "unused import"),
            ],
            summary="Unsafe query",
        )
        text = format_review_feedback(review)
        assert text.startswith("Review summary: Unsafe query")
        assert "- [critical] app.py:12: SQL injection" in text
        assert "- [minor] util.py: unused import" in text

    def test_no_issues(self):
        review = ReviewOutput(decision=ReviewDecision.REJECT, summary="Not good")
        assert "no specific issues" in format_review_feedback(review)


class TestVerificationFeedback:
    """Tests for failed-check feedback."""

    def test_includes_both_outputs(self):
        result = VerificationResult(
            passed=False,
            lint_output="No lint script found, skipped",
            test_output="FAILED test_greet",
            summary="Tests failed",
        )
        text = format_verification_feedback(result)
        assert text.startswith("Tests/lint failed:")
        assert "Lint output:\nNo lint script found, skipped" in text
        assert "Test output:\nFAILED test_greet" in text


class TestBoundFeedback:
    """Tests for the size bound."""

    def test_short_text_untouched(self):
        assert bound_feedback("ok") == "ok"

    def test_long_text_cut(self):
        text = bound_feedback("x" * (MAX_FEEDBACK_CHARS * 2))
        assert len(text) == MAX_FEEDBACK_CHARS
        assert text.endswith(TRUNCATION_MARKER)

    def test_huge_test_output_is_bounded(self):
        result = VerificationResult(
            passed=False, lint_output="", test_output="E" * 50_000, summary="Tests failed"
        )
        assert len(format_verification_feedback(result)) <= MAX_FEEDBACK_CHARS
