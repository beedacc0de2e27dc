"""
Feedback formatting for the next attempt.

Turns a rejected review or a failed verification into text for the
content generator. Only the latest feedback is stored, so each string
must stand on its own.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_pipeline.agents.types import ReviewOutput
    from ai_pipeline.orchestrator.verification import VerificationResult

MAX_FEEDBACK_CHARS = 8000
TRUNCATION_MARKER = "\n... [feedback truncated]"


def bound_feedback(text: str, limit: int = MAX_FEEDBACK_CHARS) -> str:
    """Cut feedback to the limit, marking the cut."""
    if len(text) <= limit:
        return text
    return text[: limit - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def format_review_feedback(review: "ReviewOutput") -> str:
    """Render review findings as one line per issue."""
    lines = [f"Review summary: {review.summary}", "", "Issues:"]
    for issue in review.issues:
        location = issue.file
        if issue.line is not None:
            location += f":{issue.line}"
        lines.append(f"- [{issue.severity.value}] {location}: {issue.message}")
    if not review.issues:
        lines.append("- (reviewer listed no specific issues)")
    return bound_feedback("\n".join(lines))


def format_verification_feedback(result: "VerificationResult") -> str:
    """Render failed check output."""
    text = (
        "Tests/lint failed:\n\n"
        f"Lint output:\n{result.lint_output}\n\n"
        f"Test output:\n{result.test_output}"
    )
    return bound_feedback(text)
