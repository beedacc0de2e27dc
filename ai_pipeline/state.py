"""
AI Pipeline - Task State Machine

Defines the task lifecycle and which status changes are legal.
The pipeline runner checks every transition against this table before
writing it to the task store.
"""

from enum import Enum

from ai_pipeline.exceptions import StateTransitionError


class TaskStatus(str, Enum):
    """
    Lifecycle status of a task.

    State transitions:
    PENDING -> CODING (attempt started)
    CODING -> REVIEWING (changes committed on the attempt branch)
    REVIEWING -> TESTING (approved) or CODING (rejected, next attempt)
    TESTING -> DONE (checks passed) or CODING (checks failed, next attempt)
    Any non-terminal -> FAILED (exhausted or fatal error)
    """

    PENDING = "pending"
    CODING = "coding"
    REVIEWING = "reviewing"
    TESTING = "testing"
    DONE = "done"
    FAILED = "failed"


# Valid state transitions
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.CODING, TaskStatus.FAILED},
    TaskStatus.CODING: {TaskStatus.REVIEWING, TaskStatus.FAILED},
    TaskStatus.REVIEWING: {TaskStatus.TESTING, TaskStatus.CODING, TaskStatus.FAILED},
    TaskStatus.TESTING: {TaskStatus.DONE, TaskStatus.CODING, TaskStatus.FAILED},
    TaskStatus.DONE: set(),  # Terminal state
    TaskStatus.FAILED: set(),  # Terminal state, left only through an explicit retry
}

TERMINAL_STATES = frozenset({TaskStatus.DONE, TaskStatus.FAILED})


def is_terminal(status: TaskStatus) -> bool:
    """Return True if no further transitions are allowed from status."""
    return status in TERMINAL_STATES


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    """Check whether moving from current to new is a legal transition."""
    return new in VALID_TRANSITIONS.get(current, set())


def require_transition(current: TaskStatus, new: TaskStatus) -> None:
    """
    Validate a transition, raising an exception if it is not allowed.

    Failure indicates a bug in the pipeline driver, not a user error.

    Args:
        current: Status the task is in now
        new: Status the caller wants to write

    Raises:
        StateTransitionError: If the transition is not valid
    """
    if not can_transition(current, new):
        raise StateTransitionError(
            f"Invalid task transition: {current.value} -> {new.value}",
            from_state=current.value,
            to_state=new.value,
        )
