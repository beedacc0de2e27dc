"""
Pipeline Runner - drives one task through bounded attempts.

Each attempt: generate changes, commit them on a fresh branch, review the
diff, then run the verification gate. A rejection or a failed check feeds
the next attempt; anything else that goes wrong fails the task.

Architecture:
  description -> coder -> attempt branch -> reviewer --approve--> verifier --pass--> done
                   ^                             |                    |
                   +--------- feedback ----------+--------------------+
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from ai_pipeline.agents.types import AgentCallResult, CoderOutput, ReviewOutput
from ai_pipeline.config import DEFAULT_MAX_ATTEMPTS, DEFAULT_MODEL
from ai_pipeline.context.gatherer import RepoContextProvider
from ai_pipeline.exceptions import (
    AgentResponseError,
    ConfigError,
    InvalidTaskStateError,
    TaskError,
    TaskNotFoundError,
)
from ai_pipeline.logging import PipelineLogEntry, now_iso, pipeline_logger
from ai_pipeline.orchestrator.feedback import (
    format_review_feedback,
    format_verification_feedback,
)
from ai_pipeline.orchestrator.verification import VerificationGate, VerificationResult
from ai_pipeline.orchestrator.workspace import GitWorkspace, branch_name_for
from ai_pipeline.persistence.models import AgentRole, Task
from ai_pipeline.persistence.store import TaskStore
from ai_pipeline.state import TaskStatus, is_terminal, require_transition

logger = logging.getLogger(__name__)


class ChangeGenerator(Protocol):
    async def generate(
        self, context: str, description: str, feedback: str | None = None
    ) -> AgentCallResult[CoderOutput]: ...


class ChangeReviewer(Protocol):
    async def review(self, diff: str) -> AgentCallResult[ReviewOutput]: ...


class Verifier(Protocol):
    async def verify(self, repo_path: str | Path) -> VerificationResult: ...


class ContextProvider(Protocol):
    async def gather(self, repo_path: str, description: str) -> str: ...


@dataclass
class PipelineOptions:
    """Per-run settings."""

    repo_path: str
    model: str = DEFAULT_MODEL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    auto_merge: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ConfigError("max_attempts must be an integer", {"max_attempts": self.max_attempts})
        if self.max_attempts < 1:
            raise ConfigError(
                "max_attempts must be a positive integer",
                {"max_attempts": self.max_attempts},
            )
        self.repo_path = str(Path(self.repo_path).expanduser().resolve())


class PipelineRunner:
    """
    Orchestrates coder, reviewer and verifier for a task.

    Every status change is validated against the transition table and
    persisted before the next step starts. The runner never raises for an
    attempt outcome; it returns the task in its final state. Only
    precondition violations (dirty tree, unknown task, wrong status) and a
    failure to persist the failure itself propagate. Cancellation also
    propagates, after the task has been marked failed.
    """

    def __init__(
        self,
        store: TaskStore,
        generator: ChangeGenerator,
        reviewer: ChangeReviewer,
        verifier: Verifier | None = None,
        context_provider: ContextProvider | None = None,
        workspace_factory: Callable[[str], GitWorkspace] = GitWorkspace,
    ):
        self.store = store
        self.generator = generator
        self.reviewer = reviewer
        self.verifier = verifier or VerificationGate()
        self.context_provider = context_provider or RepoContextProvider()
        self.workspace_factory = workspace_factory

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def run(self, description: str, options: PipelineOptions) -> Task:
        """
        Create a task for description and drive it to a terminal state.

        Raises:
            TaskError: If the description is blank
            DirtyWorkspaceError: If the repository has uncommitted changes;
                no task is created in that case
        """
        if not description or not description.strip():
            raise TaskError("Task description must not be empty")

        workspace = self.workspace_factory(options.repo_path)
        await workspace.ensure_clean_baseline()

        task = self.store.create_task(description.strip(), options.repo_path, options.max_attempts)
        logger.info(f"Created task {task.id}: {task.title}")
        return await self._drive(task, options, workspace)

    async def run_existing(self, task_id: int, options: PipelineOptions) -> Task:
        """
        Drive a pending task. The task's own repository path is used.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTaskStateError: If the task is not pending
            DirtyWorkspaceError: If the repository has uncommitted changes
        """
        task = self._load(task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTaskStateError(
                f"Task {task_id} is {task.status.value}; only pending tasks can be run",
                task_id=task_id,
                status=task.status.value,
            )

        options = replace(options, repo_path=task.repo_path)
        workspace = self.workspace_factory(options.repo_path)
        await workspace.ensure_clean_baseline()
        return await self._drive(task, options, workspace)

    async def retry(self, task_id: int, options: PipelineOptions) -> Task:
        """
        Re-drive a failed task from attempt 1 with no carried-over feedback.

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidTaskStateError: If the task is not failed
            DirtyWorkspaceError: If the repository has uncommitted changes
        """
        task = self._load(task_id)
        if task.status != TaskStatus.FAILED:
            raise InvalidTaskStateError(
                f"Task {task_id} is {task.status.value}; only failed tasks can be retried",
                task_id=task_id,
                status=task.status.value,
            )

        options = replace(options, repo_path=task.repo_path)
        workspace = self.workspace_factory(options.repo_path)
        await workspace.ensure_clean_baseline()

        self.store.reset_for_retry(task_id)
        logger.info(f"Retrying task {task_id}")
        return await self._drive(self._load(task_id), options, workspace)

    # =========================================================================
    # DRIVER
    # =========================================================================

    def _load(self, task_id: int) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _transition(
        self, task_id: int, current: TaskStatus, new: TaskStatus, attempt: int
    ) -> TaskStatus:
        require_transition(current, new)
        self.store.update_status(task_id, new)
        pipeline_logger.info(
            PipelineLogEntry(
                timestamp=now_iso(),
                task_id=task_id,
                event_type="transition",
                from_state=current.value,
                to_state=new.value,
                attempt=attempt,
            ).to_json()
        )
        return new

    def _fail(self, task_id: int, current: TaskStatus, message: str) -> None:
        require_transition(current, TaskStatus.FAILED)
        self.store.set_error(task_id, message)

    @staticmethod
    def _validate_changes(output: CoderOutput) -> CoderOutput:
        if not output.files:
            raise AgentResponseError("Coder returned no file changes")
        if not output.commit_message.strip():
            raise AgentResponseError("Coder returned an empty commit message")
        return output

    async def _drive(self, task: Task, options: PipelineOptions, workspace: GitWorkspace) -> Task:
        task_id = task.id
        current = task.status
        attempt = 0
        feedback: str | None = None

        pipeline_logger.info(
            PipelineLogEntry(
                timestamp=now_iso(),
                task_id=task_id,
                event_type="start",
                from_state=current.value,
                repo_path=options.repo_path,
                message=f"model={options.model} max_attempts={options.max_attempts}",
            ).to_json()
        )

        try:
            for attempt in range(1, options.max_attempts + 1):
                branch = branch_name_for(task_id, attempt)
                self.store.update_attempt(task_id, attempt, branch, options.max_attempts)
                current = self._transition(task_id, current, TaskStatus.CODING, attempt)
                self.store.add_log(
                    task_id,
                    AgentRole.PIPELINE,
                    "attempt",
                    input_summary=f"Attempt {attempt}/{options.max_attempts}",
                    output_summary=branch,
                )

                # Generate
                context = await self.context_provider.gather(options.repo_path, task.description)
                generated = await self.generator.generate(context, task.description, feedback)
                changes = self._validate_changes(generated.output)
                self.store.add_log(
                    task_id,
                    AgentRole.CODER,
                    "generate",
                    input_summary=f"Feedback:\n{feedback}" if feedback else task.description,
                    output_summary=(
                        f"{len(changes.files)} file(s): {', '.join(changes.file_paths)}\n"
                        f"Commit: {changes.commit_message}"
                    ),
                    tokens_used=generated.tokens_used,
                    duration_ms=generated.duration_ms,
                )

                # Commit on a fresh branch
                await workspace.start_attempt(branch)
                sha = await workspace.apply_and_commit(changes.files, changes.commit_message)
                logger.info(f"Task {task_id} attempt {attempt}: committed {sha[:10]} on {branch}")

                # Review
                current = self._transition(task_id, current, TaskStatus.REVIEWING, attempt)
                diff = await workspace.diff_against_base()
                reviewed = await self.reviewer.review(diff)
                review = reviewed.output
                self.store.add_log(
                    task_id,
                    AgentRole.REVIEWER,
                    "review",
                    input_summary=f"Diff of {branch} ({len(diff)} chars)",
                    output_summary=(
                        f"{review.decision.value}: {review.summary} "
                        f"({len(review.issues)} issue(s))"
                    ),
                    tokens_used=reviewed.tokens_used,
                    duration_ms=reviewed.duration_ms,
                )

                if not review.approved:
                    feedback = format_review_feedback(review)
                    self.store.set_feedback(task_id, feedback)
                    self.store.add_log(
                        task_id,
                        AgentRole.PIPELINE,
                        "feedback",
                        input_summary=f"Review rejected attempt {attempt}",
                        output_summary=feedback,
                    )
                    logger.info(f"Task {task_id} attempt {attempt}: review rejected")
                    continue

                # Verify
                current = self._transition(task_id, current, TaskStatus.TESTING, attempt)
                started = time.monotonic()
                result = await self.verifier.verify(options.repo_path)
                # Check artefacts must not reach the next commit or the base tree
                await workspace.discard_uncommitted()
                self.store.add_log(
                    task_id,
                    AgentRole.TESTER,
                    "verify",
                    input_summary=f"Lint and tests on {branch}",
                    output_summary=result.summary,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )

                if not result.passed:
                    feedback = format_verification_feedback(result)
                    self.store.set_feedback(task_id, feedback)
                    self.store.add_log(
                        task_id,
                        AgentRole.PIPELINE,
                        "feedback",
                        input_summary=f"Verification failed on attempt {attempt}",
                        output_summary=feedback,
                    )
                    logger.info(f"Task {task_id} attempt {attempt}: {result.summary}")
                    continue

                # Done
                outcome = f"{branch} ready for manual merge"
                if options.auto_merge:
                    base = await workspace.merge_into_base(branch)
                    outcome = f"Merged {branch} into {base}"

                current = self._transition(task_id, current, TaskStatus.DONE, attempt)
                self.store.add_log(
                    task_id,
                    AgentRole.PIPELINE,
                    "complete",
                    input_summary=f"Attempt {attempt}/{options.max_attempts}",
                    output_summary=outcome,
                )
                self._log_terminal(task_id, "complete", attempt, branch, outcome)
                return self._load(task_id)

            message = f"Failed after {options.max_attempts} attempts"
            self._fail(task_id, current, message)
            self.store.add_log(
                task_id,
                AgentRole.PIPELINE,
                "exhausted",
                input_summary=f"{options.max_attempts} attempt(s) used",
                output_summary=message,
            )
            self._log_terminal(task_id, "exhausted", attempt, None, message)
            return self._load(task_id)

        except Exception as e:
            if is_terminal(current):
                raise

            logger.error(f"Task {task_id} failed on attempt {attempt}: {e}")
            await workspace.abandon_attempt()
            self._record_error(task_id, current, attempt, options, str(e), type(e).__name__)
            return self._load(task_id)

        except BaseException as e:
            # Cancellation (server shutdown) or Ctrl-C: record the failure, then propagate
            if is_terminal(current):
                raise

            if isinstance(e, asyncio.CancelledError):
                message = "Cancelled"
            else:
                message = f"Interrupted ({type(e).__name__})"
            logger.warning(f"Task {task_id} stopped on attempt {attempt}: {message}")
            try:
                await workspace.abandon_attempt()
            finally:
                self._record_error(task_id, current, attempt, options, message, type(e).__name__)
            raise

    def _record_error(
        self,
        task_id: int,
        current: TaskStatus,
        attempt: int,
        options: PipelineOptions,
        message: str,
        error_type: str,
    ) -> None:
        self._fail(task_id, current, message)
        self.store.add_log(
            task_id,
            AgentRole.PIPELINE,
            "error",
            input_summary=f"Attempt {attempt}/{options.max_attempts} ({current.value})",
            output_summary=f"{error_type}: {message}",
        )
        self._log_terminal(task_id, "error", attempt, None, message, error_type=error_type)

    def _log_terminal(
        self,
        task_id: int,
        event_type: str,
        attempt: int,
        branch: str | None,
        message: str,
        error_type: str | None = None,
    ) -> None:
        pipeline_logger.info(
            PipelineLogEntry(
                timestamp=now_iso(),
                task_id=task_id,
                event_type=event_type,
                attempt=attempt,
                branch_name=branch,
                message=message,
                error=message if error_type else None,
                error_type=error_type,
            ).to_json()
        )
