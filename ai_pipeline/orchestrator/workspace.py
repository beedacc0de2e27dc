"""
Attempt Workspace - git operations for one task attempt.

Every attempt runs on a fresh branch cut from the repository's base
branch. Git is invoked with create_subprocess_exec (no shell) and with
terminal prompts disabled so a missing credential fails instead of hanging.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ai_pipeline.exceptions import (
    DirtyWorkspaceError,
    EmptyChangeSetError,
    GitCommandError,
    MergeConflictError,
    WorkspaceError,
)

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 120.0
FALLBACK_BASE_BRANCHES = ("main", "master")


class ChangeAction(str, Enum):
    """What to do with a file."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class FileChange:
    """A single file operation proposed by the content generator."""

    path: str
    action: ChangeAction
    content: str = ""


@dataclass
class GitResult:
    """Output of a git invocation."""

    returncode: int
    stdout: str
    stderr: str


def branch_name_for(task_id: int, attempt: int) -> str:
    """Branch label for an attempt. Unique per (task, attempt)."""
    return f"ai/task-{task_id}-attempt-{attempt}"


class GitWorkspace:
    """
    Git working tree manager for pipeline attempts.

    Usage:
        workspace = GitWorkspace("/path/to/repo")
        await workspace.ensure_clean_baseline()
        await workspace.start_attempt("ai/task-1-attempt-1")
        sha = await workspace.apply_and_commit(changes, "Add feature")
        diff = await workspace.diff_against_base()
    """

    def __init__(self, repo_path: str | Path, timeout: float = GIT_TIMEOUT):
        self.repo_path = Path(repo_path).resolve()
        self.timeout = timeout
        self.base_branch: str | None = None
        self.current_branch: str | None = None

    async def _git(self, *args: str, check: bool = True) -> GitResult:
        """
        Run a git command in the repository.

        Raises:
            GitCommandError: If check is set and git exits non-zero, or git
                cannot be started, or it times out
        """
        command = ["git", *args]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.repo_path),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, NotADirectoryError) as e:
            raise GitCommandError(f"Could not run git: {e}", command, -1, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise GitCommandError(
                f"git {args[0]} timed out after {self.timeout}s", command, -1, "timeout"
            )

        result = GitResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            raise GitCommandError(
                f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}",
                command,
                result.returncode,
                result.stderr,
            )
        return result

    async def ensure_clean_baseline(self) -> None:
        """
        Refuse to start when the working tree has uncommitted changes.

        Raises:
            WorkspaceError: If the path is not a git work tree
            DirtyWorkspaceError: If there are staged, unstaged or untracked changes
        """
        if not self.repo_path.is_dir():
            raise WorkspaceError(f"Repository path does not exist: {self.repo_path}")

        inside = await self._git("rev-parse", "--is-inside-work-tree", check=False)
        if inside.returncode != 0 or inside.stdout.strip() != "true":
            raise WorkspaceError(
                f"Not a git repository: {self.repo_path}",
                {"stderr": inside.stderr.strip()},
            )

        status = await self._git("status", "--porcelain")
        changes = [line for line in status.stdout.splitlines() if line.strip()]
        if changes:
            raise DirtyWorkspaceError(
                "Working tree has uncommitted changes; commit or stash them first",
                changes=changes[:20],
            )

    async def current_branch_name(self) -> str:
        result = await self._git("rev-parse", "--abbrev-ref", "HEAD")
        return result.stdout.strip()

    async def _ref_exists(self, ref: str) -> bool:
        result = await self._git("show-ref", "--verify", "--quiet", ref, check=False)
        return result.returncode == 0

    async def _branch_exists(self, name: str) -> bool:
        return await self._ref_exists(f"refs/heads/{name}")

    async def default_branch(self) -> str:
        """
        Determine the base branch.

        Order: the remote's default (origin/HEAD), then a local main, then a
        local master, then whatever branch is checked out.
        """
        remote = await self._git(
            "symbolic-ref", "--quiet", "--short", "refs/remotes/origin/HEAD", check=False
        )
        if remote.returncode == 0 and remote.stdout.strip():
            name = remote.stdout.strip().removeprefix("origin/")
            # checkout creates the local tracking branch when only origin has it
            if await self._branch_exists(name) or await self._ref_exists(
                f"refs/remotes/origin/{name}"
            ):
                return name

        for candidate in FALLBACK_BASE_BRANCHES:
            if await self._branch_exists(candidate):
                return candidate

        return await self.current_branch_name()

    async def sync_base(self) -> bool:
        """
        Fast-forward the checked-out base branch from its upstream.

        Best-effort: offline repositories, missing upstreams and remotes
        that hang past the timeout are logged and skipped.

        Returns:
            True if the pull succeeded
        """
        try:
            pull = await self._git("pull", "--ff-only", check=False)
        except GitCommandError as e:
            logger.warning(f"git pull skipped for {self.repo_path}: {e.message}")
            return False
        if pull.returncode != 0:
            logger.debug(f"git pull skipped for {self.repo_path}: {pull.stderr.strip()}")
            return False
        return True

    async def discard_uncommitted(self) -> None:
        """
        Drop uncommitted edits and untracked files left in the working tree.

        Ignored files are kept. Never raises.
        """
        for step in (("reset", "--hard"), ("clean", "-fd")):
            await self._best_effort(*step)

    async def _best_effort(self, *args: str) -> None:
        try:
            result = await self._git(*args, check=False)
        except GitCommandError as e:
            logger.warning(f"Cleanup step git {' '.join(args)} failed: {e}")
            return
        if result.returncode != 0:
            logger.warning(f"Cleanup step git {' '.join(args)} failed: {result.stderr.strip()}")

    async def start_attempt(self, branch: str) -> str:
        """
        Check out the base branch, refresh it and create the attempt branch.

        A stale local branch with the same name (from an earlier run of the
        same task) is deleted first.

        Returns:
            The base branch name
        """
        base = await self.default_branch()
        await self._git("checkout", base)

        await self.sync_base()

        if await self._branch_exists(branch):
            logger.info(f"Deleting stale branch {branch}")
            await self._git("branch", "-D", branch)

        await self._git("checkout", "-b", branch)
        self.base_branch = base
        self.current_branch = branch
        logger.debug(f"Started attempt branch {branch} from {base}")
        return base

    def _resolve_inside(self, relative: str) -> Path:
        """Resolve a change path, rejecting anything that escapes the repository."""
        if not relative or Path(relative).is_absolute():
            raise WorkspaceError(f"Invalid file path in change set: {relative!r}")

        target = (self.repo_path / relative).resolve()
        try:
            rel = target.relative_to(self.repo_path)
        except ValueError:
            raise WorkspaceError(f"File path escapes the repository: {relative!r}")
        if rel.parts and rel.parts[0] == ".git":
            raise WorkspaceError(f"Refusing to modify git metadata: {relative!r}")
        return target

    async def apply_and_commit(self, changes: list[FileChange], message: str) -> str:
        """
        Apply file changes, stage everything and commit.

        Args:
            changes: File operations; create/update write full content,
                delete removes the file (absence is tolerated)
            message: Commit message

        Returns:
            The new commit sha

        Raises:
            WorkspaceError: If a path is outside the repository
            EmptyChangeSetError: If the changes leave nothing to commit
        """
        targets = [(change, self._resolve_inside(change.path)) for change in changes]

        for change, target in targets:
            if change.action == ChangeAction.DELETE:
                target.unlink(missing_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(change.content, encoding="utf-8")

        await self._git("add", "-A")

        staged = await self._git("diff", "--cached", "--quiet", check=False)
        if staged.returncode == 0:
            raise EmptyChangeSetError(
                "Generated changes are identical to the current tree; nothing to commit",
                {"files": [change.path for change in changes]},
            )

        await self._git("commit", "-m", message)
        head = await self._git("rev-parse", "HEAD")
        sha = head.stdout.strip()
        logger.debug(f"Committed {len(changes)} change(s) as {sha[:10]}")
        return sha

    async def diff_against_base(self) -> str:
        """Diff of the attempt branch relative to its fork point from base."""
        base = self.base_branch or await self.default_branch()
        result = await self._git("diff", f"{base}...HEAD")
        return result.stdout

    async def merge_into_base(self, branch: str) -> str:
        """
        Merge the attempt branch into the base branch with a merge commit.

        Raises:
            MergeConflictError: If the merge fails; the merge is aborted first
        """
        base = self.base_branch or await self.default_branch()
        await self._git("checkout", base)

        merge = await self._git("merge", "--no-ff", "-m", f"Merge {branch}", branch, check=False)
        if merge.returncode != 0:
            abort = await self._git("merge", "--abort", check=False)
            if abort.returncode != 0:
                logger.warning(f"git merge --abort failed: {abort.stderr.strip()}")
            raise MergeConflictError(
                f"Could not merge {branch} into {base}: "
                f"{merge.stderr.strip() or merge.stdout.strip()}",
                branch=branch,
                base=base,
            )

        self.current_branch = base
        logger.info(f"Merged {branch} into {base}")
        return base

    async def abandon_attempt(self) -> None:
        """
        Leave the working tree clean after a fatal error mid-attempt.

        Discards uncommitted changes and returns to the base branch. Commits
        already on the attempt branch are kept. Never raises.
        """
        await self.discard_uncommitted()
        if self.base_branch:
            await self._best_effort("checkout", self.base_branch)
