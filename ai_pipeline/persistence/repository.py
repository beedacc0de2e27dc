"""
Task Repository - SQLite access layer

Stores tasks and their agent logs. One connection per repository
instance, opened at process start and closed at exit, with context
manager support.

Thread Safety:
- SQLite in WAL mode for concurrent reads
- Each write is a single statement or an explicit transaction
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from ai_pipeline.config import DEFAULT_DB_PATH
from ai_pipeline.exceptions import PersistenceError, TaskNotFoundError
from ai_pipeline.persistence.models import (
    AgentRole,
    Task,
    TaskLog,
    make_title,
    now_iso,
    truncate_summary,
)
from ai_pipeline.state import TaskStatus

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id, title, description, status, repo_path, branch_name, attempt, "
    "max_attempts, feedback, error_message, created_at, updated_at"
)
_LOG_COLUMNS = (
    "id, task_id, agent, action, input_summary, output_summary, "
    "tokens_used, duration_ms, created_at"
)


class TaskRepository:
    """
    SQLite implementation of the task store.

    Usage:
        with TaskRepository(db_path) as repo:
            task = repo.create_task("Add a health endpoint", "/path/to/repo")
            repo.update_status(task.id, TaskStatus.CODING)
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
                If None, uses the default location.
        """
        if db_path == ":memory:":
            self.db_path: Path | str = ":memory:"
        else:
            self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> TaskRepository:
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get database connection, initializing if needed."""
        if self._conn is None:
            self.initialize()
        return self._conn  # type: ignore

    def initialize(self) -> None:
        """
        Open the connection and apply the schema.

        Creates the database file and parent directories if needed.

        Raises:
            PersistenceError: If the database cannot be opened
        """
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,  # Autocommit, explicit transactions below
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._apply_schema()
        except sqlite3.Error as e:
            self.close()
            raise PersistenceError(
                f"Could not open task database at {self.db_path}",
                {"error": str(e)},
            ) from e

        logger.info(f"Initialized task database at {self.db_path}")

    def _apply_schema(self) -> None:
        """Apply the database schema from schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"
        self._conn.executescript(schema_path.read_text())  # type: ignore
        logger.debug("Database schema applied")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """
        Execute operations in a transaction.

        Usage:
            with repo.transaction() as cursor:
                cursor.execute(...)
        """
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    def _update(self, task_id: int, sql: str, params: tuple) -> None:
        """Run a single-row UPDATE, raising if the task does not exist."""
        cursor = self.conn.execute(sql, params)
        if cursor.rowcount == 0:
            raise TaskNotFoundError(task_id)

    # =========================================================================
    # TASK OPERATIONS
    # =========================================================================

    def create_task(self, description: str, repo_path: str, max_attempts: int = 3) -> Task:
        """Create a new pending task."""
        now = now_iso()
        cursor = self.conn.execute(
            """INSERT INTO tasks
               (title, description, status, repo_path, attempt, max_attempts,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, 0, ?, ?, ?)""",
            (
                make_title(description),
                description,
                TaskStatus.PENDING.value,
                repo_path,
                max_attempts,
                now,
                now,
            ),
        )
        task_id = cursor.lastrowid
        logger.debug(f"Created task {task_id} for {repo_path}")
        return self.get_task(task_id)  # type: ignore[return-value]

    def get_task(self, task_id: int) -> Task | None:
        """Get task by ID."""
        row = self.conn.execute(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
        ).fetchone()
        return Task.from_row(row) if row else None

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        """List tasks, newest first, optionally filtered by status."""
        if status is None:
            rows = self.conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks ORDER BY created_at DESC, id DESC"
            ).fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE status = ? "
                "ORDER BY created_at DESC, id DESC",
                (TaskStatus(status).value,),
            ).fetchall()
        return [Task.from_row(row) for row in rows]

    def list_pending(self, repo_path: str | None = None, limit: int | None = None) -> list[Task]:
        """List pending tasks in the order they were queued."""
        sql = f"SELECT {_TASK_COLUMNS} FROM tasks WHERE status = 'pending'"
        params: list = []
        if repo_path is not None:
            sql += " AND repo_path = ?"
            params.append(repo_path)
        sql += " ORDER BY created_at ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [Task.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def update_status(self, task_id: int, status: TaskStatus) -> None:
        """Set the task status."""
        self._update(
            task_id,
            "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
            (TaskStatus(status).value, now_iso(), task_id),
        )

    def update_attempt(
        self, task_id: int, attempt: int, branch_name: str, max_attempts: int
    ) -> None:
        """Record the start of an attempt: counter, branch and ceiling in one write."""
        self._update(
            task_id,
            """UPDATE tasks
               SET attempt = ?, branch_name = ?, max_attempts = ?, updated_at = ?
               WHERE id = ?""",
            (attempt, branch_name, max_attempts, now_iso(), task_id),
        )

    def set_feedback(self, task_id: int, feedback: str) -> None:
        """Replace the stored feedback with the latest one."""
        self._update(
            task_id,
            "UPDATE tasks SET feedback = ?, updated_at = ? WHERE id = ?",
            (feedback, now_iso(), task_id),
        )

    def set_error(self, task_id: int, message: str) -> None:
        """Mark the task failed with an error message in a single write."""
        self._update(
            task_id,
            "UPDATE tasks SET status = ?, error_message = ?, updated_at = ? WHERE id = ?",
            (TaskStatus.FAILED.value, message, now_iso(), task_id),
        )

    def reset_for_retry(self, task_id: int) -> None:
        """Put a failed task back to pending and clear its error and feedback."""
        self._update(
            task_id,
            """UPDATE tasks
               SET status = ?, error_message = NULL, feedback = NULL, updated_at = ?
               WHERE id = ?""",
            (TaskStatus.PENDING.value, now_iso(), task_id),
        )

    # =========================================================================
    # AGENT LOG OPERATIONS
    # =========================================================================

    def add_log(
        self,
        task_id: int,
        agent: AgentRole,
        action: str,
        input_summary: str = "",
        output_summary: str = "",
        tokens_used: int = 0,
        duration_ms: int = 0,
    ) -> TaskLog:
        """Append an agent log entry. Summaries are bounded in length."""
        log = TaskLog(
            id=0,
            task_id=task_id,
            agent=AgentRole(agent),
            action=action,
            input_summary=truncate_summary(input_summary),
            output_summary=truncate_summary(output_summary),
            tokens_used=tokens_used,
            duration_ms=duration_ms,
        )
        try:
            cursor = self.conn.execute(
                """INSERT INTO task_logs
                   (task_id, agent, action, input_summary, output_summary,
                    tokens_used, duration_ms, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    log.task_id,
                    log.agent.value,
                    log.action,
                    log.input_summary,
                    log.output_summary,
                    log.tokens_used,
                    log.duration_ms,
                    log.created_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise TaskNotFoundError(task_id) from e
        log.id = cursor.lastrowid
        return log

    def get_logs(self, task_id: int) -> list[TaskLog]:
        """Get all log entries for a task in the order they were written."""
        rows = self.conn.execute(
            f"SELECT {_LOG_COLUMNS} FROM task_logs WHERE task_id = ? "
            "ORDER BY created_at ASC, id ASC",
            (task_id,),
        ).fetchall()
        return [TaskLog.from_row(row) for row in rows]
