"""Tests for the SQLite task repository."""

import sqlite3

import pytest

from ai_pipeline.exceptions import PersistenceError, TaskNotFoundError
from ai_pipeline.persistence.models import (
    SUMMARY_MAX_CHARS,
    TRUNCATION_MARKER,
    AgentRole,
    make_title,
    truncate_summary,
)
from ai_pipeline.persistence.repository import TaskRepository
from ai_pipeline.state import TaskStatus


class TestModels:
    """Tests for model helpers."""

    def test_title_is_bounded(self):
        """Titles are the first 100 characters of the description."""
        assert make_title("  Add endpoint  ") == "Add endpoint"
        assert len(make_title("x" * 500)) == 100

    def test_truncate_summary(self):
        """Long summaries are cut and marked."""
        assert truncate_summary(None) == ""
        assert truncate_summary("short") == "short"
        cut = truncate_summary("y" * (SUMMARY_MAX_CHARS + 50))
        assert len(cut) == SUMMARY_MAX_CHARS
        assert cut.endswith(TRUNCATION_MARKER)


class TestTaskOperations:
    """Tests for task CRUD."""

    def test_create_task(self, repository):
        """New tasks are pending with attempt 0."""
        task = repository.create_task("Add a health endpoint", "/repo", max_attempts=4)
        assert task.id > 0
        assert task.status == TaskStatus.PENDING
        assert task.attempt == 0
        assert task.max_attempts == 4
        assert task.title == "Add a health endpoint"
        assert task.branch_name is None
        assert task.feedback is None

    def test_get_missing_task(self, repository):
        assert repository.get_task(999) is None

    def test_list_tasks_newest_first(self, repository):
        """Tasks are listed newest first."""
        first = repository.create_task("first", "/repo")
        second = repository.create_task("second", "/repo")
        ids = [task.id for task in repository.list_tasks()]
        assert ids == [second.id, first.id]

    def test_list_tasks_by_status(self, repository):
        """Status filter narrows the list."""
        task = repository.create_task("one", "/repo")
        repository.create_task("two", "/repo")
        repository.set_error(task.id, "boom")
        failed = repository.list_tasks(TaskStatus.FAILED)
        assert [t.id for t in failed] == [task.id]

    def test_list_pending_fifo(self, repository):
        """Pending tasks come back in queue order, filtered by repo."""
        a = repository.create_task("a", "/repo")
        repository.create_task("other", "/elsewhere")
        b = repository.create_task("b", "/repo")
        c = repository.create_task("c", "/repo")
        repository.update_status(b.id, TaskStatus.CODING)

        assert [t.id for t in repository.list_pending("/repo")] == [a.id, c.id]
        assert [t.id for t in repository.list_pending("/repo", limit=1)] == [a.id]
        assert len(repository.list_pending()) == 3

    def test_update_attempt(self, repository):
        """Attempt counter, branch and ceiling are written together."""
        task = repository.create_task("x", "/repo")
        repository.update_attempt(task.id, 2, "ai/task-1-attempt-2", 5)
        loaded = repository.get_task(task.id)
        assert loaded.attempt == 2
        assert loaded.branch_name == "ai/task-1-attempt-2"
        assert loaded.max_attempts == 5

    def test_feedback_is_replaced(self, repository):
        """Only the latest feedback is kept."""
        task = repository.create_task("x", "/repo")
        repository.set_feedback(task.id, "first")
        repository.set_feedback(task.id, "second")
        assert repository.get_task(task.id).feedback == "second"

    def test_set_error_marks_failed(self, repository):
        """set_error writes status and message together."""
        task = repository.create_task("x", "/repo")
        repository.set_error(task.id, "git exploded")
        loaded = repository.get_task(task.id)
        assert loaded.status == TaskStatus.FAILED
        assert loaded.error_message == "git exploded"

    def test_reset_for_retry(self, repository):
        """Retry reset clears error and feedback."""
        task = repository.create_task("x", "/repo")
        repository.set_feedback(task.id, "fix it")
        repository.set_error(task.id, "failed")
        repository.reset_for_retry(task.id)
        loaded = repository.get_task(task.id)
        assert loaded.status == TaskStatus.PENDING
        assert loaded.error_message is None
        assert loaded.feedback is None

    @pytest.mark.parametrize(
        "call",
        [
            lambda r: r.update_status(404, TaskStatus.CODING),
            lambda r: r.update_attempt(404, 1, "b", 3),
            lambda r: r.set_feedback(404, "f"),
            lambda r: r.set_error(404, "e"),
            lambda r: r.reset_for_retry(404),
        ],
    )
    def test_writes_to_missing_task(self, repository, call):
        """Writes against an unknown id raise TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            call(repository)


class TestAgentLogs:
    """Tests for the append-only agent log."""

    def test_add_and_get_logs(self, repository):
        """Logs come back in write order."""
        task = repository.create_task("x", "/repo")
        repository.add_log(task.id, AgentRole.CODER, "generate", "in", "out", 120, 50)
        repository.add_log(task.id, AgentRole.REVIEWER, "review", output_summary="approve")

        logs = repository.get_logs(task.id)
        assert [log.action for log in logs] == ["generate", "review"]
        assert logs[0].agent == AgentRole.CODER
        assert logs[0].tokens_used == 120
        assert logs[0].duration_ms == 50
        assert logs[1].input_summary == ""

    def test_summaries_are_truncated(self, repository):
        """Summaries are bounded before storage."""
        task = repository.create_task("x", "/repo")
        log = repository.add_log(task.id, AgentRole.TESTER, "verify", output_summary="z" * 5000)
        assert len(log.output_summary) == SUMMARY_MAX_CHARS
        assert repository.get_logs(task.id)[0].output_summary == log.output_summary

    def test_log_for_missing_task(self, repository):
        """Foreign key violation surfaces as TaskNotFoundError."""
        with pytest.raises(TaskNotFoundError):
            repository.add_log(12345, AgentRole.PIPELINE, "attempt")

    def test_to_dict(self, repository):
        task = repository.create_task("x", "/repo")
        data = repository.add_log(task.id, AgentRole.PIPELINE, "attempt").to_dict()
        assert data["agent"] == "pipeline"
        assert data["task_id"] == task.id


class TestLifecycle:
    """Tests for connection handling."""

    def test_file_database_persists(self, tmp_path):
        """Data survives reopening the file."""
        db_path = tmp_path / "nested" / "pipeline.db"
        with TaskRepository(db_path) as repo:
            task = repo.create_task("persist me", "/repo")

        with TaskRepository(db_path) as repo:
            assert repo.get_task(task.id).description == "persist me"

    def test_unopenable_database(self, tmp_path):
        """A path that is a directory cannot be opened."""
        directory = tmp_path / "dir.db"
        directory.mkdir()
        with pytest.raises(PersistenceError):
            TaskRepository(directory).initialize()

    def test_transaction_rolls_back(self, repository):
        """A failing transaction leaves no partial writes."""
        task = repository.create_task("x", "/repo")
        with pytest.raises(sqlite3.IntegrityError):
            with repository.transaction() as cursor:
                cursor.execute("UPDATE tasks SET feedback = 'partial' WHERE id = ?", (task.id,))
                cursor.execute("UPDATE tasks SET status = 'bogus' WHERE id = ?", (task.id,))
        assert repository.get_task(task.id).feedback is None
