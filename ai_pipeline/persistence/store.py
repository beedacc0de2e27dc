"""
TaskStore protocol.

The contract the pipeline runner needs from persistence. TaskRepository is
the SQLite implementation; EventPublishingStore wraps any implementation
to publish notifications after each write.
"""

from typing import Protocol

from ai_pipeline.persistence.models import AgentRole, Task, TaskLog
from ai_pipeline.state import TaskStatus


class TaskStore(Protocol):
    def create_task(self, description: str, repo_path: str, max_attempts: int = 3) -> Task: ...

    def get_task(self, task_id: int) -> Task | None: ...

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]: ...

    def list_pending(self, repo_path: str | None = None, limit: int | None = None) -> list[Task]: ...

    def update_status(self, task_id: int, status: TaskStatus) -> None: ...

    def update_attempt(
        self, task_id: int, attempt: int, branch_name: str, max_attempts: int
    ) -> None: ...

    def set_feedback(self, task_id: int, feedback: str) -> None: ...

    def set_error(self, task_id: int, message: str) -> None: ...

    def reset_for_retry(self, task_id: int) -> None: ...

    def add_log(
        self,
        task_id: int,
        agent: AgentRole,
        action: str,
        input_summary: str = "",
        output_summary: str = "",
        tokens_used: int = 0,
        duration_ms: int = 0,
    ) -> TaskLog: ...

    def get_logs(self, task_id: int) -> list[TaskLog]: ...
