"""
AI Pipeline Persistence Layer

SQLite-based storage for tasks and their agent logs.
"""

from ai_pipeline.persistence.models import AgentRole, Task, TaskLog
from ai_pipeline.persistence.repository import TaskRepository
from ai_pipeline.persistence.store import TaskStore

__all__ = [
    "AgentRole",
    "Task",
    "TaskLog",
    "TaskRepository",
    "TaskStore",
]
