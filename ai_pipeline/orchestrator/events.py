"""
Notification Bus - in-process publish/subscribe for task events.

Subscribers see status changes, agent log entries, errors and feedback
as they are persisted. EventPublishingStore is the only publisher: it
wraps a TaskStore and publishes after each write has been delegated.

Delivery is best-effort. A subscriber that raises is logged and skipped;
coroutine subscribers are scheduled on the running loop and not awaited.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ai_pipeline.persistence.models import AgentRole, Task, TaskLog, now_iso
from ai_pipeline.persistence.store import TaskStore
from ai_pipeline.state import TaskStatus

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of task notification."""

    STATUS = "task:status"
    LOG = "task:log"
    ERROR = "task:error"
    FEEDBACK = "task:feedback"


@dataclass
class TaskEvent:
    """A notification about one task."""

    kind: EventKind
    task_id: int
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "task_id": self.task_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[TaskEvent], Any]


class EventBus:
    """
    Fan-out of task events to subscribers.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(lambda event: print(event.kind))
        bus.publish(TaskEvent(EventKind.STATUS, 1, {"status": "coding"}))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        # Strong references to scheduled coroutine deliveries
        self._pending: set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber. Registering the same callback twice is a no-op.

        Returns:
            A function that unsubscribes the callback
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        """Remove a subscriber. Unknown callbacks are ignored."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, event: TaskEvent) -> None:
        """Deliver an event to every current subscriber. Never raises."""
        for callback in list(self._subscribers):
            try:
                result = callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber {callback!r} failed on {event.kind.value}: {e}")
                continue

            if inspect.isawaitable(result):
                self._schedule(result, event)

    def _schedule(self, awaitable: Any, event: TaskEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Dropping async delivery of {event.kind.value}: no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(_deliver(awaitable, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def subscribe_queue(self, task_id: int | None = None) -> EventSubscription:
        """Subscribe with a queue, optionally filtered to one task."""
        subscription = EventSubscription(self, task_id)
        self.subscribe(subscription.deliver)
        return subscription


async def _deliver(awaitable: Any, event: TaskEvent) -> None:
    try:
        await awaitable
    except Exception as e:
        logger.warning(f"Async event subscriber failed on {event.kind.value}: {e}")


class EventSubscription:
    """
    Queue-backed subscriber, used by streaming consumers.

    Closing detaches from the bus; events already queued can still be read.
    """

    def __init__(self, bus: EventBus, task_id: int | None = None):
        self._bus = bus
        self.task_id = task_id
        self.queue: asyncio.Queue[TaskEvent] = asyncio.Queue()
        self.closed = False

    def deliver(self, event: TaskEvent) -> None:
        if self.task_id is not None and event.task_id != self.task_id:
            return
        self.queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> TaskEvent | None:
        """Next event, or None if timeout elapses first."""
        if timeout is None:
            return await self.queue.get()
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    def drain(self) -> list[TaskEvent]:
        """Take every event currently queued without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    def close(self) -> None:
        self._bus.unsubscribe(self.deliver)
        self.closed = True


class EventPublishingStore:
    """
    TaskStore decorator that publishes events after each write.

    Reads and untracked writes pass straight through. A write that raises
    publishes nothing.
    """

    def __init__(self, store: TaskStore, bus: EventBus):
        self.store = store
        self.bus = bus

    # Pass-through

    def create_task(self, description: str, repo_path: str, max_attempts: int = 3) -> Task:
        return self.store.create_task(description, repo_path, max_attempts)

    def get_task(self, task_id: int) -> Task | None:
        return self.store.get_task(task_id)

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        return self.store.list_tasks(status)

    def list_pending(self, repo_path: str | None = None, limit: int | None = None) -> list[Task]:
        return self.store.list_pending(repo_path, limit)

    def get_logs(self, task_id: int) -> list[TaskLog]:
        return self.store.get_logs(task_id)

    def update_attempt(
        self, task_id: int, attempt: int, branch_name: str, max_attempts: int
    ) -> None:
        self.store.update_attempt(task_id, attempt, branch_name, max_attempts)

    # Publishing writes

    def update_status(self, task_id: int, status: TaskStatus) -> None:
        self.store.update_status(task_id, status)
        self.bus.publish(TaskEvent(EventKind.STATUS, task_id, {"status": TaskStatus(status).value}))

    def reset_for_retry(self, task_id: int) -> None:
        self.store.reset_for_retry(task_id)
        self.bus.publish(TaskEvent(EventKind.STATUS, task_id, {"status": TaskStatus.PENDING.value}))

    def set_error(self, task_id: int, message: str) -> None:
        self.store.set_error(task_id, message)
        self.bus.publish(
            TaskEvent(EventKind.ERROR, task_id, {"status": TaskStatus.FAILED.value, "error": message})
        )

    def set_feedback(self, task_id: int, feedback: str) -> None:
        self.store.set_feedback(task_id, feedback)
        self.bus.publish(TaskEvent(EventKind.FEEDBACK, task_id, {"feedback": feedback}))

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
        log = self.store.add_log(
            task_id, agent, action, input_summary, output_summary, tokens_used, duration_ms
        )
        self.bus.publish(TaskEvent(EventKind.LOG, task_id, log.to_dict()))
        return log
