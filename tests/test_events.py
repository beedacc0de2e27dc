"""Tests for the notification bus and the publishing store."""

import asyncio
from unittest.mock import MagicMock

import pytest

from ai_pipeline.exceptions import TaskNotFoundError
from ai_pipeline.orchestrator.events import (
    EventBus,
    EventKind,
    EventPublishingStore,
    TaskEvent,
)
from ai_pipeline.persistence.models import AgentRole
from ai_pipeline.state import TaskStatus


def status_event(task_id: int = 1, status: str = "coding") -> TaskEvent:
    return TaskEvent(EventKind.STATUS, task_id, {"status": status})


class TestEventBus:
    """Tests for EventBus fan-out."""

    def test_publish_reaches_all_subscribers(self):
        bus = EventBus()
        first, second = MagicMock(), MagicMock()
        bus.subscribe(first)
        bus.subscribe(second)

        event = status_event()
        bus.publish(event)

        first.assert_called_once_with(event)
        second.assert_called_once_with(event)

    def test_subscribe_is_idempotent(self):
        """Registering the same callback twice delivers once."""
        bus = EventBus()
        callback = MagicMock()
        bus.subscribe(callback)
        bus.subscribe(callback)
        bus.publish(status_event())
        assert callback.call_count == 1
        assert bus.subscriber_count == 1

    def test_unsubscribe_handle(self):
        """The returned function detaches the subscriber."""
        bus = EventBus()
        callback = MagicMock()
        unsubscribe = bus.subscribe(callback)
        unsubscribe()
        unsubscribe()
        bus.publish(status_event())
        callback.assert_not_called()
        assert bus.subscriber_count == 0

    def test_failing_subscriber_is_isolated(self):
        """One subscriber raising does not stop the others."""
        bus = EventBus()
        bus.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        healthy = MagicMock()
        bus.subscribe(healthy)

        bus.publish(status_event())
        healthy.assert_called_once()

    def test_unsubscribe_during_publish(self):
        """Subscribers removed mid-delivery do not break iteration."""
        bus = EventBus()
        late = MagicMock()

        def remove_late(event):
            bus.unsubscribe(late)

        bus.subscribe(remove_late)
        bus.subscribe(late)
        bus.publish(status_event())
        late.assert_called_once()

    @pytest.mark.asyncio
    async def test_async_subscriber_is_scheduled(self):
        """Coroutine subscribers run on the loop."""
        bus = EventBus()
        received = []

        async def collect(event):
            received.append(event.task_id)

        bus.subscribe(collect)
        bus.publish(status_event(task_id=7))
        await asyncio.sleep(0.01)
        assert received == [7]

    def test_async_subscriber_without_loop(self):
        """With no running loop, async delivery is dropped quietly."""
        bus = EventBus()

        async def collect(event):
            raise AssertionError("should not run")

        bus.subscribe(collect)
        bus.publish(status_event())

    def test_event_to_dict(self):
        data = status_event(3, "done").to_dict()
        assert data["type"] == "task:status"
        assert data["task_id"] == 3
        assert data["payload"] == {"status": "done"}
        assert data["timestamp"]


class TestEventSubscription:
    """Tests for queue-backed subscriptions."""

    @pytest.mark.asyncio
    async def test_filters_by_task(self):
        bus = EventBus()
        subscription = bus.subscribe_queue(task_id=2)
        bus.publish(status_event(task_id=1))
        bus.publish(status_event(task_id=2))

        event = await subscription.get(timeout=0.1)
        assert event.task_id == 2
        assert await subscription.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_close_keeps_buffered_events(self):
        """Closing stops delivery but keeps what was queued."""
        bus = EventBus()
        subscription = bus.subscribe_queue()
        bus.publish(status_event(task_id=1))
        subscription.close()
        bus.publish(status_event(task_id=2))

        assert [e.task_id for e in subscription.drain()] == [1]
        assert bus.subscriber_count == 0
        assert subscription.closed


class TestEventPublishingStore:
    """Tests for the store decorator."""

    @pytest.fixture
    def events(self):
        return []

    @pytest.fixture
    def store(self, repository, events):
        bus = EventBus()
        bus.subscribe(events.append)
        return EventPublishingStore(repository, bus)

    def test_reads_publish_nothing(self, store, events):
        task = store.create_task("x", "/repo")
        store.get_task(task.id)
        store.list_tasks()
        store.list_pending("/repo")
        store.get_logs(task.id)
        store.update_attempt(task.id, 1, "ai/task-1-attempt-1", 3)
        assert events == []

    def test_status_change(self, store, events):
        task = store.create_task("x", "/repo")
        store.update_status(task.id, TaskStatus.CODING)
        assert len(events) == 1
        assert events[0].kind == EventKind.STATUS
        assert events[0].payload == {"status": "coding"}

    def test_error_publishes_error_event(self, store, events):
        task = store.create_task("x", "/repo")
        store.set_error(task.id, "boom")
        assert events[0].kind == EventKind.ERROR
        assert events[0].payload == {"status": "failed", "error": "boom"}

    def test_feedback_event(self, store, events):
        task = store.create_task("x", "/repo")
        store.set_feedback(task.id, "fix the bug")
        assert events[0].kind == EventKind.FEEDBACK
        assert events[0].payload["feedback"] == "fix the bug"

    def test_retry_reset_publishes_pending(self, store, events):
        task = store.create_task("x", "/repo")
        store.set_error(task.id, "boom")
        store.reset_for_retry(task.id)
        assert events[-1].kind == EventKind.STATUS
        assert events[-1].payload == {"status": "pending"}

    def test_log_event_carries_entry(self, store, events):
        task = store.create_task("x", "/repo")
        log = store.add_log(task.id, AgentRole.CODER, "generate", output_summary="2 files")
        assert events[0].kind == EventKind.LOG
        assert events[0].payload["id"] == log.id
        assert events[0].payload["action"] == "generate"

    def test_failed_write_publishes_nothing(self, store, events):
        with pytest.raises(TaskNotFoundError):
            store.update_status(999, TaskStatus.CODING)
        assert events == []
