"""
HTTP API
========
FastAPI front end over the task store and the pipeline runner.

Runs are fire-and-forget: the request validates the task, schedules the
run as a background task and returns 202. Progress is observable through
the task endpoints or the Server-Sent Events stream at /api/events.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ai_pipeline import __version__
from ai_pipeline.config import PipelineConfig
from ai_pipeline.exceptions import PipelineError
from ai_pipeline.orchestrator.events import EventBus, EventSubscription, TaskEvent
from ai_pipeline.orchestrator.runner import PipelineOptions, PipelineRunner
from ai_pipeline.persistence.models import Task
from ai_pipeline.persistence.store import TaskStore
from ai_pipeline.state import TaskStatus

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0

router = APIRouter(prefix="/api", tags=["tasks"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateTaskRequest(BaseModel):
    """Request body for queueing a task."""
    description: str
    repo_path: Optional[str] = None
    max_attempts: Optional[int] = None


# =============================================================================
# RUN COORDINATION
# =============================================================================

@dataclass
class ServerState:
    store: TaskStore
    runner: PipelineRunner
    bus: EventBus
    config: PipelineConfig
    coordinator: "RunCoordinator"
    default_repo: Optional[str] = None


class RunCoordinator:
    """
    Serializes runs per repository.

    Two runs against the same working tree would race on checkouts, so
    each repository gets one lock; different repositories run concurrently.
    """

    def __init__(self, runner: PipelineRunner, config: PipelineConfig):
        self.runner = runner
        self.config = config
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, repo_path: str) -> asyncio.Lock:
        if repo_path not in self._locks:
            self._locks[repo_path] = asyncio.Lock()
        return self._locks[repo_path]

    def options_for(self, task: Task) -> PipelineOptions:
        return PipelineOptions(
            repo_path=task.repo_path,
            model=self.config.model,
            max_attempts=task.max_attempts,
            auto_merge=self.config.auto_merge,
        )

    async def run(self, task: Task) -> None:
        async with self.lock_for(task.repo_path):
            await self._guarded(self.runner.run_existing, task)

    async def retry(self, task: Task) -> None:
        async with self.lock_for(task.repo_path):
            await self._guarded(self.runner.retry, task)

    async def process(self, tasks: list[Task]) -> None:
        for task in tasks:
            await self.run(task)

    async def _guarded(self, action, task: Task) -> None:
        try:
            result = await action(task.id, self.options_for(task))
            logger.info(f"Task {task.id} finished as {result.status.value}")
        except PipelineError as e:
            logger.error(f"Task {task.id} could not run: {e}")
        except Exception as e:
            logger.error(f"Task {task.id} crashed: {type(e).__name__}: {e}", exc_info=True)


def _state(request: Request) -> ServerState:
    return request.app.state.pipeline


def _get_task_or_404(state: ServerState, task_id: int) -> Task:
    task = state.store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


# =============================================================================
# EVENT STREAM
# =============================================================================

def format_sse(event: TaskEvent) -> str:
    """Encode an event as one Server-Sent Events message."""
    return f"event: {event.kind.value}\ndata: {json.dumps(event.to_dict())}\n\n"


async def event_stream(
    subscription: EventSubscription,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE messages until the consumer stops iterating."""
    try:
        while True:
            event = await subscription.get(timeout=keepalive)
            if event is None:
                yield ": keepalive\n\n"
            else:
                yield format_sse(event)
    finally:
        subscription.close()


# =============================================================================
# ROUTES
# =============================================================================

@router.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@router.get("/tasks")
async def list_tasks(request: Request, status: Optional[TaskStatus] = None):
    """All tasks, newest first, optionally filtered by status."""
    return [task.to_dict() for task in _state(request).store.list_tasks(status)]


@router.post("/tasks", status_code=201)
async def create_task(request: Request, body: CreateTaskRequest):
    """Queue a task without running it."""
    state = _state(request)
    if not body.description.strip():
        raise HTTPException(status_code=400, detail="Task description must not be empty")

    repo_path = body.repo_path or state.default_repo
    if not repo_path:
        raise HTTPException(status_code=400, detail="repo_path is required")

    max_attempts = state.config.max_attempts if body.max_attempts is None else body.max_attempts
    if max_attempts < 1:
        raise HTTPException(status_code=400, detail="max_attempts must be a positive integer")

    options = PipelineOptions(repo_path=repo_path, max_attempts=max_attempts)
    task = state.store.create_task(body.description.strip(), options.repo_path, max_attempts)
    logger.info(f"Queued task {task.id} via API")
    return task.to_dict()


@router.post("/tasks/process", status_code=202)
async def process_tasks(
    request: Request,
    background_tasks: BackgroundTasks,
    limit: Optional[int] = None,
    repo_path: Optional[str] = None,
):
    """Run pending tasks one after another in the background."""
    state = _state(request)
    if repo_path:
        repo_path = str(Path(repo_path).expanduser().resolve())
    queued = state.store.list_pending(repo_path or state.default_repo, limit)
    if queued:
        background_tasks.add_task(state.coordinator.process, queued)
    return {"queued": [task.id for task in queued]}


@router.get("/tasks/{task_id}")
async def get_task(request: Request, task_id: int):
    return _get_task_or_404(_state(request), task_id).to_dict()


@router.get("/tasks/{task_id}/logs")
async def get_task_logs(request: Request, task_id: int):
    """Agent log entries in the order they were written."""
    state = _state(request)
    _get_task_or_404(state, task_id)
    return [log.to_dict() for log in state.store.get_logs(task_id)]


@router.post("/tasks/{task_id}/run", status_code=202)
async def run_task(request: Request, task_id: int, background_tasks: BackgroundTasks):
    """Start a pending task."""
    state = _state(request)
    task = _get_task_or_404(state, task_id)
    if task.status != TaskStatus.PENDING:
        raise HTTPException(
            status_code=409,
            detail=f"Task {task_id} is {task.status.value}; only pending tasks can be run",
        )
    background_tasks.add_task(state.coordinator.run, task)
    return {"task_id": task_id, "status": "accepted"}


@router.post("/tasks/{task_id}/retry", status_code=202)
async def retry_task(request: Request, task_id: int, background_tasks: BackgroundTasks):
    """Re-run a failed task from its first attempt."""
    state = _state(request)
    task = _get_task_or_404(state, task_id)
    if task.status != TaskStatus.FAILED:
        raise HTTPException(
            status_code=409,
            detail=f"Task {task_id} is {task.status.value}; only failed tasks can be retried",
        )
    background_tasks.add_task(state.coordinator.retry, task)
    return {"task_id": task_id, "status": "accepted"}


@router.get("/events")
async def stream_events(request: Request, task_id: Optional[int] = None):
    """Server-Sent Events stream of task notifications."""
    subscription = _state(request).bus.subscribe_queue(task_id)
    return StreamingResponse(
        event_stream(subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    store: TaskStore,
    runner: PipelineRunner,
    bus: EventBus,
    config: PipelineConfig,
    default_repo: Optional[str] = None,
) -> FastAPI:
    """Build the API around an already-wired store, runner and bus."""
    app = FastAPI(title="AI Pipeline", version=__version__)
    app.state.pipeline = ServerState(
        store=store,
        runner=runner,
        bus=bus,
        config=config,
        coordinator=RunCoordinator(runner, config),
        default_repo=default_repo,
    )
    app.include_router(router)
    return app
