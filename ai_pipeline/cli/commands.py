"""
AI Pipeline CLI - Typer Commands

Thin entry points over the pipeline runner and the task store.
"""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer

from ai_pipeline.agents.client import LLMClient
from ai_pipeline.agents.coder import CoderAgent
from ai_pipeline.agents.reviewer import ReviewerAgent
from ai_pipeline.cli.display import (
    console,
    print_event,
    show_task_detail,
    show_task_list,
    show_task_result,
)
from ai_pipeline.config import PipelineConfig, get_api_key, load_config
from ai_pipeline.exceptions import ConfigError, PipelineError
from ai_pipeline.orchestrator.events import EventBus, EventPublishingStore
from ai_pipeline.orchestrator.runner import PipelineOptions, PipelineRunner
from ai_pipeline.orchestrator.verification import VerificationGate
from ai_pipeline.persistence.models import Task
from ai_pipeline.persistence.repository import TaskRepository
from ai_pipeline.persistence.store import TaskStore
from ai_pipeline.state import TaskStatus


T = TypeVar("T")

app = typer.Typer(
    name="ai-pipeline",
    help="Propose, review, verify and merge code changes with AI agents",
    add_completion=False,
    no_args_is_help=True,
)


def build_client(config: PipelineConfig) -> LLMClient:
    """Chat client shared by the coder and reviewer."""
    return LLMClient(api_key=get_api_key(config), model=config.model, base_url=config.base_url)


def build_runner(store: TaskStore, config: PipelineConfig, client: LLMClient) -> PipelineRunner:
    """Wire the runner from configuration."""
    return PipelineRunner(
        store=store,
        generator=CoderAgent(client),
        reviewer=ReviewerAgent(client),
        verifier=VerificationGate(
            timeout=config.verify_timeout,
            lint_command=config.lint_command,
            test_command=config.test_command,
        ),
    )


def _settings(**overrides) -> PipelineConfig:
    try:
        return load_config().with_overrides(**overrides)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _options(config: PipelineConfig, repo: Path) -> PipelineOptions:
    return PipelineOptions(
        repo_path=str(repo),
        model=config.model,
        max_attempts=config.max_attempts,
        auto_merge=config.auto_merge,
    )


def _drive(
    config: PipelineConfig,
    action: Callable[[PipelineRunner], Awaitable[T]],
) -> T:
    """Open the store, wire a runner with live event output, run action to completion."""
    try:
        client = build_client(config)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    bus = EventBus()
    bus.subscribe(print_event)

    async def execute() -> T:
        try:
            return await action(runner)
        finally:
            await client.close()

    with TaskRepository(config.db_path) as repository:
        runner = build_runner(EventPublishingStore(repository, bus), config, client)
        try:
            return asyncio.run(execute())
        except PipelineError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)


def _exit_for(tasks: list[Task]) -> None:
    if any(task.status != TaskStatus.DONE for task in tasks):
        raise typer.Exit(1)


@app.command()
def run(
    description: str = typer.Argument(..., help="What the change should do"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Target git repository"),
    model: str = typer.Option(None, "--model", "-m", help="Model identifier"),
    max_attempts: int = typer.Option(None, "--max-attempts", "-n", help="Attempt ceiling"),
    auto_merge: bool = typer.Option(
        None, "--auto-merge/--no-auto-merge", help="Merge into the base branch when done"
    ),
) -> None:
    """Create a task and drive it to done or failed."""
    config = _settings(model=model, max_attempts=max_attempts, auto_merge=auto_merge)
    options = _options(config, repo)

    task = _drive(config, lambda runner: runner.run(description, options))
    show_task_result(task)
    _exit_for([task])


@app.command()
def add(
    description: str = typer.Argument(..., help="What the change should do"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Target git repository"),
    max_attempts: int = typer.Option(None, "--max-attempts", "-n", help="Attempt ceiling"),
) -> None:
    """Queue a task without running it."""
    config = _settings(max_attempts=max_attempts)
    if not description.strip():
        console.print("[bold red]Error:[/bold red] Task description must not be empty")
        raise typer.Exit(1)

    repo_path = str(repo.expanduser().resolve())
    with TaskRepository(config.db_path) as repository:
        task = repository.create_task(description.strip(), repo_path, config.max_attempts)
    console.print(f"[green]Queued task {task.id}[/green]: {task.title}")


@app.command()
def process(
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Target git repository"),
    limit: int = typer.Option(None, "--limit", "-l", help="Maximum tasks to run"),
    model: str = typer.Option(None, "--model", "-m", help="Model identifier"),
    max_attempts: int = typer.Option(None, "--max-attempts", "-n", help="Attempt ceiling"),
    auto_merge: bool = typer.Option(
        None, "--auto-merge/--no-auto-merge", help="Merge into the base branch when done"
    ),
) -> None:
    """Run queued tasks for a repository one after another."""
    config = _settings(model=model, max_attempts=max_attempts, auto_merge=auto_merge)
    options = _options(config, repo)

    async def process_queue(runner: PipelineRunner) -> list[Task]:
        finished = []
        for queued in runner.store.list_pending(options.repo_path, limit):
            console.print(f"\n[bold]Task {queued.id}[/bold]: {queued.title}")
            task = await runner.run_existing(queued.id, options)
            show_task_result(task)
            finished.append(task)
        return finished

    finished = _drive(config, process_queue)
    if not finished:
        console.print("[dim]No pending tasks.[/dim]")
        return

    done = sum(1 for task in finished if task.status == TaskStatus.DONE)
    console.print(f"\n[bold]{done}/{len(finished)} task(s) done[/bold]")
    _exit_for(finished)


@app.command()
def tasks(
    status: TaskStatus = typer.Option(None, "--status", "-s", help="Only tasks in this status"),
) -> None:
    """List tasks, newest first."""
    config = _settings()
    with TaskRepository(config.db_path) as repository:
        show_task_list(repository.list_tasks(status))


@app.command()
def show(task_id: int = typer.Argument(..., help="Task ID")) -> None:
    """Show a task and its agent log."""
    config = _settings()
    with TaskRepository(config.db_path) as repository:
        task = repository.get_task(task_id)
        if task is None:
            console.print(f"[bold red]Error:[/bold red] Task {task_id} not found")
            raise typer.Exit(1)
        show_task_detail(task, repository.get_logs(task_id))


@app.command()
def retry(
    task_id: int = typer.Argument(..., help="ID of a failed task"),
    model: str = typer.Option(None, "--model", "-m", help="Model identifier"),
    max_attempts: int = typer.Option(None, "--max-attempts", "-n", help="Attempt ceiling"),
    auto_merge: bool = typer.Option(
        None, "--auto-merge/--no-auto-merge", help="Merge into the base branch when done"
    ),
) -> None:
    """Re-run a failed task from its first attempt."""
    config = _settings(model=model, max_attempts=max_attempts, auto_merge=auto_merge)
    # The runner swaps in the task's own repository path
    options = _options(config, Path("."))

    task = _drive(config, lambda runner: runner.retry(task_id, options))
    show_task_result(task)
    _exit_for([task])


@app.command()
def serve(
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Default repository for new tasks"),
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8787, "--port", "-p", help="Bind port"),
) -> None:
    """Serve the HTTP API with a live event stream."""
    import uvicorn

    from ai_pipeline.server.app import create_app

    config = _settings()
    try:
        client = build_client(config)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    bus = EventBus()
    with TaskRepository(config.db_path) as repository:
        store = EventPublishingStore(repository, bus)
        runner = build_runner(store, config, client)
        api = create_app(
            store=store,
            runner=runner,
            bus=bus,
            config=config,
            default_repo=str(repo.expanduser().resolve()),
        )
        console.print(f"[green]Serving on http://{host}:{port}[/green]")
        uvicorn.run(api, host=host, port=port)
