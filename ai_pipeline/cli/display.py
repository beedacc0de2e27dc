"""
AI Pipeline CLI - Display helpers

Rich rendering of tasks, agent logs and live pipeline events.
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ai_pipeline.orchestrator.events import EventKind, TaskEvent
from ai_pipeline.persistence.models import Task, TaskLog
from ai_pipeline.state import TaskStatus

console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.CODING: "cyan",
    TaskStatus.REVIEWING: "magenta",
    TaskStatus.TESTING: "yellow",
    TaskStatus.DONE: "green",
    TaskStatus.FAILED: "red",
}


def styled_status(status: TaskStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def print_event(event: TaskEvent) -> None:
    """Bus subscriber that prints live progress."""
    prefix = f"[dim]task {event.task_id}[/dim]"
    payload = event.payload

    if event.kind == EventKind.STATUS:
        console.print(f"{prefix} -> {styled_status(TaskStatus(payload['status']))}")
    elif event.kind == EventKind.LOG:
        summary = (payload.get("output_summary") or "").splitlines()
        first_line = summary[0] if summary else ""
        console.print(f"{prefix} [bold]{payload['agent']}[/bold] {payload['action']}: {first_line}")
    elif event.kind == EventKind.FEEDBACK:
        console.print(f"{prefix} [yellow]feedback recorded for next attempt[/yellow]")
    elif event.kind == EventKind.ERROR:
        console.print(f"{prefix} [red]error:[/red] {payload.get('error', '')}")


def show_task_list(tasks: list[Task]) -> None:
    if not tasks:
        console.print("[dim]No tasks found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Status")
    table.add_column("Attempt", justify="right")
    table.add_column("Title")
    table.add_column("Branch", style="dim")
    table.add_column("Updated", style="dim")

    for task in tasks:
        table.add_row(
            str(task.id),
            styled_status(task.status),
            f"{task.attempt}/{task.max_attempts}",
            task.title,
            task.branch_name or "-",
            (task.updated_at or "")[:16],
        )
    console.print(table)


def show_task_detail(task: Task, logs: list[TaskLog]) -> None:
    lines = [
        f"[bold]Status:[/bold] {styled_status(task.status)}",
        f"[bold]Repository:[/bold] {task.repo_path}",
        f"[bold]Attempt:[/bold] {task.attempt}/{task.max_attempts}",
        f"[bold]Branch:[/bold] {task.branch_name or '-'}",
        "",
        task.description,
    ]
    if task.error_message:
        lines += ["", f"[red]Error:[/red] {task.error_message}"]
    if task.feedback:
        lines += ["", "[yellow]Last feedback:[/yellow]", task.feedback]

    console.print(Panel("\n".join(lines), title=f"Task {task.id}: {task.title}", border_style="blue"))

    if not logs:
        return

    table = Table(show_header=True, header_style="bold", title="Agent log")
    table.add_column("Time", style="dim")
    table.add_column("Agent", style="cyan")
    table.add_column("Action")
    table.add_column("Output")
    table.add_column("Tokens", justify="right")
    table.add_column("ms", justify="right")

    for log in logs:
        table.add_row(
            log.created_at[11:19],
            log.agent.value,
            log.action,
            log.output_summary.splitlines()[0] if log.output_summary else "",
            str(log.tokens_used),
            str(log.duration_ms),
        )
    console.print(table)


def show_task_result(task: Task) -> None:
    if task.status == TaskStatus.DONE:
        console.print(
            f"[bold green]Task {task.id} done[/bold green] "
            f"after {task.attempt} attempt(s) on [cyan]{task.branch_name}[/cyan]"
        )
    else:
        console.print(
            f"[bold red]Task {task.id} {task.status.value}[/bold red]: {task.error_message or ''}"
        )
