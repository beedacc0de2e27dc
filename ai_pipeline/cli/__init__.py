"""
AI Pipeline CLI components.

- commands.py: Typer entry points (run, add, process, tasks, show, retry, serve)
- display.py: Rich rendering of tasks, logs and live events
"""

from ai_pipeline.cli.commands import app

__all__ = ["app"]
