"""Repository context gathering for the coder prompt."""

from ai_pipeline.context.gatherer import (
    RepoContext,
    RepoContextProvider,
    format_context_for_prompt,
    gather_context,
)

__all__ = ["RepoContext", "RepoContextProvider", "format_context_for_prompt", "gather_context"]
