"""HTTP API over the pipeline (FastAPI)."""

from ai_pipeline.server.app import create_app, format_sse

__all__ = ["create_app", "format_sse"]
