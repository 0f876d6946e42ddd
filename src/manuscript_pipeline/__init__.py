"""Durable multi-stage LLM analysis pipeline for book manuscripts."""

from manuscript_pipeline.version import __version__

__all__ = ["__version__"]
