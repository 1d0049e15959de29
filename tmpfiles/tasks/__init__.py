"""Celery tasks."""

from .cleanup_task import run_lifecycle_sweep

__all__ = ["run_lifecycle_sweep"]
