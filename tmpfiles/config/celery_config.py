"""
Celery Configuration

Celery app bound to the Flask app context, with a Redis broker and the
periodic lifecycle sweep on its own queue.
"""

import os
from typing import Any, Dict, Optional

from celery import Celery
from kombu import Queue

from tmpfiles.config.storage_config import StorageConfig, env_int

SWEEP_TASK_NAME = "tmpfiles.tasks.run_lifecycle_sweep"
SWEEP_QUEUE = "cleanup_queue"


def celery_settings(storage_config: StorageConfig) -> Dict[str, Any]:
    """
    Celery settings for the given storage configuration.

    A sweep is allowed to run for at most one cleanup interval; beat entries
    that were not picked up within an interval expire instead of piling up
    behind a slow worker.
    """
    interval = storage_config.cleanup_interval_minutes * 60
    return {
        "broker_url": os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        "result_backend": os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
        "result_expires": interval,
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "enable_utc": True,
        "worker_prefetch_multiplier": 1,
        "worker_max_tasks_per_child": env_int("CELERY_MAX_TASKS_PER_CHILD", 100),
        "task_default_queue": "default",
        "task_queues": (
            Queue("default", routing_key="default"),
            Queue(SWEEP_QUEUE, routing_key="cleanup"),
        ),
        "task_routes": {SWEEP_TASK_NAME: {"queue": SWEEP_QUEUE}},
        "task_soft_time_limit": max(interval - 30, 30),
        "task_time_limit": interval,
        "beat_schedule": {
            "run-lifecycle-sweep": {
                "task": SWEEP_TASK_NAME,
                "schedule": float(interval),
                "options": {"expires": float(interval)},
            },
        },
    }


def make_celery(app, storage_config: Optional[StorageConfig] = None) -> Celery:
    """
    Create the Celery instance for a Flask app.

    Args:
        app: Flask application instance
        storage_config: Drives the sweep schedule and limits; read from the
            environment when None

    Returns:
        Celery instance whose tasks run inside ``app.app_context()``
    """
    settings = celery_settings(storage_config or StorageConfig.from_env())
    celery = Celery(app.import_name)
    celery.conf.update(settings)

    class ContextTask(celery.Task):
        """Make celery tasks work with Flask app context."""

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = ContextTask
    return celery
