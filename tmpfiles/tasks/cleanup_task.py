"""
Cleanup Task

Celery beat task running one lifecycle sweep: expired records are deleted
with their bytes, then orphaned objects are reconciled.
"""

import logging

from celery import shared_task
from flask import current_app

from tmpfiles.application.lifecycle_sweeper import LifecycleSweeper
from tmpfiles.config.celery_config import SWEEP_TASK_NAME

logger = logging.getLogger(__name__)


@shared_task(name=SWEEP_TASK_NAME)
def run_lifecycle_sweep():
    """
    Periodic lifecycle sweep.

    Runs every ``CLEANUP_INTERVAL_MIN`` minutes (Celery beat schedule) inside
    the Flask app context set up by make_celery().

    Returns:
        dict: Sweep summary, or ``{"skipped": True}`` if a sweep is already running
    """
    sweeper = current_app.container.resolve(LifecycleSweeper)
    summary = sweeper.run()
    if summary is None:
        return {"skipped": True}

    if summary.errors:
        logger.warning(f"Lifecycle sweep finished with {len(summary.errors)} errors")
    return summary.to_dict()
