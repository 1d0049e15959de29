"""
Celery entry point for workers and beat.

    celery -A tmpfiles.celery_app worker -Q default,cleanup_queue
    celery -A tmpfiles.celery_app beat

Importing this module builds the Flask app, so worker processes resolve the
same storage services (through ``app.container``) as the web processes.
"""

from tmpfiles.app_factory import create_app

flask_app = create_app()

if flask_app.celery is None:
    raise RuntimeError("Celery could not be configured; see the log for the cause")

celery_app = flask_app.celery
celery_app.conf.imports = ("tmpfiles.tasks.cleanup_task",)
