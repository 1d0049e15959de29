"""
Unit tests for the Celery configuration.
"""

from flask import Flask

from tmpfiles.config.celery_config import SWEEP_QUEUE, SWEEP_TASK_NAME, celery_settings, make_celery
from tmpfiles.config.storage_config import StorageConfig


class TestCelerySettings:

    def test_sweep_schedule_follows_cleanup_interval(self):
        settings = celery_settings(StorageConfig(cleanup_interval_minutes=15))

        entry = settings["beat_schedule"]["run-lifecycle-sweep"]
        assert entry["task"] == SWEEP_TASK_NAME
        assert entry["schedule"] == 900.0
        assert entry["options"] == {"expires": 900.0}
        assert settings["task_time_limit"] == 900
        assert settings["task_soft_time_limit"] == 870

    def test_sweep_is_routed_to_cleanup_queue(self):
        settings = celery_settings(StorageConfig())

        assert settings["task_routes"][SWEEP_TASK_NAME] == {"queue": SWEEP_QUEUE}
        assert SWEEP_QUEUE in {queue.name for queue in settings["task_queues"]}

    def test_short_interval_keeps_positive_soft_limit(self):
        settings = celery_settings(StorageConfig(cleanup_interval_minutes=1))

        assert settings["task_soft_time_limit"] == 30


class TestMakeCelery:

    def test_tasks_run_in_app_context(self):
        app = Flask("celery-test")
        celery = make_celery(app, StorageConfig())
        seen = []

        @celery.task
        def record_app_name():
            from flask import current_app
            seen.append(current_app.name)

        record_app_name()

        assert seen == ["celery-test"]
        assert celery.conf.task_serializer == "json"
