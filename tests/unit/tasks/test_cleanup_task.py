"""
Unit tests for the lifecycle sweep Celery task.
"""

from unittest.mock import MagicMock

import pytest
from flask import Flask

from tmpfiles.application.dependency_container import DependencyContainer
from tmpfiles.application.lifecycle_sweeper import LifecycleSweeper, SweepSummary
from tmpfiles.tasks.cleanup_task import run_lifecycle_sweep


@pytest.fixture
def sweeper():
    return MagicMock(spec=LifecycleSweeper)


@pytest.fixture
def app(sweeper):
    app = Flask(__name__)
    container = DependencyContainer()
    container.register_instance(LifecycleSweeper, sweeper)
    app.container = container
    return app


class TestRunLifecycleSweep:

    def test_returns_summary_dict(self, app, sweeper):
        sweeper.run.return_value = SweepSummary(expired_found=3, expired_processed=3, deleted=3)

        with app.app_context():
            result = run_lifecycle_sweep.run()

        assert result["deleted"] == 3
        assert result["errors"] == []
        sweeper.run.assert_called_once_with()

    def test_reports_skip_when_already_running(self, app, sweeper):
        sweeper.run.return_value = None

        with app.app_context():
            assert run_lifecycle_sweep.run() == {"skipped": True}

    def test_errors_are_returned(self, app, sweeper, caplog):
        sweeper.run.return_value = SweepSummary(
            expired_found=1, expired_processed=1, failed=1,
            errors=["Failed to delete expired file abc: boom"],
        )

        with app.app_context():
            result = run_lifecycle_sweep.run()

        assert result["failed"] == 1
        assert result["errors"] == ["Failed to delete expired file abc: boom"]
        assert "1 errors" in caplog.text

    def test_task_name(self):
        assert run_lifecycle_sweep.name == "tmpfiles.tasks.run_lifecycle_sweep"
