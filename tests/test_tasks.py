"""Tests for the Celery task and beat registration."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from subtrack import tasks
from subtrack.celery_app import celery_app, setup_periodic_tasks
from subtrack.scheduler.models import RunSummary

pytestmark = pytest.mark.unit


class TestRunDailyPassTask:
    def test_returns_json_summary_and_disposes_engine(self, monkeypatch):
        scheduler = MagicMock()
        scheduler.run_daily_pass = AsyncMock(
            return_value=RunSummary(
                ran_at=datetime(2025, 6, 15, 6, 0, tzinfo=UTC),
                reminders_sent=4,
                deactivated_count=2,
            )
        )
        dispose = AsyncMock()
        monkeypatch.setattr(tasks, "build_scheduler", lambda: scheduler)
        monkeypatch.setattr(tasks, "dispose_engine", dispose)

        result = tasks.run_daily_pass_task()

        assert result["reminders_sent"] == 4
        assert result["deactivated_count"] == 2
        assert result["ran_at"].startswith("2025-06-15T06:00:00")
        dispose.assert_awaited_once()

    def test_engine_disposed_when_the_pass_raises(self, monkeypatch):
        scheduler = MagicMock()
        scheduler.run_daily_pass = AsyncMock(side_effect=RuntimeError("boom"))
        dispose = AsyncMock()
        monkeypatch.setattr(tasks, "build_scheduler", lambda: scheduler)
        monkeypatch.setattr(tasks, "dispose_engine", dispose)

        with pytest.raises(RuntimeError):
            tasks.run_daily_pass_task()
        dispose.assert_awaited_once()

    def test_task_is_registered(self):
        assert "subtrack.scheduler.run_daily_pass" in celery_app.tasks


class TestBeatSchedule:
    def test_daily_entry_registered(self):
        sender = MagicMock()
        setup_periodic_tasks(sender=sender)

        sender.add_periodic_task.assert_called_once()
        schedule, signature = sender.add_periodic_task.call_args.args
        assert sender.add_periodic_task.call_args.kwargs["name"] == "scheduler-run-daily-pass"
        assert signature.task == "subtrack.scheduler.run_daily_pass"
        assert schedule.hour == {6}
        assert schedule.minute == {0}
