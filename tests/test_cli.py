"""Tests for the management CLI."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from subtrack import cli as cli_module
from subtrack.cli import CLIDependencies, cli
from subtrack.communications.models import DispatchResult, NotificationChannel
from subtrack.exceptions import ValidationError
from subtrack.scheduler.models import RunError, RunSummary

pytestmark = pytest.mark.unit

RAN_AT = datetime(2025, 6, 15, 6, 0, tzinfo=UTC)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def deps(monkeypatch) -> CLIDependencies:
    scheduler = MagicMock()
    scheduler.run_daily_pass = AsyncMock(
        return_value=RunSummary(ran_at=RAN_AT, reminders_sent=3, deactivated_count=1)
    )
    user_service = MagicMock()
    user_service.create_user = AsyncMock()
    bundle = CLIDependencies(
        create_tables=AsyncMock(),
        scheduler_factory=lambda: scheduler,
        user_service_factory=lambda: user_service,
        dispose=AsyncMock(),
    )
    bundle.scheduler = scheduler  # type: ignore[attr-defined]
    bundle.user_service = user_service  # type: ignore[attr-defined]
    monkeypatch.setattr(cli_module, "_get_cli_dependencies", lambda: bundle)
    return bundle


class TestInitDb:
    def test_creates_tables_and_disposes(self, runner, deps):
        result = runner.invoke(cli, ["init-db"])
        assert result.exit_code == 0, result.output
        assert "Database initialized successfully!" in result.output
        deps.create_tables.assert_awaited_once()
        deps.dispose.assert_awaited_once()


class TestRunDailyPass:
    def test_text_summary(self, runner, deps):
        deps.scheduler.run_daily_pass.return_value.dispatch_results.append(
            DispatchResult(channel=NotificationChannel.EMAIL, success=True)
        )
        result = runner.invoke(cli, ["run-daily-pass"])
        assert result.exit_code == 0, result.output
        assert "Reminders sent: 3" in result.output
        assert "Subscribers deactivated: 1" in result.output
        assert "email: ok" in result.output

    def test_json_summary(self, runner, deps):
        result = runner.invoke(cli, ["run-daily-pass", "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["reminders_sent"] == 3
        assert payload["skipped"] is False

    def test_errors_exit_non_zero(self, runner, deps):
        deps.scheduler.run_daily_pass.return_value = RunSummary(
            ran_at=RAN_AT,
            errors=[RunError(stage="deactivate", message="disk full", subscriber_id="s1")],
        )
        result = runner.invoke(cli, ["run-daily-pass"])
        assert result.exit_code == 1
        assert "deactivate [s1]: disk full" in result.output

    def test_skipped(self, runner, deps):
        deps.scheduler.run_daily_pass.return_value = RunSummary(ran_at=RAN_AT, skipped=True)
        result = runner.invoke(cli, ["run-daily-pass"])
        assert result.exit_code == 0
        assert "Another run is in progress; skipped." in result.output


class TestCreateUser:
    def test_creates_operator(self, runner, deps):
        user = MagicMock(id="u1", email="owner@example.com", role="super_admin")
        deps.user_service.create_user.return_value = user

        result = runner.invoke(cli, ["create-user", "--email", "owner@example.com"])

        assert result.exit_code == 0, result.output
        assert "Created super_admin user owner@example.com (u1)" in result.output
        actor, email, role, full_name = deps.user_service.create_user.await_args.args
        assert actor.is_system
        assert (email, role, full_name) == ("owner@example.com", "super_admin", None)

    def test_validation_error_is_reported(self, runner, deps):
        deps.user_service.create_user.side_effect = ValidationError("Email already registered")
        result = runner.invoke(
            cli, ["create-user", "--email", "owner@example.com", "--role", "staff"]
        )
        assert result.exit_code == 1
        assert "Email already registered" in result.output

    def test_rejects_unknown_role(self, runner, deps):
        result = runner.invoke(cli, ["create-user", "--email", "x@example.com", "--role", "root"])
        assert result.exit_code == 2


class TestCalendarCommands:
    def test_gregorian_to_bikram_sambat(self, runner):
        result = runner.invoke(cli, ["bs-date", "2025-04-14"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "2082-01-01 (Baisakh 1, 2082 B.S.)"

    def test_bikram_sambat_to_gregorian(self, runner):
        result = runner.invoke(cli, ["bs-date", "--to-gregorian", "2082-01-01"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "2025-04-14"

    def test_invalid_input(self, runner):
        result = runner.invoke(cli, ["bs-date", "not-a-date"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_month_lengths(self, runner):
        result = runner.invoke(cli, ["month-lengths", "2082"])
        assert result.exit_code == 0, result.output
        lines = result.output.strip().splitlines()
        assert len(lines) == 12
        assert lines[0].split()[1] == "Baisakh"
        assert all(29 <= int(line.split()[-1]) <= 32 for line in lines)
