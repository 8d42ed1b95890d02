#!/usr/bin/env python
"""
CLI management commands for SubTrack.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

import click

from subtrack.auth.context import SYSTEM_ACTOR
from subtrack.auth.permissions import Role
from subtrack.auth.user_service import UserService
from subtrack.billing.service import SubscriptionService
from subtrack.calendar.adapter import (
    day_start,
    format_display,
    from_display_string,
    local_date,
    month_length,
    to_display_string,
)
from subtrack.calendar.constants import NEPALI_MONTHS, DisplayStyle
from subtrack.db import create_all_tables_async, dispose_engine
from subtrack.exceptions import SubTrackError
from subtrack.logging import setup_logging
from subtrack.scheduler.models import RunSummary
from subtrack.scheduler.service import ReminderScheduler


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    create_tables: Callable[[], Awaitable[None]]
    scheduler_factory: Callable[[], ReminderScheduler]
    user_service_factory: Callable[[], UserService]
    dispose: Callable[[], Awaitable[None]]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        create_tables=create_all_tables_async,
        scheduler_factory=lambda: ReminderScheduler(SubscriptionService()),
        user_service_factory=UserService,
        dispose=dispose_engine,
    )


def _run(deps: CLIDependencies, coro: Awaitable[Any]) -> Any:
    async def _wrapped() -> Any:
        try:
            return await coro
        finally:
            await deps.dispose()

    return asyncio.run(_wrapped())


def _echo_summary(summary: RunSummary) -> None:
    if summary.skipped:
        click.echo("Another run is in progress; skipped.")
        return
    click.echo(f"Reminders sent: {summary.reminders_sent}")
    click.echo(f"Subscribers deactivated: {summary.deactivated_count}")
    for result in summary.dispatch_results:
        status = "ok" if result.success else f"failed ({result.error})"
        click.echo(f"  {result.channel.value}: {status}")
    if summary.errors:
        click.echo(f"Errors ({len(summary.errors)}):")
        for error in summary.errors:
            target = f" [{error.subscriber_id}]" if error.subscriber_id else ""
            click.echo(f"  {error.stage}{target}: {error.message}")


@click.group()
def cli() -> None:
    """SubTrack subscription management CLI."""
    setup_logging()


@cli.command("init-db")
def init_db() -> None:
    """Create all database tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    _run(deps, deps.create_tables())
    click.echo("Database initialized successfully!")


@cli.command("run-daily-pass")
@click.option("--json", "as_json", is_flag=True, help="Print the run summary as JSON")
def run_daily_pass(as_json: bool) -> None:
    """Run the reminder and grace-period pass now."""
    deps = _get_cli_dependencies()
    summary: RunSummary = _run(deps, deps.scheduler_factory().run_daily_pass())

    if as_json:
        click.echo(json.dumps(summary.model_dump(mode="json"), indent=2))
    else:
        _echo_summary(summary)

    if summary.errors:
        raise SystemExit(1)


@cli.command("create-user")
@click.option("--email", prompt=True, help="Operator e-mail")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role]),
    default=Role.SUPER_ADMIN.value,
    show_default=True,
    help="Operator role",
)
@click.option("--full-name", default=None, help="Display name")
def create_user(email: str, role: str, full_name: str | None) -> None:
    """Create an operator account (bootstrap; runs as the system actor)."""
    deps = _get_cli_dependencies()
    try:
        user = _run(
            deps, deps.user_service_factory().create_user(SYSTEM_ACTOR, email, role, full_name)
        )
    except SubTrackError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"Created {user.role} user {user.email} ({user.id})")


@cli.command("bs-date")
@click.argument("value")
@click.option(
    "--to-gregorian",
    is_flag=True,
    help="Read VALUE as a Bikram Sambat date and print the Gregorian date",
)
def bs_date(value: str, to_gregorian: bool) -> None:
    """Convert a Gregorian YYYY-MM-DD date to Bikram Sambat (or back)."""
    try:
        if to_gregorian:
            instant = from_display_string(value)
            click.echo(local_date(instant).isoformat())
        else:
            instant = day_start(date.fromisoformat(value))
            click.echo(f"{to_display_string(instant)} ({format_display(instant, DisplayStyle.FULL)})")
    except SubTrackError as e:
        raise click.ClickException(e.message) from e
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@cli.command("month-lengths")
@click.argument("year", type=int)
def month_lengths(year: int) -> None:
    """Print the length of every month of a Bikram Sambat year."""
    try:
        for index, name in enumerate(NEPALI_MONTHS):
            click.echo(f"{index + 1:2d} {name:<8} {month_length(year, index)}")
    except SubTrackError as e:
        raise click.ClickException(e.message) from e


if __name__ == "__main__":
    cli()
