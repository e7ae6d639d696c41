"""
CLI command for running versioned database migrations outside a manifest.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from stackpilot.cli.ux import console, error, print_table, success
from stackpilot.config import get_settings
from stackpilot.core.errors import ExitCode, main_with_error_handling
from stackpilot.migrations import MigrationInfo, MigrationReport, MigrationRunner, SqlDatabase, load_migrations
from stackpilot.migrations.models import MigrationState
from stackpilot.state import open_state_store

STATE_STYLES = {
    MigrationState.APPLIED: "[green]applied[/green]",
    MigrationState.PENDING: "[cyan]pending[/cyan]",
    MigrationState.IGNORED: "[yellow]ignored[/yellow]",
    MigrationState.MISSING: "[red]missing[/red]",
}


async def _run(location: str, database_url: str, show_info: bool) -> Any:
    settings = get_settings()
    migrations = await load_migrations(location, region=settings.aws_region)
    store = await open_state_store(settings)
    database = SqlDatabase(database_url)
    try:
        runner = MigrationRunner(store, database)
        if show_info:
            return await runner.info(migrations)
        return await runner.run(migrations)
    finally:
        await database.close()
        await store.close()


def print_info(entries: list[MigrationInfo]) -> None:
    rows = [
        [entry.version, entry.description, STATE_STYLES[entry.state], entry.checksum[:12]]
        for entry in entries
    ]
    print_table("Migrations", ["Version", "Description", "State", "Checksum"], rows)


def print_report(report: MigrationReport) -> None:
    for version in report.applied:
        console.print(f"  [green]✓[/green] {version}")
    if report.ignored:
        console.print(f"  [yellow]Ignored (below current version):[/yellow] {', '.join(report.ignored)}")
    if report.success:
        success(f"Schema at version {report.current_version or 'none'} ({len(report.applied)} applied)")
    else:
        error(f"Migration {report.failed} failed: {report.error}")


@main_with_error_handling()
def migrate_command(
    location: str,
    database_url: str,
    show_info: bool = False,
    output_format: str = "text",
) -> int:
    """
    Apply pending migrations from a directory or ``s3://`` prefix.

    Returns:
        Exit code (0 success, 11 when a migration failed, 13 on checksum conflict)
    """
    result = asyncio.run(_run(location, database_url, show_info))

    if show_info:
        if output_format == "json":
            print(
                json.dumps(
                    [
                        {
                            "version": e.version,
                            "description": e.description,
                            "state": e.state.value,
                            "checksum": e.checksum,
                        }
                        for e in result
                    ],
                    indent=2,
                )
            )
        else:
            print_info(result)
        return ExitCode.SUCCESS

    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_report(result)
    return ExitCode.SUCCESS if result.success else ExitCode.PROVIDER_ERROR
