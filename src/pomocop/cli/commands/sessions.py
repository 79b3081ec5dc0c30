"""Stored session management commands."""

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import click
import typer

from pomocop.cli.console import (
    confirm_or_cancel,
    console,
    create_table,
    dim,
    error,
    format_duration,
    success,
    warning,
)
from pomocop.config import PomocopConfig
from pomocop.db import Database, SessionSnapshot
from pomocop.pomo import RecoveryCorruptError, Session, SqlSessionStore


def register(app: typer.Typer) -> None:
    """Register the sessions command."""

    @app.command()
    def sessions(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: list, clear"),
        ] = None,
        channel: Annotated[
            str | None,
            typer.Option(
                "--channel",
                help="Channel ID for clear",
            ),
        ] = None,
        all_channels: Annotated[
            bool,
            typer.Option(
                "--all",
                help="Clear every stored session",
            ),
        ] = False,
        force: Annotated[
            bool,
            typer.Option(
                "--force",
                "-f",
                help="Force action without confirmation",
            ),
        ] = False,
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Inspect and clear persisted pomodoro sessions.

        Sessions are the snapshots a running bot recovers on restart. Clearing
        one here does not notify anybody; a running bot keeps its in-memory
        timer until it restarts.

        Examples:
            pomocop sessions list                  # List stored sessions
            pomocop sessions clear --channel 1234  # Clear one channel
            pomocop sessions clear --all           # Clear every channel
        """
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from pomocop.config import load_config
        from pomocop.logging import setup_logging

        config = load_config(config_path)
        cli_level = (click.get_current_context().obj or {}).get("log_level")
        setup_logging(config.logging, level=cli_level, use_rich=True)

        if action == "list":
            asyncio.run(_sessions_list(config))

        elif action == "clear":
            if channel is None and not all_channels:
                error("--channel or --all is required for clear")
                raise typer.Exit(1)
            if channel is not None and all_channels:
                error("--channel and --all are mutually exclusive")
                raise typer.Exit(1)
            _sessions_clear(config, channel, force)

        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: list, clear")
            raise typer.Exit(1)


async def _open_store(config: PomocopConfig) -> SqlSessionStore:
    database = Database(database_path=config.store.database_path)
    await database.connect()
    store = SqlSessionStore(database)
    await store.initialize()
    return store


async def _sessions_list(config: PomocopConfig) -> None:
    """List stored sessions without modifying them."""
    from sqlalchemy import select

    store = await _open_store(config)
    try:
        async with store.database.session() as db:
            rows = (
                await db.scalars(
                    select(SessionSnapshot).order_by(SessionSnapshot.channel_id)
                )
            ).all()
    finally:
        await store.database.disconnect()

    if not rows:
        warning("No stored sessions found")
        return

    now = datetime.now(UTC)
    table = create_table(
        "Stored Sessions",
        [
            ("Channel", "cyan"),
            ("ID", "dim"),
            ("Phase", ""),
            ("Remaining", ""),
            ("Subscribers", {"justify": "right"}),
        ],
    )
    for row in rows:
        try:
            session = Session.from_json(row.snapshot, channel_id=row.channel_id)
        except RecoveryCorruptError:
            table.add_row(
                row.channel_id, row.session_id, "[red]corrupt[/red]", "-", "-"
            )
            continue

        if not session.is_running:
            remaining = "[dim]stopped[/dim]"
        elif session.deadline <= now:
            remaining = "[yellow]overdue[/yellow]"
        else:
            remaining = format_duration(session.remaining(now))
        table.add_row(
            row.channel_id,
            session.id,
            str(session.phase),
            remaining,
            str(len(session.subscribers)),
        )

    console.print(table)
    dim(f"Total: {len(rows)} session(s)")


def _sessions_clear(config: PomocopConfig, channel: str | None, force: bool) -> None:
    """Delete one channel's snapshot or all of them."""
    target = f"the session for channel {channel}" if channel else "all sessions"
    if not confirm_or_cancel(f"This will delete {target}. Continue?", force):
        return

    async def do_clear() -> int:
        store = await _open_store(config)
        try:
            if channel is not None:
                return int(await store.delete(channel))
            return await store.clear_all()
        finally:
            await store.database.disconnect()

    count = asyncio.run(do_clear())
    if count == 0:
        warning("No stored sessions to clear")
        return
    success(f"Cleared {count} session(s)")
