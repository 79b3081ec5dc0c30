"""Configuration management commands."""

from pathlib import Path
from typing import Annotated

import click
import typer

from pomocop.cli.console import console, create_table, dim, error, success


def register(app: typer.Typer) -> None:
    """Register the config command."""

    @app.command()
    def config(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: show, validate"),
        ] = None,
        path: Annotated[
            Path | None,
            typer.Option(
                "--path",
                "-p",
                help="Path to config file (default: $POMOCOP_HOME/config.toml)",
            ),
        ] = None,
    ) -> None:
        """Manage configuration."""
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from pydantic import ValidationError
        from rich.syntax import Syntax

        from pomocop.config import ConfigError, load_config
        from pomocop.config.paths import get_config_path

        expanded_path = path.expanduser() if path else get_config_path()

        if action == "show":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                dim("Built-in defaults are in effect")
                raise typer.Exit(1)

            content = expanded_path.read_text()
            syntax = Syntax(content, "toml", theme="monokai", line_numbers=True)
            console.print(f"[bold]Config file: {expanded_path}[/bold]\n")
            console.print(syntax)

        elif action == "validate":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            try:
                config_obj = load_config(expanded_path)
            except ValidationError as e:
                error("Configuration validation failed:")
                console.print()
                for err in e.errors():
                    loc = ".".join(str(x) for x in err["loc"])
                    console.print(f"  [yellow]{loc}[/yellow]: {err['msg']}")
                raise typer.Exit(1) from None
            except ConfigError as e:
                error(str(e))
                raise typer.Exit(1) from None

            phases = config_obj.phases
            retry = config_obj.scheduler.retry
            table = create_table(
                "Configuration Summary",
                [("Setting", "cyan"), ("Value", "green")],
            )
            table.add_row("Work", f"{phases.work_minutes:g} min")
            table.add_row("Short break", f"{phases.short_break_minutes:g} min")
            table.add_row("Long break", f"{phases.long_break_minutes:g} min")
            table.add_row("Long break every", f"{phases.cycle_length} work phases")
            table.add_row("Database", str(config_obj.store.database_path))
            table.add_row(
                "Notify timeout", f"{config_obj.scheduler.notify_timeout_seconds:g}s"
            )
            table.add_row(
                "Store retries",
                f"{retry.max_retries} (base {retry.base_delay_ms}ms, "
                f"max {retry.max_delay_ms}ms)",
            )
            table.add_row("Log level", config_obj.logging.level or "[dim]default[/dim]")

            success("Configuration is valid!")
            console.print()
            console.print(table)

        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: show, validate")
            raise typer.Exit(1)
