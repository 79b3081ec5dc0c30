"""Main CLI application."""

from typing import Annotated

import typer

from pomocop.cli.commands import config, sessions

app = typer.Typer(
    name="pomocop",
    help="Pomocop - Pomodoro timers for chat channels",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Log level (DEBUG, INFO, WARNING, ERROR)",
            envvar="POMOCOP_LOG_LEVEL",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Shortcut for --log-level DEBUG",
        ),
    ] = False,
) -> None:
    """Pomocop - Pomodoro timers for chat channels."""
    from pomocop.logging import configure_logging

    level = "DEBUG" if verbose else log_level
    ctx.obj = {"log_level": level}
    configure_logging(level=level, use_rich=True)


config.register(app)
sessions.register(app)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
