"""CLI command modules."""

from pomocop.cli.commands import config, sessions

__all__ = [
    "config",
    "sessions",
]
