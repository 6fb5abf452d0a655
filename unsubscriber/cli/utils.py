"""
Common utilities for CLI commands.

Shared helper functions used across multiple command modules.
"""

from datetime import datetime
from typing import Optional

import click

from unsubscriber.cli_session import get_cli_session_manager


def get_services():
    """Session manager with the schema in place."""
    manager = get_cli_session_manager()
    manager.db.initialize_database()
    return manager


def format_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return '-'
    return value.strftime('%Y-%m-%d %H:%M')


def fail(message: str):
    """Print an error and abort the command."""
    click.secho(f"✗ {message}", fg='red')
    raise click.Abort()


STATUS_COLORS = {
    'success': 'green',
    'failed': 'red',
    'uncertain': 'yellow',
    'pending': 'blue',
}


def echo_attempt(attempt):
    """One attempt as a table row."""
    status = click.style(f"{attempt.status:<10}", fg=STATUS_COLORS.get(attempt.status))
    click.echo(
        f"{attempt.id:<6} {status} {attempt.method:<10} "
        f"{format_datetime(attempt.attempted_at):<17} {attempt.sender}"
    )
    if attempt.failure_reason:
        click.echo(f"{'':<6} reason: {attempt.failure_reason}"
                   + (f" ({attempt.failure_details})" if attempt.failure_details else ''))


def echo_attempt_header():
    click.echo(f"{'ID':<6} {'STATUS':<10} {'METHOD':<10} {'ATTEMPTED':<17} SENDER")
    click.echo("-" * 70)
