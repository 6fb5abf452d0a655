"""
Admin commands.

Handles database initialization and per-owner data export and erasure.
"""

import json

import click

from unsubscriber.cli_session import get_cli_session_manager
from unsubscriber.database.user_data import delete_all_owner_data, export_owner_data
from ..utils import get_services


@click.command('init')
def init():
    """
    Initialize the database.

    Creates the schema and seeds the built-in browser patterns.

    Example:
        python main.py init
    """
    try:
        manager = get_cli_session_manager()
        manager.db.initialize_database()
        seeded = manager.patterns.seed_default_patterns()
        click.secho("✓ Database initialized successfully", fg='green')
        click.echo(f"Database location: {manager.db.database_url}")
        if seeded:
            click.echo(f"Seeded {seeded} built-in patterns")
    except Exception as e:
        click.secho(f"✗ Error initializing database: {e}", fg='red')
        raise click.Abort()


@click.command('erase')
@click.argument('owner')
@click.option('--force', '-f', is_flag=True, help='Skip confirmation prompt')
def erase(owner, force):
    """
    Delete everything stored for an owner, including the access token.

    Example:
        python main.py erase user@example.com
    """
    if not force and not click.confirm(f"Delete all data for {owner}?"):
        click.echo("Cancelled.")
        raise click.Abort()

    manager = get_services()
    result = delete_all_owner_data(manager.db, owner, token_store=manager.token_store)

    if not result['rows_deleted']:
        click.echo(f"No data stored for {owner}.")
        return

    click.secho(f"✓ Deleted data for {owner}", fg='green')
    for table, count in result['rows_deleted'].items():
        click.echo(f"  {table}: {count}")


@click.command('export')
@click.argument('owner')
def export(owner):
    """
    Print everything stored for an owner as JSON.

    Example:
        python main.py export user@example.com > my-data.json
    """
    manager = get_services()
    click.echo(json.dumps(export_owner_data(manager.db, owner), indent=2, default=str))
