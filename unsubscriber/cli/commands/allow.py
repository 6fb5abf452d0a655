"""
Allow list commands.

Senders on the allow list are never unsubscribed from.
"""

import click

from unsubscriber.database.models import ALLOW_LIST_TYPES
from unsubscriber.exceptions import AllowListValidationError
from ..utils import fail, format_datetime, get_services


@click.group()
def allow():
    """Allow list management commands."""
    pass


@allow.command('add')
@click.argument('owner')
@click.argument('value')
@click.option('--type', 'entry_type', type=click.Choice(ALLOW_LIST_TYPES), default=None,
              help='Entry type (guessed from VALUE when omitted)')
@click.option('--notes', default=None, help='Why this sender is kept')
def add_entry(owner, value, entry_type, notes):
    """
    Keep an address or a whole domain.

    Example:
        python main.py allow add user@example.com news@shop.com
        python main.py allow add user@example.com shop.com --notes "receipts"
    """
    if entry_type is None:
        entry_type = 'address' if '@' in value.lstrip('@') else 'domain'

    manager = get_services()
    try:
        entry = manager.allow_list.add(owner, entry_type, value, notes)
    except AllowListValidationError as e:
        fail(str(e))

    click.secho(f"✓ Allowed {entry.type} {entry.value} (id {entry.id})", fg='green')


@allow.command('remove')
@click.argument('owner')
@click.argument('entry_id', type=int)
def remove_entry(owner, entry_id):
    """
    Remove an allow list entry by id.

    Example:
        python main.py allow remove user@example.com 3
    """
    manager = get_services()
    if not manager.allow_list.remove(owner, entry_id):
        fail(f"Allow list entry {entry_id} not found")

    click.secho(f"✓ Removed allow list entry {entry_id}", fg='green')


@allow.command('list')
@click.argument('owner')
def list_entries(owner):
    """
    Show the allow list.

    Example:
        python main.py allow list user@example.com
    """
    entries = get_services().allow_list.list_entries(owner)

    if not entries:
        click.echo("Allow list is empty.")
        return

    click.echo(f"\n{'ID':<6} {'TYPE':<8} {'VALUE':<40} {'ADDED':<17} NOTES")
    click.echo("-" * 90)
    for entry in entries:
        click.echo(f"{entry.id:<6} {entry.type:<8} {entry.value:<40} "
                   f"{format_datetime(entry.created_at):<17} {entry.notes or ''}")
    click.echo()
