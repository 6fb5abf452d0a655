"""
Sender tracking commands.

Reports senders that kept mailing after a successful unsubscribe.
"""

import click

from unsubscriber.database.sender_tracking import generate_flagged_report
from ..utils import fail, get_services


@click.group()
def senders():
    """Sender tracking commands."""
    pass


@senders.command('flagged')
@click.argument('owner')
def flagged(owner):
    """
    Show senders that ignored an unsubscribe.

    Example:
        python main.py senders flagged user@example.com
    """
    manager = get_services()
    click.echo(generate_flagged_report(manager.sender_tracker, owner))


@senders.command('clear')
@click.argument('owner')
@click.argument('sender')
def clear(owner, sender):
    """
    Clear the ineffective-unsubscribe flag for a sender.

    Example:
        python main.py senders clear user@example.com news@shop.com
    """
    manager = get_services()
    if not manager.sender_tracker.clear_flag(owner, sender):
        fail(f"No tracking record for {sender}")

    click.secho(f"✓ Cleared flag for {sender}", fg='green')
