"""
Scan command.

Runs one mailbox scan for an owner and reports what was done.
"""

import click

from unsubscriber.exceptions import ScanInProgressError, UnsubscriberError
from ..utils import get_services


@click.command('scan')
@click.argument('owner')
@click.option('--limit', type=int, default=None, help='Maximum backlog messages to scan')
@click.option('--verbose', '-v', is_flag=True, help='List every message acted on')
def scan(owner, limit, verbose):
    """
    Scan a mailbox and unsubscribe from bulk senders.

    The first runs work through the existing mailbox; later runs only look
    at newly arrived mail.

    Example:
        python main.py scan user@example.com --limit 200
    """
    manager = get_services()
    click.echo(f"Scanning mailbox for {owner}...")

    try:
        result = manager.scanner.scan_mailbox(owner, limit=limit)
    except ScanInProgressError:
        click.secho(f"✗ A scan is already running for {owner}", fg='red')
        raise click.Abort()
    except UnsubscriberError as e:
        click.secho(f"✗ Scan failed: {e}", fg='red')
        raise click.Abort()
    finally:
        manager.close()

    click.secho(f"\n✓ {result.mode.capitalize()} scan complete", fg='green')
    click.echo(f"  Scanned:   {result.scanned}")
    click.echo(f"  Processed: {result.processed}")
    click.echo(f"  Skipped:   {result.skipped}")
    if result.errors:
        click.secho(f"  Errors:    {result.errors}", fg='yellow')
    if result.mode == 'backlog':
        state = 'complete' if result.backlog_complete else 'more messages remain'
        click.echo(f"  Backlog:   {state}")

    if verbose:
        acted = [m for m in result.messages if m.acted_on]
        if acted:
            click.echo("\nUnsubscribe attempts:")
            for message in acted:
                click.echo(f"  [{message.status}] {message.sender} via {message.method}")
