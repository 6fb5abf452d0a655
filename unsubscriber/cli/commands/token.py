"""
Access token commands.

Handles storing, removing, and listing mailbox access tokens.
"""

import click

from unsubscriber.cli_session import get_cli_session_manager


@click.group()
def token():
    """Access token management commands."""
    pass


@token.command('store')
@click.argument('owner')
def store_token(owner):
    """
    Store a mailbox access token for an owner.

    Example:
        python main.py token store user@example.com
    """
    token_value = click.prompt('Access token', hide_input=True)

    store = get_cli_session_manager().token_store
    store.set_token(owner, token_value.strip())

    click.secho(f"✓ Token stored successfully for {owner}", fg='green')
    click.echo(f"Tokens are saved in: {store.store_path}")


@token.command('remove')
@click.argument('owner')
@click.option('--force', '-f', is_flag=True, help='Skip confirmation prompt')
def remove_token(owner, force):
    """
    Remove the stored token for an owner.

    Example:
        python main.py token remove user@example.com
    """
    store = get_cli_session_manager().token_store

    if not force:
        if not click.confirm(f"Remove token for {owner}?"):
            click.echo("Cancelled.")
            raise click.Abort()

    if store.remove_token(owner):
        click.secho(f"✓ Token removed for {owner}", fg='green')
    else:
        click.echo(f"No token stored for {owner}.")


@token.command('list')
def list_tokens():
    """
    List owners with stored tokens.

    Example:
        python main.py token list
    """
    owners = sorted(get_cli_session_manager().token_store.list_owners())

    if not owners:
        click.echo("No stored tokens.")
        return

    count = len(owners)
    plural = "owner" if count == 1 else "owners"
    click.echo(f"\nStored tokens for {count} {plural}:")
    for owner in owners:
        click.echo(f"  - {owner}")
    click.echo()
