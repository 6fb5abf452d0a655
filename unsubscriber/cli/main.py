"""
Main CLI group for the unsubscriber.

Integrates all command groups into a single CLI application.
"""

import click

from unsubscriber.config import Config, load_config_from_env_file
from unsubscriber.email_processor.unsubscribe.logging import configure_logging
from .commands.admin import init, erase, export
from .commands.allow import allow
from .commands.attempts import attempts
from .commands.patterns import patterns
from .commands.scan import scan
from .commands.senders import senders
from .commands.token import token


@click.group()
@click.version_option(version='1.0.0', prog_name='Unsubscriber')
@click.option('--log-level', default=None, help='Logging level (default from LOG_LEVEL)')
@click.option('--log-format', type=click.Choice(['standard', 'json']), default='standard')
def cli(log_level, log_format):
    """
    Unsubscriber - Scan a mailbox and unsubscribe from bulk senders.

    Uses one-click unsubscribe headers, mailto links and, when nothing else
    works, a headless browser. Tracks senders that keep mailing afterwards.
    """
    load_config_from_env_file()
    configure_logging(level=log_level or Config.LOG_LEVEL, format=log_format)


# Register command groups
cli.add_command(token, name='token')
cli.add_command(allow, name='allow')
cli.add_command(senders, name='senders')
cli.add_command(attempts, name='attempts')
cli.add_command(patterns, name='patterns')

# Register standalone commands
cli.add_command(init, name='init')
cli.add_command(scan, name='scan')
cli.add_command(erase, name='erase')
cli.add_command(export, name='export')


if __name__ == '__main__':
    cli()
