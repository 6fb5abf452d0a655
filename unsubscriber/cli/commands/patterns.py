"""
Browser pattern commands.

Patterns teach the browser executor which buttons to click and which page
texts mean success or failure.
"""

import json

import click

from unsubscriber.database.models import PATTERN_TYPES
from unsubscriber.exceptions import PatternValidationError
from ..utils import fail, format_datetime, get_services


@click.group()
def patterns():
    """Browser pattern commands."""
    pass


@patterns.command('list')
@click.option('--type', 'pattern_type', type=click.Choice(PATTERN_TYPES), default=None)
def list_patterns(pattern_type):
    """
    Show patterns in ranking order.

    Example:
        python main.py patterns list --type button_selector
    """
    rows = get_services().patterns.get_patterns(pattern_type)
    if not rows:
        click.echo("No patterns. Run 'init' to seed the built-in set.")
        return

    click.echo(f"\n{'ID':<5} {'TYPE':<18} {'PRI':>4} {'HITS':>5} {'LAST HIT':<17} NAME")
    click.echo("-" * 80)
    for pattern in rows:
        marker = '' if not pattern.is_builtin else ' (built-in)'
        click.echo(f"{pattern.id:<5} {pattern.type:<18} {pattern.priority:>4} {pattern.match_count:>5} "
                   f"{format_datetime(pattern.last_matched_at):<17} {pattern.name}{marker}")
        click.echo(f"{'':<5} {pattern.selector}")
    click.echo()


@patterns.command('add')
@click.argument('name')
@click.argument('pattern_type', type=click.Choice(PATTERN_TYPES))
@click.argument('selector')
@click.option('--priority', type=int, default=0)
def add_pattern(name, pattern_type, selector, priority):
    """
    Add a custom pattern.

    Example:
        python main.py patterns add "Shop button" button_selector "#unsub-btn" --priority 90
    """
    try:
        pattern = get_services().patterns.add_pattern(name, pattern_type, selector, priority)
    except PatternValidationError as e:
        fail(str(e))

    click.secho(f"✓ Added pattern {pattern.name} (id {pattern.id})", fg='green')


@patterns.command('delete')
@click.argument('pattern_id', type=int)
def delete_pattern(pattern_id):
    """
    Delete a custom pattern. Built-in patterns cannot be deleted.

    Example:
        python main.py patterns delete 21
    """
    if not get_services().patterns.delete_pattern(pattern_id):
        fail(f"Custom pattern {pattern_id} not found")

    click.secho(f"✓ Deleted pattern {pattern_id}", fg='green')


@patterns.command('export')
@click.option('--owner', default=None, help='Owner recorded in the audit log')
@click.option('--output', '-o', type=click.File('w'), default='-')
def export_patterns(owner, output):
    """
    Write custom patterns as JSON.

    Example:
        python main.py patterns export -o patterns.json
    """
    document = get_services().patterns.export_patterns(owner_id=owner)
    output.write(json.dumps(document, indent=2))
    output.write('\n')


@patterns.command('import')
@click.argument('source', type=click.File('r'))
@click.option('--owner', default=None, help='Owner recorded in the audit log')
def import_patterns(source, owner):
    """
    Import patterns from an export file.

    Example:
        python main.py patterns import patterns.json
    """
    try:
        document = json.load(source)
    except ValueError as e:
        fail(f"Not valid JSON: {e}")

    try:
        result = get_services().patterns.import_patterns(document, owner_id=owner)
    except PatternValidationError as e:
        fail(str(e))

    click.secho(f"✓ Imported {result['imported']} patterns", fg='green')
    if result['skipped']:
        click.echo(f"  Skipped {result['skipped']} (duplicate or malformed)")
