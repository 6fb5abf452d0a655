"""
Unsubscribe attempt commands.

Review outcomes, resolve attempts by hand, and retry failures.
"""

import click

from unsubscriber.exceptions import AttemptNotFoundError, UnsubscriberError
from ..utils import echo_attempt, echo_attempt_header, fail, get_services


@click.group()
def attempts():
    """Unsubscribe attempt commands."""
    pass


@attempts.command('recent')
@click.argument('owner')
@click.option('--limit', type=int, default=20, help='Number of senders to show')
def recent(owner, limit):
    """
    Latest attempt for each sender.

    Example:
        python main.py attempts recent user@example.com
    """
    rows = get_services().attempts.list_recent(owner, limit=limit)
    if not rows:
        click.echo("No unsubscribe attempts yet.")
        return

    echo_attempt_header()
    for attempt in rows:
        echo_attempt(attempt)


@attempts.command('failed')
@click.argument('owner')
@click.option('--limit', type=int, default=50)
@click.option('--offset', type=int, default=0)
def failed(owner, limit, offset):
    """
    Senders whose latest attempt failed or needs review.

    Example:
        python main.py attempts failed user@example.com
    """
    rows = get_services().attempts.list_failed_or_uncertain(owner, limit=limit, offset=offset)
    if not rows:
        click.secho("✓ Nothing needs attention", fg='green')
        return

    echo_attempt_header()
    for attempt in rows:
        echo_attempt(attempt)


@attempts.command('stats')
@click.argument('owner')
@click.option('--domains', is_flag=True, help='Also show per-domain counts')
def stats(owner, domains):
    """
    Outcome counts over each sender's latest attempt.

    Example:
        python main.py attempts stats user@example.com --domains
    """
    manager = get_services()
    summary = manager.attempts.compute_stats(owner)

    click.echo("\n=== Unsubscribe Statistics ===")
    click.echo(f"Senders:      {summary['total']}")
    click.secho(f"Success:      {summary['success']}", fg='green')
    click.secho(f"Failed:       {summary['failed']}", fg='red')
    click.secho(f"Uncertain:    {summary['uncertain']}", fg='yellow')
    click.echo(f"Pending:      {summary['pending']}")
    click.echo(f"Success rate: {summary['success_rate']:.2f}%")

    if domains:
        rows = manager.attempts.domain_stats(owner)
        if rows:
            click.echo(f"\n{'DOMAIN':<40} {'TOTAL':>6} {'OK':>6} {'FAIL':>6}")
            for row in rows:
                click.echo(f"{row['domain']:<40} {row['total']:>6} {row['success']:>6} {row['failed']:>6}")
    click.echo()


@attempts.command('history')
@click.argument('owner')
@click.argument('domain')
def history(owner, domain):
    """
    Every attempt against one sender domain.

    Example:
        python main.py attempts history user@example.com shop.com
    """
    rows = get_services().attempts.history_by_domain(owner, domain)
    if not rows:
        click.echo(f"No attempts for {domain}.")
        return

    echo_attempt_header()
    for attempt in rows:
        echo_attempt(attempt)


@attempts.command('resolve')
@click.argument('owner')
@click.argument('attempt_id', type=int)
def resolve(owner, attempt_id):
    """
    Mark an attempt successful after unsubscribing by hand.

    Example:
        python main.py attempts resolve user@example.com 12
    """
    try:
        get_services().attempts.mark_resolved(owner, attempt_id)
    except AttemptNotFoundError:
        fail(f"Attempt {attempt_id} not found")

    click.secho(f"✓ Attempt {attempt_id} marked as resolved", fg='green')


@attempts.command('retry')
@click.argument('owner')
@click.argument('attempt_id', type=int)
def retry(owner, attempt_id):
    """
    Re-run the method recorded on an attempt.

    Example:
        python main.py attempts retry user@example.com 12
    """
    manager = get_services()
    click.echo(f"Retrying attempt {attempt_id}...")

    try:
        attempt = manager.unsubscribe_service.retry_attempt(owner, attempt_id)
    except AttemptNotFoundError:
        fail(f"Attempt {attempt_id} not found")
    except UnsubscriberError as e:
        fail(str(e))
    finally:
        manager.close()

    if attempt.status == 'success':
        click.secho(f"✓ Unsubscribed from {attempt.sender}", fg='green')
    elif attempt.status == 'uncertain':
        click.secho(f"? Outcome for {attempt.sender} is uncertain, check the screenshot", fg='yellow')
        if attempt.screenshot_path:
            click.echo(f"  Screenshot: {attempt.screenshot_path}")
    else:
        click.secho(f"✗ Retry failed for {attempt.sender}: {attempt.failure_reason}", fg='red')
