"""
External link verification commands.
"""

import click
from tabulate import tabulate
from db import Database
from domain.link_engine import LinkGraphEngine, PlatformNotFoundError
from domain.types import VerificationFilter


@click.group()
def links():
    """Verify external links."""
    pass


@links.command()
@click.option('--platform', '-p', 'platform_id', type=int, help='Platform ID (all platforms if omitted)')
@click.option('--only-broken', 'link_filter', flag_value='broken', help='Re-check links currently flagged broken')
@click.option('--only-unverified', 'link_filter', flag_value='unverified',
              help='Check never verified or stale links')
@click.option('--concurrency', '-c', type=int, help='Checks in flight (default: VERIFY_CONCURRENCY)')
@click.option('--timeout', '-t', type=float, help='Request timeout in seconds (default: VERIFY_TIMEOUT)')
@click.option('--limit', '-l', type=int, help='Maximum number of links to check')
@click.option('--verbose', '-v', is_flag=True, help='Show every broken link')
def verify(platform_id, link_filter, concurrency, timeout, limit, verbose):
    """
    Check external links and record which ones are broken.

    Example:
        linkgraph links verify --platform 1 --only-unverified --concurrency 5
    """
    engine = LinkGraphEngine(Database())

    def progress(processed, total):
        if processed == total or processed % 50 == 0:
            click.echo(f"  {processed}/{total} checked")

    try:
        summary = engine.verify_links(
            link_filter=VerificationFilter(link_filter or 'all'),
            concurrency=concurrency,
            platform_id=platform_id,
            limit=limit,
            timeout=timeout,
            progress_callback=progress,
        )
    except (PlatformNotFoundError, ValueError) as e:
        click.echo(click.style(f"✗ {e}", fg="red"))
        raise click.Abort()

    if summary.total == 0:
        click.echo(click.style("No links to verify", fg="yellow"))
        return

    click.echo()
    click.echo(tabulate([
        ['Checked', summary.total],
        ['Valid', click.style(str(summary.valid), fg='green')],
        ['Broken', click.style(str(summary.broken), fg='red' if summary.broken else 'green')],
        ['Newly broken', summary.newly_broken],
        ['Recovered', summary.recovered],
        ['Errors', summary.errored],
        ['Broken %', f"{summary.broken_percentage:.1f}%"],
    ], tablefmt='plain'))

    if summary.record_errors:
        click.echo(click.style(f"⚠ {summary.record_errors} result(s) could not be saved", fg="yellow"))

    if summary.alert:
        click.echo(click.style(
            f"\n⚠ Broken links above {engine.config.broken_alert_percent:.0f}% threshold", fg="red", bold=True
        ))

    if verbose:
        broken = [r for r in summary.results if r.verdict.value == 'broken']
        if broken:
            click.echo(click.style("\nBroken links:", fg='yellow', bold=True))
            rows = [[r.link_id, r.change.value, r.status_code or '-', (r.error or '')[:50], r.url[:70]] for r in broken]
            click.echo(tabulate(rows, headers=['ID', 'Change', 'Status', 'Error', 'URL'], tablefmt='simple'))


@links.command()
@click.option('--platform', '-p', 'platform_id', type=int, required=True, help='Platform ID')
@click.option('--limit', '-l', default=20, help='Broken links to list (default: 20)')
def report(platform_id, limit):
    """
    Show verification status of a platform's external links.

    Example:
        linkgraph links report --platform 1
    """
    try:
        data = LinkGraphEngine(Database()).verification_report(platform_id)
    except PlatformNotFoundError as e:
        click.echo(click.style(f"✗ {e}", fg="red"))
        raise click.Abort()

    summary = data['summary']
    click.echo(click.style(f"\n=== External links: platform {platform_id} ===\n", fg="cyan", bold=True))
    click.echo(tabulate([
        ['Total', summary['total']],
        ['Verified', summary['verified']],
        ['Never verified', summary['never_verified']],
        ['Stale', summary['stale']],
        ['Broken', summary['broken']],
        ['Broken %', f"{summary['broken_percentage']:.1f}%"],
    ], tablefmt='plain'))

    if data['alert']:
        click.echo(click.style("\n⚠ Broken link rate above alert threshold", fg="red", bold=True))

    if data['broken_links']:
        click.echo(click.style("\nBroken links:", fg='yellow', bold=True))
        rows = [
            [b['id'], b['article_id'], b['status_code'] or '-', b['url'][:70]]
            for b in data['broken_links'][:limit]
        ]
        click.echo(tabulate(rows, headers=['ID', 'Article', 'Status', 'URL'], tablefmt='simple'))
