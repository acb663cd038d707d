"""
Link graph analysis, authority and repair commands.
"""

import json
import traceback

import click
from tabulate import tabulate

import settings
from db import Database
from domain.link_engine import LinkGraphEngine, PlatformNotFoundError
from domain.types import Severity

SEVERITY_COLORS = {
    Severity.CRITICAL: 'red',
    Severity.HIGH: 'red',
    Severity.MEDIUM: 'yellow',
    Severity.LOW: 'cyan',
}

BAND_COLORS = {'good': 'green', 'warning': 'yellow', 'poor': 'red'}


def _engine() -> LinkGraphEngine:
    return LinkGraphEngine(Database())


def _fail(message: str):
    click.echo(click.style(f"✗ {message}", fg="red"))
    raise click.Abort()


@click.group()
def graph():
    """Analyze and repair internal link graphs."""
    pass


@graph.command()
@click.option('--platform', '-p', 'platform_id', type=int, required=True, help='Platform ID')
@click.option('--language', '-l', help='Only articles in this language')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
def analyze(platform_id, language, as_json):
    """
    Report orphans, dead-ends and link distribution of a platform.

    Example:
        linkgraph graph analyze --platform 1 --language fr
    """
    try:
        report = _engine().analyze(platform_id, language=language)
    except PlatformNotFoundError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        return

    summary = report.summary
    dist = report.distribution

    click.echo(click.style(f"\n=== Link balance: platform {platform_id} ===\n", fg="cyan", bold=True))
    click.echo(tabulate([
        ['Articles', summary['total_articles']],
        ['Internal links', summary['total_internal_links']],
        ['Orphans', summary['orphans']],
        ['Dead-ends', summary['dead_ends']],
        ['Weakly connected', summary['weakly_connected']],
        ['Empty pillars', summary['empty_pillars']],
        ['Broken external links', summary['broken_external_links']],
        ['Imbalance ratio', click.style(f"{summary['imbalance_ratio']:.2f} ({summary['band']})",
                                        fg=BAND_COLORS[summary['band']])],
    ], tablefmt='plain'))
    click.echo()

    click.echo(click.style("Distribution:", fg='yellow', bold=True))
    click.echo(tabulate([
        ['Inbound', dist.inbound.min, dist.inbound.max, dist.inbound.mean, dist.inbound.median, dist.inbound.std_dev],
        ['Outbound', dist.outbound.min, dist.outbound.max, dist.outbound.mean, dist.outbound.median, dist.outbound.std_dev],
    ], headers=['', 'Min', 'Max', 'Avg', 'Median', 'Std dev'], tablefmt='simple'))
    click.echo()

    for title, defects in (('Orphans', report.orphans), ('Dead-ends', report.dead_ends)):
        if not defects:
            continue
        click.echo(click.style(f"{title}:", fg='yellow', bold=True))
        rows = [
            [d.article_id, d.title[:60], d.content_type, d.language,
             click.style(d.severity.value, fg=SEVERITY_COLORS[d.severity])]
            for d in defects[:20]
        ]
        click.echo(tabulate(rows, headers=['ID', 'Title', 'Type', 'Lang', 'Severity'], tablefmt='simple'))
        if len(defects) > 20:
            click.echo(f"  ... and {len(defects) - 20} more")
        click.echo()

    if report.remediations:
        click.echo(click.style("Recommendations:", fg='yellow', bold=True))
        for r in report.remediations:
            tag = click.style(f"[{r.severity.value.upper()}]", fg=SEVERITY_COLORS[r.severity])
            click.echo(f"  {tag} {r.message}")
            click.echo(f"      → {r.action}")
    else:
        click.echo(click.style("✓ No structural issues found", fg="green"))


@graph.command()
@click.argument('article_id', type=int)
def article(article_id):
    """
    Show link health of one article.

    Example:
        linkgraph graph article 42
    """
    analysis = _engine().analyze_article(article_id)
    if analysis is None:
        _fail(f"Article {article_id} not found")

    health = analysis['health']
    grade_color = 'green' if health['grade'] in ('A', 'B') else 'yellow' if health['grade'] == 'C' else 'red'

    click.echo(click.style(f"\n=== [{analysis['article_id']}] {analysis['title'][:70]} ===\n", fg="cyan", bold=True))
    click.echo(f"Type: {analysis['type']}")
    click.echo(f"Health: {click.style(str(health['score']) + ' (' + health['grade'] + ')', fg=grade_color, bold=True)}")
    click.echo()
    click.echo(tabulate([
        ['Inbound', analysis['inbound']['total'],
         f"{analysis['inbound']['from_pillars']} from pillars"],
        ['Outbound', analysis['outbound']['total'],
         f"{analysis['outbound']['to_pillars']} to pillars"],
        ['External', analysis['external']['total'],
         f"{analysis['external']['broken']} broken"],
    ], tablefmt='plain'))

    if health['issues']:
        click.echo(click.style("\nIssues:", fg='yellow', bold=True))
        for issue in health['issues']:
            click.echo(f"  - {issue}")

    if analysis['recommendations']:
        click.echo(click.style("\nRecommendations:", fg='yellow', bold=True))
        for rec in analysis['recommendations']:
            click.echo(f"  [{rec['priority'].upper()}] {rec['message']}")


@graph.command()
@click.option('--platform', '-p', 'platform_id', type=int, required=True, help='Platform ID')
@click.option('--limit', '-l', default=20, help='Number of articles to show (default: 20)')
@click.option('--flow', is_flag=True, help='Show link flow recommendations')
@click.option('--refresh', is_flag=True, help='Recompute instead of using cached scores')
def authority(platform_id, limit, flow, refresh):
    """
    Rank articles by authority (PageRank).

    Example:
        linkgraph graph authority --platform 1 --limit 10 --flow
    """
    engine = _engine()
    try:
        if refresh:
            engine.invalidate_authority(platform_id)
        insights = engine.authority_insights(platform_id, limit)
    except PlatformNotFoundError as e:
        _fail(str(e))

    if not insights['high_value']:
        click.echo(click.style("No published articles", fg="yellow"))
        return

    status = click.style("converged", fg="green") if insights['converged'] else click.style("not converged", fg="yellow")
    click.echo(f"PageRank: {insights['iterations']} iterations, {status}\n")

    rows = [
        [s.rank, s.article_id, f"{s.normalized:.2f}", f"{s.raw:.6f}", s.inbound, s.outbound]
        for s in insights['high_value']
    ]
    click.echo(tabulate(rows, headers=['Rank', 'Article', 'Score', 'Raw', 'In', 'Out'], tablefmt='simple'))

    stats = insights['stats']['distribution']
    click.echo(f"\nDistribution: {stats['high_75_plus']} high, {stats['medium_25_75']} medium, "
               f"{stats['low_under_25']} low")

    if flow:
        click.echo(click.style("\nLink flow recommendations:", fg='yellow', bold=True))
        if not insights['flow']:
            click.echo("  None")
        for rec in insights['flow'][:limit]:
            tag = click.style(f"[{rec['priority'].value.upper()}]", fg=SEVERITY_COLORS[rec['priority']])
            click.echo(f"  {tag} #{rec['article_id']}: {rec['suggestion']}")


@graph.command()
@click.option('--platform', '-p', 'platform_id', type=int, required=True, help='Platform ID')
@click.argument('source_id', type=int)
@click.argument('target_id', type=int)
def simulate(platform_id, source_id, target_id):
    """
    Show how a new link would change the target's authority (nothing is saved).

    Example:
        linkgraph graph simulate --platform 1 12 34
    """
    try:
        simulation = _engine().simulate_link_addition(platform_id, source_id, target_id)
    except PlatformNotFoundError as e:
        _fail(str(e))

    if not simulation:
        _fail(f"Article {target_id} is not a published article of platform {platform_id}")

    before, after, change = simulation['before'], simulation['after'], simulation['change']
    click.echo(tabulate([
        ['Before', f"{before['normalized']:.2f}", before['rank']],
        ['After', f"{after['normalized']:.2f}", after['rank']],
        ['Change', f"{change['normalized_delta']:+.2f}", f"{change['rank_delta']:+d}"],
    ], headers=['', 'Score', 'Rank'], tablefmt='simple'))


@graph.command()
@click.argument('article_id', type=int)
@click.option('--limit', '-l', type=int, help='Maximum number of suggestions')
def suggest(article_id, limit):
    """
    Suggest internal links for an article by content similarity.

    Example:
        linkgraph graph suggest 42
    """
    suggestions = _engine().suggest_links(article_id, max_links=limit)

    if not suggestions:
        click.echo(click.style("No suggestions", fg="yellow"))
        return

    rows = [
        [s.target_id, f"{s.similarity:.3f}", s.anchor_text, s.link_context.value,
         click.style('pillar', fg='magenta') if s.mandatory else '']
        for s in suggestions
    ]
    click.echo(tabulate(rows, headers=['Target', 'Similarity', 'Anchor', 'Context', ''], tablefmt='simple'))


@graph.command()
@click.option('--platform', '-p', 'platform_id', type=int, required=True, help='Platform ID')
@click.option('--dry-run/--apply', default=True, help='Only report actions (default) or write them')
@click.option('--json', 'as_json', is_flag=True, help='Print the full result as JSON')
def repair(platform_id, dry_run, as_json):
    """
    Fix orphans, dead-ends and broken external links.

    Example:
        linkgraph graph repair --platform 1 --dry-run
        linkgraph graph repair --platform 1 --apply
    """
    try:
        result = _engine().repair(platform_id, dry_run=dry_run)
    except PlatformNotFoundError as e:
        _fail(str(e))
    except Exception as e:
        if settings.DEBUG:
            traceback.print_exc()
        _fail(f"Repair failed: {e}")

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    mode = click.style("DRY RUN", fg="yellow", bold=True) if dry_run else click.style("APPLIED", fg="green", bold=True)
    click.echo(f"\nRepair ({mode}) - platform {platform_id}\n")

    summary = result.summary()
    click.echo(tabulate([
        ['Orphans', summary['orphans_found'], summary['orphans_fixed']],
        ['Dead-ends', summary['dead_ends_found'], summary['dead_ends_fixed']],
        ['Broken external links', summary['broken_links_found'], summary['broken_links_fixed']],
    ], headers=['', 'Found', 'Fixed'], tablefmt='simple'))
    click.echo(f"\nLinks created: {summary['links_created']}  "
               f"Skipped: {summary['skipped']}  Not repairable: {summary['not_repairable']}")

    if result.cancelled:
        click.echo(click.style("⚠ Repair was cancelled before completion", fg="yellow"))
