"""
Platform management commands.
"""

import traceback

import click
from sqlalchemy import func
from tabulate import tabulate

import settings
from db import Database, Article, ArticleStatus


@click.group()
def platform():
    """Manage publishing platforms."""
    pass


@platform.command()
@click.argument('name')
@click.option('--domain', '-d', help='Base domain of the platform')
def add(name, domain):
    """
    Register a platform.

    Example:
        linkgraph platform add "Expat Guide" --domain expat-guide.com
    """
    db = Database()
    session = db.get_session()

    try:
        platform = db.get_or_create_platform(session, name, domain)
        session.commit()
        click.echo(click.style(f"✓ Platform: {platform.name} (ID: {platform.id})", fg="green"))

    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Error adding platform: {e}", fg="red"))
        if settings.DEBUG:
            traceback.print_exc()
        raise click.Abort()
    finally:
        session.close()


@platform.command(name='list')
def list_platforms():
    """
    List platforms with their article counts.

    Example:
        linkgraph platform list
    """
    db = Database()
    session = db.get_session()

    try:
        platforms = db.list_platforms(session)

        if not platforms:
            click.echo(click.style("No platforms found", fg="yellow"))
            return

        rows = []
        for p in platforms:
            total = session.query(func.count(Article.id)).filter(Article.platform_id == p.id).scalar()
            published = (session.query(func.count(Article.id))
                         .filter(Article.platform_id == p.id, Article.status == ArticleStatus.PUBLISHED)
                         .scalar())
            rows.append([p.id, p.name, p.domain or '-', total, published])

        click.echo(tabulate(rows, headers=['ID', 'Name', 'Domain', 'Articles', 'Published'], tablefmt='simple'))

    finally:
        session.close()
