"""
Authority domain registry commands.
"""

import traceback

import click
from tabulate import tabulate

import settings
from db import Database, AuthorityDomain, DomainCategory
from domain.authority_domains import (
    add_discovered_domain,
    clean_domain,
    domain_statistics,
    export_csv,
    generate_name,
    import_csv,
    normalize_topic,
    recalculate_scores,
    score_domain,
    seed_defaults,
)

CATEGORY_CHOICES = [c.value for c in DomainCategory]


@click.group()
def domains():
    """Manage authority domains (replacement targets for broken links)."""
    pass


@domains.command(name='list')
@click.option('--country', '-c', help='Filter by country code (international domains included)')
@click.option('--topic', '-t', help='Filter by topic')
@click.option('--category', type=click.Choice(CATEGORY_CHOICES), help='Filter by category')
@click.option('--inactive', is_flag=True, help='Include inactive domains')
def list_domains(country, topic, category, inactive):
    """
    List authority domains, highest trust first.

    Example:
        linkgraph domains list --country FR --topic visa
    """
    db = Database()
    session = db.get_session()

    try:
        query = session.query(AuthorityDomain)
        if not inactive:
            query = query.filter(AuthorityDomain.is_active.is_(True))
        if category:
            query = query.filter(AuthorityDomain.category == DomainCategory(category))
        if country:
            query = query.filter(
                (AuthorityDomain.country_code == country.upper()) | (AuthorityDomain.country_code.is_(None))
            )
        models = query.order_by(AuthorityDomain.trust_score.desc(), AuthorityDomain.domain).all()

        if topic:
            wanted = normalize_topic(topic)
            models = [m for m in models if wanted in (m.topics or [])]

        if not models:
            click.echo(click.style("No domains found", fg="yellow"))
            return

        rows = [
            [m.domain, m.name[:40], m.category.value, m.country_code or 'intl', m.trust_score,
             ', '.join(m.topics or [])[:40], '' if m.is_active else click.style('inactive', fg='red')]
            for m in models
        ]
        click.echo(tabulate(rows, headers=['Domain', 'Name', 'Category', 'Country', 'Trust', 'Topics', ''],
                            tablefmt='simple'))

    finally:
        session.close()


@domains.command()
@click.argument('domain_name')
@click.option('--name', '-n', help='Display name')
@click.option('--category', type=click.Choice(CATEGORY_CHOICES), default='authority', help='Category')
@click.option('--country', '-c', help='Country code (omit for international)')
@click.option('--topic', '-t', 'topics', multiple=True, help='Topic (repeatable)')
@click.option('--language', 'languages', multiple=True, help='Language code (repeatable)')
@click.option('--trust', type=click.IntRange(0, 100), help='Trust score (default: from category)')
def add(domain_name, name, category, country, topics, languages, trust):
    """
    Add a curated authority domain.

    Example:
        linkgraph domains add service-public.fr --category government --country FR -t visa -t tax
    """
    db = Database()
    session = db.get_session()

    try:
        domain = clean_domain(domain_name)
        existing = session.query(AuthorityDomain).filter_by(domain=domain).first()
        if existing:
            click.echo(click.style(f"✗ Domain '{domain}' already exists (trust {existing.trust_score})", fg="yellow"))
            return

        category_enum = DomainCategory(category)
        model = AuthorityDomain(
            domain=domain,
            name=name or generate_name(domain),
            category=category_enum,
            country_code=country.upper() if country else None,
            languages=list(languages),
            topics=[normalize_topic(t) for t in topics],
            trust_score=trust if trust is not None else score_domain(domain, category_enum),
            is_active=True,
            auto_discovered=False,
        )
        session.add(model)
        session.commit()

        click.echo(click.style(f"✓ Added {domain} (trust {model.trust_score})", fg="green"))

    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Error adding domain: {e}", fg="red"))
        if settings.DEBUG:
            traceback.print_exc()
        raise click.Abort()
    finally:
        session.close()


@domains.command()
@click.argument('url')
@click.option('--topic', '-t', 'topics', multiple=True, help='Topic (repeatable)')
def discover(url, topics):
    """
    Register a domain found in content, detecting its category and country.

    Example:
        linkgraph domains discover https://www.diplomatie.gouv.fr/fr/conseils -t travel
    """
    db = Database()
    session = db.get_session()

    try:
        model = add_discovered_domain(session, url, {'topics': list(topics)})
        if model is None:
            click.echo(click.style(f"✗ Could not parse a domain from '{url}'", fg="red"))
            raise click.Abort()
        session.commit()

        click.echo(click.style(f"✓ {model.domain}", fg="green"))
        click.echo(f"  Category: {model.category.value}")
        click.echo(f"  Country: {model.country_code or 'international'}")
        click.echo(f"  Languages: {', '.join(model.languages or [])}")
        click.echo(f"  Trust: {model.trust_score}")

    except click.Abort:
        raise
    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Error: {e}", fg="red"))
        if settings.DEBUG:
            traceback.print_exc()
        raise click.Abort()
    finally:
        session.close()


@domains.command(name='import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def import_domains(path):
    """
    Import domains from CSV (domain,name,category,country_code,languages,topics,trust_score,is_active).

    Example:
        linkgraph domains import data/authority_domains.csv
    """
    db = Database()
    session = db.get_session()

    try:
        results = import_csv(session, path)
        session.commit()

        click.echo(click.style(
            f"✓ Imported: {results['created']} created, {results['updated']} updated", fg="green"
        ))
        for error in results['errors']:
            click.echo(click.style(f"  ✗ {error}", fg="yellow"))

    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Import failed: {e}", fg="red"))
        if settings.DEBUG:
            traceback.print_exc()
        raise click.Abort()
    finally:
        session.close()


@domains.command(name='export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
def export_domains(path):
    """
    Export every domain to CSV.

    Example:
        linkgraph domains export authority_domains.csv
    """
    db = Database()
    session = db.get_session()

    try:
        count = export_csv(session, path)
        click.echo(click.style(f"✓ Exported {count} domains to {path}", fg="green"))
    finally:
        session.close()


@domains.command()
def stats():
    """
    Show registry statistics.

    Example:
        linkgraph domains stats
    """
    db = Database()
    session = db.get_session()

    try:
        data = domain_statistics(session)

        click.echo(click.style("\n=== Authority domains ===\n", fg="cyan", bold=True))
        click.echo(tabulate([
            ['Total', data['total']],
            ['Active', data['active']],
            ['Auto-discovered', data['auto_discovered']],
            ['Average trust', data['average_trust']],
        ], tablefmt='plain'))

        if data['by_category']:
            click.echo(click.style("\nBy category:", fg='yellow', bold=True))
            click.echo(tabulate(sorted(data['by_category'].items()), headers=['Category', 'Domains'], tablefmt='simple'))

        if data['by_country']:
            click.echo(click.style("\nBy country:", fg='yellow', bold=True))
            click.echo(tabulate(data['by_country'].items(), headers=['Country', 'Domains'], tablefmt='simple'))

    finally:
        session.close()


@domains.command()
@click.option('--rescore', is_flag=True, help='Also reset trust scores to category defaults')
def seed(rescore):
    """
    Insert the curated default domains.

    Example:
        linkgraph domains seed
    """
    db = Database()
    session = db.get_session()

    try:
        added = seed_defaults(session)
        rescored = recalculate_scores(session) if rescore else 0
        session.commit()
        click.echo(click.style(f"✓ Seeded {added} domains", fg="green"))
        if rescore:
            click.echo(f"  Rescored: {rescored}")

    except Exception as e:
        session.rollback()
        click.echo(click.style(f"✗ Seeding failed: {e}", fg="red"))
        if settings.DEBUG:
            traceback.print_exc()
        raise click.Abort()
    finally:
        session.close()
