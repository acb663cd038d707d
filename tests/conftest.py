"""
Shared fixtures for the link graph test suite.

Graphs are built in memory; database tests run against a temporary SQLite
file. Nothing touches the network.
"""

import pytest

import settings
from db import Database
from domain.graph import ArticleNode, ExternalEdge, InternalEdge, LinkGraph
from domain.types import ArticleStatus, ContentType


# ---------------------------------------------------------------------------
# Graph builders
# ---------------------------------------------------------------------------

def make_node(article_id, title=None, content='', language='en', country=None,
              content_type=ContentType.ARTICLE, status=ArticleStatus.PUBLISHED,
              theme=None, pillar_id=None, platform_id=1):
    return ArticleNode(
        id=article_id,
        platform_id=platform_id,
        title=title or f"Article {article_id}",
        language=language,
        country=country,
        content_type=content_type,
        status=status,
        content=content,
        theme=theme,
        pillar_id=pillar_id,
    )


def make_graph(nodes, edges=(), external_links=(), platform_id=1):
    """Build a LinkGraph from nodes (ArticleNode or id) and (source, target) pairs."""
    nodes = [n if isinstance(n, ArticleNode) else make_node(n, platform_id=platform_id) for n in nodes]
    return LinkGraph.build(
        platform_id=platform_id,
        articles=nodes,
        edges=[InternalEdge(source_id=s, target_id=t) for s, t in edges],
        external_links=list(external_links),
    )


def make_external(link_id, article_id, url, is_broken=False, topic=None, last_verified_at=None):
    from db.database import domain_of
    return ExternalEdge(
        id=link_id,
        article_id=article_id,
        url=url,
        domain=domain_of(url),
        is_broken=is_broken,
        topic=topic,
        last_verified_at=last_verified_at,
    )


# Articles for similarity tests: two visa articles, two cooking articles
VISA_STUDENT = (
    "<h2>Student visa application</h2>"
    "<p>The student visa application requires a passport, an admission letter "
    "and proof of funds. Submit the visa application at the consulate.</p>"
)
VISA_WORK = (
    "<h2>Work visa application</h2>"
    "<p>A work visa application requires a passport and a job contract. "
    "The consulate reviews every visa application within weeks.</p>"
)
RECIPE_BREAD = (
    "<h2>Bread recipe</h2>"
    "<p>Knead the flour with yeast and water, then bake the bread in a hot oven.</p>"
)
RECIPE_CAKE = (
    "<h2>Cake recipe</h2>"
    "<p>Mix flour, sugar and eggs, then bake the cake in a warm oven.</p>"
)


@pytest.fixture
def topic_graph():
    """Four published English articles in two topics, no links."""
    return make_graph([
        make_node(1, "Student visa application guide", VISA_STUDENT),
        make_node(2, "Work visa application guide", VISA_WORK),
        make_node(3, "Homemade bread recipe", RECIPE_BREAD),
        make_node(4, "Simple cake recipe", RECIPE_CAKE),
    ])


@pytest.fixture
def five_article_graph():
    """
    A(1) -> B(2), A -> C(3), B -> C, D(4) -> C, E(5) isolated.

    Orphans: A, D, E. Dead-ends: C, E.
    """
    return make_graph([1, 2, 3, 4, 5], edges=[(1, 2), (1, 3), (2, 3), (4, 3)])


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Temporary database path, also used by Database() without arguments."""
    path = str(tmp_path / "linkgraph.db")
    monkeypatch.setattr(settings, 'DB_PATH', path)
    return path


@pytest.fixture
def db(db_path):
    return Database(db_path)


@pytest.fixture
def session(db):
    session = db.get_session()
    yield session
    session.close()


@pytest.fixture
def populated(db):
    """
    Platform with a pillar, two satellites, one unrelated article and a draft.

    Only the pillar links to the first satellite. Returns a dict of ids.
    """
    session = db.get_session()
    try:
        platform = db.get_or_create_platform(session, "Expat Guide", "expat-guide.com")
        pillar = db.add_article(
            session, platform.id, "Visa application guide", "en",
            content=VISA_STUDENT + VISA_WORK, content_type=ContentType.PILLAR,
            country_code="FR", theme="visa",
        )
        student = db.add_article(
            session, platform.id, "Student visa application guide", "en",
            content=VISA_STUDENT, content_type=ContentType.SATELLITE,
            country_code="FR", theme="visa", pillar_id=pillar.id,
        )
        work = db.add_article(
            session, platform.id, "Work visa application guide", "en",
            content=VISA_WORK, content_type=ContentType.SATELLITE,
            country_code="FR", theme="visa", pillar_id=pillar.id,
        )
        bread = db.add_article(
            session, platform.id, "Homemade bread recipe", "en", content=RECIPE_BREAD,
        )
        draft = db.add_article(
            session, platform.id, "Draft cake recipe", "en", content=RECIPE_CAKE,
            status=ArticleStatus.DRAFT,
        )
        db.add_internal_link(session, pillar.id, student.id, "student visa")
        broken = db.add_external_link(
            session, student.id, "https://old-consulate.example.org/visa", topic="visa"
        )
        broken.is_broken = True
        session.commit()

        ids = {
            'platform': platform.id,
            'pillar': pillar.id,
            'student': student.id,
            'work': work.id,
            'bread': bread.id,
            'draft': draft.id,
            'broken_link': broken.id,
        }
    finally:
        session.close()
    return ids
