"""
Database connection and operations.

`Database` is the graph repository: it loads a platform's articles and
links into engine snapshots (domain.graph) and writes engine changes back.
"""

from pathlib import Path
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from sqlalchemy import create_engine, or_
from sqlalchemy.orm import sessionmaker, Session

import settings
from domain.graph import ArticleNode, ExternalEdge, InternalEdge, LinkGraph
from domain.types import VerificationFilter
from .models import (
    Base, Platform, Article, InternalLink, ExternalLink, EngineRun,
    ArticleStatus, ContentType, LinkContext,
)


def domain_of(url: str) -> str:
    """Host of a URL without 'www.', empty for a malformed URL."""
    try:
        host = (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''
    return host[4:] if host.startswith('www.') else host


def _to_node(article: Article) -> ArticleNode:
    return ArticleNode(
        id=article.id,
        platform_id=article.platform_id,
        title=article.title,
        language=article.language_code,
        country=article.country_code,
        content_type=article.content_type,
        status=article.status,
        content=article.content or '',
        theme=article.theme,
        pillar_id=article.pillar_id,
    )


def _to_edge(link: InternalLink) -> InternalEdge:
    return InternalEdge(
        id=link.id,
        source_id=link.source_article_id,
        target_id=link.target_article_id,
        anchor_text=link.anchor_text,
        position=link.position,
        is_automatic=link.is_automatic,
        link_context=link.link_context,
        relevance_score=link.relevance_score,
        created_at=link.created_at,
    )


def _to_external(link: ExternalLink) -> ExternalEdge:
    return ExternalEdge(
        id=link.id,
        article_id=link.article_id,
        url=link.url,
        domain=link.domain,
        is_broken=link.is_broken,
        last_verified_at=link.last_verified_at,
        last_status_code=link.last_status_code,
        last_response_time_ms=link.last_response_time_ms,
        verification_error=link.verification_error,
        topic=link.topic,
        anchor_text=link.anchor_text,
        replaced_from_url=link.replaced_from_url,
    )


class Database:
    """Database manager and graph repository."""

    def __init__(self, db_path: str = None):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file (defaults to settings.DB_PATH)
        """
        db_path = db_path or settings.DB_PATH

        # Ensure data directory exists
        db_file = Path(db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)

        # Create engine and session
        self.engine = create_engine(f'sqlite:///{db_path}', echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # Platforms and articles

    def get_or_create_platform(self, session: Session, name: str, domain: str = None) -> Platform:
        """
        Get existing platform or create new one.

        Args:
            session: Database session
            name: Platform name (unique)
            domain: Base domain of the platform (optional)

        Returns:
            Platform object
        """
        platform = session.query(Platform).filter_by(name=name).first()
        if not platform:
            platform = Platform(name=name, domain=domain)
            session.add(platform)
            session.flush()
        return platform

    def get_platform(self, session: Session, platform_id: int) -> Optional[Platform]:
        return session.get(Platform, platform_id)

    def list_platforms(self, session: Session) -> List[Platform]:
        return session.query(Platform).order_by(Platform.id).all()

    def add_article(
        self,
        session: Session,
        platform_id: int,
        title: str,
        language_code: str,
        content: str = '',
        status: ArticleStatus = ArticleStatus.PUBLISHED,
        content_type: ContentType = ContentType.ARTICLE,
        country_code: str = None,
        theme: str = None,
        pillar_id: int = None,
        slug: str = None
    ) -> Article:
        """Create an article (content is HTML or plain text)."""
        article = Article(
            platform_id=platform_id,
            title=title,
            slug=slug,
            language_code=language_code,
            country_code=country_code,
            content_type=content_type,
            status=status,
            theme=theme,
            pillar_id=pillar_id,
            content=content,
            published_at=datetime.utcnow() if status == ArticleStatus.PUBLISHED else None,
        )
        session.add(article)
        session.flush()
        return article

    def get_article(self, session: Session, article_id: int) -> Optional[Article]:
        return session.get(Article, article_id)

    def add_internal_link(
        self,
        session: Session,
        source_article_id: int,
        target_article_id: int,
        anchor_text: str = '',
        is_automatic: bool = False,
        link_context: LinkContext = LinkContext.RELATED
    ) -> InternalLink:
        """Create a (usually manual) internal link."""
        link = InternalLink(
            source_article_id=source_article_id,
            target_article_id=target_article_id,
            anchor_text=anchor_text,
            is_automatic=is_automatic,
            link_context=link_context,
        )
        session.add(link)
        session.flush()
        return link

    def add_external_link(
        self,
        session: Session,
        article_id: int,
        url: str,
        topic: str = None,
        anchor_text: str = None
    ) -> ExternalLink:
        link = ExternalLink(
            article_id=article_id,
            url=url,
            domain=domain_of(url),
            topic=topic,
            anchor_text=anchor_text,
        )
        session.add(link)
        session.flush()
        return link

    # Graph repository contract

    def load_articles(
        self,
        session: Session,
        platform_id: int,
        language: str = None,
        statuses: Iterable[ArticleStatus] = None
    ) -> List[ArticleNode]:
        """Articles of a platform as graph nodes, ordered by id."""
        query = session.query(Article).filter(Article.platform_id == platform_id)
        if language:
            query = query.filter(Article.language_code == language)
        if statuses is not None:
            query = query.filter(Article.status.in_(list(statuses)))
        return [_to_node(a) for a in query.order_by(Article.id)]

    def load_internal_links(self, session: Session, platform_id: int) -> List[InternalEdge]:
        """Internal links whose source belongs to the platform."""
        query = (session.query(InternalLink)
                 .join(Article, InternalLink.source_article_id == Article.id)
                 .filter(Article.platform_id == platform_id)
                 .order_by(InternalLink.id))
        return [_to_edge(link) for link in query]

    def load_external_links(
        self,
        session: Session,
        platform_id: int = None,
        link_filter: VerificationFilter = VerificationFilter.ALL,
        stale_days: int = 30,
        limit: int = None,
        now: datetime = None
    ) -> List[ExternalEdge]:
        """
        External links to verify or report on.

        Args:
            session: Database session
            platform_id: Restrict to one platform (all platforms when None)
            link_filter: ALL, UNVERIFIED (never verified or stale) or BROKEN
            stale_days: Age after which a verification is considered stale
            limit: Maximum number of links (least recently verified first)
            now: Reference time for staleness

        Returns:
            List of ExternalEdge
        """
        query = session.query(ExternalLink)
        if platform_id is not None:
            query = query.join(Article, ExternalLink.article_id == Article.id).filter(
                Article.platform_id == platform_id
            )

        if link_filter == VerificationFilter.BROKEN:
            query = query.filter(ExternalLink.is_broken.is_(True))
        elif link_filter == VerificationFilter.UNVERIFIED:
            threshold = (now or datetime.utcnow()) - timedelta(days=stale_days)
            query = query.filter(or_(
                ExternalLink.last_verified_at.is_(None),
                ExternalLink.last_verified_at < threshold,
            ))

        # Never-verified first, then oldest verification
        query = query.order_by(
            ExternalLink.last_verified_at.isnot(None),
            ExternalLink.last_verified_at,
            ExternalLink.id,
        )
        if limit:
            query = query.limit(limit)
        return [_to_external(link) for link in query]

    def load_graph(self, session: Session, platform_id: int) -> LinkGraph:
        """Snapshot of a platform's full link graph (every status)."""
        return LinkGraph.build(
            platform_id=platform_id,
            articles=self.load_articles(session, platform_id),
            edges=self.load_internal_links(session, platform_id),
            external_links=self.load_external_links(session, platform_id),
        )

    def upsert_internal_link(self, session: Session, edge: InternalEdge) -> bool:
        """
        Insert an internal link unless the pair is already linked.

        Returns:
            True if a link was inserted, False for self-loops and existing pairs
        """
        if edge.source_id == edge.target_id:
            return False

        existing = session.query(InternalLink).filter_by(
            source_article_id=edge.source_id,
            target_article_id=edge.target_id,
        ).first()
        if existing:
            return False

        link = InternalLink(
            source_article_id=edge.source_id,
            target_article_id=edge.target_id,
            anchor_text=edge.anchor_text,
            anchor_type='automatic' if edge.is_automatic else 'manual',
            position=edge.position,
            link_context=edge.link_context,
            relevance_score=edge.relevance_score,
            is_automatic=edge.is_automatic,
            created_at=edge.created_at or datetime.utcnow(),
        )
        session.add(link)
        session.flush()
        edge.id = link.id
        return True

    def update_external_link(self, session: Session, edge: ExternalEdge) -> bool:
        """
        Write verification or repair state back to an external link.

        Returns:
            False if the link no longer exists
        """
        link = session.get(ExternalLink, edge.id)
        if link is None:
            return False

        link.url = edge.url
        link.domain = edge.domain
        link.is_broken = edge.is_broken
        link.last_verified_at = edge.last_verified_at
        link.last_status_code = edge.last_status_code
        link.last_response_time_ms = edge.last_response_time_ms
        link.verification_error = edge.verification_error
        link.replaced_from_url = edge.replaced_from_url
        link.updated_at = datetime.utcnow()
        session.flush()
        return True

    # Run history

    def save_run(
        self,
        session: Session,
        operation: str,
        platform_id: int,
        started_at: datetime,
        parameters: dict = None,
        success: bool = True,
        summary: dict = None,
        error_message: str = None
    ) -> EngineRun:
        """Record the execution log of one engine operation."""
        completed_at = datetime.utcnow()
        run = EngineRun(
            operation=operation,
            platform_id=platform_id,
            parameters=parameters,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            success=success,
            summary=summary,
            error_message=error_message,
        )
        session.add(run)
        session.commit()
        return run

    def get_recent_runs(self, session: Session, platform_id: int = None, limit: int = 20) -> List[EngineRun]:
        query = session.query(EngineRun)
        if platform_id is not None:
            query = query.filter(EngineRun.platform_id == platform_id)
        return query.order_by(EngineRun.started_at.desc(), EngineRun.id.desc()).limit(limit).all()
