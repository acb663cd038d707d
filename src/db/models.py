"""
SQLAlchemy models for the link graph.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, Enum, JSON, Float, Boolean, text
from sqlalchemy.orm import relationship, declarative_base

from domain.types import ContentType, ArticleStatus, LinkContext, DomainCategory

Base = declarative_base()


class Platform(Base):
    """Publishing platform (one link graph per platform)."""
    __tablename__ = 'platforms'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    domain = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    articles = relationship('Article', back_populates='platform', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Platform(id={self.id}, name='{self.name}')>"


class Article(Base):
    """Generated article (graph node)."""
    __tablename__ = 'articles'

    id = Column(Integer, primary_key=True)
    platform_id = Column(Integer, ForeignKey('platforms.id', ondelete='CASCADE'), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    slug = Column(String(500), nullable=True)
    language_code = Column(String(8), nullable=False, index=True)
    country_code = Column(String(8), nullable=True, index=True)
    content_type = Column(Enum(ContentType), nullable=False, default=ContentType.ARTICLE, index=True)
    status = Column(Enum(ArticleStatus), nullable=False, default=ArticleStatus.DRAFT, index=True)
    theme = Column(String(255), nullable=True)
    pillar_id = Column(Integer, ForeignKey('articles.id', ondelete='SET NULL'), nullable=True, index=True)
    content = Column(Text, nullable=False, default='')
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    platform = relationship('Platform', back_populates='articles')
    pillar = relationship('Article', remote_side=[id])
    outbound_links = relationship(
        'InternalLink', foreign_keys='InternalLink.source_article_id',
        back_populates='source', cascade='all, delete-orphan'
    )
    inbound_links = relationship(
        'InternalLink', foreign_keys='InternalLink.target_article_id',
        back_populates='target', cascade='all, delete-orphan'
    )
    external_links = relationship('ExternalLink', back_populates='article', cascade='all, delete-orphan')

    __table_args__ = (
        Index('idx_articles_platform_status_language', 'platform_id', 'status', 'language_code'),
    )

    def __repr__(self):
        return f"<Article(id={self.id}, title='{self.title[:50]}...')>"


class InternalLink(Base):
    """Article-to-article hyperlink (directed graph edge)."""
    __tablename__ = 'internal_links'

    id = Column(Integer, primary_key=True)
    source_article_id = Column(Integer, ForeignKey('articles.id', ondelete='CASCADE'), nullable=False)
    target_article_id = Column(Integer, ForeignKey('articles.id', ondelete='CASCADE'), nullable=False)
    anchor_text = Column(String(255), nullable=False)
    anchor_type = Column(String(50), nullable=True)
    position = Column(Integer, nullable=True)               # Character offset in source content
    link_context = Column(Enum(LinkContext), nullable=False, default=LinkContext.RELATED)
    relevance_score = Column(Float, nullable=True)
    is_automatic = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    source = relationship('Article', foreign_keys=[source_article_id], back_populates='outbound_links')
    target = relationship('Article', foreign_keys=[target_article_id], back_populates='inbound_links')

    __table_args__ = (
        Index('idx_internal_links_source', 'source_article_id'),
        Index('idx_internal_links_target', 'target_article_id'),
        # At most one engine-created edge per (source, target)
        Index(
            'uq_internal_links_automatic_pair', 'source_article_id', 'target_article_id',
            unique=True,
            sqlite_where=text('is_automatic = 1'),
            postgresql_where=text('is_automatic'),
        ),
    )

    def __repr__(self):
        return f"<InternalLink({self.source_article_id} -> {self.target_article_id}, automatic={self.is_automatic})>"


class ExternalLink(Base):
    """Article-to-outside-domain hyperlink."""
    __tablename__ = 'external_links'

    id = Column(Integer, primary_key=True)
    article_id = Column(Integer, ForeignKey('articles.id', ondelete='CASCADE'), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    domain = Column(String(255), nullable=False, index=True)
    anchor_text = Column(String(255), nullable=True)
    topic = Column(String(255), nullable=True)
    is_broken = Column(Boolean, nullable=False, default=False, index=True)
    last_verified_at = Column(DateTime, nullable=True, index=True)
    last_status_code = Column(Integer, nullable=True)
    last_response_time_ms = Column(Integer, nullable=True)
    verification_error = Column(Text, nullable=True)
    replaced_from_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    article = relationship('Article', back_populates='external_links')

    def __repr__(self):
        return f"<ExternalLink(id={self.id}, url='{self.url[:60]}', broken={self.is_broken})>"


class AuthorityDomain(Base):
    """Curated, trust-scored external domain used as a replacement target."""
    __tablename__ = 'authority_domains'

    id = Column(Integer, primary_key=True)
    domain = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(Enum(DomainCategory), nullable=False, default=DomainCategory.AUTHORITY, index=True)
    country_code = Column(String(8), nullable=True, index=True)   # NULL = international
    languages = Column(JSON, nullable=False, default=list)
    topics = Column(JSON, nullable=False, default=list)
    trust_score = Column(Integer, nullable=False, default=50)     # 0-100
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    auto_discovered = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AuthorityDomain(domain='{self.domain}', trust={self.trust_score})>"


class EngineRun(Base):
    """Execution log of one engine operation (analysis, authority, verification, repair)."""
    __tablename__ = 'engine_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation = Column(String(50), nullable=False, index=True)
    platform_id = Column(Integer, nullable=True, index=True)
    parameters = Column(JSON, nullable=True)
    started_at = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    summary = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<EngineRun(operation='{self.operation}', platform={self.platform_id}, success={self.success})>"
