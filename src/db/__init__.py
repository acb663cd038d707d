"""
Database package for the link graph.
"""

from .models import Base, Platform, Article, InternalLink, ExternalLink, AuthorityDomain, EngineRun, ContentType, ArticleStatus, LinkContext, DomainCategory
from .database import Database

__all__ = ['Base', 'Platform', 'Article', 'InternalLink', 'ExternalLink', 'AuthorityDomain', 'EngineRun', 'ContentType', 'ArticleStatus', 'LinkContext', 'DomainCategory', 'Database']
