"""
In-memory snapshot of one platform's link graph.

The repository loads articles and links once per analysis cycle; every
algorithm (authority propagation, balance analysis, similarity linking,
repair planning) then works against this snapshot through adjacency sets
keyed by article id, without further database round-trips.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from domain.types import ArticleStatus, ContentType, LinkContext


@dataclass(frozen=True)
class ArticleNode:
    """Article as seen by the engine (immutable during one run)."""
    id: int
    platform_id: int
    title: str
    language: str
    country: Optional[str] = None
    content_type: ContentType = ContentType.ARTICLE
    status: ArticleStatus = ArticleStatus.PUBLISHED
    content: str = ''
    theme: Optional[str] = None
    pillar_id: Optional[int] = None

    @property
    def is_published(self) -> bool:
        return self.status == ArticleStatus.PUBLISHED

    @property
    def is_pillar(self) -> bool:
        return self.content_type == ContentType.PILLAR


@dataclass
class InternalEdge:
    """Directed article-to-article link."""
    source_id: int
    target_id: int
    anchor_text: str = ''
    position: Optional[int] = None
    is_automatic: bool = False
    link_context: LinkContext = LinkContext.RELATED
    relevance_score: Optional[float] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class ExternalEdge:
    """Article-to-outside-domain link."""
    id: Optional[int]
    article_id: int
    url: str
    domain: str
    is_broken: bool = False
    last_verified_at: Optional[datetime] = None
    last_status_code: Optional[int] = None
    last_response_time_ms: Optional[int] = None
    verification_error: Optional[str] = None
    topic: Optional[str] = None
    anchor_text: Optional[str] = None
    replaced_from_url: Optional[str] = None


@dataclass
class LinkGraph:
    """
    Adjacency-list view of a platform's internal links.

    Self-loops and edges pointing outside the loaded node set are dropped
    on construction. Parallel edges between the same pair collapse into
    one adjacency entry (the edge list keeps every edge).
    """
    platform_id: int
    nodes: Dict[int, ArticleNode] = field(default_factory=dict)
    edges: List[InternalEdge] = field(default_factory=list)
    external_links: List[ExternalEdge] = field(default_factory=list)

    def __post_init__(self):
        self.outbound: Dict[int, Set[int]] = {node_id: set() for node_id in self.nodes}
        self.inbound: Dict[int, Set[int]] = {node_id: set() for node_id in self.nodes}
        self._automatic_pairs: Set[tuple] = set()

        valid_edges = []
        for edge in self.edges:
            if self._index_edge(edge):
                valid_edges.append(edge)
        self.edges = valid_edges

    @classmethod
    def build(
        cls,
        platform_id: int,
        articles: Iterable[ArticleNode],
        edges: Iterable[InternalEdge],
        external_links: Iterable[ExternalEdge] = ()
    ) -> LinkGraph:
        return cls(
            platform_id=platform_id,
            nodes={a.id: a for a in articles},
            edges=list(edges),
            external_links=list(external_links),
        )

    def _index_edge(self, edge: InternalEdge) -> bool:
        if edge.source_id == edge.target_id:
            return False
        if edge.source_id not in self.nodes or edge.target_id not in self.nodes:
            return False
        self.outbound[edge.source_id].add(edge.target_id)
        self.inbound[edge.target_id].add(edge.source_id)
        if edge.is_automatic:
            self._automatic_pairs.add((edge.source_id, edge.target_id))
        return True

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        """Number of distinct (source, target) pairs."""
        return sum(len(targets) for targets in self.outbound.values())

    def out_degree(self, article_id: int) -> int:
        return len(self.outbound.get(article_id, ()))

    def in_degree(self, article_id: int) -> int:
        return len(self.inbound.get(article_id, ()))

    def has_edge(self, source_id: int, target_id: int) -> bool:
        return target_id in self.outbound.get(source_id, ())

    def has_automatic_edge(self, source_id: int, target_id: int) -> bool:
        return (source_id, target_id) in self._automatic_pairs

    def add_edge(self, edge: InternalEdge) -> bool:
        """
        Add an edge to the snapshot.

        Returns:
            False if the edge is a self-loop, references an unknown node or
            duplicates an existing link for the same pair.
        """
        if self.has_edge(edge.source_id, edge.target_id):
            return False
        if not self._index_edge(edge):
            return False
        self.edges.append(edge)
        return True

    def copy(self) -> LinkGraph:
        """Independent copy sharing the immutable article nodes."""
        return LinkGraph(
            platform_id=self.platform_id,
            nodes=dict(self.nodes),
            edges=[copy.copy(e) for e in self.edges],
            external_links=[copy.copy(e) for e in self.external_links],
        )

    def select(
        self,
        statuses: Optional[Iterable[ArticleStatus]] = None,
        language: Optional[str] = None
    ) -> List[ArticleNode]:
        """Nodes matching a status scope and optional language, ordered by id."""
        status_set = set(statuses) if statuses is not None else None
        selected = []
        for node_id in sorted(self.nodes):
            node = self.nodes[node_id]
            if status_set is not None and node.status not in status_set:
                continue
            if language and node.language != language:
                continue
            selected.append(node)
        return selected

    def satellites_of(self, pillar_id: int) -> List[ArticleNode]:
        return [n for n in self.select() if n.pillar_id == pillar_id]

    def external_links_for(self, article_id: int) -> List[ExternalEdge]:
        return [link for link in self.external_links if link.article_id == article_id]
