"""
Link balance analysis.

Computes inbound/outbound distribution statistics over a link graph
snapshot and classifies structural defects (orphans, dead-ends, weakly
connected articles, empty pillars, uneven distribution). Purely
analytical: nothing here mutates the graph or touches the database.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from domain.graph import ArticleNode, LinkGraph
from domain.types import ArticleStatus, BalanceBand, DefectKind, Severity


@dataclass
class DistributionStats:
    min: float = 0
    max: float = 0
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'min': self.min,
            'max': self.max,
            'avg': self.mean,
            'median': self.median,
            'std_dev': self.std_dev,
        }


@dataclass
class DistributionSnapshot:
    total_articles: int
    total_internal_links: int
    inbound: DistributionStats
    outbound: DistributionStats
    imbalance_ratio: float
    band: BalanceBand

    def to_dict(self) -> Dict:
        return {
            'total_articles': self.total_articles,
            'total_internal_links': self.total_internal_links,
            'inbound': self.inbound.to_dict(),
            'outbound': self.outbound.to_dict(),
            'imbalance_ratio': self.imbalance_ratio,
            'band': self.band.value,
        }


@dataclass
class Defect:
    kind: DefectKind
    severity: Severity
    article_id: int
    title: str
    content_type: str
    language: str
    inbound: int = 0
    outbound: int = 0

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'severity': self.severity.value,
            'article_id': self.article_id,
            'title': self.title,
            'content_type': self.content_type,
            'language': self.language,
            'inbound': self.inbound,
            'outbound': self.outbound,
        }


@dataclass
class Remediation:
    """Ranked, human-readable improvement suggestion."""
    kind: DefectKind
    severity: Severity
    message: str
    action: str
    count: int = 0
    article_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'severity': self.severity.value,
            'message': self.message,
            'action': self.action,
            'count': self.count,
            'article_ids': self.article_ids,
        }


@dataclass
class BalanceReport:
    platform_id: int
    language: Optional[str]
    statuses: List[str]
    distribution: DistributionSnapshot
    orphans: List[Defect] = field(default_factory=list)
    dead_ends: List[Defect] = field(default_factory=list)
    weakly_connected: List[Defect] = field(default_factory=list)
    empty_pillars: List[Defect] = field(default_factory=list)
    broken_external_links: int = 0
    remediations: List[Remediation] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def summary(self) -> Dict:
        return {
            'total_articles': self.distribution.total_articles,
            'total_internal_links': self.distribution.total_internal_links,
            'orphans': len(self.orphans),
            'dead_ends': len(self.dead_ends),
            'weakly_connected': len(self.weakly_connected),
            'empty_pillars': len(self.empty_pillars),
            'broken_external_links': self.broken_external_links,
            'imbalance_ratio': self.distribution.imbalance_ratio,
            'band': self.distribution.band.value,
        }

    def to_dict(self) -> Dict:
        return {
            'platform_id': self.platform_id,
            'language': self.language,
            'statuses': self.statuses,
            'summary': self.summary,
            'distribution': self.distribution.to_dict(),
            'orphans': [d.to_dict() for d in self.orphans],
            'dead_ends': [d.to_dict() for d in self.dead_ends],
            'weakly_connected': [d.to_dict() for d in self.weakly_connected],
            'empty_pillars': [d.to_dict() for d in self.empty_pillars],
            'remediations': [r.to_dict() for r in self.remediations],
            'generated_at': self.generated_at.isoformat(),
        }


def _defect(kind: DefectKind, severity: Severity, node: ArticleNode, graph: LinkGraph) -> Defect:
    return Defect(
        kind=kind,
        severity=severity,
        article_id=node.id,
        title=node.title,
        content_type=node.content_type.value,
        language=node.language,
        inbound=graph.in_degree(node.id),
        outbound=graph.out_degree(node.id),
    )


def score_to_grade(score: int) -> str:
    """Convert a 0-100 health score to a letter grade."""
    if score >= 90:
        return 'A'
    if score >= 80:
        return 'B'
    if score >= 70:
        return 'C'
    if score >= 60:
        return 'D'
    return 'F'


class LinkBalanceAnalyzer:
    """Analyze link distribution and structural defects of a link graph."""

    def __init__(
        self,
        good_threshold: float = 0.2,
        warning_threshold: float = 0.4,
        weakly_connected_min_links: int = 3,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ):
        """
        Args:
            good_threshold: Imbalance ratio below this is GOOD
            warning_threshold: Imbalance ratio below this (and >= good) is
                WARNING, anything above is POOR
            weakly_connected_min_links: Articles with fewer links in total
                (inbound + outbound) are reported as weakly connected
            statuses: Default status scope for defect detection (published only)
        """
        if not 0.0 <= good_threshold < warning_threshold <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= good < warning <= 1")
        self.good_threshold = good_threshold
        self.warning_threshold = warning_threshold
        self.weakly_connected_min_links = weakly_connected_min_links
        self.statuses = frozenset(statuses) if statuses is not None else frozenset({ArticleStatus.PUBLISHED})

    @staticmethod
    def compute_stats(values: Sequence[float]) -> DistributionStats:
        """Min, max, mean, median and population standard deviation."""
        if len(values) == 0:
            return DistributionStats()
        arr = np.asarray(values, dtype=float)
        return DistributionStats(
            min=int(arr.min()) if float(arr.min()).is_integer() else float(arr.min()),
            max=int(arr.max()) if float(arr.max()).is_integer() else float(arr.max()),
            mean=round(float(arr.mean()), 4),
            median=float(np.median(arr)),
            std_dev=round(float(arr.std()), 4),
        )

    @staticmethod
    def imbalance_ratio(inbound_counts: Sequence[float]) -> float:
        """
        Coefficient of variation of inbound counts, clamped to [0, 1].

        0 means every article receives the same number of links; an empty
        or link-less scope is considered balanced.
        """
        if len(inbound_counts) == 0:
            return 0.0
        arr = np.asarray(inbound_counts, dtype=float)
        mean = arr.mean()
        if mean == 0:
            return 0.0
        return round(float(min(1.0, max(0.0, arr.std() / mean))), 4)

    def band(self, ratio: float) -> BalanceBand:
        if ratio < self.good_threshold:
            return BalanceBand.GOOD
        if ratio < self.warning_threshold:
            return BalanceBand.WARNING
        return BalanceBand.POOR

    def _scope(
        self,
        graph: LinkGraph,
        language: Optional[str],
        statuses: Optional[Iterable[ArticleStatus]]
    ) -> List[ArticleNode]:
        return graph.select(statuses=statuses if statuses is not None else self.statuses, language=language)

    def distribution(
        self,
        graph: LinkGraph,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> DistributionSnapshot:
        """Distribution snapshot, always recomputed from the current edges."""
        nodes = self._scope(graph, language, statuses)
        inbound = [graph.in_degree(n.id) for n in nodes]
        outbound = [graph.out_degree(n.id) for n in nodes]
        ratio = self.imbalance_ratio(inbound)
        return DistributionSnapshot(
            total_articles=len(nodes),
            total_internal_links=sum(outbound),
            inbound=self.compute_stats(inbound),
            outbound=self.compute_stats(outbound),
            imbalance_ratio=ratio,
            band=self.band(ratio),
        )

    def find_orphans(
        self,
        graph: LinkGraph,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> List[Defect]:
        """Articles in scope with zero inbound internal links."""
        return [
            _defect(DefectKind.ORPHAN, Severity.CRITICAL if n.is_pillar else Severity.HIGH, n, graph)
            for n in self._scope(graph, language, statuses)
            if graph.in_degree(n.id) == 0
        ]

    def find_dead_ends(
        self,
        graph: LinkGraph,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> List[Defect]:
        """Articles in scope with zero outbound internal links."""
        return [
            _defect(DefectKind.DEAD_END, Severity.HIGH if n.is_pillar else Severity.MEDIUM, n, graph)
            for n in self._scope(graph, language, statuses)
            if graph.out_degree(n.id) == 0
        ]

    def find_weakly_connected(
        self,
        graph: LinkGraph,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> List[Defect]:
        """Articles with fewer than `weakly_connected_min_links` links in total, weakest first."""
        weak = [
            _defect(DefectKind.WEAKLY_CONNECTED, Severity.LOW, n, graph)
            for n in self._scope(graph, language, statuses)
            if graph.in_degree(n.id) + graph.out_degree(n.id) < self.weakly_connected_min_links
        ]
        weak.sort(key=lambda d: (d.inbound + d.outbound, d.article_id))
        return weak

    def find_empty_pillars(
        self,
        graph: LinkGraph,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> List[Defect]:
        """Pillars that do not link to any of their satellites."""
        empty = []
        for node in self._scope(graph, language, statuses):
            if not node.is_pillar:
                continue
            satellites = {s.id for s in graph.satellites_of(node.id)}
            if not satellites & graph.outbound.get(node.id, set()):
                empty.append(_defect(DefectKind.EMPTY_PILLAR, Severity.HIGH, node, graph))
        return empty

    def analyze(
        self,
        graph: LinkGraph,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> BalanceReport:
        """
        Full structural report of a link graph.

        Args:
            graph: Link graph snapshot
            language: Optional language filter
            statuses: Status scope; defaults to the analyzer scope (published)

        Returns:
            BalanceReport with distribution snapshot, defect lists and
            remediations ranked by severity
        """
        scope = frozenset(statuses) if statuses is not None else self.statuses
        distribution = self.distribution(graph, language, scope)
        orphans = self.find_orphans(graph, language, scope)
        dead_ends = self.find_dead_ends(graph, language, scope)
        weakly_connected = self.find_weakly_connected(graph, language, scope)
        empty_pillars = self.find_empty_pillars(graph, language, scope)

        scoped_ids = {n.id for n in self._scope(graph, language, scope)}
        broken_external = sum(
            1 for link in graph.external_links
            if link.is_broken and link.article_id in scoped_ids
        )

        report = BalanceReport(
            platform_id=graph.platform_id,
            language=language,
            statuses=sorted(s.value for s in scope),
            distribution=distribution,
            orphans=orphans,
            dead_ends=dead_ends,
            weakly_connected=weakly_connected,
            empty_pillars=empty_pillars,
            broken_external_links=broken_external,
        )
        report.remediations = self.suggest_improvements(report)
        return report

    def suggest_improvements(self, report: BalanceReport) -> List[Remediation]:
        """Remediations ranked by severity, then by number of affected articles."""
        remediations = []

        if report.orphans:
            severity = min((d.severity for d in report.orphans), key=lambda s: s.order)
            remediations.append(Remediation(
                kind=DefectKind.ORPHAN,
                severity=severity,
                count=len(report.orphans),
                message=f"{len(report.orphans)} articles have no inbound links",
                action="Run `linkgraph graph repair` to create inbound links from related articles",
                article_ids=[d.article_id for d in report.orphans],
            ))

        if report.dead_ends:
            severity = min((d.severity for d in report.dead_ends), key=lambda s: s.order)
            remediations.append(Remediation(
                kind=DefectKind.DEAD_END,
                severity=severity,
                count=len(report.dead_ends),
                message=f"{len(report.dead_ends)} articles have no outbound links",
                action="Add internal links to guide readers to related content",
                article_ids=[d.article_id for d in report.dead_ends],
            ))

        if report.weakly_connected:
            remediations.append(Remediation(
                kind=DefectKind.WEAKLY_CONNECTED,
                severity=Severity.LOW,
                count=len(report.weakly_connected),
                message=(
                    f"{len(report.weakly_connected)} articles have fewer than "
                    f"{self.weakly_connected_min_links} total links"
                ),
                action="Consider adding more contextual links",
                article_ids=[d.article_id for d in report.weakly_connected],
            ))

        band = report.distribution.band
        if band != BalanceBand.GOOD:
            remediations.append(Remediation(
                kind=DefectKind.IMBALANCE,
                severity=Severity.MEDIUM if band == BalanceBand.POOR else Severity.LOW,
                message=(
                    f"Inbound link distribution is uneven "
                    f"(imbalance ratio {report.distribution.imbalance_ratio:.2f}, {band.value})"
                ),
                action="Redistribute links from over-linked to under-linked articles",
            ))

        if report.broken_external_links:
            remediations.append(Remediation(
                kind=DefectKind.BROKEN_EXTERNAL,
                severity=Severity.HIGH,
                count=report.broken_external_links,
                message=f"{report.broken_external_links} external links are broken",
                action="Run `linkgraph links verify` then `linkgraph graph repair` to reroute them",
            ))

        if report.empty_pillars:
            remediations.append(Remediation(
                kind=DefectKind.EMPTY_PILLAR,
                severity=Severity.HIGH,
                count=len(report.empty_pillars),
                message=f"{len(report.empty_pillars)} pillar articles do not link to any satellite",
                action="Link pillars to their satellite articles",
                article_ids=[d.article_id for d in report.empty_pillars],
            ))

        remediations.sort(key=lambda r: (r.severity.order, -r.count, r.kind.value))
        return remediations

    def analyze_article(self, graph: LinkGraph, article_id: int) -> Optional[Dict]:
        """
        Link analysis for one article: counts, health score and recommendations.

        Returns:
            Dict with inbound/outbound/external breakdown, health and
            recommendations, or None if the article is not in the graph
        """
        node = graph.nodes.get(article_id)
        if node is None:
            return None

        inbound = graph.inbound.get(article_id, set())
        outbound = graph.outbound.get(article_id, set())
        pillar_ids = {i for i in graph.nodes if graph.nodes[i].is_pillar}
        externals = graph.external_links_for(article_id)
        broken = sum(1 for link in externals if link.is_broken)

        analysis = {
            'article_id': node.id,
            'title': node.title,
            'type': node.content_type.value,
            'inbound': {
                'total': len(inbound),
                'from_pillars': len(inbound & pillar_ids),
                'from_articles': len(inbound - pillar_ids),
            },
            'outbound': {
                'total': len(outbound),
                'to_pillars': len(outbound & pillar_ids),
                'to_articles': len(outbound - pillar_ids),
            },
            'external': {
                'total': len(externals),
                'broken': broken,
            },
        }

        score = 100
        issues = []
        if not inbound and not node.is_pillar:
            score -= 30
            issues.append('No inbound links (orphan article)')
        if not outbound:
            score -= 20
            issues.append('No outbound links (dead end)')
        if node.pillar_id is not None and node.pillar_id not in outbound:
            score -= 15
            issues.append('No link to parent pillar')
        if not externals:
            score -= 10
            issues.append('No external links')
        if broken:
            score -= min(20, broken * 5)
            issues.append(f'{broken} broken external links')

        score = max(0, score)
        analysis['health'] = {'score': score, 'grade': score_to_grade(score), 'issues': issues}

        recommendations = []
        if not inbound:
            recommendations.append({'priority': Severity.HIGH.value, 'type': 'add_inbound',
                                    'message': 'Add inbound links from related articles'})
        if len(outbound) < 3:
            recommendations.append({'priority': Severity.MEDIUM.value, 'type': 'add_outbound',
                                    'message': 'Add more outbound links to related content'})
        if node.pillar_id is not None and node.pillar_id not in outbound:
            recommendations.append({'priority': Severity.HIGH.value, 'type': 'link_to_pillar',
                                    'message': 'Add link to parent pillar article'})
        if len(externals) < 2:
            recommendations.append({'priority': Severity.MEDIUM.value, 'type': 'add_external',
                                    'message': 'Add external links to authoritative sources'})
        if broken:
            recommendations.append({'priority': Severity.HIGH.value, 'type': 'fix_broken',
                                    'message': f'Fix {broken} broken external links'})
        analysis['recommendations'] = recommendations

        return analysis
