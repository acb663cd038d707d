"""
Article authority ranking using PageRank algorithm.

Propagates authority across the internal link graph of one platform. The
intuition is the classic random surfer: a reader follows an outbound link
with probability `damping` and jumps to a random article otherwise.

- Edge from A -> B passes score(A) / outdegree(A) to B
- Articles without outbound links (dead-ends) spread their score uniformly
  over all articles, so the score vector always sums to 1
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np

from domain.graph import InternalEdge, LinkGraph
from domain.types import ContentType, Severity

ProgressCallback = Callable[[int, int], None]


@dataclass
class AuthorityScore:
    article_id: int
    raw: float
    normalized: float
    rank: int
    inbound: int
    outbound: int

    def to_dict(self) -> Dict:
        return {
            'article_id': self.article_id,
            'raw': self.raw,
            'normalized': self.normalized,
            'rank': self.rank,
            'inbound': self.inbound,
            'outbound': self.outbound,
        }


@dataclass
class AuthorityResult:
    """Outcome of one propagation run."""
    scores: Dict[int, AuthorityScore] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = True
    convergence_delta: float = 0.0
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def raw_scores(self) -> Dict[int, float]:
        return {article_id: s.raw for article_id, s in self.scores.items()}

    @property
    def normalized_scores(self) -> Dict[int, float]:
        return {article_id: s.normalized for article_id, s in self.scores.items()}

    def ranking(self) -> List[AuthorityScore]:
        """Scores ordered by rank (1 = most authoritative)."""
        return sorted(self.scores.values(), key=lambda s: s.rank)

    def to_dict(self) -> Dict:
        return {
            'iterations': self.iterations,
            'converged': self.converged,
            'convergence_delta': self.convergence_delta,
            'cancelled': self.cancelled,
            'duration_seconds': self.duration_seconds,
            'scores': [s.to_dict() for s in self.ranking()],
        }


class AuthorityRankCalculator:
    """Calculate article authority using PageRank power iteration."""

    def __init__(
        self,
        damping: float = 0.85,
        max_iter: int = 100,
        tol: float = 1e-4
    ):
        """
        Initialize PageRank calculator.

        Args:
            damping: Damping factor (0-1). Standard is 0.85.
            max_iter: Maximum iterations. Hitting the cap is a soft failure:
                the best-effort vector is returned with converged=False.
            tol: Convergence tolerance on the L1 change between iterations.
        """
        if not 0.0 <= damping <= 1.0:
            raise ValueError(f"damping must be within [0, 1], got {damping}")
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        self.damping = damping
        self.max_iter = max_iter
        self.tol = tol

    def calculate(
        self,
        graph: LinkGraph,
        node_ids: Optional[Iterable[int]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> AuthorityResult:
        """
        Calculate PageRank scores for the articles of a graph.

        Args:
            graph: Link graph snapshot
            node_ids: Restrict the computation to these articles (edges to
                articles outside the set are ignored). Defaults to all nodes.
            progress_callback: Called as (iteration, max_iter) after each iteration
            cancel_event: When set, iteration stops and the current vector is
                returned with cancelled=True

        Returns:
            AuthorityResult with raw scores (sum = 1), normalized 0-100 scores
            and a total rank order (ties broken by article id)
        """
        start_time = time.time()
        ids = sorted(graph.nodes if node_ids is None else set(node_ids) & set(graph.nodes))

        if not ids:
            return AuthorityResult()

        n = len(ids)
        id_to_idx = {article_id: i for i, article_id in enumerate(ids)}

        # Unique edge pairs restricted to the selected nodes
        sources = []
        targets = []
        for source_id in ids:
            for target_id in sorted(graph.outbound.get(source_id, ())):
                if target_id in id_to_idx:
                    sources.append(id_to_idx[source_id])
                    targets.append(id_to_idx[target_id])

        src = np.array(sources, dtype=np.int64)
        dst = np.array(targets, dtype=np.int64)
        out_degree = np.bincount(src, minlength=n).astype(float)
        in_degree = np.bincount(dst, minlength=n)
        dangling_mask = out_degree == 0

        pr = np.ones(n) / n
        iterations = 0
        delta = 0.0
        converged = False
        cancelled = False

        for iteration in range(self.max_iter):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

            iterations = iteration + 1

            if len(src) > 0:
                weights = pr[src] / out_degree[src]
                link_contrib = np.bincount(dst, weights=weights, minlength=n)
            else:
                link_contrib = np.zeros(n)

            # Dangling nodes redistribute uniformly
            dangling_contrib = pr[dangling_mask].sum() / n

            pr_new = (1 - self.damping) / n + self.damping * (link_contrib + dangling_contrib)

            # Normalize (ensures sum = 1.0)
            pr_new = pr_new / pr_new.sum()

            delta = float(np.abs(pr_new - pr).sum())
            pr = pr_new

            if progress_callback:
                progress_callback(iterations, self.max_iter)

            if delta < self.tol:
                converged = True
                break

        pr_max = pr.max()
        if pr_max > 0:
            pr_normalized = pr / pr_max * 100.0
        else:
            pr_normalized = np.zeros(n)

        # Deterministic total order: score descending, then article id
        order = sorted(range(n), key=lambda i: (-round(float(pr[i]), 12), ids[i]))
        ranks = {ids[i]: position + 1 for position, i in enumerate(order)}

        scores = {
            article_id: AuthorityScore(
                article_id=article_id,
                raw=float(pr[idx]),
                normalized=round(float(pr_normalized[idx]), 4),
                rank=ranks[article_id],
                inbound=int(in_degree[idx]),
                outbound=int(out_degree[idx]),
            )
            for article_id, idx in id_to_idx.items()
        }

        return AuthorityResult(
            scores=scores,
            iterations=iterations,
            converged=converged,
            convergence_delta=delta,
            cancelled=cancelled,
            duration_seconds=time.time() - start_time,
        )

    def identify_high_value(self, result: AuthorityResult, limit: int = 20) -> List[AuthorityScore]:
        """Top articles by authority."""
        return result.ranking()[:limit]

    def identify_low_value(self, result: AuthorityResult, limit: int = 20) -> List[AuthorityScore]:
        """Least authoritative articles, weakest first."""
        return list(reversed(result.ranking()))[:limit]

    def simulate_link_addition(
        self,
        graph: LinkGraph,
        source_id: int,
        target_id: int,
        node_ids: Optional[Iterable[int]] = None
    ) -> Dict:
        """
        Compare the target's authority before and after adding source -> target.

        Runs on an in-memory copy of the graph; nothing is persisted.

        Returns:
            Dict with before/after raw, normalized and rank of the target and
            the deltas (positive rank_delta = the target moved up). Empty dict
            if the target is not part of the computation.
        """
        node_ids = list(node_ids) if node_ids is not None else None
        before = self.calculate(graph, node_ids=node_ids)
        if target_id not in before.scores:
            return {}

        simulated = graph.copy()
        simulated.add_edge(InternalEdge(source_id=source_id, target_id=target_id, is_automatic=True))
        after = self.calculate(simulated, node_ids=node_ids)

        b = before.scores[target_id]
        a = after.scores[target_id]
        return {
            'source_article_id': source_id,
            'target_article_id': target_id,
            'before': {'raw': b.raw, 'normalized': b.normalized, 'rank': b.rank},
            'after': {'raw': a.raw, 'normalized': a.normalized, 'rank': a.rank},
            'change': {
                'raw_delta': a.raw - b.raw,
                'normalized_delta': round(a.normalized - b.normalized, 4),
                'rank_delta': b.rank - a.rank,
            },
        }

    def optimize_link_flow(self, graph: LinkGraph, result: AuthorityResult) -> List[Dict]:
        """
        Recommendations to improve how authority flows through the graph.

        A score is "high" when the article holds more than the average share
        (raw * N > 1) and "low" below half of it.
        """
        n = len(result.scores)
        if n == 0:
            return []

        recommendations = []
        for score in result.ranking():
            node = graph.nodes.get(score.article_id)
            relative = score.raw * n

            if relative > 1.0 and score.outbound < 5:
                recommendations.append({
                    'type': 'add_outbound_links',
                    'priority': Severity.HIGH,
                    'article_id': score.article_id,
                    'current_outbound': score.outbound,
                    'authority': score.normalized,
                    'suggestion': (
                        f"Article has high authority ({score.normalized:.1f}) but only "
                        f"{score.outbound} outbound links. Add links to pass authority on."
                    ),
                })
            elif relative < 0.5 and score.outbound > 10:
                recommendations.append({
                    'type': 'reduce_outbound_links',
                    'priority': Severity.MEDIUM,
                    'article_id': score.article_id,
                    'current_outbound': score.outbound,
                    'authority': score.normalized,
                    'suggestion': (
                        f"Article has low authority ({score.normalized:.1f}) but "
                        f"{score.outbound} outbound links. Consider concentrating them."
                    ),
                })

            if node is not None and node.content_type == ContentType.PILLAR and score.inbound < 5:
                recommendations.append({
                    'type': 'boost_pillar',
                    'priority': Severity.HIGH,
                    'article_id': score.article_id,
                    'current_inbound': score.inbound,
                    'suggestion': (
                        f"Pillar article has only {score.inbound} inbound links. "
                        "Link its satellites back to it."
                    ),
                })

        recommendations.sort(key=lambda r: (r['priority'].order, r['article_id']))
        return recommendations

    def platform_stats(self, result: AuthorityResult) -> Dict:
        """Distribution of normalized scores."""
        if not result.scores:
            return {'total_articles': 0}

        scores = np.array([s.normalized for s in result.scores.values()])
        return {
            'total_articles': len(scores),
            'statistics': {
                'min': float(scores.min()),
                'max': float(scores.max()),
                'mean': round(float(scores.mean()), 4),
                'median': float(np.median(scores)),
                'percentile_25': float(np.percentile(scores, 25)),
                'percentile_75': float(np.percentile(scores, 75)),
            },
            'distribution': {
                'high_75_plus': int((scores >= 75).sum()),
                'medium_25_75': int(((scores >= 25) & (scores < 75)).sum()),
                'low_under_25': int((scores < 25).sum()),
            },
            'top_10': [s.to_dict() for s in result.ranking()[:10]],
        }
