"""
Link Graph Intelligence Engine.

Facade over the authority propagator, balance analyzer, similarity
suggester, external link verifier and repair orchestrator. Every entry
point takes the platform explicitly, loads one consistent snapshot of the
graph from the repository and records an execution log.
"""

import copy
import sys
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

import settings
from db.database import Database
from domain.authority_domains import AuthorityDomainRegistry
from domain.authority_rank import AuthorityRankCalculator, AuthorityResult
from domain.config import LinkingConfig
from domain.graph import LinkGraph
from domain.link_balance import BalanceReport, LinkBalanceAnalyzer
from domain.types import ArticleStatus, VerificationFilter
from processors.link_verifier import (
    ExternalLinkVerifier,
    HostRateLimiter,
    HttpTransport,
    RetryPolicy,
    VerificationSummary,
    apply_result,
    verification_report,
)
from processors.repair import RepairOrchestrator, RepairResult
from processors.similarity import LinkSuggestion, SimilaritySuggester

ProgressCallback = Callable[[int, int], None]


class PlatformNotFoundError(LookupError):
    """Raised when an operation targets a platform that does not exist."""

    def __init__(self, platform_id):
        super().__init__(f"Platform not found: {platform_id}")
        self.platform_id = platform_id


class LinkGraphEngine:
    """Entry points of the link graph engine for one database."""

    def __init__(
        self,
        db: Database,
        config: Optional[LinkingConfig] = None,
        transport=None,
        rate_limiter: Optional[HostRateLimiter] = None
    ):
        """
        Args:
            db: Graph repository
            config: Engine configuration (defaults to LinkingConfig.from_settings())
            transport: HTTP transport for verification (HttpTransport built from
                config when omitted)
            rate_limiter: Per-host throttle for verification
        """
        self.db = db
        self.config = config or LinkingConfig.from_settings()
        self.transport = transport
        self.rate_limiter = rate_limiter or HostRateLimiter(self.config.verify_host_delay)

        self.calculator = AuthorityRankCalculator(
            damping=self.config.damping,
            max_iter=self.config.max_iterations,
            tol=self.config.tolerance,
        )
        self.analyzer = LinkBalanceAnalyzer(
            good_threshold=self.config.imbalance_good_threshold,
            warning_threshold=self.config.imbalance_warning_threshold,
            weakly_connected_min_links=self.config.weakly_connected_min_links,
            statuses=self.config.defect_statuses,
        )
        self.suggester = SimilaritySuggester(
            min_similarity=self.config.min_similarity,
            max_new_links=self.config.max_new_links,
            min_outbound=self.config.min_outbound,
            title_weight=self.config.title_weight,
            heading_weight=self.config.heading_weight,
            anchor_max_length=self.config.anchor_max_length,
            statuses=self.config.defect_statuses,
        )
        self.orchestrator = RepairOrchestrator(
            repository=db,
            suggester=self.suggester,
            analyzer=self.analyzer,
            min_trust=self.config.repair_min_trust,
            max_dead_ends=self.config.repair_max_dead_ends,
        )

        self._authority_cache: Dict[int, AuthorityResult] = {}
        self._cache_lock = threading.Lock()

    # Helpers

    def _require_platform(self, session: Session, platform_id: int):
        if not isinstance(platform_id, int) or isinstance(platform_id, bool):
            raise ValueError(f"platform_id must be an integer, got {platform_id!r}")
        platform = self.db.get_platform(session, platform_id)
        if platform is None:
            raise PlatformNotFoundError(platform_id)
        return platform

    def _load_graph(self, session: Session, platform_id: int) -> LinkGraph:
        self._require_platform(session, platform_id)
        return self.db.load_graph(session, platform_id)

    def _scoped_ids(self, graph: LinkGraph) -> List[int]:
        return [n.id for n in graph.select(statuses=self.config.defect_statuses)]

    def _save_run(
        self,
        operation: str,
        platform_id: Optional[int],
        started_at: datetime,
        parameters: dict = None,
        summary: dict = None,
        success: bool = True,
        error_message: str = None
    ):
        """Persist an execution log; failures only produce a warning."""
        try:
            session = self.db.get_session()
        except Exception as e:
            print(f"Warning: Failed to create engine log session: {e}", file=sys.stderr)
            return

        try:
            self.db.save_run(
                session,
                operation=operation,
                platform_id=platform_id,
                started_at=started_at,
                parameters=parameters,
                success=success,
                summary=summary,
                error_message=error_message,
            )
        except Exception as e:
            # Logging shouldn't crash the main operation
            session.rollback()
            print(f"Warning: Failed to save {operation} execution log: {e}", file=sys.stderr)
        finally:
            session.close()

    # Authority

    def compute_authority(
        self,
        platform_id: int,
        use_cache: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> AuthorityResult:
        """
        Authority scores of a platform's published articles.

        Results are cached per platform until `invalidate_authority` is
        called (repair does it after writing links). Cancelled runs are not
        cached.
        """
        if use_cache:
            with self._cache_lock:
                cached = self._authority_cache.get(platform_id)
            if cached is not None:
                return cached

        started_at = datetime.utcnow()
        session = self.db.get_session()
        try:
            graph = self._load_graph(session, platform_id)
        finally:
            session.close()

        result = self.calculator.calculate(
            graph,
            node_ids=self._scoped_ids(graph),
            progress_callback=progress_callback,
            cancel_event=cancel_event,
        )

        if not result.cancelled:
            with self._cache_lock:
                self._authority_cache[platform_id] = result

        top = result.ranking()[:10]
        self._save_run(
            'authority', platform_id, started_at,
            parameters={'damping': self.calculator.damping, 'max_iter': self.calculator.max_iter,
                        'tol': self.calculator.tol},
            summary={
                'articles': len(result.scores),
                'iterations': result.iterations,
                'converged': result.converged,
                'convergence_delta': result.convergence_delta,
                'cancelled': result.cancelled,
                'top': [{'article_id': s.article_id, 'score': s.normalized} for s in top],
            },
        )
        return result

    def invalidate_authority(self, platform_id: Optional[int] = None):
        """Drop cached authority scores (all platforms when platform_id is None)."""
        with self._cache_lock:
            if platform_id is None:
                self._authority_cache.clear()
            else:
                self._authority_cache.pop(platform_id, None)

    def authority_insights(self, platform_id: int, limit: int = 20) -> Dict:
        """High/low value articles, score distribution and link flow recommendations."""
        result = self.compute_authority(platform_id)
        session = self.db.get_session()
        try:
            graph = self._load_graph(session, platform_id)
        finally:
            session.close()

        return {
            'high_value': self.calculator.identify_high_value(result, limit),
            'low_value': self.calculator.identify_low_value(result, limit),
            'stats': self.calculator.platform_stats(result),
            'flow': self.calculator.optimize_link_flow(graph, result),
            'converged': result.converged,
            'iterations': result.iterations,
        }

    def simulate_link_addition(self, platform_id: int, source_id: int, target_id: int) -> Dict:
        """Effect of a hypothetical link on the target's authority (nothing is written)."""
        session = self.db.get_session()
        try:
            graph = self._load_graph(session, platform_id)
        finally:
            session.close()
        return self.calculator.simulate_link_addition(
            graph, source_id, target_id, node_ids=self._scoped_ids(graph)
        )

    # Analysis

    def analyze(
        self,
        platform_id: int,
        language: Optional[str] = None,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ) -> BalanceReport:
        """Structural health report of a platform's link graph (read-only)."""
        started_at = datetime.utcnow()
        session = self.db.get_session()
        try:
            graph = self._load_graph(session, platform_id)
        finally:
            session.close()

        report = self.analyzer.analyze(graph, language=language, statuses=statuses)
        self._save_run(
            'analyze', platform_id, started_at,
            parameters={'language': language, 'statuses': report.statuses},
            summary=report.summary,
        )
        return report

    def analyze_article(self, article_id: int) -> Optional[Dict]:
        """Link health of one article, or None if it does not exist."""
        session = self.db.get_session()
        try:
            article = self.db.get_article(session, article_id)
            if article is None:
                return None
            graph = self.db.load_graph(session, article.platform_id)
        finally:
            session.close()
        return self.analyzer.analyze_article(graph, article_id)

    # Suggestions

    def suggest_links(self, article_id: int, max_links: Optional[int] = None) -> List[LinkSuggestion]:
        """New internal links for one article; empty when the article is unknown."""
        session = self.db.get_session()
        try:
            article = self.db.get_article(session, article_id)
            if article is None:
                return []
            platform_id = article.platform_id
            graph = self.db.load_graph(session, platform_id)
        finally:
            session.close()

        authority = self.compute_authority(platform_id).normalized_scores
        return self.suggester.suggest(graph, article_id, authority=authority, max_links=max_links)

    def common_keywords(self, source_id: int, target_id: int, limit: int = 10) -> List[str]:
        session = self.db.get_session()
        try:
            source = self.db.get_article(session, source_id)
            target = self.db.get_article(session, target_id)
            if source is None or target is None:
                return []
            graph = self.db.load_graph(session, source.platform_id)
        finally:
            session.close()
        if source_id not in graph.nodes or target_id not in graph.nodes:
            return []
        return self.suggester.common_keywords(graph.nodes[source_id], graph.nodes[target_id], limit)

    # Verification

    def _build_verifier(self, concurrency: Optional[int], timeout: Optional[float]) -> ExternalLinkVerifier:
        """
        Verifier for one batch.

        Without an injected transport a fresh HttpTransport is built, its
        connection pool sized to this batch's concurrency. A timeout override
        is applied to a copy of an injected transport, which must expose a
        `timeout` attribute.
        """
        concurrency = concurrency or self.config.verify_concurrency
        if self.transport is None:
            transport = HttpTransport(
                timeout=timeout or self.config.verify_timeout,
                retry_policy=RetryPolicy.fixed(
                    self.config.verify_max_attempts, self.config.verify_retry_delay
                ),
                user_agent=settings.VERIFY_USER_AGENT,
                pool_size=concurrency,
            )
        elif timeout is not None:
            if not hasattr(self.transport, 'timeout'):
                raise ValueError("the configured transport does not support a timeout override")
            transport = copy.copy(self.transport)
            transport.timeout = timeout
        else:
            transport = self.transport

        return ExternalLinkVerifier(
            transport,
            concurrency=concurrency,
            rate_limiter=self.rate_limiter,
            broken_alert_percent=self.config.broken_alert_percent,
        )

    def verify_links(
        self,
        link_filter: VerificationFilter = VerificationFilter.ALL,
        concurrency: Optional[int] = None,
        only_broken: bool = False,
        platform_id: Optional[int] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> VerificationSummary:
        """
        Verify external links and record the verdicts.

        Args:
            link_filter: ALL, UNVERIFIED or BROKEN
            concurrency: Checks in flight (defaults to config)
            only_broken: Shortcut for link_filter=BROKEN
            platform_id: Restrict to one platform
            limit: Maximum number of links to check
            timeout: Per-request timeout override in seconds
            progress_callback: Called as (processed, total)
            cancel_event: Stops the batch between links

        Returns:
            VerificationSummary; network failures never abort the batch
        """
        if concurrency is not None and concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if only_broken:
            link_filter = VerificationFilter.BROKEN

        started_at = datetime.utcnow()
        session = self.db.get_session()
        try:
            if platform_id is not None:
                self._require_platform(session, platform_id)
            links = self.db.load_external_links(
                session, platform_id, link_filter,
                stale_days=self.config.verify_stale_days, limit=limit,
            )

            verifier = self._build_verifier(concurrency, timeout)

            def record(link, result):
                # Runs on this thread: one committed unit per link
                try:
                    self.db.update_external_link(session, apply_result(link, result))
                    session.commit()
                except Exception:
                    session.rollback()
                    raise

            summary = verifier.verify(
                links,
                progress_callback=progress_callback,
                cancel_event=cancel_event,
                on_result=record,
            )
        finally:
            session.close()

        self._save_run(
            'verify', platform_id, started_at,
            parameters={'filter': link_filter.value, 'concurrency': verifier.concurrency, 'limit': limit},
            summary=summary.to_dict(),
        )
        return summary

    def verification_report(self, platform_id: int) -> Dict:
        session = self.db.get_session()
        try:
            self._require_platform(session, platform_id)
            links = self.db.load_external_links(session, platform_id)
        finally:
            session.close()
        return verification_report(
            links,
            stale_days=self.config.verify_stale_days,
            alert_percent=self.config.broken_alert_percent,
        )

    # Repair

    def repair(
        self,
        platform_id: int,
        dry_run: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RepairResult:
        """
        Repair orphans, dead-ends and broken external links of a platform.

        In dry-run mode the same actions are computed and reported without
        any write.
        """
        started_at = datetime.utcnow()
        authority = self.compute_authority(platform_id).normalized_scores

        session = self.db.get_session()
        try:
            graph = self._load_graph(session, platform_id)
            registry = AuthorityDomainRegistry.from_session(session)
            try:
                result = self.orchestrator.run(
                    session, graph, registry,
                    dry_run=dry_run,
                    authority=authority,
                    progress_callback=progress_callback,
                    cancel_event=cancel_event,
                )
            except Exception as e:
                session.rollback()
                self._save_run(
                    'repair', platform_id, started_at,
                    parameters={'dry_run': dry_run}, success=False, error_message=str(e),
                )
                raise
        finally:
            session.close()

        if not dry_run and result.links_created:
            self.invalidate_authority(platform_id)

        self._save_run(
            'repair', platform_id, started_at,
            parameters={'dry_run': dry_run},
            summary=result.summary(),
        )
        return result
