"""
Repair orchestration.

Turns structural defects and broken external links into corrective actions:

- orphan -> one inbound link from the most similar article (or its pillar)
- dead-end -> up to the quota of outbound links from the similarity suggester
- broken external link -> URL of the best matching authority domain

Actions are always planned against an in-memory copy of the graph, so a
dry run and a real run produce the same action list; the real run then
writes each action as its own unit of work.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domain.authority_domains import AuthorityDomainRegistry
from domain.graph import InternalEdge, LinkGraph
from domain.link_balance import LinkBalanceAnalyzer
from domain.types import ActionStatus, LinkContext, RepairActionKind
from processors.similarity import LinkSuggestion, SimilarityIndex, SimilaritySuggester


@dataclass
class RepairAction:
    kind: RepairActionKind
    status: ActionStatus
    article_id: int                     # Article whose defect is being repaired
    source_id: Optional[int] = None
    target_id: Optional[int] = None
    external_link_id: Optional[int] = None
    anchor_text: Optional[str] = None
    position: Optional[int] = None
    similarity: Optional[float] = None
    old_url: Optional[str] = None
    new_url: Optional[str] = None
    new_domain: Optional[str] = None
    link_context: Optional[str] = None
    reason: str = ''

    @property
    def key(self) -> tuple:
        """Identity of the action regardless of its status."""
        return (
            self.kind.value, self.article_id, self.source_id, self.target_id,
            self.external_link_id, self.new_url,
        )

    @property
    def is_repair(self) -> bool:
        return self.status in (ActionStatus.PLANNED, ActionStatus.APPLIED)

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'status': self.status.value,
            'article_id': self.article_id,
            'source_id': self.source_id,
            'target_id': self.target_id,
            'external_link_id': self.external_link_id,
            'anchor_text': self.anchor_text,
            'similarity': self.similarity,
            'old_url': self.old_url,
            'new_url': self.new_url,
            'reason': self.reason,
        }


@dataclass
class RepairResult:
    platform_id: int
    dry_run: bool
    actions: List[RepairAction] = field(default_factory=list)
    orphans_found: int = 0
    dead_ends_found: int = 0
    broken_links_found: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0

    def _count(self, kind: RepairActionKind, status: Optional[ActionStatus] = None) -> int:
        return sum(
            1 for a in self.actions
            if a.kind == kind and (a.status == status if status else a.is_repair)
        )

    @property
    def orphans_fixed(self) -> int:
        return self._count(RepairActionKind.ADD_INBOUND_LINK)

    @property
    def dead_ends_fixed(self) -> int:
        return len({
            a.article_id for a in self.actions
            if a.kind == RepairActionKind.ADD_OUTBOUND_LINK and a.is_repair
        })

    @property
    def links_created(self) -> int:
        return self.orphans_fixed + self._count(RepairActionKind.ADD_OUTBOUND_LINK)

    @property
    def broken_links_fixed(self) -> int:
        return self._count(RepairActionKind.REPLACE_EXTERNAL_URL)

    @property
    def skipped(self) -> int:
        return sum(1 for a in self.actions if a.status == ActionStatus.SKIPPED)

    @property
    def not_repairable(self) -> int:
        return sum(1 for a in self.actions if a.status == ActionStatus.NOT_REPAIRABLE)

    def per_article(self) -> Dict[int, Dict[str, int]]:
        """Repairable vs not-repairable action counts per article."""
        counts: Dict[int, Dict[str, int]] = defaultdict(lambda: {'repairable': 0, 'not_repairable': 0})
        for action in self.actions:
            if action.status == ActionStatus.NOT_REPAIRABLE:
                counts[action.article_id]['not_repairable'] += 1
            elif action.is_repair:
                counts[action.article_id]['repairable'] += 1
        return dict(counts)

    def summary(self) -> Dict:
        return {
            'dry_run': self.dry_run,
            'orphans_found': self.orphans_found,
            'orphans_fixed': self.orphans_fixed,
            'dead_ends_found': self.dead_ends_found,
            'dead_ends_fixed': self.dead_ends_fixed,
            'links_created': self.links_created,
            'broken_links_found': self.broken_links_found,
            'broken_links_fixed': self.broken_links_fixed,
            'skipped': self.skipped,
            'not_repairable': self.not_repairable,
            'cancelled': self.cancelled,
        }

    def to_dict(self) -> Dict:
        return {
            'platform_id': self.platform_id,
            'summary': self.summary(),
            'per_article': {str(k): v for k, v in sorted(self.per_article().items())},
            'actions': [a.to_dict() for a in self.actions],
            'duration_seconds': round(self.duration_seconds, 3),
        }


class RepairOrchestrator:
    """Plan and (optionally) apply repairs for one platform's link graph."""

    def __init__(
        self,
        repository,
        suggester: SimilaritySuggester,
        analyzer: LinkBalanceAnalyzer,
        min_trust: int = 50,
        max_dead_ends: Optional[int] = None
    ):
        """
        Args:
            repository: Graph repository (`upsert_internal_link(session, edge)`,
                `update_external_link(session, edge)`)
            suggester: Similarity suggester used for orphans and dead-ends
            analyzer: Balance analyzer that finds the defects
            min_trust: Minimum trust score of a replacement domain
            max_dead_ends: Optional per-run batch limit on dead-ends; the rest
                are reported as SKIPPED "deferred" and left for a later run
        """
        self.repository = repository
        self.suggester = suggester
        self.analyzer = analyzer
        self.min_trust = min_trust
        self.max_dead_ends = max_dead_ends
        self._locks: Dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, article_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks[article_id]

    def _batch(self, dead_ends: List) -> Tuple[List, List]:
        if not self.max_dead_ends:
            return dead_ends, []
        return dead_ends[:self.max_dead_ends], dead_ends[self.max_dead_ends:]

    def _link_action(
        self,
        kind: RepairActionKind,
        article_id: int,
        suggestion: LinkSuggestion
    ) -> RepairAction:
        return RepairAction(
            kind=kind,
            status=ActionStatus.PLANNED,
            article_id=article_id,
            source_id=suggestion.source_id,
            target_id=suggestion.target_id,
            anchor_text=suggestion.anchor_text,
            position=suggestion.position,
            similarity=suggestion.similarity,
            link_context=suggestion.link_context.value,
            reason='pillar link' if suggestion.mandatory else 'content similarity',
        )

    def _add_to_overlay(self, overlay: LinkGraph, suggestion: LinkSuggestion):
        overlay.add_edge(InternalEdge(
            source_id=suggestion.source_id,
            target_id=suggestion.target_id,
            anchor_text=suggestion.anchor_text,
            position=suggestion.position,
            is_automatic=True,
            link_context=suggestion.link_context,
            relevance_score=suggestion.similarity,
        ))

    def plan(
        self,
        graph: LinkGraph,
        registry: AuthorityDomainRegistry,
        authority: Optional[Dict[int, float]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RepairResult:
        """
        Compute every repair action without touching the repository.

        Returns:
            RepairResult (dry_run=True) whose actions are PLANNED or NOT_REPAIRABLE
        """
        start_time = time.time()
        overlay = graph.copy()
        authority = authority or {}
        result = RepairResult(platform_id=graph.platform_id, dry_run=True)
        indexes: Dict[str, SimilarityIndex] = {}

        def index_for(language: str) -> SimilarityIndex:
            if language not in indexes:
                indexes[language] = self.suggester.build_index(graph, language)
            return indexes[language]

        orphans = self.analyzer.find_orphans(overlay)
        orphans.sort(key=lambda d: (d.severity.order, d.article_id))
        scoped_ids = {n.id for n in overlay.select(statuses=self.analyzer.statuses)}
        broken = [
            link for link in overlay.external_links
            if link.is_broken and link.article_id in scoped_ids
        ]
        result.orphans_found = len(orphans)
        result.broken_links_found = len(broken)

        processed = 0

        def tick(total: int):
            nonlocal processed
            processed += 1
            if progress_callback:
                progress_callback(processed, total)

        # Dead-ends are counted after orphans are linked, the total is an estimate until then
        estimated_total = len(orphans) + len(broken) + len(
            self._batch(self.analyzer.find_dead_ends(overlay))[0]
        )

        for orphan in orphans:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            node = overlay.nodes[orphan.article_id]
            suggestion = self.suggester.best_source_for(
                overlay, orphan.article_id, authority, index_for(node.language)
            )
            if suggestion is None:
                result.actions.append(RepairAction(
                    kind=RepairActionKind.ADD_INBOUND_LINK,
                    status=ActionStatus.NOT_REPAIRABLE,
                    article_id=orphan.article_id,
                    reason='no related article can link to it',
                ))
            else:
                result.actions.append(self._link_action(
                    RepairActionKind.ADD_INBOUND_LINK, orphan.article_id, suggestion
                ))
                self._add_to_overlay(overlay, suggestion)
            tick(estimated_total)

        dead_ends = self.analyzer.find_dead_ends(overlay)
        result.dead_ends_found = len(dead_ends)
        dead_ends.sort(key=lambda d: (d.severity.order, d.article_id))

        batch, deferred = self._batch(dead_ends)

        for dead_end in batch:
            if result.cancelled or (cancel_event is not None and cancel_event.is_set()):
                result.cancelled = True
                break
            node = overlay.nodes[dead_end.article_id]
            suggestions = self.suggester.suggest(
                overlay, dead_end.article_id, authority, index_for(node.language)
            )
            if not suggestions:
                result.actions.append(RepairAction(
                    kind=RepairActionKind.ADD_OUTBOUND_LINK,
                    status=ActionStatus.NOT_REPAIRABLE,
                    article_id=dead_end.article_id,
                    reason='no similar article found',
                ))
            for suggestion in suggestions:
                result.actions.append(self._link_action(
                    RepairActionKind.ADD_OUTBOUND_LINK, dead_end.article_id, suggestion
                ))
                self._add_to_overlay(overlay, suggestion)
            tick(estimated_total)

        if not result.cancelled:
            for dead_end in deferred:
                result.actions.append(RepairAction(
                    kind=RepairActionKind.ADD_OUTBOUND_LINK,
                    status=ActionStatus.SKIPPED,
                    article_id=dead_end.article_id,
                    reason='deferred: dead-end batch limit reached',
                ))

        for link in sorted(broken, key=lambda l: (l.article_id, l.id or 0)):
            if result.cancelled or (cancel_event is not None and cancel_event.is_set()):
                result.cancelled = True
                break
            node = overlay.nodes[link.article_id]
            topic = link.topic or node.theme
            if not topic:
                result.actions.append(RepairAction(
                    kind=RepairActionKind.REPLACE_EXTERNAL_URL,
                    status=ActionStatus.NOT_REPAIRABLE,
                    article_id=link.article_id,
                    external_link_id=link.id,
                    old_url=link.url,
                    reason='no topic to match an authority domain',
                ))
                tick(estimated_total)
                continue
            entry = registry.lookup_best_match(
                topic,
                node.country,
                min_trust=self.min_trust,
                language=node.language,
                exclude_domains=[link.domain],
            )
            if entry is None:
                result.actions.append(RepairAction(
                    kind=RepairActionKind.REPLACE_EXTERNAL_URL,
                    status=ActionStatus.NOT_REPAIRABLE,
                    article_id=link.article_id,
                    external_link_id=link.id,
                    old_url=link.url,
                    reason='no active authority domain matches topic and country',
                ))
            else:
                result.actions.append(RepairAction(
                    kind=RepairActionKind.REPLACE_EXTERNAL_URL,
                    status=ActionStatus.PLANNED,
                    article_id=link.article_id,
                    external_link_id=link.id,
                    old_url=link.url,
                    new_url=entry.url,
                    new_domain=entry.domain,
                    reason=f'{entry.name} (trust {entry.trust_score})',
                ))
            tick(estimated_total)

        result.duration_seconds = time.time() - start_time
        return result

    def apply(
        self,
        session: Session,
        graph: LinkGraph,
        planned: RepairResult,
        cancel_event: Optional[threading.Event] = None
    ) -> RepairResult:
        """
        Persist planned actions, one committed unit of work per action.

        Writes for the same source article are serialized. A conflicting
        write is rolled back and reported as SKIPPED.
        """
        start_time = time.time()
        result = replace(planned, dry_run=False, actions=[])
        external_by_id = {link.id: link for link in graph.external_links}
        now = datetime.utcnow()

        for action in planned.actions:
            action = replace(action)
            result.actions.append(action)
            if action.status != ActionStatus.PLANNED:
                continue
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                action.status = ActionStatus.SKIPPED
                action.reason = 'cancelled'
                continue

            if action.kind == RepairActionKind.REPLACE_EXTERNAL_URL:
                link = external_by_id.get(action.external_link_id)
                written = False
                if link is not None:
                    rerouted = replace(
                        link,
                        url=action.new_url,
                        domain=action.new_domain,
                        is_broken=False,
                        last_verified_at=None,
                        last_status_code=None,
                        verification_error=None,
                        replaced_from_url=action.old_url,
                    )
                    with self._lock_for(action.article_id):
                        written = self._write(session, self.repository.update_external_link, rerouted)
            else:
                edge = InternalEdge(
                    source_id=action.source_id,
                    target_id=action.target_id,
                    anchor_text=action.anchor_text or '',
                    position=action.position,
                    is_automatic=True,
                    link_context=LinkContext(action.link_context or LinkContext.RELATED.value),
                    relevance_score=action.similarity,
                    created_at=now,
                )
                with self._lock_for(action.source_id):
                    written = self._write(session, self.repository.upsert_internal_link, edge)

            if written:
                action.status = ActionStatus.APPLIED
            else:
                action.status = ActionStatus.SKIPPED
                action.reason = 'already exists or changed concurrently'

        result.duration_seconds = planned.duration_seconds + (time.time() - start_time)
        return result

    @staticmethod
    def _write(session: Session, write, item) -> bool:
        try:
            written = write(session, item)
            session.commit()
        except IntegrityError:
            session.rollback()
            return False
        return bool(written)

    def run(
        self,
        session: Session,
        graph: LinkGraph,
        registry: AuthorityDomainRegistry,
        dry_run: bool = True,
        authority: Optional[Dict[int, float]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RepairResult:
        """
        Plan repairs and, unless `dry_run`, apply them.

        The plan is the same in both modes; a dry run stops before the writes.
        """
        planned = self.plan(graph, registry, authority, progress_callback, cancel_event)
        if dry_run:
            return planned
        return self.apply(session, graph, planned, cancel_event)
