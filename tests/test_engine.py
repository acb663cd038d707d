"""
Tests for the repository and the engine entry points, against SQLite.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from db import AuthorityDomain, DomainCategory, EngineRun, ExternalLink, InternalLink
from domain.config import LinkingConfig
from domain.graph import InternalEdge
from domain.link_engine import LinkGraphEngine, PlatformNotFoundError
from domain.types import ArticleStatus, LinkContext, VerificationFilter
from processors.link_verifier import HostRateLimiter, FetchResult


class StaticTransport:

    def __init__(self, statuses):
        self.statuses = statuses
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        return FetchResult(status_code=self.statuses.get(url, 200), attempts=1, response_time_ms=3)


class TimedTransport(StaticTransport):

    def __init__(self, statuses, timeout):
        super().__init__(statuses)
        self.timeout = timeout


class MalformedUrlTransport(StaticTransport):
    """Fails on unbalanced IPv6 brackets the way URL parsing does."""

    def fetch(self, url):
        if '[' in url and ']' not in url:
            raise ValueError("Invalid IPv6 URL")
        return super().fetch(url)


@pytest.fixture
def engine(db):
    return LinkGraphEngine(db, transport=StaticTransport({}), rate_limiter=HostRateLimiter(0))


@pytest.fixture
def visa_domain(session):
    session.add(AuthorityDomain(
        domain="france-visas.gouv.fr", name="France Visas", category=DomainCategory.GOVERNMENT,
        country_code="FR", languages=["en", "fr"], topics=["visa"], trust_score=95,
    ))
    session.commit()


def count(db, model):
    session = db.get_session()
    try:
        return session.query(model).count()
    finally:
        session.close()


class TestRepository:

    def test_load_graph(self, db, session, populated):
        graph = db.load_graph(session, populated['platform'])
        assert len(graph) == 5
        assert graph.has_edge(populated['pillar'], populated['student'])
        assert graph.nodes[populated['draft']].status == ArticleStatus.DRAFT
        assert graph.nodes[populated['student']].pillar_id == populated['pillar']
        assert len(graph.external_links) == 1
        assert graph.external_links[0].domain == "old-consulate.example.org"

    def test_upsert_rejects_self_loops_and_duplicates(self, db, session, populated):
        pillar, work = populated['pillar'], populated['work']
        assert not db.upsert_internal_link(session, InternalEdge(source_id=work, target_id=work))
        assert not db.upsert_internal_link(session, InternalEdge(source_id=pillar, target_id=populated['student']))

        edge = InternalEdge(source_id=pillar, target_id=work, anchor_text="work visa", is_automatic=True,
                            link_context=LinkContext.PILLAR_TO_ARTICLE)
        assert db.upsert_internal_link(session, edge)
        assert edge.id is not None
        assert not db.upsert_internal_link(session, InternalEdge(source_id=pillar, target_id=work))
        session.commit()

        link = session.get(InternalLink, edge.id)
        assert link.anchor_type == 'automatic'
        assert link.is_automatic

    def test_unique_automatic_pair(self, db, session, populated):
        for _ in range(2):
            session.add(InternalLink(source_article_id=populated['work'], target_article_id=populated['bread'],
                                     anchor_text="bread", is_automatic=True))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_external_link_filters(self, db, session, populated):
        db.add_external_link(session, populated['work'], "https://www.example.com/ok")
        session.commit()
        platform = populated['platform']

        assert len(db.load_external_links(session, platform)) == 2
        broken = db.load_external_links(session, platform, VerificationFilter.BROKEN)
        assert [link.id for link in broken] == [populated['broken_link']]
        assert len(db.load_external_links(session, platform, VerificationFilter.UNVERIFIED)) == 2
        assert len(db.load_external_links(session, platform, limit=1)) == 1
        assert db.load_external_links(session, platform)[1].domain == "example.com"


class TestEntryPoints:

    def test_unknown_platform(self, engine):
        with pytest.raises(PlatformNotFoundError):
            engine.analyze(999)
        with pytest.raises(PlatformNotFoundError):
            engine.compute_authority(999)
        with pytest.raises(PlatformNotFoundError):
            engine.repair(999)

    def test_platform_id_must_be_an_integer(self, engine, populated):
        with pytest.raises(ValueError):
            engine.analyze(str(populated['platform']))

    def test_analyze(self, engine, db, populated):
        report = engine.analyze(populated['platform'])
        orphan_ids = {d.article_id for d in report.orphans}
        assert orphan_ids == {populated['pillar'], populated['work'], populated['bread']}
        assert populated['draft'] not in orphan_ids
        assert report.broken_external_links == 1

        session = db.get_session()
        try:
            [run] = db.get_recent_runs(session, populated['platform'])
            assert run.operation == 'analyze'
            assert run.success
            assert run.summary['orphans'] == 3
        finally:
            session.close()

    def test_analyze_article_and_suggestions(self, engine, populated):
        assert engine.analyze_article(12345) is None
        analysis = engine.analyze_article(populated['student'])
        assert analysis['inbound']['from_pillars'] == 1

        suggestions = engine.suggest_links(populated['student'])
        assert suggestions[0].target_id == populated['pillar']
        assert suggestions[0].mandatory
        assert engine.suggest_links(12345) == []
        assert 'visa' in engine.common_keywords(populated['student'], populated['work'])

    def test_authority_is_cached_until_invalidated(self, engine, populated):
        first = engine.compute_authority(populated['platform'])
        assert engine.compute_authority(populated['platform']) is first
        assert populated['draft'] not in first.scores
        assert sum(first.raw_scores.values()) == pytest.approx(1.0)

        engine.invalidate_authority(populated['platform'])
        assert engine.compute_authority(populated['platform']) is not first

    def test_authority_insights(self, engine, populated):
        insights = engine.authority_insights(populated['platform'], limit=2)
        assert len(insights['high_value']) == 2
        assert insights['stats']['total_articles'] == 4

    def test_simulate(self, engine, populated):
        simulation = engine.simulate_link_addition(populated['platform'], populated['pillar'], populated['bread'])
        assert simulation['change']['raw_delta'] > 0

    def test_log_failure_does_not_fail_the_operation(self, engine, db, populated, monkeypatch, capsys):
        def broken_save(*args, **kwargs):
            raise RuntimeError("disk full")
        monkeypatch.setattr(db, 'save_run', broken_save)
        report = engine.analyze(populated['platform'])
        assert report.summary['orphans'] == 3
        assert "Failed to save analyze execution log" in capsys.readouterr().err


class TestVerify:

    def test_verify_records_verdicts(self, db, populated):
        session = db.get_session()
        db.add_external_link(session, populated['work'], "https://valid.example.com/page")
        session.commit()
        session.close()

        transport = StaticTransport({"https://old-consulate.example.org/visa": 404})
        engine = LinkGraphEngine(db, transport=transport, rate_limiter=HostRateLimiter(0))
        summary = engine.verify_links(platform_id=populated['platform'], concurrency=2)

        assert summary.total == 2
        assert summary.broken == 1
        assert summary.newly_broken == 1
        assert len(transport.calls) == 2

        session = db.get_session()
        try:
            broken = session.get(ExternalLink, populated['broken_link'])
            assert broken.is_broken
            assert broken.last_status_code == 404
            assert broken.last_verified_at is not None
            valid = session.query(ExternalLink).filter_by(url="https://valid.example.com/page").one()
            assert not valid.is_broken
            assert valid.last_status_code == 200
        finally:
            session.close()

        # Both links are fresh now
        again = engine.verify_links(VerificationFilter.UNVERIFIED, platform_id=populated['platform'])
        assert again.total == 0

    def test_only_broken(self, engine, populated):
        summary = engine.verify_links(only_broken=True, platform_id=populated['platform'])
        assert summary.total == 1
        assert summary.valid == 1
        assert summary.recovered == 1

    def test_malformed_url_is_recorded_as_broken(self, db, populated):
        session = db.get_session()
        db.add_external_link(session, populated['work'], "http://[::1/broken")
        session.commit()
        session.close()

        engine = LinkGraphEngine(db, transport=MalformedUrlTransport({}), rate_limiter=HostRateLimiter(0))
        summary = engine.verify_links(platform_id=populated['platform'])

        assert summary.total == 2
        assert summary.valid == 1
        assert summary.broken == 1
        assert summary.record_errors == 0

        session = db.get_session()
        try:
            malformed = session.query(ExternalLink).filter_by(url="http://[::1/broken").one()
            assert malformed.is_broken
            assert malformed.domain == ''
            assert "ValueError" in malformed.verification_error
        finally:
            session.close()

    def test_timeout_override_applies_to_a_copy(self, db):
        transport = TimedTransport({}, timeout=10.0)
        engine = LinkGraphEngine(db, transport=transport, rate_limiter=HostRateLimiter(0))
        verifier = engine._build_verifier(None, 3.0)
        assert verifier.transport.timeout == 3.0
        assert verifier.transport is not transport
        assert transport.timeout == 10.0
        assert engine._build_verifier(None, None).transport is transport

    def test_timeout_override_needs_a_timeout_attribute(self, engine):
        with pytest.raises(ValueError):
            engine.verify_links(timeout=3.0)

    def test_http_pool_sized_per_call(self, db):
        engine = LinkGraphEngine(db, rate_limiter=HostRateLimiter(0))
        first = engine._build_verifier(7, None)
        second = engine._build_verifier(None, 2.5)
        assert first.transport.pool_size == 7
        assert second.transport.pool_size == engine.config.verify_concurrency
        assert second.transport.timeout == 2.5
        assert first.transport is not second.transport

    def test_invalid_concurrency(self, engine):
        with pytest.raises(ValueError):
            engine.verify_links(concurrency=0)

    def test_report(self, engine, populated):
        report = engine.verification_report(populated['platform'])
        assert report['summary']['broken'] == 1
        assert report['summary']['never_verified'] == 1


class TestRepairRuns:

    def test_dry_run_then_apply(self, engine, db, populated, visa_domain):
        links_before = count(db, InternalLink)

        dry = engine.repair(populated['platform'], dry_run=True)
        assert dry.links_created > 0
        assert dry.broken_links_fixed == 1
        assert count(db, InternalLink) == links_before

        applied = engine.repair(populated['platform'], dry_run=False)
        assert [a.key for a in applied.actions] == [a.key for a in dry.actions]
        assert count(db, InternalLink) == links_before + applied.links_created

        session = db.get_session()
        try:
            link = session.get(ExternalLink, populated['broken_link'])
            assert link.url == "https://france-visas.gouv.fr/"
            assert link.domain == "france-visas.gouv.fr"
            assert link.replaced_from_url == "https://old-consulate.example.org/visa"
            assert not link.is_broken
            assert link.last_verified_at is None
        finally:
            session.close()

    def test_repair_is_idempotent(self, engine, populated, visa_domain):
        engine.repair(populated['platform'], dry_run=False)
        second = engine.repair(populated['platform'], dry_run=False)
        assert second.links_created == 0
        assert second.broken_links_fixed == 0
        assert second.broken_links_found == 0

    def test_apply_invalidates_authority(self, engine, populated, visa_domain):
        before = engine.compute_authority(populated['platform'])
        engine.repair(populated['platform'], dry_run=False)
        assert engine.compute_authority(populated['platform']) is not before

    def test_failure_is_logged_and_raised(self, engine, db, populated, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")
        monkeypatch.setattr(engine.orchestrator, 'run', explode)

        with pytest.raises(RuntimeError):
            engine.repair(populated['platform'])

        session = db.get_session()
        try:
            run = session.query(EngineRun).filter_by(operation='repair').one()
            assert not run.success
            assert run.error_message == "boom"
        finally:
            session.close()


class TestConfig:

    def test_overrides(self):
        config = LinkingConfig.from_settings(max_new_links=2)
        assert config.max_new_links == 2
        assert config.defect_statuses == frozenset({ArticleStatus.PUBLISHED})

    def test_validation(self):
        with pytest.raises(ValueError):
            LinkingConfig(damping=2.0)
        with pytest.raises(ValueError):
            LinkingConfig(imbalance_good_threshold=0.5, imbalance_warning_threshold=0.3)
        with pytest.raises(ValueError):
            LinkingConfig(repair_max_dead_ends=-1)

    def test_dead_end_limit_off_by_default(self):
        assert LinkingConfig().repair_max_dead_ends == 0
