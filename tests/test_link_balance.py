"""
Tests for link balance analysis.
"""

import pytest

from conftest import make_external, make_graph, make_node
from domain.graph import InternalEdge
from domain.link_balance import LinkBalanceAnalyzer, score_to_grade
from domain.types import ArticleStatus, BalanceBand, ContentType, DefectKind, Severity


@pytest.fixture
def analyzer():
    return LinkBalanceAnalyzer()


class TestDefects:

    def test_five_article_scenario(self, analyzer, five_article_graph):
        report = analyzer.analyze(five_article_graph)
        assert [d.article_id for d in report.orphans] == [1, 4, 5]
        assert [d.article_id for d in report.dead_ends] == [3, 5]
        assert report.summary['total_articles'] == 5
        assert report.summary['total_internal_links'] == 4

    def test_only_published_articles_are_defects(self, analyzer):
        graph = make_graph([
            make_node(1),
            make_node(2, status=ArticleStatus.DRAFT),
            make_node(3, status=ArticleStatus.ARCHIVED),
        ])
        report = analyzer.analyze(graph)
        assert [d.article_id for d in report.orphans] == [1]
        assert [d.article_id for d in report.dead_ends] == [1]

    def test_explicit_status_scope(self, analyzer):
        graph = make_graph([make_node(1), make_node(2, status=ArticleStatus.DRAFT)])
        report = analyzer.analyze(graph, statuses=[ArticleStatus.PUBLISHED, ArticleStatus.DRAFT])
        assert [d.article_id for d in report.orphans] == [1, 2]
        assert report.statuses == ['draft', 'published']

    def test_language_filter(self, analyzer):
        graph = make_graph([make_node(1, language='en'), make_node(2, language='fr')])
        report = analyzer.analyze(graph, language='fr')
        assert [d.article_id for d in report.orphans] == [2]

    def test_pillar_severities(self, analyzer):
        graph = make_graph([make_node(1, content_type=ContentType.PILLAR), make_node(2)])
        orphans = {d.article_id: d.severity for d in analyzer.find_orphans(graph)}
        dead_ends = {d.article_id: d.severity for d in analyzer.find_dead_ends(graph)}
        assert orphans == {1: Severity.CRITICAL, 2: Severity.HIGH}
        assert dead_ends == {1: Severity.HIGH, 2: Severity.MEDIUM}

    def test_weakly_connected_sorted_weakest_first(self, analyzer):
        graph = make_graph([1, 2, 3, 4], edges=[(1, 2), (2, 1), (1, 3), (3, 1), (1, 4)])
        weak = analyzer.find_weakly_connected(graph)
        assert [d.article_id for d in weak] == [4, 2, 3]

    def test_empty_pillar(self, analyzer):
        graph = make_graph([
            make_node(1, content_type=ContentType.PILLAR),
            make_node(2, pillar_id=1),
            make_node(3, content_type=ContentType.PILLAR),
            make_node(4, pillar_id=3),
        ], edges=[(3, 4)])
        assert [d.article_id for d in analyzer.find_empty_pillars(graph)] == [1]

    def test_broken_external_links_counted(self, analyzer):
        graph = make_graph([1, 2], external_links=[
            make_external(1, 1, "https://dead.example.com/a", is_broken=True),
            make_external(2, 2, "https://alive.example.com/b"),
        ])
        report = analyzer.analyze(graph)
        assert report.broken_external_links == 1
        assert any(r.kind == DefectKind.BROKEN_EXTERNAL for r in report.remediations)


class TestDistribution:

    def test_balanced_graph(self, analyzer):
        graph = make_graph([1, 2, 3], edges=[(1, 2), (2, 3), (3, 1)])
        snapshot = analyzer.distribution(graph)
        assert snapshot.imbalance_ratio == 0.0
        assert snapshot.band == BalanceBand.GOOD
        assert snapshot.inbound.mean == 1.0

    def test_empty_scope_is_balanced(self, analyzer):
        snapshot = analyzer.distribution(make_graph([]))
        assert snapshot.total_articles == 0
        assert snapshot.imbalance_ratio == 0.0
        assert snapshot.band == BalanceBand.GOOD

    def test_ratio_is_clamped(self):
        assert LinkBalanceAnalyzer.imbalance_ratio([0, 0, 0, 10]) == 1.0
        assert LinkBalanceAnalyzer.imbalance_ratio([0, 0]) == 0.0

    def test_ratio_value(self):
        # mean 2, population std 1
        assert LinkBalanceAnalyzer.imbalance_ratio([1, 3]) == pytest.approx(0.5)

    def test_bands(self, analyzer):
        assert analyzer.band(0.1) == BalanceBand.GOOD
        assert analyzer.band(0.2) == BalanceBand.WARNING
        assert analyzer.band(0.4) == BalanceBand.POOR

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            LinkBalanceAnalyzer(good_threshold=0.5, warning_threshold=0.4)

    def test_stats(self):
        stats = LinkBalanceAnalyzer.compute_stats([0, 1, 2, 5])
        assert stats.min == 0
        assert stats.max == 5
        assert stats.mean == 2.0
        assert stats.median == 1.5
        assert stats.to_dict()['avg'] == 2.0

    def test_distribution_follows_new_edges(self, analyzer, five_article_graph):
        graph = five_article_graph.copy()
        before = analyzer.distribution(graph).total_internal_links
        graph.add_edge(InternalEdge(source_id=5, target_id=1))
        assert analyzer.distribution(graph).total_internal_links == before + 1


class TestRemediations:

    def test_ranked_by_severity(self, analyzer, five_article_graph):
        report = analyzer.analyze(five_article_graph)
        orders = [r.severity.order for r in report.remediations]
        assert orders == sorted(orders)
        assert report.remediations[0].kind == DefectKind.ORPHAN

    def test_clean_graph_has_no_remediations(self):
        analyzer = LinkBalanceAnalyzer(weakly_connected_min_links=0)
        graph = make_graph([1, 2], edges=[(1, 2), (2, 1)])
        assert analyzer.analyze(graph).remediations == []


class TestAnalyzeArticle:

    def test_unknown_article(self, analyzer, five_article_graph):
        assert analyzer.analyze_article(five_article_graph, 99) is None

    def test_isolated_article_health(self, analyzer, five_article_graph):
        analysis = analyzer.analyze_article(five_article_graph, 5)
        # orphan -30, dead end -20, no externals -10
        assert analysis['health']['score'] == 40
        assert analysis['health']['grade'] == 'F'

    def test_satellite_missing_pillar_link(self, analyzer):
        graph = make_graph(
            [make_node(1, content_type=ContentType.PILLAR), make_node(2, pillar_id=1), make_node(3)],
            edges=[(1, 2), (2, 3)],
            external_links=[make_external(1, 2, "https://dead.example.com", is_broken=True)],
        )
        analysis = analyzer.analyze_article(graph, 2)
        # no pillar link -15, one broken external -5
        assert analysis['health']['score'] == 80
        assert analysis['inbound']['from_pillars'] == 1
        assert any(r['type'] == 'link_to_pillar' for r in analysis['recommendations'])

    @pytest.mark.parametrize("score,grade", [(95, 'A'), (80, 'B'), (70, 'C'), (65, 'D'), (10, 'F')])
    def test_grades(self, score, grade):
        assert score_to_grade(score) == grade
