"""Tests for Cluster RRF, Key-Node RRF and search-result fusion."""

import pytest

from notegraph.config import QuerySettings
from notegraph.models import DegreeStat, DocStatistics, GraphNode, SearchResultItem, TraversalNode
from notegraph.ranking import (
    classify_node,
    cluster_rrf_scores,
    fuse_search_results,
    key_node_rrf,
    rank_cluster,
)


def node(node_id: str, updated_at: int = 0) -> GraphNode:
    return GraphNode(id=node_id, type="document", label=node_id.upper(), updated_at=updated_at)


def traversal_node(node_id: str, via: str, similarity: float | None = None) -> TraversalNode:
    return TraversalNode(
        id=node_id,
        type="document",
        label=node_id,
        depth=1,
        discovered_via=via,
        similarity_value=similarity,
    )


@pytest.fixture
def settings() -> QuerySettings:
    return QuerySettings()


class TestClusterRRF:
    def test_denser_node_scores_higher(self, settings):
        nodes = [node("a"), node("b")]
        scores = cluster_rrf_scores(nodes, {"a": 1, "b": 9}, {}, settings)
        assert scores["b"] > scores["a"]

    def test_increasing_density_never_lowers_rank(self, settings):
        nodes = [node("a", 3), node("b", 2), node("c", 1)]
        before, _, _ = rank_cluster(nodes, {"a": 5, "b": 4, "c": 1}, {}, settings, None)
        after, _, _ = rank_cluster(nodes, {"a": 5, "b": 4, "c": 50}, {}, settings, None)
        assert [n.id for n in after].index("c") <= [n.id for n in before].index("c")

    def test_usage_terms_only_when_positive(self, settings):
        nodes = [node("a"), node("b")]
        stats = {"a": DocStatistics(doc_id="a", richness_score=0.5), "b": DocStatistics(doc_id="b")}
        scores = cluster_rrf_scores(nodes, {}, stats, settings)
        assert scores["a"] > scores["b"]

    def test_physical_bonus_and_similarity_term(self, settings):
        physical = traversal_node("p", "physical")
        semantic = traversal_node("s", "semantic", 0.9)
        plain = node("x")
        scores = cluster_rrf_scores([physical, semantic, plain], {}, {}, settings)
        base = scores["x"]
        assert scores["p"] > base
        assert scores["s"] > base

    def test_rank_cluster_truncates_and_counts_omitted(self, settings):
        nodes = [node(f"n{i}", updated_at=i) for i in range(5)]
        density = {f"n{i}": i for i in range(5)}
        kept, scores, omitted = rank_cluster(nodes, density, {}, settings, 2)
        assert [n.id for n in kept] == ["n4", "n3"]
        assert set(scores) == {"n4", "n3"}
        assert omitted == 3

    def test_limit_zero_keeps_all(self, settings):
        nodes = [node("a"), node("b")]
        kept, _, omitted = rank_cluster(nodes, {}, {}, settings, 0)
        assert len(kept) == 2 and omitted == 0

    def test_equal_signals_share_a_rank(self, settings):
        nodes = [node("b"), node("a")]
        kept, scores, _ = rank_cluster(nodes, {}, {}, settings, None)
        assert scores["a"] == pytest.approx(scores["b"])
        assert [n.id for n in kept] == ["a", "b"]

    def test_node_at_least_as_good_everywhere_never_scores_lower(self, settings):
        nodes = [node("a", updated_at=5), node("b", updated_at=5), node("c", updated_at=1)]
        stats = {
            "a": DocStatistics(doc_id="a", open_count=2, last_open_ts=7, richness_score=0.3),
            "b": DocStatistics(doc_id="b", open_count=2, last_open_ts=7, richness_score=0.3),
            "c": DocStatistics(doc_id="c", open_count=9, last_open_ts=7, richness_score=0.3),
        }
        scores = cluster_rrf_scores(nodes, {"a": 1, "b": 2, "c": 2}, stats, settings)
        assert scores["b"] > scores["a"]

    def test_fused_ties_break_by_id(self, settings):
        nodes = [node("b", updated_at=1), node("a")]
        kept, scores, _ = rank_cluster(nodes, {"a": 1}, {}, settings, None)
        assert scores["a"] == pytest.approx(scores["b"])
        assert [n.id for n in kept] == ["a", "b"]

    def test_empty_cluster(self, settings):
        assert cluster_rrf_scores([], {}, {}, settings) == {}


class TestClassification:
    @pytest.mark.parametrize(
        "out_degree, in_degree, categories, role",
        [
            (10, 1, 2, "bridge"),
            (10, 1, 0, "hub"),
            (1, 10, 0, "authority"),
            (5, 5, 1, "balanced"),
            (3, 0, 0, "balanced"),  # dominant degree must exceed the minimum
            (12, 11, 0, "balanced"),  # below the asymmetry ratio
        ],
    )
    def test_classify_node(self, settings, out_degree, in_degree, categories, role):
        assert classify_node(out_degree, in_degree, categories, settings) == role


class TestKeyNodeRRF:
    def test_best_degree_rank_wins(self, settings):
        top_out = [DegreeStat(node_id="a", degree=9), DegreeStat(node_id="b", degree=5)]
        top_in = [DegreeStat(node_id="c", degree=7), DegreeStat(node_id="a", degree=1)]
        scored = key_node_rrf(top_out, top_in, settings, limit=10)
        by_id = {s.node_id: s for s in scored}
        assert by_id["a"].rrf_score == pytest.approx(1 / 60)
        assert by_id["c"].rrf_score == pytest.approx(1 / 60)
        assert by_id["b"].rrf_score == pytest.approx(1 / 61)
        assert [s.node_id for s in scored] == ["a", "c", "b"]

    def test_semantic_rank_adds_term(self, settings):
        top_out = [DegreeStat(node_id="a", degree=9), DegreeStat(node_id="b", degree=5)]
        scored = key_node_rrf(top_out, [], settings, limit=10, semantic_ranking=["b"])
        assert scored[0].node_id == "b"
        assert scored[0].semantic_score == pytest.approx(1 / 60)

    def test_bridge_bonus(self, settings):
        top_out = [DegreeStat(node_id="a", degree=9), DegreeStat(node_id="b", degree=9)]
        scored = key_node_rrf(top_out, [], settings, limit=10, category_counts={"b": 3})
        by_id = {s.node_id: s for s in scored}
        assert by_id["b"].role == "bridge"
        assert by_id["b"].rrf_score == pytest.approx(1 / 61 + settings.bridge_bonus)

    def test_returns_twice_the_limit(self, settings):
        top_out = [DegreeStat(node_id=f"n{i}", degree=100 - i) for i in range(10)]
        assert len(key_node_rrf(top_out, [], settings, limit=2)) == 4


class TestSearchFusion:
    def test_fuses_by_path_and_normalizes(self, settings):
        fulltext = [SearchResultItem(path="x.md", score=3.0), SearchResultItem(path="y.md", score=2.0)]
        vector = [SearchResultItem(path="y.md", score=0.9), SearchResultItem(path="z.md", score=0.8)]
        merged = fuse_search_results([fulltext, vector], settings)
        assert [item.path for item in merged] == ["y.md", "x.md", "z.md"]
        assert merged[0].final_score == pytest.approx(1.0)
        assert all(0 < item.final_score <= 1 for item in merged)
        # first occurrence supplies the item
        assert merged[0].score == 2.0

    def test_empty(self, settings):
        assert fuse_search_results([[], []], settings) == []
