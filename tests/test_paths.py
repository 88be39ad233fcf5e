"""Tests for diverse hybrid path finding."""

import asyncio

import pytest

from notegraph.config import QuerySettings
from notegraph.context import QueryContext
from notegraph.core import find_path
from notegraph.models import PathResult, QueryFilters, QueryMessage
from notegraph.paths import (
    Segment,
    Visit,
    bidirectional_search,
    describe_connections,
    edge_blocking_score,
    find_hybrid_paths,
    get_mixed_neighbors,
    identify_key_edge,
    reconstruct_path,
)


class TestScoring:
    def test_physical_edges_block_first(self):
        physical = edge_blocking_score(Segment("a", "physical"), Segment("b", "physical"))
        mixed = edge_blocking_score(Segment("a", "physical"), Segment("b", "semantic", 0.9))
        semantic = edge_blocking_score(Segment("a", "semantic", 0.9), Segment("b", "semantic", 0.9))
        assert physical == 100
        assert mixed == pytest.approx(95.0)
        assert semantic == pytest.approx(90.0)

    def test_identify_key_edge_takes_first_maximum(self):
        path = [Segment("a", "physical"), Segment("b", "physical"), Segment("c", "physical")]
        assert identify_key_edge(path) == frozenset({"a", "b"})

    def test_single_node_path_has_no_key_edge(self):
        assert identify_key_edge([Segment("a", "physical")]) is None

    def test_describe_connections(self):
        path = [Segment("a", "physical"), Segment("b", "physical"), Segment("c", "semantic", 0.81)]
        assert describe_connections(path) == ["physical", "semantic (81.0%)"]

    def test_reconstruct_path_joins_both_halves(self):
        start_visited = {"a": Visit(None, "physical"), "b": Visit("a", "physical")}
        end_visited = {"d": Visit(None, "physical"), "c": Visit("d", "physical"), "b": Visit("c", "semantic", 0.7)}
        assert [s.node_id for s in reconstruct_path("b", start_visited, end_visited)] == ["a", "b", "c", "d"]


class TestSearch:
    @pytest.mark.asyncio
    async def test_mixed_neighbors_physical_then_semantic(self, ctx):
        neighbors = await get_mixed_neighbors(ctx, "o", include_semantic=True)
        assert neighbors[0].id == "a"
        assert neighbors[0].discovered_via == "semantic"

        physical = await get_mixed_neighbors(ctx, "b", include_semantic=False)
        assert {n.id for n in physical} == {"a", "c", "t-py", "c-prog"}

    @pytest.mark.asyncio
    async def test_link_neighbors_come_before_labels(self, ctx):
        neighbors = await get_mixed_neighbors(ctx, "c", include_semantic=False)
        assert [n.id for n in neighbors] == ["b", "t-js", "c-arch"]

    @pytest.mark.asyncio
    async def test_mixed_neighbors_filtered_by_pipeline(self, ctx):
        neighbors = await get_mixed_neighbors(ctx, "b", False, QueryFilters(path="/notes/c"))
        ids = {n.id for n in neighbors}
        assert "c" in ids
        assert "a" not in ids

    @pytest.mark.asyncio
    async def test_bidirectional_shortest(self, ctx):
        path = await bidirectional_search(ctx, "a", "c", set(), include_semantic=False, max_hops=5)
        assert [s.node_id for s in path] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_forbidden_edge_is_avoided_in_both_directions(self, ctx):
        path = await bidirectional_search(
            ctx, "a", "c", {frozenset({"a", "b"})}, include_semantic=False, max_hops=5
        )
        ids = [s.node_id for s in path]
        assert ids[0] == "a" and ids[-1] == "c"
        assert ids[1] != "b"

    @pytest.mark.asyncio
    async def test_same_start_and_end(self, ctx):
        path = await bidirectional_search(ctx, "a", "a", set(), include_semantic=False, max_hops=5)
        assert [s.node_id for s in path] == ["a"]

    @pytest.mark.asyncio
    async def test_diverse_paths_differ(self, ctx):
        paths = await find_hybrid_paths(ctx, "a", "c", iterations=3, include_semantic=False, max_hops=5)
        assert len(paths) >= 2
        as_ids = [tuple(s.node_id for s in p) for p in paths]
        assert len(set(as_ids)) == len(as_ids)


class TestFindPath:
    @pytest.mark.asyncio
    async def test_physical_path(self, ctx):
        result = await find_path(ctx, "notes/a.md", "notes/c.md", limit=1)
        assert isinstance(result, PathResult)
        assert len(result.paths) == 1
        path = result.paths[0]
        assert path.labels == ["Alpha", "Beta", "Gamma"]
        assert path.steps == 2
        assert path.connections == ["physical", "physical"]

    @pytest.mark.asyncio
    async def test_limit_bounds_paths(self, ctx):
        result = await find_path(ctx, "notes/a.md", "notes/c.md", limit=3)
        assert 1 <= len(result.paths) <= 3

    @pytest.mark.asyncio
    async def test_semantic_path_to_orphan(self, ctx):
        physical_only = await find_path(ctx, "inbox/orphan.md", "notes/a.md")
        assert physical_only.paths == []
        assert physical_only.message == "No path found within the hop limit."

        result = await find_path(ctx, "inbox/orphan.md", "notes/a.md", include_semantic_paths=True)
        assert result.paths[0].labels == ["Orphan", "Alpha"]
        assert result.paths[0].connections[0].startswith("semantic (")

    @pytest.mark.asyncio
    async def test_missing_notes(self, ctx):
        result = await find_path(ctx, "nope.md", "notes/a.md")
        assert isinstance(result, QueryMessage)
        assert 'Start note "nope.md" not found.' in result.message

        result = await find_path(ctx, "notes/a.md", "gone.md")
        assert 'End note "gone.md" not found.' in result.message

    @pytest.mark.asyncio
    async def test_timeout(self, store):
        class SlowEdges:
            def __getattr__(self, name):
                return getattr(store, name)

            async def get_all_edges_for_node(self, node_id, limit_per_type):
                await asyncio.sleep(1)
                return await store.get_all_edges_for_node(node_id, limit_per_type)

        ctx = QueryContext(
            nodes=store,
            edges=SlowEdges(),
            stats=store,
            embeddings=store,
            search=store,
            settings=QuerySettings(step_time_limit=0.05),
        )
        result = await find_path(ctx, "notes/a.md", "notes/c.md")
        assert result.timed_out is True
        assert result.paths == []
        assert "timed out" in result.message
