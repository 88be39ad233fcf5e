"""Tests for the query modes in core.py.

Each mode runs against the shared vault fixture (see conftest.graph_data).
"""

import pytest

from notegraph import core
from notegraph.context import QueryContext
from notegraph.errors import InvalidSorterError, ParseError, StorageError
from notegraph.models import (
    HighlightSpan,
    QueryFilters,
    QueryMessage,
    SearchScope,
    SearchSnippet,
    SemanticFilter,
)
from notegraph.store import InMemoryGraphStore


# ─────────────────────────────────────────────────────────────────────────────
# inspect_note_context
# ─────────────────────────────────────────────────────────────────────────────


class TestInspectNoteContext:
    @pytest.mark.asyncio
    async def test_collects_tags_categories_and_clusters(self, ctx):
        result = await core.inspect_note_context(ctx, "notes/a.md")
        assert result.tags == ["javascript", "react"]
        assert result.categories == ["programming"]
        assert {n.id for n in result.incoming.document_nodes} == {"d", "e"}
        assert [n.id for n in result.outgoing.document_nodes] == ["b"]
        assert result.semantic_neighbors.document_nodes == []

    @pytest.mark.asyncio
    async def test_semantic_neighbors_exclude_linked_documents(self, ctx):
        result = await core.inspect_note_context(ctx, "notes/a.md", include_semantic_paths=True)
        semantic_ids = [n.id for n in result.semantic_neighbors.document_nodes]
        assert "o" in semantic_ids
        assert not {"b", "d", "e", "a"} & set(semantic_ids)

    @pytest.mark.asyncio
    async def test_missing_note(self, ctx):
        result = await core.inspect_note_context(ctx, "notes/missing.md")
        assert result == QueryMessage(message="Note not found: notes/missing.md")


# ─────────────────────────────────────────────────────────────────────────────
# graph_traversal
# ─────────────────────────────────────────────────────────────────────────────


class TestGraphTraversal:
    @pytest.mark.asyncio
    async def test_levels_and_visualization(self, ctx):
        result = await core.graph_traversal(ctx, "notes/a.md", hops=1)
        assert [level.depth for level in result.levels] == [0, 1]
        assert [n.id for n in result.levels[0].document_nodes] == ["a"]
        assert {n.id for n in result.levels[1].document_nodes} == {"b", "d", "e"}
        assert set(result.levels[1].tag_desc.split(", ")) == {"javascript", "react"}
        assert result.levels[1].category_desc == "programming"
        node_ids = {n.id for n in result.nodes}
        assert {"a", "b", "d", "e", "t-js"} <= node_ids
        assert all(e.from_node_id in node_ids and e.to_node_id in node_ids for e in result.edges)
        keys = [(e.from_node_id, e.to_node_id, e.type) for e in result.edges]
        assert len(keys) == len(set(keys))

    @pytest.mark.asyncio
    async def test_hops_are_clamped(self, ctx):
        result = await core.graph_traversal(ctx, "notes/a.md", hops=9)
        assert result.hops == 3
        assert max(level.depth for level in result.levels) <= 3

    @pytest.mark.asyncio
    async def test_filters_apply_per_level(self, ctx):
        result = await core.graph_traversal(ctx, "notes/a.md", hops=1, filters=QueryFilters(path="/projects"))
        docs = {n.id for level in result.levels for n in level.document_nodes}
        assert docs == {"d", "e"}
        assert "a" not in {n.id for n in result.nodes}

    @pytest.mark.asyncio
    async def test_sorter(self, ctx):
        result = await core.graph_traversal(ctx, "notes/a.md", hops=1, sorter="modified_asc")
        assert [n.id for n in result.levels[1].document_nodes] == ["e", "d", "b"]

    @pytest.mark.asyncio
    async def test_missing_start(self, ctx):
        result = await core.graph_traversal(ctx, "nowhere.md")
        assert isinstance(result, QueryMessage)
        assert "nowhere.md" in result.message


# ─────────────────────────────────────────────────────────────────────────────
# find_key_nodes
# ─────────────────────────────────────────────────────────────────────────────


class TestKeyNodes:
    @pytest.mark.asyncio
    async def test_sources_and_sinks(self, ctx):
        result = await core.find_key_nodes(ctx, limit=2)
        assert [n.id for n in result.sources] == ["a", "d"]
        assert [n.index for n in result.sources] == [1, 2]
        roles = {n.id: n.role for n in result.sources}
        assert roles == {"a": "hub", "d": "bridge"}
        assert result.sinks[0].id == "c-prog"
        assert result.sinks[0].degree == 3

    @pytest.mark.asyncio
    async def test_filters_reindex(self, ctx):
        result = await core.find_key_nodes(ctx, limit=2, filters=QueryFilters(path="/projects"))
        assert [n.id for n in result.sources] == ["d"]
        assert result.sources[0].index == 1

    @pytest.mark.asyncio
    async def test_semantic_filter_boosts_scores(self, ctx):
        plain = await core.find_key_nodes(ctx, limit=2)
        boosted = await core.find_key_nodes(ctx, limit=2, semantic_filter=SemanticFilter(query="alpha"))
        score = {n.id: n.rrf_score for n in plain.sources}
        boosted_score = {n.id: n.rrf_score for n in boosted.sources}
        assert boosted_score["a"] > score["a"]

    @pytest.mark.asyncio
    async def test_empty_graph(self, make_ctx):
        result = await core.find_key_nodes(make_ctx(nodes=[]))
        assert result.sources == [] and result.sinks == []

    @pytest.mark.asyncio
    async def test_invalid_sorter(self, ctx):
        with pytest.raises(InvalidSorterError):
            await core.find_key_nodes(ctx, sorter="rank")


# ─────────────────────────────────────────────────────────────────────────────
# search_by_dimensions
# ─────────────────────────────────────────────────────────────────────────────


class TestSearchByDimensions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("tag:javascript", ["a", "c"]),
            ("tag:javascript AND category:programming", ["a"]),
            ("tag:python OR tag:react", ["a", "b", "d"]),
            ("NOT category:programming", ["c", "e", "o"]),
            ("category:archive AND NOT tag:javascript", ["d"]),
        ],
    )
    async def test_boolean_lowering(self, ctx, expression, expected):
        result = await core.search_by_dimensions(ctx, expression)
        assert [n.id for n in result.items] == expected
        assert result.total_found == len(expected)

    @pytest.mark.asyncio
    async def test_empty_expression(self, ctx):
        result = await core.search_by_dimensions(ctx, "  ")
        assert result.message.startswith("No search dimensions specified.")

    @pytest.mark.asyncio
    async def test_unknown_labels(self, ctx):
        result = await core.search_by_dimensions(ctx, "tag:cobol")
        assert result.message == "No valid tags or categories found in expression."

    @pytest.mark.asyncio
    async def test_negated_unknown_label_matches_everything(self, ctx):
        result = await core.search_by_dimensions(ctx, "NOT tag:ghost")
        assert [n.id for n in result.items] == ["a", "b", "c", "d", "e", "o"]

    @pytest.mark.asyncio
    async def test_no_matches(self, ctx):
        result = await core.search_by_dimensions(ctx, "tag:javascript AND tag:python")
        assert result.message == "No documents found matching all criteria."

    @pytest.mark.asyncio
    async def test_malformed_expression_raises(self, ctx):
        with pytest.raises(ParseError):
            await core.search_by_dimensions(ctx, "tag:javascript AND")

    @pytest.mark.asyncio
    async def test_semantic_filter_narrows(self, ctx):
        result = await core.search_by_dimensions(
            ctx, "tag:javascript", semantic_filter=SemanticFilter(query="alpha", top_k=1)
        )
        assert [n.id for n in result.items] == ["a"]
        assert result.semantic_scores["a"] == pytest.approx(1.0)
        assert result.semantic_filtered_count == 1

    @pytest.mark.asyncio
    async def test_pipeline_counts(self, ctx):
        result = await core.search_by_dimensions(ctx, "category:programming", sorter="modified_desc", limit=1)
        assert [n.id for n in result.items] == ["a"]
        assert result.total_found == 3
        assert result.all_filtered_count == 2


# ─────────────────────────────────────────────────────────────────────────────
# explore_folder / recent_changes
# ─────────────────────────────────────────────────────────────────────────────


class TestExploreFolder:
    @pytest.mark.asyncio
    async def test_root(self, ctx):
        result = await core.explore_folder(ctx, "/")
        assert [item.path for item in result.file_tree] == ["inbox", "notes", "projects"]
        projects = result.file_tree[2]
        assert [child.path for child in projects.children] == ["projects/sub", "projects/d.md"]
        assert result.tag_desc == "javascript(2), python(2), react(1)"
        assert result.category_desc == "programming(3), archive(2)"
        assert result.doc_stats.total_files == 6
        assert result.doc_stats.top_word_count[0].path == "notes/a.md"
        assert result.doc_stats.language_stats == {"en": 2, "de": 1}

    @pytest.mark.asyncio
    async def test_tree_is_pruned_to_selected_files(self, ctx):
        result = await core.explore_folder(ctx, "notes", limit=1, sorter="modified_desc")
        assert [item.path for item in result.file_tree] == ["notes/a.md"]
        assert result.doc_stats.total_files == 1

    @pytest.mark.asyncio
    async def test_missing_folder(self, ctx):
        result = await core.explore_folder(ctx, "archive/2019")
        assert result == QueryMessage(message="Folder not found: archive/2019")

    @pytest.mark.asyncio
    async def test_folder_without_files(self, ctx):
        result = await core.explore_folder(ctx, "/", recursive=False)
        assert result == QueryMessage(message="No files found in the folder")


class TestRecentChanges:
    @pytest.mark.asyncio
    async def test_newest_first(self, ctx):
        result = await core.recent_changes(ctx, limit=3)
        assert [item.path for item in result.items] == ["notes/a.md", "inbox/orphan.md", "notes/b.md"]

    @pytest.mark.asyncio
    async def test_time_filter(self, ctx):
        result = await core.recent_changes(ctx, filters=QueryFilters(modified_within="today"))
        assert [item.path for item in result.items] == ["notes/a.md", "inbox/orphan.md"]


# ─────────────────────────────────────────────────────────────────────────────
# local_search
# ─────────────────────────────────────────────────────────────────────────────


def test_render_highlight():
    snippet = SearchSnippet(text="hello big world", highlights=[HighlightSpan(start=0, end=5), HighlightSpan(start=10, end=15)])
    assert core.render_highlight(snippet) == "**hello** big **world**"
    assert core.render_highlight(None) == ""


class TestLocalSearch:
    @pytest.mark.asyncio
    async def test_fulltext(self, ctx):
        result = await core.local_search(ctx, "javascript")
        assert [hit.path for hit in result.results] == ["notes/a.md", "notes/c.md"]
        assert "**javascript**" in result.results[0].highlighted_text
        assert result.search_mode == "fulltext"

    @pytest.mark.asyncio
    async def test_vector(self, ctx):
        result = await core.local_search(ctx, "alpha", search_mode="vector", limit=2)
        assert [hit.path for hit in result.results] == ["notes/a.md", "inbox/orphan.md"]

    @pytest.mark.asyncio
    async def test_hybrid_fuses_and_normalizes(self, ctx):
        result = await core.local_search(ctx, "alpha javascript", search_mode="hybrid")
        assert result.results[0].path == "notes/a.md"
        assert result.results[0].final_score == pytest.approx(1.0)
        assert all(0 < hit.final_score <= 1 for hit in result.results)

    @pytest.mark.asyncio
    async def test_hybrid_degrades_when_vector_search_fails(self, graph_data):
        def broken_embedder(text):
            raise StorageError("model not installed")

        ctx = QueryContext.from_store(InMemoryGraphStore.from_dict(graph_data, embedder=broken_embedder))
        result = await core.local_search(ctx, "javascript", search_mode="hybrid")
        assert [hit.path for hit in result.results] == ["notes/a.md", "notes/c.md"]
        assert result.warnings and "model not installed" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_folder_scope(self, ctx):
        result = await core.local_search(ctx, "python", scope=SearchScope(mode="folder", folder="projects"))
        assert [hit.path for hit in result.results] == ["projects/d.md"]

    @pytest.mark.asyncio
    async def test_expression_filter_on_hits(self, ctx):
        result = await core.local_search(
            ctx, "javascript", filters=QueryFilters(tag_category_boolean_expression="category:archive")
        )
        assert [hit.path for hit in result.results] == ["notes/c.md"]

    @pytest.mark.asyncio
    async def test_invalid_sorter(self, ctx):
        with pytest.raises(InvalidSorterError):
            await core.local_search(ctx, "javascript", sorter="score_desc")
