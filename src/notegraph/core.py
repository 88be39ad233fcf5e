"""Core query modes for notegraph.

This module contains the logic for every query mode. The CLI (cli.py) and
the MCP server (server.py) are thin wrappers around these functions.

Every mode takes an explicit QueryContext and returns a pydantic model.
Missing notes or folders are reported as a QueryMessage rather than raised;
malformed expressions (ParseError) and unknown sorters (InvalidSorterError)
are raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time

from .config import (
    DEFAULT_FOLDER_DEPTH,
    DEFAULT_LIMIT,
    DEFAULT_TRAVERSAL_LIMIT,
    FOLDER_STATS_TOP_K,
    MAX_LIMIT,
    MAX_TRAVERSAL_HOPS,
)
from .context import QueryContext
from .models import (
    DimensionSearchResult,
    DocStatistics,
    FolderItem,
    FolderResult,
    FolderStatistics,
    GraphNode,
    KeyNode,
    KeyNodesResult,
    LocalSearchHit,
    LocalSearchResult,
    NoteContext,
    OrphansResult,
    PathMetric,
    PathResult,
    QueryFilters,
    QueryMessage,
    RecentChangesResult,
    SearchMode,
    SearchResultItem,
    SearchScope,
    SearchSnippet,
    SemanticFilter,
    TraversalLevel,
    TraversalResult,
    VisualizationEdge,
    VisualizationNode,
)
from .orphans import find_orphans as _find_orphans
from .paths import find_hybrid_paths, to_found_path
from .query.expression import resolve_document_ids
from .query.pipeline import (
    apply_filters_and_sorters,
    build_graph_node_accessor,
    build_search_result_accessor,
    load_tag_index,
)
from .ranking import fuse_search_results, key_node_rrf
from .semantic import get_semantic_neighbors, get_semantic_search_results
from .traversal import distill_cluster_nodes, group_by_depth, hybrid_traversal

log = logging.getLogger(__name__)

__all__ = [
    "QueryContext",
    "explore_folder",
    "find_key_nodes",
    "find_orphans",
    "find_path",
    "graph_traversal",
    "inspect_note_context",
    "local_search",
    "recent_changes",
    "search_by_dimensions",
]


# ─────────────────────────────────────────────────────────────────────────────
# Inspect / traverse
# ─────────────────────────────────────────────────────────────────────────────


async def inspect_note_context(
    ctx: QueryContext,
    note_path: str,
    limit: int = DEFAULT_LIMIT,
    include_semantic_paths: bool = False,
) -> NoteContext | QueryMessage:
    """Tags, categories, incoming/outgoing clusters and semantic neighbors of one note.

    Edges are fetched with at most `limit` per edge type, so a note with many
    tags does not crowd out its few links.
    """
    node = await ctx.nodes.get_by_path(note_path)
    if node is None:
        return QueryMessage(message=f"Note not found: {note_path}")

    edges = await ctx.edges.get_all_edges_for_node(node.id, limit)
    incoming_ids = list(dict.fromkeys(e.from_node_id for e in edges if e.to_node_id == node.id))
    outgoing_ids = list(dict.fromkeys(e.to_node_id for e in edges if e.from_node_id == node.id))
    connected = await ctx.nodes.get_by_ids(list(dict.fromkeys(incoming_ids + outgoing_ids)))

    tags: list[str] = []
    categories: list[str] = []
    neighbor_doc_ids: set[str] = set()
    for other in connected.values():
        if other.type == "tag" and other.label not in tags:
            tags.append(other.label)
        elif other.type == "category" and other.label not in categories:
            categories.append(other.label)
        elif other.type == "document":
            neighbor_doc_ids.add(other.id)

    semantic_neighbors = []
    if include_semantic_paths:
        semantic_neighbors = await get_semantic_neighbors(
            ctx.nodes, ctx.embeddings, node.id, limit, neighbor_doc_ids
        )

    # Tags and categories are already listed above; clusters only keep documents
    incoming = [connected[i] for i in incoming_ids if i in connected and connected[i].type == "document"]
    outgoing = [connected[i] for i in outgoing_ids if i in connected and connected[i].type == "document"]

    return NoteContext(
        note_path=note_path,
        tags=tags,
        categories=categories,
        incoming=await distill_cluster_nodes(ctx, incoming, limit),
        outgoing=await distill_cluster_nodes(ctx, outgoing, limit),
        semantic_neighbors=await distill_cluster_nodes(ctx, semantic_neighbors, limit),
    )


async def graph_traversal(
    ctx: QueryContext,
    start_note_path: str,
    hops: int = 1,
    include_semantic_paths: bool = False,
    limit: int = DEFAULT_TRAVERSAL_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> TraversalResult | QueryMessage:
    """Hybrid BFS from a note, distilled per level, plus a visualization graph."""
    start = await ctx.nodes.get_by_path(start_note_path)
    if start is None:
        return QueryMessage(message=f"Start note not found: {start_note_path}")

    if hops < 0 or hops > MAX_TRAVERSAL_HOPS:
        clamped = max(0, min(hops, MAX_TRAVERSAL_HOPS))
        log.debug("Clamping traversal hops %d to %d", hops, clamped)
        hops = clamped

    outcome = await hybrid_traversal(ctx, start, hops, limit, include_semantic_paths)

    levels: list[TraversalLevel] = []
    for depth, level_nodes in group_by_depth(outcome.nodes).items():
        summary = await distill_cluster_nodes(ctx, level_nodes, limit)
        levels.append(TraversalLevel(depth=depth, **dict(summary)))

    if filters is not None or sorter:
        doc_ids = [node.id for level in levels for node in level.document_nodes]
        accessor = await build_graph_node_accessor(ctx.nodes, ctx.edges, doc_ids, filters, sorter)
        for level in levels:
            kept = apply_filters_and_sorters(
                level.document_nodes, filters, sorter, limit, accessor, ctx.query_cache
            )
            level.document_nodes = kept
            level.scores = {n.id: level.scores[n.id] for n in kept if n.id in level.scores}

    kept_doc_ids = {node.id for level in levels for node in level.document_nodes}
    visible = [n for n in outcome.nodes if n.type != "document" or n.id in kept_doc_ids]
    visible_ids = {n.id for n in visible}

    edges: list[VisualizationEdge] = []
    seen_edges: set[tuple[str, str, str]] = set()
    for edge in outcome.edges:
        key = (edge.from_node_id, edge.to_node_id, edge.type)
        if key in seen_edges or edge.from_node_id not in visible_ids or edge.to_node_id not in visible_ids:
            continue
        seen_edges.add(key)
        edges.append(edge)

    return TraversalResult(
        start_note_path=start_note_path,
        hops=hops,
        is_timeout=outcome.is_timeout,
        levels=levels,
        nodes=[
            VisualizationNode(
                id=n.id,
                label=n.label or n.id,
                type=n.type,
                depth=n.depth,
                discovered_via=n.discovered_via,
            )
            for n in visible
        ],
        edges=edges,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Paths
# ─────────────────────────────────────────────────────────────────────────────


async def find_path(
    ctx: QueryContext,
    start_note_path: str,
    end_note_path: str,
    limit: int = 3,
    include_semantic_paths: bool = False,
    filters: QueryFilters | None = None,
) -> PathResult | QueryMessage:
    """Up to `limit` diverse paths between two notes (at most the iteration setting)."""
    start, end = await asyncio.gather(
        ctx.nodes.get_by_path(start_note_path),
        ctx.nodes.get_by_path(end_note_path),
    )
    if start is None or end is None:
        missing = []
        if start is None:
            missing.append(f'Start note "{start_note_path}" not found.')
        if end is None:
            missing.append(f'End note "{end_note_path}" not found.')
        return QueryMessage(message="Path finding failed. " + " ".join(missing))

    settings = ctx.settings
    iterations = settings.path_finding_iterations
    if limit > 0:
        iterations = min(iterations, limit)

    try:
        raw_paths = await asyncio.wait_for(
            find_hybrid_paths(
                ctx,
                start.id,
                end.id,
                iterations=iterations,
                include_semantic=include_semantic_paths,
                max_hops=settings.path_finding_max_hops,
                filters=filters,
            ),
            timeout=settings.step_time_limit,
        )
    except TimeoutError:
        log.info("Path finding from %s to %s timed out", start_note_path, end_note_path)
        return PathResult(
            start_note_path=start_note_path,
            end_note_path=end_note_path,
            timed_out=True,
            message=(
                f'Path finding from "{start_note_path}" to "{end_note_path}" timed out after '
                f"{settings.step_time_limit:g}s. Try notes with fewer connections or disable semantic paths."
            ),
        )

    node_ids = list(dict.fromkeys(seg.node_id for path in raw_paths for seg in path))
    nodes = await ctx.nodes.get_by_ids(node_ids) if node_ids else {}
    labels = {node_id: node.label for node_id, node in nodes.items()}

    paths = [to_found_path(path, labels) for path in raw_paths]
    if limit > 0:
        paths = paths[:limit]

    return PathResult(
        start_note_path=start_note_path,
        end_note_path=end_note_path,
        paths=paths,
        message=None if paths else "No path found within the hop limit.",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Key nodes / orphans
# ─────────────────────────────────────────────────────────────────────────────


async def _pool_signals(
    ctx: QueryContext, pool_ids: list[str]
) -> tuple[dict[str, int], dict[str, int], dict[str, int]]:
    """Exact out/in degrees and distinct category counts for the pool; empty on failure."""
    if not pool_ids:
        return {}, {}, {}
    try:
        counts, category_edges = await asyncio.gather(
            ctx.edges.count_edges(pool_ids),
            ctx.edges.get_by_from_nodes_and_types(pool_ids, ["categorized"]),
        )
    except Exception as e:
        log.warning("Key-node classification signals unavailable, using pool degrees: %s", e)
        return {}, {}, {}

    categories: dict[str, set[str]] = {}
    for edge in category_edges:
        categories.setdefault(edge.from_node_id, set()).add(edge.to_node_id)
    return counts.outgoing, counts.incoming, {k: len(v) for k, v in categories.items()}


async def find_key_nodes(
    ctx: QueryContext,
    limit: int = DEFAULT_LIMIT,
    semantic_filter: SemanticFilter | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> KeyNodesResult:
    """Influential nodes split into sources (by out-degree) and sinks (by in-degree)."""
    settings = ctx.settings
    pool = await ctx.edges.get_top_node_ids_by_degree(settings.ranking_pool_size)
    pool_ids = list(dict.fromkeys([s.node_id for s in pool.top_out] + [s.node_id for s in pool.top_in]))

    semantic_ranking = None
    if semantic_filter is not None:
        hits = await get_semantic_search_results(
            ctx.search, ctx.nodes, semantic_filter, SearchScope(mode="limit_ids", ids=pool_ids)
        )
        semantic_ranking = [node_id for node_id, _ in hits]

    out_degrees, in_degrees, category_counts = await _pool_signals(ctx, pool_ids)
    scored = key_node_rrf(
        pool.top_out,
        pool.top_in,
        settings,
        limit,
        semantic_ranking=semantic_ranking,
        category_counts=category_counts,
        out_degrees=out_degrees,
        in_degrees=in_degrees,
    )
    if not scored:
        return KeyNodesResult()

    by_id = {s.node_id: s for s in scored}
    candidate_ids = list(by_id)
    candidate_degrees, nodes = await asyncio.gather(
        ctx.edges.get_top_node_ids_by_degree(limit if limit > 0 else None, candidate_ids),
        ctx.nodes.get_by_ids(candidate_ids),
    )

    def to_key_nodes(stats) -> list[KeyNode]:
        return [
            KeyNode(
                id=stat.node_id,
                label=nodes[stat.node_id].label if stat.node_id in nodes else stat.node_id,
                degree=stat.degree,
                role=by_id[stat.node_id].role,
                rrf_score=by_id[stat.node_id].rrf_score,
                index=i + 1,
            )
            for i, stat in enumerate(stats)
            if stat.node_id in by_id
        ]

    sources = to_key_nodes(candidate_degrees.top_out)
    sinks = to_key_nodes(candidate_degrees.top_in)

    if filters is not None or sorter:
        accessor = await build_graph_node_accessor(ctx.nodes, ctx.edges, candidate_ids, filters, sorter)
        sources = _reindex(
            apply_filters_and_sorters(
                [n for n in sources if n.id in accessor.nodes], filters, sorter, None, accessor, ctx.query_cache
            )
        )
        sinks = _reindex(
            apply_filters_and_sorters(
                [n for n in sinks if n.id in accessor.nodes], filters, sorter, None, accessor, ctx.query_cache
            )
        )

    return KeyNodesResult(sources=sources, sinks=sinks)


def _reindex(items: list[KeyNode]) -> list[KeyNode]:
    return [item.model_copy(update={"index": i + 1}) for i, item in enumerate(items)]


async def find_orphans(
    ctx: QueryContext,
    limit: int | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> OrphansResult:
    """Hard orphans with revival suggestions."""
    return await _find_orphans(ctx, limit=limit, filters=filters, sorter=sorter)


# ─────────────────────────────────────────────────────────────────────────────
# Dimensions / folders / recency
# ─────────────────────────────────────────────────────────────────────────────


async def search_by_dimensions(
    ctx: QueryContext,
    boolean_expression: str,
    semantic_filter: SemanticFilter | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> DimensionSearchResult | QueryMessage:
    """Documents matching a tag/category boolean expression.

    Raises:
        ParseError: If the expression is malformed.
    """
    if not boolean_expression or not boolean_expression.strip():
        return QueryMessage(
            message=(
                "No search dimensions specified. Please specify a boolean_expression like "
                "'tag:javascript AND category:programming'."
            )
        )

    expression = ctx.query_cache.expression(boolean_expression)
    dimensions = expression.extract_dimensions()

    async def lookup(node_type: str, labels: list[str]) -> dict[str, str]:
        if not labels:
            return {}
        return {node.label: node.id for node in await ctx.nodes.get_by_type_and_labels(node_type, labels)}

    tag_lookup, category_lookup = await asyncio.gather(
        lookup("tag", dimensions.tags),
        lookup("category", dimensions.categories),
    )
    # A negated unknown label still matches every document
    if not tag_lookup and not category_lookup and not expression.has_negation():
        return QueryMessage(message="No valid tags or categories found in expression.")

    predicate = expression.build_predicate(tag_lookup, category_lookup)
    doc_ids = await resolve_document_ids(
        predicate,
        lambda target_id: ctx.edges.get_source_nodes_connected_to_any_target([target_id]),
        lambda: ctx.nodes.get_ids_by_type("document"),
    )
    if not doc_ids:
        return QueryMessage(message="No documents found matching all criteria.")

    nodes = await ctx.nodes.get_by_ids(sorted(doc_ids))
    matched = [nodes[i] for i in sorted(doc_ids) if i in nodes]
    total_found = len(matched)

    semantic_scores: dict[str, float] = {}
    aligned = matched
    if semantic_filter is not None:
        hits = await get_semantic_search_results(
            ctx.search, ctx.nodes, semantic_filter, SearchScope(mode="limit_ids", ids=[n.id for n in matched])
        )
        if hits:
            semantic_scores = dict(hits)
            aligned = [n for n in matched if n.id in semantic_scores]

    accessor = await build_graph_node_accessor(ctx.nodes, ctx.edges, [n.id for n in aligned], filters, sorter)
    items = apply_filters_and_sorters(
        aligned, filters, sorter, limit if limit > 0 else DEFAULT_LIMIT, accessor, ctx.query_cache
    )

    return DimensionSearchResult(
        boolean_expression=boolean_expression,
        items=items,
        semantic_scores={n.id: semantic_scores[n.id] for n in items if n.id in semantic_scores},
        total_found=total_found,
        semantic_filtered_count=total_found - len(aligned),
        all_filtered_count=total_found - len(items),
    )


def _file_paths(tree: list[FolderItem]) -> list[str]:
    paths: list[str] = []
    for item in tree:
        if item.type == "file":
            paths.append(item.path)
        elif item.children:
            paths.extend(_file_paths(item.children))
    return paths


def _prune_tree(tree: list[FolderItem], keep: set[str]) -> list[FolderItem]:
    pruned: list[FolderItem] = []
    for item in tree:
        if item.type == "file":
            if item.path in keep:
                pruned.append(FolderItem(type="file", path=item.path))
        elif item.children:
            children = _prune_tree(item.children, keep)
            if children:
                pruned.append(FolderItem(type="folder", path=item.path, children=children))
    return pruned


def _count_desc(labels_by_doc: dict[str, list[str]]) -> str:
    counts: dict[str, int] = {}
    for labels in labels_by_doc.values():
        for label in labels:
            counts[label] = counts.get(label, 0) + 1
    ordered = sorted(counts, key=lambda label: -counts[label])
    return ", ".join(f"{label}({counts[label]})" for label in ordered)


async def _folder_statistics(ctx: QueryContext, docs: list[GraphNode], top_k: int) -> FolderStatistics:
    if not docs:
        return FolderStatistics()

    paths = {doc.id: doc.path or doc.id for doc in docs}
    doc_ids = list(paths)
    recent, words, chars, richness, languages = await asyncio.gather(
        ctx.stats.get_top_recent_edited(doc_ids, top_k),
        ctx.stats.get_top_word_count(doc_ids, top_k),
        ctx.stats.get_top_char_count(doc_ids, top_k),
        ctx.stats.get_top_richness(doc_ids, top_k),
        ctx.stats.get_language_stats(doc_ids),
    )

    def metrics(rows: list[DocStatistics], field: str) -> list[PathMetric]:
        return [PathMetric(path=paths.get(r.doc_id, r.doc_id), value=getattr(r, field)) for r in rows]

    return FolderStatistics(
        total_files=len(doc_ids),
        top_recent_edited=metrics(recent, "updated_at"),
        top_word_count=metrics(words, "word_count"),
        top_char_count=metrics(chars, "char_count"),
        top_richness=metrics(richness, "richness_score"),
        language_stats=languages or None,
    )


async def explore_folder(
    ctx: QueryContext,
    folder_path: str = "/",
    recursive: bool = True,
    max_depth: int = DEFAULT_FOLDER_DEPTH,
    limit: int = DEFAULT_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> FolderResult | QueryMessage:
    """Folder tree pruned to the files that pass the pipeline, with tag and usage summaries."""
    normalized = folder_path.strip("/")
    tree = await ctx.files.list_folder(normalized, recursive, max_depth) if ctx.files else None
    if tree is None:
        return QueryMessage(message=f"Folder not found: {folder_path}")

    file_paths = _file_paths(tree)
    if not file_paths:
        return QueryMessage(message="No files found in the folder")

    nodes_by_path = await ctx.nodes.get_by_paths(file_paths)
    candidates = [nodes_by_path[p] for p in file_paths if p in nodes_by_path]
    accessor = await build_graph_node_accessor(ctx.nodes, ctx.edges, [n.id for n in candidates], filters, sorter)
    selected = apply_filters_and_sorters(candidates, filters, sorter, limit, accessor, ctx.query_cache)

    tag_index = await load_tag_index(ctx.nodes, ctx.edges, [n.id for n in selected])
    stats = await _folder_statistics(ctx, selected, FOLDER_STATS_TOP_K)

    return FolderResult(
        current_path=folder_path,
        recursive=recursive,
        max_depth=max_depth,
        file_tree=_prune_tree(tree, {n.path for n in selected if n.path}),
        tag_desc=_count_desc(tag_index.tags),
        category_desc=_count_desc(tag_index.categories),
        doc_stats=stats,
    )


async def recent_changes(
    ctx: QueryContext,
    limit: int = DEFAULT_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = "modified_desc",
) -> RecentChangesResult:
    """Recently modified items from the search client."""
    # Over-fetch when filtering so the limit still fills up
    fetch = MAX_LIMIT if filters is not None else (limit if limit > 0 else MAX_LIMIT)
    items = await ctx.search.get_recent(fetch)
    accessor = await build_search_result_accessor(ctx.nodes, ctx.edges, items, filters)
    return RecentChangesResult(
        items=apply_filters_and_sorters(items, filters, sorter, limit, accessor, ctx.query_cache)
    )


# ─────────────────────────────────────────────────────────────────────────────
# Local search
# ─────────────────────────────────────────────────────────────────────────────


def render_highlight(snippet: SearchSnippet | None) -> str:
    """Wrap highlight spans in **bold** markers."""
    if snippet is None or not snippet.text:
        return ""
    text = snippet.text
    # Apply from the end so earlier offsets stay valid
    for span in sorted(snippet.highlights, key=lambda s: s.start, reverse=True):
        text = text[: span.end] + "**" + text[span.end :]
        text = text[: span.start] + "**" + text[span.start :]
    return text


def _to_hit(item: SearchResultItem) -> LocalSearchHit:
    return LocalSearchHit(
        path=item.path,
        id=item.id,
        title=item.title,
        score=item.score,
        final_score=item.final_score,
        last_modified=item.last_modified,
        type=item.type,
        highlighted_text=render_highlight(item.highlight),
    )


async def local_search(
    ctx: QueryContext,
    query: str,
    search_mode: SearchMode = "fulltext",
    scope: SearchScope | None = None,
    limit: int = DEFAULT_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> LocalSearchResult:
    """Full-text, vector or hybrid (RRF-fused) search, slimmed for output.

    In hybrid mode a failing vector search degrades to full-text results and
    is reported in `warnings`.
    """
    started = time.perf_counter()
    top_k = limit if limit > 0 else MAX_LIMIT
    warnings: list[str] = []

    if search_mode == "vector":
        items = await ctx.search.vector_search(query, top_k, scope)
    elif search_mode == "hybrid":
        fulltext = await ctx.search.fulltext_search(query, top_k, scope)
        try:
            vector = await ctx.search.vector_search(query, top_k, scope)
        except Exception as e:
            log.warning("Vector search failed, using full-text results only: %s", e)
            warnings.append(f"Vector search unavailable: {e}")
            vector = []
        items = fuse_search_results([fulltext, vector], ctx.settings) if vector else fulltext
    else:
        items = await ctx.search.fulltext_search(query, top_k, scope)

    accessor = await build_search_result_accessor(ctx.nodes, ctx.edges, items, filters)
    selected = apply_filters_and_sorters(items, filters, sorter, limit, accessor, ctx.query_cache)

    return LocalSearchResult(
        query=query,
        search_mode=search_mode,
        results=[_to_hit(item) for item in selected],
        search_time_ms=round((time.perf_counter() - started) * 1000, 2),
        warnings=warnings,
    )

