"""FastMCP server for notegraph.

This module provides MCP protocol wrappers around the core query modes.
All actual logic lives in core.py - this file just handles MCP serialization
and builds the shared QueryContext from the environment.
"""

import os
from typing import Literal

from fastmcp import FastMCP

from . import core
from .config import DEFAULT_FOLDER_DEPTH, DEFAULT_LIMIT, DEFAULT_TRAVERSAL_LIMIT
from .context import QueryContext
from .models import (
    DimensionSearchResult,
    FolderResult,
    KeyNodesResult,
    LocalSearchResult,
    NoteContext,
    OrphansResult,
    PathResult,
    QueryFilters,
    QueryMessage,
    RecentChangesResult,
    SearchScope,
    SemanticFilter,
    TraversalResult,
)

mcp = FastMCP(
    name="notegraph",
    instructions=(
        "Query a note knowledge graph. Use inspect_note_context/graph_traversal/find_path for "
        "structure, find_key_nodes/find_orphans for health, search_by_dimensions/local_search "
        "for retrieval. Listings accept filters and a sorter like 'modified_desc'."
    ),
)

_context: QueryContext | None = None


def get_context() -> QueryContext:
    """Lazily build the process-wide context from NOTEGRAPH_GRAPH and settings."""
    global _context
    if _context is None:
        from .config import get_graph_path, load_settings
        from .store import InMemoryGraphStore

        settings = load_settings()
        store = InMemoryGraphStore.from_file(get_graph_path(), model_name=settings.embedding_model)
        _context = QueryContext.from_store(store, settings)
    return _context


def set_context(ctx: QueryContext | None) -> None:
    """Replace the process-wide context (tests, embedding applications)."""
    global _context
    _context = ctx


# ─────────────────────────────────────────────────────────────────────────────
# MCP Tool Wrappers
# ─────────────────────────────────────────────────────────────────────────────


@mcp.tool(
    name="inspect_note_context",
    description="Tags, categories, linked notes and (optionally) semantic neighbors of one note.",
)
async def inspect_note_context_tool(
    note_path: str,
    limit: int = DEFAULT_LIMIT,
    include_semantic_paths: bool = False,
) -> NoteContext | QueryMessage:
    """Inspect one note."""
    return await core.inspect_note_context(
        get_context(), note_path, limit=limit, include_semantic_paths=include_semantic_paths
    )


@mcp.tool(
    name="graph_traversal",
    description="Breadth-first walk from a note up to 3 hops, distilled per level with RRF.",
)
async def graph_traversal_tool(
    start_note_path: str,
    hops: int = 1,
    include_semantic_paths: bool = False,
    limit: int = DEFAULT_TRAVERSAL_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> TraversalResult | QueryMessage:
    """Traverse the graph from a note."""
    return await core.graph_traversal(
        get_context(),
        start_note_path,
        hops=hops,
        include_semantic_paths=include_semantic_paths,
        limit=limit,
        filters=filters,
        sorter=sorter,
    )


@mcp.tool(
    name="find_path",
    description="Up to 3 diverse paths between two notes via links and, optionally, semantic similarity.",
)
async def find_path_tool(
    start_note_path: str,
    end_note_path: str,
    limit: int = 3,
    include_semantic_paths: bool = False,
    filters: QueryFilters | None = None,
) -> PathResult | QueryMessage:
    """Find paths between two notes."""
    return await core.find_path(
        get_context(),
        start_note_path,
        end_note_path,
        limit=limit,
        include_semantic_paths=include_semantic_paths,
        filters=filters,
    )


@mcp.tool(
    name="find_key_nodes",
    description="Most influential notes split into sources (out-degree) and sinks (in-degree), with roles.",
)
async def find_key_nodes_tool(
    limit: int = DEFAULT_LIMIT,
    semantic_filter: SemanticFilter | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> KeyNodesResult:
    """Rank key nodes."""
    return await core.find_key_nodes(
        get_context(), limit=limit, semantic_filter=semantic_filter, filters=filters, sorter=sorter
    )


@mcp.tool(
    name="find_orphans",
    description="Notes with no links in either direction, each with a suggested note to connect to.",
)
async def find_orphans_tool(
    limit: int | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> OrphansResult:
    """List hard orphans."""
    return await core.find_orphans(get_context(), limit=limit, filters=filters, sorter=sorter)


@mcp.tool(
    name="search_by_dimensions",
    description=(
        "Find notes with a boolean expression over tags and categories, "
        "e.g. '(tag:a OR tag:b) AND NOT category:archive'."
    ),
)
async def search_by_dimensions_tool(
    boolean_expression: str,
    semantic_filter: SemanticFilter | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> DimensionSearchResult | QueryMessage:
    """Boolean tag/category search."""
    return await core.search_by_dimensions(
        get_context(),
        boolean_expression,
        semantic_filter=semantic_filter,
        filters=filters,
        sorter=sorter,
        limit=limit,
    )


@mcp.tool(
    name="explore_folder",
    description="Folder tree with tag/category summaries and document statistics.",
)
async def explore_folder_tool(
    folder_path: str = "/",
    recursive: bool = True,
    max_depth: int = DEFAULT_FOLDER_DEPTH,
    limit: int = DEFAULT_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> FolderResult | QueryMessage:
    """Explore a folder."""
    return await core.explore_folder(
        get_context(),
        folder_path,
        recursive=recursive,
        max_depth=max_depth,
        limit=limit,
        filters=filters,
        sorter=sorter,
    )


@mcp.tool(
    name="recent_changes",
    description="Recently modified notes, newest first unless another sorter is given.",
)
async def recent_changes_tool(
    limit: int = DEFAULT_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = "modified_desc",
) -> RecentChangesResult:
    """List recent changes."""
    return await core.recent_changes(get_context(), limit=limit, filters=filters, sorter=sorter)


@mcp.tool(
    name="local_search",
    description="Full-text, vector, or hybrid (RRF-fused) search over the notes.",
)
async def local_search_tool(
    query: str,
    search_mode: Literal["fulltext", "vector", "hybrid"] = "fulltext",
    scope: SearchScope | None = None,
    limit: int = DEFAULT_LIMIT,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> LocalSearchResult:
    """Search notes."""
    return await core.local_search(
        get_context(),
        query,
        search_mode=search_mode,
        scope=scope,
        limit=limit,
        filters=filters,
        sorter=sorter,
    )


def main():
    """Run the MCP server."""
    import logging

    from ._logging import configure_logging

    configure_logging()
    log = logging.getLogger(__name__)

    # Fail on a missing snapshot or bad settings before accepting requests
    ctx = get_context()

    if os.environ.get("NOTEGRAPH_PRELOAD", "").lower() in ("1", "true", "yes"):
        preload = getattr(ctx.search, "preload", None)
        if preload is not None:
            log.info("Preloading embedding model...")
            preload()
            log.info("Embedding model ready")

    mcp.run()


if __name__ == "__main__":
    main()
