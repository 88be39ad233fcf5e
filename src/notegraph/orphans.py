"""Orphan detection and revival suggestions.

A hard orphan is a document with no edge in either direction. For each
orphan that survives filtering, the most similar non-orphan document is
proposed as a connection target.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence

from .context import QueryContext
from .models import OrphanNote, OrphansResult, QueryFilters, RevivalSuggestion
from .query.pipeline import OrphanFieldAccessor, apply_filters_and_sorters, build_graph_node_accessor
from .semantic import get_semantic_neighbors

log = logging.getLogger(__name__)


async def find_revival_suggestion(
    ctx: QueryContext,
    orphan: OrphanNote,
    exclude_ids: Collection[str],
) -> RevivalSuggestion | None:
    """Best semantic match outside `exclude_ids`, or None when there is none."""
    neighbors = await get_semantic_neighbors(
        ctx.nodes, ctx.embeddings, orphan.id, ctx.settings.revival_neighbor_count, exclude_ids
    )
    if not neighbors:
        return None

    best = max(neighbors, key=lambda n: n.similarity_value)
    return RevivalSuggestion(
        path=best.path or best.id,
        title=best.label,
        similarity=round(best.similarity_value * 100, 1),
        reason=f"High semantic similarity ({best.similarity}) - suggests potential connection",
    )


async def attach_revival_suggestions(
    ctx: QueryContext,
    orphans: Sequence[OrphanNote],
    exclude_ids: Collection[str],
) -> None:
    """Fill `revival_suggestion` in place; failures leave it empty."""
    excluded = set(exclude_ids)
    for orphan in orphans:
        if orphan.type != "document":
            continue
        try:
            orphan.revival_suggestion = await find_revival_suggestion(ctx, orphan, excluded)
        except Exception as e:
            log.warning("No revival suggestion for orphan %s: %s", orphan.id, e)


async def find_orphans(
    ctx: QueryContext,
    limit: int | None = None,
    filters: QueryFilters | None = None,
    sorter: str | None = None,
) -> OrphansResult:
    """Hard orphans after filter/sort/limit, each with an optional revival suggestion.

    Candidates are capped by `orphan_candidate_limit`; `limit` only truncates
    the filtered, sorted list. Revival suggestions exclude every candidate orphan, so an
    orphan is never suggested as the fix for another.
    """
    orphan_ids = await ctx.edges.get_hard_orphans(ctx.settings.orphan_candidate_limit)

    accessor = await build_graph_node_accessor(
        ctx.nodes, ctx.edges, orphan_ids, filters, sorter, accessor_cls=OrphanFieldAccessor
    )
    candidates = [
        OrphanNote(**accessor.nodes[node_id].model_dump())
        for node_id in orphan_ids
        if node_id in accessor.nodes
    ]
    selected = apply_filters_and_sorters(candidates, filters, sorter, limit, accessor, ctx.query_cache)

    await attach_revival_suggestions(ctx, selected, orphan_ids)

    return OrphansResult(
        total_count=len(candidates),
        filtered_count=len(selected),
        orphans=selected,
    )
