"""Hybrid graph traversal and cluster distillation.

The traversal is a bounded-depth, time-boxed BFS over stored edges and
embedding-similarity neighbors. Nodes are marked visited on first sight, so a
node's depth reflects discovery order across a queue that interleaves
physical and semantic expansions. That is an approximation of distance, kept
intentionally: it is not a shortest path over a unified metric.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from .config import DEFAULT_SEMANTIC_EDGE_WEIGHT
from .context import QueryContext
from .models import (
    ClusterSummary,
    DocStatistics,
    GraphNode,
    TraversalNode,
    VisualizationEdge,
)
from .ranking import rank_cluster
from .semantic import get_semantic_neighbors

log = logging.getLogger(__name__)


@dataclass
class TraversalOutcome:
    """Raw BFS output before per-level distillation."""

    nodes: list[TraversalNode] = field(default_factory=list)
    edges: list[VisualizationEdge] = field(default_factory=list)
    is_timeout: bool = False


def semantic_budget(depth: int, limit: int, decay: Sequence[int | None]) -> int:
    """Semantic neighbors fetched when expanding a node at `depth`.

    Entries of None mean the caller's limit; depths past the table get none.
    """
    if depth >= len(decay):
        return 0
    budget = decay[depth]
    return limit if budget is None else budget


async def hybrid_traversal(
    ctx: QueryContext,
    start: GraphNode,
    hops: int,
    limit: int,
    include_semantic: bool,
    clock: Callable[[], float] = time.monotonic,
) -> TraversalOutcome:
    """Breadth-first search from `start` up to `hops` edges away.

    Physical edges are fetched per node with at most `limit` edges per type;
    semantic neighbors are fetched only for document nodes, with a budget that
    decays by depth. The wall-clock budget is checked at the top of each
    dequeue; on expiry the partial result is returned with `is_timeout` set.
    """
    settings = ctx.settings
    outcome = TraversalOutcome()
    started = clock()

    visited = {start.id}
    queue: deque[TraversalNode] = deque(
        [TraversalNode(**start.model_dump(), depth=0, discovered_via="physical")]
    )

    while queue:
        if clock() - started > settings.step_time_limit:
            log.info(
                "Traversal from %s timed out after %.1fs with %d nodes",
                start.id,
                settings.step_time_limit,
                len(outcome.nodes),
            )
            outcome.is_timeout = True
            break

        current = queue.popleft()
        if current.depth > hops:
            continue

        outcome.nodes.append(current)
        if current.depth == hops:
            continue

        edges = await ctx.edges.get_all_edges_for_node(current.id, limit)
        outcome.edges.extend(
            VisualizationEdge(
                from_node_id=edge.from_node_id,
                to_node_id=edge.to_node_id,
                type=edge.type,
                weight=edge.weight,
            )
            for edge in edges
        )

        incoming = [e.from_node_id for e in edges if e.to_node_id == current.id]
        outgoing = [e.to_node_id for e in edges if e.from_node_id == current.id]
        physical_ids = list(dict.fromkeys(incoming + outgoing))

        semantic_neighbors = []
        if include_semantic and current.type == "document":
            budget = semantic_budget(current.depth, limit, settings.semantic_decay)
            semantic_neighbors = await get_semantic_neighbors(
                ctx.nodes, ctx.embeddings, current.id, budget, set(physical_ids)
            )

        connected = await ctx.nodes.get_by_ids(physical_ids) if physical_ids else {}
        for node_id in physical_ids:
            node = connected.get(node_id)
            if node is None or node_id in visited:
                continue
            visited.add(node_id)
            queue.append(
                TraversalNode(**node.model_dump(), depth=current.depth + 1, discovered_via="physical")
            )

        for neighbor in semantic_neighbors:
            if neighbor.id in visited:
                continue
            visited.add(neighbor.id)
            queue.append(
                TraversalNode(
                    **neighbor.model_dump(exclude={"discovered_via"}),
                    depth=current.depth + 1,
                    discovered_via="semantic",
                )
            )
            outcome.edges.append(
                VisualizationEdge(
                    from_node_id=current.id,
                    to_node_id=neighbor.id,
                    type="semantic",
                    weight=neighbor.similarity_value or DEFAULT_SEMANTIC_EDGE_WEIGHT,
                )
            )

    return outcome


def group_by_depth(nodes: Sequence[TraversalNode]) -> dict[int, list[TraversalNode]]:
    levels: dict[int, list[TraversalNode]] = {}
    for node in nodes:
        levels.setdefault(node.depth, []).append(node)
    return dict(sorted(levels.items()))


async def _fetch_cluster_signals(
    ctx: QueryContext, doc_ids: list[str]
) -> tuple[dict[str, int], dict[str, DocStatistics]]:
    try:
        counts, stats = await asyncio.gather(
            ctx.edges.count_edges(doc_ids),
            ctx.stats.get_by_doc_ids(doc_ids),
        )
    except Exception as e:
        log.warning("Cluster ranking signals unavailable, ranking by recency only: %s", e)
        return {}, {}
    return counts.total, stats


async def distill_cluster_nodes(
    ctx: QueryContext,
    nodes: Sequence[GraphNode],
    limit: int | None,
) -> ClusterSummary:
    """Shrink a cluster's documents with Cluster RRF and collapse tags/categories.

    Tag and category nodes are reduced to comma-joined label strings; document
    nodes keep their concrete type (traversal or semantic extras included).
    """
    documents = [n for n in nodes if n.type == "document"]
    tags = [n.label for n in nodes if n.type == "tag"]
    categories = [n.label for n in nodes if n.type == "category"]

    summary = ClusterSummary(
        tag_desc=", ".join(tags) if tags else None,
        category_desc=", ".join(categories) if categories else None,
    )
    if not documents:
        return summary

    density, stats = await _fetch_cluster_signals(ctx, [n.id for n in documents])
    kept, scores, omitted = rank_cluster(documents, density, stats, ctx.settings, limit)
    summary.document_nodes = list(kept)
    summary.scores = scores
    summary.omitted_count = omitted
    return summary
