"""Reciprocal Rank Fusion scoring.

Three independent uses of the same term, weight / (k + rank) with 0-based ranks:

- Cluster RRF shrinks the documents of one cluster (a traversal level, or a
  note's incoming/outgoing neighbors) to a limit, mixing density, recency,
  richness and usage so a node strong on a single dimension is not excluded.
- Key-Node RRF scores a bounded pool of high-degree nodes and classifies each
  as bridge, hub, authority or balanced.
- Search fusion merges full-text and vector hit lists for hybrid local search.

Scores are ephemeral: computed per request and never compared across
requests with different settings. Fused-score ties break by id ascending.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Sequence

from .config import BRIDGE_MIN_CATEGORIES, QuerySettings
from .models import DegreeStat, DocStatistics, GraphNode, KeyNodeScore, NodeRole, SearchResultItem


def _rank_map(items: Sequence[GraphNode], value: Callable[[GraphNode], float]) -> dict[str, int]:
    """0-based competition rank by descending value; equal values share a rank."""
    ordered = sorted(items, key=value, reverse=True)
    ranks: dict[str, int] = {}
    rank = 0
    previous = None
    for position, node in enumerate(ordered):
        current = value(node)
        if position == 0 or current != previous:
            rank = position
        ranks[node.id] = rank
        previous = current
    return ranks


def _rrf(weight: float, k: int, rank: int) -> float:
    return weight * (1.0 / (k + rank))


def _similarity_value(node: GraphNode) -> float:
    value = getattr(node, "similarity_value", None)
    return float(value) if value else 0.0


def cluster_rrf_scores(
    nodes: Sequence[GraphNode],
    density: dict[str, int],
    stats: dict[str, DocStatistics],
    settings: QuerySettings,
) -> dict[str, float]:
    """Cluster RRF score per document node.

    `density` is the total edge count per node and `stats` its usage row.
    Nodes that carry `discovered_via` get the similarity term (semantic) or the
    physical bonus (physical); plain graph nodes get neither.
    """
    if not nodes:
        return {}

    weights = settings.cluster_weights
    k = settings.rrf_k

    def stat(node: GraphNode) -> DocStatistics | None:
        return stats.get(node.id)

    density_rank = _rank_map(nodes, lambda n: density.get(n.id, 0))
    update_rank = _rank_map(nodes, lambda n: n.updated_at or 0)
    richness_rank = _rank_map(nodes, lambda n: (s.richness_score if (s := stat(n)) else 0.0))
    open_rank = _rank_map(nodes, lambda n: (s.open_count if (s := stat(n)) else 0))
    last_open_rank = _rank_map(nodes, lambda n: (s.last_open_ts if (s := stat(n)) else 0))

    semantic_nodes = [n for n in nodes if getattr(n, "discovered_via", None) == "semantic"]
    similarity_rank = _rank_map(semantic_nodes, _similarity_value)

    scores: dict[str, float] = {}
    for node in nodes:
        row = stat(node)
        score = _rrf(weights.density, k, density_rank[node.id])
        score += _rrf(weights.update_time, k, update_rank[node.id])
        if row is not None and row.richness_score > 0:
            score += _rrf(weights.richness, k, richness_rank[node.id])
        if row is not None and row.open_count > 0:
            score += _rrf(weights.open_count, k, open_rank[node.id])
        if row is not None and row.last_open_ts > 0:
            score += _rrf(weights.last_open, k, last_open_rank[node.id])

        via = getattr(node, "discovered_via", None)
        if via == "semantic" and _similarity_value(node) > 0:
            score += _rrf(weights.similarity, k, similarity_rank[node.id])
        elif via == "physical":
            score += settings.physical_connection_bonus

        scores[node.id] = score
    return scores


def rank_cluster(
    nodes: Sequence[GraphNode],
    density: dict[str, int],
    stats: dict[str, DocStatistics],
    settings: QuerySettings,
    limit: int | None,
) -> tuple[list[GraphNode], dict[str, float], int]:
    """Sort document nodes by Cluster RRF and truncate.

    Returns:
        (kept nodes, score per kept node, omitted count). A limit of None or
        <= 0 keeps everything.
    """
    scores = cluster_rrf_scores(nodes, density, stats, settings)
    ordered = sorted(nodes, key=lambda n: (-scores[n.id], n.id))
    omitted = 0
    if limit is not None and limit > 0 and len(ordered) > limit:
        omitted = len(ordered) - limit
        ordered = ordered[:limit]
    return ordered, {n.id: scores[n.id] for n in ordered}, omitted


def classify_node(
    out_degree: int,
    in_degree: int,
    category_count: int,
    settings: QuerySettings,
) -> NodeRole:
    """First match wins: bridge, hub, authority, balanced."""
    if category_count >= BRIDGE_MIN_CATEGORIES:
        return "bridge"
    ratio = settings.degree_asymmetry_ratio
    threshold = settings.min_classified_degree
    if out_degree > ratio * in_degree and out_degree > threshold:
        return "hub"
    if in_degree > ratio * out_degree and in_degree > threshold:
        return "authority"
    return "balanced"


def key_node_rrf(
    top_out: Sequence[DegreeStat],
    top_in: Sequence[DegreeStat],
    settings: QuerySettings,
    limit: int,
    semantic_ranking: Sequence[str] | None = None,
    category_counts: dict[str, int] | None = None,
    out_degrees: dict[str, int] | None = None,
    in_degrees: dict[str, int] | None = None,
) -> list[KeyNodeScore]:
    """Fuse degree rank (better of out/in) with an optional semantic rank.

    Args:
        top_out: Pool ranked by out-degree, descending.
        top_in: Pool ranked by in-degree, descending.
        limit: Caller limit; up to 2 * limit candidates are returned so the
            caller can split them into source and sink lists.
        semantic_ranking: Node ids in semantic relevance order, or None when
            no semantic filter was requested.
        category_counts: Distinct categories per node, for bridge detection.
        out_degrees / in_degrees: Exact degree counts; fall back to the pool
            values when absent.
    """
    k = settings.key_nodes_rrf_k
    out_rank = {stat.node_id: rank for rank, stat in enumerate(top_out)}
    in_rank = {stat.node_id: rank for rank, stat in enumerate(top_in)}
    semantic_rank = {node_id: rank for rank, node_id in enumerate(semantic_ranking or [])}

    pool_out = {stat.node_id: stat.degree for stat in top_out}
    pool_in = {stat.node_id: stat.degree for stat in top_in}
    out_degrees = out_degrees or {}
    in_degrees = in_degrees or {}
    category_counts = category_counts or {}

    candidate_ids = list(dict.fromkeys([*out_rank, *in_rank]))

    scored: list[KeyNodeScore] = []
    for node_id in candidate_ids:
        out_degree = out_degrees.get(node_id, pool_out.get(node_id, 0))
        in_degree = in_degrees.get(node_id, pool_in.get(node_id, 0))
        categories = category_counts.get(node_id, 0)

        ranks = [r for r in (out_rank.get(node_id), in_rank.get(node_id)) if r is not None]
        score = 1.0 / (k + min(ranks))

        semantic_score = 0.0
        if node_id in semantic_rank:
            semantic_score = 1.0 / (k + semantic_rank[node_id])
            score += semantic_score

        role = classify_node(out_degree, in_degree, categories, settings)
        if role == "bridge":
            score += settings.bridge_bonus

        scored.append(
            KeyNodeScore(
                node_id=node_id,
                out_degree=out_degree,
                in_degree=in_degree,
                category_count=categories,
                semantic_score=semantic_score,
                rrf_score=score,
                role=role,
            )
        )

    scored.sort(key=lambda s: (-s.rrf_score, s.node_id))
    if limit > 0:
        scored = scored[: limit * 2]
    return scored


def fuse_search_results(
    ranked_lists: Sequence[Sequence[SearchResultItem]],
    settings: QuerySettings,
    limit: int | None = None,
) -> list[SearchResultItem]:
    """Merge hit lists by path with RRF, normalizing fused scores to 0..1.

    The first occurrence of a path provides the returned item; its
    `final_score` is replaced with the normalized fused score.
    """
    result_map: dict[str, SearchResultItem] = {}
    rrf_scores: dict[str, float] = defaultdict(float)

    for results in ranked_lists:
        for rank, result in enumerate(results):
            rrf_scores[result.path] += 1.0 / (settings.rrf_k + rank)
            if result.path not in result_map:
                result_map[result.path] = result

    sorted_paths = sorted(rrf_scores, key=lambda p: (-rrf_scores[p], p))
    if not sorted_paths:
        return []

    max_score = rrf_scores[sorted_paths[0]]
    merged = [
        result_map[path].model_copy(update={"final_score": rrf_scores[path] / max_score})
        for path in sorted_paths
    ]
    if limit is not None and limit > 0:
        merged = merged[:limit]
    return merged
