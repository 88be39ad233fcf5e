"""Diverse path finding between two notes.

Each iteration runs a bidirectional hybrid BFS (stored edges plus semantic
neighbors) to find one path, then forbids that path's highest-value edge so
the next iteration has to route around it. The result is a handful of
different connections rather than several near-identical shortest paths.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from .config import PATH_MIN_SEMANTIC_NEIGHBORS
from .context import QueryContext
from .models import DiscoveredVia, FoundPath, PathSegment, QueryFilters
from .query.pipeline import apply_filters_and_sorters, build_graph_node_accessor
from .semantic import format_similarity, get_semantic_neighbors


@dataclass(frozen=True)
class Neighbor:
    id: str
    discovered_via: DiscoveredVia
    similarity: float | None = None


@dataclass(frozen=True)
class Visit:
    parent_id: str | None
    discovered_via: DiscoveredVia
    similarity: float | None = None


@dataclass(frozen=True)
class Segment:
    node_id: str
    discovered_via: DiscoveredVia
    similarity: float | None = None


def _edge_key(a: str, b: str) -> frozenset[str]:
    # Undirected: both frontiers walk the same edge in opposite directions
    return frozenset((a, b))


async def get_mixed_neighbors(
    ctx: QueryContext,
    node_id: str,
    include_semantic: bool,
    filters: QueryFilters | None = None,
) -> list[Neighbor]:
    """Physical neighbors (both directions) first, then semantic neighbors.

    Link neighbors come before tag and category nodes, so paths prefer note to
    note hops over meeting at a shared label.
    """
    limit = ctx.settings.path_neighbor_limit
    edges = await ctx.edges.get_all_edges_for_node(node_id, limit)
    edges = sorted(edges, key=lambda e: e.type != "link")

    neighbors: list[Neighbor] = []
    physical_ids: set[str] = set()
    for edge in edges:
        other = edge.to_node_id if edge.from_node_id == node_id else edge.from_node_id
        if other == node_id or other in physical_ids:
            continue
        physical_ids.add(other)
        neighbors.append(Neighbor(other, "physical"))

    if include_semantic:
        budget = max(PATH_MIN_SEMANTIC_NEIGHBORS, limit - len(neighbors))
        for semantic in await get_semantic_neighbors(ctx.nodes, ctx.embeddings, node_id, budget, physical_ids):
            neighbors.append(Neighbor(semantic.id, "semantic", semantic.similarity_value))

    if filters is not None and neighbors:
        accessor = await build_graph_node_accessor(
            ctx.nodes, ctx.edges, [n.id for n in neighbors], filters, None
        )
        candidates = [accessor.nodes[n.id] for n in neighbors if n.id in accessor.nodes]
        kept = apply_filters_and_sorters(candidates, filters, None, None, accessor, ctx.query_cache)
        kept_ids = {node.id for node in kept}
        neighbors = [n for n in neighbors if n.id in kept_ids]

    return neighbors


async def _expand_frontier(
    ctx: QueryContext,
    queue: deque[str],
    visited: dict[str, Visit],
    other_visited: dict[str, Visit],
    forbidden: set[frozenset[str]],
    include_semantic: bool,
    filters: QueryFilters | None,
) -> str | None:
    """Expand one node from `queue`; returns the meeting node id, if any."""
    if not queue:
        return None
    current = queue.popleft()

    for neighbor in await get_mixed_neighbors(ctx, current, include_semantic, filters):
        if _edge_key(current, neighbor.id) in forbidden or neighbor.id in visited:
            continue
        visited[neighbor.id] = Visit(current, neighbor.discovered_via, neighbor.similarity)
        queue.append(neighbor.id)
        if neighbor.id in other_visited:
            return neighbor.id
    return None


def reconstruct_path(meeting_id: str, start_visited: dict[str, Visit], end_visited: dict[str, Visit]) -> list[Segment]:
    """Join start->meeting and meeting->end without repeating the meeting node."""
    head: list[Segment] = []
    node_id: str | None = meeting_id
    while node_id is not None and node_id in start_visited:
        visit = start_visited[node_id]
        head.append(Segment(node_id, visit.discovered_via, visit.similarity))
        node_id = visit.parent_id
    head.reverse()

    tail: list[Segment] = []
    node_id = meeting_id
    while node_id is not None and node_id in end_visited:
        visit = end_visited[node_id]
        tail.append(Segment(node_id, visit.discovered_via, visit.similarity))
        node_id = visit.parent_id

    return head + tail[1:]


async def bidirectional_search(
    ctx: QueryContext,
    start_id: str,
    end_id: str,
    forbidden: set[frozenset[str]],
    include_semantic: bool,
    max_hops: int,
    filters: QueryFilters | None = None,
) -> list[Segment] | None:
    if start_id == end_id:
        return [Segment(start_id, "physical")]

    start_visited = {start_id: Visit(None, "physical")}
    end_visited = {end_id: Visit(None, "physical")}
    start_queue: deque[str] = deque([start_id])
    end_queue: deque[str] = deque([end_id])

    hops = 0
    while start_queue and end_queue and hops < max_hops:
        meeting = await _expand_frontier(
            ctx, start_queue, start_visited, end_visited, forbidden, include_semantic, filters
        )
        if meeting is None:
            meeting = await _expand_frontier(
                ctx, end_queue, end_visited, start_visited, forbidden, include_semantic, filters
            )
        if meeting is not None:
            return reconstruct_path(meeting, start_visited, end_visited)
        hops += 1
    return None


def edge_blocking_score(first: Segment, second: Segment) -> float:
    """Physical-physical edges score highest, pure semantic edges lowest."""
    similarity = max((first.similarity or 0.0), (second.similarity or 0.0)) * 100
    physical = (first.discovered_via == "physical", second.discovered_via == "physical")
    if all(physical):
        return 100 + similarity
    if any(physical):
        return 50 + similarity * 0.5
    return similarity


def identify_key_edge(path: list[Segment]) -> frozenset[str] | None:
    best: frozenset[str] | None = None
    best_score = -1.0
    for first, second in zip(path, path[1:]):
        score = edge_blocking_score(first, second)
        if score > best_score:
            best_score = score
            best = _edge_key(first.node_id, second.node_id)
    return best


async def find_hybrid_paths(
    ctx: QueryContext,
    start_id: str,
    end_id: str,
    iterations: int,
    include_semantic: bool,
    max_hops: int,
    filters: QueryFilters | None = None,
) -> list[list[Segment]]:
    forbidden: set[frozenset[str]] = set()
    paths: list[list[Segment]] = []

    for _ in range(iterations):
        path = await bidirectional_search(ctx, start_id, end_id, forbidden, include_semantic, max_hops, filters)
        if path is None:
            break
        paths.append(path)

        key_edge = identify_key_edge(path)
        if key_edge is None:
            break
        forbidden.add(key_edge)

    return paths


def describe_connections(segments: list[Segment]) -> list[str]:
    """Per-step connection kind; physical only when both ends were reached physically."""
    connections = []
    for first, second in zip(segments, segments[1:]):
        kind = "physical" if first.discovered_via == second.discovered_via == "physical" else "semantic"
        similarity = first.similarity or second.similarity
        connections.append(f"{kind} ({format_similarity(similarity)})" if similarity else kind)
    return connections


def to_found_path(segments: list[Segment], labels: dict[str, str]) -> FoundPath:
    return FoundPath(
        labels=[labels.get(s.node_id, s.node_id) for s in segments],
        segments=[
            PathSegment(
                node_id=s.node_id,
                discovered_via=s.discovered_via,
                similarity=format_similarity(s.similarity) if s.similarity else None,
            )
            for s in segments
        ],
        steps=len(segments) - 1,
        connections=describe_connections(segments),
    )
