"""Semantic neighbor retrieval and semantic-filter search.

Both are auxiliary signals: a failing embedding store or search client is
logged and treated as "no semantic signal", never raised to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Collection

from .config import SEMANTIC_FILTER_MAX_TOP_K
from .models import SearchScope, SemanticFilter, SemanticNeighbor
from .repositories import EmbeddingStore, NodeRepository, SearchClient

log = logging.getLogger(__name__)


def format_similarity(similarity: float) -> str:
    """Human-readable percentage, e.g. 0.875 -> "87.5%"."""
    return f"{similarity * 100:.1f}%"


async def get_semantic_neighbors(
    node_repo: NodeRepository,
    embeddings: EmbeddingStore,
    doc_id: str,
    limit: int,
    exclude_ids: Collection[str] = (),
) -> list[SemanticNeighbor]:
    """Documents most similar to `doc_id`, most similar first.

    Over-fetches 2 * limit chunk hits so the exclusion filter does not starve
    the result, then dedups by owning document, drops the source and excluded
    ids, and truncates to `limit`. A document without an embedding has no
    neighbors.
    """
    if limit <= 0:
        return []

    try:
        vector = await embeddings.get_average_embedding_for_doc(doc_id)
        if not vector:
            return []

        hits = await embeddings.search_similar(vector, limit * 2)
        hit_ids = list(dict.fromkeys(hit.doc_id for hit in hits))
        nodes = await node_repo.get_by_ids(hit_ids) if hit_ids else {}
    except Exception as e:
        log.warning("Semantic neighbor lookup failed for %s: %s", doc_id, e)
        return []

    excluded = set(exclude_ids)
    neighbors: list[SemanticNeighbor] = []
    seen: set[str] = set()
    for hit in hits:
        if hit.doc_id in seen or hit.doc_id == doc_id or hit.doc_id in excluded:
            continue
        node = nodes.get(hit.doc_id)
        if node is None:
            continue
        seen.add(hit.doc_id)
        neighbors.append(
            SemanticNeighbor(
                **node.model_dump(),
                similarity=format_similarity(hit.similarity),
                similarity_value=hit.similarity,
            )
        )
        if len(neighbors) >= limit:
            break
    return neighbors


async def get_semantic_search_results(
    search_client: SearchClient,
    node_repo: NodeRepository,
    semantic_filter: SemanticFilter,
    scope: SearchScope | None = None,
) -> list[tuple[str, float]]:
    """Run a vector search and map hits to document node ids.

    Returns:
        (node_id, score) pairs in relevance order; hits whose path has no
        graph node are skipped. Empty on failure.
    """
    try:
        items = await search_client.vector_search(
            semantic_filter.query,
            min(semantic_filter.top_k, SEMANTIC_FILTER_MAX_TOP_K),
            scope,
        )
        paths = list(dict.fromkeys(item.path for item in items))
        nodes_by_path = await node_repo.get_by_paths(paths) if paths else {}
    except Exception as e:
        log.warning("Semantic search failed for %r: %s", semantic_filter.query, e)
        return []

    results: list[tuple[str, float]] = []
    seen: set[str] = set()
    for item in items:
        node = nodes_by_path.get(item.path)
        if node is None or node.id in seen:
            continue
        seen.add(node.id)
        results.append((node.id, item.final_score or item.score or 0.0))
    return results
