"""Generic filter/sort/limit post-processing for query result lists.

The pipeline never inspects concrete item types. Each item kind (graph node,
search result, orphan candidate) gets an adapter implementing
ItemFieldAccessor, usually built by one of the async `build_*` helpers that
prefetch exactly the lookups the requested filters and sorter need.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from typing import Protocol, TypeVar

from ..errors import InvalidSorterError
from ..models import EdgeCounts, GraphNode, QueryFilters, SearchResultItem
from ..repositories import EdgeRepository, NodeRepository
from .cache import QueryCache

log = logging.getLogger(__name__)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)

HOUR_MS = 60 * 60 * 1000

# Lookback window per semantic time range.
TIME_RANGE_HOURS: dict[str, int] = {
    "today": 24,
    "yesterday": 48,
    "this_week": 24 * 7,
    "this_month": 24 * 30,
    "last_3_months": 24 * 90,
    "this_year": 24 * 365,
}

SORT_KEYS = ("result_rank", "modified", "created", "total_links_count", "backlinks_count", "outlinks_count")

LINK_COUNT_SORT_KEYS = ("total_links_count", "backlinks_count", "outlinks_count")

NOTE_EXTENSIONS = (".md",)


class ItemFieldAccessor(Protocol[T_contra]):
    """Per-item field access used by filters and sorters."""

    def path(self, item: T_contra) -> str | None: ...

    def modified(self, item: T_contra) -> int | None: ...

    def created(self, item: T_contra) -> int | None: ...

    def tags(self, item: T_contra) -> list[str]: ...

    def category(self, item: T_contra) -> str | None: ...

    def result_rank(self, item: T_contra) -> float: ...

    def total_links_count(self, item: T_contra) -> int: ...

    def incoming_links_count(self, item: T_contra) -> int: ...

    def outgoing_links_count(self, item: T_contra) -> int: ...


def classify_path_type(path: str) -> str:
    """Classify a vault path as note, file or folder from its shape."""
    name = path.rstrip("/").rsplit("/", 1)[-1]
    if path.endswith("/") or "." not in name.lstrip("."):
        return "folder"
    if name.lower().endswith(NOTE_EXTENSIONS):
        return "note"
    return "file"


def time_range_cutoff(time_range: str, now_ms: int) -> int:
    """Epoch millis before which an item falls outside `time_range`."""
    try:
        hours = TIME_RANGE_HOURS[time_range]
    except KeyError:
        raise ValueError(f"Unknown time range: {time_range}") from None
    return now_ms - hours * HOUR_MS


def parse_sorter(sorter: str) -> tuple[str, bool]:
    """Split a sorter name into (base key, descending).

    Raises:
        InvalidSorterError: If the suffix or base key is unknown.
    """
    for suffix, descending in (("_desc", True), ("_asc", False)):
        if sorter.endswith(suffix):
            base = sorter[: -len(suffix)]
            if base in SORT_KEYS:
                return base, descending
            break
    raise InvalidSorterError(sorter)


def sorter_needs_link_counts(sorter: str | None) -> bool:
    if not sorter:
        return False
    base, _ = parse_sorter(sorter)
    return base in LINK_COUNT_SORT_KEYS


def _path_matches(path: str, pattern: str, cache: QueryCache) -> bool:
    if pattern.startswith("/"):
        return path.startswith(pattern) or ("/" + path).startswith(pattern)
    try:
        return cache.regex(pattern).search(path) is not None
    except re.error as e:
        log.debug("Invalid path regex %r, using prefix match: %s", pattern, e)
        return path.startswith(pattern)


def _should_include(
    item: T,
    filters: QueryFilters,
    accessor: ItemFieldAccessor[T],
    cache: QueryCache,
    now_ms: int,
) -> bool:
    path = accessor.path(item)

    if filters.type and filters.type != "all" and path is not None:
        if classify_path_type(path) != filters.type:
            return False

    if filters.path and path is not None:
        if not _path_matches(path, filters.path, cache):
            return False

    # modified_within wins when both are given
    if filters.modified_within:
        timestamp, time_range = accessor.modified(item), filters.modified_within
    elif filters.created_within:
        timestamp, time_range = accessor.created(item), filters.created_within
    else:
        timestamp, time_range = None, None
    if timestamp is not None and time_range is not None:
        if timestamp < time_range_cutoff(time_range, now_ms):
            return False

    if filters.tag_category_boolean_expression:
        expression = cache.expression(filters.tag_category_boolean_expression)
        if not expression.evaluate(tags=accessor.tags(item), category=accessor.category(item)):
            return False

    return True


def _sort_key(base: str, accessor: ItemFieldAccessor[T]) -> Callable[[T], float]:
    getters: dict[str, Callable[[T], float | int | None]] = {
        "result_rank": accessor.result_rank,
        "modified": accessor.modified,
        "created": accessor.created,
        "total_links_count": accessor.total_links_count,
        "backlinks_count": accessor.incoming_links_count,
        "outlinks_count": accessor.outgoing_links_count,
    }
    getter = getters[base]
    return lambda item: getter(item) or 0


def apply_filters_and_sorters(
    items: Sequence[T],
    filters: QueryFilters | None,
    sorter: str | None,
    limit: int | None,
    accessor: ItemFieldAccessor[T],
    cache: QueryCache,
    now_ms: int | None = None,
) -> list[T]:
    """Filter (AND of all given filters), stable-sort, then truncate.

    A limit of None or <= 0 means no limit.

    Raises:
        InvalidSorterError: For an unknown sorter, even when `items` is empty.
        ParseError: For a malformed tag/category expression.
    """
    sort_spec = parse_sorter(sorter) if sorter else None
    result = list(items)

    if filters is not None:
        if filters.tag_category_boolean_expression:
            # Fail fast on malformed expressions, even for empty inputs
            cache.expression(filters.tag_category_boolean_expression)
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        result = [item for item in result if _should_include(item, filters, accessor, cache, now)]

    if sort_spec is not None:
        base, descending = sort_spec
        result = sorted(result, key=_sort_key(base, accessor), reverse=descending)

    if limit is not None and limit > 0:
        result = result[:limit]

    return result


# ─────────────────────────────────────────────────────────────────────────────
# Adapters
# ─────────────────────────────────────────────────────────────────────────────


class TagIndex:
    """Tags and categories per document id."""

    def __init__(self, tags: dict[str, list[str]] | None = None, categories: dict[str, list[str]] | None = None):
        self.tags = tags or {}
        self.categories = categories or {}

    def tags_for(self, doc_id: str) -> list[str]:
        return self.tags.get(doc_id, [])

    def category_for(self, doc_id: str) -> str | None:
        categories = self.categories.get(doc_id)
        return categories[0] if categories else None


async def load_tag_index(
    node_repo: NodeRepository, edge_repo: EdgeRepository, doc_ids: list[str]
) -> TagIndex:
    """Resolve tag/category labels for each document through its outgoing edges."""
    if not doc_ids:
        return TagIndex()
    edges = await edge_repo.get_by_from_nodes_and_types(doc_ids, ["tagged", "categorized"])
    target_ids = list(dict.fromkeys(edge.to_node_id for edge in edges))
    targets = await node_repo.get_by_ids(target_ids) if target_ids else {}

    index = TagIndex()
    for edge in edges:
        target = targets.get(edge.to_node_id)
        if target is None:
            continue
        bucket = index.tags if edge.type == "tagged" else index.categories
        labels = bucket.setdefault(edge.from_node_id, [])
        if target.label not in labels:
            labels.append(target.label)
    return index


class GraphNodeFieldAccessor:
    """Accessor for graph-node-shaped items, keyed by node id."""

    def __init__(
        self,
        nodes: dict[str, GraphNode],
        tag_index: TagIndex | None = None,
        edge_counts: EdgeCounts | None = None,
    ):
        self.nodes = nodes
        self.tag_index = tag_index or TagIndex()
        self.edge_counts = edge_counts or EdgeCounts()

    def _node(self, item: GraphNode) -> GraphNode:
        return self.nodes.get(item.id, item)

    def path(self, item: GraphNode) -> str | None:
        return self._node(item).path

    def modified(self, item: GraphNode) -> int | None:
        return self._node(item).updated_at or None

    def created(self, item: GraphNode) -> int | None:
        return self._node(item).created_at or None

    def tags(self, item: GraphNode) -> list[str]:
        return self.tag_index.tags_for(item.id)

    def category(self, item: GraphNode) -> str | None:
        return self.tag_index.category_for(item.id)

    def result_rank(self, item: GraphNode) -> float:
        # Graph lookups carry no relevance score
        return 0.0

    def total_links_count(self, item: GraphNode) -> int:
        return self.edge_counts.total.get(item.id, 0)

    def incoming_links_count(self, item: GraphNode) -> int:
        return self.edge_counts.incoming.get(item.id, 0)

    def outgoing_links_count(self, item: GraphNode) -> int:
        return self.edge_counts.outgoing.get(item.id, 0)


class OrphanFieldAccessor(GraphNodeFieldAccessor):
    """Orphans have no edges by definition, so link counts are always zero."""

    def total_links_count(self, item: GraphNode) -> int:
        return 0

    def incoming_links_count(self, item: GraphNode) -> int:
        return 0

    def outgoing_links_count(self, item: GraphNode) -> int:
        return 0


class SearchResultFieldAccessor:
    """Accessor for search-client hits, keyed by path."""

    def __init__(self, nodes_by_path: dict[str, GraphNode] | None = None, tag_index: TagIndex | None = None):
        self.nodes_by_path = nodes_by_path or {}
        self.tag_index = tag_index or TagIndex()

    def path(self, item: SearchResultItem) -> str | None:
        return item.path

    def modified(self, item: SearchResultItem) -> int | None:
        node = self.nodes_by_path.get(item.path)
        if node is not None and node.updated_at:
            return node.updated_at
        return item.last_modified or None

    def created(self, item: SearchResultItem) -> int | None:
        node = self.nodes_by_path.get(item.path)
        if node is None:
            return None
        return node.created_at or node.updated_at or None

    def tags(self, item: SearchResultItem) -> list[str]:
        node = self.nodes_by_path.get(item.path)
        return self.tag_index.tags_for(node.id) if node else []

    def category(self, item: SearchResultItem) -> str | None:
        node = self.nodes_by_path.get(item.path)
        return self.tag_index.category_for(node.id) if node else None

    def result_rank(self, item: SearchResultItem) -> float:
        return item.final_score or item.score or 0.0

    def total_links_count(self, item: SearchResultItem) -> int:
        return 0

    def incoming_links_count(self, item: SearchResultItem) -> int:
        return 0

    def outgoing_links_count(self, item: SearchResultItem) -> int:
        return 0


async def build_graph_node_accessor(
    node_repo: NodeRepository,
    edge_repo: EdgeRepository,
    node_ids: list[str],
    filters: QueryFilters | None,
    sorter: str | None,
    accessor_cls: type[GraphNodeFieldAccessor] = GraphNodeFieldAccessor,
) -> GraphNodeFieldAccessor:
    """Prefetch node rows, tags (only for expression filters) and link counts (only for link sorters)."""
    nodes = await node_repo.get_by_ids(node_ids) if node_ids else {}
    tag_index = None
    if filters is not None and filters.tag_category_boolean_expression:
        tag_index = await load_tag_index(node_repo, edge_repo, node_ids)
    edge_counts = None
    if node_ids and sorter_needs_link_counts(sorter) and accessor_cls is GraphNodeFieldAccessor:
        edge_counts = await edge_repo.count_edges(node_ids)
    return accessor_cls(nodes, tag_index, edge_counts)


async def build_search_result_accessor(
    node_repo: NodeRepository,
    edge_repo: EdgeRepository,
    items: list[SearchResultItem],
    filters: QueryFilters | None,
) -> SearchResultFieldAccessor:
    """Resolve hits to graph nodes by path for timestamps and tag/category filters."""
    paths = list(dict.fromkeys(item.path for item in items))
    nodes_by_path = await node_repo.get_by_paths(paths) if paths else {}
    tag_index = None
    if filters is not None and filters.tag_category_boolean_expression:
        tag_index = await load_tag_index(node_repo, edge_repo, [node.id for node in nodes_by_path.values()])
    return SearchResultFieldAccessor(nodes_by_path, tag_index)
