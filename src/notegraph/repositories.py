"""Read-only collaborator contracts consumed by the query engine.

The graph, embedding, statistics and search stores are owned elsewhere; the
engine only depends on these protocols. All methods are async and must be safe
to call concurrently.
"""

from typing import Protocol

from .models import (
    DocStatistics,
    EdgeCounts,
    FolderItem,
    GraphEdge,
    GraphNode,
    SearchResultItem,
    SearchScope,
    SimilarityHit,
    TopDegrees,
)


class NodeRepository(Protocol):
    async def get_by_id(self, node_id: str) -> GraphNode | None: ...

    async def get_by_ids(self, node_ids: list[str]) -> dict[str, GraphNode]: ...

    async def get_by_type_and_labels(self, node_type: str, labels: list[str]) -> list[GraphNode]: ...

    async def get_by_path(self, path: str) -> GraphNode | None: ...

    async def get_by_paths(self, paths: list[str]) -> dict[str, GraphNode]: ...

    async def get_ids_by_type(self, node_type: str) -> list[str]: ...


class EdgeRepository(Protocol):
    async def get_all_edges_for_node(self, node_id: str, limit_per_type: int) -> list[GraphEdge]:
        """Edges in both directions, at most `limit_per_type` per edge type, newest first."""
        ...

    async def count_edges(self, node_ids: list[str], edge_type: str | None = None) -> EdgeCounts: ...

    async def get_hard_orphans(self, limit: int | None = None) -> list[str]:
        """Document ids with no edge in either direction."""
        ...

    async def get_top_node_ids_by_degree(
        self, limit: int | None = None, restrict_to: list[str] | None = None
    ) -> TopDegrees: ...

    async def get_source_nodes_connected_to_all_targets(self, target_ids: list[str]) -> list[str]: ...

    async def get_source_nodes_connected_to_any_target(self, target_ids: list[str]) -> list[str]: ...

    async def get_by_from_nodes_and_types(self, node_ids: list[str], types: list[str]) -> list[GraphEdge]: ...

    async def get_top_tagged_nodes(self, limit: int = 50) -> list[tuple[str, int]]: ...


class DocStatisticsRepository(Protocol):
    async def get_by_doc_ids(self, doc_ids: list[str]) -> dict[str, DocStatistics]: ...

    async def get_top_recent_edited(self, doc_ids: list[str], k: int) -> list[DocStatistics]: ...

    async def get_top_word_count(self, doc_ids: list[str], k: int) -> list[DocStatistics]: ...

    async def get_top_char_count(self, doc_ids: list[str], k: int) -> list[DocStatistics]: ...

    async def get_top_richness(self, doc_ids: list[str], k: int) -> list[DocStatistics]: ...

    async def get_language_stats(self, doc_ids: list[str]) -> dict[str, int]: ...


class EmbeddingStore(Protocol):
    async def get_average_embedding_for_doc(self, doc_id: str) -> list[float] | None: ...

    async def search_similar(self, vector: list[float], k: int) -> list[SimilarityHit]:
        """Chunk-level nearest neighbors, most similar first. A document may appear several times."""
        ...


class SearchClient(Protocol):
    async def vector_search(
        self, query: str, top_k: int, scope: SearchScope | None = None
    ) -> list[SearchResultItem]: ...

    async def fulltext_search(
        self, query: str, top_k: int, scope: SearchScope | None = None
    ) -> list[SearchResultItem]: ...

    async def get_recent(self, limit: int) -> list[SearchResultItem]: ...


class FileTree(Protocol):
    async def list_folder(self, path: str, recursive: bool, max_depth: int) -> list[FolderItem] | None:
        """Children of a folder ("" or "/" is the root); None when the folder does not exist."""
        ...
