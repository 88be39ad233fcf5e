"""In-memory snapshot store implementing every collaborator protocol.

A snapshot is a JSON export of the indexer's tables:

    {
      "nodes": [{"id": ..., "type": "document", "label": ..., "attributes": {"path": ...}}],
      "edges": [{"from_node_id": ..., "to_node_id": ..., "type": "link"}],
      "doc_statistics": [{"doc_id": ..., "richness_score": ..., "open_count": ...}],
      "embeddings": {"<doc_id>": [[0.1, ...], [0.2, ...]]},   # chunk vectors
      "contents": {"<doc_id>": "note text"},                   # optional, for full-text
      "recent": [{"path": ..., "last_modified": ...}]          # optional
    }

The store is read-only after loading and safe to share between concurrent
queries. Free-text vector search embeds the query with sentence-transformers,
loaded lazily; everything else is pure Python.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from .config import EMBEDDING_MODEL
from .errors import StorageError
from .models import (
    DegreeStat,
    DocStatistics,
    EdgeCounts,
    FolderItem,
    GraphEdge,
    GraphNode,
    HighlightSpan,
    SearchResultItem,
    SearchScope,
    SearchSnippet,
    SimilarityHit,
    TopDegrees,
)

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

log = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)

# Characters of note content shown in a full-text snippet
SNIPPET_LENGTH = 200


class GraphSnapshot(BaseModel):
    """Validated shape of a snapshot file."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    doc_statistics: list[DocStatistics] = Field(default_factory=list)
    embeddings: dict[str, list[list[float]]] = Field(default_factory=dict)
    contents: dict[str, str] = Field(default_factory=dict)
    recent: list[SearchResultItem] | None = None


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _tokens(text: str) -> list[str]:
    return [t.lower() for t in TOKEN_PATTERN.findall(text)]


class InMemoryGraphStore:
    """Graph, statistics, embedding, search and folder lookups over one snapshot."""

    def __init__(
        self,
        snapshot: GraphSnapshot,
        embedder: Callable[[str], list[float]] | None = None,
        model_name: str = EMBEDDING_MODEL,
    ):
        """Index a snapshot.

        Args:
            snapshot: Parsed snapshot.
            embedder: Text -> vector function for free-text vector search.
                Defaults to a lazily loaded sentence-transformers model.
            model_name: Model used when no embedder is given.
        """
        self.snapshot = snapshot
        self._embedder = embedder
        self._model_name = model_name
        self._model: SentenceTransformer | None = None

        self._nodes: dict[str, GraphNode] = {n.id: n for n in snapshot.nodes}
        self._by_path: dict[str, GraphNode] = {n.path: n for n in snapshot.nodes if n.path}
        self._edges = list(snapshot.edges)
        self._outgoing: dict[str, list[GraphEdge]] = defaultdict(list)
        self._incoming: dict[str, list[GraphEdge]] = defaultdict(list)
        for edge in self._edges:
            self._outgoing[edge.from_node_id].append(edge)
            self._incoming[edge.to_node_id].append(edge)
        self._stats: dict[str, DocStatistics] = {s.doc_id: s for s in snapshot.doc_statistics}
        self._chunks: dict[str, list[list[float]]] = dict(snapshot.embeddings)

    # ─────────────────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> "InMemoryGraphStore":
        try:
            snapshot = GraphSnapshot.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Invalid graph snapshot: {e}") from e
        return cls(snapshot, **kwargs)

    @classmethod
    def from_file(cls, path: Path | str, **kwargs: Any) -> "InMemoryGraphStore":
        """Load a JSON snapshot.

        Raises:
            StorageError: If the file cannot be read or is not a valid snapshot.
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageError(f"Cannot read graph snapshot {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StorageError(f"Malformed graph snapshot {path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Graph snapshot {path} must contain a JSON object")
        log.debug("Loaded snapshot %s: %d nodes, %d edges", path, len(data.get("nodes", [])), len(data.get("edges", [])))
        return cls.from_dict(data, **kwargs)

    # ─────────────────────────────────────────────────────────────────────────
    # NodeRepository
    # ─────────────────────────────────────────────────────────────────────────

    async def get_by_id(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    async def get_by_ids(self, node_ids: list[str]) -> dict[str, GraphNode]:
        return {i: self._nodes[i] for i in node_ids if i in self._nodes}

    async def get_by_type_and_labels(self, node_type: str, labels: list[str]) -> list[GraphNode]:
        wanted = set(labels)
        return [n for n in self._nodes.values() if n.type == node_type and n.label in wanted]

    async def get_by_path(self, path: str) -> GraphNode | None:
        return self._by_path.get(path) or self._by_path.get(path.lstrip("/"))

    async def get_by_paths(self, paths: list[str]) -> dict[str, GraphNode]:
        return {p: self._by_path[p] for p in paths if p in self._by_path}

    async def get_ids_by_type(self, node_type: str) -> list[str]:
        return [n.id for n in self._nodes.values() if n.type == node_type]

    # ─────────────────────────────────────────────────────────────────────────
    # EdgeRepository
    # ─────────────────────────────────────────────────────────────────────────

    async def get_all_edges_for_node(self, node_id: str, limit_per_type: int) -> list[GraphEdge]:
        by_type: dict[str, list[GraphEdge]] = defaultdict(list)
        for edge in self._outgoing.get(node_id, []) + self._incoming.get(node_id, []):
            by_type[edge.type].append(edge)

        result: list[GraphEdge] = []
        for edges in by_type.values():
            edges = sorted(edges, key=lambda e: e.updated_at, reverse=True)
            result.extend(edges[:limit_per_type] if limit_per_type > 0 else edges)
        return result

    async def count_edges(self, node_ids: list[str], edge_type: str | None = None) -> EdgeCounts:
        counts = EdgeCounts()
        for node_id in node_ids:
            outgoing = [e for e in self._outgoing.get(node_id, []) if edge_type is None or e.type == edge_type]
            incoming = [e for e in self._incoming.get(node_id, []) if edge_type is None or e.type == edge_type]
            counts.outgoing[node_id] = len(outgoing)
            counts.incoming[node_id] = len(incoming)
            counts.total[node_id] = len(outgoing) + len(incoming)
        return counts

    async def get_hard_orphans(self, limit: int | None = None) -> list[str]:
        orphans = [
            n.id
            for n in self._nodes.values()
            if n.type == "document" and not self._outgoing.get(n.id) and not self._incoming.get(n.id)
        ]
        return orphans[:limit] if limit and limit > 0 else orphans

    async def get_top_node_ids_by_degree(
        self, limit: int | None = None, restrict_to: list[str] | None = None
    ) -> TopDegrees:
        candidates = restrict_to if restrict_to is not None else list(self._nodes)

        def top(index: dict[str, list[GraphEdge]]) -> list[DegreeStat]:
            stats = [DegreeStat(node_id=i, degree=len(index.get(i, []))) for i in dict.fromkeys(candidates)]
            stats = sorted((s for s in stats if s.degree > 0), key=lambda s: (-s.degree, s.node_id))
            return stats[:limit] if limit and limit > 0 else stats

        return TopDegrees(top_out=top(self._outgoing), top_in=top(self._incoming))

    async def get_source_nodes_connected_to_all_targets(self, target_ids: list[str]) -> list[str]:
        if not target_ids:
            return []
        targets = set(target_ids)
        sources = [
            node_id
            for node_id, edges in self._outgoing.items()
            if targets <= {e.to_node_id for e in edges}
        ]
        return sorted(sources)

    async def get_source_nodes_connected_to_any_target(self, target_ids: list[str]) -> list[str]:
        targets = set(target_ids)
        sources = {e.from_node_id for t in targets for e in self._incoming.get(t, [])}
        return sorted(sources)

    async def get_by_from_nodes_and_types(self, node_ids: list[str], types: list[str]) -> list[GraphEdge]:
        wanted = set(types)
        return [e for i in dict.fromkeys(node_ids) for e in self._outgoing.get(i, []) if e.type in wanted]

    async def get_top_tagged_nodes(self, limit: int = 50) -> list[tuple[str, int]]:
        counts = [
            (n.id, sum(1 for e in self._incoming.get(n.id, []) if e.type == "tagged"))
            for n in self._nodes.values()
            if n.type == "tag"
        ]
        counts.sort(key=lambda c: (-c[1], c[0]))
        return counts[:limit] if limit > 0 else counts

    # ─────────────────────────────────────────────────────────────────────────
    # DocStatisticsRepository
    # ─────────────────────────────────────────────────────────────────────────

    async def get_by_doc_ids(self, doc_ids: list[str]) -> dict[str, DocStatistics]:
        return {i: self._stats[i] for i in doc_ids if i in self._stats}

    def _top(self, doc_ids: list[str], k: int, key: Callable[[DocStatistics], float]) -> list[DocStatistics]:
        rows = [self._stats[i] for i in dict.fromkeys(doc_ids) if i in self._stats]
        rows.sort(key=lambda r: (-key(r), r.doc_id))
        return rows[:k] if k > 0 else rows

    async def get_top_recent_edited(self, doc_ids: list[str], k: int) -> list[DocStatistics]:
        return self._top(doc_ids, k, lambda r: r.updated_at)

    async def get_top_word_count(self, doc_ids: list[str], k: int) -> list[DocStatistics]:
        return self._top(doc_ids, k, lambda r: r.word_count)

    async def get_top_char_count(self, doc_ids: list[str], k: int) -> list[DocStatistics]:
        return self._top(doc_ids, k, lambda r: r.char_count)

    async def get_top_richness(self, doc_ids: list[str], k: int) -> list[DocStatistics]:
        return self._top(doc_ids, k, lambda r: r.richness_score)

    async def get_language_stats(self, doc_ids: list[str]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for doc_id in dict.fromkeys(doc_ids):
            row = self._stats.get(doc_id)
            if row is not None and row.language:
                counts[row.language] = counts.get(row.language, 0) + 1
        return counts

    # ─────────────────────────────────────────────────────────────────────────
    # EmbeddingStore
    # ─────────────────────────────────────────────────────────────────────────

    async def get_average_embedding_for_doc(self, doc_id: str) -> list[float] | None:
        chunks = self._chunks.get(doc_id)
        if not chunks:
            return None
        width = len(chunks[0])
        return [sum(chunk[i] for chunk in chunks) / len(chunks) for i in range(width)]

    async def search_similar(self, vector: list[float], k: int) -> list[SimilarityHit]:
        hits = [
            SimilarityHit(doc_id=doc_id, similarity=cosine_similarity(vector, chunk))
            for doc_id, chunks in self._chunks.items()
            for chunk in chunks
        ]
        hits.sort(key=lambda h: (-h.similarity, h.doc_id))
        return hits[:k] if k > 0 else hits

    # ─────────────────────────────────────────────────────────────────────────
    # SearchClient
    # ─────────────────────────────────────────────────────────────────────────

    def _get_model(self) -> "SentenceTransformer":
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self._model_name)
        return self._model

    def preload(self) -> None:
        """Load the embedding model now rather than on the first vector search."""
        if self._embedder is None:
            self._get_model()

    def _embed(self, text: str) -> list[float]:
        if self._embedder is not None:
            return self._embedder(text)
        try:
            model = self._get_model()
        except ImportError as e:
            raise StorageError(
                "Vector search needs sentence-transformers. Install with: pip install 'notegraph[semantic]'"
            ) from e
        return [float(x) for x in model.encode(text)]

    def _in_scope(self, node: GraphNode, scope: SearchScope | None) -> bool:
        if scope is None or scope.mode == "vault":
            return True
        if scope.mode == "limit_ids":
            return node.id in set(scope.ids or [])
        folder = (scope.folder or "").strip("/")
        return not folder or (node.path or "").startswith(folder + "/")

    def _documents(self, scope: SearchScope | None) -> list[GraphNode]:
        return [n for n in self._nodes.values() if n.type == "document" and self._in_scope(n, scope)]

    def _to_item(self, node: GraphNode, score: float, highlight: SearchSnippet | None = None) -> SearchResultItem:
        return SearchResultItem(
            path=node.path or node.id,
            id=node.id,
            title=node.label,
            score=score,
            last_modified=node.updated_at,
            highlight=highlight,
            content=self.snapshot.contents.get(node.id),
        )

    async def vector_search(
        self, query: str, top_k: int, scope: SearchScope | None = None
    ) -> list[SearchResultItem]:
        query_vector = self._embed(query)
        scored = []
        for node in self._documents(scope):
            vector = await self.get_average_embedding_for_doc(node.id)
            if vector:
                scored.append((cosine_similarity(query_vector, vector), node))
        scored.sort(key=lambda s: (-s[0], s[1].id))
        return [self._to_item(node, score) for score, node in scored[:top_k]]

    def _snippet(self, text: str, terms: set[str]) -> SearchSnippet:
        lowered = text.lower()
        first = min((lowered.find(t) for t in terms if t in lowered), default=0)
        start = max(0, first - SNIPPET_LENGTH // 4)
        excerpt = text[start : start + SNIPPET_LENGTH]
        spans = [
            HighlightSpan(start=m.start(), end=m.end())
            for m in TOKEN_PATTERN.finditer(excerpt)
            if m.group().lower() in terms
        ]
        return SearchSnippet(text=excerpt, highlights=spans)

    async def fulltext_search(
        self, query: str, top_k: int, scope: SearchScope | None = None
    ) -> list[SearchResultItem]:
        """Score documents by the share of query terms found in title and content."""
        terms = set(_tokens(query))
        if not terms:
            return []

        scored = []
        for node in self._documents(scope):
            text = f"{node.label}\n{self.snapshot.contents.get(node.id, '')}"
            matched = terms & set(_tokens(text))
            if matched:
                scored.append((len(matched) / len(terms), node, self._snippet(text, matched)))
        scored.sort(key=lambda s: (-s[0], s[1].id))
        return [self._to_item(node, score, snippet) for score, node, snippet in scored[:top_k]]

    async def get_recent(self, limit: int) -> list[SearchResultItem]:
        if self.snapshot.recent is not None:
            items = sorted(self.snapshot.recent, key=lambda i: i.last_modified, reverse=True)
        else:
            documents = sorted(self._documents(None), key=lambda n: n.updated_at, reverse=True)
            items = [self._to_item(node, 0.0) for node in documents]
        return items[:limit] if limit > 0 else items

    # ─────────────────────────────────────────────────────────────────────────
    # FileTree
    # ─────────────────────────────────────────────────────────────────────────

    async def list_folder(self, path: str, recursive: bool, max_depth: int) -> list[FolderItem] | None:
        """Folder listing derived from document paths; None for an unknown folder."""
        root = path.strip("/")
        prefix = f"{root}/" if root else ""
        files = sorted(p for p in self._by_path if p.startswith(prefix))
        if root and not files:
            return None
        return self._build_tree(prefix, files, recursive, max_depth, 0)

    def _build_tree(
        self, prefix: str, files: list[str], recursive: bool, max_depth: int, depth: int
    ) -> list[FolderItem]:
        folders: dict[str, list[str]] = {}
        items: list[FolderItem] = []
        for file_path in files:
            rest = file_path[len(prefix) :]
            head, sep, _ = rest.partition("/")
            if sep:
                folders.setdefault(head, []).append(file_path)
            else:
                items.append(FolderItem(type="file", path=file_path))

        folder_items = []
        for name, nested in folders.items():
            folder_path = f"{prefix}{name}"
            children = None
            if recursive and depth < max_depth - 1:
                children = self._build_tree(folder_path + "/", nested, recursive, max_depth, depth + 1)
            folder_items.append(FolderItem(type="folder", path=folder_path, children=children))
        return folder_items + items
