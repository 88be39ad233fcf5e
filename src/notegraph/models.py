"""Pydantic models for graph records and query results."""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, field_validator

GraphNodeType = Literal["document", "tag", "category"]
DiscoveredVia = Literal["physical", "semantic"]
NodeRole = Literal["bridge", "hub", "authority", "balanced"]
TimeRange = Literal["today", "yesterday", "this_week", "this_month", "last_3_months", "this_year"]
ItemType = Literal["note", "file", "folder", "all"]
SearchMode = Literal["fulltext", "vector", "hybrid"]


# ─────────────────────────────────────────────────────────────────────────────
# Graph records (owned by the external indexer)
# ─────────────────────────────────────────────────────────────────────────────


class GraphNode(BaseModel):
    """A node in the knowledge graph."""

    id: str
    type: GraphNodeType
    label: str
    attributes: dict[str, Any] = Field(default_factory=dict)  # e.g. {"path": "notes/a.md"}
    created_at: int = 0  # epoch millis
    updated_at: int = 0  # epoch millis

    @field_validator("attributes", mode="before")
    @classmethod
    def _decode_attributes(cls, value: Any) -> Any:
        # Indexers store attributes as a JSON string
        if isinstance(value, str):
            try:
                decoded = json.loads(value or "{}")
            except json.JSONDecodeError:
                return {}
            return decoded if isinstance(decoded, dict) else {}
        if value is None:
            return {}
        return value

    @property
    def path(self) -> str | None:
        path = self.attributes.get("path")
        return path if isinstance(path, str) else None


class GraphEdge(BaseModel):
    """A directed edge. Several edges may join the same pair with different types."""

    from_node_id: str
    to_node_id: str
    type: str  # link | tagged | categorized | semantic | ...
    weight: float = 1.0
    updated_at: int = 0


class DocStatistics(BaseModel):
    """Usage and content statistics for one document."""

    doc_id: str
    richness_score: float = 0.0
    open_count: int = 0
    last_open_ts: int = 0
    word_count: int = 0
    char_count: int = 0
    language: str | None = None
    updated_at: int = 0


class EdgeCounts(BaseModel):
    """Per-node edge counts keyed by node id."""

    incoming: dict[str, int] = Field(default_factory=dict)
    outgoing: dict[str, int] = Field(default_factory=dict)
    total: dict[str, int] = Field(default_factory=dict)


class DegreeStat(BaseModel):
    node_id: str
    degree: int


class TopDegrees(BaseModel):
    """Top nodes by raw out-degree and in-degree, each sorted descending."""

    top_out: list[DegreeStat] = Field(default_factory=list)
    top_in: list[DegreeStat] = Field(default_factory=list)


class SimilarityHit(BaseModel):
    """One nearest-neighbor hit from the embedding store (chunk level)."""

    doc_id: str
    similarity: float


# ─────────────────────────────────────────────────────────────────────────────
# Search client records
# ─────────────────────────────────────────────────────────────────────────────


class HighlightSpan(BaseModel):
    start: int
    end: int


class SearchSnippet(BaseModel):
    text: str
    highlights: list[HighlightSpan] = Field(default_factory=list)


class SearchResultItem(BaseModel):
    """A hit produced by the external search client."""

    path: str
    id: str | None = None
    title: str | None = None
    score: float = 0.0
    final_score: float | None = None
    last_modified: int = 0  # epoch millis
    type: str = "markdown"
    highlight: SearchSnippet | None = None
    content: str | None = None


class SearchScope(BaseModel):
    """Restricts a search to the whole vault, a folder, or an explicit id set."""

    mode: Literal["vault", "folder", "limit_ids"] = "vault"
    folder: str | None = None
    ids: list[str] | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Request options
# ─────────────────────────────────────────────────────────────────────────────


class QueryFilters(BaseModel):
    """Optional filters combined with AND."""

    model_config = ConfigDict(extra="forbid")

    type: ItemType | None = None
    path: str | None = None  # "/prefix" for a literal prefix, otherwise a regex
    modified_within: TimeRange | None = None
    created_within: TimeRange | None = None
    tag_category_boolean_expression: str | None = None


class SemanticFilter(BaseModel):
    """Vector-search relevance anchor used to narrow a candidate set."""

    model_config = ConfigDict(extra="forbid")

    query: str
    top_k: int = Field(default=20, ge=1, le=50)


# ─────────────────────────────────────────────────────────────────────────────
# Query results
# ─────────────────────────────────────────────────────────────────────────────


class QueryMessage(BaseModel):
    """Descriptive result returned instead of raising (e.g. note not found)."""

    message: str


class SemanticNeighbor(GraphNode):
    """A document reached by embedding similarity."""

    similarity: str  # human-readable percentage, e.g. "87.5%"
    similarity_value: float
    discovered_via: DiscoveredVia = "semantic"


class TraversalNode(GraphNode):
    """A node recorded by the hybrid traversal."""

    depth: int
    discovered_via: DiscoveredVia
    similarity: str | None = None
    similarity_value: float | None = None


class ClusterSummary(BaseModel):
    """Document nodes of one cluster after RRF shrinkage, tags/categories collapsed."""

    document_nodes: list[SerializeAsAny[GraphNode]] = Field(default_factory=list)
    scores: dict[str, float] = Field(default_factory=dict)
    tag_desc: str | None = None
    category_desc: str | None = None
    omitted_count: int = 0


class NoteContext(BaseModel):
    note_path: str
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    incoming: ClusterSummary = Field(default_factory=ClusterSummary)
    outgoing: ClusterSummary = Field(default_factory=ClusterSummary)
    semantic_neighbors: ClusterSummary = Field(default_factory=ClusterSummary)


class TraversalLevel(ClusterSummary):
    depth: int


class VisualizationNode(BaseModel):
    id: str
    label: str
    type: str
    depth: int
    discovered_via: DiscoveredVia


class VisualizationEdge(BaseModel):
    from_node_id: str
    to_node_id: str
    type: str
    weight: float


class TraversalResult(BaseModel):
    start_note_path: str
    hops: int
    is_timeout: bool = False
    levels: list[TraversalLevel] = Field(default_factory=list)
    nodes: list[VisualizationNode] = Field(default_factory=list)
    edges: list[VisualizationEdge] = Field(default_factory=list)


class PathSegment(BaseModel):
    node_id: str
    discovered_via: DiscoveredVia
    similarity: str | None = None


class FoundPath(BaseModel):
    labels: list[str]
    segments: list[PathSegment]
    steps: int
    connections: list[str] = Field(default_factory=list)  # "physical" | "semantic (81.0%)"


class PathResult(BaseModel):
    start_note_path: str
    end_note_path: str
    paths: list[FoundPath] = Field(default_factory=list)
    timed_out: bool = False
    message: str | None = None


class KeyNodeScore(BaseModel):
    """Fused Key-Node RRF score for one candidate."""

    node_id: str
    out_degree: int = 0
    in_degree: int = 0
    category_count: int = 0
    semantic_score: float = 0.0
    rrf_score: float = 0.0
    role: NodeRole = "balanced"


class KeyNode(BaseModel):
    id: str
    label: str
    degree: int
    role: NodeRole
    rrf_score: float
    index: int


class KeyNodesResult(BaseModel):
    sources: list[KeyNode] = Field(default_factory=list)  # ranked by out-degree
    sinks: list[KeyNode] = Field(default_factory=list)  # ranked by in-degree


class RevivalSuggestion(BaseModel):
    path: str
    title: str
    similarity: float  # percentage value, e.g. 87.5
    reason: str


class OrphanNote(GraphNode):
    orphan_type: Literal["hard"] = "hard"
    revival_suggestion: RevivalSuggestion | None = None


class OrphansResult(BaseModel):
    total_count: int
    filtered_count: int
    orphans: list[OrphanNote] = Field(default_factory=list)


class DimensionSearchResult(BaseModel):
    boolean_expression: str
    items: list[SerializeAsAny[GraphNode]] = Field(default_factory=list)
    semantic_scores: dict[str, float] = Field(default_factory=dict)
    total_found: int = 0
    semantic_filtered_count: int = 0
    all_filtered_count: int = 0


class FolderItem(BaseModel):
    type: Literal["folder", "file"]
    path: str
    children: list["FolderItem"] | None = None


class PathMetric(BaseModel):
    path: str
    value: float


class FolderStatistics(BaseModel):
    total_files: int = 0
    top_recent_edited: list[PathMetric] = Field(default_factory=list)
    top_word_count: list[PathMetric] = Field(default_factory=list)
    top_char_count: list[PathMetric] = Field(default_factory=list)
    top_richness: list[PathMetric] = Field(default_factory=list)
    language_stats: dict[str, int] | None = None


class FolderResult(BaseModel):
    current_path: str
    recursive: bool
    max_depth: int
    file_tree: list[FolderItem] = Field(default_factory=list)
    tag_desc: str = ""
    category_desc: str = ""
    doc_stats: FolderStatistics = Field(default_factory=FolderStatistics)


class RecentChangesResult(BaseModel):
    items: list[SearchResultItem] = Field(default_factory=list)


class LocalSearchHit(BaseModel):
    path: str
    id: str | None = None
    title: str | None = None
    score: float = 0.0
    final_score: float | None = None
    last_modified: int = 0
    type: str = "markdown"
    highlighted_text: str = ""


class LocalSearchResult(BaseModel):
    query: str
    search_mode: SearchMode
    results: list[LocalSearchHit] = Field(default_factory=list)
    search_time_ms: float = 0.0
    warnings: list[str] = Field(default_factory=list)
