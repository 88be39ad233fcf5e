"""Request context passed explicitly to every query mode.

A QueryContext bundles the read-only collaborators, the tunable settings and
the compiled-pattern cache. Nothing in the query engine reaches for a
process-global store; tests and servers build one context and pass it in.
"""

from dataclasses import dataclass, field

from .config import QuerySettings
from .query.cache import QueryCache
from .repositories import (
    DocStatisticsRepository,
    EdgeRepository,
    EmbeddingStore,
    FileTree,
    NodeRepository,
    SearchClient,
)


@dataclass
class QueryContext:
    """Collaborators and settings for one or more query invocations."""

    nodes: NodeRepository
    edges: EdgeRepository
    stats: DocStatisticsRepository
    embeddings: EmbeddingStore
    search: SearchClient
    files: FileTree | None = None
    """Folder listing; explore_folder reports "not found" without it."""

    settings: QuerySettings = field(default_factory=QuerySettings)
    cache: QueryCache | None = None
    """Shared pattern cache; built from the settings when omitted."""

    def __post_init__(self) -> None:
        if self.cache is None:
            self.cache = QueryCache(
                regex_size=self.settings.regex_cache_size,
                expression_size=self.settings.expression_cache_size,
            )

    @classmethod
    def from_store(cls, store, settings: QuerySettings | None = None) -> "QueryContext":
        """Build a context from one object implementing every collaborator protocol."""
        return cls(
            nodes=store,
            edges=store,
            stats=store,
            embeddings=store,
            search=store,
            files=store,
            settings=settings or QuerySettings(),
        )

    @property
    def query_cache(self) -> QueryCache:
        assert self.cache is not None
        return self.cache
