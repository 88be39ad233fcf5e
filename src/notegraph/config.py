"""Configuration management for notegraph.

This module contains all configurable constants for the query engine.
Magic numbers are documented here rather than scattered throughout the codebase.
`QuerySettings` mirrors the constants so a request context can override them
from a YAML file without touching module globals.
"""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


# =============================================================================
# Reciprocal Rank Fusion
# =============================================================================

# RRF constant for cluster shrinkage and search-result fusion.
# Formula: score(d) = sum(weight / (k + rank)) across ranking lists, rank 0-based.
# k=60 is the standard value from the RRF paper (Cormack et al., 2009).
RRF_K = 60

# Per-dimension weights for Cluster RRF. Density and recency are always present;
# richness and open statistics only contribute when the document has them.
CLUSTER_RRF_WEIGHTS = {
    "density": 1.0,
    "update_time": 1.0,
    "richness": 0.8,
    "open_count": 0.6,
    "last_open": 0.6,
    "similarity": 1.0,
}

# Additive bonus for nodes reached through a stored edge.
# Roughly one RRF term at rank 0, so a linked note outranks an equally
# ranked semantic neighbor without drowning the other dimensions.
PHYSICAL_CONNECTION_BONUS = 0.01


# =============================================================================
# Key Nodes
# =============================================================================

# RRF constant for key-node fusion (degree rank + semantic rank).
KEY_NODES_RRF_K = 60

# Candidate pool pulled per degree direction before fusion.
# Large relative to user limits (10-50) so ranks are computed on a meaningful pool.
RRF_RANKING_POOL_SIZE = 500

# Bonus for nodes connected to two or more distinct categories.
BRIDGE_BONUS = 0.005

# A node is a hub/authority when one degree direction exceeds the other by this ratio.
DEGREE_ASYMMETRY_RATIO = 1.2

# ...and the dominant degree is strictly above this count.
MIN_CLASSIFIED_DEGREE = 3

# Minimum distinct categories for the bridge classification.
BRIDGE_MIN_CATEGORIES = 2


# =============================================================================
# Traversal
# =============================================================================

# Wall-clock budget (seconds) for one traversal or path search.
# Checked at the top of each dequeue, not preemptively.
GRAPH_INSPECT_STEP_TIME_LIMIT = 10.0

# Semantic neighbor budget by depth of the node being expanded.
# None means "use the caller's limit"; depths beyond the table get no semantic fan-out.
SEMANTIC_DECAY: tuple[int | None, ...] = (None, 3, 1)

# Upper bound on hops accepted by graph traversal.
MAX_TRAVERSAL_HOPS = 3

# Weight of a synthetic semantic edge when similarity cannot be parsed.
DEFAULT_SEMANTIC_EDGE_WEIGHT = 0.5


# =============================================================================
# Path Finding
# =============================================================================

# Number of diverse paths attempted (each iteration forbids one key edge).
PATH_FINDING_ITERATIONS = 3

# Frontier expansions per side before giving up; beyond this semantic drift
# makes the paths meaningless.
PATH_FINDING_MAX_HOPS = 5

# Physical edges fetched per node while expanding a path frontier.
PATH_NEIGHBOR_LIMIT = 20

# Minimum semantic neighbors requested per expanded node.
PATH_MIN_SEMANTIC_NEIGHBORS = 5


# =============================================================================
# Orphans
# =============================================================================

# Maximum hard-orphan candidates pulled from the edge store.
ORPHAN_CANDIDATE_LIMIT = 100

# Semantic neighbors considered per orphan when proposing a reconnection.
REVIVAL_NEIGHBOR_COUNT = 10


# =============================================================================
# Limits
# =============================================================================

DEFAULT_LIMIT = 20
DEFAULT_TRAVERSAL_LIMIT = 40
MAX_LIMIT = 100

# Semantic filter result cap (vector search topK).
SEMANTIC_FILTER_MAX_TOP_K = 100
DEFAULT_SEMANTIC_FILTER_TOP_K = 20

# Default folder exploration depth.
DEFAULT_FOLDER_DEPTH = 3

# Top-K rows for each folder statistics list.
FOLDER_STATS_TOP_K = 5


# =============================================================================
# Caches
# =============================================================================

EXPRESSION_CACHE_SIZE = 128
REGEX_CACHE_SIZE = 256


# =============================================================================
# Embeddings
# =============================================================================

# Sentence-transformers model used to embed free-text queries for vector search.
# Produces 384-dimensional embeddings; snapshots must use the same model.
EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class ClusterWeights(BaseModel):
    """Weights applied to each Cluster RRF dimension."""

    model_config = ConfigDict(extra="forbid")

    density: float = CLUSTER_RRF_WEIGHTS["density"]
    update_time: float = CLUSTER_RRF_WEIGHTS["update_time"]
    richness: float = CLUSTER_RRF_WEIGHTS["richness"]
    open_count: float = CLUSTER_RRF_WEIGHTS["open_count"]
    last_open: float = CLUSTER_RRF_WEIGHTS["last_open"]
    similarity: float = CLUSTER_RRF_WEIGHTS["similarity"]


class QuerySettings(BaseModel):
    """Tunables read by the query components for one request context."""

    model_config = ConfigDict(extra="forbid")

    rrf_k: int = Field(default=RRF_K, ge=1)
    cluster_weights: ClusterWeights = Field(default_factory=ClusterWeights)
    physical_connection_bonus: float = PHYSICAL_CONNECTION_BONUS
    key_nodes_rrf_k: int = Field(default=KEY_NODES_RRF_K, ge=1)
    ranking_pool_size: int = Field(default=RRF_RANKING_POOL_SIZE, ge=1)
    bridge_bonus: float = BRIDGE_BONUS
    degree_asymmetry_ratio: float = DEGREE_ASYMMETRY_RATIO
    min_classified_degree: int = MIN_CLASSIFIED_DEGREE
    step_time_limit: float = Field(default=GRAPH_INSPECT_STEP_TIME_LIMIT, gt=0)
    semantic_decay: tuple[int | None, ...] = SEMANTIC_DECAY
    orphan_candidate_limit: int = Field(default=ORPHAN_CANDIDATE_LIMIT, ge=1)
    revival_neighbor_count: int = Field(default=REVIVAL_NEIGHBOR_COUNT, ge=1)
    path_finding_iterations: int = Field(default=PATH_FINDING_ITERATIONS, ge=1)
    path_finding_max_hops: int = Field(default=PATH_FINDING_MAX_HOPS, ge=1)
    path_neighbor_limit: int = Field(default=PATH_NEIGHBOR_LIMIT, ge=1)
    expression_cache_size: int = Field(default=EXPRESSION_CACHE_SIZE, ge=1)
    regex_cache_size: int = Field(default=REGEX_CACHE_SIZE, ge=1)
    embedding_model: str = EMBEDDING_MODEL


def _discover_settings_file() -> Path | None:
    env_path = os.environ.get("NOTEGRAPH_CONFIG")
    if env_path:
        return Path(env_path)
    local = Path.cwd() / "notegraph.yaml"
    if local.exists():
        return local
    return None


def load_settings(path: Path | str | None = None) -> QuerySettings:
    """Load query settings from YAML.

    Discovery order:
    1. Explicit path argument
    2. NOTEGRAPH_CONFIG environment variable
    3. ./notegraph.yaml if it exists
    4. Built-in defaults

    Raises:
        ConfigurationError: If the file is missing, malformed, or has unknown keys.
    """
    import yaml

    config_path = Path(path) if path is not None else _discover_settings_file()
    if config_path is None:
        return QuerySettings()

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed settings file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {config_path} must contain a mapping")

    try:
        return QuerySettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in {config_path}: {e}") from e


def get_graph_path() -> Path:
    """Get the graph snapshot path.

    Raises:
        ConfigurationError: If NOTEGRAPH_GRAPH is not set.
    """
    root = os.environ.get("NOTEGRAPH_GRAPH")
    if root:
        return Path(root)
    raise ConfigurationError(
        "No graph snapshot configured. Options:\n"
        "  1. Pass --graph path/to/graph.json\n"
        "  2. Set NOTEGRAPH_GRAPH to an exported graph snapshot"
    )
