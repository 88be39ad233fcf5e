"""notegraph: query and ranking engine for a personal knowledge graph."""

__version__ = "0.3.0"
