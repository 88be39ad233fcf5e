"""Shared test fixtures for the notegraph test suite.

Design:
- graph_data: a small vault snapshot (6 notes, 3 tags, 2 categories)
- store / ctx: InMemoryGraphStore and QueryContext over that snapshot
- make_ctx: factory for tests that need their own tiny graph
- graph_file: the snapshot written to disk, for CLI and server tests
- Async tests use @pytest.mark.asyncio with function-scoped loops
"""

import importlib.util
import json
import logging
import time
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from notegraph.config import QuerySettings
from notegraph.context import QueryContext
from notegraph.store import InMemoryGraphStore

NOW_MS = int(time.time() * 1000)
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


# ─────────────────────────────────────────────────────────────────────────────
# Markers
# ─────────────────────────────────────────────────────────────────────────────


def _semantic_deps_available() -> bool:
    return importlib.util.find_spec("sentence_transformers") is not None


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if _semantic_deps_available():
        return

    skip_semantic = pytest.mark.skip(
        reason="semantic extra not installed; install with `pip install -e '.[semantic]'` to run these tests"
    )
    for item in items:
        if "semantic" in item.keywords:
            item.add_marker(skip_semantic)


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot builders
# ─────────────────────────────────────────────────────────────────────────────


def doc(node_id: str, path: str, label: str, updated_ago_ms: int = DAY_MS, created_ago_ms: int = 30 * DAY_MS) -> dict:
    return {
        "id": node_id,
        "type": "document",
        "label": label,
        "attributes": json.dumps({"path": path}),
        "created_at": NOW_MS - created_ago_ms,
        "updated_at": NOW_MS - updated_ago_ms,
    }


def label_node(node_id: str, node_type: str, label: str) -> dict:
    return {"id": node_id, "type": node_type, "label": label}


def edge(from_id: str, to_id: str, edge_type: str = "link", updated_at: int = 0) -> dict:
    return {"from_node_id": from_id, "to_node_id": to_id, "type": edge_type, "updated_at": updated_at}


def keyword_embedder(text: str) -> list[float]:
    """Deterministic query embedding: 'alpha' points at note a, everything else at e."""
    return [1.0, 0.0, 0.0] if "alpha" in text.lower() else [0.0, 0.0, 1.0]


@pytest.fixture
def graph_data() -> dict[str, Any]:
    """Small vault.

    Links: a->b, b->c, d->a, e->a. Orphan: o.
    Tags: a{javascript, react}, b{python}, c{javascript}, d{python}.
    Categories: a,b,d programming; c,d archive (d is a bridge).
    """
    return {
        "nodes": [
            doc("a", "notes/a.md", "Alpha", updated_ago_ms=HOUR_MS),
            doc("b", "notes/b.md", "Beta", updated_ago_ms=2 * DAY_MS),
            doc("c", "notes/c.md", "Gamma", updated_ago_ms=10 * DAY_MS),
            doc("d", "projects/d.md", "Delta", updated_ago_ms=60 * DAY_MS),
            doc("e", "projects/sub/e.md", "Epsilon", updated_ago_ms=200 * DAY_MS),
            doc("o", "inbox/orphan.md", "Orphan", updated_ago_ms=3 * HOUR_MS),
            label_node("t-js", "tag", "javascript"),
            label_node("t-py", "tag", "python"),
            label_node("t-react", "tag", "react"),
            label_node("c-prog", "category", "programming"),
            label_node("c-arch", "category", "archive"),
        ],
        "edges": [
            edge("a", "b"),
            edge("b", "c"),
            edge("d", "a"),
            edge("e", "a"),
            edge("a", "t-js", "tagged"),
            edge("a", "t-react", "tagged"),
            edge("b", "t-py", "tagged"),
            edge("c", "t-js", "tagged"),
            edge("d", "t-py", "tagged"),
            edge("a", "c-prog", "categorized"),
            edge("b", "c-prog", "categorized"),
            edge("d", "c-prog", "categorized"),
            edge("c", "c-arch", "categorized"),
            edge("d", "c-arch", "categorized"),
        ],
        "doc_statistics": [
            {"doc_id": "a", "richness_score": 0.9, "open_count": 12, "word_count": 800, "char_count": 4000,
             "language": "en", "updated_at": NOW_MS - HOUR_MS},
            {"doc_id": "b", "richness_score": 0.4, "open_count": 3, "word_count": 300, "char_count": 1500,
             "language": "en", "updated_at": NOW_MS - 2 * DAY_MS},
            {"doc_id": "c", "word_count": 100, "char_count": 500, "language": "de",
             "updated_at": NOW_MS - 10 * DAY_MS},
        ],
        "embeddings": {
            "a": [[1.0, 0.0, 0.0]],
            "b": [[0.9, 0.1, 0.0], [0.8, 0.2, 0.0]],
            "c": [[0.0, 1.0, 0.0]],
            "d": [[0.0, 0.9, 0.1]],
            "e": [[0.0, 0.0, 1.0]],
            "o": [[1.0, 0.0, 0.02]],
        },
        "contents": {
            "a": "Alpha covers javascript and react hooks.",
            "b": "Beta is about python packaging.",
            "c": "Gamma: javascript bundlers.",
            "d": "Delta project plan for python services.",
            "e": "Epsilon notes.",
            "o": "A lonely note about react.",
        },
    }


@pytest.fixture
def store(graph_data: dict[str, Any]) -> InMemoryGraphStore:
    return InMemoryGraphStore.from_dict(graph_data, embedder=keyword_embedder)


@pytest.fixture
def ctx(store: InMemoryGraphStore) -> QueryContext:
    return QueryContext.from_store(store, QuerySettings())


@pytest.fixture
def make_ctx() -> Callable[..., QueryContext]:
    """Build a context over an ad-hoc snapshot.

    Usage:
        def test_x(make_ctx):
            ctx = make_ctx(nodes=[...], edges=[...])
    """

    def _make(settings: QuerySettings | None = None, **data: Any) -> QueryContext:
        store = InMemoryGraphStore.from_dict(data, embedder=keyword_embedder)
        return QueryContext.from_store(store, settings or QuerySettings())

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# CLI / server fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def graph_file(tmp_path: Path, graph_data: dict[str, Any]) -> Path:
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(graph_data))
    return path


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Keep developer settings out of tests and undo configure_logging() afterwards."""
    monkeypatch.delenv("NOTEGRAPH_GRAPH", raising=False)
    monkeypatch.delenv("NOTEGRAPH_CONFIG", raising=False)
    monkeypatch.delenv("NOTEGRAPH_LOG_LEVEL", raising=False)
    monkeypatch.chdir(tmp_path)

    yield

    # CLI and server entry points attach a handler and stop propagation,
    # which would hide later records from caplog
    package_logger = logging.getLogger("notegraph")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
