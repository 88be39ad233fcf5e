"""Tests for settings discovery, the graph path and logging setup."""

import logging

import pytest

from notegraph._logging import configure_logging
from notegraph.config import QuerySettings, get_graph_path, load_settings
from notegraph.errors import ConfigurationError


class TestLoadSettings:
    def test_defaults_without_file(self):
        assert load_settings() == QuerySettings()

    def test_explicit_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("rrf_k: 30\ncluster_weights:\n  density: 2.5\n")
        settings = load_settings(path)
        assert settings.rrf_k == 30
        assert settings.cluster_weights.density == 2.5
        assert settings.cluster_weights.richness == QuerySettings().cluster_weights.richness

    def test_local_file_is_discovered(self, tmp_path):
        (tmp_path / "notegraph.yaml").write_text("step_time_limit: 1.5\n")
        assert load_settings().step_time_limit == 1.5

    def test_env_var_wins_over_local_file(self, tmp_path, monkeypatch):
        (tmp_path / "notegraph.yaml").write_text("rrf_k: 10\n")
        other = tmp_path / "other.yaml"
        other.write_text("rrf_k: 99\n")
        monkeypatch.setenv("NOTEGRAPH_CONFIG", str(other))
        assert load_settings().rrf_k == 99

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path) == QuerySettings()

    @pytest.mark.parametrize(
        "content, match",
        [
            ("rrf_k: [1, 2\n", "Malformed"),
            ("- just\n- a list\n", "mapping"),
            ("rrf_kk: 10\n", "Invalid settings"),
            ("rrf_k: 0\n", "Invalid settings"),
        ],
    )
    def test_bad_files(self, tmp_path, content, match):
        path = tmp_path / "bad.yaml"
        path.write_text(content)
        with pytest.raises(ConfigurationError, match=match):
            load_settings(path)

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_settings(tmp_path / "absent.yaml")


class TestGraphPath:
    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NOTEGRAPH_GRAPH", str(tmp_path / "graph.json"))
        assert get_graph_path() == tmp_path / "graph.json"

    def test_unset(self):
        with pytest.raises(ConfigurationError, match="NOTEGRAPH_GRAPH"):
            get_graph_path()


class TestLogging:
    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("NOTEGRAPH_LOG_LEVEL", "debug")
        configure_logging()
        logger = logging.getLogger("notegraph")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_second_call_is_a_noop(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger("notegraph").handlers) == 1
