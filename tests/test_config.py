"""
Tests for engine configuration and logging setup.
"""

import textwrap

import pytest
from loguru import logger

from declcore.config import EngineConfig
from declcore.errors import ConfigurationError
from declcore.logging_utils import LOG_FILTER_ENV, _parse_log_filter, configure_logging


class TestEngineConfig:
    """Test building and validating configuration."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.max_workers == 4
        assert config.max_errors == 0
        assert config.max_instances == 0
        assert config.log_level == "INFO"

    def test_log_level_normalized(self):
        assert EngineConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_values(self):
        for kwargs in ({"max_workers": 0}, {"max_errors": -1},
                       {"max_instances": "10"}, {"max_workers": True},
                       {"log_level": "chatty"}):
            with pytest.raises(ConfigurationError):
                EngineConfig(**kwargs)

    def test_from_mapping(self):
        config = EngineConfig.from_mapping({"max_workers": 2, "max_instances": 100})
        assert config.max_workers == 2
        assert config.max_instances == 100

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_mapping({"max_worker": 2})
        assert "max_worker" in exc_info.value.diagnostic.message
        assert exc_info.value.diagnostic.hints

    def test_to_dict(self):
        assert EngineConfig(max_workers=8).to_dict() == {
            "max_workers": 8, "max_errors": 0, "max_instances": 0, "log_level": "INFO",
        }


class TestLoad:
    """Test loading configuration from YAML files."""

    def test_top_level(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("max_workers: 3\nlog_level: warning\n")
        config = EngineConfig.load(path)
        assert config.max_workers == 3
        assert config.log_level == "WARNING"

    def test_engine_section(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(textwrap.dedent("""\
            engine:
              max_errors: 5
              max_instances: 50
            """))
        config = EngineConfig.load(str(path))
        assert config.max_errors == 5
        assert config.max_instances == 50

    def test_empty_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("")
        assert EngineConfig.load(path) == EngineConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            EngineConfig.load(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("max_workers: [1,\n")
        with pytest.raises(ConfigurationError):
            EngineConfig.load(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            EngineConfig.load(path)


class TestLogging:
    """Test the log filter parsing and setup."""

    def test_default_level(self, monkeypatch):
        monkeypatch.delenv(LOG_FILTER_ENV, raising=False)
        level, filters = _parse_log_filter("INFO")
        assert level == "info"
        assert filters == {"": "INFO"}

    def test_module_levels(self, monkeypatch):
        monkeypatch.setenv(LOG_FILTER_ENV, "warning,declcore.scheduler=debug,declcore.graph=false")
        level, filters = _parse_log_filter("INFO")
        assert level == "warning"
        assert filters == {
            "": "WARNING",
            "declcore.scheduler": "DEBUG",
            "declcore.graph": False,
        }

    def test_configure_logging_enables_library(self, monkeypatch, capsys):
        monkeypatch.setenv(LOG_FILTER_ENV, "debug")
        configure_logging(force=True)
        try:
            from declcore.graph import DependencyGraph
            DependencyGraph.build([])
            captured = capsys.readouterr()
            assert "graph.built nodes=0" in captured.err
        finally:
            logger.remove()
            logger.disable("declcore")
