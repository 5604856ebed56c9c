"""
Configuration Tests

Tests for YAML/JSON loading, dot-notation access and registry assembly.
"""

import json

import pytest

from corridor_engine.config import ConfigManager
from corridor_engine.integrations import InMemoryArchivalSink, RecordingAlertDispatcher
from corridor_engine.orchestration import build_registry
from corridor_engine.routing import StaticTrafficProvider


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "corridor.yaml").write_text(
        "system:\n"
        "  logLevel: DEBUG\n"
        "validator:\n"
        "  maxSpeedKmh: 180\n"
        "  spoofingRunLength: 4\n"
        "predictor:\n"
        "  grid:\n"
        "    rows: 3\n"
        "    cols: 4\n"
        "    spacingMeters: 250\n"
        "registry:\n"
        "  authorizedPrefixes: [AMB-]\n"
        "archive:\n"
        "  enabled: false\n"
    )
    (tmp_path / "overrides.json").write_text(json.dumps({"targeting": {"lateralBufferMeters": 400}}))
    return tmp_path


class TestConfigManager:
    """Test configuration loading and access"""

    def test_sections_lifted_to_root(self, config_dir):
        """Test sections from a shared file resolve by dot notation"""
        config = ConfigManager(str(config_dir))

        assert config.get('validator.maxSpeedKmh') == 180
        assert config.get('corridor.validator.spoofingRunLength') == 4
        assert config.get('targeting.lateralBufferMeters') == 400
        assert config.get_validator_config() == {'maxSpeedKmh': 180, 'spoofingRunLength': 4}

    def test_defaults(self, config_dir):
        """Test missing keys fall back to the default"""
        config = ConfigManager(str(config_dir))

        assert config.get('validator.missing', 42) == 42
        assert config.get('nope.nothing') is None
        assert config.get_traffic_config() == {}

    def test_set_and_reload(self, config_dir):
        """Test runtime overrides are dropped on reload"""
        config = ConfigManager(str(config_dir))

        config.set('validator.maxSpeedKmh', 120)
        config.set('experimental.flag', True)
        assert config.get('validator.maxSpeedKmh') == 120
        assert config.get('experimental.flag') is True

        config.reload()

        assert config.get('validator.maxSpeedKmh') == 180
        assert config.get('experimental.flag') is None

    def test_missing_directory(self, tmp_path):
        """Test a missing config directory yields an empty configuration"""
        config = ConfigManager(str(tmp_path / "absent"))

        assert config.configs == {}
        assert config.get('validator.maxSpeedKmh', 150.0) == 150.0

    def test_invalid_yaml_skipped(self, tmp_path):
        """Test an unparsable file is skipped"""
        (tmp_path / "broken.yaml").write_text("validator: [unclosed\n")
        (tmp_path / "good.yaml").write_text("traffic:\n  deadlineSeconds: 1.5\n")

        config = ConfigManager(str(tmp_path))

        assert config.get('traffic.deadlineSeconds') == 1.5
        assert 'broken' not in config.configs

    def test_environment_directory(self, config_dir, monkeypatch):
        """Test CORRIDOR_CONFIG_DIR selects the directory"""
        monkeypatch.setenv("CORRIDOR_CONFIG_DIR", str(config_dir))

        assert ConfigManager().get('system.logLevel') == "DEBUG"


class TestBuildRegistry:
    """Test assembling a registry from configuration"""

    def test_build_from_config(self, config_dir, monkeypatch):
        """Test configuration reaches the assembled components"""
        monkeypatch.delenv("TRAFFIC_API_KEY", raising=False)

        registry = build_registry(ConfigManager(str(config_dir)))

        assert registry.validator.max_speed_kmh == 180
        assert registry.validator.spoofing_run_length == 4
        assert registry.predictor.network.graph.number_of_nodes() == 12
        assert isinstance(registry.predictor.traffic.provider, StaticTrafficProvider)
        assert isinstance(registry.archive, InMemoryArchivalSink)
        assert isinstance(registry.dispatcher, RecordingAlertDispatcher)
        assert registry.authenticator.allowed_prefixes == ("AMB-",)
        assert registry.candidate_margin == 400
