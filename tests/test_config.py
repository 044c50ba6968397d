"""
Tests for loading, validating and saving auditor configuration files.
"""

import json

import pytest
import yaml

from mcp_auditor.config import (
    ApiSource,
    DiscoveryConfig,
    LocalSource,
    RegistrySource,
    VSCodeSource,
    default_config,
    load_config,
    save_config,
    sources_for,
)
from mcp_auditor.errors import ConfigError


class TestLoadConfig:
    """Loading configuration from defaults, JSON and YAML."""

    def test_default_configuration(self):
        """No path falls back to the built-in defaults."""
        config = load_config(None)
        assert config == default_config()
        assert [s.type for s in config.sources] == ["local", "vscode"]
        assert config.timeout == 10.0
        assert config.max_concurrent == 5
        assert "**/node_modules/**" in config.exclude_patterns

    def test_camel_case_file_with_nested_source_config(self, tmp_path):
        """Files in the camelCase layout with nested source config load, timeouts in ms."""
        path = tmp_path / "mcp-audit.config.json"
        path.write_text(
            json.dumps(
                {
                    "sources": [
                        {"type": "local", "config": {"paths": ["."], "patterns": ["**/mcp.yaml"]}, "enabled": True},
                        {"type": "registry", "config": {"url": "https://registry.test/servers"}, "enabled": True},
                        {"type": "api", "config": {"url": "https://api.test"}, "enabled": False},
                        {"type": "vscode", "config": {}, "enabled": True},
                    ],
                    "timeout": 10000,
                    "maxConcurrent": 3,
                    "excludePatterns": ["**/dist/**"],
                }
            )
        )
        config = load_config(path)

        assert config.timeout == 10.0
        assert config.max_concurrent == 3
        assert config.exclude_patterns == ["**/dist/**"]
        local, registry, api, vscode = config.sources
        assert isinstance(local, LocalSource) and local.patterns == ["**/mcp.yaml"]
        assert isinstance(registry, RegistrySource) and registry.url == "https://registry.test/servers"
        assert isinstance(api, ApiSource) and not api.enabled
        assert isinstance(vscode, VSCodeSource)
        assert [s.type for s in config.enabled_sources] == ["local", "registry", "vscode"]

    def test_yaml_file(self, tmp_path):
        """YAML files are accepted and timeouts in seconds kept as-is."""
        path = tmp_path / "audit.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "sources": [{"type": "api", "url": "https://api.test", "auth": {"type": "bearer", "token": "abc"}}],
                    "timeout": 2.5,
                }
            )
        )
        config = load_config(path)
        assert config.timeout == 2.5
        assert config.sources[0].auth.token == "abc"
        assert config.probe_config().timeout == 2.5

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[]",
            json.dumps({"sources": [{"type": "carrier-pigeon"}]}),
            json.dumps({"maxConcurrent": 0}),
            json.dumps({"timeout": -1}),
        ],
    )
    def test_invalid_files_raise_config_error(self, tmp_path, content):
        """Malformed or out-of-range files raise ConfigError."""
        path = tmp_path / "bad.json"
        path.write_text(content)
        with pytest.raises(ConfigError) as excinfo:
            load_config(path)
        assert excinfo.value.code == "CONFIG_ERROR"

    def test_missing_file(self, tmp_path):
        """A path that does not exist raises ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.json")


class TestSourcesAndSaving:
    """Building source lists and writing configuration files."""

    def test_sources_for_known_kinds(self):
        """Each known source kind maps to its typed source model."""
        sources = sources_for(["local", "vscode", "registry", "api"])
        assert [s.type for s in sources] == ["local", "vscode", "registry", "api"]
        assert "**/package.json" in sources[0].patterns
        assert sources[3].enabled is False

    def test_sources_for_unknown_kind(self):
        """Unknown source kinds raise ConfigError."""
        with pytest.raises(ConfigError):
            sources_for(["ftp"])

    @pytest.mark.parametrize("name", ["saved.json", "saved.yml"])
    def test_saved_file_loads_back(self, tmp_path, name):
        """A saved JSON or YAML file loads back to an equal config."""
        config = DiscoveryConfig(sources=sources_for(["local", "registry"]), timeout=4.0, max_concurrent=2)
        path = save_config(config, tmp_path / "nested" / name)
        assert load_config(path) == config
