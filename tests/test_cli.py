"""
Tests for the mcp-auditor command line, driven through click's CliRunner.
"""

import json

import pytest
from click.testing import CliRunner

from mcp_auditor.cli import main
from mcp_auditor.config import load_config


@pytest.fixture
def runner():
    return CliRunner()


def _write_config(path, search_dir):
    path.write_text(
        json.dumps(
            {
                "sources": [{"type": "local", "config": {"paths": [str(search_dir)]}, "enabled": True}],
                "timeout": 2000,
                "maxConcurrent": 2,
                "excludePatterns": [],
            }
        )
    )
    return path


class TestInitCommand:
    """The init command writing a configuration file."""

    def test_writes_configuration(self, runner, tmp_path):
        """Chosen sources and timeout end up in a loadable file."""
        target = tmp_path / "mcp-audit.config.json"
        result = runner.invoke(
            main, ["init", "--path", str(target), "--sources", "local", "--sources", "registry", "--timeout", "5"]
        )
        assert result.exit_code == 0, result.output
        config = load_config(target)
        assert [s.type for s in config.sources] == ["local", "registry"]
        assert config.timeout == 5.0
        assert config.max_concurrent == 5

    def test_declining_overwrite_keeps_file(self, runner, tmp_path):
        """Answering no at the overwrite prompt leaves the file untouched."""
        target = tmp_path / "mcp-audit.config.json"
        target.write_text("{}")
        result = runner.invoke(main, ["init", "--path", str(target)], input="n\n")
        assert result.exit_code == 0
        assert "cancelled" in result.output
        assert target.read_text() == "{}"

    def test_force_overwrites(self, runner, tmp_path):
        """--force replaces an existing file without prompting."""
        target = tmp_path / "mcp-audit.config.json"
        target.write_text("{}")
        result = runner.invoke(main, ["init", "--path", str(target), "--force", "--sources", "vscode"])
        assert result.exit_code == 0, result.output
        assert [s.type for s in load_config(target).sources] == ["vscode"]


class TestDiscoverCommand:
    """The discover command listing servers."""

    def test_json_output(self, runner, tmp_path):
        """JSON output on stdout parses cleanly."""
        servers_dir = tmp_path / "servers"
        servers_dir.mkdir()
        (servers_dir / "mcp.config.json").write_text(json.dumps({"name": "cli-mcp", "url": "https://cli.test/mcp"}))
        config = _write_config(tmp_path / "audit.json", servers_dir)

        result = runner.invoke(main, ["discover", "--config", str(config), "--format", "json"])
        assert result.exit_code == 0, result.output
        servers = json.loads(result.stdout)
        assert [(s["name"], s["protocol"]) for s in servers] == [("cli-mcp", "https")]

    def test_text_output_lists_servers(self, runner, tmp_path):
        """Text output names each discovered server."""
        servers_dir = tmp_path / "servers"
        servers_dir.mkdir()
        (servers_dir / "mcp.yaml").write_text("name: yaml-mcp\nendpoint: ws://yaml.test\n")
        config = _write_config(tmp_path / "audit.json", servers_dir)

        result = runner.invoke(main, ["discover", "--config", str(config)])
        assert result.exit_code == 0, result.output
        assert "yaml-mcp" in result.output
        assert "Discovered 1 servers" in result.output

    def test_missing_config_file_fails(self, runner, tmp_path):
        """A missing --config file is reported with a non-zero exit."""
        result = runner.invoke(main, ["discover", "--config", str(tmp_path / "absent.json")])
        assert result.exit_code == 1
        assert "Configuration file not found" in result.output


class TestAuditCommand:
    """The audit command."""

    def test_nothing_to_audit(self, runner, tmp_path):
        """An empty discovery ends the audit without error."""
        empty = tmp_path / "empty"
        empty.mkdir()
        config = _write_config(tmp_path / "audit.json", empty)
        result = runner.invoke(main, ["audit", "--config", str(config), "--parallel", "3"])
        assert result.exit_code == 0, result.output
        assert "No MCP servers found to analyze" in result.output

    def test_rejects_non_positive_parallelism(self, runner, tmp_path):
        """--parallel 0 is a usage error."""
        config = _write_config(tmp_path / "audit.json", tmp_path)
        result = runner.invoke(main, ["audit", "--config", str(config), "--parallel", "0"])
        assert result.exit_code == 2


class TestServerCommand:
    """The server command analyzing one endpoint."""

    def test_unreachable_server_with_report(self, runner, tmp_path):
        """An unreachable endpoint prints grade F and writes the requested report."""
        out = tmp_path / "report.md"
        result = runner.invoke(
            main,
            ["server", "http://127.0.0.1:1", "--timeout", "2", "--output", str(out), "--format", "markdown"],
        )
        assert result.exit_code == 0, result.output
        assert "Security Grade: F" in result.output
        assert "Endpoint Unreachable" in result.output
        assert "(Grade: F)" in out.read_text(encoding="utf-8")

    def test_invalid_endpoint_fails(self, runner):
        """An unsupported scheme fails the analysis."""
        result = runner.invoke(main, ["server", "ftp://files.test"])
        assert result.exit_code == 1
        assert "Analysis failed" in result.output
