"""
Integration tests for the toolmux CLI.

Commands run against a real configuration file whose stdio provider is
fixtures/fake_mcp_server.py.
"""

import json
import sys
from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from toolmux import __version__
from toolmux.cli import app

runner = CliRunner()


@pytest.fixture
def write_config(temp_dir: Path, fake_server_args: Callable[..., list[str]]) -> Callable[..., Path]:
    """Return a factory writing a config with one fake stdio provider."""

    def _write(*server_options: str, extra: str = "") -> Path:
        args = json.dumps(fake_server_args(*server_options))
        path = temp_dir / "toolmux.yaml"
        path.write_text(
            "providers:\n"
            "  fake:\n"
            f"    command: {json.dumps(sys.executable)}\n"
            f"    args: {args}\n"
            f"{extra}"
        )
        return path

    return _write


class TestVersion:
    """Tests for --version."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestToolsCommand:
    """Tests for `toolmux tools`."""

    def test_tools_json(self, write_config: Callable[..., Path]) -> None:
        """Lists provider tools followed by dynamic ones."""
        config = write_config(
            "--tools", "t1,t2",
            extra="dynamic_tools:\n  enable_tool_creator: true\n",
        )
        result = runner.invoke(app, ["tools", "--config", str(config), "--json"])
        assert result.exit_code == 0, result.output

        tools = json.loads(result.stdout)
        assert [t["name"] for t in tools] == ["t1", "t2", "tool-creator"]
        assert tools[0]["provider"] == "fake"
        assert tools[0]["provider_kind"] == "stdio-mcp"

    def test_tools_table(self, write_config: Callable[..., Path]) -> None:
        """The table shows each tool and its provider."""
        result = runner.invoke(app, ["tools", "-c", str(write_config("--tools", "alpha"))])
        assert result.exit_code == 0, result.output
        assert "alpha" in result.stdout
        assert "fake" in result.stdout

    def test_config_from_environment(self, write_config: Callable[..., Path]) -> None:
        """TOOLMUX_CONFIG names the default config file."""
        config = write_config("--tools", "from_env")
        result = runner.invoke(app, ["tools", "--json"], env={"TOOLMUX_CONFIG": str(config)})
        assert result.exit_code == 0, result.output
        assert [t["name"] for t in json.loads(result.stdout)] == ["from_env"]

    def test_missing_config(self, temp_dir: Path) -> None:
        """A missing config file exits with code 1."""
        result = runner.invoke(app, ["tools", "--config", str(temp_dir / "nope.yaml")])
        assert result.exit_code == 1
        assert "Error loading config" in result.stdout

    def test_invalid_config_json(self, temp_dir: Path) -> None:
        """Config errors are reported as JSON with --json."""
        path = temp_dir / "bad.yaml"
        path.write_text("providers: [")
        result = runner.invoke(app, ["tools", "--config", str(path), "--json"])
        assert result.exit_code == 1
        error = json.loads(result.stdout)
        assert error["error"] is True
        assert error["error_type"] == "ConfigError"


class TestProvidersCommand:
    """Tests for `toolmux providers`."""

    def test_providers_json(self, write_config: Callable[..., Path]) -> None:
        result = runner.invoke(app, ["providers", "--config", str(write_config("--tools", "a,b")), "--json"])
        assert result.exit_code == 0, result.output

        output = json.loads(result.stdout)
        assert output["unavailable"] == {}
        provider = output["providers"][0]
        assert provider["name"] == "fake"
        assert provider["tool_names"] == ["a", "b"]
        assert provider["details"]["server_info"]["name"] == "fake-mcp"


class TestCallCommand:
    """Tests for `toolmux call`."""

    def test_call_stdio_tool(self, write_config: Callable[..., Path]) -> None:
        """Arguments are passed through and the result printed."""
        config = write_config()
        result = runner.invoke(app, ["call", "echo", "--args", '{"text": "hello there"}', "--config", str(config)])
        assert result.exit_code == 0, result.output
        assert "hello there" in result.stdout

    def test_call_json(self, write_config: Callable[..., Path]) -> None:
        result = runner.invoke(app, ["call", "fail", "--config", str(write_config()), "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"tool": "fail", "result": "Error: something went wrong"}

    def test_call_unknown_tool(self, write_config: Callable[..., Path]) -> None:
        """Unknown tools exit with code 1."""
        result = runner.invoke(app, ["call", "missing", "--config", str(write_config())])
        assert result.exit_code == 1
        assert "Unknown tool: missing" in result.stdout

    def test_call_invalid_args(self, write_config: Callable[..., Path]) -> None:
        """--args must be a JSON object."""
        config = write_config()
        result = runner.invoke(app, ["call", "echo", "--args", "[1, 2]", "--config", str(config)])
        assert result.exit_code == 1
        result = runner.invoke(app, ["call", "echo", "--args", "{not json", "--config", str(config)])
        assert result.exit_code == 1
        assert "Invalid --args JSON" in result.stdout


class TestCheckCommand:
    """Tests for `toolmux check`."""

    def test_all_reachable(self, write_config: Callable[..., Path]) -> None:
        result = runner.invoke(app, ["check", "--config", str(write_config("--tools", "t1")), "--json"])
        assert result.exit_code == 0, result.output
        output = json.loads(result.stdout)
        assert output["ok"] is True
        assert output["checks"] == [{"name": "fake", "ok": True, "kind": "stdio-mcp", "message": "1 tool(s)"}]

    def test_unreachable_provider(self, write_config: Callable[..., Path]) -> None:
        """An unavailable provider makes check exit with code 1."""
        result = runner.invoke(app, ["check", "--config", str(write_config("--exit-on-start"))])
        assert result.exit_code == 1
        assert "fake" in result.output
        assert "unavailable" in result.output
