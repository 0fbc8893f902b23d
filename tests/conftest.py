"""
Pytest configuration and fixtures for toolmux tests.

This module provides shared fixtures used across unit and integration tests.
Stdio providers are exercised against a real child process running
fixtures/fake_mcp_server.py; HTTP providers against httpx.MockTransport.
"""

import json
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

from toolmux.schema import StdioProviderConfig

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_mcp_server.py"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_server_args() -> Callable[..., list[str]]:
    """Return a factory for the fake MCP server's command line arguments."""

    def _args(*options: str) -> list[str]:
        return [str(FAKE_SERVER), *options]

    return _args


@pytest.fixture
def stdio_config(fake_server_args: Callable[..., list[str]]) -> Callable[..., StdioProviderConfig]:
    """Return a factory for stdio configs that launch the fake MCP server."""

    def _config(*options: str, **overrides: Any) -> StdioProviderConfig:
        return StdioProviderConfig(
            command=sys.executable,
            args=fake_server_args(*options),
            **overrides,
        )

    return _config


@pytest.fixture
def bridge_handler() -> Callable[[httpx.Request], httpx.Response]:
    """
    A well-behaved HTTP bridge.

    GET /health answers ok; POST /tools/<name> answers with the tool name and
    the request body as structured data.
    """

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if request.method == "POST" and request.url.path.startswith("/tools/"):
            name = request.url.path.removeprefix("/tools/")
            args = json.loads(request.content or b"null")
            return httpx.Response(200, json={"success": True, "data": {"tool": name, "args": args}})
        return httpx.Response(404, json={"error": "not found"})

    return _handler


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a configuration with one provider of each transport."""
    return """
providers:
  weather:
    command: node
    args: ["server.js"]
  docker-mcp:
    type: http
    base_url: http://localhost:3001/
dynamic_tools:
  timeout_seconds: 5
  enable_tool_creator: true
"""
