"""
Unit tests for schema models and configuration loading.

Tests cover:
- Parameter schemas and tool specs
- Provider config validation and the stdio default
- YAML configuration loading
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from toolmux.errors import ConfigError
from toolmux.schema import (
    DEFAULT_ALLOWED_MODULES,
    HttpProviderConfig,
    ParameterSchema,
    ProviderKind,
    StdioProviderConfig,
    ToolSpec,
    load_config,
    load_config_from_string,
    parse_provider_config,
)


class TestParameterSchema:
    """Tests for ParameterSchema."""

    def test_defaults(self) -> None:
        """An empty schema is an object with no parameters."""
        schema = ParameterSchema()
        assert schema.type == "object"
        assert schema.parameter_names == []
        assert schema.to_json_schema() == {"type": "object", "properties": {}, "required": []}

    def test_parameter_names_keep_declared_order(self) -> None:
        """Parameter names follow declaration order, not alphabetical order."""
        schema = ParameterSchema.model_validate({
            "properties": {"zeta": {"type": "string"}, "alpha": {"type": "number"}},
        })
        assert schema.parameter_names == ["zeta", "alpha"]

    def test_extra_keywords_preserved(self) -> None:
        """Unmodelled JSON-schema keywords survive the round trip."""
        schema = ParameterSchema.model_validate({"type": "object", "additionalProperties": False})
        assert schema.to_json_schema()["additionalProperties"] is False

    def test_non_object_rejected(self) -> None:
        """Only object schemas are accepted."""
        with pytest.raises(ValidationError):
            ParameterSchema.model_validate({"type": "string"})


class TestToolSpec:
    """Tests for ToolSpec."""

    def test_input_schema_alias(self) -> None:
        """MCP's camelCase inputSchema populates input_schema."""
        spec = ToolSpec.model_validate({
            "name": "echo",
            "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}},
        })
        assert spec.input_schema.parameter_names == ["text"]
        assert spec.description == ""

    def test_null_schema_becomes_empty(self) -> None:
        """A null inputSchema is an empty object schema."""
        spec = ToolSpec.model_validate({"name": "ping", "inputSchema": None})
        assert spec.input_schema == ParameterSchema()

    def test_name_required(self) -> None:
        """Tools must have a name."""
        with pytest.raises(ValidationError):
            ToolSpec.model_validate({"description": "nameless"})


class TestProviderConfig:
    """Tests for provider config parsing."""

    def test_missing_type_is_stdio(self) -> None:
        """A mapping without type is a stdio provider."""
        config = parse_provider_config({"command": "node", "args": ["server.js"]})
        assert isinstance(config, StdioProviderConfig)
        assert config.args == ["server.js"]
        assert config.handshake_timeout_seconds == 30.0

    def test_http_config(self) -> None:
        """type: http selects the HTTP config and strips the trailing slash."""
        config = parse_provider_config({"type": "http", "base_url": "http://localhost:3001/"})
        assert isinstance(config, HttpProviderConfig)
        assert config.base_url == "http://localhost:3001"
        assert config.tools is None
        assert config.health_path == "/health"

    def test_http_requires_scheme(self) -> None:
        """base_url must be http(s)."""
        with pytest.raises(ValidationError):
            parse_provider_config({"type": "http", "base_url": "localhost:3001"})

    def test_unknown_type_rejected(self) -> None:
        """Unknown transports fail validation."""
        with pytest.raises(ValidationError):
            parse_provider_config({"type": "grpc", "command": "x"})

    def test_unknown_key_rejected(self) -> None:
        """Typos in config keys fail loudly."""
        with pytest.raises(ValidationError):
            parse_provider_config({"command": "node", "arguments": []})

    def test_config_object_passes_through(self) -> None:
        """Already-validated configs are returned unchanged."""
        config = StdioProviderConfig(command="node")
        assert parse_provider_config(config) is config

    def test_static_catalog(self) -> None:
        """An HTTP provider can declare its own catalog."""
        config = parse_provider_config({
            "type": "http",
            "base_url": "https://bridge.local",
            "tools": [{"name": "uptime", "description": "Host uptime"}],
        })
        assert [t.name for t in config.tools] == ["uptime"]


class TestProviderKind:
    """Tests for ProviderKind values."""

    def test_values(self) -> None:
        assert ProviderKind.STDIO.value == "stdio-mcp"
        assert ProviderKind.HTTP.value == "http-mcp"
        assert ProviderKind.LOCAL_DYNAMIC.value == "local-dynamic"


class TestLoadConfig:
    """Tests for YAML configuration loading."""

    def test_load_from_string(self, sample_config_yaml: str) -> None:
        """Providers keep file order and get their default types."""
        config = load_config_from_string(sample_config_yaml)
        assert list(config.providers) == ["weather", "docker-mcp"]
        assert isinstance(config.providers["weather"], StdioProviderConfig)
        assert isinstance(config.providers["docker-mcp"], HttpProviderConfig)
        assert config.dynamic_tools.timeout_seconds == 5
        assert config.dynamic_tools.enable_tool_creator is True
        assert config.dynamic_tools.allowed_modules == DEFAULT_ALLOWED_MODULES

    def test_empty_config(self) -> None:
        """An empty file is a valid config with no providers."""
        config = load_config_from_string("")
        assert config.providers == {}
        assert config.dynamic_tools.enable_tool_creator is False

    def test_invalid_yaml(self) -> None:
        """Malformed YAML raises ConfigError."""
        with pytest.raises(ConfigError) as exc_info:
            load_config_from_string("providers: [unclosed", source="bad.yaml")
        assert exc_info.value.path == "bad.yaml"
        assert "invalid YAML" in exc_info.value.detail

    def test_invalid_schema(self) -> None:
        """Schema violations raise ConfigError."""
        with pytest.raises(ConfigError):
            load_config_from_string("providers:\n  p:\n    type: http\n")

    def test_unknown_top_level_key(self) -> None:
        """Unknown top-level keys are rejected."""
        with pytest.raises(ConfigError):
            load_config_from_string("servers: {}\n")

    def test_load_from_file(self, temp_dir: Path, sample_config_yaml: str) -> None:
        """load_config reads a YAML file."""
        path = temp_dir / "toolmux.yaml"
        path.write_text(sample_config_yaml)
        config = load_config(path)
        assert "weather" in config.providers

    def test_missing_file(self, temp_dir: Path) -> None:
        """A missing file raises ConfigError naming the path."""
        path = temp_dir / "missing.yaml"
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.path == str(path)
