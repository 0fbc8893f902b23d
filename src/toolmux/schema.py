"""
Schema definitions for toolmux.

This module defines the Pydantic models used throughout toolmux:
- ParameterSchema/ToolSpec/ToolSummary: How tools describe their inputs
- ProviderSummary: What the store reports about each live provider
- StdioProviderConfig/HttpProviderConfig: How to reach a provider
- ToolmuxConfig: The YAML configuration file

Design Decisions:
    - Provider configs are a discriminated union on ``type``
    - A provider mapping without ``type`` is a stdio provider
    - Summaries are frozen; they are snapshots, not live views
    - Configuration rejects unknown keys so typos fail loudly
"""

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from toolmux.errors import ConfigError

# Tool names exposed to the agent
TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")

# Separator used when a provider namespaces its tools
NAMESPACE_SEPARATOR = "__"


# =============================================================================
# Enums
# =============================================================================


class ProviderKind(str, Enum):
    """Where a tool comes from."""

    STDIO = "stdio-mcp"
    HTTP = "http-mcp"
    LOCAL_DYNAMIC = "local-dynamic"


# =============================================================================
# Tool Models
# =============================================================================


class ParameterSchema(BaseModel):
    """
    JSON-schema description of a tool's arguments.

    Only the object form is modelled: typed fields in ``properties`` and the
    set of ``required`` field names. Other JSON-schema keywords are kept
    untouched so they can be handed to the LLM as-is.

    Attributes:
        type: Always "object"
        properties: Field name -> JSON schema, in declared order
        required: Names of required fields
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Literal["object"] = "object"
    properties: dict[str, dict[str, Any]] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    @property
    def parameter_names(self) -> list[str]:
        """Declared parameter names, in declaration order."""
        return list(self.properties)

    def to_json_schema(self) -> dict[str, Any]:
        """Plain JSON-schema dict for wire formats."""
        return self.model_dump(mode="json")


class ToolSpec(BaseModel):
    """
    A tool as advertised by a provider.

    Used both for stdio ``tools/list`` results and for static HTTP catalogs.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: ParameterSchema = Field(
        default_factory=ParameterSchema,
        alias="inputSchema",
    )

    @field_validator("input_schema", mode="before")
    @classmethod
    def default_empty_schema(cls, v: Any) -> Any:
        """Providers sometimes send null or omit the schema."""
        return v or {}


class ToolSummary(BaseModel):
    """Serializable summary of a registered tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameter_schema: dict[str, Any]
    provider_kind: ProviderKind
    provider: str | None = None


class ProviderSummary(BaseModel):
    """
    Serializable summary of a live provider.

    Attributes:
        name: Unique provider name
        provider_kind: Transport kind of the provider
        tool_names: Names of the tools the provider exposes, in order
        alive: Whether the transport is still usable
        details: Transport-specific info (command, base URL, ...)
    """

    model_config = ConfigDict(frozen=True)

    name: str
    provider_kind: ProviderKind
    tool_names: list[str] = Field(default_factory=list)
    alive: bool = True
    details: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Provider Configuration
# =============================================================================


class StdioProviderConfig(BaseModel):
    """
    A provider launched as a child process speaking MCP over stdio.

    Attributes:
        command: Executable to launch
        args: Arguments for the executable
        env: Extra environment variables (merged over the current env)
        cwd: Working directory for the child
        namespace: Optional prefix for exposed tool names
        handshake_timeout_seconds: Limit for initialize + tools/list
        call_timeout_seconds: Default limit for a single tool call
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["stdio"] = "stdio"
    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None
    cwd: str | None = None
    namespace: str | None = None
    handshake_timeout_seconds: float = Field(default=30.0, gt=0)
    call_timeout_seconds: float = Field(default=60.0, gt=0)


class HttpProviderConfig(BaseModel):
    """
    A provider reached through an HTTP bridge.

    The bridge cannot be asked what it offers, so the tool catalog is agreed
    out-of-band: ``tools`` lists it explicitly, and leaving it unset selects
    the default bridge catalog.

    Attributes:
        base_url: Root URL of the bridge
        tools: Static tool catalog (None = default bridge catalog)
        namespace: Optional prefix for exposed tool names
        health_path: Path of the liveness endpoint
        timeout_seconds: Limit for a single tool call
        health_timeout_seconds: Limit for the liveness check
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["http"] = "http"
    base_url: str = Field(..., min_length=1)
    tools: list[ToolSpec] | None = None
    namespace: str | None = None
    health_path: str = "/health"
    timeout_seconds: float = Field(default=30.0, gt=0)
    health_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            msg = f"base_url must start with http:// or https://: {v}"
            raise ValueError(msg)
        return v.rstrip("/")


ProviderConfig = Annotated[
    StdioProviderConfig | HttpProviderConfig,
    Field(discriminator="type"),
]

_provider_config_adapter: TypeAdapter[StdioProviderConfig | HttpProviderConfig] = TypeAdapter(ProviderConfig)


def _with_default_type(data: Any) -> Any:
    if isinstance(data, dict) and "type" not in data:
        return {**data, "type": "stdio"}
    return data


def parse_provider_config(data: Any) -> StdioProviderConfig | HttpProviderConfig:
    """
    Validate a provider config mapping.

    Mappings without a ``type`` key are stdio providers. Already-validated
    config objects are returned unchanged.

    Raises:
        ValidationError: If the mapping doesn't match either config model
    """
    if isinstance(data, (StdioProviderConfig, HttpProviderConfig)):
        return data
    return _provider_config_adapter.validate_python(_with_default_type(data))


# =============================================================================
# Dynamic Tool Settings
# =============================================================================

# Pure computation modules; nothing here reaches the filesystem or network,
# or looks attributes up by name (operator.attrgetter, string.Formatter)
DEFAULT_ALLOWED_MODULES = [
    "math",
    "cmath",
    "statistics",
    "decimal",
    "fractions",
    "json",
    "re",
    "datetime",
    "itertools",
    "functools",
    "collections",
]


class DynamicToolSettings(BaseModel):
    """
    Limits applied to tools compiled from user-supplied code.

    Attributes:
        timeout_seconds: Wall-clock limit per invocation
        memory_limit_mb: Address-space limit of the sandbox process (POSIX)
        allowed_modules: Modules the tool code may import
        enable_tool_creator: Expose the tool-creator meta-tool at startup
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = Field(default=10.0, gt=0)
    memory_limit_mb: int = Field(default=256, ge=16)
    allowed_modules: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MODULES))
    enable_tool_creator: bool = False


# =============================================================================
# Top-level Configuration
# =============================================================================


class ToolmuxConfig(BaseModel):
    """
    The toolmux configuration file.

    Attributes:
        providers: Provider name -> provider config, added in file order
        dynamic_tools: Sandbox settings for dynamic tools
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    dynamic_tools: DynamicToolSettings = Field(default_factory=DynamicToolSettings)

    @field_validator("providers", mode="before")
    @classmethod
    def default_provider_type(cls, v: Any) -> Any:
        """Providers without an explicit type are stdio providers."""
        if isinstance(v, dict):
            return {name: _with_default_type(entry) for name, entry in v.items()}
        return v


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_config(path: Path | str) -> ToolmuxConfig:
    """
    Load the configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated ToolmuxConfig

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid
    """
    path = Path(path)
    try:
        with path.open() as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(path=str(path), detail=str(e)) from e

    return load_config_from_string(content, source=str(path))


def load_config_from_string(content: str, source: str = "<string>") -> ToolmuxConfig:
    """Load the configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(path=source, detail=f"invalid YAML: {e}") from e

    try:
        return ToolmuxConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(path=source, detail=str(e)) from e
