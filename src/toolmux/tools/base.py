"""
The Tool descriptor.

A Tool is an immutable record of everything the agent needs to call a
capability: its name, a description for the LLM, the parameter schema, the
kind of provider behind it, and the function that performs the call.

Design Principles:
    - Tools are values - the registry can be rebuilt from them at any time
    - Tools don't know about transports - the invoke function closes over
      whatever adapter or sandbox actually does the work
    - Tools return values for application-level failures; only transport
      faults (crash, timeout) raise
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from toolmux.schema import ParameterSchema, ProviderKind, ToolSummary

InvokeFn = Callable[[dict[str, Any], float | None], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    """
    A named, schema-described callable capability.

    Attributes:
        name: Unique name in the registry
        description: Human-readable description shown to the LLM
        parameter_schema: JSON-schema of the accepted arguments
        provider_kind: Which kind of provider serves this tool
        invoke_fn: Coroutine function performing the call
        provider: Name of the owning provider (None for dynamic tools)

    Example:
        async def _echo(args, timeout):
            return args.get("msg")

        tool = Tool(
            name="echo",
            description="Echo a message",
            parameter_schema=ParameterSchema(properties={"msg": {"type": "string"}}),
            provider_kind=ProviderKind.LOCAL_DYNAMIC,
            invoke_fn=_echo,
        )
        result = await tool.invoke({"msg": "hi"})
    """

    name: str
    description: str
    parameter_schema: ParameterSchema
    provider_kind: ProviderKind
    invoke_fn: InvokeFn = field(repr=False, compare=False)
    provider: str | None = None

    async def invoke(self, args: Mapping[str, Any] | None = None, timeout: float | None = None) -> Any:
        """
        Call the tool.

        Args:
            args: Argument mapping (None is treated as no arguments)
            timeout: Per-call limit in seconds (None = the provider's default)

        Returns:
            The tool's textual or structured result
        """
        return await self.invoke_fn(dict(args or {}), timeout)

    def summary(self) -> ToolSummary:
        """Serializable summary of this tool."""
        return ToolSummary(
            name=self.name,
            description=self.description,
            parameter_schema=self.parameter_schema.to_json_schema(),
            provider_kind=self.provider_kind,
            provider=self.provider,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.summary().model_dump(mode="json")

    def __repr__(self) -> str:
        """String representation of the tool."""
        return f"<Tool: {self.name} ({self.provider_kind.value})>"
