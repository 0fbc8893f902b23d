"""
ProviderStore: the owner of every live provider.

The store is the only component that mutates provider or tool state. Each
mutation (add/remove provider, add/remove dynamic tool) runs under one lock
and does the same three steps:

    1. Change the adapter set or the dynamic tool set
    2. Rebuild the ToolRegistry from scratch
    3. Publish the provider event, if any, then the tool deltas

so the registry is always a pure function of the current adapters' tool
lists and the current dynamic tools, and a subscriber that reads the store
while handling an event already sees the state that event describes.

Failure Isolation:
    - A provider that fails bootstrap is never stored; nothing changes
    - A provider that crashes stays listed (dead) until removed; other
      providers are unaffected
    - Shutdown errors are logged, never raised, and never stop other
      providers from shutting down

Usage:
    async with ProviderStore() as store:
        await store.add_provider("weather", {"command": "node", "args": ["server.js"]})
        result = await store.invoke("get_forecast", {"city": "Oslo"})
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from toolmux.errors import (
    DuplicateProviderError,
    ProviderUnavailableError,
    ToolmuxError,
)
from toolmux.events import EventBus, EventType, RegistryEvent
from toolmux.providers.base import ProviderAdapter
from toolmux.providers.http import HttpProviderAdapter
from toolmux.providers.stdio import StdioProviderAdapter
from toolmux.schema import (
    DynamicToolSettings,
    HttpProviderConfig,
    ParameterSchema,
    ProviderKind,
    ProviderSummary,
    StdioProviderConfig,
    ToolmuxConfig,
    ToolSummary,
    parse_provider_config,
)
from toolmux.tools.base import Tool
from toolmux.tools.dynamic import DynamicToolCompiler
from toolmux.tools.registry import RegistryDelta, ToolRegistry

logger = logging.getLogger(__name__)

TOOL_CREATOR_NAME = "tool-creator"

TOOL_CREATOR_SCHEMA = ParameterSchema(
    properties={
        "name": {
            "type": "string",
            "description": "The name of the new tool to create. If this name already exists, "
            "the previous tool will be overwritten.",
        },
        "description": {
            "type": "string",
            "description": "A description of the new tool to create",
        },
        "code": {
            "type": "string",
            "description": "A Python function body that runs when the tool is invoked. The "
            "declared parameters are available as local variables, and the value of its "
            "return statement is the output of the tool.",
        },
        "parameters": {
            "type": "object",
            "description": "A JSON-schema object describing the parameters the function accepts "
            "(the same shape as an MCP tool's inputSchema)",
        },
    },
    required=["name", "description", "code", "parameters"],
)

AdapterFactory = Callable[[str, StdioProviderConfig | HttpProviderConfig], ProviderAdapter]


def default_adapter_factory(
    name: str,
    config: StdioProviderConfig | HttpProviderConfig,
) -> ProviderAdapter:
    """Construct the adapter matching the config's transport kind."""
    if isinstance(config, HttpProviderConfig):
        return HttpProviderAdapter.from_config(name, config)
    return StdioProviderAdapter.from_config(name, config)


@dataclass(frozen=True)
class AddProviderResult:
    """
    Outcome of a successful add_provider.

    Attributes:
        provider: Summary of the new provider
        tool_count: Number of tools the new provider exposes
    """

    provider: ProviderSummary
    tool_count: int

    @property
    def name(self) -> str:
        return self.provider.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.model_dump(mode="json"),
            "tool_count": self.tool_count,
        }


class ProviderStore:
    """
    Owns provider adapters, dynamic tools, the tool registry and the event bus.

    Attributes:
        registry: The derived tool registry (read-only to everyone else)
        events: Bus on which registry deltas are published
        compiler: Compiler used for dynamic tools
    """

    def __init__(
        self,
        settings: DynamicToolSettings | None = None,
        events: EventBus | None = None,
        adapter_factory: AdapterFactory = default_adapter_factory,
    ) -> None:
        """
        Args:
            settings: Sandbox settings for dynamic tools
            events: Event bus to publish on (a new one by default)
            adapter_factory: Builds an adapter from a provider config
        """
        self.settings = settings or DynamicToolSettings()
        self.events = events or EventBus()
        self.registry = ToolRegistry()
        self.compiler = DynamicToolCompiler(self.settings)
        self._adapter_factory = adapter_factory
        self._adapters: dict[str, ProviderAdapter] = {}
        self._dynamic_tools: dict[str, Tool] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "ProviderStore":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown_all()

    # =========================================================================
    # Providers
    # =========================================================================

    async def add_provider(
        self,
        name: str,
        config: StdioProviderConfig | HttpProviderConfig | Mapping[str, Any],
    ) -> AddProviderResult:
        """
        Start a provider and expose its tools.

        Args:
            name: Unique provider name
            config: Provider config, or a mapping to validate as one

        Returns:
            AddProviderResult with the provider summary and its tool count

        Raises:
            DuplicateProviderError: If the name is already registered
            ProviderUnavailableError: If the provider fails to bootstrap or
                the config is invalid; the store is left unchanged
        """
        async with self._lock:
            if name in self._adapters:
                raise DuplicateProviderError(provider=name)

            try:
                provider_config = parse_provider_config(config)
            except ValidationError as e:
                raise ProviderUnavailableError(provider=name, reason=f"invalid config: {e}") from e

            adapter = self._adapter_factory(name, provider_config)
            try:
                await adapter.bootstrap()
            except ProviderUnavailableError:
                logger.error("Failed to add provider %s", name)
                raise
            except ToolmuxError as e:
                logger.error("Failed to add provider %s: %s", name, e.message)
                await self._shutdown_adapter(adapter)
                raise ProviderUnavailableError(provider=name, reason=e.message) from e
            except asyncio.CancelledError:
                logger.warning("Adding provider %s was cancelled", name)
                await asyncio.shield(self._shutdown_adapter(adapter))
                raise
            except Exception as e:
                logger.exception("Unexpected error bootstrapping provider %s", name)
                await self._shutdown_adapter(adapter)
                raise ProviderUnavailableError(provider=name, reason=f"{e.__class__.__name__}: {e}") from e

            self._adapters[name] = adapter
            summary = adapter.summary()
            logger.info("Added provider %s (%s) with %d tools", name, adapter.kind.value, len(summary.tool_names))

            delta = self._recompute()
            await self._publish(EventType.PROVIDER_ADDED, summary.model_dump(mode="json"))
            await self._publish_delta(delta)

        return AddProviderResult(provider=summary, tool_count=len(summary.tool_names))

    async def remove_provider(self, name: str) -> None:
        """
        Shut down and forget a provider. Removing an absent provider is a no-op.

        Shutdown errors are logged; the provider is removed regardless.
        """
        async with self._lock:
            adapter = self._adapters.pop(name, None)
            if adapter is None:
                logger.debug("remove_provider: %s is not registered", name)
                return

            delta = self._recompute()
            await self._shutdown_adapter(adapter)
            logger.info("Removed provider %s", name)

            await self._publish(EventType.PROVIDER_REMOVED, {
                "name": name,
                "provider_kind": adapter.kind.value,
            })
            await self._publish_delta(delta)

    async def shutdown_all(self) -> None:
        """
        Shut down every provider concurrently.

        Each shutdown is independent: one failure is logged and the others
        still complete. The store is empty afterwards; dynamic tools stay.
        """
        async with self._lock:
            adapters = list(self._adapters.values())
            self._adapters.clear()
            if not adapters:
                return

            delta = self._recompute()
            await asyncio.gather(*(self._shutdown_adapter(a) for a in adapters))
            logger.info("Shut down %d providers", len(adapters))

            for adapter in adapters:
                await self._publish(EventType.PROVIDER_REMOVED, {
                    "name": adapter.name,
                    "provider_kind": adapter.kind.value,
                })
            await self._publish_delta(delta)

    async def start(self, config: ToolmuxConfig) -> dict[str, str]:
        """
        Add every provider in a configuration, in file order.

        A provider that fails to start is logged and skipped so the others
        still come up.

        Returns:
            Provider name -> error message, for the providers that failed
        """
        failures: dict[str, str] = {}
        for name, provider_config in config.providers.items():
            try:
                await self.add_provider(name, provider_config)
            except ToolmuxError as e:
                logger.warning("Provider %s not available at startup: %s", name, e.message)
                failures[name] = e.message

        if config.dynamic_tools.enable_tool_creator:
            await self.enable_tool_creator()

        logger.info(
            "Initialized %d tools from %d providers",
            len(self.registry),
            len(self._adapters),
        )
        return failures

    def list_providers(self) -> list[ProviderSummary]:
        """Live providers, in add order."""
        return [adapter.summary() for adapter in self._adapters.values()]

    def get_provider_summary(self, name: str) -> ProviderSummary | None:
        adapter = self._adapters.get(name)
        return adapter.summary() if adapter else None

    def has_provider(self, name: str) -> bool:
        return name in self._adapters

    # =========================================================================
    # Tools
    # =========================================================================

    def list_tools(self) -> list[ToolSummary]:
        """Every tool the agent can call right now, in registry order."""
        return [tool.summary() for tool in self.registry]

    async def invoke(
        self,
        tool_name: str,
        args: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Invoke a tool by name.

        Args:
            tool_name: Registry name of the tool
            args: Tool arguments
            timeout: Per-call limit in seconds (None = the provider's default)

        Returns:
            The tool's textual or structured result

        Raises:
            UnknownToolError: If no tool with that name is registered
            ProviderCrashedError: If a stdio provider died mid-call
            ToolTimeoutError: If a stdio provider didn't answer in time
        """
        tool = self.registry.get(tool_name)
        logger.debug("Invoking %s (%s)", tool_name, tool.provider or tool.provider_kind.value)
        return await tool.invoke(args, timeout)

    async def add_dynamic_tool(
        self,
        name: str,
        description: str,
        parameter_schema: ParameterSchema | Mapping[str, Any] | None,
        code: str,
    ) -> Tool:
        """
        Compile and register a tool from user-supplied code.

        A dynamic tool replaces any provider tool or dynamic tool of the same name.

        Raises:
            ToolDefinitionError: If the definition cannot be compiled
        """
        schema = parameter_schema if isinstance(parameter_schema, ParameterSchema) else dict(parameter_schema or {})
        tool = self.compiler.compile(name, description, schema, code)
        await self._set_dynamic_tool(tool)
        return tool

    async def remove_dynamic_tool(self, name: str) -> None:
        """Remove a dynamic tool. Removing an absent tool is a no-op."""
        async with self._lock:
            if self._dynamic_tools.pop(name, None) is None:
                return
            logger.info("Removed dynamic tool %s", name)
            await self._publish_delta(self._recompute())

    def list_dynamic_tools(self) -> list[Tool]:
        return list(self._dynamic_tools.values())

    async def enable_tool_creator(self) -> Tool:
        """
        Expose the tool-creator meta-tool.

        The agent calls it with {name, description, code, parameters} to
        define new dynamic tools during a conversation.
        """
        async def _create(args: dict[str, Any], timeout: float | None = None) -> str:
            try:
                await self.add_dynamic_tool(
                    str(args.get("name") or ""),
                    str(args.get("description") or ""),
                    args.get("parameters") or {},
                    str(args.get("code") or ""),
                )
            except ToolmuxError as e:
                return f"Error: {e.message}"
            return "Tool created"

        tool = Tool(
            name=TOOL_CREATOR_NAME,
            description="Use this tool to create a new tool when you need additional information",
            parameter_schema=TOOL_CREATOR_SCHEMA,
            provider_kind=ProviderKind.LOCAL_DYNAMIC,
            invoke_fn=_create,
        )
        await self._set_dynamic_tool(tool)
        return tool

    async def disable_tool_creator(self) -> None:
        await self.remove_dynamic_tool(TOOL_CREATOR_NAME)

    # =========================================================================
    # State
    # =========================================================================

    def status(self) -> dict[str, Any]:
        """Counts for health endpoints."""
        return {
            "providers": len(self._adapters),
            "dead_providers": sum(1 for a in self._adapters.values() if not a.alive),
            "tools": len(self.registry),
            "dynamic_tools": len(self._dynamic_tools),
        }

    def snapshot(self) -> dict[str, Any]:
        """
        Full current state for a freshly connected subscriber.

        The event stream only carries deltas, so a new listener pulls this
        first and applies events from then on.
        """
        return {
            "providers": [p.model_dump(mode="json") for p in self.list_providers()],
            "tools": [t.model_dump(mode="json") for t in self.list_tools()],
        }

    # =========================================================================
    # Internals
    # =========================================================================

    async def _set_dynamic_tool(self, tool: Tool) -> None:
        async with self._lock:
            # Re-adding moves the tool to the end of the overlay
            self._dynamic_tools.pop(tool.name, None)
            self._dynamic_tools[tool.name] = tool
            logger.info("Registered dynamic tool %s", tool.name)
            await self._publish_delta(self._recompute())

    def _recompute(self) -> RegistryDelta:
        delta = self.registry.rebuild(
            (adapter.list_tools() for adapter in self._adapters.values()),
            self._dynamic_tools.values(),
        )
        if not delta.empty:
            logger.debug(
                "Registry rebuilt: %d tools (+%d, -%d)",
                len(self.registry),
                len(delta.added),
                len(delta.removed),
            )
        return delta

    async def _publish_delta(self, delta: RegistryDelta) -> None:
        for tool in delta.removed:
            await self._publish(EventType.TOOL_REMOVED, tool.to_dict())
        for tool in delta.added:
            await self._publish(EventType.TOOL_ADDED, tool.to_dict())

    async def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        await self.events.publish(RegistryEvent(type=event_type, payload=payload))

    async def _shutdown_adapter(self, adapter: ProviderAdapter) -> None:
        try:
            await adapter.shutdown()
        except Exception:
            logger.exception("Error shutting down provider %s", adapter.name)
