"""
Base class for provider adapters.

An adapter is the store's uniform handle on one provider, whatever its
transport. The store and the registry depend only on this interface:

    bootstrap()  - start the transport and learn the tool catalog
    list_tools() - the catalog learned at bootstrap (never re-queried)
    call_tool()  - one round trip to the provider
    shutdown()   - release the transport; always safe to call

Lifecycle:
    constructed -> bootstrapped -> live -> shut down

An adapter whose bootstrap fails is discarded and never stored.
"""

from abc import ABC, abstractmethod
from typing import Any

from toolmux.schema import NAMESPACE_SEPARATOR, ProviderKind, ProviderSummary, ToolSpec
from toolmux.tools.base import Tool


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses must implement bootstrap(), call_tool(), shutdown() and the
    ``kind`` property. Tool objects are built once by _build_tools() so that
    every registry rebuild sees the same Tool instances.

    Attributes:
        name: Unique provider name
        namespace: Optional prefix for exposed tool names
    """

    def __init__(self, name: str, namespace: str | None = None) -> None:
        self.name = name
        self.namespace = namespace
        self._tools: list[Tool] = []

    @property
    @abstractmethod
    def kind(self) -> ProviderKind:
        """Transport kind of this provider."""
        ...

    @property
    def alive(self) -> bool:
        """Whether the transport can still serve calls."""
        return True

    @abstractmethod
    async def bootstrap(self) -> None:
        """
        Start the transport and learn the tool catalog.

        Raises:
            ProviderUnavailableError: If the provider cannot be reached
        """
        ...

    def list_tools(self) -> list[Tool]:
        """The tools advertised at bootstrap, in provider order."""
        return list(self._tools)

    @abstractmethod
    async def call_tool(
        self,
        name: str,
        args: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """
        Call a tool by its provider-side name.

        Args:
            name: Tool name as the provider knows it (no namespace)
            args: Tool arguments
            timeout: Per-call limit in seconds (None = adapter default)

        Returns:
            Textual or structured result
        """
        ...

    @abstractmethod
    async def shutdown(self) -> None:
        """Release the transport. Never raises if it is already gone."""
        ...

    def exposed_name(self, remote_name: str) -> str:
        """Registry name for a provider-side tool name."""
        if self.namespace:
            return f"{self.namespace}{NAMESPACE_SEPARATOR}{remote_name}"
        return remote_name

    def _build_tools(self, specs: list[ToolSpec]) -> list[Tool]:
        tools = []
        for spec in specs:
            # Bind the remote name now; the closure must not see later loop values
            async def _invoke(args: dict[str, Any], timeout: float | None = None, _remote: str = spec.name) -> Any:
                return await self.call_tool(_remote, args, timeout)

            tools.append(Tool(
                name=self.exposed_name(spec.name),
                description=spec.description,
                parameter_schema=spec.input_schema,
                provider_kind=self.kind,
                invoke_fn=_invoke,
                provider=self.name,
            ))
        return tools

    def details(self) -> dict[str, Any]:
        """Transport-specific info for summaries."""
        return {}

    def summary(self) -> ProviderSummary:
        """Serializable summary of this provider."""
        return ProviderSummary(
            name=self.name,
            provider_kind=self.kind,
            tool_names=[t.name for t in self._tools],
            alive=self.alive,
            details=self.details(),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.name}>"
