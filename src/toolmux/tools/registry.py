"""
Tool registry for toolmux.

The registry is the answer to "what can the agent call right now". It is
derived state: the store rebuilds it from scratch whenever providers or
dynamic tools change, so it can never drift from the adapters.

Rebuild order:
    1. Every live provider's tools, in provider-add order
    2. Dynamic tools, last

A later entry overwrites an earlier one with the same name, so the most
recently added provider wins, and dynamic tools win over everything.

Usage:
    registry = ToolRegistry()
    delta = registry.rebuild([provider_a_tools, provider_b_tools], dynamic_tools)
    tool = registry.get("echo")
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from toolmux.errors import UnknownToolError
from toolmux.tools.base import Tool


@dataclass
class RegistryDelta:
    """
    Difference between two registry states.

    Attributes:
        added: Tools that are new, or now served by a different Tool object
        removed: Tools that are no longer present
    """

    added: list[Tool] = field(default_factory=list)
    removed: list[Tool] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.added and not self.removed


class ToolRegistry:
    """
    Mapping from tool name to Tool.

    Only the store mutates the registry, through rebuild(). Everything else
    reads it.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, Tool] = {}

    def rebuild(
        self,
        tool_lists: Iterable[Iterable[Tool]],
        dynamic_tools: Iterable[Tool] = (),
    ) -> RegistryDelta:
        """
        Replace the registry contents.

        Args:
            tool_lists: Each live provider's tools, in provider-add order
            dynamic_tools: Dynamically created tools, overlaid last

        Returns:
            RegistryDelta describing what changed
        """
        rebuilt: dict[str, Tool] = {}
        for tools in tool_lists:
            for tool in tools:
                # Re-insert so the overriding tool takes the later position
                rebuilt.pop(tool.name, None)
                rebuilt[tool.name] = tool
        for tool in dynamic_tools:
            rebuilt.pop(tool.name, None)
            rebuilt[tool.name] = tool

        previous = self._tools
        delta = RegistryDelta(
            added=[t for name, t in rebuilt.items() if previous.get(name) is not t],
            removed=[t for name, t in previous.items() if name not in rebuilt],
        )
        self._tools = rebuilt
        return delta

    def get(self, name: str) -> Tool:
        """
        Look up a tool by name.

        Raises:
            UnknownToolError: If no tool with that name is registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(tool=name)
        return tool

    def get_optional(self, name: str) -> Tool | None:
        """Look up a tool by name, returning None if not found."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """All registered tools, in registry order."""
        return list(self._tools.values())

    def names(self) -> list[str]:
        """All registered tool names, in registry order."""
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        """String representation of the registry."""
        return f"<ToolRegistry: [{', '.join(self._tools)}]>"
