"""
Tools module for toolmux.

A Tool is a named, schema-described callable. Tools come from provider
adapters or from the dynamic tool compiler; the registry collects them into
the single namespace the agent calls into.

Architecture:
    - Tool: Immutable descriptor wrapping an invoke function
    - ToolRegistry: Derived name -> Tool mapping, rebuilt by the store
    - DynamicToolCompiler: Turns user-supplied code into sandboxed Tools
"""

from toolmux.tools.base import InvokeFn, Tool
from toolmux.tools.dynamic import DynamicToolCompiler, failure
from toolmux.tools.registry import RegistryDelta, ToolRegistry

__all__ = [
    "DynamicToolCompiler",
    "InvokeFn",
    "RegistryDelta",
    "Tool",
    "ToolRegistry",
    "failure",
]
