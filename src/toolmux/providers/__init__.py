"""
Providers module for toolmux.

A provider is an independently running source of tools. Each transport has
an adapter that hides it behind the same four operations (bootstrap,
list_tools, call_tool, shutdown), and the ProviderStore owns every adapter.

Transports:
    - stdio: MCP over newline-delimited JSON-RPC with a child process
    - http: REST bridge with a health endpoint and a static tool catalog
"""

from toolmux.providers.base import ProviderAdapter
from toolmux.providers.http import DEFAULT_BRIDGE_CATALOG, HttpProviderAdapter
from toolmux.providers.stdio import StdioProviderAdapter
from toolmux.providers.store import (
    TOOL_CREATOR_NAME,
    AddProviderResult,
    ProviderStore,
    default_adapter_factory,
)

__all__ = [
    "DEFAULT_BRIDGE_CATALOG",
    "TOOL_CREATOR_NAME",
    "AddProviderResult",
    "HttpProviderAdapter",
    "ProviderAdapter",
    "ProviderStore",
    "StdioProviderAdapter",
    "default_adapter_factory",
]
