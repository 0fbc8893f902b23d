"""
toolmux - Tool-provider orchestration for conversational agents.

toolmux gathers the tools an agent may call from independently running
providers and exposes them under one namespace:
- Stdio providers: MCP servers launched as child processes
- HTTP providers: bridges that wrap command-line utilities
- Dynamic tools: small functions defined at runtime, run in a sandbox

Providers come and go at runtime; every change is published as a registry
delta so chat UIs and planners stay in sync.

Example usage:
    $ toolmux tools --config toolmux.yaml
    $ toolmux call get_forecast --args '{"city": "Oslo"}'
"""

__version__ = "0.1.0"
__author__ = "toolmux Contributors"

__all__ = [
    "__version__",
    "__author__",
]
