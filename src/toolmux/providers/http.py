"""
HTTP bridge provider adapter.

Talks to a bridge that wraps command-line utilities behind a small REST
surface:

    GET  {base_url}/health          -> 2xx when the bridge is up
    POST {base_url}/tools/{name}    -> {"success": true, "data": ..., "stdout": ...}
                                       {"success": false, "error": "..."}

The bridge cannot be asked which tools it serves, so the catalog is static:
supplied in the provider config, or DEFAULT_BRIDGE_CATALOG.

Result Normalization:
    Every call resolves to a value the agent can read; nothing raises.
    - success with structured data -> the data, as-is
    - success with flat data       -> text (data, else stdout)
    - success: false               -> "Error: <message>"
    - non-2xx or network failure   -> "Error: <description>"
"""

import asyncio
import logging
from typing import Any

import httpx

from toolmux.errors import ProviderUnavailableError
from toolmux.providers.base import ProviderAdapter
from toolmux.schema import HttpProviderConfig, ProviderKind, ToolSpec

logger = logging.getLogger(__name__)


# Tools served by the docker/kubectl/GitHub bridge; argument semantics are
# owned by the bridge and passed through untouched
DEFAULT_BRIDGE_CATALOG: list[dict[str, Any]] = [
    {
        "name": "docker",
        "description": "Execute Docker CLI commands",
        "inputSchema": {
            "type": "object",
            "properties": {
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Arguments to pass to the Docker command",
                },
            },
            "required": ["args"],
        },
    },
    {
        "name": "kubectl_get",
        "description": "Get or list Kubernetes resources",
        "inputSchema": {
            "type": "object",
            "properties": {
                "resourceType": {
                    "type": "string",
                    "description": "Type of resource to get (e.g., pods, deployments, services)",
                },
                "name": {"type": "string", "description": "Name of the resource (optional)"},
                "namespace": {
                    "type": "string",
                    "default": "default",
                    "description": "Namespace of the resource",
                },
            },
            "required": ["resourceType", "name", "namespace"],
        },
    },
    {
        "name": "kubectl_describe",
        "description": "Describe Kubernetes resources",
        "inputSchema": {
            "type": "object",
            "properties": {
                "resourceType": {"type": "string", "description": "Type of resource to describe"},
                "name": {"type": "string", "description": "Name of the resource to describe"},
                "namespace": {"type": "string", "default": "default"},
            },
            "required": ["resourceType", "name"],
        },
    },
    {
        "name": "get_file_contents",
        "description": "Get contents of a file from GitHub repository",
        "inputSchema": {
            "type": "object",
            "properties": {
                "owner": {"type": "string", "description": "Repository owner"},
                "repo": {"type": "string", "description": "Repository name"},
                "path": {"type": "string", "description": "Path to file/directory"},
                "branch": {"type": "string", "description": "Branch to get contents from"},
            },
            "required": ["owner", "repo", "path"],
        },
    },
    {
        "name": "create_or_update_file",
        "description": "Create or update a file in GitHub repository",
        "inputSchema": {
            "type": "object",
            "properties": {
                "owner": {"type": "string", "description": "Repository owner"},
                "repo": {"type": "string", "description": "Repository name"},
                "path": {"type": "string", "description": "Path where to create/update the file"},
                "content": {"type": "string", "description": "Content of the file"},
                "message": {"type": "string", "description": "Commit message"},
                "branch": {"type": "string", "description": "Branch to create/update the file in"},
            },
            "required": ["owner", "repo", "path", "content", "message", "branch"],
        },
    },
    {
        "name": "list_pull_requests",
        "description": "List pull requests in a GitHub repository",
        "inputSchema": {
            "type": "object",
            "properties": {
                "owner": {"type": "string", "description": "Repository owner"},
                "repo": {"type": "string", "description": "Repository name"},
                "state": {
                    "type": "string",
                    "enum": ["open", "closed", "all"],
                    "description": "Filter by state",
                },
            },
            "required": ["owner", "repo"],
        },
    },
]


def normalize_bridge_result(payload: Any) -> Any:
    """Turn a bridge response body into the value handed to the agent."""
    if not isinstance(payload, dict) or "success" not in payload:
        # Not the bridge envelope; forward whatever came back
        return payload

    if not payload.get("success"):
        return f"Error: {payload.get('error') or 'Unknown error from MCP bridge'}"

    data = payload.get("data")
    if isinstance(data, (dict, list)):
        return data
    if data not in (None, ""):
        return str(data)
    return str(payload.get("stdout") or "")


class HttpProviderAdapter(ProviderAdapter):
    """
    Provider adapter for an HTTP bridge.

    Usage:
        adapter = HttpProviderAdapter("docker-mcp", "http://localhost:3001")
        await adapter.bootstrap()
        output = await adapter.call_tool("docker", {"args": ["ps"]})
        await adapter.shutdown()

    Attributes:
        base_url: Root URL of the bridge, without trailing slash
        catalog: The static tool catalog
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        catalog: list[ToolSpec] | None = None,
        namespace: str | None = None,
        health_path: str = "/health",
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            name: Unique provider name
            base_url: Root URL of the bridge
            catalog: Static tool catalog (None = DEFAULT_BRIDGE_CATALOG)
            namespace: Optional prefix for exposed tool names
            health_path: Path of the liveness endpoint
            timeout: Default per-call limit in seconds
            health_timeout: Limit for the liveness check in seconds
            client: Pre-built client (tests inject one with a mock transport);
                    the adapter only closes clients it created itself
        """
        super().__init__(name, namespace)
        self.base_url = base_url.rstrip("/")
        if catalog is None:
            catalog = [ToolSpec.model_validate(t) for t in DEFAULT_BRIDGE_CATALOG]
        self.catalog = catalog
        self.health_path = health_path
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.health_status: Any = None

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._closed = False

    @classmethod
    def from_config(
        cls,
        name: str,
        config: HttpProviderConfig,
        client: httpx.AsyncClient | None = None,
    ) -> "HttpProviderAdapter":
        return cls(
            name,
            config.base_url,
            catalog=config.tools,
            namespace=config.namespace,
            health_path=config.health_path,
            timeout=config.timeout_seconds,
            health_timeout=config.health_timeout_seconds,
            client=client,
        )

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.HTTP

    @property
    def alive(self) -> bool:
        return not self._closed

    async def bootstrap(self) -> None:
        url = f"{self.base_url}{self.health_path}"
        try:
            response = await self._client.get(url, timeout=self.health_timeout)
        except asyncio.CancelledError:
            await asyncio.shield(self.shutdown())
            raise
        except httpx.HTTPError as e:
            await self.shutdown()
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"health check {url} failed: {e.__class__.__name__}: {e}",
            ) from e

        if not response.is_success:
            await self.shutdown()
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"health check {url} returned HTTP {response.status_code}",
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text
        self.health_status = body.get("status") if isinstance(body, dict) else body
        logger.info("Connected to HTTP bridge %s at %s: %s", self.name, self.base_url, self.health_status)

        self._tools = self._build_tools(self.catalog)

    async def call_tool(
        self,
        name: str,
        args: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """
        POST the arguments to the bridge.

        Returns:
            The normalized result, or an "Error: ..." string. Never raises
            for transport or provider failures.
        """
        if self._closed:
            return f"Error: provider {self.name} is shut down"

        timeout = self.timeout if timeout is None else timeout
        url = f"{self.base_url}/tools/{name}"
        logger.debug("Calling HTTP bridge tool %s on %s", name, self.name)
        try:
            response = await self._client.post(url, json=args, timeout=timeout)
        except httpx.TimeoutException:
            logger.warning("HTTP bridge tool %s on %s timed out", name, self.name)
            return f"Error: request to {name} timed out after {timeout}s"
        except httpx.HTTPError as e:
            logger.warning("HTTP bridge tool %s on %s failed: %s", name, self.name, e)
            return f"Error: {e.__class__.__name__}: {e}"

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.is_success:
            logger.warning("HTTP bridge tool %s on %s returned HTTP %s", name, self.name, response.status_code)
            if isinstance(payload, dict) and payload.get("error"):
                return f"Error: {payload['error']}"
            return f"Error: HTTP {response.status_code}: {response.reason_phrase}"

        if payload is None:
            return response.text
        return normalize_bridge_result(payload)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
        logger.info("HTTP provider %s shut down", self.name)

    def details(self) -> dict[str, Any]:
        return {"base_url": self.base_url, "health_status": self.health_status}
