"""
Stdio provider adapter.

Talks MCP to a child process: newline-delimited JSON-RPC 2.0 on the child's
stdin/stdout, one message per line. The child's stderr is drained into the
debug log.

Bootstrap sequence:
    1. Spawn the process
    2. ``initialize`` request, then ``notifications/initialized``
    3. ``tools/list`` (following ``nextCursor`` pages); cached for the
       adapter's lifetime

Concurrency:
    A single background reader owns stdout and resolves each response by its
    id, so any number of calls may be in flight and the provider may answer
    them in any order. A response whose caller already gave up (timeout) is
    logged and discarded. When stdout reaches EOF every in-flight call fails
    with ProviderCrashedError; the adapter stays dead and is never respawned.
"""

import asyncio
import collections
import contextlib
import itertools
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from toolmux import __version__
from toolmux.errors import (
    ProviderCrashedError,
    ProviderProtocolError,
    ProviderUnavailableError,
    ToolTimeoutError,
)
from toolmux.providers.base import ProviderAdapter
from toolmux.schema import ProviderKind, StdioProviderConfig, ToolSpec

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "toolmux", "version": __version__}

# Max bytes per stdout line
STREAM_LIMIT = 16 * 1024 * 1024

# Seconds to wait at each shutdown stage (stdin closed, SIGTERM) before escalating
STDIN_CLOSE_GRACE_SECONDS = 2.0
TERMINATE_GRACE_SECONDS = 3.0
EXIT_STATUS_WAIT_SECONDS = 1.0

STDERR_TAIL_LINES = 20


# =============================================================================
# JSON-RPC Framing
# =============================================================================


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request, or a notification when id is None."""

    method: str
    params: dict[str, Any] | None = None
    id: int | None = None

    def to_line(self) -> bytes:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        if self.id is not None:
            message["id"] = self.id
        return (json.dumps(message) + "\n").encode()


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""

    id: int | str | None
    result: Any = None
    error: dict[str, Any] | None = None

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "JsonRpcResponse":
        error = message.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"message": str(error)}
        return cls(id=message.get("id"), result=message.get("result"), error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        return str(self.error.get("message") or self.error)


def normalize_call_result(result: Any) -> Any:
    """
    Flatten an MCP ``tools/call`` result for the agent.

    - Text-only content is joined into one string
    - ``isError`` results become an "Error: ..." string
    - Anything else (images, resources, non-MCP shapes) is forwarded as-is
    """
    if not isinstance(result, dict):
        return result

    content = result.get("content")
    texts: list[str] = []
    if isinstance(content, list):
        texts = [
            str(block.get("text", ""))
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]

    if result.get("isError"):
        return "Error: " + ("\n".join(texts) or "tool reported an error")
    if isinstance(content, list) and content and len(texts) == len(content):
        return "\n".join(texts)
    return result


# =============================================================================
# Adapter
# =============================================================================


class StdioProviderAdapter(ProviderAdapter):
    """
    Provider adapter for an MCP server running as a child process.

    Usage:
        adapter = StdioProviderAdapter("weather", "node", ["server.js"])
        await adapter.bootstrap()
        result = await adapter.call_tool("get_forecast", {"city": "Oslo"})
        await adapter.shutdown()
    """

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        namespace: str | None = None,
        handshake_timeout: float = 30.0,
        call_timeout: float = 60.0,
    ) -> None:
        super().__init__(name, namespace)
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.cwd = cwd
        self.handshake_timeout = handshake_timeout
        self.call_timeout = call_timeout

        self.server_info: dict[str, Any] = {}
        self._process: asyncio.subprocess.Process | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[JsonRpcResponse]] = {}
        self._write_lock = asyncio.Lock()
        self._reader: asyncio.Task[None] | None = None
        self._stderr_reader: asyncio.Task[None] | None = None
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        self._replies: set[asyncio.Task[None]] = set()
        self._closing = False
        self._dead = False
        self._exit_code: int | None = None

    @classmethod
    def from_config(cls, name: str, config: StdioProviderConfig) -> "StdioProviderAdapter":
        return cls(
            name,
            config.command,
            config.args,
            env=config.env,
            cwd=config.cwd,
            namespace=config.namespace,
            handshake_timeout=config.handshake_timeout_seconds,
            call_timeout=config.call_timeout_seconds,
        )

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.STDIO

    @property
    def alive(self) -> bool:
        return self._process is not None and not self._dead

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def in_flight(self) -> int:
        """Number of requests waiting for a response."""
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def bootstrap(self) -> None:
        env = {**os.environ, **self.env} if self.env else None
        logger.info("Starting stdio provider %s: %s %s", self.name, self.command, " ".join(self.args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.cwd,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"could not start '{self.command}': {e}",
            ) from e

        self._reader = asyncio.create_task(self._read_stdout())
        self._stderr_reader = asyncio.create_task(self._read_stderr())

        try:
            await asyncio.wait_for(self._handshake(), self.handshake_timeout)
        except asyncio.TimeoutError as e:
            await self.shutdown()
            raise ProviderUnavailableError(
                provider=self.name,
                reason=f"handshake timed out after {self.handshake_timeout}s",
            ) from e
        except (ProviderCrashedError, ProviderProtocolError) as e:
            await self.shutdown()
            reason = e.message
            if self._stderr_tail:
                reason += f" (stderr: {self._stderr_tail[-1]})"
            raise ProviderUnavailableError(provider=self.name, reason=reason) from e
        except asyncio.CancelledError:
            await asyncio.shield(self.shutdown())
            raise

        logger.info(
            "Provider %s ready: %d tools (%s)",
            self.name,
            len(self._tools),
            ", ".join(t.name for t in self._tools),
        )

    async def _handshake(self) -> None:
        init = await self._request("initialize", {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        })
        if init.is_error:
            raise ProviderProtocolError(provider=self.name, detail=f"initialize failed: {init.error_message}")
        if isinstance(init.result, dict):
            self.server_info = dict(init.result.get("serverInfo") or {})

        await self._send(JsonRpcRequest("notifications/initialized"))

        specs: list[ToolSpec] = []
        cursor: str | None = None
        while True:
            listed = await self._request("tools/list", {"cursor": cursor} if cursor else {})
            if listed.is_error:
                raise ProviderProtocolError(provider=self.name, detail=f"tools/list failed: {listed.error_message}")
            result = listed.result if isinstance(listed.result, dict) else {}
            try:
                specs.extend(ToolSpec.model_validate(t) for t in result.get("tools") or [])
            except ValidationError as e:
                raise ProviderProtocolError(provider=self.name, detail=f"invalid tool in tools/list: {e}") from e
            cursor = result.get("nextCursor")
            if not cursor:
                break

        self._tools = self._build_tools(specs)

    async def shutdown(self) -> None:
        process = self._process
        if process is None or self._closing:
            return
        self._closing = True

        if process.returncode is None:
            with contextlib.suppress(OSError, RuntimeError):
                process.stdin.close()
            if not await self._wait_exit(process, STDIN_CLOSE_GRACE_SECONDS):
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                if not await self._wait_exit(process, TERMINATE_GRACE_SECONDS):
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()

        for task in (self._reader, self._stderr_reader):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._mark_dead(process.returncode)
        logger.info("Provider %s shut down (exit code %s)", self.name, process.returncode)

    @staticmethod
    async def _wait_exit(process: asyncio.subprocess.Process, timeout: float) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        args: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """
        Call a tool on the provider.

        Returns:
            The normalized result; provider-reported failures are returned
            as "Error: ..." strings

        Raises:
            ProviderCrashedError: If the process died before answering
            ToolTimeoutError: If no response arrived within the timeout
        """
        timeout = self.call_timeout if timeout is None else timeout
        try:
            response = await self._request("tools/call", {"name": name, "arguments": args}, timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Call to %s on provider %s timed out after %ss", name, self.name, timeout)
            raise ToolTimeoutError(
                tool=self.exposed_name(name),
                provider=self.name,
                timeout_seconds=timeout,
            ) from e

        if response.is_error:
            logger.debug("Provider %s returned error for %s: %s", self.name, name, response.error_message)
            return f"Error: {response.error_message}"
        return normalize_call_result(response.result)

    async def _request(
        self,
        method: str,
        params: dict[str, Any],
        timeout: float | None = None,
    ) -> JsonRpcResponse:
        if self._dead or self._process is None:
            raise ProviderCrashedError(provider=self.name, exit_code=self._exit_code)

        request_id = next(self._ids)
        future: asyncio.Future[JsonRpcResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(JsonRpcRequest(method, params, request_id))
            return await asyncio.wait_for(future, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def _send(self, message: JsonRpcRequest) -> None:
        if self._process is None or self._process.stdin is None:
            raise ProviderCrashedError(provider=self.name, exit_code=self._exit_code)
        async with self._write_lock:
            try:
                self._process.stdin.write(message.to_line())
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ProviderCrashedError(provider=self.name, exit_code=self._process.returncode) from e

    async def _reply(self, request_id: Any, result: Any = None, error: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
        if error is not None:
            message["error"] = error
        else:
            message["result"] = result if result is not None else {}
        async with self._write_lock:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                self._process.stdin.write((json.dumps(message) + "\n").encode())
                await self._process.stdin.drain()

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    async def _read_stdout(self) -> None:
        process = self._process
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                self._dispatch(line)
        except ValueError as e:
            logger.error("Provider %s sent a line over %d bytes: %s", self.name, STREAM_LIMIT, e)

        if not self._closing:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(process.wait(), EXIT_STATUS_WAIT_SECONDS)
            logger.error(
                "Provider %s exited unexpectedly (exit code %s) with %d calls in flight",
                self.name,
                process.returncode,
                len(self._pending),
            )
        self._mark_dead(process.returncode)

    async def _read_stderr(self) -> None:
        while True:
            line = await self._process.stderr.readline()
            if not line:
                return
            text = line.decode(errors="replace").rstrip()
            self._stderr_tail.append(text)
            logger.debug("[%s] %s", self.name, text)

    def _dispatch(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Provider %s wrote non-JSON output: %r", self.name, line[:200])
            return
        if not isinstance(message, dict):
            return

        method = message.get("method")
        if method is not None:
            if "id" in message:
                # Server-to-client request; ping is the only one we serve
                if method == "ping":
                    reply = self._reply(message["id"])
                else:
                    reply = self._reply(
                        message["id"],
                        error={"code": -32601, "message": f"Method not found: {method}"},
                    )
                task = asyncio.create_task(reply)
                self._replies.add(task)
                task.add_done_callback(self._replies.discard)
            else:
                logger.debug("Provider %s notification: %s", self.name, method)
            return

        response = JsonRpcResponse.from_message(message)
        future = self._pending.get(response.id) if isinstance(response.id, int) else None
        if future is None or future.done():
            logger.warning("Discarding orphaned response id=%s from provider %s", response.id, self.name)
            return
        future.set_result(response)

    def _mark_dead(self, exit_code: int | None) -> None:
        self._dead = True
        self._exit_code = exit_code
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ProviderCrashedError(provider=self.name, exit_code=exit_code))

    def details(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "args": self.args,
            "pid": self.pid,
            "server_info": self.server_info,
            "exit_code": self._exit_code,
        }
