"""
Tools compiled at runtime from user-supplied code.

DynamicToolCompiler turns (name, description, parameter schema, code body)
into a Tool. The code body becomes the body of an ``async def`` whose
parameters are the schema's declared properties, in declared order:

    name="echo", properties={"msg": ...}, code="return msg"

    async def __tool__(msg):
        return msg

Security Note:
    Code that names an underscore attribute (``().__class__``), a dunder
    name (``__builtins__``) or a frame/code attribute (``gi_frame``,
    ``f_globals``) is rejected at compile time. The rest is never executed
    in the toolmux process. Every invocation starts a fresh isolated
    interpreter (``python -I``) with:
    - An empty environment and a throwaway working directory
    - A builtins allowlist (no open, eval, exec, compile, getattr)
    - Imports limited to DynamicToolSettings.allowed_modules, each seen
      without its private names and submodules
    - No new file descriptors (hard RLIMIT_NOFILE of 0), so no files,
      sockets or pipes; address-space and CPU hard limits (POSIX)
    - A wall-clock timeout after which the process is killed

Failures never escape: exceptions, timeouts, crashes and bad output all
become {"success": False, "errorMessage": "..."} results.
"""

import ast
import asyncio
import contextlib
import json
import keyword
import logging
import math
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from toolmux.errors import ToolDefinitionError
from toolmux.schema import (
    TOOL_NAME_PATTERN,
    DynamicToolSettings,
    ParameterSchema,
    ProviderKind,
)
from toolmux.tools.base import Tool

logger = logging.getLogger(__name__)

ENTRYPOINT = "__tool__"

RUNNER_SOURCE = (Path(__file__).parent / "_sandbox_runner.py").read_text()

# Public attributes of generators, coroutines, frames and tracebacks that
# lead back to interpreter internals
FORBIDDEN_ATTRIBUTES = frozenset({
    "gi_frame", "gi_code", "gi_yieldfrom",
    "cr_frame", "cr_code", "cr_await", "cr_origin",
    "ag_frame", "ag_code", "ag_await",
    "f_back", "f_builtins", "f_code", "f_globals", "f_locals",
    "tb_frame", "tb_next",
})


def failure(message: str) -> dict[str, Any]:
    """The structured result of a failed dynamic tool call."""
    return {"success": False, "errorMessage": message}


def find_forbidden_name(statements: list[ast.stmt]) -> str | None:
    """
    Return the first identifier in the statements that tool code may not use.

    Attribute names (including imported names and class-pattern keywords)
    may not start with an underscore or be in FORBIDDEN_ATTRIBUTES. Other
    identifiers (variables, definitions, arguments) may not be dunders.
    """
    for node in (child for statement in statements for child in ast.walk(statement)):
        attributes: list[str] = []
        names: list[str] = []
        if isinstance(node, ast.Attribute):
            attributes = [node.attr]
        elif isinstance(node, ast.MatchClass):
            attributes = list(node.kwd_attrs)
        elif isinstance(node, ast.alias):
            attributes = node.name.split(".")
            names = [node.asname or ""]
        elif isinstance(node, ast.Name):
            names = [node.id]
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names = [node.name]
        elif isinstance(node, ast.arg):
            names = [node.arg]
        elif isinstance(node, ast.keyword):
            names = [node.arg or ""]
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            names = list(node.names)

        for attribute in attributes:
            if attribute.startswith("_") or attribute in FORBIDDEN_ATTRIBUTES:
                return attribute
        for name in names:
            if name.startswith("__"):
                return name
    return None


def build_source(params: list[str], code: str) -> str:
    """Wrap a code body into the sandbox entrypoint function."""
    body = textwrap.indent(textwrap.dedent(code).strip("\n"), "    ") or "    pass"
    return f"async def {ENTRYPOINT}({', '.join(params)}):\n{body}\n"


class DynamicToolCompiler:
    """
    Compile user-authored code into sandboxed Tools.

    Usage:
        compiler = DynamicToolCompiler(DynamicToolSettings(timeout_seconds=5))
        tool = compiler.compile(
            "echo", "Echo a message",
            {"properties": {"msg": {"type": "string"}}, "required": ["msg"]},
            "return msg",
        )
        await tool.invoke({"msg": "hi"})  # -> "hi"
    """

    def __init__(self, settings: DynamicToolSettings | None = None) -> None:
        self.settings = settings or DynamicToolSettings()

    def compile(
        self,
        name: str,
        description: str,
        parameter_schema: ParameterSchema | dict[str, Any] | None,
        code: str,
    ) -> Tool:
        """
        Build a Tool from its definition.

        Args:
            name: Tool name
            description: Description shown to the LLM
            parameter_schema: JSON-schema object with ``properties``
            code: Body of the tool function; its return value is the result

        Returns:
            A Tool of kind LOCAL_DYNAMIC

        Raises:
            ToolDefinitionError: If the name, schema, or code is invalid
        """
        if not isinstance(name, str) or not TOOL_NAME_PATTERN.match(name):
            raise ToolDefinitionError(
                tool=str(name),
                detail="name must be 1-64 letters, digits, '_', '-' or '.'",
            )

        schema = self._validate_schema(name, parameter_schema)
        params = schema.parameter_names

        if not isinstance(code, str) or not code.strip():
            raise ToolDefinitionError(tool=name, detail="code must be a non-empty string")

        source = build_source(params, code)
        try:
            tree = ast.parse(source, f"<tool {name}>")
            compile(tree, f"<tool {name}>", "exec")
        except SyntaxError as e:
            raise ToolDefinitionError(tool=name, detail=f"syntax error: {e.msg} (line {e.lineno})") from e

        # Only the body: the generated entrypoint is itself a dunder
        forbidden = find_forbidden_name(tree.body[0].body)
        if forbidden is not None:
            raise ToolDefinitionError(tool=name, detail=f"use of '{forbidden}' is not allowed")

        async def _invoke(args: dict[str, Any], timeout: float | None = None) -> Any:
            return await self._run(name, source, params, args, timeout)

        logger.debug("Compiled dynamic tool %s(%s)", name, ", ".join(params))
        return Tool(
            name=name,
            description=description or "",
            parameter_schema=schema,
            provider_kind=ProviderKind.LOCAL_DYNAMIC,
            invoke_fn=_invoke,
        )

    def _validate_schema(
        self,
        name: str,
        parameter_schema: ParameterSchema | dict[str, Any] | None,
    ) -> ParameterSchema:
        if isinstance(parameter_schema, ParameterSchema):
            schema = parameter_schema
        else:
            try:
                schema = ParameterSchema.model_validate(parameter_schema or {})
            except ValidationError as e:
                raise ToolDefinitionError(tool=name, detail=f"invalid parameter schema: {e}") from e

        for param in schema.parameter_names:
            if not param.isidentifier() or keyword.iskeyword(param) or param.startswith("__"):
                raise ToolDefinitionError(
                    tool=name,
                    detail=f"parameter '{param}' is not a valid identifier",
                )
        unknown = [r for r in schema.required if r not in schema.properties]
        if unknown:
            raise ToolDefinitionError(
                tool=name,
                detail=f"required parameters not declared in properties: {unknown}",
            )
        return schema

    async def _run(
        self,
        name: str,
        source: str,
        params: list[str],
        args: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        settings = self.settings
        # A caller may shorten the wall-clock limit, never extend it
        limit = settings.timeout_seconds if timeout is None else min(timeout, settings.timeout_seconds)
        try:
            job = json.dumps({
                "source": source,
                "entrypoint": ENTRYPOINT,
                "params": params,
                "args": {p: args.get(p) for p in params},
                "allowed_modules": settings.allowed_modules,
                "memory_limit_mb": settings.memory_limit_mb,
                "cpu_seconds": max(1, math.ceil(settings.timeout_seconds)),
            })
        except (TypeError, ValueError) as e:
            return failure(f"arguments are not JSON serializable: {e}")

        with tempfile.TemporaryDirectory(prefix="toolmux-") as workdir:
            try:
                process = await asyncio.create_subprocess_exec(
                    sys.executable, "-I", "-c", RUNNER_SOURCE,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=workdir,
                    env={},
                )
            except OSError as e:
                logger.error("Could not start sandbox for tool %s: %s", name, e)
                return failure(f"could not start sandbox: {e}")

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(job.encode()),
                    timeout=limit,
                )
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
                logger.warning("Dynamic tool %s timed out after %ss", name, limit)
                return failure(f"Tool execution timed out after {limit}s")
            finally:
                if process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()

        try:
            reply = json.loads(stdout.decode() or "null")
        except (json.JSONDecodeError, UnicodeDecodeError):
            reply = None

        if not isinstance(reply, dict):
            detail = stderr.decode(errors="replace").strip().splitlines()
            message = detail[-1] if detail else f"sandbox exited with code {process.returncode}"
            logger.warning("Dynamic tool %s produced no result: %s", name, message)
            return failure(message)

        if not reply.get("ok"):
            logger.debug("Dynamic tool %s failed: %s", name, reply.get("error"))
            return failure(str(reply.get("error") or "unknown error"))

        return reply.get("value")
