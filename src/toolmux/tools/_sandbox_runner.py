"""
Entry point of the dynamic tool sandbox process.

This file is not imported by toolmux. Its source is handed to a fresh
``python -I -c`` interpreter, which reads one JSON job from stdin and writes
one JSON reply to stdout:

    job:   {"source", "entrypoint", "params", "args", "allowed_modules",
            "memory_limit_mb", "cpu_seconds"}
    reply: {"ok": true, "value": ...} | {"ok": false, "error": "..."}

Allowed modules are imported and the event loop is created before the
limits are applied. After that the process cannot open any new file
descriptor, so files, sockets and pipes are out of reach even for code that
gets past the builtins allowlist.
"""

import asyncio
import builtins
import io
import json
import sys
import types

SAFE_BUILTINS = [
    "abs", "all", "any", "ascii", "bin", "bool", "bytes", "callable", "chr",
    "dict", "divmod", "enumerate", "filter", "float", "format", "frozenset",
    "hash", "hex", "int", "isinstance", "issubclass", "iter", "len", "list",
    "map", "max", "min", "next", "oct", "ord", "pow", "print", "range",
    "repr", "reversed", "round", "set", "slice", "sorted", "str", "sum",
    "tuple", "zip", "None", "True", "False",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "OverflowError", "RuntimeError", "StopIteration", "TypeError",
    "ValueError", "ZeroDivisionError",
]


def apply_limits(memory_limit_mb, cpu_seconds):
    if sys.platform == "win32":
        return
    import resource

    memory = memory_limit_mb * 1024 * 1024
    limits = (
        (resource.RLIMIT_NOFILE, 0),
        (resource.RLIMIT_AS, memory),
        (resource.RLIMIT_CPU, cpu_seconds),
    )
    for limit, value in limits:
        _, hard = resource.getrlimit(limit)
        if hard != resource.RLIM_INFINITY:
            value = min(value, hard)
        # Hard limit too, so the tool cannot raise it back
        try:
            resource.setrlimit(limit, (value, value))
        except (ValueError, OSError):
            # Not enforceable on this platform (RLIMIT_AS on macOS)
            pass


def public_view(module, cache):
    """A copy of a module without private names or submodules."""
    view = cache.get(module.__name__)
    if view is None:
        view = types.ModuleType(module.__name__)
        for attr in dir(module):
            value = getattr(module, attr)
            if attr.startswith("_") or isinstance(value, types.ModuleType):
                continue
            setattr(view, attr, value)
        cache[module.__name__] = view
    return view


def make_builtins(allowed_modules):
    allowed = set(allowed_modules)
    real_import = builtins.__import__
    views = {}

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name.split(".")[0] not in allowed:
            raise ImportError(f"import of '{name}' is not allowed")
        return public_view(real_import(name, globals, locals, fromlist, level), views)

    namespace = {name: getattr(builtins, name) for name in SAFE_BUILTINS}
    namespace["__import__"] = guarded_import
    return namespace


def run(job):
    for module in job["allowed_modules"]:
        try:
            __import__(module)
        except ImportError:
            pass
    loop = asyncio.new_event_loop()
    apply_limits(job["memory_limit_mb"], job["cpu_seconds"])

    try:
        scope = {"__builtins__": make_builtins(job["allowed_modules"]), "__name__": "__tool__"}
        exec(compile(job["source"], "<tool>", "exec"), scope)
        function = scope[job["entrypoint"]]
        call_args = [job["args"].get(name) for name in job["params"]]
        return loop.run_until_complete(function(*call_args))
    finally:
        loop.close()


def main():
    job = json.loads(sys.stdin.read())
    real_stdout = sys.stdout
    sys.stdout = io.StringIO()
    try:
        reply = {"ok": True, "value": run(job)}
    except BaseException as e:  # noqa: BLE001
        reply = {"ok": False, "error": str(e) or type(e).__name__}
    finally:
        sys.stdout = real_stdout
    try:
        encoded = json.dumps(reply, default=str)
    except (TypeError, ValueError) as e:
        encoded = json.dumps({"ok": False, "error": f"result is not serializable: {e}"})
    real_stdout.write(encoded)
    real_stdout.flush()


if __name__ == "__main__":
    main()
