"""Child-side runner for sandboxed ability scripts.

Started by the host as ``python -I _bridge.py`` and never imported by the
package. The host writes one ``start`` message to stdin; the child answers
with JSON lines on stdout:

    {"type": "fetch", "id": n, "url": ..., "method": ..., "headers": ..., "body": ...}
    {"type": "result", ...}
    {"type": "error", "message": ...}

Each ``fetch`` is answered by the host with a ``response`` or ``fetch_error``
line. Script ``print`` output goes to stderr so stdout stays protocol-only.
"""

from __future__ import annotations

import ast
import json
import sys
from types import SimpleNamespace
from typing import Any
from urllib.parse import quote, urlencode

_BRIDGE_PROTOCOL_VERSION = 1

_FORBIDDEN_ATTRS = frozenset(
    {
        "format",
        "format_map",
        "mro",
        "gi_frame",
        "gi_code",
        "gi_yieldfrom",
        "cr_frame",
        "cr_code",
        "cr_await",
        "ag_frame",
        "ag_code",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "tb_frame",
        "tb_next",
    }
)

_FORBIDDEN_NAMES = frozenset(
    {
        "breakpoint",
        "compile",
        "delattr",
        "dir",
        "eval",
        "exec",
        "getattr",
        "globals",
        "hasattr",
        "input",
        "locals",
        "open",
        "setattr",
        "type",
        "vars",
    }
)

_FORBIDDEN_NODES: tuple[type[ast.AST], ...] = (
    ast.Import,
    ast.ImportFrom,
    ast.Global,
    ast.Nonlocal,
    ast.AsyncFunctionDef,
    ast.AsyncFor,
    ast.AsyncWith,
    ast.Await,
)


class ScriptRejected(Exception):
    """Source failed the static gate."""


class FetchError(Exception):
    """Raised inside scripts when the host refuses or fails a fetch."""


def validate_source(tree: ast.AST) -> None:
    for node in ast.walk(tree):
        if isinstance(node, _FORBIDDEN_NODES):
            raise ScriptRejected(
                f"line {getattr(node, 'lineno', '?')}: "
                f"{type(node).__name__.lower()} statements are not allowed"
            )
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_") or node.attr in _FORBIDDEN_ATTRS:
                raise ScriptRejected(
                    f"line {node.lineno}: access to attribute '{node.attr}' is not allowed"
                )
        elif isinstance(node, ast.Name):
            if node.id.startswith("_") or node.id in _FORBIDDEN_NAMES:
                raise ScriptRejected(
                    f"line {node.lineno}: use of name '{node.id}' is not allowed"
                )
        elif isinstance(node, ast.FunctionDef | ast.ClassDef):
            if node.name.startswith("_"):
                raise ScriptRejected(
                    f"line {node.lineno}: names starting with '_' are not allowed"
                )
        elif isinstance(node, ast.arg):
            if node.arg.startswith("_"):
                raise ScriptRejected(
                    f"line {node.lineno}: names starting with '_' are not allowed"
                )


def apply_limits(limits: dict[str, Any] | None) -> None:
    """Cap this process before any script is parsed or run."""
    if not limits:
        return
    import resource

    caps = (
        (resource.RLIMIT_AS, limits.get("memory_bytes")),
        (resource.RLIMIT_CPU, limits.get("cpu_seconds")),
        (resource.RLIMIT_NPROC, limits.get("max_processes")),
    )
    for which, value in caps:
        if value is None:
            continue
        _, hard = resource.getrlimit(which)
        cap = int(value) if hard == resource.RLIM_INFINITY else min(int(value), hard)
        resource.setrlimit(which, (cap, cap))


def _script_print(*args: Any, **kwargs: Any) -> None:
    kwargs.pop("file", None)
    print(*args, file=sys.stderr, **kwargs)


_JSON = SimpleNamespace(loads=json.loads, dumps=json.dumps)
_URL = SimpleNamespace(quote=quote, urlencode=urlencode)

SAFE_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "print": _script_print,
    "range": range,
    "repr": repr,
    "reversed": reversed,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "Exception": Exception,
    "KeyError": KeyError,
    "IndexError": IndexError,
    "TypeError": TypeError,
    "ValueError": ValueError,
    "FetchError": FetchError,
}


class Response:
    """What ``fetch`` returns to scripts."""

    def __init__(self, response_id: int, status: int, headers: dict[str, str], text: str):
        self._id = response_id
        self.status = status
        self.ok = 200 <= status < 300
        self.headers = dict(headers)
        self._text = text

    def text(self) -> str:
        return self._text

    def json(self) -> Any:
        return json.loads(self._text)


class Channel:
    def __init__(self, reader: Any, writer: Any) -> None:
        self._reader = reader
        self._writer = writer
        self._next_id = 0

    def send(self, message: dict[str, Any]) -> None:
        self._writer.write(json.dumps(message, ensure_ascii=True) + "\n")
        self._writer.flush()

    def receive(self) -> dict[str, Any]:
        line = self._reader.readline()
        if not line:
            raise EOFError("host closed the channel")
        return json.loads(line)

    def fetch(self, url: Any, options: dict[str, Any] | None = None) -> Response:
        options = dict(options or {})
        self._next_id += 1
        request_id = self._next_id
        self.send(
            {
                "type": "fetch",
                "id": request_id,
                "url": str(url),
                "method": str(options.get("method") or "GET").upper(),
                "headers": {
                    str(k): str(v) for k, v in (options.get("headers") or {}).items()
                },
                "body": options.get("body"),
            }
        )
        reply = self.receive()
        if reply.get("id") != request_id:
            raise FetchError("host replied to a different request")
        if reply.get("type") == "fetch_error":
            raise FetchError(str(reply.get("message") or "fetch failed"))
        return Response(
            request_id,
            int(reply.get("status") or 0),
            reply.get("headers") or {},
            str(reply.get("text") or ""),
        )


def _load(source: str, filename: str) -> dict[str, Any]:
    tree = ast.parse(source, filename=filename, mode="exec")
    validate_source(tree)
    namespace: dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS)}
    namespace["json"] = _JSON
    namespace["url"] = _URL
    exec(compile(tree, filename, "exec"), namespace)
    return namespace


def run_wrapper(start: dict[str, Any], channel: Channel) -> dict[str, Any]:
    namespace = _load(str(start.get("source") or ""), "<ability>")
    entrypoint = str(start.get("entrypoint") or "wrapper")
    wrapper = namespace.get(entrypoint)
    if not callable(wrapper):
        raise ScriptRejected(f"script must define a callable '{entrypoint}'")
    namespace["fetch"] = channel.fetch
    response = wrapper(start.get("payload") or {}, channel.fetch)
    if not isinstance(response, Response):
        raise ScriptRejected(f"'{entrypoint}' must return the response produced by fetch")
    return {"type": "result", "response_id": response._id}


def run_transform(start: dict[str, Any]) -> dict[str, Any]:
    source = str(start.get("source") or "").strip()
    try:
        expression = ast.parse(source, filename="<transform>", mode="eval")
    except SyntaxError:
        expression = None

    if expression is not None:
        validate_source(expression)
        namespace: dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS), "json": _JSON}
        transform = eval(compile(expression, "<transform>", "eval"), namespace)
    else:
        transform = _load(source, "<transform>").get("transform")

    if not callable(transform):
        raise ScriptRejected(
            "transform must be a callable expression or define transform(data)"
        )
    value = transform(start.get("data"))
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise ScriptRejected(f"transform result is not JSON-serializable: {e}") from None
    return {"type": "result", "value": value}


def main() -> int:
    channel = Channel(sys.stdin, sys.stdout)
    try:
        start = channel.receive()
        if start.get("version") != _BRIDGE_PROTOCOL_VERSION:
            raise ScriptRejected("bridge protocol version mismatch")
        apply_limits(start.get("limits"))
        mode = start.get("mode")
        if mode == "wrapper":
            outcome = run_wrapper(start, channel)
        elif mode == "transform":
            outcome = run_transform(start)
        else:
            raise ScriptRejected(f"unknown mode: {mode}")
    except SyntaxError as e:
        channel.send({"type": "error", "message": f"syntax error: {e.msg} (line {e.lineno})"})
        return 1
    except Exception as e:
        channel.send({"type": "error", "message": f"{type(e).__name__}: {e}"})
        return 1
    channel.send(outcome)
    return 0


if __name__ == "__main__":
    sys.exit(main())
