"""Sandboxed execution of ability logic.

Declarative request templates are rendered in-process. Procedural scripts
run in a separate, isolated Python interpreter (see ``_bridge.py``) whose
only capability is ``fetch``, proxied back to the host over a JSON-lines
pipe. Every outbound request, from either path, goes through the same call
primitive, which applies header composition and the call budget.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from unbrowse.abilities.types import AbilityDescriptor, RequestTemplate, ScriptLogic
from unbrowse.execution.headers import HeaderLayer, call_layer, compose_headers
from unbrowse.execution.types import RawResponse, SandboxOutcome

logger = logging.getLogger(__name__)

BRIDGE_PATH = Path(__file__).with_name("_bridge.py")
_BRIDGE_PROTOCOL_VERSION = 1

# asyncio's default readline limit is 64 KiB; fetch results can be larger.
_STREAM_LIMIT = 16 * 1024 * 1024
_STDERR_TAIL_BYTES = 4096

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LONE_PLACEHOLDER = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")

FetchHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class SandboxError(Exception):
    """Ability logic could not be run to completion."""


class RequestBuildError(SandboxError):
    """An outbound request could not be constructed from its parts."""


@dataclass(slots=True, frozen=True)
class SandboxLimits:
    """OS resource limits applied to the child interpreter before user code runs."""

    memory_mb: int = 512
    cpu_seconds: int = 30
    max_processes: int = 1

    def to_message(self) -> dict[str, int]:
        return {
            "memory_bytes": self.memory_mb * 1024 * 1024,
            "cpu_seconds": self.cpu_seconds,
            "max_processes": self.max_processes,
        }


# =============================================================================
# Template rendering
# =============================================================================


@dataclass(slots=True)
class PreparedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: dict[str, str] | None = None
    content: str | None = None


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _substitute(
    text: str,
    params: Mapping[str, Any],
    encode: Callable[[str], str] | None = None,
) -> str:
    def replace(match: re.Match[str]) -> str:
        value = params.get(match.group(1))
        if value is None:
            return ""
        rendered = _stringify(value)
        return encode(rendered) if encode else rendered

    return _PLACEHOLDER.sub(replace, text)


def _render_body(node: Any, params: Mapping[str, Any]) -> Any:
    if isinstance(node, str):
        lone = _LONE_PLACEHOLDER.match(node)
        if lone:
            return params.get(lone.group(1))
        return _substitute(node, params)
    if isinstance(node, dict):
        return {key: _render_body(value, params) for key, value in node.items()}
    if isinstance(node, list):
        return [_render_body(item, params) for item in node]
    return node


def _render_query(query: Mapping[str, Any], params: Mapping[str, Any]) -> str:
    pairs: list[str] = []
    for key, template in query.items():
        if isinstance(template, str):
            lone = _LONE_PLACEHOLDER.match(template)
            if lone and params.get(lone.group(1)) is None:
                continue
            value: Any = params.get(lone.group(1)) if lone else _substitute(template, params)
        else:
            value = template
        values = value if isinstance(value, list | tuple) else [value]
        for item in values:
            pairs.append(f"{quote(str(key), safe='')}={quote(_stringify(item), safe='')}")
    return "&".join(pairs)


def render_request(template: RequestTemplate, params: Mapping[str, Any]) -> PreparedRequest:
    """Render a declarative template into a concrete request.

    Path placeholders are percent-encoded as single segments and query values
    are fully percent-encoded. A query entry that is only a placeholder is
    dropped when its parameter is absent. Body placeholders that stand alone
    keep the parameter's type.
    """
    url = _substitute(template.url, params, encode=lambda v: quote(v, safe=""))
    query = _render_query(template.query, params)
    if query:
        url = f"{url}{'&' if '?' in url else '?'}{query}"

    prepared = PreparedRequest(
        method=template.method.upper(),
        url=url,
        headers={
            name: _substitute(str(value), params)
            for name, value in template.headers.items()
        },
    )

    if template.body is None:
        return prepared
    body = _render_body(template.body, params)
    if template.body_format == "form":
        if not isinstance(body, dict):
            raise SandboxError("form bodies must be objects")
        prepared.data = {k: _stringify(v) for k, v in body.items() if v is not None}
    elif template.body_format == "raw":
        prepared.content = body if isinstance(body, str) else _stringify(body)
    else:
        prepared.json = body
    return prepared


# =============================================================================
# Response reading
# =============================================================================


def _is_json_content(content_type: str) -> bool:
    media = content_type.split(";", 1)[0].strip().lower()
    return media == "application/json" or media.endswith("+json")


def read_response(response: httpx.Response) -> RawResponse:
    """Read a response body according to its content type."""
    content_type = response.headers.get("content-type", "")
    body: Any
    if _is_json_content(content_type):
        try:
            body = response.json()
        except ValueError:
            body = response.text
    else:
        body = response.text
    return RawResponse(
        status_code=response.status_code,
        headers=dict(response.headers),
        body=body,
    )


# =============================================================================
# Child interpreter
# =============================================================================


class _StderrTail:
    def __init__(self) -> None:
        self.data = bytearray()

    async def drain(self, stream: asyncio.StreamReader) -> None:
        while chunk := await stream.read(4096):
            self.data.extend(chunk)
            del self.data[:-_STDERR_TAIL_BYTES]

    def last_line(self) -> str:
        text = self.data.decode("utf-8", errors="replace").strip()
        return text.splitlines()[-1] if text else ""


class ScriptRunner:
    """Run one bridge session per call in a fresh, isolated interpreter.

    The child is started with ``python -I`` and an environment reduced to
    ``env_allowlist``, and caps its own memory, CPU time, and process count
    from ``limits`` before loading any script. It is killed on every exit
    path, including cancellation.
    """

    def __init__(
        self,
        *,
        env_allowlist: Sequence[str] = (),
        python: str | None = None,
        limits: SandboxLimits | None = None,
    ) -> None:
        self._env_allowlist = tuple(env_allowlist)
        self._python = python or sys.executable
        self._limits = limits or SandboxLimits()

    def _environment(self) -> dict[str, str]:
        return {
            name: os.environ[name] for name in self._env_allowlist if name in os.environ
        }

    async def run(
        self,
        start: dict[str, Any],
        *,
        on_fetch: FetchHandler | None = None,
    ) -> dict[str, Any]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._python,
                "-I",
                str(BRIDGE_PATH),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(),
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            raise SandboxError(f"could not start script interpreter: {e}") from None
        tail = _StderrTail()
        stderr_task = asyncio.create_task(tail.drain(proc.stderr))
        try:
            await _send(
                proc,
                {
                    "version": _BRIDGE_PROTOCOL_VERSION,
                    **start,
                    "limits": self._limits.to_message(),
                },
            )
            while True:
                try:
                    line = await proc.stdout.readline()
                except ValueError:
                    raise SandboxError("script output exceeded the stream limit") from None
                if not line:
                    await proc.wait()
                    await stderr_task
                    detail = tail.last_line()
                    raise SandboxError(
                        f"script process exited with code {proc.returncode}"
                        + (f": {detail}" if detail else "")
                    )
                message = _decode(line)
                kind = message.get("type")
                if kind == "fetch":
                    if on_fetch is None:
                        reply = {
                            "type": "fetch_error",
                            "message": "fetch is not available here",
                        }
                    else:
                        reply = await on_fetch(message)
                    await _send(proc, {**reply, "id": message.get("id")})
                elif kind == "result":
                    return message
                elif kind == "error":
                    raise SandboxError(str(message.get("message") or "script failed"))
                else:
                    raise SandboxError(f"unexpected bridge message: {kind!r}")
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task


async def _send(proc: asyncio.subprocess.Process, message: dict[str, Any]) -> None:
    if proc.stdin is None:
        raise SandboxError("script process has no input pipe")
    try:
        proc.stdin.write(json.dumps(message, ensure_ascii=True).encode("utf-8") + b"\n")
        await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        raise SandboxError("script process closed its input") from None


def _decode(line: bytes) -> dict[str, Any]:
    try:
        message = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise SandboxError("script produced invalid bridge output") from None
    if not isinstance(message, dict):
        raise SandboxError("script produced invalid bridge output")
    return message


# =============================================================================
# Executor
# =============================================================================


@dataclass(slots=True)
class _CallSession:
    layers: list[HeaderLayer]
    max_calls: int
    calls: int = 0
    responses: dict[int, RawResponse] = field(default_factory=dict)


class SandboxExecutor:
    """Run an ability's logic with the call primitive as its only capability."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        runner: ScriptRunner,
        timeout_seconds: float = 30.0,
        max_calls: int = 4,
    ) -> None:
        self._client = client
        self._runner = runner
        self._timeout_seconds = timeout_seconds
        self._max_calls = max_calls

    async def run(
        self,
        ability: AbilityDescriptor,
        params: Mapping[str, Any],
        *,
        layers: Sequence[HeaderLayer],
    ) -> SandboxOutcome:
        session = _CallSession(layers=list(layers), max_calls=self._max_calls)
        try:
            async with asyncio.timeout(self._timeout_seconds):
                if isinstance(ability.logic, ScriptLogic):
                    response = await self._run_script(ability.logic, params, session)
                else:
                    response = await self._run_template(ability.logic, params, session)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning(
                "sandbox_timeout",
                extra={
                    "ability.id": ability.ability_id,
                    "sandbox.timeout_seconds": self._timeout_seconds,
                },
            )
            return SandboxOutcome.timeout(self._timeout_seconds, calls=session.calls)
        except httpx.HTTPError as e:
            return SandboxOutcome.fault(
                f"Request failed: {type(e).__name__}: {e}", calls=session.calls
            )
        except SandboxError as e:
            logger.info(
                "sandbox_fault",
                extra={"ability.id": ability.ability_id, "error.message": str(e)},
            )
            return SandboxOutcome.fault(str(e), calls=session.calls)
        return SandboxOutcome(response=response, calls=session.calls)

    async def _run_template(
        self,
        template: RequestTemplate,
        params: Mapping[str, Any],
        session: _CallSession,
    ) -> RawResponse:
        prepared = render_request(template, params)
        response, _ = await self._call(session, prepared)
        return response

    async def _run_script(
        self,
        script: ScriptLogic,
        params: Mapping[str, Any],
        session: _CallSession,
    ) -> RawResponse:
        async def on_fetch(message: dict[str, Any]) -> dict[str, Any]:
            url = str(message.get("url") or "")
            try:
                scheme = httpx.URL(url).scheme
            except httpx.InvalidURL:
                scheme = ""
            if scheme not in ("http", "https"):
                return {"type": "fetch_error", "message": "only http(s) URLs can be fetched"}
            body = message.get("body")
            prepared = PreparedRequest(
                method=str(message.get("method") or "GET").upper(),
                url=url,
                headers=dict(message.get("headers") or {}),
            )
            if isinstance(body, dict | list):
                prepared.json = body
            elif body is not None:
                prepared.content = str(body)
            try:
                response, text = await self._call(session, prepared)
            except httpx.HTTPError as e:
                return {"type": "fetch_error", "message": f"{type(e).__name__}: {e}"}
            except RequestBuildError as e:
                return {"type": "fetch_error", "message": str(e)}
            session.responses[message.get("id")] = response
            return {
                "type": "response",
                "status": response.status_code,
                "headers": response.headers,
                "text": text,
            }

        result = await self._runner.run(
            {
                "mode": "wrapper",
                "source": script.source,
                "entrypoint": script.entrypoint,
                "payload": dict(params),
            },
            on_fetch=on_fetch,
        )
        response = session.responses.get(result.get("response_id"))
        if response is None:
            raise SandboxError("script did not return a fetched response")
        return response

    async def _call(
        self,
        session: _CallSession,
        prepared: PreparedRequest,
    ) -> tuple[RawResponse, str]:
        if session.calls >= session.max_calls:
            raise SandboxError(f"call limit of {session.max_calls} exceeded")
        session.calls += 1

        headers = compose_headers([*session.layers, call_layer(prepared.headers)])
        kwargs: dict[str, Any] = {"headers": headers}
        if prepared.json is not None:
            kwargs["json"] = prepared.json
        elif prepared.data is not None:
            kwargs["data"] = prepared.data
        elif prepared.content is not None:
            kwargs["content"] = prepared.content

        try:
            request = self._client.build_request(prepared.method, prepared.url, **kwargs)
        except UnicodeEncodeError:
            # The error text would echo part of the offending value
            raise RequestBuildError("request header values must be ASCII text") from None
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            raise RequestBuildError(f"invalid request: {e}") from None

        response = await self._client.send(request)
        logger.debug(
            "sandbox_call",
            extra={
                "http.method": prepared.method,
                "http.host": response.request.url.host,
                "http.status_code": response.status_code,
            },
        )
        return read_response(response), response.text
