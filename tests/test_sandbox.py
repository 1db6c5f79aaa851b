"""Tests for template rendering and the script sandbox."""

import json
import sys

import httpx
import pytest

from conftest import RecordingTransport, json_response
from unbrowse.abilities import RequestTemplate, parse_ability
from unbrowse.execution.headers import HeaderLayer
from unbrowse.execution.sandbox import (
    SandboxError,
    SandboxExecutor,
    SandboxLimits,
    ScriptRunner,
    read_response,
    render_request,
)
from unbrowse.execution.types import ErrorKind


def script_ability(source: str, **extra):
    return parse_ability(
        {
            "ability_id": "scripted",
            "service_name": "example-service",
            "wrapper_code": source,
            **extra,
        }
    )


@pytest.fixture
def runner() -> ScriptRunner:
    return ScriptRunner()


class TestRenderRequest:
    def test_query_values_are_percent_encoded(self):
        template = RequestTemplate(
            method="get",
            url="https://api.tokens.example/rest/v1/top_voices",
            query={"token_symbol": "eq.{token_symbol}", "limit": "{limit}"},
        )

        prepared = render_request(template, {"token_symbol": "$fdry", "limit": 10})

        assert prepared.method == "GET"
        assert prepared.url == (
            "https://api.tokens.example/rest/v1/top_voices"
            "?token_symbol=eq.%24fdry&limit=10"
        )

    def test_path_placeholders_are_single_segments(self):
        template = RequestTemplate(method="GET", url="https://x.example/users/{name}/posts")

        prepared = render_request(template, {"name": "a b/c"})

        assert prepared.url == "https://x.example/users/a%20b%2Fc/posts"

    def test_absent_optional_query_placeholder_is_dropped(self):
        template = RequestTemplate(
            method="GET",
            url="https://x.example/search?fixed=1",
            query={"q": "{q}", "page": "{page}"},
        )

        prepared = render_request(template, {"q": "shoes"})

        assert prepared.url == "https://x.example/search?fixed=1&q=shoes"

    def test_lone_body_placeholders_keep_their_type(self):
        template = RequestTemplate(
            method="POST",
            url="https://x.example/items",
            body={"limit": "{limit}", "label": "x-{q}", "tags": ["{tag}"]},
        )

        prepared = render_request(template, {"limit": 5, "q": "abc", "tag": True})

        assert prepared.json == {"limit": 5, "label": "x-abc", "tags": [True]}
        assert prepared.data is None

    def test_form_body(self):
        template = RequestTemplate(
            method="POST",
            url="https://x.example/login",
            body={"user": "{user}", "attempts": "{n}", "otp": "{otp}"},
            body_format="form",
        )

        prepared = render_request(template, {"user": "bob", "n": 3})

        assert prepared.data == {"user": "bob", "attempts": "3"}
        assert prepared.json is None

    def test_form_body_must_be_an_object(self):
        template = RequestTemplate(
            method="POST", url="https://x.example", body="{raw}", body_format="form"
        )

        with pytest.raises(SandboxError):
            render_request(template, {"raw": "a=b"})

    def test_template_headers_are_filled(self):
        template = RequestTemplate(
            method="GET",
            url="https://x.example",
            headers={"X-Account": "acct-{account}"},
        )

        prepared = render_request(template, {"account": 7})

        assert prepared.headers == {"X-Account": "acct-7"}


class TestReadResponse:
    def test_json_media_types_are_parsed(self):
        response = httpx.Response(
            422,
            content=b'{"detail": "bad"}',
            headers={"content-type": "application/problem+json"},
        )

        raw = read_response(response)

        assert raw.status_code == 422
        assert raw.body == {"detail": "bad"}

    def test_invalid_json_falls_back_to_text(self):
        response = httpx.Response(
            200, content=b"not json", headers={"content-type": "application/json"}
        )

        assert read_response(response).body == "not json"

    def test_other_media_types_are_text(self):
        response = httpx.Response(
            200, content=b"<p>hi</p>", headers={"content-type": "text/html"}
        )

        assert read_response(response).body == "<p>hi</p>"


class TestTemplateExecution:
    async def test_layers_and_template_headers_are_composed(
        self, runner, top_voices_definition
    ):
        transport = RecordingTransport(json_response(200, [{"voice": "a"}]))
        ability = parse_ability(top_voices_definition)
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(
                ability,
                {"token_symbol": "$fdry", "limit": 10},
                layers=[
                    HeaderLayer("static", {"Accept": "application/json", "Host": "x"}),
                    HeaderLayer("dynamic", {"Authorization": "Bearer t"}),
                ],
            )

        assert outcome.error is None
        assert outcome.calls == 1
        assert outcome.response.status_code == 200
        assert outcome.response.body == [{"voice": "a"}]

        (request,) = transport.requests
        assert "token_symbol=eq.%24fdry" in str(request.url)
        assert request.headers["accept"] == "application/json"
        assert request.headers["authorization"] == "Bearer t"
        assert request.headers["host"] == "api.tokens.example"

    async def test_transport_errors_are_faults(self, runner, top_voices_definition):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = RecordingTransport(refuse)
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(
                parse_ability(top_voices_definition),
                {"token_symbol": "x", "limit": 1},
                layers=[],
            )

        assert outcome.response is None
        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert outcome.error.startswith("Request failed: ConnectError")

    async def test_transport_timeouts_are_timeouts(self, runner, top_voices_definition):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        transport = RecordingTransport(slow)
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner, timeout_seconds=3)
            outcome = await executor.run(
                parse_ability(top_voices_definition),
                {"token_symbol": "x"},
                layers=[],
            )

        assert outcome.error_kind == ErrorKind.TIMEOUT
        assert outcome.error == "Execution timed out after 3s"

    async def test_non_ascii_header_values_are_faults(self, runner, top_voices_definition):
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(
                parse_ability(top_voices_definition),
                {"token_symbol": "x"},
                layers=[HeaderLayer("static", {"X-Query": "café"})],
            )

        assert outcome.response is None
        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert outcome.error == "request header values must be ASCII text"
        assert "é" not in outcome.error
        assert transport.requests == []


class TestScriptExecution:
    async def test_script_fetch_goes_through_the_call_primitive(self, runner):
        source = (
            "def wrapper(payload, fetch):\n"
            "    target = 'https://www.example.com/api/items?q=' + url.quote(payload['q'])\n"
            "    return fetch(target, {'headers': {'Host': 'evil.example', 'X-Call': '1'}})\n"
        )
        transport = RecordingTransport(json_response(200, {"items": [1, 2]}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(
                script_ability(source),
                {"q": "red shoes"},
                layers=[HeaderLayer("dynamic", {"Authorization": "Bearer t"})],
            )

        assert outcome.error is None
        assert outcome.response.body == {"items": [1, 2]}
        (request,) = transport.requests
        assert str(request.url) == "https://www.example.com/api/items?q=red%20shoes"
        assert request.headers["host"] == "www.example.com"
        assert request.headers["x-call"] == "1"
        assert request.headers["authorization"] == "Bearer t"

    async def test_script_can_chain_calls(self, runner):
        source = (
            "def wrapper(payload, fetch):\n"
            "    first = fetch('https://www.example.com/api/token')\n"
            "    token = first.json()['token']\n"
            "    return fetch('https://www.example.com/api/data', {\n"
            "        'method': 'post',\n"
            "        'headers': {'X-Token': token},\n"
            "        'body': {'n': payload['n']},\n"
            "    })\n"
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/token":
                return httpx.Response(200, json={"token": "tok"})
            return httpx.Response(201, json=json.loads(request.content))

        transport = RecordingTransport(handler)
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {"n": 4}, layers=[])

        assert outcome.calls == 2
        assert outcome.response.status_code == 201
        assert outcome.response.body == {"n": 4}
        assert transport.requests[1].method == "POST"
        assert transport.requests[1].headers["x-token"] == "tok"

    async def test_call_budget_is_enforced(self, runner):
        source = (
            "def wrapper(payload, fetch):\n"
            "    response = None\n"
            "    for i in range(3):\n"
            "        response = fetch('https://www.example.com/api/page?n=' + str(i))\n"
            "    return response\n"
        )
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner, max_calls=2)
            outcome = await executor.run(script_ability(source), {}, layers=[])

        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert outcome.error == "call limit of 2 exceeded"
        assert len(transport.requests) == 2

    @pytest.mark.parametrize(
        "source",
        [
            "import os\ndef wrapper(payload, fetch):\n    return fetch('https://x.example')\n",
            "def wrapper(payload, fetch):\n    return payload.__class__\n",
            "def wrapper(payload, fetch):\n    return eval('1')\n",
            "def wrapper(payload, fetch):\n    return '{0.__class__}'.format(payload)\n",
        ],
    )
    async def test_unsafe_scripts_are_rejected_before_running(self, runner, source):
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {}, layers=[])

        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert "not allowed" in outcome.error
        assert transport.requests == []

    async def test_wrapper_must_return_a_fetched_response(self, runner):
        source = "def wrapper(payload, fetch):\n    return {'status': 200}\n"
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {}, layers=[])

        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert "must return the response produced by fetch" in outcome.error

    async def test_only_http_urls_can_be_fetched(self, runner):
        source = "def wrapper(payload, fetch):\n    return fetch('file:///etc/passwd')\n"
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {}, layers=[])

        assert outcome.error == "FetchError: only http(s) URLs can be fetched"
        assert transport.requests == []

    async def test_unbuildable_fetch_is_reported_to_the_script(self, runner):
        source = (
            "def wrapper(payload, fetch):\n"
            "    try:\n"
            "        fetch('https://www.example.com/a', {'headers': {'X-Name': payload['name']}})\n"
            "    except FetchError as e:\n"
            "        print(e)\n"
            "    return fetch('https://www.example.com/b')\n"
        )
        transport = RecordingTransport(json_response(200, {"ok": True}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {"name": "José"}, layers=[])

        assert outcome.error is None
        assert outcome.response.body == {"ok": True}
        assert [r.url.path for r in transport.requests] == ["/b"]

    async def test_uncaught_unbuildable_fetch_is_a_fault(self, runner):
        source = (
            "def wrapper(payload, fetch):\n"
            "    return fetch('https://www.example.com/', {'headers': {'X-Name': payload['name']}})\n"
        )
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {"name": "José"}, layers=[])

        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert outcome.error == "FetchError: request header values must be ASCII text"
        assert transport.requests == []

    async def test_runaway_scripts_time_out(self, runner):
        source = "def wrapper(payload, fetch):\n    while True:\n        pass\n"
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner, timeout_seconds=0.5)
            outcome = await executor.run(script_ability(source), {}, layers=[])

        assert outcome.error_kind == ErrorKind.TIMEOUT
        assert outcome.response is None

    async def test_custom_entrypoint(self, runner):
        source = "def run(payload, fetch):\n    return fetch('https://www.example.com/')\n"
        transport = RecordingTransport(json_response(204, None))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(
                script_ability(source, entrypoint="run"), {}, layers=[]
            )

        assert outcome.error is None
        assert outcome.response.status_code == 204


class TestScriptRunner:
    def test_environment_is_reduced_to_the_allowlist(self, monkeypatch):
        monkeypatch.setenv("UNBROWSE_SECRET_FOR_TEST", "s3cret")
        monkeypatch.setenv("UNBROWSE_ALLOWED_FOR_TEST", "ok")
        runner = ScriptRunner(env_allowlist=["UNBROWSE_ALLOWED_FOR_TEST", "NOT_SET_ANYWHERE"])

        assert runner._environment() == {"UNBROWSE_ALLOWED_FOR_TEST": "ok"}

    def test_limits_message(self):
        limits = SandboxLimits(memory_mb=64, cpu_seconds=5, max_processes=1)
        assert limits.to_message() == {
            "memory_bytes": 64 * 1024 * 1024,
            "cpu_seconds": 5,
            "max_processes": 1,
        }

    @pytest.mark.skipif(sys.platform != "linux", reason="RLIMIT_AS is enforced on Linux")
    async def test_memory_hungry_scripts_are_faults(self):
        runner = ScriptRunner(limits=SandboxLimits(memory_mb=256))
        source = (
            "def wrapper(payload, fetch):\n"
            "    blob = 'a' * (1024 * 1024 * 1024)\n"
            "    return fetch('https://www.example.com/?n=' + str(len(blob)))\n"
        )
        transport = RecordingTransport(json_response(200, {}))
        async with transport.client() as client:
            executor = SandboxExecutor(client, runner=runner)
            outcome = await executor.run(script_ability(source), {}, layers=[])

        assert outcome.error_kind == ErrorKind.EXECUTION_FAULT
        assert outcome.error.startswith("MemoryError")
        assert transport.requests == []

    async def test_fetch_is_unavailable_without_a_handler(self, runner):
        with pytest.raises(SandboxError, match="fetch is not available here"):
            await runner.run(
                {
                    "mode": "wrapper",
                    "source": "def wrapper(payload, fetch):\n    return fetch('https://x.example')\n",
                    "entrypoint": "wrapper",
                    "payload": {},
                }
            )

    async def test_missing_interpreter_is_a_sandbox_error(self):
        runner = ScriptRunner(python="/nonexistent/python3")

        with pytest.raises(SandboxError, match="could not start script interpreter"):
            await runner.run({"mode": "transform", "source": "lambda d: d", "data": 1})
