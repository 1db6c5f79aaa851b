"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from conftest import SECRET, RecordingTransport, json_response
from unbrowse.db import Database
from unbrowse.execution import AbilityExecutionEngine
from unbrowse.server.app import create_app

USER = "user-1"


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport(json_response(200, {"voices": ["alice"]}))


@pytest.fixture
def engine(catalog, credential_store, transport, top_voices_definition, authorized_definition):
    catalog.add(top_voices_definition)
    catalog.add(authorized_definition)
    return AbilityExecutionEngine(
        catalog, credential_store, client=transport.client(), credential_key=SECRET
    )


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine, trust_user_header=True)) as client:
        yield client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_ready_without_database(self, client):
        assert client.get("/ready").json() == {"status": "ready"}

    def test_ready_with_database(self, engine, tmp_path):
        app = create_app(engine, Database(database_path=tmp_path / "ready.db"))
        with TestClient(app) as client:
            response = client.get("/ready")
        assert response.status_code == 200

    def test_not_ready_when_database_is_down(self, engine, tmp_path):
        app = create_app(engine, Database(database_path=tmp_path / "ready.db"))
        # No lifespan, so the database is never connected
        response = TestClient(app).get("/ready")
        assert response.status_code == 503
        assert response.json() == {"status": "unavailable"}


class TestExecute:
    def test_execute(self, client, transport):
        response = client.post(
            "/abilities/get-token-top-voices/execute",
            json={"params": {"token_symbol": "$fdry"}},
            headers={"X-User-Id": USER},
        )

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert payload["result"]["statusCode"] == 200
        assert payload["result"]["body"] == {"voices": ["alice"]}
        assert "token_symbol=eq.%24fdry" in str(transport.requests[0].url)

    def test_transform_code_alias(self, client):
        response = client.post(
            "/abilities/get-token-top-voices/execute",
            json={
                "params": {"token_symbol": "ETH"},
                "transformCode": "lambda data: data['voices'][0]",
            },
            headers={"X-User-Id": USER},
        )

        payload = response.json()
        assert payload["transformed"] is True
        assert payload["result"]["body"] == "alice"

    def test_identity_is_required(self, client, transport):
        response = client.post("/abilities/get-token-top-voices/execute", json={})

        assert response.status_code == 401
        assert transport.requests == []

    def test_unknown_ability_is_404(self, client):
        response = client.post(
            "/abilities/nope/execute", json={}, headers={"X-User-Id": USER}
        )

        assert response.status_code == 404
        assert response.json()["errorKind"] == "not_found"

    def test_validation_error_is_422(self, client):
        response = client.post(
            "/abilities/get-token-top-voices/execute",
            json={"params": {}},
            headers={"X-User-Id": USER},
        )

        assert response.status_code == 422
        assert response.json()["errorKind"] == "validation_error"

    def test_unknown_body_fields_are_rejected(self, client):
        response = client.post(
            "/abilities/get-token-top-voices/execute",
            json={"params": {}, "wrapperCode": "def wrapper(p, f): pass"},
            headers={"X-User-Id": USER},
        )

        assert response.status_code == 422

    def test_upstream_failures_keep_the_envelope(self, client):
        response = client.post(
            "/abilities/list-orders/execute", json={}, headers={"X-User-Id": USER}
        )

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is False
        assert payload["errorKind"] == "missing_credentials"


class TestIdentity:
    def test_user_header_is_ignored_unless_trusted(self, engine, transport):
        with TestClient(create_app(engine)) as client:
            response = client.post(
                "/abilities/get-token-top-voices/execute",
                json={"params": {"token_symbol": "ETH"}},
                headers={"X-User-Id": USER},
            )

        assert response.status_code == 401
        assert transport.requests == []

    def test_identity_from_middleware(self, engine, transport):
        app = create_app(engine)

        @app.middleware("http")
        async def authenticate(request, call_next):
            request.state.user_id = USER
            return await call_next(request)

        with TestClient(app) as client:
            response = client.post(
                "/abilities/get-token-top-voices/execute",
                json={"params": {"token_symbol": "ETH"}},
            )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert len(transport.requests) == 1


class TestBatch:
    def test_results_keep_request_order(self, client):
        response = client.post(
            "/abilities/execute-batch",
            json={
                "executions": [
                    {"abilityId": "get-token-top-voices", "params": {"token_symbol": "A"}},
                    {"abilityId": "nope"},
                    {"abilityId": "list-orders"},
                ]
            },
            headers={"X-User-Id": USER},
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["abilityId"] for r in results] == [
            "get-token-top-voices",
            "nope",
            "list-orders",
        ]
        assert [r["success"] for r in results] == [True, False, False]
        assert results[1]["errorKind"] == "not_found"

    def test_empty_batch_is_rejected(self, client):
        response = client.post(
            "/abilities/execute-batch",
            json={"executions": []},
            headers={"X-User-Id": USER},
        )

        assert response.status_code == 422

    def test_batch_size_is_bounded(self, client):
        response = client.post(
            "/abilities/execute-batch",
            json={"executions": [{"abilityId": "nope"}] * 51},
            headers={"X-User-Id": USER},
        )

        assert response.status_code == 422
