"""Error envelope and request id propagation."""
from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.errors import register_error_handlers
from app.observability import ObservabilityMiddleware
from app.services.renewals.errors import ConflictResolutionError, MalformedRenewalEvent


@pytest.fixture
def error_client() -> TestClient:
    app = FastAPI()
    app.add_middleware(ObservabilityMiddleware)
    register_error_handlers(app)

    @app.get("/ok")
    def ok():
        return {"ok": True}

    @app.get("/forbidden")
    def forbidden():
        raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/structured")
    def structured():
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_api_key", "message": "Invalid or missing API key"},
        )

    @app.get("/conflict")
    def conflict():
        raise ConflictResolutionError("renewal_runs key did not settle")

    @app.get("/malformed")
    def malformed():
        raise MalformedRenewalEvent("missing subscription_id")

    @app.get("/typed/{count}")
    def typed(count: int):
        return {"count": count}

    @app.get("/crash")
    def crash():
        raise RuntimeError("boom")

    return TestClient(app, raise_server_exceptions=False)


def test_plain_http_error(error_client: TestClient) -> None:
    resp = error_client.get("/forbidden")
    body = resp.json()
    assert resp.status_code == 403
    assert body["code"] == "http_403"
    assert body["message"] == "Forbidden"
    assert body["details"] is None
    assert body["request_id"] == resp.headers["x-request-id"]


def test_structured_detail_is_unpacked(error_client: TestClient) -> None:
    body = error_client.get("/structured").json()
    assert body["code"] == "invalid_api_key"
    assert body["message"] == "Invalid or missing API key"


def test_conflict_maps_to_409(error_client: TestClient) -> None:
    resp = error_client.get("/conflict")
    assert resp.status_code == 409
    assert resp.json()["code"] == "renewal_conflict"


def test_other_renewal_errors_map_to_422(error_client: TestClient) -> None:
    resp = error_client.get("/malformed")
    assert resp.status_code == 422
    assert resp.json()["message"] == "missing subscription_id"


def test_validation_error_envelope(error_client: TestClient) -> None:
    resp = error_client.get("/typed/many")
    body = resp.json()
    assert resp.status_code == 422
    assert body["code"] == "validation_error"
    assert isinstance(body["details"], list)


def test_unhandled_error_hides_internals(error_client: TestClient) -> None:
    resp = error_client.get("/crash")
    body = resp.json()
    assert resp.status_code == 500
    assert body["code"] == "internal_error"
    assert "boom" not in body["message"]
    assert body["request_id"]


def test_incoming_request_id_is_echoed(error_client: TestClient) -> None:
    resp = error_client.get("/ok", headers={"x-request-id": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"
