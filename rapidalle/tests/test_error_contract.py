"""Tests for normalized error responses."""

from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient

from rapidalle.core.errors import AppError, app_error_handler, unhandled_exception_handler
from rapidalle.core.middleware.request_id import RequestIdMiddleware
from rapidalle.features.credits.service import set_balance


def test_error_carries_request_id_from_header(client):
    set_balance("err-user", 0)
    resp = client.post(
        "/api/generate",
        json={"theme": "a", "description": "b"},
        headers={"X-User-Id": "err-user", "x-request-id": "req-123"},
    )
    assert resp.status_code == 402
    assert resp.headers["x-request-id"] == "req-123"
    body = resp.json()
    assert body["error"]["request_id"] == "req-123"
    assert body["detail"] == body["error"]["message"]


def test_generated_request_id_matches_header(client):
    resp = client.get("/api/library")
    assert resp.status_code == 401
    assert resp.json()["error"]["request_id"] == resp.headers["x-request-id"]


def test_unknown_route_is_not_found(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_unhandled_exception_is_internal_error():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    router = APIRouter()

    @router.get("/boom")
    def boom():
        raise RuntimeError("secret detail")

    app.include_router(router)
    client = TestClient(app, raise_server_exceptions=False)

    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "INTERNAL_ERROR"
    assert "secret detail" not in resp.text
