"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ubora.core.errors import (
    AppError,
    PersistenceError,
    app_error_handler,
    unhandled_exception_handler,
)
from ubora.core.middleware.request_id import RequestIdMiddleware
from ubora.main import app


def test_validation_error_has_standard_shape():
    client = TestClient(app)
    resp = client.get("/v1/packages/offers", params={"item_type": "spaceships"})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "invalid_purchase"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_persistence_and_unexpected_errors_normalized():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_exception_handler(AppError, app_error_handler)
    test_app.add_exception_handler(Exception, unhandled_exception_handler)

    @test_app.get("/store")
    async def store_down():
        raise PersistenceError("Failed to load user dir_1")

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    client = TestClient(test_app, raise_server_exceptions=False)

    down = client.get("/store")
    assert down.status_code == 503
    assert down.json()["error"]["code"] == "persistence_failure"

    crashed = client.get("/boom")
    assert crashed.status_code == 500
    assert crashed.json()["error"]["code"] == "internal_error"
    assert "kaboom" not in crashed.text
