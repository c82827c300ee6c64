"""Tests for normalized error responses."""

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from dressup.core.errors import (
    AppError,
    NoImageError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from dressup.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/no-image")
    async def no_image():
        raise NoImageError("No image in response", extra={"text": "sorry"})

    @app.get("/teapot")
    async def teapot():
        raise HTTPException(status_code=418, detail="short and stout")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return app


def test_validation_error_has_standard_shape(client):
    resp = client.post(
        "/api/stripe/create-checkout",
        content=b"{not json",
        headers={"content-type": "application/json", "Authorization": "Bearer token-alice"},
    )
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["code"] == "validation_error"
    assert body["request_id"] == rid


def test_app_error_extra_fields_are_merged():
    client = TestClient(_make_app())
    resp = client.get("/no-image")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "No image in response"
    assert body["code"] == "no_image"
    assert body["text"] == "sorry"
    assert body["request_id"] == resp.headers["x-request-id"]


def test_http_exception_normalized():
    client = TestClient(_make_app())
    resp = client.get("/teapot")
    assert resp.status_code == 418
    assert resp.json()["error"] == "short and stout"
    assert resp.json()["code"] == "http_error"


def test_unhandled_exception_hides_details():
    client = TestClient(_make_app(), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "internal_error"
    assert "secret" not in body["error"]


def test_unknown_route_is_normalized(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"
