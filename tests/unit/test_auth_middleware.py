"""Unit tests for previewguard/api/middleware/auth.py."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from previewguard.api.middleware.auth import ApiKeyMiddleware


def _make_app(api_key: str | None) -> FastAPI:
    app = FastAPI()

    @app.post("/convert")
    async def convert() -> dict:
        return {"status": "success"}

    @app.get("/convert/preview/{name}")
    async def artifact(name: str) -> dict:
        return {"name": name}

    @app.get("/healthz")
    async def health() -> dict:
        return {"status": "ok"}

    app.add_middleware(ApiKeyMiddleware, api_key=api_key)
    return app


@pytest.fixture()
def client() -> TestClient:
    return TestClient(_make_app("s3cret"))


def test_x_api_key_header_is_accepted(client: TestClient) -> None:
    assert client.post("/convert", headers={"X-API-Key": "s3cret"}).status_code == 200


def test_bearer_token_is_accepted(client: TestClient) -> None:
    resp = client.post("/convert", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-API-Key": "wrong"},
        {"Authorization": "Bearer wrong"},
        {"Authorization": "Basic s3cret"},
        {"Authorization": "Bearer "},
    ],
)
def test_missing_or_wrong_key_is_401(client: TestClient, headers: dict) -> None:
    resp = client.post("/convert", headers=headers)
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Unauthorized"}


def test_unconfigured_key_is_500() -> None:
    resp = TestClient(_make_app(None)).post("/convert", headers={"X-API-Key": "anything"})
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Server configuration error"}


def test_public_routes_bypass_key(client: TestClient) -> None:
    assert client.get("/healthz").status_code == 200
    assert client.get("/convert/preview/a.pdf").status_code == 200
