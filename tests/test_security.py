"""Tests for agentvault.security — input validation and request middleware."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from nacl.signing import SigningKey

from agentvault.errors import ValidationError
from agentvault.security import (
    apply_security,
    check_xss,
    sanitize_input,
    validate_public_key,
)


class TestInputValidation:
    @pytest.mark.parametrize("value", [
        "<script>alert(1)</script>",
        "javascript:void(0)",
        '<img onerror="x">',
        "<iframe src=x>",
    ])
    def test_xss_detected(self, value):
        assert check_xss(value)
        with pytest.raises(ValidationError):
            sanitize_input(value, "name")

    def test_plain_text_passes(self):
        assert sanitize_input("Research agent #2", "name") == "Research agent #2"

    def test_public_key(self):
        key = SigningKey.generate().verify_key.encode().hex()
        assert validate_public_key(key.upper()) == key

    @pytest.mark.parametrize("value", ["", "zz", "ab" * 31])
    def test_bad_public_key(self, value):
        with pytest.raises(ValidationError):
            validate_public_key(value)


def _app():
    app = FastAPI()
    apply_security(app, ["https://dash.example"])

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    return app


@pytest.mark.asyncio
async def test_security_headers():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as c:
        resp = await c.get("/ping", headers={"X-Request-ID": "req-1"})
    assert resp.headers["X-Request-ID"] == "req-1"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_body_size_limit():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as c:
        resp = await c.post("/ping", content=b"x" * 2_000_000)
    assert resp.status_code == 413
    assert resp.json() == {"error": "Request body too large"}


@pytest.mark.asyncio
async def test_malformed_content_length():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as c:
        resp = await c.get("/ping", headers={"Content-Length": "abc"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid Content-Length header"}


@pytest.mark.asyncio
async def test_cors_origin():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as c:
        resp = await c.get("/ping", headers={"Origin": "https://dash.example"})
    assert resp.headers["access-control-allow-origin"] == "https://dash.example"
