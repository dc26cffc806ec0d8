"""
tests/test_cors.py -- CORS behaviour of the ASGI app.

Covers:
  - preflight from an origin in Settings.cors_allow_origins is answered
  - preflight from any other origin gets no allow-origin header
  - the middleware is configured from the same Settings singleton the
    lifespan uses
"""

from __future__ import annotations

from fastapi.middleware.cors import CORSMiddleware

from api.main import app
from core.config import get_settings
from tests.conftest import ApiHarness


def _preflight(h: ApiHarness, origin: str):
    return h.client.options(
        "/api/v1/users/login",
        headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
    )


def test_allowed_origin_preflight(api_client: ApiHarness):
    origin = get_settings().cors_allow_origins[0]
    resp = _preflight(api_client, origin)
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == origin


def test_unknown_origin_preflight_rejected(api_client: ApiHarness):
    resp = _preflight(api_client, "https://evil.example.com")
    assert resp.status_code == 400
    assert "access-control-allow-origin" not in resp.headers


def test_cors_origins_come_from_settings():
    cors = [m for m in app.user_middleware if m.cls is CORSMiddleware]
    assert len(cors) == 1
    assert cors[0].kwargs["allow_origins"] == get_settings().cors_allow_origins
