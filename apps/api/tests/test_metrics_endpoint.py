from __future__ import annotations

from collections.abc import Generator

import httpx
import pytest

from crm_api.core.config import get_settings


@pytest.fixture(autouse=True)
def enable_metrics(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


async def test_metrics_endpoint_exposes_http_and_auth_metrics(
    client: httpx.AsyncClient, seed_user, login, auth_headers
) -> None:
    await seed_user("root@example.com", role="SUPER_ADMIN", tenant_id="platform")
    headers = auth_headers((await login("root@example.com"))["accessToken"])
    assert (await client.get("/health")).status_code == 200
    assert (await client.post("/api/auth/refresh", json={"refreshToken": "garbage"})).status_code == 401

    metrics = await client.get("/metrics", headers=headers)

    assert metrics.status_code == 200
    assert metrics.headers["content-type"].startswith("text/plain")
    body = metrics.text
    assert 'http_requests_total{method="GET",path="/health",status="200"}' in body
    assert 'auth_tokens_issued_total{token_type="access"}' in body
    assert 'auth_failures_total{reason="invalid_token"}' in body
    assert "store_condition_failures_total" in body


async def test_metrics_require_super_admin(client: httpx.AsyncClient, seed_user, login, auth_headers) -> None:
    await seed_user("admin@example.com", role="ADMIN", tenant_id="t1")
    headers = auth_headers((await login("admin@example.com"))["accessToken"])

    assert (await client.get("/metrics")).status_code == 401
    forbidden = await client.get("/metrics", headers=headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "PERMISSION_DENIED"


async def test_metrics_can_be_disabled(
    client: httpx.AsyncClient, seed_user, login, auth_headers, monkeypatch: pytest.MonkeyPatch
) -> None:
    await seed_user("root@example.com", role="SUPER_ADMIN", tenant_id="platform")
    headers = auth_headers((await login("root@example.com"))["accessToken"])
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = await client.get("/metrics", headers=headers)

    assert response.status_code == 404
    assert response.json()["code"] == "HTTP_ERROR"
