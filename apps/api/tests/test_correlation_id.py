from __future__ import annotations

import httpx

from crm_api import audit, events


async def test_generated_correlation_id_returned_in_header_and_error_envelope(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/crm/leads")

    assert response.status_code == 401
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert response.json()["correlation_id"] == header_value
    request_id = response.headers.get("x-request-id")
    assert request_id
    assert request_id != header_value


async def test_correlation_id_respected_when_provided(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/crm/leads", headers={"X-Correlation-Id": "abc-123"})

    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


async def test_audit_and_events_carry_request_correlation_id(
    client: httpx.AsyncClient, seed_user, login, auth_headers
) -> None:
    await seed_user("rep@example.com", role="SALES_REP", tenant_id="t1")
    headers = auth_headers((await login("rep@example.com"))["accessToken"])
    headers["X-Correlation-Id"] = "corr-audit-1"

    response = await client.post("/api/crm/leads", json={"firstName": "Ada"}, headers=headers)

    assert response.status_code == 201
    assert audit.audit_entries[-1].entity_type == "crm.lead"
    assert audit.audit_entries[-1].correlation_id == "corr-audit-1"
    assert events.published_events[-1]["event_type"] == "crm.lead.create"
    assert events.published_events[-1]["correlation_id"] == "corr-audit-1"
