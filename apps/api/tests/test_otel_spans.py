from __future__ import annotations

import httpx
import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crm_api.otel import capture_spans


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = capture_spans("api")
    exporter.clear()
    return exporter


async def test_refresh_rotation_emits_store_and_auth_spans(
    client: httpx.AsyncClient, seed_user, login, span_exporter: InMemorySpanExporter
) -> None:
    await seed_user("rep@example.com", role="SALES_REP", tenant_id="t1")
    refresh = (await login("rep@example.com"))["refreshToken"]
    span_exporter.clear()

    response = await client.post(
        "/api/auth/refresh",
        json={"refreshToken": refresh},
        headers={"X-Correlation-Id": "corr-span-1"},
    )
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    names = [span.name for span in spans]
    assert "auth.rotate_refresh_token" in names
    rotate = next(span for span in spans if span.name == "auth.rotate_refresh_token")
    assert rotate.attributes.get("auth.user_id") == "user-rep"

    deletes = [span for span in spans if span.name == "store.delete_where"]
    assert deletes
    assert deletes[0].attributes.get("db.table") == "identity_refresh_token"
    assert deletes[0].parent is not None
    assert deletes[0].parent.span_id == rotate.context.span_id

    assert any(span.attributes.get("correlation_id") == "corr-span-1" for span in spans)
