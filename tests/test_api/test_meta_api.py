import uuid

import pytest


@pytest.mark.anyio
async def test_healthz(async_client):
    resp = await async_client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


@pytest.mark.anyio
@pytest.mark.parametrize("db_ok,status_code", [(True, 200), (False, 503)])
async def test_readyz(async_client, monkeypatch, db_ok, status_code):
    async def _db():
        return db_ok

    monkeypatch.setattr("tunesnow.main.db_healthcheck", _db)

    resp = await async_client.get("/readyz")

    assert resp.status_code == status_code
    assert resp.json() == {"ready": db_ok, "checks": {"db": db_ok, "storage": True}}


@pytest.mark.anyio
async def test_metrics_exposition(async_client):
    resp = await async_client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "ingest_media_transitions_total" in resp.text
    assert "stream_responses_total" in resp.text


@pytest.mark.anyio
async def test_every_response_carries_a_request_id(async_client):
    incoming = str(uuid.uuid4())
    echoed = await async_client.get("/healthz", headers={"X-Request-ID": incoming})
    replaced = await async_client.get("/healthz", headers={"X-Request-ID": "not-a-uuid"})

    assert echoed.headers["x-request-id"] == incoming
    assert uuid.UUID(replaced.headers["x-request-id"]).version == 4


@pytest.mark.anyio
async def test_unknown_route_is_problem_json(async_client):
    resp = await async_client.get("/api/v1/nope")

    assert resp.status_code == 404
    assert resp.headers["content-type"].startswith("application/problem+json")
    assert resp.json()["status"] == 404
