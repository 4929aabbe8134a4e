"""
HTTP API (ASGITransport, background runner patched):
- health, root, readiness.
- POST /api/generation: 202 queued; 409 while a run is in progress; 422 on negative ceilings.
- status / cancel / reset / stats.
- rebuild endpoints: bad mode 400, queued message, status and reset.
"""
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import add_experience, add_location
from tourism_director.main import app
from tourism_director.services.setting_store import RunStatus


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health_root_and_readyz(db_tables) -> None:
    async with _client() as client:
        health = await client.get("/health")
        root = await client.get("/")
        ready = await client.get("/api/readyz")

    assert health.json() == {"status": "ok"}
    assert root.json()["name"] == "tourism_content_director"
    assert ready.status_code == 200
    assert ready.json() == {"status": "ok", "db": "ok"}
    assert "X-Correlation-ID" in health.headers


@pytest.mark.asyncio
async def test_generation_queued(db_tables) -> None:
    with patch("tourism_director.routers.generation_router.start_job", MagicMock(return_value=True)) as start:
        async with _client() as client:
            resp = await client.post("/api/generation", json={"max_locations": 10, "skip_plans": True})

    assert resp.status_code == 202, resp.text
    assert resp.json() == {"queued": True, "message": "Generation queued"}
    start.assert_called_once()
    assert start.call_args.args[0] == "content_generation"


@pytest.mark.asyncio
async def test_generation_conflict_while_in_progress(db_tables) -> None:
    await RunStatus("ai.generation").save("in_progress", "Processing Mostar")
    start = MagicMock(return_value=True)

    with patch("tourism_director.routers.generation_router.start_job", start):
        async with _client() as client:
            resp = await client.post("/api/generation", json={})

    assert resp.status_code == 409
    start.assert_not_called()


@pytest.mark.asyncio
async def test_generation_rejects_negative_ceiling(db_tables) -> None:
    async with _client() as client:
        resp = await client.post("/api/generation", json={"max_plans": -1})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_status_cancel_and_reset(db_tables) -> None:
    async with _client() as client:
        idle = (await client.get("/api/generation/status")).json()
        await RunStatus("ai.generation").save("in_progress", "Processing Sarajevo")
        cancel = await client.post("/api/generation/cancel")
        cancelled = (await client.get("/api/generation/status")).json()
        reset = await client.post("/api/generation/reset")
        after_reset = (await client.get("/api/generation/status")).json()

    assert idle["status"] == "idle"
    assert cancel.json() == {"message": "Cancellation requested"}
    assert cancelled["status"] == "in_progress"
    assert cancelled["cancelled"] is True
    assert reset.status_code == 200
    assert after_reset["status"] == "idle"
    assert after_reset["cancelled"] is False


@pytest.mark.asyncio
async def test_stats(db) -> None:
    old_town = await add_location(db, "Baščaršija")
    bridge = await add_location(db, "Stari most", city="Mostar")
    await add_experience(db, "Old Town Walk", [old_town])
    await add_experience(db, "Bridges", [bridge], city="Mostar")
    await db.commit()

    async with _client() as client:
        resp = await client.get("/api/generation/stats")

    data = resp.json()
    assert resp.status_code == 200
    assert data["total_locations"] == 2
    assert data["total_experiences"] == 2
    assert {c["city"] for c in data["cities"]} == {"Sarajevo", "Mostar"}


@pytest.mark.asyncio
async def test_rebuild_endpoints(db_tables) -> None:
    start = MagicMock(return_value=True)
    with patch("tourism_director.routers.rebuild_router.start_job", start):
        async with _client() as client:
            bad = await client.post("/api/rebuild/plans", json={"rebuild_mode": "accommodations"})
            trim = await client.post("/api/rebuild/experiences", json={"rebuild_mode": "accommodations"})
            preview = await client.post("/api/rebuild/plans", json={"dry_run": True})
            status = await client.get("/api/rebuild/plans/status")

    assert bad.status_code == 400
    assert trim.status_code == 202
    assert trim.json() == {"message": "Rebuild queued (accommodations)"}
    assert preview.json() == {"message": "Rebuild queued (preview)"}
    assert [c.args[0] for c in start.call_args_list] == ["rebuild_experiences", "rebuild_plans"]
    assert status.json() == {"status": "idle", "message": None, "results": {}}


@pytest.mark.asyncio
async def test_rebuild_conflict_and_reset(db_tables) -> None:
    await RunStatus("rebuild_experiences").save("in_progress", "Rebuilding experience Old Town Walk...")
    start = MagicMock(return_value=True)

    with patch("tourism_director.routers.rebuild_router.start_job", start):
        async with _client() as client:
            busy = await client.post("/api/rebuild/experiences", json={})
            reset = await client.post("/api/rebuild/experiences/reset")
            status = (await client.get("/api/rebuild/experiences/status")).json()

    assert busy.status_code == 409
    assert reset.json() == {"message": "Experience rebuild status reset"}
    assert status["status"] == "idle"
    start.assert_not_called()
