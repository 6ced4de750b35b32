import httpx
import pytest
from fastapi import FastAPI

from pagewatch.api.monitors_router import router
from pagewatch.core.exceptions import FetchError
from pagewatch.core.tiers import Tier
from pagewatch.core.types import UsageKind

from .conftest import URL, article, make_monitor


@pytest.fixture
def app(engine):
    application = FastAPI()
    application.include_router(router, prefix="/api/v1")
    application.state.engine = engine
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def test_check_endpoint(client, store, fetcher):
    store.set_user_tier("user-1", Tier.PRO)
    store.add_monitor(make_monitor(1))
    fetcher.pages[URL] = article("<span class='price'>$10</span>")

    response = await client.post("/api/v1/monitors/1/check")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["current_value"] == "$10"
    assert body["changed"] is False


async def test_check_unknown_monitor(client):
    response = await client.post("/api/v1/monitors/42/check")
    assert response.status_code == 404


async def test_suggestions_endpoint(client, store, fetcher):
    store.set_user_tier("user-1", Tier.PRO)
    store.add_monitor(make_monitor(1, selector=".gone"))
    fetcher.pages[URL] = article("<span class='price'>$10</span>")

    response = await client.get("/api/v1/monitors/1/suggestions", params={"expected_text": "$10"})

    assert response.status_code == 200
    body = response.json()
    assert body["current_selector"]["valid"] is False
    assert body["suggestions"][0]["selector"] == ".price"


async def test_suggestions_page_unavailable(client, store, fetcher):
    store.add_monitor(make_monitor(1))
    fetcher.pages[URL] = FetchError("Failed to fetch page (HTTP 502)", status_code=502)

    response = await client.get("/api/v1/monitors/1/suggestions")

    assert response.status_code == 502


async def test_scheduler_status(client):
    response = await client.get("/api/v1/scheduler/status")

    assert response.status_code == 200
    assert response.json()["running"] is False


async def test_usage_endpoint(client, engine):
    await engine.quota.record_usage(UsageKind.RENDER, "heavy", True)
    await engine.quota.record_usage(UsageKind.RENDER, "heavy", False)
    await engine.quota.record_usage(UsageKind.EMAIL, "light", True)

    response = await client.get("/api/v1/usage", params={"kind": "render", "days": 7})

    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == "render"
    assert (body["total"], body["successes"], body["failures"]) == (2, 1, 1)
    assert body["top_consumers"] == [{"user_id": "heavy", "count": 2}]


async def test_engine_missing_returns_503():
    bare = FastAPI()
    bare.include_router(router)
    transport = httpx.ASGITransport(app=bare)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        response = await http.get("/scheduler/status")
    assert response.status_code == 503
