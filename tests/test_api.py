import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import comment, event
from sitestats.main import app


@pytest_asyncio.fixture
async def async_client(db, settings, poller):
    app.state.settings = settings
    app.state.db = db
    app.state.poller = poller
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_before_first_poll(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["db_connectivity"] == "connected"
    assert body["poll_status"] == "no_polls_yet"
    assert body["poll_in_progress"] is False


@pytest.mark.asyncio
async def test_poll_run_then_query(async_client, fetcher):
    fetcher.queue("a.example", {
        "events": [
            event(1, referrer="https://www.google.de/"),
            event(2, ip="2.2.2.2", referrer="https://blog.other.org/post"),
            event(3, click="https://other.org/download", ip="3.3.3.3"),
            event(4, ip="4.4.4.4", time="2025-01-02 09:00:00"),
        ],
        "comments": [comment(1)],
    })

    response = await async_client.post("/poll/run")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["failed_sources"] == []
    assert body["result"]["summaries_written"] == 1

    sources = (await async_client.get("/sources")).json()
    assert "meta" in sources
    by_host = {s["host"]: s for s in sources["data"]}
    assert by_host["a.example"]["last_event_id"] == 4
    assert by_host["a.example"]["last_comment_id"] == 1

    daily = (await async_client.get("/views/daily", params={"source": "a.example"})).json()["data"]
    assert daily == [
        {"date": "2025-01-01", "views": 2, "visitors": 2},
        {"date": "2025-01-02", "views": 1, "visitors": 1},
    ]

    domains = (await async_client.get("/clicks/domains")).json()["data"]
    assert domains == [{"domain": "other.org", "clicks": 1}]

    referrers = (await async_client.get("/referrers")).json()["data"]
    assert {r["category"]: r["count"] for r in referrers} == {"Google": 1, "~other.org": 1}

    detailed = (await async_client.get("/referrers", params={"summarize": "false"})).json()["data"]
    assert {r["category"] for r in detailed} == {"Google", "https://blog.other.org/post"}

    history = (await async_client.get("/history")).json()["data"]
    assert len(history) == 1
    assert history[0]["date"] == "2025-01-01"
    assert history[0]["views"] == 2
    assert history[0]["clicks"] == 1

    comments = (await async_client.get("/comments", params={"source": "a.example"})).json()["data"]
    assert comments[0]["content"] == "Nice post"


@pytest.mark.asyncio
async def test_partial_poll_reports_failed_source(async_client, fetcher, auth_failure):
    fetcher.queue("a.example", {"events": [event(1)]})
    fetcher.queue("b.example", auth_failure)

    body = (await async_client.post("/poll/run")).json()

    assert body["status"] == "partial"
    assert body["failed_sources"] == ["b.example"]

    health = (await async_client.get("/health")).json()
    # b.example never succeeded, so it has no row to degrade the status
    assert health["poll_status"] == "success"
    assert health["last_poll"] is not None


@pytest.mark.asyncio
async def test_countries_after_enrichment(async_client, fetcher, geo, poller):
    geo.answers["1.2.3.4"] = {"status": "success", "countryCode": "SE", "country": "Sweden"}
    fetcher.queue("a.example", {"events": [event(1), event(2, ip="5.5.5.5")]})

    await async_client.post("/poll/run")
    await poller.enricher.join()

    data = (await async_client.get("/countries")).json()["data"]
    assert {(c["code"], c["name"], c["views"]) for c in data} == {("SE", "Sweden", 1), ("XX", "Unknown", 1)}


@pytest.mark.asyncio
async def test_metrics_endpoint(async_client):
    response = await async_client.get("/metrics")
    assert response.status_code == 200
    assert "sitestats_events_total" in response.text or "poll_records_processed_total" in response.text
