import httpx
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from conftest import event
from sitestats.core.config import SourceConfig
from sitestats.core.errors import PayloadError
from sitestats.db.models import Source, ViewFact
from sitestats.ingestion import pipeline
from sitestats.ingestion.pipeline import parse_batch

A, B = "a.example", "b.example"


async def sources_by_host(db):
    async with db.session() as session:
        rows = (await session.execute(select(Source))).scalars().all()
    return {s.host: s for s in rows}


@pytest.mark.asyncio
async def test_sources_are_polled_in_order(poller, fetcher, settings):
    fetcher.queue(A, {"events": [event(1)]})
    fetcher.queue(B, {"events": [event(1, page="https://b.example/")]})

    result = await poller.poll_all(settings.SOURCES)

    assert [c[0] for c in fetcher.calls] == [A, B]
    assert [s.host for s in result.sources] == [A, B]
    assert result.failed == []


@pytest.mark.asyncio
async def test_one_failing_source_does_not_abort_the_cycle(poller, fetcher, db, settings):
    fetcher.queue(A, httpx.ConnectError("connection refused"))
    fetcher.queue(B, {"events": [event(1, page="https://b.example/")]})

    result = await poller.poll_all(settings.SOURCES)

    assert result.failed == [A]
    assert result.sources[1].ok
    rows = await sources_by_host(db)
    # a source that never succeeded has no row yet
    assert A not in rows
    assert rows[B].last_event_id == 1


@pytest.mark.asyncio
async def test_failure_keeps_watermark_and_records_error(poller, fetcher, db, settings, auth_failure):
    fetcher.queue(B, {"events": [event(4, page="https://b.example/")]}, auth_failure)

    await poller.poll_all(settings.SOURCES[1:])
    result = await poller.poll_all(settings.SOURCES[1:])

    outcome = result.sources[0]
    assert not outcome.ok
    assert "authentication failed" in outcome.error
    rows = await sources_by_host(db)
    assert rows[B].last_event_id == 4
    assert rows[B].last_status == "failure"
    assert "authentication failed" in rows[B].error_log


@pytest.mark.asyncio
async def test_recovery_after_failure(poller, fetcher, db, settings):
    fetcher.queue(
        A,
        {"events": [event(1)]},
        {"events": "not a list"},
        {"events": [event(2, ip="5.6.7.8")]},
    )

    await poller.poll_all(settings.SOURCES[:1])
    failed = await poller.poll_all(settings.SOURCES[:1])
    assert failed.failed == [A]
    recovered = await poller.poll_all(settings.SOURCES[:1])

    assert recovered.failed == []
    rows = await sources_by_host(db)
    assert rows[A].last_status == "success"
    assert rows[A].error_log is None
    assert rows[A].last_event_id == 2
    assert rows[A].records_processed == 1
    # the failed cycle asked from the same watermark as the one after it
    assert fetcher.calls[1] == (A, 1, 0)
    assert fetcher.calls[2] == (A, 1, 0)


@pytest.mark.asyncio
async def test_non_object_payload_is_a_source_failure(poller, fetcher, db, settings):
    fetcher.queue(A, ["events"])

    result = await poller.poll_all(settings.SOURCES[:1])

    assert result.failed == [A]
    assert "PayloadError" in result.sources[0].error
    async with db.session() as session:
        assert (await session.execute(select(ViewFact))).first() is None


@pytest.mark.asyncio
async def test_cycle_kicks_enrichment(poller, fetcher, settings):
    fetcher.queue(A, {"events": [event(1)]})

    result = await poller.poll_all(settings.SOURCES[:1])

    assert result.enrichment_started
    await poller.enricher.join()
    assert not poller.enricher.running


def test_parse_batch_defaults_missing_lists():
    batch = parse_batch({"events": [event(1)]})
    assert batch.comments == []
    assert len(batch.events) == 1


def test_parse_batch_rejects_non_objects():
    with pytest.raises(PayloadError):
        parse_batch("events=1")


def test_source_config_defaults_base_url():
    config = SourceConfig(host="Blog.Example.ORG")
    assert config.host == "blog.example.org"
    assert config.base_url == "https://blog.example.org/"


@pytest.mark.asyncio
async def test_store_error_on_one_source_does_not_abort_the_cycle(poller, fetcher, settings, monkeypatch):
    real_get_source = pipeline.get_source

    async def locked_for_a(session, host):
        if host == A:
            raise OperationalError("SELECT sources", {}, Exception("database is locked"))
        return await real_get_source(session, host)

    monkeypatch.setattr(pipeline, "get_source", locked_for_a)
    fetcher.queue(B, {"events": [event(1, page="https://b.example/")]})

    result = await poller.poll_all(settings.SOURCES)

    assert result.failed == [A]
    assert "database is locked" in result.sources[0].error
    assert result.sources[1].ok
    assert result.sources[1].last_event_id == 1
    # a.example never reached its fetch
    assert [c[0] for c in fetcher.calls] == [B]
