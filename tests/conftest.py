import pytest
from typing import Any, Dict, List

from sitestats.core.config import Settings, SourceConfig
from sitestats.core.database import Database
from sitestats.core.errors import SourceFetchError
from sitestats.ingestion.pipeline import build_poller
from sitestats.services.geo import GeoResult


class FakeFetcher:
    """
    Serves queued payloads per host; an Exception in the queue is raised instead.
    Records every (host, after_event_id, after_comment_id) request.
    """

    def __init__(self):
        self.queues: Dict[str, List[Any]] = {}
        self.calls: List[tuple] = []

    def queue(self, host: str, *payloads):
        self.queues.setdefault(host, []).extend(payloads)

    async def fetch(self, source: SourceConfig, after_event_id: int, after_comment_id: int):
        self.calls.append((source.host, after_event_id, after_comment_id))
        queue = self.queues.get(source.host)
        if not queue:
            return {"events": [], "comments": []}
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeGeo:
    def __init__(self, answers: Dict[str, Any] | None = None):
        self.answers = answers or {}
        self.calls: List[str] = []

    async def lookup(self, ip: str) -> GeoResult:
        self.calls.append(ip)
        answer = self.answers.get(ip)
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            return GeoResult(status="fail")
        return GeoResult.model_validate(answer)


def event(id, page="https://a.example/p", ip="1.2.3.4", click="", referrer="",
          user_agent="Mozilla/5.0", time="2025-01-01 10:00:00", **extra):
    record = {
        "id": id,
        "time": time,
        "click": click,
        "page": page,
        "referrer": referrer,
        "ip": ip,
        "user_agent": user_agent,
    }
    record.update(extra)
    return record


def comment(comment_id, status="1", content="Nice post", date_gmt="2025-01-01 12:00:00", **extra):
    record = {
        "comment_id": comment_id,
        "comment_post_id": 7,
        "comment_date_gmt": date_gmt,
        "comment_author": "Ann",
        "comment_author_email": "ann@mail.test",
        "comment_url": "",
        "comment_content": content,
        "comment_approved": status,
    }
    record.update(extra)
    return record


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'sitestats.db'}",
        SOURCES=[SourceConfig(host="a.example"), SourceConfig(host="b.example")],
        ENRICH_INTERVAL_SECONDS=0,
        LOCAL_TIMEZONE="Europe/Berlin",
    )


# Function-scoped store: fresh schema for every test
@pytest.fixture
async def db(settings):
    database = Database(settings.DATABASE_URL)
    await database.init()
    yield database
    await database.dispose()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def geo():
    return FakeGeo()


@pytest.fixture
async def poller(db, settings, fetcher, geo):
    p = build_poller(db, settings, fetcher=fetcher, geo=geo)
    yield p
    # let a sweep kicked by the last cycle finish before the store goes away
    await p.enricher.join()
    await p.close()


@pytest.fixture
def auth_failure():
    return SourceFetchError("b.example", "authentication failed (HTTP 401)")
