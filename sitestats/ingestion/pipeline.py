"""
Drives the incremental poll of every tracked site.
Sources are drained one after another, never concurrently, so writes to
watermarks and fact tables from different sites never interleave. One site
failing never stops the others.
"""
import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from prometheus_client import Counter, Histogram, Gauge
from pydantic import ValidationError
from sqlalchemy.future import select

from sitestats.core.config import Settings, SourceConfig, get_settings
from sitestats.core.database import Database
from sitestats.core.errors import PayloadError
from sitestats.core.logging_config import get_logger, setup_logging
from sitestats.db.models import Source
from sitestats.ingestion.classifier import AgentClassifier, EventClassifier
from sitestats.ingestion.comments import CommentSynchronizer
from sitestats.ingestion.sources.http_source import HttpSourceFetcher, SourceFetcher
from sitestats.schemas.payload import RawComment, RawEvent, RemoteBatch
from sitestats.schemas.results import BatchResult, SourceOutcome
from sitestats.services.drift_detection import detect_drift
from sitestats.services.enrichment import CountryEnricher
from sitestats.services.geo import GeoLookup, IpApiLookup
from sitestats.services.history import HistorySummarizer
from sitestats.services.rate_limiter import RateLimiter

logger = get_logger("poller")

# --- Metrics ---
POLL_RECORDS_PROCESSED = Counter('poll_records_processed_total', 'Facts recorded per source', ['source'])
POLL_RUN_DURATION = Histogram('poll_run_duration_seconds', 'Per-source poll duration', ['source'])
POLL_SOURCE_STATUS = Gauge('poll_source_status', 'Last poll status (1=Success, 0=Fail)', ['source'])

# --- Watermark bookkeeping ---


async def get_source(session, host: str) -> Source | None:
    result = await session.execute(select(Source).where(Source.host == host))
    return result.scalars().first()


async def record_failure(session, host: str, duration: int, error: str):
    POLL_SOURCE_STATUS.labels(source=host).set(0)
    source = await get_source(session, host)
    # a source that never polled successfully gets no row
    if source is None:
        return
    source.last_status = "failure"
    source.records_processed = 0
    source.run_duration_ms = duration
    source.error_log = error
    source.last_polled_at = datetime.now(timezone.utc)


def parse_batch(payload) -> RemoteBatch:
    if not isinstance(payload, dict):
        raise PayloadError(f"expected an object, got {type(payload).__name__}")
    try:
        return RemoteBatch.model_validate(payload)
    except ValidationError as e:
        raise PayloadError(str(e)) from e


class Poller:
    def __init__(
        self,
        db: Database,
        fetcher: SourceFetcher,
        classifier: EventClassifier,
        comments: CommentSynchronizer,
        summarizer: Optional[HistorySummarizer] = None,
        enricher: Optional[CountryEnricher] = None,
    ):
        self.db = db
        self.fetcher = fetcher
        self.classifier = classifier
        self.comments = comments
        self.summarizer = summarizer
        self.enricher = enricher
        self._cycle_lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    async def poll_all(self, sources: Iterable[SourceConfig]) -> BatchResult:
        # one write cycle at a time, even if two triggers overlap
        async with self._cycle_lock:
            logger.info("poll_cycle_start")
            result = BatchResult()
            for source in sources:
                result.sources.append(await self.poll_source(source))

            if self.summarizer is not None:
                try:
                    result.summaries_written = await self.summarizer.summarize()
                except Exception as e:
                    logger.error("history_summary_failed", error=str(e))

            if self.enricher is not None:
                result.enrichment_started = self.enricher.kick()

            logger.info("poll_cycle_finish", sources=len(result.sources), failed=result.failed)
            return result

    async def poll_source(self, config: SourceConfig) -> SourceOutcome:
        start_time = time.time()
        host = config.host
        logger.info("poll_source_start", source=host)

        after_event_id = after_comment_id = 0
        async with self.db.session() as session:
            try:
                # 1. Watermarks
                source = await get_source(session, host)
                if source is not None:
                    after_event_id = source.last_event_id
                    after_comment_id = source.last_comment_id

                # 2. Extract
                payload = await self.fetcher.fetch(config, after_event_id, after_comment_id)
                batch = parse_batch(payload)
                logger.info("fetched_records", source=host, events=len(batch.events), comments=len(batch.comments))

                if source is None:
                    source = Source(host=host, last_event_id=0, last_comment_id=0)
                    session.add(source)

                if batch.events:
                    detect_drift(batch.events[0], RawEvent, host)
                if batch.comments:
                    detect_drift(batch.comments[0], RawComment, host)

                # 3. Classify & load
                classified = await self.classifier.classify_batch(session, source, config.base_url, batch.events)
                synced = await self.comments.sync(session, source, batch.comments)

                # 4. Bookkeeping
                duration_ms = int((time.time() - start_time) * 1000)
                source.last_status = "success"
                source.records_processed = classified.recorded
                source.run_duration_ms = duration_ms
                source.error_log = None
                source.last_polled_at = datetime.now(timezone.utc)
                await session.commit()

                logger.info(
                    "poll_source_success",
                    source=host,
                    views=classified.views,
                    clicks=classified.clicks,
                    referrers=classified.referrers,
                    suppressed=classified.suppressed,
                    bots=classified.bots,
                    skipped=classified.skipped,
                    anomalies=classified.anomalies,
                    comments=synced,
                    last_event_id=source.last_event_id,
                    duration_ms=duration_ms,
                )
                POLL_SOURCE_STATUS.labels(source=host).set(1)
                POLL_RECORDS_PROCESSED.labels(source=host).inc(classified.recorded)
                POLL_RUN_DURATION.labels(source=host).observe(duration_ms / 1000.0)

                return SourceOutcome(
                    host=host,
                    ok=True,
                    events=classified,
                    comments=synced,
                    last_event_id=source.last_event_id,
                    last_comment_id=source.last_comment_id,
                    duration_ms=duration_ms,
                )

            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                logger.error("poll_source_failure", source=host, error=error)
                duration_ms = int((time.time() - start_time) * 1000)
                try:
                    await session.rollback()
                    await record_failure(session, host, duration_ms, error)
                    await session.commit()
                except Exception as bookkeeping_error:
                    # the store itself is failing; the next source still gets its turn
                    POLL_SOURCE_STATUS.labels(source=host).set(0)
                    logger.error("poll_failure_not_recorded", source=host, error=str(bookkeeping_error))
                return SourceOutcome(
                    host=host,
                    ok=False,
                    last_event_id=after_event_id,
                    last_comment_id=after_comment_id,
                    duration_ms=duration_ms,
                    error=error,
                )

    async def close(self):
        if self.enricher is not None:
            await self.enricher.stop()
        for client in (self.fetcher, getattr(self.enricher, "geo", None)):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()


def build_poller(
    db: Database,
    settings: Settings,
    fetcher: Optional[SourceFetcher] = None,
    geo: Optional[GeoLookup] = None,
    agent_classifier: Optional[AgentClassifier] = None,
) -> Poller:
    """Wires the ingestion components from configuration."""
    fetcher = fetcher or HttpSourceFetcher(
        settings.FETCH_PATH,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        max_attempts=settings.FETCH_MAX_ATTEMPTS,
    )
    geo = geo or IpApiLookup(settings.GEO_LOOKUP_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
    rate_limiter = RateLimiter(window=timedelta(seconds=settings.DEDUP_WINDOW_SECONDS))
    classifier = EventClassifier(
        rate_limiter,
        upload_paths=settings.UPLOAD_PATHS,
        media_extensions=settings.MEDIA_EXTENSIONS,
        agent_classifier=agent_classifier,
    )
    return Poller(
        db,
        fetcher,
        classifier,
        CommentSynchronizer(settings.LOCAL_TIMEZONE),
        summarizer=HistorySummarizer(db),
        enricher=CountryEnricher(db, geo, interval_seconds=settings.ENRICH_INTERVAL_SECONDS),
    )


async def run_poll(settings: Settings | None = None, wait_for_enrichment: bool = True) -> BatchResult:
    """One complete poll cycle; the entry point for an external timer."""
    settings = settings or get_settings()
    db = Database(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    await db.init()
    poller = build_poller(db, settings)
    try:
        result = await poller.poll_all(settings.SOURCES)
        if wait_for_enrichment and poller.enricher is not None:
            await poller.enricher.join()
        return result
    finally:
        await poller.close()
        await db.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run_poll())
