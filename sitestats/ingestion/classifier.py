"""
Turns raw telemetry records into stored view, click and referrer facts.
Bot traffic, repeated hits and clicks to the site's own pages are filtered here;
the source watermark advances past every record whatever its fate.
"""
from typing import Any, Callable, Iterable, List, NamedTuple, Optional
from urllib.parse import urljoin, urlparse

from prometheus_client import Counter
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from sitestats.core.logging_config import get_logger
from sitestats.db.models import ClickFact, ReferrerFact, Source, ViewFact
from sitestats.schemas.payload import RawEvent, remote_id
from sitestats.schemas.results import ClassifiedBatch, Outcome
from sitestats.services.bots import is_bot
from sitestats.services.domains import domain_of, same_site
from sitestats.services.rate_limiter import DedupKey, RateLimiter

logger = get_logger("classifier")

EVENTS_CLASSIFIED = Counter('sitestats_events_total', 'Raw events by classification outcome', ['source', 'outcome'])

AgentClassifier = Callable[[str], Optional[str]]


class Classification(NamedTuple):
    outcome: Outcome
    referrer_recorded: bool = False


def _resolve(base_url: str, url: str) -> Optional[str]:
    resolved = urljoin(base_url, url.strip())
    parsed = urlparse(resolved)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return resolved


class EventClassifier:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        upload_paths: Iterable[str] = (),
        media_extensions: Iterable[str] = (),
        agent_classifier: Optional[AgentClassifier] = None,
    ):
        self.rate_limiter = rate_limiter
        self.upload_paths = tuple(p.lower() for p in upload_paths)
        self.media_extensions = {e.lower().lstrip(".") for e in media_extensions}
        self.agent_classifier = agent_classifier

    def is_media(self, url: str) -> bool:
        path = urlparse(url).path.lower()
        if any(p in path for p in self.upload_paths):
            return True
        last_segment = path.rsplit("/", 1)[-1]
        if "." not in last_segment:
            return False
        return last_segment.rsplit(".", 1)[-1] in self.media_extensions

    def is_outbound(self, url: str, host: str) -> bool:
        return not same_site(url, host) or self.is_media(url)

    async def classify_batch(
        self,
        session: AsyncSession,
        source: Source,
        base_url: str,
        raw_events: List[Any],
    ) -> ClassifiedBatch:
        """
        Classifies a batch in delivery order and moves the source watermark to
        the largest id seen, whether or not the record was stored.
        """
        result = ClassifiedBatch(max_id=source.last_event_id or 0)
        watermark = source.last_event_id or 0

        for raw in raw_events:
            event_id = remote_id(raw, "id")
            if event_id is None:
                logger.debug("event_without_id", source=source.host)
                result.anomalies += 1
                self._count(source.host, Outcome.ANOMALY)
                continue

            result.max_id = max(result.max_id, event_id)
            if event_id <= watermark:
                result.skipped += 1
                self._count(source.host, Outcome.SKIPPED)
                continue
            watermark = event_id

            try:
                event = RawEvent.model_validate(raw)
            except ValidationError as e:
                logger.debug("event_anomaly", source=source.host, event_id=event_id, error=str(e))
                result.anomalies += 1
                self._count(source.host, Outcome.ANOMALY)
                continue

            classification = await self.classify(session, source.host, base_url, event)
            outcome = classification.outcome
            if outcome == Outcome.VIEW:
                result.views += 1
            elif outcome == Outcome.CLICK:
                result.clicks += 1
            elif outcome == Outcome.BOT:
                result.bots += 1
            elif outcome == Outcome.SUPPRESSED:
                result.suppressed += 1
            elif outcome == Outcome.IGNORED:
                result.ignored += 1
            else:
                result.anomalies += 1
            if classification.referrer_recorded:
                result.referrers += 1
            self._count(source.host, outcome)

        source.last_event_id = max(source.last_event_id or 0, result.max_id)
        return result

    async def classify(self, session: AsyncSession, host: str, base_url: str, event: RawEvent) -> Classification:
        page = _resolve(base_url, event.page)
        if page is None:
            return Classification(Outcome.ANOMALY)

        click = None
        if event.click is not None:
            click = _resolve(base_url, event.click)
            if click is None:
                return Classification(Outcome.ANOMALY)

        if is_bot(event.user_agent):
            return Classification(Outcome.BOT)

        if click is None:
            return self._record_view(session, host, page, event)
        return self._record_click(session, host, page, click, event)

    def _record_view(self, session: AsyncSession, host: str, page: str, event: RawEvent) -> Classification:
        if self.rate_limiter.should_suppress(DedupKey(False, event.ip, page), event.time):
            return Classification(Outcome.SUPPRESSED)

        agent = self.agent_classifier(event.user_agent) if self.agent_classifier else None
        session.add(ViewFact(
            source=host,
            date=event.time.date(),
            timestamp=event.time,
            page=page,
            ip=event.ip,
            user_agent=event.user_agent,
            agent=agent,
            title=event.title,
            referrer=event.referrer,
        ))

        referrer_recorded = False
        if event.referrer and domain_of(event.referrer) and not same_site(event.referrer, host):
            session.add(ReferrerFact(
                source=host,
                timestamp=event.time,
                referrer=event.referrer,
                page=page,
            ))
            referrer_recorded = True
        return Classification(Outcome.VIEW, referrer_recorded)

    def _record_click(self, session: AsyncSession, host: str, page: str, click: str, event: RawEvent) -> Classification:
        if not self.is_outbound(click, host):
            return Classification(Outcome.IGNORED)
        if self.rate_limiter.should_suppress(DedupKey(True, event.ip, click), event.time):
            return Classification(Outcome.SUPPRESSED)

        session.add(ClickFact(
            source=host,
            timestamp=event.time,
            url=click,
            domain=domain_of(click),
            page=page,
        ))
        return Classification(Outcome.CLICK)

    @staticmethod
    def _count(host: str, outcome: Outcome):
        EVENTS_CLASSIFIED.labels(source=host, outcome=outcome.value).inc()
