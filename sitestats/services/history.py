"""
Daily per-site rollups.
A day is summarized once the site has reported traffic for a later day, and its
row is never touched again, even if late facts for that day arrive afterwards.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.future import select

from sitestats.core.database import Database
from sitestats.core.logging_config import get_logger
from sitestats.db.models import ClickFact, HistorySummary, ReferrerFact, ViewFact

logger = get_logger("history")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_bounds(day: date):
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class HistorySummarizer:
    def __init__(self, db: Database, clock: Callable[[], datetime] = _utc_now):
        self.db = db
        self.clock = clock

    async def is_stale(self, session) -> bool:
        """True when the table is empty or nothing has been summarized today."""
        total = await session.scalar(select(func.count(HistorySummary.id)))
        if not total:
            return True
        today_start, _ = day_bounds(self.clock().date())
        fresh = await session.scalar(
            select(func.count(HistorySummary.id)).where(HistorySummary.created_at >= today_start)
        )
        return not fresh

    async def summarize(self, force: bool = False) -> int:
        async with self.db.session() as session:
            if not force and not await self.is_stale(session):
                logger.debug("history_up_to_date")
                return 0

            written = 0
            hosts = (await session.execute(select(ViewFact.source).distinct())).scalars().all()
            for host in hosts:
                written += await self._summarize_source(session, host)

            await session.commit()

        if written:
            logger.info("history_summarized", rows=written)
        return written

    async def _summarize_source(self, session, host: str) -> int:
        latest: Optional[date] = await session.scalar(
            select(func.max(ViewFact.date)).where(ViewFact.source == host)
        )
        if latest is None:
            return 0

        done = set((await session.execute(
            select(HistorySummary.date).where(HistorySummary.source == host)
        )).scalars().all())

        # today's still-incoming data is left alone
        pending = (await session.execute(
            select(ViewFact.date)
            .where(ViewFact.source == host, ViewFact.date < latest)
            .distinct()
            .order_by(ViewFact.date)
        )).scalars().all()

        written = 0
        created_at = self.clock()
        for day in pending:
            if day in done:
                continue
            start, end = day_bounds(day)

            views, visitors = (await session.execute(
                select(func.count(ViewFact.id), func.count(func.distinct(ViewFact.ip)))
                .where(ViewFact.source == host, ViewFact.date == day)
            )).one()
            clicks = await session.scalar(
                select(func.count(ClickFact.id))
                .where(ClickFact.source == host, ClickFact.timestamp >= start, ClickFact.timestamp < end)
            )
            referrers = await session.scalar(
                select(func.count(ReferrerFact.id))
                .where(ReferrerFact.source == host, ReferrerFact.timestamp >= start, ReferrerFact.timestamp < end)
            )

            session.add(HistorySummary(
                source=host,
                date=day,
                views=views,
                visitors=visitors,
                clicks=clicks or 0,
                referrers=referrers or 0,
                created_at=created_at,
            ))
            written += 1
        return written
