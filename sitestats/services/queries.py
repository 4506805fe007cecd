"""
Read-only views over the stored facts, for whatever presentation layer sits on top.
All take an optional source host and a [start, end) time range.
"""
from collections import Counter
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from sitestats.db.models import ClickFact, Comment, Country, HistorySummary, ReferrerFact, Source, ViewFact
from sitestats.services.referrers import ReferrerClassifier


def _as_utc(value: datetime) -> datetime:
    # facts are stored as UTC; naive bounds are read as UTC too
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _filtered(query, model, source: Optional[str], start: Optional[datetime], end: Optional[datetime]):
    if source:
        query = query.where(model.source == source)
    if start is not None:
        query = query.where(model.timestamp >= _as_utc(start))
    if end is not None:
        query = query.where(model.timestamp < _as_utc(end))
    return query


async def source_status(session: AsyncSession) -> List[Source]:
    result = await session.execute(select(Source).order_by(Source.host))
    return list(result.scalars().all())


async def views_by_day(session: AsyncSession, source: str | None = None,
                       start: datetime | None = None, end: datetime | None = None) -> List[dict]:
    query = select(
        ViewFact.date,
        func.count(ViewFact.id),
        func.count(func.distinct(ViewFact.ip)),
    )
    query = _filtered(query, ViewFact, source, start, end).group_by(ViewFact.date).order_by(ViewFact.date)
    rows = (await session.execute(query)).all()
    return [{"date": d, "views": views, "visitors": visitors} for d, views, visitors in rows]


async def top_pages(session: AsyncSession, source: str | None = None,
                    start: datetime | None = None, end: datetime | None = None, limit: int = 20) -> List[dict]:
    views = func.count(ViewFact.id).label("views")
    query = select(ViewFact.page, func.max(ViewFact.title), views)
    query = _filtered(query, ViewFact, source, start, end)
    query = query.group_by(ViewFact.page).order_by(views.desc(), ViewFact.page).limit(limit)
    rows = (await session.execute(query)).all()
    return [{"page": page, "title": title, "views": count} for page, title, count in rows]


async def clicks_by_domain(session: AsyncSession, source: str | None = None,
                           start: datetime | None = None, end: datetime | None = None,
                           limit: int = 50) -> List[dict]:
    clicks = func.count(ClickFact.id).label("clicks")
    query = _filtered(select(ClickFact.domain, clicks), ClickFact, source, start, end)
    query = query.group_by(ClickFact.domain).order_by(clicks.desc(), ClickFact.domain).limit(limit)
    rows = (await session.execute(query)).all()
    return [{"domain": domain, "clicks": count} for domain, count in rows]


async def referrers_by_category(session: AsyncSession, classifier: ReferrerClassifier,
                                source: str | None = None, start: datetime | None = None,
                                end: datetime | None = None, summarize: bool = True) -> List[dict]:
    """Groups referrer facts by category; categories are computed on read."""
    query = _filtered(select(ReferrerFact.source, ReferrerFact.referrer), ReferrerFact, source, start, end)
    counts: Counter = Counter()
    for host, referrer in (await session.execute(query)).all():
        counts[classifier.classify(referrer, summarize=summarize, site=host)] += 1
    return [{"category": category, "count": count}
            for category, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]


async def countries(session: AsyncSession, source: str | None = None,
                    start: datetime | None = None, end: datetime | None = None) -> List[dict]:
    views = func.count(ViewFact.id).label("views")
    query = (
        select(ViewFact.country, Country.name, views)
        .outerjoin(Country, Country.code == ViewFact.country)
        .where(ViewFact.country.is_not(None))
    )
    query = _filtered(query, ViewFact, source, start, end)
    query = query.group_by(ViewFact.country, Country.name).order_by(views.desc(), ViewFact.country)
    rows = (await session.execute(query)).all()
    return [{"code": code, "name": name, "views": count} for code, name, count in rows]


async def history(session: AsyncSession, source: str | None = None,
                  start: date | None = None, end: date | None = None) -> List[HistorySummary]:
    query = select(HistorySummary)
    if source:
        query = query.where(HistorySummary.source == source)
    if start is not None:
        query = query.where(HistorySummary.date >= start)
    if end is not None:
        query = query.where(HistorySummary.date < end)
    result = await session.execute(query.order_by(HistorySummary.source, HistorySummary.date))
    return list(result.scalars().all())


async def comments(session: AsyncSession, source: str | None = None, status: str | None = None,
                   offset: int = 0, limit: int = 50) -> List[Comment]:
    query = select(Comment)
    if source:
        query = query.where(Comment.source == source)
    if status is not None:
        query = query.where(Comment.status == status)
    query = query.order_by(Comment.comment_date_gmt.desc()).offset(offset).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())
