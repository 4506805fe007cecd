"""
Read-only JSON queries over the collected facts, plus the poll trigger an
external timer calls.
"""
import time
import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sitestats.core.database import get_db
from sitestats.core.logging_config import get_logger
from sitestats.schemas.data import (
    CommentResponse,
    HistorySummaryResponse,
    ListResponse,
    MetaData,
    SourceStatusResponse,
)
from sitestats.services import queries
from sitestats.services.referrers import ReferrerClassifier

logger = get_logger("api")

router = APIRouter()


def _envelope(start_time: float, data):
    latency = (time.time() - start_time) * 1000
    return {
        "meta": MetaData(request_id=str(uuid.uuid4()), latency_ms=latency),
        "data": data,
    }


@router.get("/sources", response_model=ListResponse[SourceStatusResponse])
async def get_sources(db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    return _envelope(start_time, await queries.source_status(db))


@router.get("/views/daily", response_model=ListResponse[dict])
async def get_views_daily(
    source: Optional[str] = Query(None, description="Filter by source host"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    return _envelope(start_time, await queries.views_by_day(db, source, start, end))


@router.get("/views/pages", response_model=ListResponse[dict])
async def get_top_pages(
    source: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(20, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    return _envelope(start_time, await queries.top_pages(db, source, start, end, limit))


@router.get("/clicks/domains", response_model=ListResponse[dict])
async def get_click_domains(
    source: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    return _envelope(start_time, await queries.clicks_by_domain(db, source, start, end, limit))


@router.get("/referrers", response_model=ListResponse[dict])
async def get_referrers(
    request: Request,
    source: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    summarize: bool = Query(True, description="Group unknown domains instead of listing full URLs"),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    classifier = ReferrerClassifier(request.app.state.settings.source_hosts)
    data = await queries.referrers_by_category(db, classifier, source, start, end, summarize)
    return _envelope(start_time, data)


@router.get("/countries", response_model=ListResponse[dict])
async def get_countries(
    source: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    return _envelope(start_time, await queries.countries(db, source, start, end))


@router.get("/history", response_model=ListResponse[HistorySummaryResponse])
async def get_history(
    source: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    return _envelope(start_time, await queries.history(db, source, start, end))


@router.get("/comments", response_model=ListResponse[CommentResponse])
async def get_comments(
    source: Optional[str] = None,
    status: Optional[str] = Query(None, description="Moderation status, e.g. 1, 0, spam"),
    offset: int = 0,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    start_time = time.time()
    return _envelope(start_time, await queries.comments(db, source, status, offset, limit))


@router.post("/poll/run")
async def run_poll_job(request: Request):
    """
    Runs one poll cycle over every configured source.
    """
    poller = request.app.state.poller
    settings = request.app.state.settings
    try:
        result = await poller.poll_all(settings.SOURCES)
    except Exception as e:
        logger.error("poll_trigger_failed", error=str(e))
        return {"status": "failed", "error": str(e)}
    return {
        "status": "completed" if not result.failed else "partial",
        "failed_sources": result.failed,
        "result": result.model_dump(),
    }
