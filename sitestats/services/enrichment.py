"""
Background country backfill for stored page views.

One lookup per tick, a fixed pause between ticks, and a single global cursor.
The cursor moves past every row it touches, so an IP that never resolves cannot
stall the sweep.
"""
import asyncio
from typing import Optional, Tuple

from prometheus_client import Counter
from sqlalchemy.future import select

from sitestats.core.database import Database
from sitestats.core.logging_config import get_logger
from sitestats.db.models import Country, EnrichmentCursor, ViewFact
from sitestats.services.geo import GeoLookup, UNKNOWN_COUNTRY_CODE, UNKNOWN_COUNTRY_NAME

logger = get_logger("enrichment")

GEO_LOOKUPS = Counter('sitestats_geo_lookups_total', 'Country lookups by result', ['result'])

CURSOR_ROW_ID = 1


async def get_cursor(session) -> EnrichmentCursor:
    cursor = await session.get(EnrichmentCursor, CURSOR_ROW_ID)
    if cursor is None:
        cursor = EnrichmentCursor(id=CURSOR_ROW_ID, last_view_id=0)
        session.add(cursor)
    return cursor


class CountryEnricher:
    def __init__(self, db: Database, geo: GeoLookup, interval_seconds: float = 2.0):
        self.db = db
        self.geo = geo
        self.interval_seconds = interval_seconds
        self._running = False
        self._pending = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def kick(self) -> bool:
        """Starts a sweep in the background unless one is already in flight."""
        if self._running:
            # views committed while the sweep was deciding it had caught up
            self._pending = True
            return False
        self._running = True
        self._task = asyncio.create_task(self._sweep())
        self._task.add_done_callback(self._on_done)
        return True

    async def sweep(self) -> int:
        """Runs a sweep in the caller's task. Returns 0 if one is already running."""
        if self._running:
            return 0
        self._running = True
        return await self._sweep()

    async def join(self):
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._running = False

    async def _sweep(self) -> int:
        processed = 0
        logger.info("enrichment_sweep_start")
        try:
            while True:
                self._pending = False
                if await self.process_next():
                    processed += 1
                    await asyncio.sleep(self.interval_seconds)
                elif not self._pending:
                    break
        finally:
            self._running = False
        logger.info("enrichment_sweep_done", processed=processed)
        return processed

    def _on_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("enrichment_sweep_failed", error=str(exc))

    async def process_next(self) -> bool:
        """One tick: enrich the next view past the cursor. False when caught up."""
        async with self.db.session() as session:
            cursor = await get_cursor(session)
            result = await session.execute(
                select(ViewFact.id, ViewFact.ip)
                .where(ViewFact.id > cursor.last_view_id)
                .order_by(ViewFact.id)
                .limit(1)
            )
            row = result.first()
            await session.commit()
        if row is None:
            return False

        view_id, ip = row
        code, name = await self._lookup(ip)

        async with self.db.session() as session:
            view = await session.get(ViewFact, view_id)
            if view is not None and view.country is None:
                view.country = code
            if await session.get(Country, code) is None:
                session.add(Country(code=code, name=name))
            cursor = await get_cursor(session)
            cursor.last_view_id = max(cursor.last_view_id, view_id)
            await session.commit()

        logger.debug("view_enriched", view_id=view_id, country=code)
        return True

    async def _lookup(self, ip: str) -> Tuple[str, str]:
        if not ip:
            GEO_LOOKUPS.labels(result="skipped").inc()
            return UNKNOWN_COUNTRY_CODE, UNKNOWN_COUNTRY_NAME
        try:
            result = await self.geo.lookup(ip)
        except Exception as e:
            logger.warning("geo_lookup_error", ip=ip, error=str(e))
            GEO_LOOKUPS.labels(result="error").inc()
            return UNKNOWN_COUNTRY_CODE, UNKNOWN_COUNTRY_NAME

        if not result.ok:
            GEO_LOOKUPS.labels(result="unknown").inc()
            return UNKNOWN_COUNTRY_CODE, UNKNOWN_COUNTRY_NAME
        GEO_LOOKUPS.labels(result="success").inc()
        return result.country_code.upper(), result.country or result.country_code.upper()
