import time
from fastapi import FastAPI, Depends, Request
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitestats.core.config import get_settings
from sitestats.core.database import Database, get_db
from sitestats.db.models import Source
from sitestats.ingestion.pipeline import build_poller
from sitestats.api.routes import router as api_router

from prometheus_fastapi_instrumentator import Instrumentator
from sitestats.core.logging_config import setup_logging, get_logger

# Setup Structured Logging
setup_logging()
logger = get_logger("main")

app = FastAPI(title="sitestats")

# Instrument Prometheus
Instrumentator().instrument(app).expose(app)


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    db = Database(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    # No store, no service: let this propagate and abort startup
    await db.init()

    app.state.settings = settings
    app.state.db = db
    app.state.poller = build_poller(db, settings)
    logger.info("startup_event", sources=settings.source_hosts)

    # Pick up any backfill a previous process left unfinished
    app.state.poller.enricher.kick()


@app.on_event("shutdown")
async def shutdown_event():
    poller = getattr(app.state, "poller", None)
    if poller is not None:
        await poller.close()
    db = getattr(app.state, "db", None)
    if db is not None:
        await db.dispose()


@app.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    db_status = "unhealthy"
    poll_status = "unknown"
    last_poll = None

    try:
        await db.execute(select(1))
        db_status = "connected"

        result = await db.execute(select(Source))
        sources = result.scalars().all()

        if not sources:
            poll_status = "no_polls_yet"
        else:
            # any source whose last poll failed degrades the whole status
            failures = [s for s in sources if s.last_status != 'success']
            poll_status = "failure" if failures else "success"

            timestamps = [s.last_polled_at for s in sources if s.last_polled_at]
            if timestamps:
                last_poll = max(timestamps).isoformat()

    except Exception as e:
        db_status = f"error: {str(e)}"

    poller = getattr(request.app.state, "poller", None)
    latency = (time.time() - start_time) * 1000

    return {
        "status": "ok",
        "db_connectivity": db_status,
        "poll_status": poll_status,
        "last_poll": last_poll,
        "poll_in_progress": bool(poller and poller.busy),
        "enrichment_running": bool(poller and poller.enricher and poller.enricher.running),
        "latency_ms": round(latency, 2)
    }

app.include_router(api_router)
