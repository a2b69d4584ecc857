"""
Crowdsource Engine - FastAPI Application

Problem lifecycle and geo-verification engine for civic problem reporting.

Flow:
- inbound command -> Idempotency Guard -> Location Resolver / Spatial Index
- -> Problem Registry + Consensus Engine
- -> Volunteer Resolution Workflow -> Notification Fanout (background worker)
"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .config import IMAGE_STORAGE_URL, LOG_LEVEL, UPLOAD_DIR
from .database import init_db
from .dependencies import get_fanout_worker, get_idempotency_guard
from .routers import (
    problems_router, geo_router, leaderboard_router, webhook_router, internal_router,
)


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the background workers."""
    init_db()
    guard = get_idempotency_guard()
    worker = get_fanout_worker()
    guard.start()
    worker.start()
    logger.info("Crowdsource Engine started")
    yield
    worker.stop()
    guard.stop()
    logger.info("Crowdsource Engine stopped")


app = FastAPI(
    lifespan=lifespan,
    title="Crowdsource Engine",
    description="""
    Crowdsource Engine - Problem Lifecycle & Geo-Verification

    Citizens report local problems, the community upvotes and verifies them
    on site, and volunteers resolve them with photographic proof that is
    sent to every supporter.

    ## Lifecycle
    REPORTED -> IN_REVIEW / IN_PROGRESS -> RESOLVED, or REJECTED
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(problems_router)
app.include_router(geo_router)
app.include_router(leaderboard_router)
app.include_router(webhook_router)
app.include_router(internal_router)

# Local image storage is served straight from disk
if not IMAGE_STORAGE_URL:
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.get("/")
async def root():
    return {
        "name": "Crowdsource Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check with fanout queue depth."""
    worker = get_fanout_worker()
    return {
        "status": "healthy",
        "service": "crowdsource-engine",
        "version": "1.0.0",
        "notification_queue_depth": worker.qsize(),
        "notification_worker_running": worker.running,
    }


# For running with: python -m crowdsource.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
