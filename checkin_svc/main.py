from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .db import init_db
from .routers import attendees, checkins
from .core.config import get_settings
from .core.ratelimit import sweep_rate_limiter
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.nats_enabled:
        try:
            await nats_connect()
        except Exception:
            logger.warning("NATS unavailable, check-in events will not be published", exc_info=True)
    if settings.rl_backend == "redis" and not await ping_redis():
        logger.warning("Redis unavailable at %s, rate limiting will error until it is reachable", settings.redis_url)

    # in-memory rate limit windows are only dropped here
    scheduler.add_job(prune_rate_limits, "interval", seconds=settings.rl_sweep_interval_seconds)
    scheduler.start()

    yield

    scheduler.shutdown(wait=False)
    await nats_close()
    await close_redis()

async def prune_rate_limits():
    removed = sweep_rate_limiter()
    if removed:
        logger.debug("pruned %d expired rate-limit windows", removed)

app = FastAPI(title="qr-checkin-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkins.router)
app.include_router(attendees.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "qr-checkin-svc"}

Instrumentator().instrument(app).expose(app)
