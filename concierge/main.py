import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from concierge.config import settings
from concierge.database import SessionLocal, get_db
from concierge.logging_config import get_logger, setup_logging
from concierge.models import Chat, Customer, InboundJob, Message, Salon
from concierge.routers import admin, webhook
from concierge.services.redis_client import get_redis
from concierge.services.worker_loop import build_worker_loop

setup_logging(settings.log_level)

app = FastAPI(
    title="Salon Concierge API",
    description="WhatsApp receptionist for salons: inbound webhook, queue worker and admin",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)

worker_logger = get_logger("worker")
_worker_task: asyncio.Task | None = None
_worker_stop: asyncio.Event | None = None


def _is_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.worker_enabled


@app.on_event("startup")
async def start_worker() -> None:
    global _worker_task, _worker_stop
    if not _is_worker_enabled():
        return
    if _worker_task is None or _worker_task.done():
        _worker_stop = asyncio.Event()
        loop = build_worker_loop(get_redis(), session_factory=SessionLocal)
        _worker_task = asyncio.create_task(loop.run_forever(_worker_stop))
        worker_logger.info("Inbound worker started")


@app.on_event("shutdown")
async def stop_worker() -> None:
    global _worker_task, _worker_stop
    if _worker_task is None:
        return
    if _worker_stop is not None:
        _worker_stop.set()
    try:
        await asyncio.wait_for(_worker_task, timeout=settings.ai_timeout_seconds)
    except asyncio.TimeoutError:
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
    _worker_task = None
    _worker_stop = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "salons": db.query(Salon).count(),
        "customers": db.query(Customer).count(),
        "chats": db.query(Chat).count(),
        "messages": db.query(Message).count(),
        "inbound_jobs": db.query(InboundJob).count(),
    }
