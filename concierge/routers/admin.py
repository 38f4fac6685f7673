"""Admin API endpoints for operating the inbound queue and chats."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from concierge.config import settings
from concierge.database import SessionLocal, get_db
from concierge.logging_config import get_logger, mask_phone
from concierge.schemas.webhook import ManualModeRequest, QueueStatsResponse, RateLimitResetRequest
from concierge.services.conversation_service import set_manual
from concierge.services.job_queue import claim_pending_jobs, get_queue_stats, release_stale_processing
from concierge.services.rate_limiter import RateLimiter, phone_key, salon_key
from concierge.services.redis_client import get_redis
from concierge.services.worker_loop import build_worker_loop

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


# === QUEUE ENDPOINTS ===


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def queue_stats(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return QueueStatsResponse(**get_queue_stats(db))


@router.post("/queue/process")
async def process_queue(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    redis_client=Depends(get_redis),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Claim and process one batch inline. Useful when the background worker is disabled."""
    _require_admin_token(x_admin_token)
    released = release_stale_processing(
        db,
        stale_seconds=settings.queue_stale_processing_seconds,
        max_attempts=settings.queue_max_attempts,
    )
    rows = claim_pending_jobs(db, limit=limit)
    loop = build_worker_loop(redis_client, session_factory=SessionLocal)
    results = await loop.process_rows(rows)
    if released["released"] or released["failed"]:
        results["released_stale"] = released["released"]
        results["failed_stale"] = released["failed"]
    logger.info("Admin queue run", extra={"context": results})
    return results


@router.post("/queue/release-stale")
async def release_stale(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return release_stale_processing(
        db,
        stale_seconds=settings.queue_stale_processing_seconds,
        max_attempts=settings.queue_max_attempts,
    )


# === RATE LIMIT ===


@router.post("/rate-limit/reset")
async def reset_rate_limit(
    data: RateLimitResetRequest,
    redis_client=Depends(get_redis),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    limiter = RateLimiter(redis_client)
    keys = [phone_key(data.phone)]
    if data.salon_id:
        keys.append(salon_key(data.salon_id))
    for key in keys:
        await limiter.reset(key)
    logger.info(
        "Rate limit reset",
        extra={"context": {"phone": mask_phone(data.phone), "salon_id": str(data.salon_id) if data.salon_id else None}},
    )
    return {"success": True, "reset": keys}


# === CHATS ===


@router.post("/chats/{chat_id}/manual")
async def set_chat_manual(
    chat_id: UUID,
    data: ManualModeRequest,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Toggle human takeover. While manual, inbound messages are stored but not answered."""
    _require_admin_token(x_admin_token)
    chat = set_manual(db, chat_id, data.is_manual)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    logger.info("Chat manual mode changed", extra={"context": {"chat_id": str(chat_id), "is_manual": data.is_manual}})
    return {"success": True, "chat_id": str(chat_id), "is_manual": chat.is_manual}
