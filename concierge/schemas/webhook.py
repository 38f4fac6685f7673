from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    success: bool
    message: str
    message_id: Optional[str] = None
    chat_id: Optional[UUID] = None
    job_id: Optional[UUID] = None


class QueueStatsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    done: int = 0
    failed: int = 0
    delayed: int = 0


class RateLimitResetRequest(BaseModel):
    phone: str
    salon_id: Optional[UUID] = None


class ManualModeRequest(BaseModel):
    is_manual: bool
