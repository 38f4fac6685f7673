from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class MediaType(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    NONE = "none"

    @property
    def label(self) -> str:
        return MEDIA_LABELS[self]


MEDIA_LABELS = {
    MediaType.IMAGE: "imagem",
    MediaType.AUDIO: "mensagem de áudio",
    MediaType.VIDEO: "vídeo",
    MediaType.DOCUMENT: "documento",
    MediaType.NONE: "mídia",
}

TEXT_PRIORITY = 1
MEDIA_PRIORITY = 2


class InboundMessageJob(BaseModel):
    """Unit of work handed from the webhook receiver to the message worker."""

    message_id: str
    chat_id: UUID
    salon_id: UUID
    customer_id: Optional[UUID] = None
    sender_phone: str
    reply_destination: str
    salon_number: str
    body_text: str = ""
    has_media: bool = False
    media_type: MediaType = MediaType.NONE
    media_url: Optional[str] = None
    media_urls: list[str] = Field(default_factory=list)
    customer_name: Optional[str] = None
    profile_name: Optional[str] = None
    is_new_customer: bool = False
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def priority(self) -> int:
        return MEDIA_PRIORITY if self.has_media else TEXT_PRIORITY


class JobStatus(str, Enum):
    SUCCESS = "success"
    MANUAL_MODE = "manual_mode"
    MEDIA_HANDLED = "media_handled"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    DUPLICATE = "duplicate"


class JobResult(BaseModel):
    status: JobStatus
    message_id: str
    chat_id: UUID
    reply: Optional[str] = None
    usage: dict[str, Any] = Field(default_factory=dict)
    tool_errors: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    duration_ms: int = 0
