import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from concierge.database import Base


class InboundJob(Base):
    __tablename__ = "inbound_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Text, nullable=False, unique=True)
    salon_id = Column(UUID(as_uuid=True), ForeignKey("salons.id"), nullable=False)
    chat_id = Column(UUID(as_uuid=True), ForeignKey("chats.id"), nullable=False)
    payload_json = Column(JSONB, nullable=False)
    priority = Column(Integer, nullable=False, default=1)  # 1 text, 2 media
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, DONE, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(TIMESTAMP(timezone=True))
    last_error = Column(Text)
    result_json = Column(JSONB)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
