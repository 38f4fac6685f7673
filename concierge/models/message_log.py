import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from concierge.database import Base


class MessageLog(Base):
    """Secondary audit trail of provider traffic. Written best-effort."""

    __tablename__ = "message_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    salon_id = Column(UUID(as_uuid=True), nullable=False)
    chat_id = Column(UUID(as_uuid=True))
    direction = Column(Text, nullable=False)  # inbound, outbound
    body = Column(Text, nullable=False)
    provider_message_id = Column(Text)
    status = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
