import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from concierge.database import Base


class Message(Base):
    __tablename__ = "messages"
    # One stored inbound row per provider message, even for concurrent redeliveries.
    __table_args__ = (
        Index(
            "uq_messages_chat_provider_id",
            "chat_id",
            text("(metadata->>'message_id')"),
            unique=True,
            postgresql_where=text("role = 'user'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_id = Column(UUID(as_uuid=True), ForeignKey("chats.id"), nullable=False)
    role = Column(Text, nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    message_metadata = Column("metadata", JSONB, nullable=False, default=dict)
    requires_response = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    chat = relationship("Chat", back_populates="messages")
