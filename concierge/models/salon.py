import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from concierge.database import Base


class Salon(Base):
    __tablename__ = "salons"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    whatsapp_number = Column(Text, nullable=False, unique=True)  # normalized, "+5511..."
    timezone = Column(Text, nullable=False, default="America/Sao_Paulo")
    settings = Column(JSONB, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    @property
    def agent_name(self) -> str:
        return (self.settings or {}).get("agent_name") or "Assistente"

    @property
    def agent_tone(self) -> str:
        return (self.settings or {}).get("agent_tone") or "cordial e objetivo"
