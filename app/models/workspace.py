import uuid

from sqlalchemy import JSON, Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    # default_ai_enabled, ai_lookback_seconds, ai_settle_seconds
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True))

    agents = relationship("Agent", back_populates="workspace")
    integrations = relationship("ChannelIntegration", back_populates="workspace")
