from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid

from app.database import Base


class ProcessingLock(Base):
    __tablename__ = "processing_locks"

    conversation_id = Column(Uuid, ForeignKey("conversations.id"), primary_key=True)
    acquired_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    owner = Column(Text)
