import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "provider_message_id", name="uq_messages_provider_id"),
        Index("ix_messages_unreplied", "conversation_id", "reply_sent", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    content = Column(Text, nullable=False)
    sender_type = Column(Text, nullable=False)  # customer, agent, system
    provider_message_id = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    is_backfilled = Column(Boolean, nullable=False, default=False)
    reply_sent = Column(Boolean, nullable=False, default=False)
    is_ai = Column(Boolean, nullable=False, default=False)
    delivery_status = Column(Text)  # pending, sent, failed (outbound only)
    delivery_error = Column(Text)

    conversation = relationship("Conversation", back_populates="messages")
