import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "channel",
            "external_customer_id",
            name="uq_conversations_customer",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    channel = Column(Text, nullable=False)
    external_customer_id = Column(Text, nullable=False)
    customer_display_name = Column(Text)
    customer_avatar_url = Column(Text)
    ai_enabled = Column(Boolean, nullable=False, default=False)
    assigned_agent_id = Column(Uuid, ForeignKey("agents.id"))
    last_message_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True))

    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
    orders = relationship("Order", back_populates="conversation")
