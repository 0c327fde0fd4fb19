import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import relationship

from app.database import Base


class ChannelIntegration(Base):
    __tablename__ = "channel_integrations"
    __table_args__ = (
        Index(
            "uq_channel_integrations_connected",
            "workspace_id",
            "channel",
            unique=True,
            postgresql_where=text("is_connected"),
            sqlite_where=text("is_connected = 1"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    channel = Column(Text, nullable=False)  # facebook, instagram, whatsapp, telegram
    is_connected = Column(Boolean, nullable=False, default=True)
    # page_id, page_access_token, access_token, phone_number_id, bot_token, verify_token ...
    credentials = Column(JSON, nullable=False, default=dict)
    external_account_id = Column(Text)  # page id / IG account id / phone number id / bot id
    last_fetch_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True))

    workspace = relationship("Workspace", back_populates="integrations")
