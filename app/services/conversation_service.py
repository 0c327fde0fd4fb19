import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.database import upsert
from app.logging_config import get_logger
from app.models import Agent, Conversation, Workspace
from app.services.channels import is_placeholder_name, placeholder_name
from app.services.channels.base import CHANNEL_LABELS

logger = get_logger("conversation_service")


def _ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _placeholder_filter():
    column = Conversation.customer_display_name
    clauses = [column.is_(None), column == ""]
    clauses.extend(column.like(f"{label} User%") for label in CHANNEL_LABELS.values())
    return or_(*clauses)


def find_ai_agent_id(db: Session, workspace_id) -> Optional[uuid.UUID]:
    agent = (
        db.query(Agent)
        .filter(Agent.workspace_id == workspace_id, Agent.is_ai.is_(True), Agent.is_active.is_(True))
        .order_by(Agent.created_at, Agent.name)
        .first()
    )
    return agent.id if agent else None


def resolve_conversation(
    db: Session,
    *,
    workspace_id,
    channel: str,
    external_customer_id: str,
    display_name_hint: Optional[str] = None,
    message_at: Optional[datetime] = None,
) -> Conversation:
    """Find or create the conversation for (workspace, channel, customer).

    Creation is a single INSERT .. ON CONFLICT DO NOTHING so concurrent webhooks
    for a new customer converge on one row. On an existing row last_message_at
    only moves forward, and a placeholder display name is replaced by a real one
    (never the other way round).
    """
    now = datetime.now(timezone.utc)
    message_at = _ensure_timezone(message_at) or now
    hint = (display_name_hint or "").strip() or None

    workspace = db.get(Workspace, workspace_id)
    ai_enabled = bool((workspace.settings or {}).get("default_ai_enabled", False)) if workspace else False

    stmt = (
        upsert(db, Conversation)
        .values(
            id=uuid.uuid4(),
            workspace_id=workspace_id,
            channel=channel,
            external_customer_id=external_customer_id,
            customer_display_name=hint if not is_placeholder_name(hint) else placeholder_name(channel, external_customer_id),
            ai_enabled=ai_enabled,
            assigned_agent_id=find_ai_agent_id(db, workspace_id) if ai_enabled else None,
            last_message_at=message_at,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["workspace_id", "channel", "external_customer_id"])
    )
    created = db.execute(stmt).rowcount > 0

    conversation = (
        db.query(Conversation)
        .filter(
            Conversation.workspace_id == workspace_id,
            Conversation.channel == channel,
            Conversation.external_customer_id == external_customer_id,
        )
        .one()
    )

    if created:
        logger.info(
            "Conversation created",
            extra={
                "context": {
                    "conversation_id": str(conversation.id),
                    "workspace_id": str(workspace_id),
                    "channel": channel,
                    "ai_enabled": ai_enabled,
                }
            },
        )
        return conversation

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .where(or_(Conversation.last_message_at.is_(None), Conversation.last_message_at < message_at))
        .values(last_message_at=message_at)
        .execution_options(synchronize_session=False)
    )
    if hint and not is_placeholder_name(hint):
        update_display_name(db, conversation, hint)

    db.refresh(conversation)
    return conversation


def update_display_name(db: Session, conversation: Conversation, name: str) -> bool:
    """Replace a placeholder display name. Real names are never overwritten."""
    if not name or is_placeholder_name(name):
        return False
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .where(_placeholder_filter())
        .values(customer_display_name=name)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def update_avatar(db: Session, conversation: Conversation, avatar_url: Optional[str]) -> bool:
    if not avatar_url:
        return False
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id, Conversation.customer_avatar_url.is_(None))
        .values(customer_avatar_url=avatar_url)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
