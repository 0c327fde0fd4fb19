import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.database import upsert
from app.models import Message


def insert_message(
    db: Session,
    *,
    conversation_id,
    content: str,
    sender_type: str,
    provider_message_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    is_backfilled: bool = False,
    reply_sent: bool = False,
    is_ai: bool = False,
    delivery_status: Optional[str] = None,
    delivery_error: Optional[str] = None,
) -> tuple[bool, Optional[Message]]:
    """Insert unless (conversation_id, provider_message_id) already exists.

    Returns (stored, message). A replayed provider event returns stored=False
    together with the row that was stored first.
    """
    message_id = uuid.uuid4()
    stmt = (
        upsert(db, Message)
        .values(
            id=message_id,
            conversation_id=conversation_id,
            content=content,
            sender_type=sender_type,
            provider_message_id=provider_message_id,
            created_at=created_at or datetime.now(timezone.utc),
            is_backfilled=is_backfilled,
            reply_sent=reply_sent,
            is_ai=is_ai,
            delivery_status=delivery_status,
            delivery_error=delivery_error,
        )
        .on_conflict_do_nothing(index_elements=["conversation_id", "provider_message_id"])
    )
    stored = db.execute(stmt).rowcount > 0

    if stored:
        return True, db.get(Message, message_id)

    existing = (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.provider_message_id == provider_message_id,
        )
        .first()
    )
    return False, existing


def get_unreplied_batch(db: Session, conversation_id, since: datetime) -> list[Message]:
    """Customer messages awaiting an AI answer, oldest first."""
    return (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_type == "customer",
            Message.reply_sent.is_(False),
            Message.is_backfilled.is_(False),
            Message.created_at >= since,
        )
        .order_by(Message.created_at, Message.id)
        .all()
    )


def get_history(db: Session, conversation_id, limit: int) -> list[Message]:
    """Last `limit` customer/agent messages, oldest first."""
    rows = (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_type.in_(("customer", "agent")),
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def mark_replied(db: Session, message_ids) -> int:
    ids = list(message_ids)
    if not ids:
        return 0
    result = db.execute(
        update(Message)
        .where(Message.id.in_(ids))
        .values(reply_sent=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
