from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.logging_config import bind_logger, get_logger
from app.models import Conversation, Message
from app.services.alert_service import alert_error
from app.services.channels import ChannelError, get_adapter
from app.services.integration_service import get_connected_integration
from app.services.message_service import insert_message
from app.services.result import Result

logger = get_logger("dispatch_service")

DELIVERY_PENDING = "pending"
DELIVERY_SENT = "sent"
DELIVERY_FAILED = "failed"

# a pending row this old was left behind by a crashed worker
STALE_PENDING_AFTER = timedelta(minutes=5)


def _send(db: Session, conversation: Conversation, text: str) -> str:
    adapter = get_adapter(conversation.channel)
    if adapter is None:
        raise ChannelError(f"Unsupported channel: {conversation.channel}")
    integration = get_connected_integration(db, conversation.workspace_id, conversation.channel)
    return adapter.send(conversation.external_customer_id, text, integration.credentials or {})


def record_outbound(db: Session, conversation: Conversation, text: str, *, is_ai: bool = True) -> Message:
    """Store a reply as pending before anything is sent. Does not commit."""
    _, message = insert_message(
        db,
        conversation_id=conversation.id,
        content=text,
        sender_type="agent",
        created_at=datetime.now(timezone.utc),
        reply_sent=False,
        is_ai=is_ai,
        delivery_status=DELIVERY_PENDING,
    )
    return message


def deliver(
    db: Session,
    message: Message,
    conversation: Optional[Conversation] = None,
    *,
    alert: bool = True,
) -> Result[Message]:
    """Send a stored outbound message and record the outcome on that row.

    Any failure on the send path marks the row failed with the error, so a
    computed reply is never dropped without a trace. Does not commit.
    """
    conversation = conversation or db.get(Conversation, message.conversation_id)
    log = bind_logger(
        logger,
        message_id=message.id,
        conversation_id=conversation.id,
        workspace_id=conversation.workspace_id,
        channel=conversation.channel,
    )

    try:
        provider_message_id = _send(db, conversation, message.content)
    except Exception as e:
        if isinstance(e, SQLAlchemyError):
            db.rollback()
        log.error(f"Reply delivery failed: {e}", exc_info=not isinstance(e, ChannelError))
        message.delivery_status = DELIVERY_FAILED
        message.delivery_error = str(e)[:1000] or type(e).__name__
        message.reply_sent = False
        if alert:
            alert_error("Reply delivery failed", {**log.extra, "error": str(e)[:300]})
        return Result.failure(str(e), code="delivery_failed", value=message)

    message.provider_message_id = provider_message_id
    message.delivery_status = DELIVERY_SENT
    message.delivery_error = None
    message.reply_sent = True
    log.info("Reply delivered", context={"provider_message_id": provider_message_id})
    return Result.success(message)


def dispatch_reply(
    db: Session,
    conversation: Conversation,
    text: str,
    *,
    is_ai: bool = True,
) -> Result[Message]:
    """Record and send a reply in one step. Does not commit."""
    message = record_outbound(db, conversation, text, is_ai=is_ai)
    return deliver(db, message, conversation)


def _needs_operator(now: datetime):
    return or_(
        Message.delivery_status == DELIVERY_FAILED,
        and_(Message.delivery_status == DELIVERY_PENDING, Message.created_at < now - STALE_PENDING_AFTER),
    )


def list_failed_deliveries(db: Session, workspace_id=None, limit: int = 100) -> list[Message]:
    """Failed outbound messages plus pending ones abandoned by a crashed turn."""
    now = datetime.now(timezone.utc)
    query = db.query(Message).filter(Message.sender_type == "agent", _needs_operator(now))
    if workspace_id is not None:
        query = query.join(Conversation, Conversation.id == Message.conversation_id).filter(
            Conversation.workspace_id == workspace_id
        )
    return query.order_by(Message.created_at.desc()).limit(limit).all()


def _ensure_timezone(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def retry_failed_delivery(db: Session, message_id) -> Result[Message]:
    """Re-send one failed (or abandoned pending) outbound message in place. Commits."""
    message: Optional[Message] = db.get(Message, message_id)
    if message is None:
        return Result.failure("Message not found", code="not_found")

    stale_pending = (
        message.delivery_status == DELIVERY_PENDING
        and message.created_at is not None
        and _ensure_timezone(message.created_at) < datetime.now(timezone.utc) - STALE_PENDING_AFTER
    )
    if message.delivery_status != DELIVERY_FAILED and not stale_pending:
        return Result.failure("Message is not a failed delivery", code="not_failed", value=message)

    result = deliver(db, message, alert=False)
    db.commit()
    if result.ok:
        logger.info("Delivery retry succeeded", extra={"context": {"message_id": str(message.id)}})
    return result
