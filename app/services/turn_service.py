from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import bind_logger, get_logger
from app.models import Conversation
from app.services import ai_service, lock_service
from app.services.alert_service import alert_warning
from app.services.catalog_service import get_active_products
from app.services.dispatch_service import deliver, record_outbound
from app.services.llm.base import LLMError, LLMProvider
from app.services.message_service import get_history, get_unreplied_batch, mark_replied
from app.services.order_service import get_recent_orders, materialize_order

_logger = get_logger("turn_service")

# outcome statuses
PROCESSED = "processed"
DELIVERY_FAILED = "delivery_failed"
LLM_FAILED = "llm_failed"
LOCKED = "locked"
NOTHING_PENDING = "nothing_pending"
AI_DISABLED = "ai_disabled"
SETTLING = "settling"
FAILED = "failed"


@dataclass
class TurnOutcome:
    conversation_id: str
    status: str
    batch_size: int = 0
    order_number: Optional[str] = None
    order_status: Optional[str] = None
    detail: Optional[str] = None


def process_conversation(
    db: Session,
    conversation_id,
    provider: LLMProvider,
    *,
    lookback_seconds: int,
    now: Optional[datetime] = None,
) -> TurnOutcome:
    """Answer one conversation's pending batch under its processing lock.

    lock -> engine -> order -> mark batch replied + pending outbound row (commit)
    -> send -> record outcome (commit) -> release.
    `now` only bounds the batch window; the lock is always taken on the wall
    clock. An LLM failure leaves the batch unreplied for the next sweep. Once
    the batch is marked replied, the reply exists as an outbound row and a
    send failure is recorded on it; the batch is not retried.
    """
    now = now or datetime.now(timezone.utc)
    log = bind_logger(_logger, conversation_id=conversation_id)

    owner = lock_service.try_acquire(db, conversation_id)
    if owner is None:
        return TurnOutcome(conversation_id=str(conversation_id), status=LOCKED)

    try:
        conversation = db.get(Conversation, conversation_id)
        if conversation is None or not conversation.ai_enabled:
            return TurnOutcome(conversation_id=str(conversation_id), status=AI_DISABLED)

        batch = get_unreplied_batch(db, conversation.id, since=now - timedelta(seconds=lookback_seconds))
        if not batch:
            return TurnOutcome(conversation_id=str(conversation_id), status=NOTHING_PENDING)

        history = get_history(db, conversation.id, settings.ai_history_limit)
        products = get_active_products(db, conversation.workspace_id)
        orders = get_recent_orders(db, conversation.id)

        try:
            decision = ai_service.run_turn(provider, conversation, batch, history, products, orders=orders)
        except LLMError as e:
            log.warning(f"LLM call failed, batch left pending: {e}", context={"batch_size": len(batch)})
            db.rollback()
            alert_warning("LLM call failed", {**log.extra, "error": str(e)[:300]})
            return TurnOutcome(
                conversation_id=str(conversation_id),
                status=LLM_FAILED,
                batch_size=len(batch),
                detail=str(e),
            )

        order_result = None
        if decision.intent is not None:
            order_result = materialize_order(db, conversation, decision.intent, turn_key=str(batch[0].id))

        reply = ai_service.resolve_reply(decision, order_result)
        mark_replied(db, [m.id for m in batch])
        outbound = record_outbound(db, conversation, reply, is_ai=True)
        db.commit()

        delivery = deliver(db, outbound, conversation)
        db.commit()

        outcome = TurnOutcome(
            conversation_id=str(conversation_id),
            status=PROCESSED if delivery.ok else DELIVERY_FAILED,
            batch_size=len(batch),
            detail=delivery.error,
        )
        if order_result is not None:
            outcome.order_status = order_result.status
            if order_result.order is not None:
                outcome.order_number = order_result.order.order_number

        log.info(
            "Turn processed",
            context={
                "batch_size": len(batch),
                "delivered": delivery.ok,
                "order_status": outcome.order_status,
                "order_number": outcome.order_number,
            },
        )
        return outcome
    except Exception:
        db.rollback()
        raise
    finally:
        lock_service.release(db, conversation_id, owner)
