import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.database import upsert
from app.logging_config import bind_logger, get_logger
from app.models import Conversation, Order, Product
from app.services.conversation_service import update_display_name

logger = get_logger("order_service")


@dataclass
class OrderIntent:
    product: Product
    quantity: int
    customer_name: str
    customer_phone: str
    customer_address: str


@dataclass
class OrderResult:
    status: str  # created, existing, out_of_stock
    order: Optional[Order] = None
    product: Optional[Product] = None

    @property
    def materialized(self) -> bool:
        return self.order is not None


def build_order_number(conversation_id, turn_key: str) -> str:
    """Same (conversation, turn) always yields the same order number."""
    digest = hashlib.sha256(f"{conversation_id}:{turn_key}".encode("utf-8")).hexdigest()
    return f"ORD-{digest[:10].upper()}"


def get_order_for_turn(db: Session, conversation_id, turn_key: str) -> Optional[Order]:
    return db.query(Order).filter(Order.conversation_id == conversation_id, Order.turn_key == turn_key).first()


def get_recent_orders(db: Session, conversation_id, limit: int = 3) -> list[Order]:
    """Newest first."""
    return (
        db.query(Order)
        .filter(Order.conversation_id == conversation_id)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .limit(limit)
        .all()
    )


def materialize_order(
    db: Session,
    conversation: Conversation,
    intent: OrderIntent,
    *,
    turn_key: str,
    created_by: str = "ai",
) -> OrderResult:
    """Insert the order for one conversation turn at most once.

    Replaying the same turn returns the order stored the first time
    (status "existing"). Does not commit.
    """
    log = bind_logger(
        logger,
        conversation_id=conversation.id,
        workspace_id=conversation.workspace_id,
        turn_key=turn_key,
        product_id=intent.product.id,
    )

    existing = get_order_for_turn(db, conversation.id, turn_key)
    if existing is not None:
        log.info("Order already exists for turn", context={"order_number": existing.order_number})
        return OrderResult(status="existing", order=existing, product=intent.product)

    product = intent.product
    if product.stock is not None and product.stock < intent.quantity:
        log.info("Order skipped: insufficient stock", context={"stock": product.stock})
        return OrderResult(status="out_of_stock", product=product)

    unit_price = Decimal(str(product.price))
    stmt = (
        upsert(db, Order)
        .values(
            id=uuid.uuid4(),
            order_number=build_order_number(conversation.id, turn_key),
            workspace_id=conversation.workspace_id,
            conversation_id=conversation.id,
            product_id=product.id,
            customer_name=intent.customer_name,
            customer_phone=intent.customer_phone,
            customer_address=intent.customer_address,
            quantity=intent.quantity,
            unit_price=unit_price,
            price=unit_price * intent.quantity,
            status="pending",
            created_by=created_by,
            turn_key=turn_key,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["conversation_id", "turn_key"])
    )
    created = db.execute(stmt).rowcount > 0
    order = get_order_for_turn(db, conversation.id, turn_key)

    if not created:
        return OrderResult(status="existing", order=order, product=product)

    update_display_name(db, conversation, intent.customer_name)
    log.info("Order created", context={"order_number": order.order_number})
    return OrderResult(status="created", order=order, product=product)
