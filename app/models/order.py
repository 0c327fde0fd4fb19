import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("conversation_id", "turn_key", name="uq_orders_turn"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(Text, nullable=False, unique=True)
    workspace_id = Column(Uuid, ForeignKey("workspaces.id"), nullable=False)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    customer_name = Column(Text, nullable=False)
    customer_phone = Column(Text, nullable=False)
    customer_address = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    status = Column(Text, nullable=False, default="pending")
    created_by = Column(Text, nullable=False)  # agent, ai, customer
    turn_key = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="orders")
    product = relationship("Product")
