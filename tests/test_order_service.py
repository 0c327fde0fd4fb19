from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.models import Order
from app.services.order_service import OrderIntent, build_order_number, get_recent_orders, materialize_order


def _intent(product, quantity=1, name="أسامة عبدو"):
    return OrderIntent(
        product=product,
        quantity=quantity,
        customer_name=name,
        customer_phone="0567900601",
        customer_address="طولكرم",
    )


class TestOrderNumber:
    def test_deterministic(self):
        assert build_order_number("conv", "turn") == build_order_number("conv", "turn")
        assert build_order_number("conv", "turn") != build_order_number("conv", "turn-2")
        assert build_order_number("conv", "turn").startswith("ORD-")


class TestMaterializeOrder:
    def test_creates_order_with_catalog_price(self, db, make_conversation, product):
        conversation = make_conversation()

        result = materialize_order(db, conversation, _intent(product, quantity=2), turn_key="msg-1")
        db.commit()

        assert result.status == "created"
        order = db.query(Order).one()
        assert order.unit_price == Decimal("50.00")
        assert order.price == Decimal("100.00")
        assert order.quantity == 2
        assert order.created_by == "ai"
        assert order.status == "pending"
        assert order.order_number == build_order_number(conversation.id, "msg-1")

    def test_replayed_turn_creates_no_second_order(self, db, make_conversation, product):
        conversation = make_conversation()

        first = materialize_order(db, conversation, _intent(product), turn_key="msg-1")
        second = materialize_order(db, conversation, _intent(product), turn_key="msg-1")
        db.commit()

        assert first.status == "created"
        assert second.status == "existing"
        assert second.order.order_number == first.order.order_number
        assert db.query(Order).count() == 1

    def test_new_turn_creates_new_order(self, db, make_conversation, product):
        conversation = make_conversation()
        materialize_order(db, conversation, _intent(product), turn_key="msg-1")
        materialize_order(db, conversation, _intent(product), turn_key="msg-9")
        db.commit()
        assert db.query(Order).count() == 2

    def test_insufficient_stock_skips_order(self, db, make_conversation, product):
        product.stock = 1
        db.commit()
        conversation = make_conversation()

        result = materialize_order(db, conversation, _intent(product, quantity=3), turn_key="msg-1")

        assert result.status == "out_of_stock"
        assert result.order is None
        assert db.query(Order).count() == 0

    def test_placeholder_name_backfilled_from_order(self, db, make_conversation, product):
        conversation = make_conversation(customer_display_name="WhatsApp User 67900601")

        materialize_order(db, conversation, _intent(product), turn_key="msg-1")
        db.commit()

        assert conversation.customer_display_name == "أسامة عبدو"

    def test_real_name_kept(self, db, make_conversation, product):
        conversation = make_conversation(customer_display_name="Osama")

        materialize_order(db, conversation, _intent(product, name="Someone"), turn_key="msg-1")
        db.commit()

        assert conversation.customer_display_name == "Osama"


class TestRecentOrders:
    def test_newest_first_and_limited(self, db, make_conversation, product):
        conversation = make_conversation()
        base = datetime.now(timezone.utc) - timedelta(days=1)
        for i in range(4):
            order = materialize_order(db, conversation, _intent(product), turn_key=f"msg-{i}").order
            order.created_at = base + timedelta(hours=i)
        db.commit()

        orders = get_recent_orders(db, conversation.id)

        assert [o.turn_key for o in orders] == ["msg-3", "msg-2", "msg-1"]

    def test_scoped_to_conversation(self, db, make_conversation, product):
        mine = make_conversation(external_customer_id="MINE")
        other = make_conversation(external_customer_id="OTHER")
        materialize_order(db, other, _intent(product), turn_key="msg-1")
        db.commit()

        assert get_recent_orders(db, mine.id) == []
