"""AI turn engine: one LLM call per conversation turn, one reply, at most one order intent."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml

from app.config import settings
from app.logging_config import get_logger
from app.models import Conversation, Message, Order, Product
from app.services.catalog_service import format_price, match_product, render_catalog
from app.services.channels import is_placeholder_name
from app.services.channels.base import CHANNEL_LABELS
from app.services.llm.base import LLMProvider
from app.services.order_service import OrderIntent, OrderResult

logger = get_logger("ai_service")

_PROMPT_PATH = Path(__file__).resolve().parents[1] / "prompts" / "sales_agent.yaml"

CREATE_ORDER = "create_order"
_REQUIRED_FIELDS = ("product_name", "customer_name", "customer_phone", "customer_address")

# intent_status values
INTENT_NONE = "none"
INTENT_COMPLETE = "complete"
INTENT_INCOMPLETE = "incomplete"
INTENT_PRODUCT_NOT_FOUND = "product_not_found"


@lru_cache(maxsize=4)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def load_prompts() -> dict:
    return _load_yaml(_PROMPT_PATH)


@dataclass
class TurnDecision:
    reply_text: str
    intent: Optional[OrderIntent] = None
    intent_status: str = INTENT_NONE
    tool_arguments: Optional[dict] = None


def build_create_order_tool(prompts: Optional[dict] = None) -> dict:
    tool_text = (prompts or load_prompts()).get("tool") or {}
    return {
        "type": "function",
        "function": {
            "name": CREATE_ORDER,
            "description": tool_text.get("description", "Create an order once all details are collected"),
            "parameters": {
                "type": "object",
                "properties": {
                    "product_name": {"type": "string", "description": tool_text.get("product_name", "Product name")},
                    "quantity": {
                        "type": "integer",
                        "description": tool_text.get("quantity", "Quantity"),
                        "default": 1,
                    },
                    "customer_name": {"type": "string", "description": tool_text.get("customer_name", "Customer name")},
                    "customer_phone": {
                        "type": "string",
                        "description": tool_text.get("customer_phone", "Customer phone"),
                    },
                    "customer_address": {
                        "type": "string",
                        "description": tool_text.get("customer_address", "Delivery address"),
                    },
                },
                "required": list(_REQUIRED_FIELDS),
            },
        },
    }


def render_previous_orders(orders: list[Order]) -> str:
    return "\n".join(f"- {o.order_number} | {o.status} | {format_price(o.price)}" for o in orders)


def build_context(
    conversation: Conversation,
    batch: list[Message],
    history: list[Message],
    products: list[Product],
    prompts: Optional[dict] = None,
    *,
    orders: Optional[list[Order]] = None,
) -> list[dict]:
    """System prompt followed by the conversation, oldest first.

    Customer messages map to the user role, agent messages (human or AI) to
    assistant. Every batch message is included even if it falls outside history.
    `orders` are the customer's latest orders in this conversation, newest first.
    """
    prompts = prompts or load_prompts()
    catalog = render_catalog(products) or prompts.get("empty_catalog", "")
    customer_name = conversation.customer_display_name
    if is_placeholder_name(customer_name):
        customer_name = "?"
    previous_orders = render_previous_orders(orders or []) or prompts.get("no_previous_orders", "")

    system_prompt = prompts.get("system_prompt", "{catalog}").format(
        channel=CHANNEL_LABELS.get(conversation.channel, conversation.channel),
        catalog=catalog,
        customer_name=customer_name,
        previous_orders=previous_orders,
    )

    seen = {m.id for m in history}
    merged = list(history) + [m for m in batch if m.id not in seen]
    merged.sort(key=lambda m: (m.created_at, str(m.id)))

    messages = [{"role": "system", "content": system_prompt}]
    for message in merged:
        if message.sender_type not in ("customer", "agent"):
            continue
        role = "user" if message.sender_type == "customer" else "assistant"
        messages.append({"role": role, "content": message.content})
    return messages


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def _parse_quantity(value: Any) -> Optional[int]:
    if value is None or value == "":
        return 1
    try:
        quantity = int(float(value))
    except (TypeError, ValueError):
        return None
    return quantity if quantity >= 1 else None


def parse_order_intent(arguments: dict, products: list[Product]) -> tuple[str, Optional[OrderIntent]]:
    """Validate create_order arguments against the catalog."""
    fields = {name: _clean(arguments.get(name)) for name in _REQUIRED_FIELDS}
    quantity = _parse_quantity(arguments.get("quantity"))
    if quantity is None or not all(fields.values()):
        return INTENT_INCOMPLETE, None

    product = match_product(products, fields["product_name"])
    if product is None:
        return INTENT_PRODUCT_NOT_FOUND, None

    return INTENT_COMPLETE, OrderIntent(
        product=product,
        quantity=quantity,
        customer_name=fields["customer_name"],
        customer_phone=fields["customer_phone"],
        customer_address=fields["customer_address"],
    )


def run_turn(
    provider: LLMProvider,
    conversation: Conversation,
    batch: list[Message],
    history: list[Message],
    products: list[Product],
    *,
    prompts: Optional[dict] = None,
    orders: Optional[list[Order]] = None,
) -> TurnDecision:
    """One chat completion for the pending batch.

    Raises LLMError when the provider fails or times out; the caller leaves
    the batch unreplied in that case.
    """
    prompts = prompts or load_prompts()
    messages = build_context(conversation, batch, history, products, prompts, orders=orders)

    response = provider.generate(
        messages,
        model=settings.openai_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        tools=[build_create_order_tool(prompts)],
        timeout_seconds=settings.llm_timeout_seconds,
    )

    decision = TurnDecision(reply_text=(response.content or "").strip())
    order_calls = [call for call in response.tool_calls if call.name == CREATE_ORDER]
    if order_calls:
        arguments = order_calls[0].arguments
        decision.tool_arguments = arguments
        decision.intent_status, decision.intent = parse_order_intent(arguments, products)

    logger.info(
        "AI turn decided",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "batch_size": len(batch),
                "has_text": bool(decision.reply_text),
                "intent_status": decision.intent_status,
                "model": response.model,
            }
        },
    )
    return decision


def resolve_reply(
    decision: TurnDecision,
    order_result: Optional[OrderResult] = None,
    prompts: Optional[dict] = None,
) -> str:
    """Pick the outbound text for a turn. Never returns an empty string."""
    replies = (prompts or load_prompts()).get("replies") or {}
    fallback = replies.get("fallback") or "👋"

    if order_result is not None and order_result.status == "out_of_stock":
        product = order_result.product
        return replies.get("out_of_stock", fallback).format(
            stock=product.stock if product is not None else 0,
            product_name=product.name if product is not None else "",
        )

    if decision.reply_text:
        return decision.reply_text

    if order_result is not None and order_result.materialized:
        order = order_result.order
        return replies.get("order_confirmation", fallback).format(
            order_number=order.order_number,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_address=order.customer_address,
            product_name=order_result.product.name if order_result.product is not None else "",
            quantity=order.quantity,
            price=format_price(order.price),
        ).strip()

    if decision.intent_status == INTENT_PRODUCT_NOT_FOUND:
        return replies.get("product_not_found") or fallback
    if decision.intent_status == INTENT_INCOMPLETE:
        return replies.get("clarify") or fallback
    return fallback
