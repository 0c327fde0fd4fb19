from app.schemas.admin import (
    FailedDeliveriesResponse,
    ImportRunResponse,
    RetryDeliveryResponse,
    SweepResponse,
)
from app.schemas.telegram import TelegramMessage, TelegramUpdate
from app.schemas.webhook import WebhookAck

__all__ = [
    "FailedDeliveriesResponse",
    "ImportRunResponse",
    "RetryDeliveryResponse",
    "SweepResponse",
    "TelegramMessage",
    "TelegramUpdate",
    "WebhookAck",
]
