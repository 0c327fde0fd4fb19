from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class TurnOutcomeItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    conversation_id: str
    status: str  # processed, delivery_failed, llm_failed, locked, settling, nothing_pending, ai_disabled, failed
    batch_size: int = 0
    order_number: Optional[str] = None
    order_status: Optional[str] = None
    detail: Optional[str] = None


class SweepResponse(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    counts: dict[str, int]
    outcomes: list[TurnOutcomeItem]


class FailedDeliveryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    content: str
    created_at: datetime
    delivery_error: Optional[str] = None


class FailedDeliveriesResponse(BaseModel):
    count: int
    messages: list[FailedDeliveryItem]


class RetryDeliveryResponse(BaseModel):
    success: bool
    message_id: UUID
    delivery_status: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class ImportReportItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    integration_id: str
    channel: str
    fetched: int = 0
    stored: int = 0
    backfilled: bool = False
    skipped: Optional[str] = None


class ImportRunResponse(BaseModel):
    count: int
    imports: list[ImportReportItem]
