from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.logging_config import get_logger
from app.schemas.admin import (
    FailedDeliveriesResponse,
    FailedDeliveryItem,
    ImportReportItem,
    ImportRunResponse,
    RetryDeliveryResponse,
)
from app.services.dispatch_service import list_failed_deliveries, retry_failed_delivery
from app.services.import_service import run_imports

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/deliveries/failed", response_model=FailedDeliveriesResponse)
def failed_deliveries(
    workspace_id: Optional[UUID] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Outbound replies the provider rejected, newest first."""
    require_admin_token(x_admin_token)
    messages = list_failed_deliveries(db, workspace_id=workspace_id, limit=max(1, min(limit, 500)))
    return FailedDeliveriesResponse(
        count=len(messages),
        messages=[FailedDeliveryItem.model_validate(m) for m in messages],
    )


@router.post("/deliveries/{message_id}/retry", response_model=RetryDeliveryResponse)
def retry_delivery(
    message_id: UUID,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    require_admin_token(x_admin_token)
    result = retry_failed_delivery(db, message_id)
    if not result.ok and result.error_code == "not_found":
        raise HTTPException(status_code=404, detail=f"Message {message_id} not found")
    if not result.ok and result.error_code == "not_failed":
        raise HTTPException(status_code=409, detail="Message is not a failed delivery")

    message = result.value
    return RetryDeliveryResponse(
        success=result.ok,
        message_id=message_id,
        delivery_status=message.delivery_status if message is not None else None,
        provider_message_id=message.provider_message_id if message is not None else None,
        error=result.error,
    )


@router.post("/imports/run", response_model=ImportRunResponse)
def run_history_imports(
    workspace_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Import recent Facebook/Instagram history for connected integrations."""
    require_admin_token(x_admin_token)
    reports = run_imports(db, workspace_id=workspace_id)
    logger.info("History imports run", extra={"context": {"count": len(reports)}})
    return ImportRunResponse(
        count=len(reports),
        imports=[ImportReportItem.model_validate(r) for r in reports],
    )
