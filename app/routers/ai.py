from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.routers.admin import require_admin_token
from app.schemas.admin import SweepResponse, TurnOutcomeItem
from app.services.llm import LLMProvider, OpenAIProvider
from app.services.scheduler_service import run_sweep

router = APIRouter(prefix="/ai", tags=["ai"])


def get_llm_provider() -> LLMProvider:
    return OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.openai_model)


@router.post("/sweep", response_model=SweepResponse)
def sweep(
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
    provider: LLMProvider = Depends(get_llm_provider),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Answer every conversation whose customer has gone quiet. Meant for cron."""
    require_admin_token(x_admin_token)
    report = run_sweep(db, provider, limit=limit)
    return SweepResponse(
        started_at=report.started_at,
        finished_at=report.finished_at,
        counts=report.counts(),
        outcomes=[TurnOutcomeItem.model_validate(o) for o in report.outcomes],
    )
