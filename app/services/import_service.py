from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import bind_logger, get_logger
from app.models import ChannelIntegration, Conversation, Message
from app.services.channels import get_adapter
from app.services.ingestion_service import store_inbound
from app.services.integration_service import list_connected

logger = get_logger("import_service")

FETCH_OVERLAP = timedelta(minutes=5)


@dataclass
class ImportReport:
    integration_id: str
    channel: str
    fetched: int = 0
    stored: int = 0
    backfilled: bool = False
    skipped: Optional[str] = None


def _ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def workspace_has_messages(db: Session, workspace_id) -> bool:
    return (
        db.query(Message.id)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .filter(Conversation.workspace_id == workspace_id)
        .first()
        is not None
    )


def import_history(db: Session, integration: ChannelIntegration, now: Optional[datetime] = None) -> ImportReport:
    """Pull recent provider history for one integration.

    The first import into a workspace without any messages is a backfill:
    everything is stored answered and exempt from AI replies. Later imports
    overlap the previous fetch by a few minutes; duplicates are dropped by the
    message store.
    """
    now = _ensure_timezone(now) or datetime.now(timezone.utc)
    report = ImportReport(integration_id=str(integration.id), channel=integration.channel)

    adapter = get_adapter(integration.channel)
    if adapter is None or not adapter.supports_history:
        report.skipped = "unsupported_channel"
        return report

    last_fetch_at = _ensure_timezone(integration.last_fetch_at)
    window_start = now - timedelta(hours=settings.history_import_window_hours)
    since = max(last_fetch_at - FETCH_OVERLAP, window_start) if last_fetch_at else window_start
    backfill = not workspace_has_messages(db, integration.workspace_id)
    report.backfilled = backfill

    history = adapter.fetch_history(integration.credentials or {}, since)
    report.fetched = len(history)
    for inbound in history:
        _, stored = store_inbound(db, integration.workspace_id, inbound, is_backfilled=backfill)
        if stored:
            report.stored += 1

    integration.last_fetch_at = now
    db.commit()

    log = bind_logger(
        logger,
        integration_id=integration.id,
        workspace_id=integration.workspace_id,
        channel=integration.channel,
    )
    log.info("History imported", context={"fetched": report.fetched, "stored": report.stored, "backfill": backfill})
    return report


def run_imports(db: Session, workspace_id=None, now: Optional[datetime] = None) -> list[ImportReport]:
    reports = []
    for integration in list_connected(db):
        if workspace_id is not None and str(integration.workspace_id) != str(workspace_id):
            continue
        adapter = get_adapter(integration.channel)
        if adapter is None or not adapter.supports_history:
            continue
        try:
            reports.append(import_history(db, integration, now=now))
        except Exception as e:
            db.rollback()
            log = bind_logger(logger, integration_id=integration.id, channel=integration.channel)
            log.error(f"History import failed: {e}", exc_info=True)
            reports.append(
                ImportReport(integration_id=str(integration.id), channel=integration.channel, skipped=f"error: {e}")
            )
    return reports
