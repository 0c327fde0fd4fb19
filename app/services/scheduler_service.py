"""Debounce sweep: finds conversations whose customer has stopped typing and runs one AI turn each."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import bind_logger, get_logger
from app.models import Conversation, Message, Workspace
from app.services.alert_service import alert_error
from app.services.llm.base import LLMProvider
from app.services.turn_service import FAILED, SETTLING, TurnOutcome, process_conversation

logger = get_logger("scheduler_service")


def _ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _int_setting(values: dict, key: str, default: int) -> int:
    try:
        value = int(values.get(key, default))
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def workspace_timing(workspace: Optional[Workspace]) -> tuple[int, int]:
    """(lookback_seconds, settle_seconds), workspace overrides first."""
    values = (workspace.settings or {}) if workspace is not None else {}
    return (
        _int_setting(values, "ai_lookback_seconds", settings.ai_lookback_seconds),
        _int_setting(values, "ai_settle_seconds", settings.ai_settle_seconds),
    )


@dataclass
class SweepCandidate:
    conversation_id: object
    workspace_id: object
    pending_count: int
    newest_at: datetime
    lookback_seconds: int
    settle_seconds: int


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: list[TurnOutcome] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for outcome in self.outcomes:
            totals[outcome.status] = totals.get(outcome.status, 0) + 1
        return totals


def find_pending_conversations(db: Session, now: datetime) -> list[SweepCandidate]:
    """AI-enabled conversations with unreplied, non-backfilled customer messages inside the lookback window."""
    candidates: list[SweepCandidate] = []
    workspace_ids = [
        row[0]
        for row in db.query(Conversation.workspace_id).filter(Conversation.ai_enabled.is_(True)).distinct().all()
    ]
    for workspace_id in workspace_ids:
        lookback, settle = workspace_timing(db.get(Workspace, workspace_id))
        rows = (
            db.query(
                Message.conversation_id,
                func.count(Message.id),
                func.max(Message.created_at),
            )
            .join(Conversation, Conversation.id == Message.conversation_id)
            .filter(
                Conversation.workspace_id == workspace_id,
                Conversation.ai_enabled.is_(True),
                Message.sender_type == "customer",
                Message.reply_sent.is_(False),
                Message.is_backfilled.is_(False),
                Message.created_at >= now - timedelta(seconds=lookback),
            )
            .group_by(Message.conversation_id)
            .all()
        )
        for conversation_id, pending_count, newest_at in rows:
            candidates.append(
                SweepCandidate(
                    conversation_id=conversation_id,
                    workspace_id=workspace_id,
                    pending_count=pending_count,
                    newest_at=_ensure_timezone(newest_at),
                    lookback_seconds=lookback,
                    settle_seconds=settle,
                )
            )
    candidates.sort(key=lambda c: c.newest_at)
    return candidates


def select_ready_conversations(db: Session, now: Optional[datetime] = None) -> tuple[list[SweepCandidate], list[SweepCandidate]]:
    """Split pending conversations into (ready, still settling).

    A conversation is ready once its newest pending message is at least the
    settle threshold old, so a burst of messages gets a single reply.
    """
    now = _ensure_timezone(now) or datetime.now(timezone.utc)
    ready, settling = [], []
    for candidate in find_pending_conversations(db, now):
        if candidate.newest_at > now - timedelta(seconds=candidate.settle_seconds):
            settling.append(candidate)
        else:
            ready.append(candidate)
    return ready, settling


def run_sweep(
    db: Session,
    provider: LLMProvider,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> SweepReport:
    now = _ensure_timezone(now) or datetime.now(timezone.utc)
    report = SweepReport(started_at=now)

    ready, settling = select_ready_conversations(db, now)
    for candidate in settling:
        report.outcomes.append(
            TurnOutcome(
                conversation_id=str(candidate.conversation_id),
                status=SETTLING,
                batch_size=candidate.pending_count,
            )
        )

    if limit is not None:
        ready = ready[:limit]

    for candidate in ready:
        try:
            outcome = process_conversation(
                db,
                candidate.conversation_id,
                provider,
                lookback_seconds=candidate.lookback_seconds,
                now=now,
            )
        except Exception as e:
            log = bind_logger(logger, conversation_id=candidate.conversation_id, workspace_id=candidate.workspace_id)
            log.error(f"Turn failed: {e}", exc_info=True)
            alert_error("AI turn failed", {**log.extra, "error": str(e)[:300]})
            outcome = TurnOutcome(conversation_id=str(candidate.conversation_id), status=FAILED, detail=str(e))
        report.outcomes.append(outcome)

    report.finished_at = datetime.now(timezone.utc)
    logger.info("Sweep finished", extra={"context": report.counts()})
    return report
