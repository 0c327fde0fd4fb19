import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.config import settings
from app.database import upsert
from app.logging_config import get_logger
from app.models import ProcessingLock

logger = get_logger("lock_service")


def try_acquire(
    db: Session,
    conversation_id,
    *,
    ttl_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Take the per-conversation processing lock.

    One statement: insert the lock row, or take over an existing row only when
    it has expired. Returns an owner token on success, None when someone else
    holds a live lock. Commits so other workers see the lock immediately.
    """
    now = now or datetime.now(timezone.utc)
    ttl = ttl_seconds if ttl_seconds is not None else settings.ai_lock_ttl_seconds
    owner = uuid.uuid4().hex

    stmt = upsert(db, ProcessingLock).values(
        conversation_id=conversation_id,
        acquired_at=now,
        expires_at=now + timedelta(seconds=ttl),
        owner=owner,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["conversation_id"],
        set_={
            "acquired_at": stmt.excluded.acquired_at,
            "expires_at": stmt.excluded.expires_at,
            "owner": stmt.excluded.owner,
        },
        where=ProcessingLock.__table__.c.expires_at < now,
    )
    acquired = db.execute(stmt).rowcount > 0
    db.commit()

    if not acquired:
        logger.debug(
            "Lock busy",
            extra={"context": {"conversation_id": str(conversation_id)}},
        )
        return None
    return owner


def release(db: Session, conversation_id, owner: Optional[str] = None) -> bool:
    """Drop the lock. With an owner token, only that holder's lock is removed."""
    stmt = delete(ProcessingLock).where(ProcessingLock.conversation_id == conversation_id)
    if owner is not None:
        stmt = stmt.where(ProcessingLock.owner == owner)
    released = db.execute(stmt.execution_options(synchronize_session=False)).rowcount > 0
    db.commit()
    return released
