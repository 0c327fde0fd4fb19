from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import bind_logger, get_logger
from app.models import ChannelIntegration, Conversation
from app.services.channels import InboundMessage, get_adapter, is_placeholder_name
from app.services.conversation_service import resolve_conversation, update_avatar, update_display_name
from app.services.integration_service import find_integrations_for_event, integration_account_ids
from app.services.message_service import insert_message

logger = get_logger("ingestion_service")


@dataclass
class IngestReport:
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    unrouted: int = 0
    conversation_ids: list[str] = field(default_factory=list)


def store_inbound(
    db: Session,
    workspace_id,
    inbound: InboundMessage,
    *,
    is_backfilled: bool = False,
) -> tuple[Conversation, bool]:
    """Resolve the conversation and insert the message (deduplicated). Does not commit."""
    conversation = resolve_conversation(
        db,
        workspace_id=workspace_id,
        channel=inbound.channel,
        external_customer_id=inbound.external_customer_id,
        display_name_hint=inbound.display_name_hint,
        message_at=inbound.created_at,
    )
    # backfilled history counts as answered; agent messages count as delivered
    stored, _ = insert_message(
        db,
        conversation_id=conversation.id,
        content=inbound.text,
        sender_type=inbound.sender_type,
        provider_message_id=inbound.provider_message_id,
        created_at=inbound.created_at,
        is_backfilled=is_backfilled,
        reply_sent=is_backfilled or inbound.sender_type != "customer",
        delivery_status="sent" if inbound.sender_type == "agent" else None,
    )
    return conversation, stored


def ingest_payload(
    db: Session,
    channel: str,
    payload: Any,
    *,
    workspace_id=None,
    enrich: bool = True,
) -> IngestReport:
    """Persist every customer message in a webhook payload.

    An event is stored once per workspace whose connected integration owns the
    receiving account. Everything is committed before any profile lookup, so a
    slow provider cannot lose a message.
    """
    report = IngestReport()
    adapter = get_adapter(channel)
    if adapter is None:
        return report

    messages = adapter.normalize(payload)
    report.received = len(messages)
    to_enrich: dict[str, tuple[ChannelIntegration, Conversation]] = {}

    for inbound in messages:
        integrations = find_integrations_for_event(db, channel, inbound.account_id, workspace_id)
        if not integrations:
            report.unrouted += 1
            logger.info(
                "No connected integration for event",
                extra={"context": {"channel": channel, "account_id": inbound.account_id}},
            )
            continue

        for integration in integrations:
            if inbound.external_customer_id in integration_account_ids(integration):
                continue
            conversation, stored = store_inbound(db, integration.workspace_id, inbound)
            if stored:
                report.stored += 1
            else:
                report.duplicates += 1
            conversation_id = str(conversation.id)
            if conversation_id not in report.conversation_ids:
                report.conversation_ids.append(conversation_id)
            to_enrich.setdefault(conversation_id, (integration, conversation))

    db.commit()

    logger.info(
        "Webhook ingested",
        extra={
            "context": {
                "channel": channel,
                "received": report.received,
                "stored": report.stored,
                "duplicates": report.duplicates,
                "unrouted": report.unrouted,
            }
        },
    )

    if enrich:
        for integration, conversation in to_enrich.values():
            enrich_profile(db, integration, conversation)
    return report


def enrich_profile(db: Session, integration: ChannelIntegration, conversation: Conversation) -> bool:
    """Best-effort name/avatar lookup for conversations still showing a placeholder name.

    Bounded by the profile fetch timeout; failures are logged and ignored.
    """
    if not is_placeholder_name(conversation.customer_display_name):
        return False
    adapter = get_adapter(conversation.channel)
    if adapter is None:
        return False

    log = bind_logger(logger, conversation_id=conversation.id, channel=conversation.channel)
    try:
        profile = adapter.fetch_profile(
            conversation.external_customer_id,
            integration.credentials or {},
            timeout=settings.profile_fetch_timeout_seconds,
        )
    except Exception as e:
        log.warning(f"Profile fetch failed: {e}")
        return False
    if profile is None:
        return False

    changed = update_display_name(db, conversation, profile.display_name)
    changed = update_avatar(db, conversation, profile.avatar_url) or changed
    db.commit()
    if changed:
        log.info("Profile enriched")
    return changed
