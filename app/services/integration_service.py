from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import ChannelIntegration
from app.services.channels import IntegrationNotConnected, get_adapter

logger = get_logger("integration_service")


def get_connected_integration(db: Session, workspace_id, channel: str) -> ChannelIntegration:
    """Credentials for one workspace's channel. Raises IntegrationNotConnected."""
    integration = (
        db.query(ChannelIntegration)
        .filter(
            ChannelIntegration.workspace_id == workspace_id,
            ChannelIntegration.channel == channel,
            ChannelIntegration.is_connected.is_(True),
        )
        .first()
    )
    if integration is None:
        raise IntegrationNotConnected(workspace_id, channel)
    return integration


def list_connected(db: Session, channel: Optional[str] = None) -> list[ChannelIntegration]:
    query = db.query(ChannelIntegration).filter(ChannelIntegration.is_connected.is_(True))
    if channel:
        query = query.filter(ChannelIntegration.channel == channel)
    return query.order_by(ChannelIntegration.created_at).all()


def integration_account_ids(integration: ChannelIntegration) -> set[str]:
    adapter = get_adapter(integration.channel)
    ids = adapter.account_ids(integration.credentials or {}) if adapter else set()
    if integration.external_account_id:
        ids.add(str(integration.external_account_id))
    return ids


def find_integrations_for_event(
    db: Session,
    channel: str,
    account_id: Optional[str],
    workspace_id=None,
) -> list[ChannelIntegration]:
    """Connected integrations an inbound event belongs to.

    Meta events name the receiving account (page / IG account / phone number id).
    Telegram updates do not, so they are routed by the webhook's workspace_id
    query parameter, or to the single connected bot when there is only one.
    """
    candidates = list_connected(db, channel)
    if workspace_id is not None:
        candidates = [i for i in candidates if str(i.workspace_id) == str(workspace_id)]

    if account_id:
        return [i for i in candidates if account_id in integration_account_ids(i)]

    if workspace_id is None and len(candidates) > 1:
        logger.warning(
            "Ambiguous event without account id",
            extra={"context": {"channel": channel, "integrations": len(candidates)}},
        )
        return []
    return candidates


def is_known_verify_token(db: Session, token: Optional[str]) -> bool:
    if not token:
        return False
    for integration in list_connected(db):
        if (integration.credentials or {}).get("verify_token") == token:
            return True
    return False
