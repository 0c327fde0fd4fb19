import asyncio
import json
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.logging_config import get_logger
from app.schemas.webhook import WebhookAck
from app.services.channels import CHANNELS
from app.services.channels.registry import META_CHANNELS
from app.services.ingestion_service import ingest_payload
from app.services.integration_service import is_known_verify_token
from app.services.signature_service import verify_meta_signature, verify_telegram_secret

logger = get_logger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _check_channel(channel: str) -> str:
    channel = channel.lower()
    if channel not in CHANNELS:
        raise HTTPException(status_code=404, detail=f"Unknown channel: {channel}")
    return channel


def parse_webhook_body(raw: bytes) -> Optional[dict]:
    """Decode a provider payload; invalid UTF-8 bytes become U+FFFD. None unless a JSON object."""
    try:
        data = json.loads(raw.decode("utf-8", errors="replace"))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


@router.get("/{channel}")
def verify_webhook(channel: str, request: Request, db: Session = Depends(get_db)):
    """Meta subscription handshake; a plain health check for Telegram."""
    channel = _check_channel(channel)
    if channel not in META_CHANNELS:
        return {"status": "ok", "channel": channel}

    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge")

    token_ok = bool(token) and (
        (settings.meta_verify_token is not None and token == settings.meta_verify_token)
        or is_known_verify_token(db, token)
    )
    if mode == "subscribe" and token_ok and challenge is not None:
        logger.info("Webhook verified", extra={"context": {"channel": channel}})
        return PlainTextResponse(challenge)

    logger.warning("Webhook verification rejected", extra={"context": {"channel": channel, "mode": mode}})
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/{channel}", response_model=WebhookAck)
async def receive_webhook(
    channel: str,
    request: Request,
    workspace_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
):
    """Store inbound messages and acknowledge.

    Always answers 200 so providers do not retry-storm; rejected or broken
    payloads are logged instead. AI replies happen later in the sweep.
    """
    channel = _check_channel(channel)
    try:
        raw = await request.body()

        if channel in META_CHANNELS:
            signature = request.headers.get("X-Hub-Signature-256")
            if not verify_meta_signature(raw, signature, settings.meta_app_secret):
                logger.warning("Invalid webhook signature", extra={"context": {"channel": channel}})
                return WebhookAck(success=False, message="Invalid signature")
        else:
            secret = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
            if not verify_telegram_secret(secret, settings.telegram_webhook_secret):
                logger.warning("Invalid webhook secret token", extra={"context": {"channel": channel}})
                return WebhookAck(success=False, message="Invalid secret token")

        payload = parse_webhook_body(raw)
        if payload is None:
            logger.warning("Undecodable webhook payload", extra={"context": {"channel": channel, "size": len(raw)}})
            return WebhookAck(success=False, message="Invalid payload")

        # ingestion does DB work and profile fetches; keep it off the event loop
        report = await asyncio.to_thread(ingest_payload, db, channel, payload, workspace_id=workspace_id)
        return WebhookAck(success=True, received=report.received, stored=report.stored)

    except Exception as e:
        db.rollback()
        logger.error(f"Webhook processing error: {e}", extra={"context": {"channel": channel}}, exc_info=True)
        return WebhookAck(success=False, message="Processing error")
