"""Operator alerts delivered to a Telegram chat."""

import time
from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_TEXT_LIMIT = 4000

_LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}

# (level, message) -> monotonic time of the last alert actually sent
_last_sent: dict[tuple[str, str], float] = {}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    header = f"{_LEVEL_EMOJI.get(level, '📢')} *{level}*\n\n{message}"[:TELEGRAM_TEXT_LIMIT]
    if not context:
        return header
    context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
    room = TELEGRAM_TEXT_LIMIT - len(header) - len("\n\n```\n\n```")
    if room <= 0:
        return header
    return f"{header}\n\n```\n{context_str[:room]}\n```"


def _suppressed(level: str, message: str) -> bool:
    cooldown = settings.alert_cooldown_seconds
    if cooldown <= 0:
        return False
    key = (level, message)
    now = time.monotonic()
    last = _last_sent.get(key)
    if last is not None and now - last < cooldown:
        return True
    _last_sent[key] = now
    return False


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the operator chat.

    Best-effort: returns False when alerts are not configured, the same alert
    was sent within the cooldown, or delivery fails. Never raises.
    """
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False
    if _suppressed(level, message):
        logger.info(f"Alert suppressed: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"{settings.telegram_api_url.rstrip('/')}/bot{settings.alert_bot_token}/sendMessage",
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
            return response.status_code == 200
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
