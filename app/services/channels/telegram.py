from app.config import settings
from app.schemas.telegram import TelegramUpdate
from app.services.channels.base import ChannelAdapter, ChannelSendError, InboundMessage, from_epoch


def bot_id_from_token(token) -> str:
    """Bot tokens look like '<bot id>:<secret>'."""
    if not token or ":" not in str(token):
        return ""
    return str(token).split(":", 1)[0]


class TelegramAdapter(ChannelAdapter):
    """Telegram Bot API."""

    channel = "telegram"

    def account_ids(self, credentials: dict) -> set[str]:
        ids = {str(credentials["bot_id"])} if credentials.get("bot_id") else set()
        bot_id = bot_id_from_token(credentials.get("bot_token"))
        if bot_id:
            ids.add(bot_id)
        return ids

    def _parse(self, payload: dict) -> list[InboundMessage]:
        update = TelegramUpdate(**payload)
        message = update.message
        if message is None:
            # edited messages, callback queries, member updates
            return []
        if message.from_user and message.from_user.is_bot:
            return []

        text = message.text or message.caption or "[Media]"

        return [
            InboundMessage(
                channel=self.channel,
                account_id=None,
                external_customer_id=str(message.chat.id),
                provider_message_id=str(message.message_id),
                text=text,
                created_at=from_epoch(message.date),
                display_name_hint=message.sender_display_name,
            )
        ]

    def send(self, external_id: str, text: str, credentials: dict) -> str:
        token = credentials.get("bot_token")
        if not token:
            raise ChannelSendError("telegram integration has no bot_token")

        data = self._post(
            f"{settings.telegram_api_url.rstrip('/')}/bot{token}/sendMessage",
            json={"chat_id": external_id, "text": text},
        )
        if not data.get("ok"):
            raise ChannelSendError(f"telegram sendMessage failed: {data.get('description') or data}")
        message_id = (data.get("result") or {}).get("message_id")
        if message_id is None:
            raise ChannelSendError(f"telegram response missing message_id: {data}")
        return str(message_id)
