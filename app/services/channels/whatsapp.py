from app.services.channels.base import ChannelAdapter, ChannelSendError, InboundMessage, from_epoch
from app.services.channels.facebook import graph_url

_CAPTIONED_TYPES = ("image", "video", "document")
_IGNORED_TYPES = {"reaction", "unsupported", "system"}


class WhatsAppAdapter(ChannelAdapter):
    """WhatsApp Business Cloud API."""

    channel = "whatsapp"

    def account_ids(self, credentials: dict) -> set[str]:
        return {str(v) for v in (credentials.get("phone_number_id"),) if v}

    def _parse(self, payload: dict) -> list[InboundMessage]:
        results: list[InboundMessage] = []
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                if change.get("field") != "messages":
                    continue
                value = change.get("value") or {}
                # status-only changes (sent/delivered/read) carry no "messages"
                messages = value.get("messages") or []
                if not messages:
                    continue

                phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
                names = {}
                for contact in value.get("contacts") or []:
                    name = (contact.get("profile") or {}).get("name")
                    if name:
                        names[str(contact.get("wa_id"))] = name

                for message in messages:
                    sender = str(message.get("from") or "")
                    if not sender:
                        continue
                    text = self._message_text(message)
                    if text is None:
                        continue
                    results.append(
                        InboundMessage(
                            channel=self.channel,
                            account_id=str(phone_number_id) if phone_number_id else None,
                            external_customer_id=sender,
                            provider_message_id=message.get("id"),
                            text=text,
                            created_at=from_epoch(message.get("timestamp")),
                            display_name_hint=names.get(sender) or (next(iter(names.values())) if len(names) == 1 else None),
                        )
                    )
        return results

    @staticmethod
    def _message_text(message: dict):
        message_type = message.get("type") or "text"
        if message_type in _IGNORED_TYPES:
            return None
        if message_type == "text":
            return ((message.get("text") or {}).get("body") or "").strip() or None
        if message_type == "button":
            return (message.get("button") or {}).get("text") or "[Button]"
        if message_type == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            return reply.get("title") or "[Interactive]"
        if message_type in _CAPTIONED_TYPES:
            caption = (message.get(message_type) or {}).get("caption")
            if caption:
                return caption
        return "[Media]"

    def send(self, external_id: str, text: str, credentials: dict) -> str:
        phone_number_id = credentials.get("phone_number_id")
        token = credentials.get("access_token")
        if not phone_number_id or not token:
            raise ChannelSendError("whatsapp integration is missing phone_number_id or access_token")

        data = self._post(
            graph_url(f"{phone_number_id}/messages"),
            headers={"Authorization": f"Bearer {token}"},
            json={
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": external_id,
                "type": "text",
                "text": {"body": text},
            },
        )
        messages = data.get("messages") or []
        if not messages or not messages[0].get("id"):
            raise ChannelSendError(f"whatsapp response missing message id: {data}")
        return str(messages[0]["id"])
