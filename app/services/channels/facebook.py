from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from app.config import settings
from app.services.channels.base import (
    ChannelAdapter,
    ChannelSendError,
    CustomerProfile,
    InboundMessage,
    from_epoch,
)

HISTORY_MAX_PAGES = 20


def graph_url(path: str) -> str:
    return f"{settings.meta_graph_url.rstrip('/')}/{settings.meta_graph_version}/{path.lstrip('/')}"


def parse_graph_time(value: Optional[str]) -> Optional[datetime]:
    """Graph API times look like 2024-05-01T10:00:00+0000."""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            return datetime.strptime(value, fmt).astimezone(timezone.utc)
        except ValueError:
            continue
    return None


class FacebookAdapter(ChannelAdapter):
    """Messenger Platform (page inbox)."""

    channel = "facebook"
    supports_history = True
    profile_fields = "first_name,last_name,name,profile_pic"

    def account_ids(self, credentials: dict) -> set[str]:
        return {str(v) for v in (credentials.get("page_id"),) if v}

    def access_token(self, credentials: dict) -> Optional[str]:
        return credentials.get("page_access_token")

    def _parse(self, payload: dict) -> list[InboundMessage]:
        results: list[InboundMessage] = []
        for entry in payload.get("entry") or []:
            entry_account = str(entry.get("id") or "")
            for event in entry.get("messaging") or []:
                message = event.get("message")
                # delivery / read receipts, postbacks, reactions
                if not isinstance(message, dict):
                    continue
                if message.get("is_echo"):
                    continue

                sender_id = str((event.get("sender") or {}).get("id") or "")
                recipient_id = str((event.get("recipient") or {}).get("id") or "") or entry_account
                if not sender_id or sender_id in (entry_account, recipient_id):
                    continue

                text = message.get("text")
                if not text:
                    if not message.get("attachments"):
                        continue
                    text = "[Media]"

                results.append(
                    InboundMessage(
                        channel=self.channel,
                        account_id=recipient_id or None,
                        external_customer_id=sender_id,
                        provider_message_id=message.get("mid"),
                        text=text,
                        created_at=from_epoch(event.get("timestamp"), millis=True),
                    )
                )
        return results

    def send(self, external_id: str, text: str, credentials: dict) -> str:
        token = self.access_token(credentials)
        if not token:
            raise ChannelSendError(f"{self.channel} integration has no access token")

        data = self._post(
            graph_url("me/messages"),
            params={"access_token": token},
            json={
                "recipient": {"id": external_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
        )
        message_id = data.get("message_id")
        if not message_id:
            raise ChannelSendError(f"{self.channel} response missing message_id: {data}")
        return str(message_id)

    def fetch_profile(self, external_id: str, credentials: dict, timeout: float) -> Optional[CustomerProfile]:
        token = self.access_token(credentials)
        if not token:
            return None
        data = self._get(
            graph_url(external_id),
            params={"fields": self.profile_fields, "access_token": token},
            timeout=timeout,
        )
        if not data:
            return None
        return self._profile_from(data)

    def _profile_from(self, data: dict) -> CustomerProfile:
        full_name = " ".join(p for p in (data.get("first_name"), data.get("last_name")) if p).strip()
        return CustomerProfile(
            display_name=full_name or data.get("name"),
            avatar_url=data.get("profile_pic"),
        )

    def _conversation_params(self, token: str) -> dict:
        return {
            "fields": "participants,messages{id,message,from,created_time}",
            "access_token": token,
        }

    def fetch_history(self, credentials: dict, since: datetime) -> list[InboundMessage]:
        """Pull recent page conversations from the Graph API, oldest message first."""
        token = self.access_token(credentials)
        own_ids = self.account_ids(credentials)
        page_id = credentials.get("page_id")
        if not token or not page_id:
            return []

        results: list[InboundMessage] = []
        url: Optional[str] = graph_url(f"{page_id}/conversations")
        params: Optional[dict] = self._conversation_params(token)
        pages = 0
        while url and pages < HISTORY_MAX_PAGES:
            data = self._get(url, params=params)
            if data is None:
                break
            pages += 1
            for thread in data.get("data") or []:
                results.extend(self._thread_messages(thread, own_ids, since))
            # paging.next already carries every query parameter
            url = (data.get("paging") or {}).get("next")
            params = None

        results.sort(key=lambda m: m.created_at)
        return results

    def _thread_messages(self, thread: dict, own_ids: set[str], since: datetime) -> list[InboundMessage]:
        customer_id = None
        customer_name = None
        for participant in (thread.get("participants") or {}).get("data") or []:
            participant_id = str(participant.get("id") or "")
            if participant_id and participant_id not in own_ids:
                customer_id = participant_id
                customer_name = participant.get("name") or participant.get("username")
                break
        if not customer_id:
            return []

        messages = []
        for item in (thread.get("messages") or {}).get("data") or []:
            created_at = parse_graph_time(item.get("created_time"))
            text = item.get("message")
            if not text or created_at is None or created_at < since:
                continue
            sender_id = str((item.get("from") or {}).get("id") or "")
            messages.append(
                InboundMessage(
                    channel=self.channel,
                    account_id=next(iter(own_ids), None),
                    external_customer_id=customer_id,
                    provider_message_id=item.get("id"),
                    text=text,
                    created_at=created_at,
                    display_name_hint=customer_name,
                    sender_type="agent" if sender_id in own_ids else "customer",
                )
            )
        return messages
