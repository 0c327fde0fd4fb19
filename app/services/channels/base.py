from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("channels")

CHANNEL_LABELS = {
    "facebook": "Facebook",
    "instagram": "Instagram",
    "whatsapp": "WhatsApp",
    "telegram": "Telegram",
}

_PLACEHOLDER_RE = re.compile(r"^(Facebook|Instagram|WhatsApp|Telegram) User\b")


class ChannelError(Exception):
    """Base error for channel adapters."""


class ChannelSendError(ChannelError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class IntegrationNotConnected(ChannelError):
    def __init__(self, workspace_id, channel: str):
        super().__init__(f"No connected {channel} integration for workspace {workspace_id}")
        self.workspace_id = workspace_id
        self.channel = channel


@dataclass
class InboundMessage:
    channel: str
    account_id: Optional[str]
    external_customer_id: str
    provider_message_id: Optional[str]
    text: str
    created_at: datetime
    display_name_hint: Optional[str] = None
    sender_type: str = "customer"


@dataclass
class CustomerProfile:
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


def placeholder_name(channel: str, external_id: str) -> str:
    label = CHANNEL_LABELS.get(channel, channel.capitalize())
    return f"{label} User {str(external_id)[-8:]}"


def is_placeholder_name(name: Optional[str]) -> bool:
    if not name or not name.strip():
        return True
    return bool(_PLACEHOLDER_RE.match(name.strip()))


def from_epoch(value: Any, millis: bool = False) -> datetime:
    """Convert a provider epoch timestamp to an aware UTC datetime (now on garbage)."""
    try:
        seconds = float(value) / 1000.0 if millis else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


class ChannelAdapter(ABC):
    """One provider: payload normalization, sending, optional enrichment."""

    channel: str = ""
    supports_history: bool = False

    def normalize(self, payload: Any) -> list[InboundMessage]:
        """Return the customer messages in a webhook payload.

        Receipts, echoes and unsupported events yield nothing. Malformed payloads
        are logged and yield nothing; this never raises.
        """
        if not isinstance(payload, dict):
            logger.warning(
                "Ignoring non-object webhook payload",
                extra={"context": {"channel": self.channel, "type": type(payload).__name__}},
            )
            return []
        try:
            return self._parse(payload)
        except Exception as e:
            logger.warning(
                f"Malformed {self.channel} payload: {e}",
                extra={"context": {"channel": self.channel}},
                exc_info=True,
            )
            return []

    @abstractmethod
    def _parse(self, payload: dict) -> list[InboundMessage]:
        pass

    @abstractmethod
    def send(self, external_id: str, text: str, credentials: dict) -> str:
        """Deliver text to the customer. Returns the provider message id or raises ChannelSendError."""
        pass

    def account_ids(self, credentials: dict) -> set[str]:
        """Account ids an integration answers for; used to route events and drop echoes."""
        return set()

    def fetch_profile(self, external_id: str, credentials: dict, timeout: float) -> Optional[CustomerProfile]:
        return None

    def fetch_history(self, credentials: dict, since: datetime) -> list[InboundMessage]:
        return []

    def _post(self, url: str, *, json: dict, headers: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        try:
            with httpx.Client(timeout=settings.provider_timeout_seconds) as client:
                response = client.post(url, json=json, headers=headers, params=params)
        except httpx.HTTPError as e:
            raise ChannelSendError(f"{self.channel} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            detail = error.get("message") if isinstance(error, dict) else (data.get("description") if isinstance(data, dict) else None)
            raise ChannelSendError(
                f"{self.channel} API error {response.status_code}: {detail or response.text[:200]}",
                status_code=response.status_code,
            )
        return data if isinstance(data, dict) else {}

    def _get(self, url: str, *, params: Optional[dict] = None, timeout: Optional[float] = None) -> Optional[dict]:
        """GET helper for best-effort reads; returns None on any failure."""
        try:
            with httpx.Client(timeout=timeout or settings.provider_timeout_seconds) as client:
                response = client.get(url, params=params)
            if response.status_code != 200:
                logger.info(
                    f"{self.channel} GET {response.status_code}",
                    extra={"context": {"channel": self.channel, "body": response.text[:200]}},
                )
                return None
            data = response.json()
            return data if isinstance(data, dict) else None
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"{self.channel} GET failed: {e}", extra={"context": {"channel": self.channel}})
            return None
