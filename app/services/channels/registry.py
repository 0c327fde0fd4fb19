from typing import Optional

from app.services.channels.base import ChannelAdapter
from app.services.channels.facebook import FacebookAdapter
from app.services.channels.instagram import InstagramAdapter
from app.services.channels.telegram import TelegramAdapter
from app.services.channels.whatsapp import WhatsAppAdapter

_ADAPTERS: dict[str, ChannelAdapter] = {
    adapter.channel: adapter
    for adapter in (FacebookAdapter(), InstagramAdapter(), WhatsAppAdapter(), TelegramAdapter())
}

CHANNELS = tuple(_ADAPTERS)
META_CHANNELS = ("facebook", "instagram", "whatsapp")


def get_adapter(channel: str) -> Optional[ChannelAdapter]:
    return _ADAPTERS.get((channel or "").lower())
