from app.services.channels.base import (
    ChannelAdapter,
    ChannelError,
    ChannelSendError,
    CustomerProfile,
    InboundMessage,
    IntegrationNotConnected,
    is_placeholder_name,
    placeholder_name,
)
from app.services.channels.registry import CHANNELS, get_adapter

__all__ = [
    "CHANNELS",
    "ChannelAdapter",
    "ChannelError",
    "ChannelSendError",
    "CustomerProfile",
    "InboundMessage",
    "IntegrationNotConnected",
    "get_adapter",
    "is_placeholder_name",
    "placeholder_name",
]
