from app.models.agent import Agent
from app.models.channel_integration import ChannelIntegration
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.order import Order
from app.models.processing_lock import ProcessingLock
from app.models.product import Product
from app.models.workspace import Workspace

__all__ = [
    "Workspace",
    "Agent",
    "ChannelIntegration",
    "Conversation",
    "Message",
    "ProcessingLock",
    "Product",
    "Order",
]
