from typing import Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Body returned to providers; always sent with HTTP 200."""

    success: bool
    message: Optional[str] = None
    received: int = 0
    stored: int = 0
