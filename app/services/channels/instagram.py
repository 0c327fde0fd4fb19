from typing import Optional

from app.services.channels.base import CustomerProfile
from app.services.channels.facebook import FacebookAdapter


class InstagramAdapter(FacebookAdapter):
    """Instagram Direct via the Messenger API; same payload and send shape as Messenger."""

    channel = "instagram"
    profile_fields = "name,username,profile_pic"

    def account_ids(self, credentials: dict) -> set[str]:
        ids = (credentials.get("instagram_account_id"), credentials.get("page_id"))
        return {str(v) for v in ids if v}

    def access_token(self, credentials: dict) -> Optional[str]:
        return credentials.get("page_access_token") or credentials.get("access_token")

    def _profile_from(self, data: dict) -> CustomerProfile:
        username = data.get("username")
        return CustomerProfile(
            display_name=f"@{username}" if username else data.get("name"),
            avatar_url=data.get("profile_pic"),
        )

    def _conversation_params(self, token: str) -> dict:
        params = super()._conversation_params(token)
        params["platform"] = "instagram"
        return params
