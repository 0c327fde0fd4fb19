from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock, patch

import pytest

from app.services.channels import ChannelSendError, get_adapter, is_placeholder_name, placeholder_name
from app.services.channels.telegram import bot_id_from_token


def _messenger_payload(sender="CUSTOMER_1", page="PAGE_1", text="مرحبا", mid="m_1", **message_extra):
    return {
        "object": "page",
        "entry": [
            {
                "id": page,
                "time": 1714550400000,
                "messaging": [
                    {
                        "sender": {"id": sender},
                        "recipient": {"id": page},
                        "timestamp": 1714550400000,
                        "message": {"mid": mid, "text": text, **message_extra},
                    }
                ],
            }
        ],
    }


def _whatsapp_payload(messages=None, statuses=None, contacts=None):
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "970500000000", "phone_number_id": "PHONE_1"},
    }
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    if contacts is not None:
        value["contacts"] = contacts
    return {"object": "whatsapp_business_account", "entry": [{"id": "WABA_1", "changes": [{"field": "messages", "value": value}]}]}


def _mock_http(mock_client_class, status_code=200, json_data=None):
    mock_client = MagicMock()
    mock_client_class.return_value.__enter__.return_value = mock_client
    response = Mock()
    response.status_code = status_code
    response.json.return_value = json_data or {}
    response.text = str(json_data)
    mock_client.post.return_value = response
    mock_client.get.return_value = response
    return mock_client


class TestPlaceholderNames:
    def test_placeholder_uses_last_eight_characters(self):
        assert placeholder_name("telegram", "123456789012") == "Telegram User 56789012"
        assert placeholder_name("whatsapp", "970567900601") == "WhatsApp User 67900601"

    def test_is_placeholder(self):
        assert is_placeholder_name("Instagram User 1234") is True
        assert is_placeholder_name(None) is True
        assert is_placeholder_name("  ") is True
        assert is_placeholder_name("أسامة عبدو") is False
        assert is_placeholder_name("@osama") is False


class TestFacebookNormalize:
    def test_text_message(self):
        messages = get_adapter("facebook").normalize(_messenger_payload())

        assert len(messages) == 1
        message = messages[0]
        assert message.channel == "facebook"
        assert message.account_id == "PAGE_1"
        assert message.external_customer_id == "CUSTOMER_1"
        assert message.provider_message_id == "m_1"
        assert message.text == "مرحبا"
        assert message.created_at == datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def test_echo_flag_is_dropped(self):
        payload = _messenger_payload(is_echo=True)
        assert get_adapter("facebook").normalize(payload) == []

    def test_message_from_page_itself_is_dropped(self):
        payload = _messenger_payload(sender="PAGE_1")
        assert get_adapter("facebook").normalize(payload) == []

    def test_delivery_and_read_receipts_yield_nothing(self):
        payload = {
            "object": "page",
            "entry": [
                {
                    "id": "PAGE_1",
                    "messaging": [
                        {"sender": {"id": "CUSTOMER_1"}, "recipient": {"id": "PAGE_1"}, "delivery": {"mids": ["m_1"]}},
                        {"sender": {"id": "CUSTOMER_1"}, "recipient": {"id": "PAGE_1"}, "read": {"watermark": 1}},
                    ],
                }
            ],
        }
        assert get_adapter("facebook").normalize(payload) == []

    def test_attachment_without_text(self):
        payload = _messenger_payload(text=None, attachments=[{"type": "image"}])
        messages = get_adapter("facebook").normalize(payload)
        assert [m.text for m in messages] == ["[Media]"]

    @pytest.mark.parametrize("payload", [None, [], "garbage", {"entry": "not-a-list-of-dicts"}])
    def test_malformed_payload_never_raises(self, payload):
        assert get_adapter("facebook").normalize(payload) == []


class TestInstagramNormalize:
    def test_echo_from_business_account_is_dropped(self):
        payload = _messenger_payload(sender="IG_1", page="IG_1")
        payload["object"] = "instagram"
        assert get_adapter("instagram").normalize(payload) == []

    def test_customer_message(self):
        payload = _messenger_payload(page="IG_1", mid="ig_mid_1")
        payload["object"] = "instagram"
        messages = get_adapter("instagram").normalize(payload)
        assert messages[0].channel == "instagram"
        assert messages[0].provider_message_id == "ig_mid_1"

    def test_account_ids_include_page(self):
        adapter = get_adapter("instagram")
        assert adapter.account_ids({"instagram_account_id": "IG_1", "page_id": "PAGE_1"}) == {"IG_1", "PAGE_1"}


class TestWhatsAppNormalize:
    def test_text_message_with_contact_name(self):
        payload = _whatsapp_payload(
            messages=[
                {"from": "970567900601", "id": "wamid.1", "timestamp": "1714550400", "type": "text", "text": {"body": "السلام عليكم"}}
            ],
            contacts=[{"wa_id": "970567900601", "profile": {"name": "أسامة"}}],
        )
        messages = get_adapter("whatsapp").normalize(payload)

        assert len(messages) == 1
        assert messages[0].account_id == "PHONE_1"
        assert messages[0].external_customer_id == "970567900601"
        assert messages[0].display_name_hint == "أسامة"
        assert messages[0].created_at == datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def test_status_only_payload_yields_nothing(self):
        payload = _whatsapp_payload(statuses=[{"id": "wamid.9", "status": "delivered"}])
        assert get_adapter("whatsapp").normalize(payload) == []

    def test_image_caption_and_reaction(self):
        payload = _whatsapp_payload(
            messages=[
                {"from": "1", "id": "a", "timestamp": "1714550400", "type": "image", "image": {"caption": "بكم هذا؟"}},
                {"from": "1", "id": "b", "timestamp": "1714550400", "type": "reaction", "reaction": {"emoji": "👍"}},
                {"from": "1", "id": "c", "timestamp": "1714550400", "type": "audio", "audio": {"id": "x"}},
            ]
        )
        messages = get_adapter("whatsapp").normalize(payload)
        assert [m.text for m in messages] == ["بكم هذا؟", "[Media]"]


class TestTelegramNormalize:
    def test_private_message(self):
        payload = {
            "update_id": 1,
            "message": {
                "message_id": 55,
                "date": 1714550400,
                "chat": {"id": 777000111, "type": "private"},
                "from": {"id": 777000111, "is_bot": False, "first_name": "Osama", "last_name": "Abdo"},
                "text": "hi",
            },
        }
        messages = get_adapter("telegram").normalize(payload)

        assert len(messages) == 1
        assert messages[0].external_customer_id == "777000111"
        assert messages[0].provider_message_id == "55"
        assert messages[0].display_name_hint == "Osama Abdo"

    def test_username_fallback(self):
        payload = {
            "update_id": 1,
            "message": {
                "message_id": 56,
                "date": 1714550400,
                "chat": {"id": 5, "type": "private"},
                "from": {"id": 5, "is_bot": False, "first_name": "", "username": "osama"},
                "text": "hi",
            },
        }
        assert get_adapter("telegram").normalize(payload)[0].display_name_hint == "@osama"

    def test_bot_messages_are_dropped(self):
        payload = {
            "update_id": 2,
            "message": {
                "message_id": 1,
                "date": 1714550400,
                "chat": {"id": 5, "type": "private"},
                "from": {"id": 123456, "is_bot": True, "first_name": "Shop Bot"},
                "text": "echo",
            },
        }
        assert get_adapter("telegram").normalize(payload) == []

    def test_update_without_message(self):
        assert get_adapter("telegram").normalize({"update_id": 3, "edited_message": None}) == []

    def test_bot_id_from_token(self):
        assert bot_id_from_token("123456:ABC") == "123456"
        assert bot_id_from_token(None) == ""


class TestSend:
    @patch("app.services.channels.base.httpx.Client")
    def test_facebook_send(self, mock_client_class):
        mock_client = _mock_http(mock_client_class, json_data={"recipient_id": "CUSTOMER_1", "message_id": "m_out"})

        provider_id = get_adapter("facebook").send("CUSTOMER_1", "أهلاً", {"page_access_token": "tok"})

        assert provider_id == "m_out"
        url = mock_client.post.call_args[0][0]
        kwargs = mock_client.post.call_args[1]
        assert url.endswith("/me/messages")
        assert kwargs["params"] == {"access_token": "tok"}
        assert kwargs["json"]["recipient"] == {"id": "CUSTOMER_1"}
        assert kwargs["json"]["message"] == {"text": "أهلاً"}

    @patch("app.services.channels.base.httpx.Client")
    def test_instagram_falls_back_to_access_token(self, mock_client_class):
        mock_client = _mock_http(mock_client_class, json_data={"message_id": "ig_out"})
        assert get_adapter("instagram").send("C", "hi", {"access_token": "ig-tok"}) == "ig_out"
        assert mock_client.post.call_args[1]["params"] == {"access_token": "ig-tok"}

    @patch("app.services.channels.base.httpx.Client")
    def test_whatsapp_send(self, mock_client_class):
        mock_client = _mock_http(mock_client_class, json_data={"messages": [{"id": "wamid.out"}]})

        provider_id = get_adapter("whatsapp").send("970567900601", "hello", {"phone_number_id": "PHONE_1", "access_token": "wa"})

        assert provider_id == "wamid.out"
        url = mock_client.post.call_args[0][0]
        kwargs = mock_client.post.call_args[1]
        assert url.endswith("/PHONE_1/messages")
        assert kwargs["headers"] == {"Authorization": "Bearer wa"}
        assert kwargs["json"]["messaging_product"] == "whatsapp"
        assert kwargs["json"]["text"] == {"body": "hello"}

    @patch("app.services.channels.base.httpx.Client")
    def test_telegram_send(self, mock_client_class):
        mock_client = _mock_http(mock_client_class, json_data={"ok": True, "result": {"message_id": 901}})

        provider_id = get_adapter("telegram").send("777", "hi", {"bot_token": "123:abc"})

        assert provider_id == "901"
        assert mock_client.post.call_args[0][0].endswith("/bot123:abc/sendMessage")

    @patch("app.services.channels.base.httpx.Client")
    def test_provider_error_raises_send_error(self, mock_client_class):
        _mock_http(mock_client_class, status_code=400, json_data={"error": {"message": "(#551) This person isn't available"}})

        with pytest.raises(ChannelSendError) as exc_info:
            get_adapter("facebook").send("C", "hi", {"page_access_token": "tok"})
        assert exc_info.value.status_code == 400
        assert "551" in str(exc_info.value)

    def test_missing_credentials_raise_send_error(self):
        with pytest.raises(ChannelSendError):
            get_adapter("whatsapp").send("C", "hi", {})
        with pytest.raises(ChannelSendError):
            get_adapter("telegram").send("C", "hi", {})


class TestFetchProfile:
    @patch("app.services.channels.base.httpx.Client")
    def test_facebook_profile(self, mock_client_class):
        _mock_http(mock_client_class, json_data={"first_name": "Osama", "last_name": "Abdo", "profile_pic": "https://pic"})
        profile = get_adapter("facebook").fetch_profile("C", {"page_access_token": "tok"}, timeout=3)
        assert profile.display_name == "Osama Abdo"
        assert profile.avatar_url == "https://pic"

    @patch("app.services.channels.base.httpx.Client")
    def test_instagram_prefers_username(self, mock_client_class):
        _mock_http(mock_client_class, json_data={"name": "Osama", "username": "osama.shop"})
        profile = get_adapter("instagram").fetch_profile("C", {"page_access_token": "tok"}, timeout=3)
        assert profile.display_name == "@osama.shop"

    @patch("app.services.channels.base.httpx.Client")
    def test_profile_failure_returns_none(self, mock_client_class):
        _mock_http(mock_client_class, status_code=500, json_data={})
        assert get_adapter("facebook").fetch_profile("C", {"page_access_token": "tok"}, timeout=3) is None

    def test_unsupported_channels_return_none(self):
        assert get_adapter("whatsapp").fetch_profile("C", {}, timeout=3) is None
        assert get_adapter("telegram").fetch_profile("C", {}, timeout=3) is None
