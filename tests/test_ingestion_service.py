from datetime import datetime, timezone
from unittest.mock import patch

from app.models import ChannelIntegration, Conversation, Message, Workspace
from app.services.ingestion_service import enrich_profile, ingest_payload


def _whatsapp_payload(sender="970567900601", mid="wamid.1", text="السلام عليكم", name="أسامة"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "PHONE_1"},
                            "contacts": [{"wa_id": sender, "profile": {"name": name}}],
                            "messages": [
                                {"from": sender, "id": mid, "timestamp": "1714550400", "type": "text", "text": {"body": text}}
                            ],
                        },
                    }
                ],
            }
        ],
    }


def _telegram_update(chat_id=777, message_id=1):
    return {
        "update_id": message_id,
        "message": {
            "message_id": message_id,
            "date": 1714550400,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, "username": "osama"},
            "text": "hi",
        },
    }


class TestIngestPayload:
    def test_whatsapp_message_uses_contact_name(self, db, whatsapp_integration):
        report = ingest_payload(db, "whatsapp", _whatsapp_payload(), enrich=False)

        assert report.stored == 1
        conversation = db.query(Conversation).one()
        assert conversation.customer_display_name == "أسامة"
        assert conversation.ai_enabled is True
        assert conversation.last_message_at is not None

    def test_new_conversation_is_assigned_to_ai_agent(self, db, ai_agent, whatsapp_integration):
        ingest_payload(db, "whatsapp", _whatsapp_payload(), enrich=False)
        assert db.query(Conversation).one().assigned_agent_id == ai_agent.id

    def test_messages_from_own_number_are_not_stored(self, db, whatsapp_integration):
        report = ingest_payload(db, "whatsapp", _whatsapp_payload(sender="PHONE_1"), enrich=False)

        assert report.stored == 0
        assert db.query(Message).count() == 0

    def test_duplicates_are_counted(self, db, whatsapp_integration):
        ingest_payload(db, "whatsapp", _whatsapp_payload(), enrich=False)
        report = ingest_payload(db, "whatsapp", _whatsapp_payload(), enrich=False)

        assert report.duplicates == 1
        assert db.query(Message).count() == 1

    def test_unrouted_event(self, db):
        report = ingest_payload(db, "whatsapp", _whatsapp_payload(), enrich=False)
        assert report.received == 1
        assert report.unrouted == 1

    def test_ambiguous_telegram_update_is_dropped(self, db, telegram_integration):
        other = Workspace(name="Second Store", settings={})
        db.add(other)
        db.commit()
        db.add(
            ChannelIntegration(
                workspace_id=other.id,
                channel="telegram",
                is_connected=True,
                credentials={"bot_token": "999:XYZ"},
                created_at=datetime.now(timezone.utc),
            )
        )
        db.commit()

        report = ingest_payload(db, "telegram", _telegram_update(), enrich=False)

        assert report.unrouted == 1
        assert db.query(Message).count() == 0

    def test_single_telegram_bot_receives_update(self, db, telegram_integration):
        report = ingest_payload(db, "telegram", _telegram_update(), enrich=False)

        assert report.stored == 1
        assert db.query(Conversation).one().customer_display_name == "@osama"


class TestEnrichProfile:
    def test_real_name_is_not_refetched(self, db, facebook_integration, make_conversation):
        conversation = make_conversation(customer_display_name="Osama Abdo")

        with patch("app.services.channels.facebook.FacebookAdapter.fetch_profile") as fetch:
            assert enrich_profile(db, facebook_integration, conversation) is False

        fetch.assert_not_called()

    def test_lookup_uses_bounded_timeout(self, db, facebook_integration, make_conversation):
        conversation = make_conversation()

        with patch("app.services.channels.facebook.FacebookAdapter.fetch_profile", return_value=None) as fetch:
            enrich_profile(db, facebook_integration, conversation)

        assert fetch.call_args[1]["timeout"] == 3.0
