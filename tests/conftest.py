import os
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SWEEP_WORKER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.config import settings
from app.database import Base
from app.models import Agent, ChannelIntegration, Conversation, Message, Product, Workspace
from app.services.llm.base import LLMError, LLMProvider, LLMResponse, ToolCall

ADMIN_TOKEN = "test-admin-token"


class FakeLLMProvider(LLMProvider):
    """Scripted provider: returns queued responses, records every call."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, content="", tool_calls=None):
        self.responses.append(LLMResponse(content=content, model="fake-model", tool_calls=tool_calls or []))

    def queue_order(self, content="", **arguments):
        self.queue(content, [ToolCall(name="create_order", arguments=arguments, id="call_1")])

    def queue_error(self, message="timeout"):
        self.responses.append(LLMError(message))

    def generate(self, messages, model=None, temperature=0.7, max_tokens=1000, tools=None, timeout_seconds=None):
        self.calls.append({"messages": messages, "tools": tools, "timeout_seconds": timeout_seconds})
        if not self.responses:
            return LLMResponse(content="", model="fake-model")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def admin_token(monkeypatch):
    monkeypatch.setattr(settings, "admin_token", ADMIN_TOKEN)
    return ADMIN_TOKEN


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def workspace(db):
    workspace = Workspace(
        name="Test Store",
        settings={"default_ai_enabled": True},
        created_at=datetime.now(timezone.utc),
    )
    db.add(workspace)
    db.commit()
    return workspace


@pytest.fixture
def ai_agent(db, workspace):
    agent = Agent(workspace_id=workspace.id, name="Sales Bot", is_ai=True, is_active=True)
    db.add(agent)
    db.commit()
    return agent


def _integration(db, workspace, channel, credentials, external_account_id=None):
    integration = ChannelIntegration(
        workspace_id=workspace.id,
        channel=channel,
        is_connected=True,
        credentials=credentials,
        external_account_id=external_account_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(integration)
    db.commit()
    return integration


@pytest.fixture
def facebook_integration(db, workspace):
    return _integration(
        db,
        workspace,
        "facebook",
        {"page_id": "PAGE_1", "page_access_token": "page-token", "verify_token": "verify-me"},
        "PAGE_1",
    )


@pytest.fixture
def instagram_integration(db, workspace):
    return _integration(
        db,
        workspace,
        "instagram",
        {"instagram_account_id": "IG_1", "page_id": "PAGE_1", "page_access_token": "page-token"},
        "IG_1",
    )


@pytest.fixture
def whatsapp_integration(db, workspace):
    return _integration(
        db,
        workspace,
        "whatsapp",
        {"phone_number_id": "PHONE_1", "access_token": "wa-token"},
        "PHONE_1",
    )


@pytest.fixture
def telegram_integration(db, workspace):
    return _integration(db, workspace, "telegram", {"bot_token": "123456:ABC-secret"})


@pytest.fixture
def product(db, workspace):
    product = Product(
        workspace_id=workspace.id,
        name="كريم مرطب",
        description="كريم ترطيب يومي للبشرة",
        price=Decimal("50.00"),
        stock=None,
        is_active=True,
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def make_conversation(db, workspace):
    def _make(channel="facebook", external_customer_id="CUSTOMER_1", ai_enabled=True, **kwargs):
        conversation = Conversation(
            workspace_id=kwargs.pop("workspace_id", workspace.id),
            channel=channel,
            external_customer_id=external_customer_id,
            customer_display_name=kwargs.pop("customer_display_name", f"Facebook User {external_customer_id[-8:]}"),
            ai_enabled=ai_enabled,
            created_at=datetime.now(timezone.utc),
            **kwargs,
        )
        db.add(conversation)
        db.commit()
        return conversation

    return _make


@pytest.fixture
def add_message(db):
    def _add(conversation, content, *, at, sender_type="customer", provider_message_id=None, **kwargs):
        message = Message(
            conversation_id=conversation.id,
            content=content,
            sender_type=sender_type,
            provider_message_id=provider_message_id,
            created_at=at,
            is_backfilled=kwargs.pop("is_backfilled", False),
            reply_sent=kwargs.pop("reply_sent", sender_type != "customer"),
            **kwargs,
        )
        db.add(message)
        db.commit()
        return message

    return _add


@pytest.fixture
def fake_llm():
    return FakeLLMProvider()
