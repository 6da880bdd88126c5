"""Fixtures compartidas para las pruebas."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from embudo.channels import common
from embudo.core.config import settings
from embudo.core.errors import UpstreamHTTPError
from embudo.main import app
from embudo.services import orchestrator as orchestrator_service
from embudo.services.completion import CompletionClient
from embudo.services.conversation_store import InMemoryConversationStore
from embudo.services.leads import InMemoryLeadStore, LeadNotifier
from embudo.services.orchestrator import FunnelOrchestrator
from embudo.services.rate_limit import rate_limiter
from embudo.services.tenants import load_tenant_profile
from embudo.services.webhook_state import WebhookStateRegistry

WHATSAPP_SECRET = "wa-app-secret"
MESSENGER_SECRET = "fb-app-secret"


class FakeClock:
    """Reloj controlable para probar ventanas de tiempo sin esperar."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSender:
    def __init__(self, channel: str, *, fail: bool = False) -> None:
        self.channel = channel
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send_text(self, recipient_id: str, text: str, *, credentials: Any = None) -> None:
        if self.fail:
            raise UpstreamHTTPError(f"{self.channel} caído", status_code=503)
        self.sent.append((recipient_id, text))


class FakeChatCompletions:
    def __init__(self) -> None:
        self.reply: str | None = "Расскажите, какая у вас ниша и откуда приходят заявки?"
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeTranscriptions:
    def __init__(self) -> None:
        self.text = "Сколько стоит бот для салона?"
        self.error: Exception | None = None

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FakeOpenAI:
    """Imita la superficie de `AsyncOpenAI` que usa el cliente de completions."""

    def __init__(self) -> None:
        self.chat = SimpleNamespace(completions=FakeChatCompletions())
        self.audio = SimpleNamespace(transcriptions=FakeTranscriptions())


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Cada prueba arranca con credenciales conocidas y sin estado compartido."""
    rate_limiter.reset()
    monkeypatch.setattr(common, "webhook_state", WebhookStateRegistry(tmp_path / "webhook-state"))
    monkeypatch.setattr(settings, "channel_connections_path", str(tmp_path / "connections.json"))
    monkeypatch.setattr(settings, "whatsapp_app_secret", WHATSAPP_SECRET)
    monkeypatch.setattr(settings, "messenger_app_secret", MESSENGER_SECRET)
    monkeypatch.setattr(settings, "instagram_app_secret", None)
    monkeypatch.setattr(settings, "whatsapp_signature_bypass", False)
    monkeypatch.setattr(settings, "messenger_signature_bypass", False)
    monkeypatch.setattr(settings, "whatsapp_verify_token", "verify-me")
    monkeypatch.setattr(settings, "messenger_verify_token", "verify-fb")
    monkeypatch.setattr(settings, "whatsapp_access_token", "wa-token")
    monkeypatch.setattr(settings, "whatsapp_phone_number_id", "1000200030004")
    monkeypatch.setattr(settings, "messenger_page_access_token", "page-token")
    monkeypatch.setattr(settings, "telegram_bot_token", "123:bot")
    monkeypatch.setattr(settings, "telegram_webhook_secret", None)
    monkeypatch.setattr(settings, "telegram_owner_chat_id", None)
    monkeypatch.setattr(settings, "webchat_truncate", False)


@pytest.fixture(name="clock")
def fixture_clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(name="profile")
def fixture_profile():
    return load_tenant_profile("temoweb")


@pytest.fixture(name="memory_store")
def fixture_memory_store(clock: FakeClock) -> InMemoryConversationStore:
    return InMemoryConversationStore(clock=clock)


@pytest.fixture(name="lead_store")
def fixture_lead_store() -> InMemoryLeadStore:
    return InMemoryLeadStore()


@pytest.fixture(name="senders")
def fixture_senders() -> dict[str, FakeSender]:
    return {channel: FakeSender(channel) for channel in ("whatsapp", "messenger", "telegram", "webchat")}


@pytest.fixture(name="owner_sender")
def fixture_owner_sender() -> FakeSender:
    return FakeSender("telegram")


@pytest.fixture(name="fake_openai")
def fixture_fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture(name="sender_factory")
def fixture_sender_factory() -> type[FakeSender]:
    return FakeSender


@pytest.fixture(name="orchestrator")
def fixture_orchestrator(
    monkeypatch: pytest.MonkeyPatch,
    memory_store: InMemoryConversationStore,
    lead_store: InMemoryLeadStore,
    senders: dict[str, FakeSender],
    owner_sender: FakeSender,
    fake_openai: FakeOpenAI,
    clock: FakeClock,
) -> FunnelOrchestrator:
    """Orquestador en memoria, instalado también como el que usan los routers."""
    instance = FunnelOrchestrator(
        store=memory_store,
        leads=lead_store,
        completion=CompletionClient(client_factory=lambda _key: fake_openai),
        senders=senders,
        notifier=LeadNotifier(sender=owner_sender, chat_id="owner-chat"),
        clock=clock,
    )
    monkeypatch.setattr(orchestrator_service, "orchestrator", instance)
    return instance


@pytest.fixture(name="async_client")
async def fixture_async_client() -> AsyncIterator[AsyncClient]:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
