"""Pruebas de extremo a extremo del orquestador con dobles en memoria."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import openai
import pytest

from embudo.core.errors import StorageUnavailableError
from embudo.models.events import InboundEvent
from embudo.services.classifier import Stage
from embudo.services.completion import CompletionClient
from embudo.services.conversation_store import InMemoryConversationStore
from embudo.services.intent import intent_detector
from embudo.services.leads import LeadNotifier
from embudo.services.orchestrator import FunnelOrchestrator

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
CONTACT = "380501112233"


def _event(text: str | None = None, *, kind: str = "text", media_id: str | None = None, **overrides) -> InboundEvent:
    values = {
        "channel": "whatsapp",
        "routing_id": "1000200030004",
        "external_contact_id": CONTACT,
        "kind": kind,
        "text": text,
        "media_id": media_id,
        "timestamp": datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return InboundEvent(**values)


def _assistant_count(conversation) -> int:
    return sum(1 for message in conversation.messages if message.role == "assistant")


async def test_first_turn_replies_with_fixed_intro(orchestrator, memory_store, fake_openai, profile) -> None:
    result = await orchestrator.handle_inbound(_event("Привет"))

    assert result.reply == profile.copy_for("ru").intro
    conversation = await memory_store.get("whatsapp", CONTACT)
    assert [message.role for message in conversation.messages] == ["user", "assistant"]
    assert conversation.lang == "ru"
    assert fake_openai.chat.completions.calls == []


async def test_language_switch_on_first_turn(orchestrator, profile) -> None:
    result = await orchestrator.handle_inbound(_event("english please"))

    assert result.reply == profile.copy_for("en").intro


async def test_second_turn_uses_model_and_guardrails(orchestrator, memory_store, fake_openai) -> None:
    await orchestrator.handle_inbound(_event("Привет"))

    result = await orchestrator.handle_inbound(_event("Сколько стоит бот для салона?"))

    assert result.reply.startswith("Расскажите, какая у вас ниша")
    for name in ("START", "BUSINESS", "PRO"):
        assert name in result.reply
    assert result.stage is Stage.OFFER
    call = fake_openai.chat.completions.calls[0]
    assert "Current channel: whatsapp" in call["messages"][0]["content"]
    assert call["messages"][-1] == {"role": "user", "content": "Сколько стоит бот для салона?"}
    conversation = await memory_store.get("whatsapp", CONTACT)
    assert _assistant_count(conversation) == 2


async def test_timeout_falls_back_and_appends_once(orchestrator, memory_store, fake_openai, profile) -> None:
    await orchestrator.handle_inbound(_event("Привет"))
    fake_openai.chat.completions.error = openai.APITimeoutError(request=REQUEST)

    result = await orchestrator.handle_inbound(_event("Сколько стоит?"))

    assert result.degraded
    assert result.reply.startswith(profile.copy_for("ru").fallback)
    conversation = await memory_store.get("whatsapp", CONTACT)
    assert _assistant_count(conversation) == 2
    assert conversation.messages[-1].content == result.reply


async def test_store_outage_still_answers(lead_store, senders, fake_openai, clock, profile) -> None:
    class BrokenStore(InMemoryConversationStore):
        async def _read(self, key):
            raise StorageUnavailableError("disco lleno")

    orchestrator = FunnelOrchestrator(
        store=BrokenStore(clock=clock),
        leads=lead_store,
        completion=CompletionClient(client_factory=lambda _key: fake_openai),
        senders=senders,
        clock=clock,
    )

    result = await orchestrator.handle_inbound(_event("Привет"))

    assert result.reply == profile.copy_for("ru").intro


async def test_read_only_store_still_answers(lead_store, senders, fake_openai, clock, profile) -> None:
    class ReadOnlyStore(InMemoryConversationStore):
        writable = True

        async def _write(self, key, record):
            if not self.writable:
                raise StorageUnavailableError("disco de solo lectura")
            await super()._write(key, record)

    store = ReadOnlyStore(clock=clock)
    await store.append_message("whatsapp", CONTACT, "user", "Привет")
    await store.append_message("whatsapp", CONTACT, "assistant", profile.copy_for("ru").intro)
    store.writable = False
    orchestrator = FunnelOrchestrator(
        store=store,
        leads=lead_store,
        completion=CompletionClient(client_factory=lambda _key: fake_openai),
        senders=senders,
        clock=clock,
    )

    result = await orchestrator.process_and_send(_event("Сколько стоит бот для салона?"))

    assert result.reply
    assert senders["whatsapp"].sent == [(CONTACT, result.reply)]
    history = fake_openai.chat.completions.calls[0]["messages"]
    assert any(message["content"] == profile.copy_for("ru").intro for message in history)
    assert len((await store.get("whatsapp", CONTACT)).messages) == 2


async def test_contact_turn_captures_lead(orchestrator, lead_store, owner_sender, memory_store, profile) -> None:
    await orchestrator.handle_inbound(_event("Привет"))
    await orchestrator.handle_inbound(_event("Хочу бота для салона"))

    result = await orchestrator.handle_inbound(_event("Готов начать, мой телефон +380501234567"))

    assert result.stage is Stage.ASK_CONTACT
    assert result.lead_id == lead_store.leads[0].id
    assert lead_store.leads[0].contact == "+380501234567"
    assert result.reply.startswith(profile.copy_for("ru").contact_confirm)
    assert len(owner_sender.sent) == 1
    assert (await memory_store.get("whatsapp", CONTACT)).lead_captured_at is not None


async def test_images_are_buffered_acknowledged_once_and_attached(
    orchestrator, memory_store, fake_openai, profile, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def fake_fetch(channel, media_id, credentials):
        return f"bytes-{media_id}".encode(), "image/jpeg"

    monkeypatch.setattr("embudo.services.orchestrator.fetch_media", fake_fetch)
    await orchestrator.handle_inbound(_event("Привет"))

    first = await orchestrator.handle_inbound(_event(kind="image", media_id="img-1"))
    second = await orchestrator.handle_inbound(_event(kind="image", media_id="img-2"))
    duplicate = await orchestrator.handle_inbound(_event(kind="image", media_id="img-2"))

    assert first.reply == profile.copy_for("ru").media_ack
    assert second.reply is None and duplicate.reply is None
    assert (await memory_store.get("whatsapp", CONTACT)).pending_media_ids == ["img-1", "img-2"]

    await orchestrator.handle_inbound(_event("Что скажете по этим фото?"))

    parts = fake_openai.chat.completions.calls[-1]["messages"][-1]["content"]
    assert [part["type"] for part in parts] == ["text", "image_url", "image_url"]
    assert (await memory_store.get("whatsapp", CONTACT)).pending_media_ids == []


async def test_audio_is_transcribed(orchestrator, memory_store, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_fetch(channel, media_id, credentials):
        return b"ogg", "audio/ogg"

    monkeypatch.setattr("embudo.services.orchestrator.fetch_media", fake_fetch)

    await orchestrator.handle_inbound(_event(kind="audio", media_id="voice-1"))

    conversation = await memory_store.get("whatsapp", CONTACT)
    assert conversation.messages[0].content == "Сколько стоит бот для салона?"


async def test_failed_transcription_uses_placeholder(
    orchestrator, memory_store, fake_openai, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def fake_fetch(channel, media_id, credentials):
        return b"ogg", "audio/ogg"

    monkeypatch.setattr("embudo.services.orchestrator.fetch_media", fake_fetch)
    fake_openai.audio.transcriptions.error = openai.APIConnectionError(request=REQUEST)

    result = await orchestrator.handle_inbound(_event(kind="audio", media_id="voice-1"))

    conversation = await memory_store.get("whatsapp", CONTACT)
    assert conversation.messages[0].content == "[Voice message]"
    assert result.reply is not None


async def test_long_conversation_forces_contact_request(orchestrator, memory_store) -> None:
    for index in range(6):
        await memory_store.append_message("telegram", "9", "user", f"вопрос {index}")
        await memory_store.append_message("telegram", "9", "assistant", "Понятно, расскажите подробнее.")
    conversation = await memory_store.get("telegram", "9")

    text = "Сколько стоит пакет для салона, какие сроки?"
    forced = orchestrator._classify(conversation, text, intent_detector.detect(text))
    low = orchestrator._classify(conversation, "ок", intent_detector.detect("ок"))

    assert forced.stage is Stage.ASK_CONTACT
    assert forced.score >= 55
    assert low.stage is not Stage.ASK_CONTACT


async def test_process_and_send_delivers_and_survives_send_errors(
    orchestrator, senders, sender_factory, profile
) -> None:
    result = await orchestrator.process_and_send(_event("Привет"))

    assert senders["whatsapp"].sent == [(CONTACT, profile.copy_for("ru").intro)]

    senders["whatsapp"] = sender_factory("whatsapp", fail=True)
    orchestrator._senders = senders
    again = await orchestrator.process_and_send(_event("Сколько стоит?"))

    assert result.reply and again.reply


async def test_notifier_failure_does_not_block_reply(
    memory_store, lead_store, senders, sender_factory, fake_openai, clock
) -> None:
    orchestrator = FunnelOrchestrator(
        store=memory_store,
        leads=lead_store,
        completion=CompletionClient(client_factory=lambda _key: fake_openai),
        senders=senders,
        notifier=LeadNotifier(sender=sender_factory("telegram", fail=True), chat_id="owner"),
        clock=clock,
    )
    await orchestrator.handle_inbound(_event("Привет"))
    await orchestrator.handle_inbound(_event("Хочу бота"))

    result = await orchestrator.handle_inbound(_event("Готов начать, почта ivan@example.com"))

    assert result.reply
    assert lead_store.leads[0].contact == "ivan@example.com"
