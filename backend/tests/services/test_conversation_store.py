"""Pruebas del almacén de conversaciones (memoria y archivo)."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from embudo.core.errors import StorageUnavailableError
from embudo.services import conversation_store
from embudo.services.conversation_store import FileConversationStore, InMemoryConversationStore


async def test_get_is_create_on_read_without_persisting(memory_store: InMemoryConversationStore) -> None:
    first = await memory_store.get("whatsapp", "380501112233")
    second = await memory_store.get("whatsapp", "380501112233")

    assert first.messages == [] and second.messages == []
    assert first.created_at is None
    assert await memory_store.list_all() == {}


async def test_append_bounds_history_and_drops_empty(clock) -> None:
    store = InMemoryConversationStore(max_messages=6, clock=clock)
    for index in range(10):
        await store.append_message("telegram", "42", "user", f"mensaje {index}")
        clock.advance(seconds=1)
    await store.append_message("telegram", "42", "assistant", "   ")

    conversation = await store.get("telegram", "42")
    assert [message.content for message in conversation.messages] == [
        f"mensaje {index}" for index in range(4, 10)
    ]
    assert conversation.updated_at > conversation.created_at


async def test_keys_are_unique_across_channels(memory_store: InMemoryConversationStore) -> None:
    await memory_store.append_message("whatsapp", "777", "user", "hola")
    await memory_store.append_message("telegram", "777", "user", "привет")

    conversations = await memory_store.list_all()

    assert set(conversations) == {"whatsapp:777", "telegram:777"}


async def test_mark_once_sets_timestamp_only_once(memory_store: InMemoryConversationStore, clock) -> None:
    await memory_store.append_message("messenger", "psid-1", "user", "hi")

    assert await memory_store.mark_once("messenger", "psid-1", "follow_up_sent_at") is True
    first_mark = (await memory_store.get("messenger", "psid-1")).follow_up_sent_at
    clock.advance(minutes=5)
    assert await memory_store.mark_once("messenger", "psid-1", "follow_up_sent_at") is False
    assert (await memory_store.get("messenger", "psid-1")).follow_up_sent_at == first_mark


async def test_patch_ignores_unknown_fields(memory_store: InMemoryConversationStore) -> None:
    conversation = await memory_store.patch("webchat", "sess-1", lang="en", color="blue")

    assert conversation.lang == "en"
    assert not hasattr(conversation, "color")


async def test_file_store_hydrates_partial_legacy_records(tmp_path) -> None:
    path = tmp_path / "conversations.json"
    path.write_text(
        json.dumps(
            {
                "whatsapp:380": {
                    "messages": [
                        {"role": "user", "content": "Привет", "at": "2025-01-01T10:00:00+00:00"},
                        {"role": "system", "content": "ignorado", "at": "2025-01-01T10:00:01+00:00"},
                        {"role": "assistant", "content": "", "at": "2025-01-01T10:00:02+00:00"},
                    ],
                    "followUpSentAt": "2025-01-01T11:00:00+00:00",
                }
            }
        ),
        encoding="utf-8",
    )
    store = FileConversationStore(path)

    conversation = await store.get("whatsapp", "380")

    assert [message.content for message in conversation.messages] == ["Привет"]
    assert conversation.lang is None
    assert conversation.pending_media_ids == []
    assert conversation.follow_up_sent_at is not None
    assert conversation.lead_captured_at is None


async def test_file_store_persists_across_instances(tmp_path, clock) -> None:
    path = tmp_path / "state" / "conversations.json"
    await FileConversationStore(path, clock=clock).append_message("telegram", "99", "user", "hello")

    reloaded = await FileConversationStore(path, clock=clock).get("telegram", "99")

    assert reloaded.messages[0].content == "hello"
    assert not list(path.parent.glob("*.tmp"))


async def test_file_store_refuses_to_overwrite_corrupt_file(tmp_path) -> None:
    path = tmp_path / "conversations.json"
    path.write_text("{not json", encoding="utf-8")
    store = FileConversationStore(path)

    with pytest.raises(StorageUnavailableError):
        await store.append_message("whatsapp", "1", "user", "hola")
    assert path.read_text(encoding="utf-8") == "{not json"


async def test_file_store_prunes_least_recently_updated(tmp_path, clock, monkeypatch) -> None:
    monkeypatch.setattr(conversation_store, "MAX_RECORDS", 3)
    monkeypatch.setattr(conversation_store, "PRUNE_TO", 2)
    store = FileConversationStore(tmp_path / "conversations.json", clock=clock)
    for contact in ("a", "b", "c", "d"):
        await store.append_message("webchat", f"sess-{contact}", "user", "hola")
        clock.advance(minutes=1)

    remaining = await store.list_all()

    assert set(remaining) == {"webchat:sess-c", "webchat:sess-d"}


async def test_message_timestamps_follow_clock(memory_store: InMemoryConversationStore, clock) -> None:
    start = clock()
    await memory_store.append_message("whatsapp", "1", "user", "uno")
    clock.advance(minutes=3)
    conversation = await memory_store.append_message("whatsapp", "1", "assistant", "dos")

    assert conversation.messages[-1].at - conversation.messages[0].at == timedelta(minutes=3)
    assert conversation.created_at == start
