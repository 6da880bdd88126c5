"""Pruebas del cliente de completions y sus degradaciones."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import openai
import pytest

from embudo.core.errors import MissingCredentialError, TranscriptionError
from embudo.models.conversation import ChatMessage
from embudo.services.completion import (
    MAX_IMAGE_BYTES,
    CompletionClient,
    ImageInput,
    build_messages,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _client(fake_openai) -> CompletionClient:
    return CompletionClient(client_factory=lambda _key: fake_openai)


async def _complete(client: CompletionClient, **overrides):
    params = {
        "timeout_ms": 5000,
        "model": "gpt-4o-mini",
        "fallback": "Respaldo",
        "no_key_fallback": "Sin clave",
        "channel": "telegram",
    }
    params.update(overrides)
    return await client.complete("sistema", [], "hola", **params)


async def test_returns_model_text(fake_openai) -> None:
    fake_openai.chat.completions.reply = "  Respuesta del modelo  "

    result = await _complete(_client(fake_openai))

    assert result.text == "Respuesta del modelo"
    assert not result.degraded
    call = fake_openai.chat.completions.calls[0]
    assert call["max_tokens"] == 280
    assert call["messages"][0] == {"role": "system", "content": "sistema"}


async def test_gpt5_models_use_completion_tokens(fake_openai) -> None:
    await _complete(_client(fake_openai), model="gpt-5-mini")

    call = fake_openai.chat.completions.calls[0]
    assert call["max_completion_tokens"] == 280
    assert "temperature" not in call


async def test_missing_credential_uses_no_key_fallback() -> None:
    def factory(_key):
        raise MissingCredentialError("OPENAI_API_KEY is not configured")

    result = await _complete(CompletionClient(client_factory=factory))

    assert (result.text, result.error) == ("Sin clave", "missing_credential")


async def test_slow_upstream_is_aborted(fake_openai, monkeypatch: pytest.MonkeyPatch) -> None:
    async def slow_create(**kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(fake_openai.chat.completions, "create", slow_create)

    result = await _complete(_client(fake_openai), timeout_ms=50)

    assert (result.text, result.error) == ("Respaldo", "timeout")


@pytest.mark.parametrize(
    "error",
    [
        openai.APITimeoutError(request=REQUEST),
        openai.APIStatusError("boom", response=httpx.Response(500, request=REQUEST), body=None),
        openai.APIConnectionError(request=REQUEST),
    ],
)
async def test_upstream_errors_fall_back(fake_openai, error) -> None:
    fake_openai.chat.completions.error = error

    result = await _complete(_client(fake_openai))

    assert result.text == "Respaldo"
    assert result.error in {"timeout", "upstream_error"}


async def test_empty_output_falls_back(fake_openai) -> None:
    fake_openai.chat.completions.reply = "   "

    result = await _complete(_client(fake_openai))

    assert (result.text, result.error) == ("Respaldo", "empty_output")


def test_build_messages_limits_history_and_images() -> None:
    at = datetime(2025, 1, 1, tzinfo=timezone.utc)
    history = [ChatMessage(role="user", content=f"m{index}", at=at) for index in range(20)]
    images = [ImageInput(data=b"x" * 10) for _ in range(5)] + [ImageInput(data=b"x" * (MAX_IMAGE_BYTES + 1))]

    messages = build_messages("sys", history, "¿precio?", images, history_limit=4, max_images=3)

    assert [message["content"] for message in messages[1:5]] == ["m16", "m17", "m18", "m19"]
    parts = messages[-1]["content"]
    assert parts[0] == {"type": "text", "text": "¿precio?"}
    assert len(parts) == 4
    assert parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")


async def test_transcribe_returns_text(fake_openai) -> None:
    assert await _client(fake_openai).transcribe(b"ogg") == "Сколько стоит бот для салона?"


async def test_transcribe_failure_raises(fake_openai) -> None:
    fake_openai.audio.transcriptions.error = openai.APIConnectionError(request=REQUEST)

    with pytest.raises(TranscriptionError):
        await _client(fake_openai).transcribe(b"ogg", timeout_ms=3000)
